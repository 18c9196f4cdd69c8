"""Job error taxonomy for the media pipeline worker."""


class ErrorCode:
    # Fatal, reported on the job document
    SIZE_LIMIT = 'ERR_SIZE_LIMIT'
    CHUNK_SIZE_LIMIT = 'ERR_CHUNK_SIZE_LIMIT'
    ALL_CHUNKS_FAILED = 'ERR_ALL_CHUNKS_FAILED'
    EXTERNAL_OPERATION = 'ERR_EXTERNAL_OPERATION'
    POLLING_TIMEOUT = 'ERR_POLLING_TIMEOUT'
    NO_OUTPUT = 'ERR_NO_OUTPUT'
    INPUT_NOT_FOUND = 'ERR_INPUT_NOT_FOUND'
    INVALID_INPUT = 'ERR_INVALID_INPUT'
    INVALID_MESSAGE = 'ERR_INVALID_MESSAGE'

    # Retryable, the queue redelivers
    TRANSIENT = 'ERR_TRANSIENT'


RETRYABLE_ERRORS = {
    ErrorCode.TRANSIENT,
}

FAIL_FAST_ERRORS = {
    ErrorCode.SIZE_LIMIT,
    ErrorCode.CHUNK_SIZE_LIMIT,
}


class JobError(Exception):
    """Raised when a job hits a known error condition."""

    def __init__(self, code, message, retryable=None, fail_fast=None):
        self.code = code
        self.message = message
        self.retryable = retryable if retryable is not None else (code in RETRYABLE_ERRORS)
        self.fail_fast = fail_fast if fail_fast is not None else (code in FAIL_FAST_ERRORS)
        super().__init__(f'[{code}] {message}')


class SizeLimitExceededError(JobError):
    def __init__(self, message):
        super().__init__(ErrorCode.SIZE_LIMIT, message)


class ChunkSizeLimitError(JobError):
    def __init__(self, message):
        super().__init__(ErrorCode.CHUNK_SIZE_LIMIT, message)


class AllChunksFailedError(JobError):
    def __init__(self, message='All chunks failed to process.'):
        super().__init__(ErrorCode.ALL_CHUNKS_FAILED, message)


class ExternalOperationError(JobError):
    def __init__(self, message):
        super().__init__(ErrorCode.EXTERNAL_OPERATION, message)


class PollingTimeoutError(JobError):
    def __init__(self, message):
        super().__init__(ErrorCode.POLLING_TIMEOUT, message)


class NoOutputError(JobError):
    def __init__(self, message):
        super().__init__(ErrorCode.NO_OUTPUT, message)


class InputNotFoundError(JobError):
    def __init__(self, message):
        super().__init__(ErrorCode.INPUT_NOT_FOUND, message)


class InvalidInputError(JobError):
    def __init__(self, message):
        super().__init__(ErrorCode.INVALID_INPUT, message)


class InvalidJobMessageError(JobError):
    def __init__(self, message):
        super().__init__(ErrorCode.INVALID_MESSAGE, message)


def is_retryable(error):
    if isinstance(error, JobError):
        return bool(error.retryable)
    return True


def is_fail_fast(error):
    return isinstance(error, JobError) and bool(error.fail_fast)
