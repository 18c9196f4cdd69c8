"""Polling loop for asynchronous external operations.

An operation moves through an explicit state machine:

    pending -> succeeded   done, no error
    pending -> failed      done, with an error
    pending -> timed_out   attempt budget spent before done

Output files can appear before the external service reports a terminal state
and may be cleaned up by it afterwards, so every poll tick copies newly
discovered files into a durable location owned by the job. The final outcome
is decided from what was preserved, not from the terminal state alone.
"""

import datetime
import logging
import re
import time

from media_pipeline.errors import ExternalOperationError, NoOutputError, PollingTimeoutError
from media_pipeline.logging_config import log_event
from media_pipeline.repositories import storage_repo

logger = logging.getLogger(__name__)


class OperationState:
    PENDING = 'pending'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    TIMED_OUT = 'timed_out'

    TERMINAL = (SUCCEEDED, FAILED, TIMED_OUT)


def next_state(snapshot, attempts, max_attempts):
    """Pure transition from the latest poll snapshot (None when the poll raised)."""
    if snapshot is not None and snapshot.done:
        return OperationState.FAILED if snapshot.error else OperationState.SUCCEEDED
    if attempts >= max_attempts:
        return OperationState.TIMED_OUT
    return OperationState.PENDING


def _natural_key(path):
    return [int(part) if part.isdigit() else part for part in re.split(r'(\d+)', path)]


def _as_utc(value):
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def discover_artifacts(bucket, operation, *, output_prefix, suffix='.wav'):
    """Find output files for ``operation``.

    The requested output path wins when it exists; otherwise the job-scoped
    prefix is listed and filtered by suffix and by creation time.
    """
    if storage_repo.blob_exists(bucket, operation.output_path):
        found = [operation.output_path]
    else:
        started_at = _as_utc(operation.started_at)
        found = []
        for blob in storage_repo.list_blobs(bucket, output_prefix):
            name = blob.name
            if not name.lower().endswith(suffix):
                continue
            created = _as_utc(getattr(blob, 'time_created', None))
            if started_at is not None and created is not None and created < started_at:
                continue
            found.append(name)
    operation.discovered_paths.update(found)
    return sorted(found, key=_natural_key)


def preserve_new_artifacts(bucket, operation, *, final_path_for):
    """Copy every discovered but not yet preserved file to its durable path."""
    copied = []
    for source in sorted(operation.discovered_paths, key=_natural_key):
        if source in operation.preserved:
            continue
        destination = final_path_for(source)
        try:
            storage_repo.copy_blob(bucket, source, destination)
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                'artifact_preserve_failed',
                operation=operation.name,
                source=source,
                error=str(exc)[:300],
            )
            continue
        operation.preserved[source] = destination
        copied.append(destination)
    if copied:
        log_event(logger, logging.INFO, 'artifacts_preserved', operation=operation.name, count=len(copied))
    return copied


def monitor_operation(operation, *, poll_fn, bucket, output_prefix, final_path_for,
                      poll_interval_seconds=5, max_attempts=100, on_progress=None,
                      suffix='.wav', sleep_fn=time.sleep):
    """Block until ``operation`` reaches a terminal state, preserving output on every tick."""
    while operation.state == OperationState.PENDING:
        sleep_fn(poll_interval_seconds)
        operation.attempts += 1
        try:
            snapshot = poll_fn(operation.external_handle)
        except Exception as exc:
            snapshot = None
            log_event(
                logger,
                logging.WARNING,
                'operation_poll_failed',
                operation=operation.name,
                attempt=operation.attempts,
                error=str(exc)[:300],
            )

        if snapshot is not None:
            operation.done = bool(snapshot.done)
            operation.progress_percent = max(operation.progress_percent, float(snapshot.progress_percent or 0))
            if snapshot.error:
                operation.terminal_error = str(snapshot.error)

        discover_artifacts(bucket, operation, output_prefix=output_prefix, suffix=suffix)
        preserve_new_artifacts(bucket, operation, final_path_for=final_path_for)

        operation.state = next_state(snapshot, operation.attempts, max_attempts)
        if on_progress is not None and operation.state == OperationState.PENDING:
            on_progress(operation)

    # One last sweep: files written right before the terminal state.
    discover_artifacts(bucket, operation, output_prefix=output_prefix, suffix=suffix)
    preserve_new_artifacts(bucket, operation, final_path_for=final_path_for)
    log_event(
        logger,
        logging.INFO,
        'operation_finished',
        operation=operation.name,
        state=operation.state,
        attempts=operation.attempts,
        discovered=len(operation.discovered_paths),
        preserved=len(operation.preserved),
    )
    return operation


def monitor_operations(operations, **kwargs):
    return [monitor_operation(operation, **kwargs) for operation in operations]


def collect_artifact_paths(operations):
    """Durable paths of every preserved file, in operation then natural order."""
    paths = []
    for operation in operations:
        for source in sorted(operation.preserved, key=_natural_key):
            paths.append(operation.preserved[source])
    return paths


def collect_unpreserved_paths(operations):
    paths = []
    for operation in operations:
        paths.extend(
            source for source in sorted(operation.discovered_paths, key=_natural_key)
            if source not in operation.preserved
        )
    return paths


def resolve_outcome(operations, *, timeout_message=None):
    """Turn monitored operations into a completion record or a job error.

    Only preserved output is reported, since source files may be cleaned up by
    the external service. Any preserved output counts as success, even when an
    operation failed or timed out or some files could not be copied; such
    degraded completions are logged separately.
    """
    operations = list(operations)
    paths = collect_artifact_paths(operations)
    unpreserved = collect_unpreserved_paths(operations)
    if unpreserved:
        log_event(
            logger,
            logging.WARNING,
            'artifacts_unpreserved',
            count=len(unpreserved),
            sources=unpreserved[:20],
        )
    if paths:
        degraded = [operation for operation in operations if operation.state != OperationState.SUCCEEDED]
        if degraded:
            log_event(
                logger,
                logging.WARNING,
                'synthesis_partial_success',
                artifact_count=len(paths),
                operations=[operation.name for operation in degraded],
                errors=[operation.terminal_error[:200] for operation in degraded if operation.terminal_error],
            )
        record = {
            'isMultipart': len(paths) > 1,
            'chunkCount': len(paths),
            'degraded': bool(degraded or unpreserved),
        }
        if len(paths) > 1:
            record['audioPaths'] = paths
        else:
            record['audioPath'] = paths[0]
        return record

    if unpreserved:
        raise ExternalOperationError('Audio was generated but could not be copied to durable storage.')
    failed = [operation for operation in operations if operation.state == OperationState.FAILED]

    if failed:
        raise ExternalOperationError(failed[0].terminal_error or 'External operation failed without output.')
    timed_out = [operation for operation in operations if operation.state == OperationState.TIMED_OUT]
    if timed_out:
        raise PollingTimeoutError(
            timeout_message
            or f'Operation {timed_out[0].name} did not finish after {timed_out[0].attempts} polls.'
        )
    raise NoOutputError('The operation finished but produced no output. Text may be too large for audio generation.')
