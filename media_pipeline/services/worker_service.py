"""Queue message handling: staleness, dispatch and the retry decision."""

import base64
import binascii
import datetime
import json
import logging
import re
import shutil
import tempfile
import time

import sentry_sdk

from media_pipeline.errors import InvalidJobMessageError, is_retryable
from media_pipeline.logging_config import log_event
from media_pipeline.models import JobKind, JobMessage, JobStatus
from media_pipeline.paths import JobPaths
from media_pipeline.repositories import jobs_repo
from media_pipeline.services.conversion_pipeline import run_conversion
from media_pipeline.services.job_state_service import STATUS_FIELD_BY_KIND, JobStateRecorder
from media_pipeline.services.synthesis_pipeline import run_synthesis
from media_pipeline.services.transcription_pipeline import run_transcription

logger = logging.getLogger(__name__)

OUTCOME_COMPLETED = 'completed'
OUTCOME_ERROR = 'error'
OUTCOME_STALE = 'dropped_stale'
OUTCOME_INVALID = 'invalid'
OUTCOME_DUPLICATE = 'duplicate'

_EXCESS_FRACTION_RE = re.compile(r'(\.\d{6})\d+')

PIPELINES = {
    JobKind.TRANSCRIPTION: run_transcription,
    JobKind.CONVERSION: run_conversion,
    JobKind.SYNTHESIS: run_synthesis,
}


def now_ms():
    return int(time.time() * 1000)


def decode_push_envelope(envelope):
    """Return the JSON job payload carried by a Pub/Sub push envelope."""
    if not isinstance(envelope, dict):
        raise InvalidJobMessageError('Push body must be a JSON object.')
    message = envelope.get('message')
    if not isinstance(message, dict):
        raise InvalidJobMessageError('Push body has no message.')
    data = message.get('data') or ''
    try:
        payload = json.loads(base64.b64decode(data).decode('utf-8'))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvalidJobMessageError(f'Message data is not base64-encoded JSON ({exc}).') from exc
    if isinstance(payload, dict) and payload.get('timestamp') is None:
        publish_time = str(message.get('publishTime') or '')
        if publish_time:
            payload['timestamp'] = _parse_publish_time_ms(publish_time)
    return payload


def _parse_publish_time_ms(value):
    text = _EXCESS_FRACTION_RE.sub(r'\1', value.replace('Z', '+00:00'))
    try:
        parsed = datetime.datetime.fromisoformat(text)
    except ValueError:
        return None
    return int(parsed.timestamp() * 1000)


def message_age_seconds(message, current_ms):
    if message.timestamp_ms is None:
        return 0.0
    return max(0.0, (current_ms - message.timestamp_ms) / 1000.0)


def is_duplicate_delivery(db, message):
    """True when this exact message already drove the job to a terminal state."""
    if message.timestamp_ms is None:
        return False
    try:
        job_doc = jobs_repo.get_job_doc(db, message.owner_id, message.job_id)
    except Exception as exc:
        log_event(logger, logging.WARNING, 'job_doc_read_failed', job_id=message.job_id, error=str(exc)[:300])
        return False
    status = job_doc.get(STATUS_FIELD_BY_KIND[message.kind]) or {}
    return status.get('status') in JobStatus.TERMINAL and status.get('requestedAt') == message.timestamp_ms


def handle_job_message(payload, *, services, config, now_ms_fn=now_ms, sleep_fn=time.sleep, pipelines=None):
    """Process one delivered job message.

    Returns an outcome string when the message should be acknowledged. Raises
    when the queue should redeliver; the job document is updated first.
    """
    try:
        message = JobMessage.from_payload(payload)
    except InvalidJobMessageError as exc:
        log_event(logger, logging.ERROR, 'job_message_invalid', error=exc.message)
        return OUTCOME_INVALID

    current_ms = now_ms_fn()
    age_seconds = message_age_seconds(message, current_ms)
    if age_seconds > config.max_message_age_seconds:
        log_event(
            logger,
            logging.WARNING,
            'job_dropped_stale',
            job_id=message.job_id,
            kind=message.kind,
            age_seconds=round(age_seconds, 1),
            max_age_seconds=config.max_message_age_seconds,
        )
        return OUTCOME_STALE

    if is_duplicate_delivery(services.db, message):
        log_event(logger, logging.INFO, 'job_duplicate_delivery', job_id=message.job_id, kind=message.kind)
        return OUTCOME_DUPLICATE

    requested_at = message.timestamp_ms if message.timestamp_ms is not None else current_ms
    recorder = JobStateRecorder(
        services.db,
        message.owner_id,
        message.job_id,
        message.kind,
        requested_at=requested_at,
        max_error_chars=config.status_error_max_chars,
        logger=logger,
    )
    paths = JobPaths(message.owner_id, message.job_id, run_id=requested_at)
    pipeline = (pipelines or PIPELINES)[message.kind]
    work_dir = tempfile.mkdtemp(prefix=f'media_pipeline_{message.job_id}_')
    started = time.time()
    log_event(logger, logging.INFO, 'job_started', job_id=message.job_id, kind=message.kind)
    try:
        result = pipeline(
            message,
            services=services,
            config=config,
            recorder=recorder,
            paths=paths,
            work_dir=work_dir,
            sleep_fn=sleep_fn,
        )
    except Exception as exc:
        error_message = getattr(exc, 'message', '') or str(exc) or exc.__class__.__name__
        sentry_sdk.capture_exception(exc)
        retry_deadline = config.max_message_age_seconds - config.retry_final_window_seconds
        failed_age = message_age_seconds(message, now_ms_fn())
        if is_retryable(exc) and failed_age >= retry_deadline:
            log_event(
                logger,
                logging.WARNING,
                'job_retry_budget_exhausted',
                job_id=message.job_id,
                kind=message.kind,
                age_seconds=round(failed_age, 1),
                max_age_seconds=config.max_message_age_seconds,
            )
        elif is_retryable(exc):
            recorder.set_retrying(error_message)
            log_event(
                logger,
                logging.ERROR,
                'job_retry_requested',
                job_id=message.job_id,
                kind=message.kind,
                error=error_message[:300],
            )
            raise
        recorder.set_error(error_message)
        log_event(
            logger,
            logging.ERROR,
            'job_failed',
            job_id=message.job_id,
            kind=message.kind,
            code=getattr(exc, 'code', ''),
            error=error_message[:300],
            duration_seconds=round(time.time() - started, 2),
        )
        return OUTCOME_ERROR
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)

    log_event(
        logger,
        logging.INFO,
        'job_completed',
        job_id=message.job_id,
        kind=message.kind,
        result_ref=(result or {}).get('resultRef', ''),
        duration_seconds=round(time.time() - started, 2),
    )
    return OUTCOME_COMPLETED
