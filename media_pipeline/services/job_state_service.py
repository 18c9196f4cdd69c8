"""Best-effort job status writes for the owner's document."""

import logging
import time

from media_pipeline.logging_config import log_event
from media_pipeline.models import JobKind, JobStatus
from media_pipeline.repositories import jobs_repo

STATUS_FIELD_BY_KIND = {
    JobKind.TRANSCRIPTION: 'smartStructure',
    JobKind.CONVERSION: 'smartStructure',
    JobKind.SYNTHESIS: 'listeningMode',
}


def truncate_error_message(message, max_chars=200):
    text = str(message or '').strip() or 'Unknown error'
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + '...'


class JobStateRecorder:
    """Writes status, stage and progress for one job.

    Every write is a merge into the job's status map. Write failures are logged
    and swallowed so they never mask the job's own outcome, and a status never
    moves backwards once the job reached a terminal state.
    """

    def __init__(self, db, owner_id, job_id, kind, *, requested_at=None, max_error_chars=200,
                 logger=None, clock=time.time):
        self.db = db
        self.owner_id = owner_id
        self.job_id = job_id
        self.kind = kind
        self.field_name = STATUS_FIELD_BY_KIND.get(kind, 'status')
        self.requested_at = requested_at
        self.max_error_chars = max_error_chars
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.status = None
        self.percent = 0

    def _can_move_to(self, status):
        if self.status is None:
            return True
        if self.status in JobStatus.TERMINAL:
            return False
        return JobStatus.RANK[status] >= JobStatus.RANK[self.status]

    def _write(self, status, fields):
        if not self._can_move_to(status):
            log_event(
                self.logger,
                logging.WARNING,
                'job_status_regression_refused',
                job_id=self.job_id,
                current=self.status,
                requested=status,
            )
            return False
        payload = {
            'status': status,
            'kind': self.kind,
            'updatedAt': self.clock(),
        }
        if self.requested_at is not None:
            payload['requestedAt'] = self.requested_at
        payload.update(fields)
        self.status = status
        try:
            jobs_repo.merge_job_status(self.db, self.owner_id, self.job_id, self.field_name, payload)
        except Exception as exc:
            log_event(
                self.logger,
                logging.WARNING,
                'job_status_write_failed',
                job_id=self.job_id,
                status=status,
                error=str(exc)[:300],
            )
            return False
        return True

    def record_fields(self, payload):
        """Best-effort merge of fields outside the status map (secondary artifacts)."""
        try:
            jobs_repo.merge_job_fields(self.db, self.owner_id, self.job_id, payload)
        except Exception as exc:
            log_event(
                self.logger,
                logging.WARNING,
                'job_fields_write_failed',
                job_id=self.job_id,
                fields=sorted(payload.keys()),
                error=str(exc)[:300],
            )
            return False
        return True

    def set_processing(self, stage, percent=None):
        if percent is not None:
            self.percent = int(percent)
        return self._write(JobStatus.PROCESSING, {'stage': stage, 'percent': self.percent, 'error': None})

    def set_progress(self, percent, stage=None):
        self.percent = max(self.percent, min(int(percent), 99))
        fields = {'percent': self.percent}
        if stage:
            fields['stage'] = stage
        return self._write(JobStatus.PROCESSING, fields)

    def set_retrying(self, message):
        return self._write(JobStatus.PROCESSING, {
            'stage': 'retrying',
            'lastError': truncate_error_message(message, self.max_error_chars),
        })

    def set_completed(self, result_ref, **extra):
        self.percent = 100
        fields = {
            'stage': 'completed',
            'percent': 100,
            'resultRef': result_ref,
            'error': None,
            'processedAt': self.clock(),
        }
        fields.update(extra)
        return self._write(JobStatus.COMPLETED, fields)

    def set_error(self, message):
        return self._write(JobStatus.ERROR, {
            'stage': 'error',
            'error': truncate_error_message(message, self.max_error_chars),
            'processedAt': self.clock(),
        })
