"""Job, chunk and operation records shared by the pipeline services."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from .errors import InvalidJobMessageError


class JobKind:
    TRANSCRIPTION = 'transcription'
    SYNTHESIS = 'synthesis'
    CONVERSION = 'conversion'

    ALL = (TRANSCRIPTION, SYNTHESIS, CONVERSION)


class JobStatus:
    QUEUED = 'queued'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    ERROR = 'error'

    TERMINAL = (COMPLETED, ERROR)
    RANK = {QUEUED: 0, PROCESSING: 1, COMPLETED: 2, ERROR: 2}


class ChunkUnit:
    SECONDS = 'seconds'
    CHARS = 'chars'
    PAGES = 'pages'


@dataclass(frozen=True)
class JobMessage:
    job_id: str
    owner_id: str
    input_ref: str
    kind: str
    language: str = ''
    size_hint: Optional[int] = None
    timestamp_ms: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'JobMessage':
        if not isinstance(payload, dict):
            raise InvalidJobMessageError('Job message must be a JSON object.')
        job_id = str(payload.get('jobId') or '').strip()
        owner_id = str(payload.get('ownerId') or '').strip()
        kind = str(payload.get('kind') or '').strip().lower()
        if not job_id or not owner_id:
            raise InvalidJobMessageError('Job message requires jobId and ownerId.')
        if kind not in JobKind.ALL:
            raise InvalidJobMessageError(f'Unsupported job kind: {kind or "<empty>"}')
        input_ref = str(payload.get('inputRef') or '').strip()
        if not input_ref and kind != JobKind.SYNTHESIS:
            raise InvalidJobMessageError('Job message requires inputRef.')
        return cls(
            job_id=job_id,
            owner_id=owner_id,
            input_ref=input_ref,
            kind=kind,
            language=str(payload.get('language') or '').strip(),
            size_hint=_optional_int(payload.get('sizeHint')),
            timestamp_ms=_optional_int(payload.get('timestamp')),
        )


def _optional_int(value):
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Chunk:
    index: int
    start: float
    end: float
    overlap_with_previous: float = 0
    size_bytes: int = 0
    unit: str = ChunkUnit.SECONDS

    @property
    def length(self):
        return self.end - self.start


@dataclass(frozen=True)
class ChunkResult:
    chunk_index: int
    payload: Any = None
    ok: bool = True
    error_note: str = ''


@dataclass(frozen=True)
class MergedArtifact:
    content: str = ''
    paths: List[str] = field(default_factory=list)
    source_chunk_count: int = 0
    failed_chunk_count: int = 0
    total_size: int = 0


@dataclass(frozen=True)
class OperationSnapshot:
    done: bool
    progress_percent: float = 0.0
    error: str = ''


@dataclass
class Operation:
    external_handle: Any
    name: str
    output_path: str
    started_at: Any
    done: bool = False
    progress_percent: float = 0.0
    discovered_paths: Set[str] = field(default_factory=set)
    preserved: Dict[str, str] = field(default_factory=dict)
    terminal_error: str = ''
    state: str = 'pending'
    attempts: int = 0
