"""Sequential per-chunk transformation with contained failures."""

import logging

from media_pipeline.errors import is_fail_fast
from media_pipeline.logging_config import log_event
from media_pipeline.models import ChunkResult

logger = logging.getLogger(__name__)

MAX_ERROR_NOTE_CHARS = 300


class ChunkTransformRun:
    """One pass of ``transform_fn`` over ``chunks``, strictly in index order.

    Iterating the run processes the next chunk and yields its result, so the
    caller can read ``snapshot()`` between chunks to report progress. Results
    are kept in a fixed-length list indexed by chunk index.
    """

    def __init__(self, chunks, transform_fn, *, label='chunk'):
        self.chunks = list(chunks)
        self.transform_fn = transform_fn
        self.label = label
        self.results = [None] * len(self.chunks)
        self.done = 0
        self.failed = 0

    def __iter__(self):
        for position, chunk in enumerate(self.chunks):
            if chunk.index != position:
                raise ValueError(f'Chunk index {chunk.index} does not match position {position}.')
            result = self._transform_one(chunk)
            self.results[chunk.index] = result
            self.done += 1
            if not result.ok:
                self.failed += 1
            yield result

    def _transform_one(self, chunk):
        try:
            payload = self.transform_fn(chunk)
        except Exception as exc:
            if is_fail_fast(exc):
                raise
            note = str(exc)[:MAX_ERROR_NOTE_CHARS] or exc.__class__.__name__
            log_event(
                logger,
                logging.WARNING,
                'chunk_failed',
                label=self.label,
                chunk_index=chunk.index,
                chunk_count=len(self.chunks),
                error=note,
            )
            return ChunkResult(chunk_index=chunk.index, payload=None, ok=False, error_note=note)
        return ChunkResult(chunk_index=chunk.index, payload=payload, ok=True)

    def snapshot(self):
        total = len(self.chunks)
        percent = 100 if total == 0 else int((self.done * 100) / total)
        return {
            'done': self.done,
            'total': total,
            'failed': self.failed,
            'percent': percent,
        }

    def run(self):
        for _result in self:
            pass
        return list(self.results)


def transform_chunks(chunks, transform_fn, *, label='chunk'):
    return ChunkTransformRun(chunks, transform_fn, label=label).run()


def scale_percent(fraction_percent, start, end):
    """Map a 0-100 sub-progress value into the ``[start, end]`` job range."""
    bounded = min(max(float(fraction_percent or 0), 0.0), 100.0)
    return int(start + (end - start) * bounded / 100.0)
