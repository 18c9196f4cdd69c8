"""Chunk planning for inputs that exceed a single external call's limit."""

import math
import os
import re

from media_pipeline.errors import ChunkSizeLimitError
from media_pipeline.models import Chunk, ChunkUnit


def minimum_chunk_count(total_size, hard_limit, margin_factor):
    """Smallest chunk count keeping every chunk under ``hard_limit * margin_factor``."""
    if hard_limit <= 0 or margin_factor <= 0:
        raise ValueError('hard_limit and margin_factor must be positive.')
    if total_size <= 0:
        return 1
    return max(1, math.ceil(total_size / (hard_limit * margin_factor)))


def plan_span_chunks(total, chunk_length, overlap, *, unit=ChunkUnit.SECONDS, total_bytes=0):
    """Lay out overlapping chunks of ``chunk_length`` across ``[0, total)``.

    Chunk ``i`` starts at ``i * (chunk_length - overlap)`` and the last chunk is
    clamped to ``total``. Planning stops once a chunk reaches the end, so the
    regions outside the overlaps tile the input exactly.
    """
    if total <= 0:
        return []
    if chunk_length >= total:
        return [Chunk(index=0, start=0, end=total, overlap_with_previous=0, size_bytes=int(total_bytes), unit=unit)]
    effective = chunk_length - overlap
    if effective <= 0:
        raise ValueError(f'Chunk length {chunk_length} must exceed overlap {overlap}.')

    count = math.ceil(total / effective)
    chunks = []
    previous_end = 0
    for index in range(count):
        start = index * effective
        if index > 0 and previous_end >= total:
            break
        end = min(start + chunk_length, total)
        overlap_with_previous = max(0, previous_end - start) if index > 0 else 0
        size_bytes = int(round(total_bytes * (end - start) / total)) if total_bytes else 0
        chunks.append(Chunk(
            index=index,
            start=start,
            end=end,
            overlap_with_previous=overlap_with_previous,
            size_bytes=size_bytes,
            unit=unit,
        ))
        previous_end = end
    return chunks


def plan_audio_chunks(total_bytes, duration_seconds, hard_limit, margin_factor, overlap_seconds):
    min_count = minimum_chunk_count(total_bytes, hard_limit, margin_factor)
    if min_count <= 1:
        return [Chunk(
            index=0, start=0, end=duration_seconds, overlap_with_previous=0,
            size_bytes=int(total_bytes), unit=ChunkUnit.SECONDS,
        )]
    chunk_length = duration_seconds / min_count
    # Short chunks cap the overlap at half their length so the stride stays positive.
    overlap = min(overlap_seconds, chunk_length / 2)
    return plan_span_chunks(
        duration_seconds,
        chunk_length,
        overlap,
        unit=ChunkUnit.SECONDS,
        total_bytes=total_bytes,
    )


def plan_text_chunks(text_length, max_chars, overlap_chars):
    return plan_span_chunks(text_length, max_chars, overlap_chars, unit=ChunkUnit.CHARS)


def plan_page_chunks(page_count, pages_per_chunk):
    if pages_per_chunk <= 0:
        raise ValueError('pages_per_chunk must be positive.')
    chunks = []
    for index, start in enumerate(range(0, max(0, page_count), pages_per_chunk)):
        end = min(start + pages_per_chunk, page_count)
        chunks.append(Chunk(index=index, start=start, end=end, unit=ChunkUnit.PAGES))
    return chunks


_PARAGRAPH_BREAK_RE = re.compile(r'\n\s*\n')


def plan_paragraph_chunks(text, max_chars):
    """Split ``text`` at blank-line breaks into contiguous character ranges.

    A range grows paragraph by paragraph while it stays within ``max_chars``;
    a single paragraph longer than the limit becomes its own range.
    """
    text = text or ''
    if not text:
        return []
    boundaries = [match.end() for match in _PARAGRAPH_BREAK_RE.finditer(text)]
    boundaries.append(len(text))

    chunks = []
    start = 0
    end = 0
    for boundary in boundaries:
        if boundary <= start:
            continue
        if end > start and boundary - start > max_chars:
            chunks.append(Chunk(index=len(chunks), start=start, end=end, unit=ChunkUnit.CHARS))
            start = end
        end = boundary
    if end > start:
        chunks.append(Chunk(index=len(chunks), start=start, end=end, unit=ChunkUnit.CHARS))
    return chunks


def non_overlap_ranges(chunks):
    """Return each chunk's range with the overlap shared with its predecessor removed."""
    ranges = []
    for chunk in chunks:
        ranges.append((chunk.start + chunk.overlap_with_previous, chunk.end))
    return ranges


def slice_text(text, chunk):
    return text[int(chunk.start):int(chunk.end)]


def ensure_chunk_within_limit(path, chunk, *, hard_limit, reencode_fn, size_fn, logger):
    """Accept a materialized chunk file, re-encoding it once if it is too large.

    Returns the path to use for the external call. Raises ChunkSizeLimitError
    when the chunk cannot be brought under the hard limit.
    """
    size = size_fn(path)
    if 0 < size <= hard_limit:
        return path

    logger.warning(
        'Chunk %s is %s bytes, above the %s byte limit; re-encoding.',
        chunk.index, size, hard_limit,
    )
    base, _ext = os.path.splitext(path)
    reencoded_path = f'{base}_reencoded.mp3'
    try:
        reencode_fn(path, reencoded_path)
    except Exception as exc:
        raise ChunkSizeLimitError(
            f'Chunk {chunk.index + 1} exceeds the {hard_limit} byte limit and could not be re-encoded ({str(exc)[:160]}).'
        ) from exc

    reencoded_size = size_fn(reencoded_path)
    if reencoded_size <= 0 or reencoded_size > hard_limit:
        raise ChunkSizeLimitError(
            f'Chunk {chunk.index + 1} is still {reencoded_size} bytes after re-encoding; the limit is {hard_limit} bytes.'
        )
    try:
        os.remove(path)
    except OSError:
        logger.warning('Could not delete oversize chunk file %s', path)
    return reencoded_path
