"""Reassemble ordered chunk results into one artifact."""

import logging
import re

from media_pipeline.models import ChunkResult, MergedArtifact

logger = logging.getLogger(__name__)

FAILED_CHUNK_MARKER = '[Failed to process chunk {number}]'
SECTION_SEPARATOR = '\n\n---\n\n'

_TOKEN_RE = re.compile(r'\S+')


def _tokenize(text):
    return [(match.group(0), match.start()) for match in _TOKEN_RE.finditer(text or '')]


def common_token_pairs(left_tokens, right_tokens):
    """Token-level LCS as ``(left_index, right_index)`` pairs in ascending order."""
    n = len(left_tokens)
    m = len(right_tokens)
    if n == 0 or m == 0:
        return []
    table = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(1, n + 1):
        left_word = left_tokens[i - 1]
        row = table[i]
        prev_row = table[i - 1]
        for j in range(1, m + 1):
            if left_word == right_tokens[j - 1]:
                row[j] = prev_row[j - 1] + 1
            else:
                row[j] = row[j - 1] if row[j - 1] >= prev_row[j] else prev_row[j]

    i, j = n, m
    pairs = []
    while i > 0 and j > 0:
        if left_tokens[i - 1] == right_tokens[j - 1]:
            pairs.append((i - 1, j - 1))
            i -= 1
            j -= 1
        elif table[i - 1][j] >= table[i][j - 1]:
            i -= 1
        else:
            j -= 1
    pairs.reverse()
    return pairs


def _trailing_run_start(pairs):
    # First pair of the last block that is consecutive in both texts.
    position = len(pairs) - 1
    while position > 0:
        left, right = pairs[position]
        previous_left, previous_right = pairs[position - 1]
        if left - previous_left != 1 or right - previous_right != 1:
            break
        position -= 1
    return pairs[position]


def find_token_overlap(tail_text, head_text, *, min_tokens=3, min_density=0.5):
    """Locate the span shared by the end of ``tail_text`` and the start of ``head_text``.

    Returns ``(tail_char_offset, head_char_offset, token_count)`` or ``None`` when
    the common subsequence is too short or too scattered to be a real overlap.
    The offsets mark where the last unbroken block of the common run begins, so
    tail words sitting between an early stray match and that block survive the
    splice.
    """
    tail_tokens = _tokenize(tail_text)
    head_tokens = _tokenize(head_text)
    pairs = common_token_pairs(
        [token for token, _offset in tail_tokens],
        [token for token, _offset in head_tokens],
    )
    length = len(pairs)
    if length <= min_tokens:
        return None
    (tail_first, head_first), (tail_last, head_last) = pairs[0], pairs[-1]
    tail_density = length / (tail_last - tail_first + 1)
    head_density = length / (head_last - head_first + 1)
    if tail_density < min_density or head_density < min_density:
        return None
    tail_anchor, head_anchor = _trailing_run_start(pairs)
    return tail_tokens[tail_anchor][1], head_tokens[head_anchor][1], length



def failure_marker(chunk_index, template=FAILED_CHUNK_MARKER):
    return template.format(number=chunk_index + 1)


def count_failed(results):
    return sum(1 for result in results if result is None or not result.ok)


def all_failed(results):
    return bool(results) and count_failed(results) == len(results)


def _normalize(results):
    return [
        result if result is not None else ChunkResult(chunk_index=position, ok=False, error_note='missing result')
        for position, result in enumerate(results)
    ]


def _result_text(result, template):
    if not result.ok:
        return failure_marker(result.chunk_index, template), False
    return str(result.payload or ''), True


def merge_text_results(results, *, window_chars=1000, min_tokens=3, min_density=0.5,
                       marker_template=FAILED_CHUNK_MARKER):
    """Join overlapping text chunks, keeping each overlapped span exactly once."""
    results = _normalize(results)
    failed = count_failed(results)
    if len(results) == 1:
        content, _ok = _result_text(results[0], marker_template)
        return MergedArtifact(content=content, source_chunk_count=1, failed_chunk_count=failed, total_size=len(content))

    merged = ''
    previous_ok = False
    for result in results:
        text, ok = _result_text(result, marker_template)
        if not merged:
            merged = text
            previous_ok = ok
            continue
        if not text:
            continue

        overlap = None
        if ok and previous_ok:
            tail_offset = max(0, len(merged) - window_chars)
            overlap = find_token_overlap(
                merged[tail_offset:],
                text[:window_chars],
                min_tokens=min_tokens,
                min_density=min_density,
            )
        if overlap is not None:
            tail_char, head_char, token_count = overlap
            logger.debug('Chunk %s overlaps previous text by %s tokens', result.chunk_index, token_count)
            merged = merged[:tail_offset + tail_char] + text[head_char:]
        else:
            merged = merged.rstrip() + ' ' + text.lstrip()
        previous_ok = ok

    return MergedArtifact(
        content=merged,
        source_chunk_count=len(results),
        failed_chunk_count=failed,
        total_size=len(merged),
    )


def page_marker(chunk):
    return f'<!-- Page {int(chunk.start) + 1} - Page {int(chunk.end)} -->'


def merge_page_results(results, chunks, *, marker_template=FAILED_CHUNK_MARKER):
    """Concatenate page-range results in page order with a range marker before each."""
    results = _normalize(results)
    failed = count_failed(results)
    if len(results) == 1:
        content, _ok = _result_text(results[0], marker_template)
        return MergedArtifact(content=content, source_chunk_count=1, failed_chunk_count=failed, total_size=len(content))

    chunk_by_index = {chunk.index: chunk for chunk in chunks}
    ordered = sorted(results, key=lambda result: chunk_by_index[result.chunk_index].start)
    parts = []
    for result in ordered:
        text, _ok = _result_text(result, marker_template)
        parts.append(f'\n\n{page_marker(chunk_by_index[result.chunk_index])}\n\n{text.strip()}')
    content = ''.join(parts).strip()
    return MergedArtifact(
        content=content,
        source_chunk_count=len(results),
        failed_chunk_count=failed,
        total_size=len(content),
    )


def merge_sections(results, *, separator=SECTION_SEPARATOR, marker_template=FAILED_CHUNK_MARKER):
    results = _normalize(results)
    failed = count_failed(results)
    if len(results) == 1:
        content, _ok = _result_text(results[0], marker_template)
        return MergedArtifact(content=content, source_chunk_count=1, failed_chunk_count=failed, total_size=len(content))
    parts = [_result_text(result, marker_template)[0].strip() for result in results]
    content = separator.join(parts)
    return MergedArtifact(
        content=content,
        source_chunk_count=len(results),
        failed_chunk_count=failed,
        total_size=len(content),
    )
