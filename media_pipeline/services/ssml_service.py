"""SSML clean-up, repair and assembly for long-audio synthesis."""

import logging
import re
import xml.etree.ElementTree as ElementTree

from media_pipeline.services.overlap_merger import count_failed

logger = logging.getLogger(__name__)

BALANCED_TAGS = ('p', 's', 'emphasis', 'say-as', 'prosody')

_BALANCED_TAG_RE = re.compile(r'<(/?)(%s)(\s[^>]*)?>' % '|'.join(BALANCED_TAGS), re.IGNORECASE)
_TRAILING_SPEAK_CLOSE_RE = re.compile(r'</speak\s*>\s*$', re.IGNORECASE)

_FENCE_START_RE = re.compile(r'^\s*```(?:xml|ssml)?\.?\s*', re.IGNORECASE)
_FENCE_END_RE = re.compile(r'\s*```\s*$')
_SPEAK_OPEN_RE = re.compile(r'<speak\b[^>]*>', re.IGNORECASE)
_SPEAK_CLOSE_RE = re.compile(r'</speak\s*>', re.IGNORECASE)
_XMLNS_RE = re.compile(r'\s+xmlns(?::\w+)?=["\'][^"\']*["\']')
_XML_LANG_RE = re.compile(r'\s+xml:lang=["\'][^"\']*["\']')
_XML_DECLARATION_RE = re.compile(r'<\?xml[^>]*\?>\s*', re.IGNORECASE)
_BARE_AMPERSAND_RE = re.compile(r'&(?!(?:amp|lt|gt|quot|apos|#\d+|#x[0-9a-fA-F]+);)')


def is_well_formed(ssml):
    try:
        ElementTree.fromstring(ssml)
    except ElementTree.ParseError:
        return False
    return True


def inner_speak_content(ssml):
    text = _FENCE_END_RE.sub('', _FENCE_START_RE.sub('', str(ssml or '').strip()))
    text = _XML_DECLARATION_RE.sub('', text)
    text = _SPEAK_OPEN_RE.sub('', text)
    text = _SPEAK_CLOSE_RE.sub('', text)
    return text.strip()


def auto_fix_ssml(ssml):
    """Best-effort balancing of the tags models most often leave unclosed.

    Unclosed tags are closed innermost first, a closing tag for an outer
    element also closes everything opened inside it, and stray closing tags
    are dropped.
    """
    pieces = []
    stack = []
    position = 0
    for match in _BALANCED_TAG_RE.finditer(ssml):
        pieces.append(ssml[position:match.start()])
        position = match.end()
        is_closing, tag = bool(match.group(1)), match.group(2).lower()
        if match.group(0).endswith('/>'):
            pieces.append(match.group(0))
        elif not is_closing:
            stack.append(tag)
            pieces.append(match.group(0))
        elif tag in stack:
            while stack:
                open_tag = stack.pop()
                pieces.append(f'</{open_tag}>')
                if open_tag == tag:
                    break
    tail = ssml[position:]
    closing = ''.join(f'</{tag}>' for tag in reversed(stack))
    if closing:
        if _TRAILING_SPEAK_CLOSE_RE.search(tail):
            tail = _TRAILING_SPEAK_CLOSE_RE.sub(lambda _m: closing + '</speak>', tail)
        else:
            tail += closing
    pieces.append(tail)
    return ''.join(pieces)


def clean_ssml_output(ssml):
    """Normalize model output into a single ``<speak>`` document."""
    inner = inner_speak_content(ssml)
    inner = re.sub(r'<\s+', '<', inner)
    inner = re.sub(r'\s+>', '>', inner)
    inner = re.sub(r'<p\s*/>', '<p></p>', inner, flags=re.IGNORECASE)
    inner = re.sub(r'<s\s*/>', '<s></s>', inner, flags=re.IGNORECASE)
    inner = _BARE_AMPERSAND_RE.sub('&amp;', inner)
    cleaned = f'<speak>{inner}</speak>'
    if not is_well_formed(cleaned):
        cleaned = auto_fix_ssml(cleaned)
        if not is_well_formed(cleaned):
            logger.warning('SSML is still not well-formed after auto-fix; using it as is.')
    return cleaned


def prepare_ssml_for_request(ssml):
    """Strip namespace and language attributes the synthesis API rejects."""
    text = _XMLNS_RE.sub('', str(ssml or ''))
    text = _XML_LANG_RE.sub('', text)
    return _SPEAK_OPEN_RE.sub('<speak>', text)


def failure_comment(chunk_index):
    return f'<!-- Failed to process chunk {chunk_index + 1} -->'


def combine_ssml_chunks(results):
    """Join per-chunk SSML in order under one ``<speak>`` root.

    A failed chunk leaves an XML comment in its place so the gap is visible in
    the artifact without being spoken.
    """
    results = list(results)
    parts = []
    for position, result in enumerate(results):
        if result is None or not result.ok:
            index = result.chunk_index if result is not None else position
            parts.append(failure_comment(index))
            continue
        parts.append(inner_speak_content(result.payload))
    if count_failed(results):
        logger.warning('Combined SSML has %s failed chunk(s) out of %s', count_failed(results), len(results))
    return clean_ssml_output('\n'.join(part for part in parts if part))
