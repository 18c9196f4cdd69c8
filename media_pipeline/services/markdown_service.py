"""Markdown clean-up for converted documents and their speech-ready copy."""

import re

_CODE_BLOCK_START_RE = re.compile(r'^```(?:markdown|md|xml)?[ \t]*\n')
_CODE_BLOCK_END_RE = re.compile(r'\n```[ \t]*$')
_HEADING_RE = re.compile(r'^(#{1,6}[ \t]+)(.+?)([ \t]*)$', re.MULTILINE)
_HTML_COMMENT_RE = re.compile(r'<!--[\s\S]*?-->')
_IMG_TAG_RE = re.compile(r'\{\{img\}\}(.*?)\{\{/img\}\}', re.DOTALL)
_MARKDOWN_IMAGE_RE = re.compile(r'!\[([^\]]*)\]\([^)]*\)')
_EXTRA_NEWLINES_RE = re.compile(r'\n{3,}')


def number_repeated_headings(markdown):
    """Suffix consecutive repeats of the same heading text with (2), (3), ..."""
    previous_text = None
    count = 0

    def _replace(match):
        nonlocal previous_text, count
        prefix, text, suffix = match.group(1), match.group(2), match.group(3)
        if text == previous_text:
            count += 1
            return f'{prefix}{text} ({count}){suffix}'
        previous_text = text
        count = 1
        return match.group(0)

    return _HEADING_RE.sub(_replace, markdown)


def clean_markdown(markdown):
    markdown = str(markdown or '')
    if markdown.startswith('```'):
        markdown = _CODE_BLOCK_START_RE.sub('', markdown)
        markdown = _CODE_BLOCK_END_RE.sub('', markdown)
    markdown = markdown.replace('<br/>', '').replace('<br>', '')
    return number_repeated_headings(markdown)


def create_clean_markdown_for_tts(markdown):
    text = _HTML_COMMENT_RE.sub(' ', str(markdown or ''))
    text = _IMG_TAG_RE.sub(lambda match: f'\n[Figure: {match.group(1).strip()}]\n', text)
    text = _MARKDOWN_IMAGE_RE.sub(lambda match: f'\n[Figure: {match.group(1).strip()}]\n', text)
    return _EXTRA_NEWLINES_RE.sub('\n\n', text)
