"""Prompt templates for the media pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List


PROMPT_AUDIO_TRANSCRIPTION = """Create an accurate and clean transcript of the attached audio file.
Instructions:
1. Transcribe the spoken text as literally as possible.
2. Remove filler words and hesitations (such as "uh", "um", "you know") to improve readability while preserving the full meaning. Do not rewrite sentence structure.
3. Do not include timestamps or speaker labels.
4. Use paragraphs to split up longer speaking turns.
5. The recording may start or end mid-sentence; transcribe those partial sentences as heard.
6. Write the final output fully in this language: {output_language}."""

PROMPT_TRANSCRIPT_ENHANCEMENT = """You turn raw transcripts of university lectures into well organized study notes that stay faithful to the content.

Rules:
- Keep ALL technical and scientific content. Organize and clean the text, do not summarize it. Keep examples that help the student understand the topic.
- If the text contains no technical or scientific content, return an empty string. Do not write apologies or explanations.
- Always remove references to the lecturer and their schedule, non-technical introductions ("today we will talk about..."), time references and lecture logistics.
- Start directly with the topic title and the technical content.
- Fix grammar, spelling and conceptual errors caused by automatic transcription.
- Do not add information that is not in the transcript. Mark incomplete or ambiguous passages with [??].
- Organize the text into clear paragraphs with headings: # for main sections, ## for subsections. Highlight key concepts in **bold**, use *italics* for specialist terminology and bullet lists for related items.
- Write math inline as $...$ and display formulas as $$...$$.
- This text may be one section of a longer transcript; do not add a conclusion or a summary.
- Write the notes fully in this language: {output_language}.

Transcript:
{transcript}"""

PROMPT_PDF_TO_MARKDOWN = """Convert this PDF excerpt (pages {first_page} to {last_page} of the original document) into well-structured markdown for student study material, written in {output_language}.

Transformation approach:
1. Produce a readable, linear study document. Do not try to preserve the original slide or page layout.
2. Reorganize multi-column layouts and text boxes into a logical reading order.
3. Format each slide or page title as a level 2 heading (##).
4. Keep the content hierarchy: titles, subtitles, bullet points, details.
5. Describe images, diagrams and charts briefly as {{{{img}}}}short description{{{{/img}}}}. Recreate equations shown in images with LaTeX.
6. Convert tables to markdown tables.
7. Ignore page numbers, footers and decorative elements.
8. Use $...$ for inline formulas and $$...$$ for display formulas.

Return only the markdown, without code fences or commentary."""

PROMPT_MARKDOWN_TO_SSML = """Convert the following markdown study material into SSML for a text-to-speech engine reading in {output_language}.

Rules:
- Wrap the whole output in a single <speak> element.
- Use <p> and <s> for paragraphs and sentences, and <break time="..."/> between sections.
- Read headings with <emphasis level="moderate"> followed by a short break.
- Spell out formulas in words instead of reading LaTeX syntax. Read [Figure: ...] descriptions as "Figure: ..." sentences.
- Drop markdown syntax characters, links and HTML comments.
- Use only these tags: speak, p, s, break, emphasis, prosody, say-as, sub.
- Return only the SSML, without code fences or commentary.

Markdown:
{markdown}"""


@dataclass(frozen=True)
class PromptRecord:
    prompt_id: str
    name: str
    template: str


PROMPT_RECORDS: List[PromptRecord] = [
    PromptRecord("audio_transcription", "Audio chunk transcription", PROMPT_AUDIO_TRANSCRIPTION),
    PromptRecord("transcript_enhancement", "Transcript section enhancement", PROMPT_TRANSCRIPT_ENHANCEMENT),
    PromptRecord("pdf_to_markdown", "PDF page range to markdown", PROMPT_PDF_TO_MARKDOWN),
    PromptRecord("markdown_to_ssml", "Markdown chunk to SSML", PROMPT_MARKDOWN_TO_SSML),
]


OUTPUT_LANGUAGE_MAP = {
    'en': 'English',
    'english': 'English',
    'it': 'Italian',
    'italian': 'Italian',
    'nl': 'Dutch',
    'dutch': 'Dutch',
    'es': 'Spanish',
    'spanish': 'Spanish',
    'fr': 'French',
    'french': 'French',
    'de': 'German',
    'german': 'German',
}
DEFAULT_OUTPUT_LANGUAGE = 'English'


def parse_output_language(value, default=DEFAULT_OUTPUT_LANGUAGE):
    raw = str(value or '').strip()
    if not raw:
        return default
    base = raw.lower().replace('_', '-').split('-')[0]
    return OUTPUT_LANGUAGE_MAP.get(raw.lower()) or OUTPUT_LANGUAGE_MAP.get(base) or raw


def get_prompt_template(prompt_id: str) -> str:
    safe_id = str(prompt_id or "").strip()
    for record in PROMPT_RECORDS:
        if record.prompt_id == safe_id:
            return record.template
    raise KeyError(f"Unknown prompt id: {safe_id}")
