import pytest

from media_pipeline.services import prompt_registry


def _contains_any(text, needles):
    lower = text.lower()
    return any(needle in lower for needle in needles)


def test_core_prompts_are_english_and_language_controlled():
    dutch_markers = [
        "instructies:",
        "regels:",
        "schrijf",
        "maak een nauwkeurig",
    ]

    for record in prompt_registry.PROMPT_RECORDS:
        assert "{output_language}" in record.template
        assert not _contains_any(record.template, dutch_markers)


def test_prompts_format_with_their_placeholders():
    pdf_prompt = prompt_registry.PROMPT_PDF_TO_MARKDOWN.format(
        first_page=1, last_page=5, output_language="English"
    )
    ssml_prompt = prompt_registry.PROMPT_MARKDOWN_TO_SSML.format(output_language="Italian", markdown="# Hi")
    enhance_prompt = prompt_registry.PROMPT_TRANSCRIPT_ENHANCEMENT.format(
        output_language="Dutch", transcript="raw text"
    )

    assert "pages 1 to 5" in pdf_prompt
    assert "{{img}}short description{{/img}}" in pdf_prompt
    assert ssml_prompt.endswith("# Hi")
    assert enhance_prompt.endswith("raw text")


def test_output_language_mapping_stays_stable():
    assert prompt_registry.parse_output_language("english") == "English"
    assert prompt_registry.parse_output_language("it") == "Italian"
    assert prompt_registry.parse_output_language("en-US") == "English"
    assert prompt_registry.parse_output_language("") == "English"
    assert prompt_registry.parse_output_language("", "Italian") == "Italian"


def test_prompt_records_cover_every_template():
    assert {record.prompt_id for record in prompt_registry.PROMPT_RECORDS} == {
        "audio_transcription",
        "transcript_enhancement",
        "pdf_to_markdown",
        "markdown_to_ssml",
    }
    with pytest.raises(KeyError):
        prompt_registry.get_prompt_template("missing")
