"""Gemini calls used as per-chunk transforms."""

import re
import time

from google.genai import types

from media_pipeline.services.prompt_registry import get_prompt_template, parse_output_language

MAX_OUTPUT_TOKENS = 65536
_CODE_FENCE_RE = re.compile(r'^\s*```[a-zA-Z]*\s*\n?|\n?\s*```\s*$')


def strip_code_fences(text):
    return _CODE_FENCE_RE.sub('', str(text or '')).strip()


def response_text(response):
    return (getattr(response, 'text', '') or '').strip()


def wait_for_file_processing(client, uploaded_file, *, max_wait_seconds=300, wait_interval=5, sleep_fn=time.sleep):
    total_waited = 0
    while total_waited < max_wait_seconds:
        file_info = client.files.get(name=uploaded_file.name)
        state = getattr(getattr(file_info, 'state', None), 'name', '')
        if state == 'ACTIVE':
            return file_info
        if state == 'FAILED':
            raise RuntimeError(f"File processing failed: {uploaded_file.name}")
        sleep_fn(wait_interval)
        total_waited += wait_interval
    raise RuntimeError(f"File processing timed out after {max_wait_seconds} seconds")


def delete_uploaded_file(client, uploaded_file, *, logger=None):
    try:
        client.files.delete(name=uploaded_file.name)
    except Exception as exc:
        if logger is not None:
            logger.warning(f"Could not delete Gemini file {uploaded_file.name}: {exc}")


def transcribe_audio_file(client, local_path, mime_type, *, model, language='', logger=None, sleep_fn=time.sleep):
    if client is None:
        raise RuntimeError('Gemini client is not configured.')
    uploaded = client.files.upload(file=local_path, config={'mime_type': mime_type})
    try:
        active = wait_for_file_processing(client, uploaded, sleep_fn=sleep_fn)
        prompt = get_prompt_template('audio_transcription').format(
            output_language=parse_output_language(language),
        )
        response = client.models.generate_content(
            model=model,
            contents=[types.Content(role='user', parts=[
                types.Part.from_uri(file_uri=active.uri, mime_type=mime_type),
                types.Part.from_text(text=prompt),
            ])],
            config=types.GenerateContentConfig(max_output_tokens=MAX_OUTPUT_TOKENS),
        )
        text = response_text(response)
        if not text:
            raise RuntimeError('Transcription returned no text.')
        return text
    finally:
        delete_uploaded_file(client, uploaded, logger=logger)


def enhance_transcript_text(client, transcript, *, model, language=''):
    if client is None:
        raise RuntimeError('Gemini client is not configured.')
    prompt = get_prompt_template('transcript_enhancement').format(
        output_language=parse_output_language(language),
        transcript=transcript,
    )
    response = client.models.generate_content(
        model=model,
        contents=prompt,
        config=types.GenerateContentConfig(max_output_tokens=MAX_OUTPUT_TOKENS),
    )
    return strip_code_fences(response_text(response))


def convert_pdf_chunk(client, pdf_bytes, *, first_page, last_page, model, language=''):
    if client is None:
        raise RuntimeError('Gemini client is not configured.')
    prompt = get_prompt_template('pdf_to_markdown').format(
        first_page=first_page,
        last_page=last_page,
        output_language=parse_output_language(language),
    )
    response = client.models.generate_content(
        model=model,
        contents=[types.Content(role='user', parts=[
            types.Part.from_bytes(data=pdf_bytes, mime_type='application/pdf'),
            types.Part.from_text(text=prompt),
        ])],
        config=types.GenerateContentConfig(max_output_tokens=MAX_OUTPUT_TOKENS),
    )
    text = response_text(response)
    if not text:
        raise RuntimeError(f'No markdown returned for pages {first_page}-{last_page}.')
    return text


def generate_ssml_chunk(client, markdown, *, model, language=''):
    if client is None:
        raise RuntimeError('Gemini client is not configured.')
    prompt = get_prompt_template('markdown_to_ssml').format(
        output_language=parse_output_language(language),
        markdown=markdown,
    )
    response = client.models.generate_content(
        model=model,
        contents=prompt,
        config=types.GenerateContentConfig(max_output_tokens=MAX_OUTPUT_TOKENS, temperature=0.2),
    )
    text = strip_code_fences(response_text(response))
    if not text:
        raise RuntimeError('SSML generation returned no text.')
    return text
