"""Cloud Text-to-Speech long-audio dispatch and polling."""

from google.cloud import texttospeech

from media_pipeline.errors import SizeLimitExceededError
from media_pipeline.models import OperationSnapshot

DEFAULT_VOICE_LANGUAGE = 'en-US'
VOICE_BY_LANGUAGE = {
    'en-US': 'en-US-Neural2-F',
    'it-IT': 'it-IT-Neural2-F',
}
EFFECTS_PROFILE_ID = 'handset-class-device'
SPEAKING_RATE = 1.04
PITCH = 0.1
# Rough speaking time per 1000 characters of markdown.
MINUTES_PER_THOUSAND_CHARS = 0.75


def normalize_language_code(language):
    raw = str(language or '').strip().replace('_', '-')
    if not raw:
        return DEFAULT_VOICE_LANGUAGE
    if len(raw) == 2:
        return f'{raw.lower()}-{raw.upper()}'
    parts = raw.split('-')
    if len(parts) >= 2:
        return f'{parts[0].lower()}-{parts[1].upper()}'
    return raw


def voice_for_language(language):
    language_code = normalize_language_code(language)
    return language_code, VOICE_BY_LANGUAGE.get(language_code, '')


def markdown_size_limit(max_ssml_bytes, inflation_factor):
    return int(max_ssml_bytes / inflation_factor)


def check_markdown_size(markdown, *, max_ssml_bytes, inflation_factor):
    """Reject markdown whose SSML would likely exceed the synthesis request limit."""
    length = len((markdown or '').encode('utf-8'))
    if length <= markdown_size_limit(max_ssml_bytes, inflation_factor):
        return length
    estimated_kb = round(length * inflation_factor / 1024)
    max_minutes = round(markdown_size_limit(max_ssml_bytes, inflation_factor) / 1000 * MINUTES_PER_THOUSAND_CHARS)
    raise SizeLimitExceededError(
        f'Document is too large to convert to audio (estimated {estimated_kb} KB when processed). '
        f'The maximum supported size is {max_ssml_bytes / 1000000:.1f} MB '
        f'(which corresponds to roughly {max_minutes} minutes of audio).'
    )


def check_ssml_size(ssml, *, max_ssml_bytes):
    size = len((ssml or '').encode('utf-8'))
    if size > max_ssml_bytes:
        raise SizeLimitExceededError(
            f'Generated speech markup is {size / 1000:.0f} KB; the maximum supported size is {max_ssml_bytes / 1000:.0f} KB.'
        )
    return size


def build_long_audio_request(ssml, language, output_gcs_uri, *, project_id):
    language_code, voice_name = voice_for_language(language)
    voice = texttospeech.VoiceSelectionParams(language_code=language_code)
    if voice_name:
        voice = texttospeech.VoiceSelectionParams(language_code=language_code, name=voice_name)
    return texttospeech.SynthesizeLongAudioRequest(
        parent=f'projects/{project_id}/locations/global',
        input=texttospeech.SynthesisInput(ssml=ssml),
        audio_config=texttospeech.AudioConfig(
            audio_encoding=texttospeech.AudioEncoding.LINEAR16,
            effects_profile_id=[EFFECTS_PROFILE_ID],
            pitch=PITCH,
            speaking_rate=SPEAKING_RATE,
        ),
        voice=voice,
        output_gcs_uri=output_gcs_uri,
    )


class LongAudioSynthesizer:
    """Starts long-audio operations and reduces them to OperationSnapshot polls."""

    def __init__(self, client, *, project_id):
        self.client = client
        self.project_id = project_id

    def dispatch(self, ssml, language, output_gcs_uri):
        request = build_long_audio_request(ssml, language, output_gcs_uri, project_id=self.project_id)
        return self.client.synthesize_long_audio(request=request)

    @staticmethod
    def operation_name(operation):
        raw = getattr(operation, 'operation', None)
        return getattr(raw, 'name', '') or 'long-audio'

    def poll(self, operation):
        done = bool(operation.done())
        raw = operation.operation
        error = ''
        if done and raw.HasField('error') and raw.error.code:
            error = raw.error.message or f'Synthesis failed with code {raw.error.code}'
        metadata = operation.metadata
        progress = float(getattr(metadata, 'progress_percentage', 0) or 0)
        if done and not error:
            progress = 100.0
        return OperationSnapshot(done=done, progress_percent=progress, error=error)


def create_long_audio_client():
    return texttospeech.TextToSpeechLongAudioSynthesizeClient()
