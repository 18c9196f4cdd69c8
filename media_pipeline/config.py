import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

DEV_ENV_NAMES = {'development', 'dev', 'local', 'test'}


def safe_int_env(name, default=0, minimum=1, maximum=100000):
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except Exception:
        value = int(default)
    return min(max(value, minimum), maximum)


def safe_float_env(name, default=0.0, minimum=0.0, maximum=1.0):
    raw = os.getenv(name, str(default)).strip()
    try:
        value = float(raw)
    except Exception:
        return default
    return min(max(value, minimum), maximum)


def _env_str(name, default=''):
    return (os.getenv(name, default) or default).strip()


@dataclass(frozen=True)
class AppConfig:
    """Central worker config, read from the environment at construction time."""

    log_level: str = field(default_factory=lambda: _env_str('LOG_LEVEL', 'INFO').upper())
    gemini_api_key: str = field(default_factory=lambda: _env_str('GEMINI_API_KEY'))
    firebase_credentials: str = field(default_factory=lambda: _env_str('FIREBASE_CREDENTIALS'))
    storage_bucket: str = field(default_factory=lambda: _env_str('STORAGE_BUCKET'))
    google_cloud_project: str = field(default_factory=lambda: _env_str('GOOGLE_CLOUD_PROJECT'))
    sentry_dsn: str = field(default_factory=lambda: _env_str('SENTRY_DSN_BACKEND'))
    sentry_environment: str = field(
        default_factory=lambda: _env_str('SENTRY_ENVIRONMENT', os.getenv('FLASK_ENV', 'production') or 'production')
    )
    sentry_release: str = field(default_factory=lambda: _env_str('SENTRY_RELEASE', 'media-pipeline'))
    sentry_traces_sample_rate: float = field(default_factory=lambda: safe_float_env('SENTRY_TRACES_SAMPLE_RATE', 0.0))

    model_audio: str = field(default_factory=lambda: _env_str('MODEL_AUDIO', 'gemini-2.5-flash'))
    model_text: str = field(default_factory=lambda: _env_str('MODEL_TEXT', 'gemini-2.5-flash'))
    model_pdf: str = field(default_factory=lambda: _env_str('MODEL_PDF', 'gemini-2.5-flash'))
    model_ssml: str = field(default_factory=lambda: _env_str('MODEL_SSML', 'gemini-2.5-flash-lite'))

    max_message_age_seconds: int = field(
        default_factory=lambda: safe_int_env('MAX_MESSAGE_AGE_SECONDS', 3 * 60 * 60, minimum=60, maximum=7 * 24 * 3600)
    )
    retry_final_window_seconds: int = field(
        default_factory=lambda: safe_int_env('RETRY_FINAL_WINDOW_SECONDS', 10 * 60, minimum=0, maximum=24 * 3600)
    )
    max_direct_audio_bytes: int = field(
        default_factory=lambda: safe_int_env('MAX_DIRECT_AUDIO_BYTES', 25 * 1024 * 1024, minimum=1024 * 1024, maximum=2 * 1024 ** 3)
    )
    max_audio_input_bytes: int = field(
        default_factory=lambda: safe_int_env('MAX_AUDIO_INPUT_BYTES', 500 * 1024 * 1024, minimum=1024 * 1024, maximum=10 * 1024 ** 3)
    )
    chunk_safety_margin: float = field(
        default_factory=lambda: safe_float_env('CHUNK_SAFETY_MARGIN', 0.85, minimum=0.1, maximum=1.0)
    )
    audio_chunk_overlap_seconds: int = field(
        default_factory=lambda: safe_int_env('AUDIO_CHUNK_OVERLAP_SECONDS', 10, minimum=0, maximum=120)
    )
    max_text_chunk_chars: int = field(
        default_factory=lambda: safe_int_env('MAX_TEXT_CHUNK_CHARS', 20000, minimum=1000, maximum=500000)
    )
    text_chunk_overlap_chars: int = field(
        default_factory=lambda: safe_int_env('TEXT_CHUNK_OVERLAP_CHARS', 500, minimum=0, maximum=10000)
    )
    merge_window_chars: int = field(
        default_factory=lambda: safe_int_env('MERGE_WINDOW_CHARS', 1000, minimum=100, maximum=20000)
    )
    min_overlap_tokens: int = field(
        default_factory=lambda: safe_int_env('MIN_OVERLAP_TOKENS', 3, minimum=1, maximum=500)
    )
    max_ssml_chunk_chars: int = field(
        default_factory=lambda: safe_int_env('MAX_SSML_CHUNK_CHARS', 5000, minimum=500, maximum=100000)
    )
    pdf_pages_per_chunk: int = field(
        default_factory=lambda: safe_int_env('PDF_PAGES_PER_CHUNK', 5, minimum=1, maximum=100)
    )
    max_pdf_bytes: int = field(
        default_factory=lambda: safe_int_env('MAX_PDF_BYTES', 200 * 1024 * 1024, minimum=1024 * 1024, maximum=2 * 1024 ** 3)
    )
    pdf_call_delay_ms: int = field(
        default_factory=lambda: safe_int_env('PDF_CALL_DELAY_MS', 500, minimum=0, maximum=60000)
    )
    max_ssml_bytes: int = field(
        default_factory=lambda: safe_int_env('MAX_SSML_BYTES', 900000, minimum=1000, maximum=10 * 1024 * 1024)
    )
    ssml_inflation_factor: float = field(
        default_factory=lambda: safe_float_env('SSML_INFLATION_FACTOR', 2.5, minimum=1.0, maximum=20.0)
    )
    poll_interval_seconds: int = field(
        default_factory=lambda: safe_int_env('POLL_INTERVAL_SECONDS', 5, minimum=1, maximum=600)
    )
    max_poll_attempts: int = field(
        default_factory=lambda: safe_int_env('MAX_POLL_ATTEMPTS', 100, minimum=1, maximum=10000)
    )
    status_error_max_chars: int = field(
        default_factory=lambda: safe_int_env('STATUS_ERROR_MAX_CHARS', 200, minimum=20, maximum=5000)
    )


def get_runtime_env():
    return (
        os.getenv('SENTRY_ENVIRONMENT')
        or os.getenv('FLASK_ENV')
        or os.getenv('ENV')
        or ('production' if os.getenv('K_SERVICE') else 'development')
    ).strip().lower()


def load_config() -> AppConfig:
    config = AppConfig()
    is_dev_like = get_runtime_env() in DEV_ENV_NAMES
    if not is_dev_like and not config.storage_bucket:
        raise RuntimeError('STORAGE_BUCKET must be set in non-development environments.')
    return config
