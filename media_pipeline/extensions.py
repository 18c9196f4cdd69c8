import json
import logging
import os
from dataclasses import dataclass
from typing import Any

import firebase_admin
import sentry_sdk
from firebase_admin import credentials, firestore, storage
from google import genai
from sentry_sdk.integrations.flask import FlaskIntegration

from .services.synthesis_service import LongAudioSynthesizer, create_long_audio_client

logger = logging.getLogger(__name__)


@dataclass
class PipelineServices:
    """External collaborators handed to every pipeline run."""

    db: Any
    bucket: Any
    gemini: Any
    synthesizer: Any


def init_firebase(config):
    if os.path.exists('firebase-credentials.json'):
        cred = credentials.Certificate('firebase-credentials.json')
    elif config.firebase_credentials:
        cred = credentials.Certificate(json.loads(config.firebase_credentials))
    else:
        cred = credentials.ApplicationDefault()
    if not firebase_admin._apps:
        options = {'storageBucket': config.storage_bucket} if config.storage_bucket else None
        firebase_admin.initialize_app(cred, options)
    return firestore.client(), storage.bucket(config.storage_bucket or None)


def init_gemini(config):
    if not config.gemini_api_key:
        logger.info('GEMINI_API_KEY not set; chunk transforms will fail until it is configured.')
        return None
    return genai.Client(api_key=config.gemini_api_key)


def init_sentry(config):
    if not config.sentry_dsn:
        return False
    sentry_sdk.init(
        dsn=config.sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=config.sentry_traces_sample_rate,
        send_default_pii=False,
        environment=config.sentry_environment,
        release=config.sentry_release,
    )
    return True


def build_services(config):
    db, bucket = init_firebase(config)
    synthesizer = LongAudioSynthesizer(create_long_audio_client(), project_id=config.google_cloud_project)
    return PipelineServices(db=db, bucket=bucket, gemini=init_gemini(config), synthesizer=synthesizer)


def init_extensions(app, config, services=None) -> None:
    """Attach config and external services to the Flask app.

    Services are built lazily on first use when not supplied, so the app can
    start and answer health checks before credentials are reachable.
    """
    if app is None or not hasattr(app, 'extensions'):
        return
    state = app.extensions.setdefault('media_pipeline', {})
    state['config'] = config
    state['services'] = services
    state['sentry_enabled'] = init_sentry(config)


def get_services(app):
    state = app.extensions['media_pipeline']
    if state.get('services') is None:
        state['services'] = build_services(state['config'])
    return state['services']
