import logging

from flask import Blueprint, current_app, jsonify, request

from media_pipeline.errors import InvalidJobMessageError
from media_pipeline.extensions import get_services
from media_pipeline.logging_config import log_event
from media_pipeline.services import worker_service

logger = logging.getLogger(__name__)

pubsub_bp = Blueprint('pubsub', __name__)


@pubsub_bp.route('/healthz', methods=['GET'])
def healthz():
    return jsonify({'status': 'ok'}), 200


@pubsub_bp.route('/pubsub/jobs', methods=['POST'])
def receive_job():
    """Pub/Sub push endpoint. 2xx acknowledges, 5xx asks for redelivery."""
    envelope = request.get_json(silent=True)
    try:
        payload = worker_service.decode_push_envelope(envelope)
    except InvalidJobMessageError as exc:
        log_event(logger, logging.ERROR, 'push_envelope_invalid', error=exc.message)
        return '', 204

    state = current_app.extensions['media_pipeline']
    try:
        outcome = worker_service.handle_job_message(
            payload,
            services=get_services(current_app),
            config=state['config'],
        )
    except Exception as exc:
        logger.exception('Job handling failed; requesting redelivery: %s', exc)
        return jsonify({'status': 'retry'}), 500
    return jsonify({'status': outcome}), 200
