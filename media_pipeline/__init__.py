from flask import Flask

from .config import load_config
from .extensions import init_extensions
from .logging_config import configure_logging


def create_app(config=None, services=None):
    """App factory for the queue-in worker.

    ``services`` may be supplied by tests; otherwise external clients are
    built on the first delivered message.
    """
    config = config or load_config()
    configure_logging(config.log_level)

    app = Flask(__name__)
    init_extensions(app, config, services=services)

    from .blueprints import pubsub_bp

    app.register_blueprint(pubsub_bp)
    return app
