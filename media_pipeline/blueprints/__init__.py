from .pubsub import pubsub_bp

__all__ = ['pubsub_bp']
