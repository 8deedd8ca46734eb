"""RabbitMQ helpers for the Shule services: topology, publishing, consuming."""

from .bus import declare_queue, publish, start_consume
from .publisher import publish_event
from .consumer import Handler, Subscription, run, subscribe

__all__ = [
    "declare_queue",
    "publish",
    "start_consume",
    "publish_event",
    "Handler",
    "Subscription",
    "subscribe",
    "run",
]
