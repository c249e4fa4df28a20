"""MQTT package for MQTT Hub.

- client.py: broker connection (publisher)
- message_queue.py: deduplicating publish queue
- topics_registry.py: topic ownership and pending-publish cancellation
"""

from .client import MQTTClient
from .message_queue import MessageQueue
from .topics_registry import TopicsRegistry

__all__ = [
    "MQTTClient",
    "MessageQueue",
    "TopicsRegistry",
]
