"""
Shared fixtures for unit tests.

This module provides a fake publisher and hub wiring for testing the
dispatch core without a broker.
"""

from unittest.mock import AsyncMock

import pytest

from mqtt_hub.correlation import set_correlation_id
from mqtt_hub.mqtt.message_queue import MessageQueue
from mqtt_hub.mqtt.topics_registry import TopicsRegistry
from mqtt_hub.structs import HubSettings, Signal


class FakePublisher:
    """In-memory publisher recording every published message."""

    def __init__(self, registered=True):
        self.on_unregistered = Signal("unregistered")
        self.registered = registered
        self.published = []
        self.publish = AsyncMock(side_effect=self._publish)
        self.connect = AsyncMock(side_effect=self._connect)
        self.disconnect = AsyncMock(side_effect=self._disconnect)
        self.subscriptions = {}
        self.subscribe = AsyncMock(side_effect=self._subscribe)
        self.unsubscribe = AsyncMock(side_effect=self._unsubscribe)

    def is_registered(self):
        return self.registered

    async def _publish(self, message):
        self.published.append((message.topic, message.payload, message.qos, message.retain))

    async def _connect(self):
        self.registered = True

    async def _disconnect(self):
        self.unregister()

    async def _subscribe(self, topic, handler, qos=0):
        self.subscriptions[topic] = handler

    async def _unsubscribe(self, topic):
        self.subscriptions.pop(topic, None)

    async def deliver(self, topic, payload):
        """Hand an incoming message to the handler subscribed for ``topic``."""
        await self.subscriptions[topic](topic, payload)

    def unregister(self):
        if self.registered:
            self.registered = False
            self.on_unregistered.emit()

    @property
    def topics(self):
        return [published[0] for published in self.published]


@pytest.fixture(autouse=True)
def reset_correlation_id():
    """Keep the module-level correlation id from leaking between tests."""
    set_correlation_id(None)
    yield
    set_correlation_id(None)


@pytest.fixture
def publisher():
    """Registered fake publisher."""
    return FakePublisher()


@pytest.fixture
def offline_publisher():
    """Fake publisher that has not connected yet."""
    return FakePublisher(registered=False)


@pytest.fixture
def queue(publisher):
    """Message queue without inter-publish delay."""
    return MessageQueue(publisher, delay_ms=0)


@pytest.fixture
def registry(queue):
    return TopicsRegistry(queue)


@pytest.fixture
def settings():
    return HubSettings(device_id="hub-1", system_name="Living Room")
