"""
Unit tests for dispatch components.

Tests the protocol registry and the system state dispatcher.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from mqtt_hub.const import MQTT_HUB_VERSION
from mqtt_hub.dispatchers import ProtocolRegistry, SystemStateDispatcher
from mqtt_hub.exceptions import HubConfigError
from mqtt_hub.structs import HubSettings


@pytest.fixture
def hub(settings, queue, registry):
    return SimpleNamespace(settings=settings, message_queue=queue, topics_registry=registry)


class TestProtocolRegistry:
    """Tests for ProtocolRegistry"""

    def test_create_builds_registered_dispatchers(self):
        """Test that create calls the factory with the hub"""
        dispatcher = MagicMock()
        factory = MagicMock(return_value=(dispatcher,))
        protocols = ProtocolRegistry()
        protocols.register("homie3", factory)

        result = protocols.create("homie3", "hub")

        assert result == [dispatcher]
        factory.assert_called_once_with("hub")
        assert "homie3" in protocols
        assert protocols.names() == ["homie3"]

    def test_create_unknown_protocol_raises(self):
        """Test that an unknown protocol name is a configuration error"""
        protocols = ProtocolRegistry()

        with pytest.raises(HubConfigError, match="ha"):
            protocols.create("ha", "hub")


class TestSystemStateDispatcher:
    """Tests for SystemStateDispatcher"""

    @pytest.mark.asyncio
    async def test_start_publishes_retained_hub_state(self, publisher, queue, hub):
        """Test that start queues the hub name and version as retained"""
        dispatcher = SystemStateDispatcher(hub)

        await dispatcher.start()
        await queue.wait_idle()

        assert sorted(publisher.published) == [
            ("hub-1/hub/name", "Living Room", 0, True),
            ("hub-1/hub/version", MQTT_HUB_VERSION, 0, True),
        ]
        assert hub.topics_registry.topics_for("hub") == {"hub-1/hub/name", "hub-1/hub/version"}

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_state(self, publisher, queue, hub):
        """Test that stop cancels topics not yet published"""
        queue.stop()
        dispatcher = SystemStateDispatcher(hub)
        await dispatcher.start()

        await dispatcher.stop()
        queue.start()
        await queue.wait_idle()

        assert publisher.published == []
        assert dispatcher.broadcast is False

    def test_dispatch_state_disabled(self, queue, hub):
        """Test that nothing is queued while broadcasting is off"""
        dispatcher = SystemStateDispatcher(hub)
        dispatcher.broadcast = False

        dispatcher.dispatch_state()

        assert len(queue) == 0

    def test_update_settings_moves_topics(self, queue, hub):
        """Test that a new device id replaces the queued topics"""
        queue.stop()
        dispatcher = SystemStateDispatcher(hub)
        dispatcher.dispatch_state()

        hub.settings = HubSettings(device_id="hub-2", system_name="Attic")
        dispatcher.update_settings(hub.settings, None)

        assert queue.get("hub-1/hub/name") is None
        assert queue.get("hub-2/hub/name").payload == "Attic"
        assert hub.topics_registry.topics_for("hub") == {"hub-2/hub/name", "hub-2/hub/version"}
