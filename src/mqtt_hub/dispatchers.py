"""Dispatch components.

Protocol encoders (Homie, Home Assistant discovery, ...) are provided by the
embedding application and registered by protocol name. The hub itself only
ships the system state broadcaster.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from mqtt_hub.const import HUB_OWNER_ID, MQTT_HUB_VERSION
from mqtt_hub.exceptions import HubConfigError
from mqtt_hub.logging_abstraction import get_logger

if TYPE_CHECKING:
    from mqtt_hub.structs import DeviceChanges, DispatcherProtocol, HubProtocol, HubSettings

logger = get_logger(__name__)

DispatcherFactory = Callable[["HubProtocol"], Sequence["DispatcherProtocol"]]


class ProtocolRegistry:
    """Maps protocol names to factories building that protocol's dispatchers."""

    def __init__(self) -> None:
        self._factories: dict[str, DispatcherFactory] = {}

    def register(self, name: str, factory: DispatcherFactory) -> None:
        self._factories[name] = factory

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def create(self, name: str, hub: HubProtocol) -> list[DispatcherProtocol]:
        """Build the dispatchers of ``name``.

        Raises:
            HubConfigError: no factory is registered under ``name``

        """
        factory = self._factories.get(name)
        if factory is None:
            raise HubConfigError(f"No dispatchers registered for protocol '{name}'")
        return list(factory(hub))


class SystemStateDispatcher:
    """Publishes retained hub information under ``{hub_id}/hub/``."""

    lp: str = "system_state:"

    def __init__(self, hub: HubProtocol) -> None:
        self.hub: HubProtocol = hub
        self.broadcast: bool = True

    def _state(self) -> dict[str, str]:
        settings = self.hub.settings
        base = f"{settings.hub_id}/hub"
        return {
            f"{base}/name": settings.system_name,
            f"{base}/version": MQTT_HUB_VERSION,
        }

    async def start(self) -> None:
        logger.info("%s start system dispatcher", self.lp)
        self.dispatch_state()

    async def stop(self) -> None:
        logger.info("%s stop system dispatcher", self.lp)
        self.broadcast = False
        self.hub.topics_registry.remove(HUB_OWNER_ID, cancel=True)

    def dispatch_state(self) -> None:
        if not self.broadcast:
            return
        queue = self.hub.message_queue
        registry = self.hub.topics_registry
        for topic, value in self._state().items():
            registry.register(HUB_OWNER_ID, topic)
            queue.enqueue(topic, value, retain=True, process=False)
        queue.process()

    def update_settings(self, settings: HubSettings, changes: DeviceChanges | None) -> None:
        # topics move with the hub id, drop anything still queued under the old one
        self.hub.topics_registry.remove(HUB_OWNER_ID, cancel=True)
        self.dispatch_state()
