"""Hub commands received over MQTT.

Each command is a topic under ``{hub_id}/hub/``. Out of the box the hub
answers ``{hub_id}/hub/refresh`` by re-dispatching its full state; an
embedding application can register more.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from mqtt_hub.exceptions import HubTransportError
from mqtt_hub.logging_abstraction import get_logger

if TYPE_CHECKING:
    from mqtt_hub.structs import HubProtocol, Payload

logger = get_logger(__name__)

Command = Callable[["Payload"], Awaitable[None]]


class CommandHandler:
    """Subscribes the hub's command topics and routes incoming messages."""

    lp: str = "commands:"

    def __init__(self, hub: HubProtocol) -> None:
        self.hub: HubProtocol = hub
        self.hub_id: str = hub.settings.hub_id
        self._commands: dict[str, Command] = {}
        self._started: bool = False
        self.register("refresh", self._refresh)

    def topic(self, name: str) -> str:
        return f"{self.hub_id}/hub/{name}"

    @property
    def topics(self) -> list[str]:
        return list(self._commands)

    def register(self, name: str, command: Command) -> None:
        """Add a command. Takes effect on the next ``start()``."""
        self._commands[self.topic(name)] = command

    async def start(self) -> None:
        lp = f"{self.lp}start:"
        self._started = True
        for topic in self._commands:
            await self.hub.publisher.subscribe(topic, self.handle_message)
        logger.debug("%s Listening for commands on: %s", lp, self.topics)

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        if not self._started:
            return
        self._started = False
        for topic in self._commands:
            try:
                await self.hub.publisher.unsubscribe(topic)
            except HubTransportError as exc:
                logger.warning("%s Failed to unsubscribe %s: %s", lp, topic, exc)

    async def handle_message(self, topic: str, payload: Payload) -> None:
        lp = f"{self.lp}rcv:"
        command = self._commands.get(topic)
        if command is None:
            logger.debug("%s No command for topic: %s, skipping...", lp, topic)
            return
        logger.info("%s >>> command received: %s", lp, topic)
        await command(payload)

    async def _refresh(self, _payload: Payload) -> None:
        self.hub.refresh()
