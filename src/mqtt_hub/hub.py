"""Hub lifecycle: broker connection, birth/last-will and dispatch components.

``start()`` connects the publisher, announces the hub as online, subscribes
the hub commands, brings up the dispatch components of the configured
protocol and resumes the message queue. ``stop()`` announces the hub as
offline before tearing everything down. The queue is paused while the birth
and last-will messages are sent. Neither raises: failures are logged and the
hub ends up stopped and disconnected, ready for a later ``start()``.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from mqtt_hub.const import (
    BIRTH_MESSAGE,
    BIRTH_TOPIC,
    MQTT_HUB_RECONNECT_DELAY,
    STATUS_QOS,
    STOP_FLUSH_TIMEOUT,
    WILL_MESSAGE,
    WILL_TOPIC,
)
from mqtt_hub.commands import CommandHandler
from mqtt_hub.correlation import correlation_context
from mqtt_hub.dispatchers import ProtocolRegistry, SystemStateDispatcher
from mqtt_hub.exceptions import HubConfigError, HubTransportError
from mqtt_hub.logging_abstraction import get_logger
from mqtt_hub.mqtt.message_queue import MessageQueue
from mqtt_hub.mqtt.topics_registry import TopicsRegistry
from mqtt_hub.settings import DeviceRegistry
from mqtt_hub.structs import HubSettings, LifecycleState, Message

if TYPE_CHECKING:
    from mqtt_hub.structs import DispatcherProtocol, PublisherProtocol

logger = get_logger(__name__)

RECONNECT_TASK_NAME = "MQTTHub_RECONNECT"


def status_topic(template: str, hub_id: str) -> str:
    """Expand a birth/last-will topic template. An empty template stays empty."""
    return template.replace("{device_id}", hub_id) if template else ""


class MQTTHub:
    lp: str = "hub:"

    def __init__(
        self,
        publisher: PublisherProtocol,
        settings: HubSettings | None = None,
        *,
        protocols: ProtocolRegistry | None = None,
        message_queue: MessageQueue | None = None,
        reconnect_delay: float = MQTT_HUB_RECONNECT_DELAY,
    ) -> None:
        self.publisher: PublisherProtocol = publisher
        self.settings: HubSettings = settings or HubSettings()
        self.message_queue: MessageQueue = message_queue or MessageQueue(publisher)
        self.topics_registry: TopicsRegistry = TopicsRegistry(self.message_queue)
        self.device_registry: DeviceRegistry = DeviceRegistry(self.settings.devices)
        self.protocols: ProtocolRegistry = protocols or ProtocolRegistry()
        self.reconnect_delay: float = reconnect_delay

        self.state: LifecycleState = LifecycleState.STOPPED
        self.protocol: str | None = None
        self.dispatchers: list[DispatcherProtocol] = []
        self.system_state_dispatcher: SystemStateDispatcher | None = None
        self.command_handler: CommandHandler | None = None

        self._lock: asyncio.Lock = asyncio.Lock()
        self._stopping: bool = False
        self._reconnect_task: asyncio.Task[None] | None = None
        self._unsubscribe = publisher.on_unregistered.subscribe(self._on_unregistered)

    def is_running(self) -> bool:
        return self.state is LifecycleState.RUNNING and self.publisher.is_registered()

    async def set_running(self, running: bool) -> None:
        logger.info("%s %s", self.lp, "switch on" if running else "switch off")
        if running:
            _ = await self.start()
        else:
            await self.stop()

    # -- start -------------------------------------------------------------

    async def start(self) -> bool:
        """Start, or re-apply settings to, the hub.

        Returns:
            True when the hub is running afterwards

        """
        lp = f"{self.lp}start:"
        async with self._lock:
            with correlation_context():
                logger.info("%s app start", lp)
                try:
                    await self._start(lp)
                except asyncio.CancelledError:
                    raise
                except HubTransportError as exc:
                    logger.error("%s Failed to start app: %s", lp, exc)
                except Exception:
                    logger.exception("%s Failed to start app", lp)
                else:
                    logger.info("%s app running: true", lp)
                    return True

                await self._abort_start(lp)
                return False

    async def _start(self, lp: str) -> None:
        reconnected = False
        if not self.publisher.is_registered():
            self.state = LifecycleState.STARTING
            # nothing may be drained before the birth message is out
            self.message_queue.stop()
            await self.publisher.connect()
            await self._send_birth_message(lp)
            reconnected = self.protocol is not None

        await self._start_commands(lp)
        await self._start_broadcasters(lp)

        protocol = self.settings.protocol
        if self.protocol != protocol:
            logger.info("%s Changing protocol from '%s' to '%s'", lp, self.protocol, protocol)
            await self._stop_communication_protocol(lp)
            await self._start_communication_protocol(lp, protocol)
        elif reconnected:
            # the queue was cleared with the old connection
            self.refresh()

        self.message_queue.start()
        self.state = LifecycleState.RUNNING

    async def _abort_start(self, lp: str) -> None:
        """Tear down whatever a failed start left behind, so a retry starts clean."""
        self._stopping = True
        try:
            await self._teardown(lp)
        finally:
            self.state = LifecycleState.STOPPED
            self._stopping = False

    async def _send_birth_message(self, lp: str) -> None:
        topic = status_topic(BIRTH_TOPIC, self.settings.hub_id)
        if not topic or not BIRTH_MESSAGE:
            return
        logger.debug("%s Sending birth message (%s) to %s", lp, BIRTH_MESSAGE, topic)
        await self.publisher.publish(Message(topic, BIRTH_MESSAGE, STATUS_QOS, True))

    async def _start_communication_protocol(self, lp: str, protocol: str) -> None:
        self.protocol = protocol
        logger.info("%s start communication protocol: %s", lp, protocol)
        try:
            dispatchers = self.protocols.create(protocol, self)
        except HubConfigError as exc:
            logger.warning("%s %s, publishing hub state only", lp, exc)
            dispatchers = []

        self.dispatchers = dispatchers
        for dispatcher in dispatchers:
            dispatcher.broadcast = self.settings.broadcast_devices
            await dispatcher.start()

    async def _start_commands(self, lp: str) -> None:
        handler = self.command_handler
        if handler is not None and handler.hub_id == self.settings.hub_id:
            return
        await self._stop_commands(lp)
        logger.info("%s start commands", lp)
        self.command_handler = CommandHandler(self)
        await self.command_handler.start()

    async def _start_broadcasters(self, lp: str) -> None:
        broadcast = self.settings.broadcast_devices
        for dispatcher in self.dispatchers:
            dispatcher.broadcast = broadcast
        if self.dispatchers:
            logger.info("%s dispatcher broadcast: %s", lp, broadcast)

        if self.settings.broadcast_system_state:
            if self.system_state_dispatcher is None:
                self.system_state_dispatcher = SystemStateDispatcher(self)
                await self.system_state_dispatcher.start()
        elif self.system_state_dispatcher is not None:
            await self._stop_system_state_dispatcher(lp)

    # -- stop --------------------------------------------------------------

    async def stop(self) -> None:
        """Announce the hub offline, stop dispatching and disconnect."""
        lp = f"{self.lp}stop:"
        async with self._lock:
            with correlation_context():
                self._stopping = True
                try:
                    self._cancel_reconnect()
                    if not await self.message_queue.wait_idle(timeout=STOP_FLUSH_TIMEOUT):
                        logger.warning("%s queue still draining, stopping anyway", lp)
                    logger.info("%s app stop", lp)
                    await self._teardown(lp)
                finally:
                    self.state = LifecycleState.STOPPED
                    self._stopping = False
                logger.info("%s app running: false", lp)

    async def _teardown(self, lp: str) -> None:
        # no publish may follow the last will
        self.message_queue.stop()
        await self._send_last_will_message(lp)
        await self._stop_commands(lp)
        await self._stop_broadcasters(lp)
        await self._stop_communication_protocol(lp)
        try:
            await self.publisher.disconnect()
        except HubTransportError as exc:
            logger.warning("%s MQTT disconnect failed: %s", lp, exc)
        except Exception:
            logger.exception("%s MQTT disconnect failed", lp)

    async def _send_last_will_message(self, lp: str) -> None:
        topic = status_topic(WILL_TOPIC, self.settings.hub_id)
        if not topic or not WILL_MESSAGE or not self.publisher.is_registered():
            return
        logger.debug("%s Sending will message (%s) to %s", lp, WILL_MESSAGE, topic)
        try:
            await self.publisher.publish(Message(topic, WILL_MESSAGE, STATUS_QOS, True))
        except HubTransportError as exc:
            logger.warning("%s Failed to send will message: %s", lp, exc)
        except Exception:
            logger.exception("%s Failed to send will message", lp)

    async def _stop_communication_protocol(self, lp: str) -> None:
        if self.protocol is None and not self.dispatchers:
            return
        logger.info("%s stop communication protocol: %s", lp, self.protocol)
        dispatchers, self.dispatchers = self.dispatchers, []
        self.protocol = None
        for dispatcher in dispatchers:
            try:
                await dispatcher.stop()
            except Exception:
                logger.exception("%s Failed to stop dispatcher %r", lp, dispatcher)

    async def _stop_commands(self, lp: str) -> None:
        handler, self.command_handler = self.command_handler, None
        if handler is None:
            return
        try:
            await handler.stop()
        except Exception:
            logger.exception("%s Failed to stop commands", lp)

    async def _stop_broadcasters(self, lp: str) -> None:
        logger.info("%s stop broadcasters", lp)
        for dispatcher in self.dispatchers:
            dispatcher.broadcast = False
        if self.system_state_dispatcher is not None:
            await self._stop_system_state_dispatcher(lp)

    async def _stop_system_state_dispatcher(self, lp: str) -> None:
        dispatcher, self.system_state_dispatcher = self.system_state_dispatcher, None
        if dispatcher is None:
            return
        try:
            await dispatcher.stop()
        except Exception:
            logger.exception("%s Failed to destroy system state dispatcher", lp)

    async def shutdown(self) -> None:
        """Stop the hub for good, e.g. on process exit."""
        await self.stop()
        self.message_queue.destroy()
        self._unsubscribe()

    # -- connection loss ---------------------------------------------------

    def _on_unregistered(self) -> None:
        if self._stopping or self.state is not LifecycleState.RUNNING:
            return
        logger.warning("%s broker connection lost", self.lp)
        self.state = LifecycleState.STOPPED
        if self.reconnect_delay <= 0:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._reconnect_task = loop.create_task(self._reconnect(), name=RECONNECT_TASK_NAME)

    async def _reconnect(self) -> None:
        lp = f"{self.lp}reconnect:"
        while self.state is LifecycleState.STOPPED and not self._stopping:
            logger.info("%s reconnecting to MQTT broker in %s seconds...", lp, self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)
            if await self.start():
                return

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            _ = task.cancel()

    # -- settings ----------------------------------------------------------

    def refresh(self) -> None:
        """Re-dispatch the full state of every dispatch component."""
        logger.info("%s refresh", self.lp)
        for dispatcher in self._all_dispatchers():
            dispatcher.dispatch_state()

    def _all_dispatchers(self) -> list[DispatcherProtocol]:
        dispatchers = list(self.dispatchers)
        if self.system_state_dispatcher is not None:
            dispatchers.append(self.system_state_dispatcher)
        return dispatchers

    async def settings_changed(self, settings: HubSettings) -> bool:
        """Apply new settings.

        Topics of devices that got disabled are cancelled before the hub is
        restarted, so no partially drained state is published for them.
        Protocol and broadcast changes are picked up by ``start()``.
        """
        lp = f"{self.lp}settings:"
        with correlation_context():
            logger.info("%s Settings changed", lp)
            try:
                self.settings = settings
                changes = self.device_registry.compute_changes(settings.devices)
                self.device_registry.set_enabled_devices(settings.devices)

                for dispatcher in self._all_dispatchers():
                    dispatcher.update_settings(settings, changes)

                for device_id in changes.disabled:
                    self.topics_registry.remove(device_id, cancel=True)
            except Exception:
                logger.exception("%s Failed to update settings", lp)
                return False

        return await self.start()
