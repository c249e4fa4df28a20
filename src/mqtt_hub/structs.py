"""Core data structures and typing protocols for MQTT Hub."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from mqtt_hub.const import DEFAULT_DEVICE_ID, DEFAULT_PROTOCOL, DEFAULT_QOS
from mqtt_hub.logging_abstraction import get_logger

if TYPE_CHECKING:
    from mqtt_hub.mqtt.message_queue import MessageQueue
    from mqtt_hub.mqtt.topics_registry import TopicsRegistry

logger = get_logger(__name__)

Payload = str | bytes


@dataclass(slots=True, eq=False)
class Message:
    """A single retained-state publish, keyed by topic.

    Instances are compared by identity: while a message is queued, a repeat
    enqueue of the same topic overwrites its fields in place.
    """

    topic: str
    payload: Payload
    qos: int = DEFAULT_QOS
    retain: bool = False

    def update(self, payload: Payload, qos: int | None = None, retain: bool | None = None) -> None:
        """Overwrite the payload and any explicitly given option."""
        self.payload = payload
        if qos is not None:
            self.qos = qos
        if retain is not None:
            self.retain = retain


class LifecycleState(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


@dataclass
class DeviceChanges:
    """Device ids whose enabled flag flipped in a settings update."""

    enabled: set[str] = field(default_factory=set)
    disabled: set[str] = field(default_factory=set)

    def __bool__(self) -> bool:
        return bool(self.enabled or self.disabled)


class HubSettings(BaseModel):
    """User settings of the hub.

    Keys are accepted in snake_case or in the camelCase form written by
    earlier releases (``deviceId``, ``broadcastDevices``, ...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    device_id: str | None = None
    system_name: str = DEFAULT_DEVICE_ID
    protocol: str = DEFAULT_PROTOCOL
    homie_topic: str | None = None
    topic_root: str | None = None  # legacy, migrated to homie_topic
    broadcast_devices: bool = True
    broadcast_system_state: bool = False
    devices: dict[str, bool] = Field(default_factory=dict)

    @field_validator("devices", mode="before")
    @classmethod
    def _device_ids_as_str(cls, value: object) -> object:
        # YAML reads unquoted numeric ids as int
        if isinstance(value, Mapping):
            return {str(k): v for k, v in value.items()}
        return value

    @property
    def hub_id(self) -> str:
        """Identifier substituted into the birth and last-will topics."""
        return self.device_id or DEFAULT_DEVICE_ID


Callback = Callable[[], object]
# (topic, payload) of a received message
MessageHandler = Callable[[str, Payload], Awaitable[None]]


class Signal:
    """Minimal synchronous notification with subscribe/unsubscribe."""

    def __init__(self, name: str) -> None:
        self.name: str = name
        self._callbacks: list[Callback] = []

    def subscribe(self, callback: Callback) -> Callable[[], None]:
        """Register a callback and return a function that removes it again."""
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def emit(self) -> None:
        """Invoke all callbacks. A failing callback does not stop the others."""
        for callback in list(self._callbacks):
            try:
                _ = callback()
            except Exception:
                logger.exception("signal:%s: subscriber %r failed", self.name, callback)

    def __len__(self) -> int:
        return len(self._callbacks)


class PublisherProtocol(Protocol):
    """Connection-aware broker capability used by the dispatch core."""

    on_unregistered: Signal

    def is_registered(self) -> bool:
        """Return True while the broker connection is usable."""
        ...

    async def publish(self, message: Message) -> None:
        """Send one message. Raises HubPublishError on failure."""
        ...

    async def connect(self) -> None:
        """Open the broker connection. Raises HubConnectError on failure."""
        ...

    async def disconnect(self) -> None:
        """Close the broker connection. Raises HubDisconnectError on failure."""
        ...

    async def subscribe(self, topic: str, handler: MessageHandler, qos: int = 0) -> None:
        """Route messages matching ``topic`` to ``handler``, across reconnects."""
        ...

    async def unsubscribe(self, topic: str) -> None:
        """Stop routing ``topic``."""
        ...


class HubProtocol(Protocol):
    """The parts of MQTTHub that dispatchers rely on."""

    settings: HubSettings
    message_queue: MessageQueue
    topics_registry: TopicsRegistry
    publisher: PublisherProtocol

    def refresh(self) -> None:
        """Re-dispatch the full state of every dispatch component."""
        ...


class DispatcherProtocol(Protocol):
    """A dispatch component that turns hub state into queued messages."""

    broadcast: bool

    async def start(self) -> None:
        """Register topics and dispatch the current state."""
        ...

    async def stop(self) -> None:
        """Stop dispatching and cancel any pending topics."""
        ...

    def dispatch_state(self) -> None:
        """Re-enqueue the full current state."""
        ...

    def update_settings(self, settings: HubSettings, changes: DeviceChanges | None) -> None:
        """React to a settings update."""
        ...
