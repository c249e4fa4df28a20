"""MQTT broker connection for MQTT Hub.

Implements the publisher side of the dispatch core on top of ``aiomqtt``:
connect/disconnect, single-message publish, topic subscriptions served by a
receiver task and an ``on_unregistered`` notification fired whenever the
connection stops being usable.
"""

from __future__ import annotations

import asyncio

import aiomqtt

from mqtt_hub.const import (
    MQTT_HUB_CLIENT_ID,
    MQTT_HUB_KEEPALIVE,
    MQTT_HUB_MQTT_HOST,
    MQTT_HUB_MQTT_PASS,
    MQTT_HUB_MQTT_PORT,
    MQTT_HUB_MQTT_USER,
    STATUS_QOS,
    WILL_MESSAGE,
)
from mqtt_hub.exceptions import HubConnectError, HubDisconnectError, HubPublishError, HubTransportError
from mqtt_hub.logging_abstraction import get_logger
from mqtt_hub.structs import Message, MessageHandler, Signal

logger = get_logger(__name__)

RECEIVER_TASK_NAME = "MQTTClient_RECEIVER"


class MQTTClient:
    """Publisher backed by an ``aiomqtt.Client``.

    The broker-side last will is registered on connect when ``will_topic`` is
    set, in addition to the explicit last-will publish done by the hub on stop.
    """

    lp: str = "mqtt:"

    def __init__(
        self,
        host: str = MQTT_HUB_MQTT_HOST,
        port: int = MQTT_HUB_MQTT_PORT,
        username: str | None = MQTT_HUB_MQTT_USER,
        password: str | None = MQTT_HUB_MQTT_PASS,
        *,
        client_id: str = MQTT_HUB_CLIENT_ID,
        keepalive: int = MQTT_HUB_KEEPALIVE,
        will_topic: str | None = None,
    ) -> None:
        self.broker_host: str = host
        self.broker_port: int = port
        self.broker_username: str | None = username
        self.broker_password: str | None = password
        self.client_id: str = client_id
        self.keepalive: int = keepalive
        self.will_topic: str | None = will_topic
        self.client: aiomqtt.Client | None = None
        self.on_unregistered: Signal = Signal("unregistered")
        self._registered: bool = False
        self._subscriptions: dict[str, tuple[int, MessageHandler]] = {}
        self._receiver_task: asyncio.Task[None] | None = None

    def is_registered(self) -> bool:
        return self._registered

    def _mark_unregistered(self) -> None:
        if self._registered:
            self._registered = False
            self.on_unregistered.emit()

    def _build_client(self) -> aiomqtt.Client:
        will = None
        if self.will_topic:
            will = aiomqtt.Will(
                topic=self.will_topic,
                payload=WILL_MESSAGE.encode(),
                qos=STATUS_QOS,
                retain=True,
            )
        return aiomqtt.Client(
            hostname=self.broker_host,
            port=self.broker_port,
            username=self.broker_username,
            password=self.broker_password,
            identifier=self.client_id,
            keepalive=self.keepalive,
            will=will,
        )

    async def _close_stale_client(self) -> None:
        client, self.client = self.client, None
        if client is None:
            return
        try:
            await client.__aexit__(None, None, None)
        except Exception as e:
            logger.debug("%s closing previous client failed: %s", self.lp, e)

    async def connect(self) -> None:
        """Open a broker connection. No-op when already registered."""
        lp = f"{self.lp}connect:"
        if self._registered:
            return
        await self._stop_receiver()
        await self._close_stale_client()

        logger.debug("%s Connecting to MQTT broker %s:%s...", lp, self.broker_host, self.broker_port)
        client = self._build_client()
        try:
            _ = await client.__aenter__()
        except aiomqtt.MqttError as mqtt_err_exc:
            # -> [Errno 111] Connection refused
            # [code:134] Bad user name or password
            if "code:134" in str(mqtt_err_exc):
                logger.error(
                    "%s Bad username or password, check your MQTT credentials (username: %s)",
                    lp,
                    self.broker_username,
                )
            raise HubConnectError(str(mqtt_err_exc)) from mqtt_err_exc

        self.client = client
        try:
            await self._restore_subscriptions(client)
        except aiomqtt.MqttError as sub_err:
            await self._close_stale_client()
            raise HubConnectError(f"subscribe failed: {sub_err}") from sub_err

        self._registered = True
        self._start_receiver(client)
        logger.info("%s Connected to MQTT broker: %s port: %s", lp, self.broker_host, self.broker_port)

    async def disconnect(self) -> None:
        """Close the broker connection.

        Registration is revoked before the transport is closed, so
        subscribers see the connection as gone even if closing fails.
        """
        lp = f"{self.lp}disconnect:"
        client, self.client = self.client, None
        self._mark_unregistered()
        await self._stop_receiver()
        if client is None:
            return
        logger.debug("%s Disconnecting from broker...", lp)
        try:
            await client.__aexit__(None, None, None)
        except aiomqtt.MqttError as ce:
            raise HubDisconnectError(str(ce)) from ce
        logger.info("%s Disconnected from MQTT broker", lp)

    async def publish(self, message: Message) -> None:
        """Publish one message.

        Raises:
            HubPublishError: not connected, or the broker rejected the publish.
                A broker error also revokes registration.

        """
        if not self._registered or self.client is None:
            raise HubPublishError(message.topic, "not connected")
        try:
            await self.client.publish(
                message.topic,
                message.payload,
                qos=message.qos,
                retain=message.retain,
            )
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s publish: [%s] -> %s", self.lp, type(mqtt_err).__name__, mqtt_err)
            self._mark_unregistered()
            raise HubPublishError(message.topic, str(mqtt_err)) from mqtt_err

    async def subscribe(self, topic: str, handler: MessageHandler, qos: int = 0) -> None:
        """Route messages matching ``topic`` (wildcards allowed) to ``handler``.

        The subscription is kept across reconnects. While disconnected it is
        only recorded and sent to the broker on the next connect.

        Raises:
            HubTransportError: the broker rejected the subscription

        """
        self._subscriptions[topic] = (qos, handler)
        if not self._registered or self.client is None:
            return
        try:
            await self.client.subscribe(topic, qos=qos)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s subscribe to %s failed: %s", self.lp, topic, mqtt_err)
            raise HubTransportError(str(mqtt_err), operation="subscribe") from mqtt_err
        logger.debug("%s Subscribed to MQTT topic: %s", self.lp, topic)

    async def unsubscribe(self, topic: str) -> None:
        if self._subscriptions.pop(topic, None) is None:
            return
        if not self._registered or self.client is None:
            return
        try:
            await self.client.unsubscribe(topic)
        except aiomqtt.MqttError as mqtt_err:
            raise HubTransportError(str(mqtt_err), operation="unsubscribe") from mqtt_err

    async def _restore_subscriptions(self, client: aiomqtt.Client) -> None:
        for topic, (qos, _) in self._subscriptions.items():
            await client.subscribe(topic, qos=qos)
        if self._subscriptions:
            logger.debug("%s Subscribed to MQTT topics: %s", self.lp, list(self._subscriptions))

    def _start_receiver(self, client: aiomqtt.Client) -> None:
        loop = asyncio.get_running_loop()
        self._receiver_task = loop.create_task(self._receive(client), name=RECEIVER_TASK_NAME)

    async def _stop_receiver(self) -> None:
        task, self._receiver_task = self._receiver_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        _ = task.cancel()
        _ = await asyncio.wait({task})

    async def _receive(self, client: aiomqtt.Client) -> None:
        """Serve subscribed topics until the connection's message stream ends."""
        lp = f"{self.lp}rcv:"
        try:
            async for message in client.messages:
                await self._route(lp, message)
        except asyncio.CancelledError:
            logger.debug("%s MQTT receiver task cancelled, propagating...", lp)
            raise
        except aiomqtt.MqttError as msg_err:
            logger.warning("%s MQTT error: %s", lp, msg_err)
        else:
            logger.warning("%s MQTT message stream ended", lp)

        # a replaced or closed client is not ours to report
        if self.client is client:
            self._mark_unregistered()

    async def _route(self, lp: str, message: aiomqtt.Message) -> None:
        topic = message.topic.value
        payload = message.payload
        if payload is None or payload in (b"", ""):
            logger.debug("%s Received empty payload for topic: %s, skipping...", lp, topic)
            return
        if isinstance(payload, bytearray):
            payload = bytes(payload)
        elif not isinstance(payload, (str, bytes)):
            payload = str(payload)

        for pattern, (_, handler) in list(self._subscriptions.items()):
            if not message.topic.matches(pattern):
                continue
            try:
                await handler(topic, payload)
            except Exception:
                logger.exception("%s handler for %s failed", lp, pattern)
