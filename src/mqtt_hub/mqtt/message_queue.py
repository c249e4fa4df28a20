"""Deduplicating publish queue.

Messages are keyed by topic. While a topic is pending, a repeat enqueue
overwrites the queued message in place, so a burst of state changes collapses
into one publish of the latest value at the position of the first change.

The queue keeps two structures:

- ``_order``: enqueue order of message references, used only to pick the next
  message. It may hold stale references.
- ``_messages``: topic -> message, the authoritative set of topics still owed a
  publish.

An ``_order`` entry is delivered only if it is still the live message for its
topic; anything else is stale and skipped. This keeps ``cancel`` a plain dict
delete.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import TYPE_CHECKING

from mqtt_hub.const import DEFAULT_QOS, DRAIN_SUMMARY_THRESHOLD, MQTT_HUB_QUEUE_DELAY_MS
from mqtt_hub.correlation import correlation_context
from mqtt_hub.exceptions import HubTransportError
from mqtt_hub.logging_abstraction import get_logger
from mqtt_hub.structs import Message, Payload

if TYPE_CHECKING:
    from mqtt_hub.structs import PublisherProtocol

logger = get_logger(__name__)

DRAIN_TASK_NAME = "MessageQueue_DRAIN"


class MessageQueue:
    """At-most-once, latest-value-wins publish queue for one Publisher."""

    lp: str = "queue:"

    def __init__(self, publisher: PublisherProtocol, *, delay_ms: int = MQTT_HUB_QUEUE_DELAY_MS) -> None:
        self.publisher: PublisherProtocol = publisher
        self.delay: float = max(0, delay_ms) / 1000
        self._order: deque[Message] = deque()
        self._messages: dict[str, Message] = {}
        self._running: bool = True
        self._draining: bool = False
        self._drain_task: asyncio.Task[None] | None = None

        # queued topics belong to the connection they were addressed to
        self._unsubscribe = publisher.on_unregistered.subscribe(self.reset)

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def pending_count(self) -> int:
        """Entries in the order log, stale ones included."""
        return len(self._order)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_draining(self) -> bool:
        return self._draining

    def enqueue(
        self,
        topic: str,
        payload: Payload,
        qos: int | None = None,
        retain: bool | None = None,
        *,
        process: bool = True,
    ) -> None:
        """Queue ``payload`` for ``topic``.

        Ignored when the topic is empty or the publisher is not registered.
        If the topic is already pending its message is updated in place;
        omitted options keep their queued values. Pass ``process=False`` to
        queue a batch and drain once afterwards.
        """
        if not topic or not self.publisher.is_registered():
            return

        message = self._messages.get(topic)
        if message is None:
            message = Message(
                topic,
                payload,
                DEFAULT_QOS if qos is None else qos,
                bool(retain),
            )
            self._messages[topic] = message
            self._order.append(message)
        else:
            message.update(payload, qos, retain)

        if process:
            self._schedule_drain()

    def get(self, topic: str) -> Message | None:
        """Return the pending message for ``topic`` without removing it."""
        return self._messages.get(topic)

    def cancel(self, topic: str) -> None:
        """Drop the pending publish for ``topic``.

        A message already taken by the drain loop is in flight and is sent
        regardless.
        """
        if self._messages.pop(topic, None) is not None:
            logger.debug("%s cancelled pending publish: %s", self.lp, topic)

    def start(self) -> None:
        self._running = True
        self._schedule_drain()

    def stop(self) -> None:
        """Stop starting new publishes. Queued state is kept."""
        self._running = False

    def reset(self) -> None:
        """Forget every pending message."""
        if self._messages or self._order:
            logger.debug(
                "%s clearing %s pending topic(s), %s order entries",
                self.lp,
                len(self._messages),
                len(self._order),
            )
        self._order.clear()
        self._messages.clear()

    clear = reset

    def destroy(self) -> None:
        self.stop()
        self.reset()
        self._unsubscribe()

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no drain task is running.

        Returns False if ``timeout`` seconds passed first.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._drain_task is not None and not self._drain_task.done():
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            _ = await asyncio.wait({self._drain_task}, timeout=remaining)
        return True

    def process(self) -> None:
        """Schedule a drain of the queued messages, e.g. after a batch enqueue."""
        self._schedule_drain()

    def _schedule_drain(self) -> None:
        if self._draining or not self._running or not self._order:
            return
        if self._drain_task is not None and not self._drain_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("%s no running event loop, drain deferred", self.lp)
            return
        self._drain_task = loop.create_task(self.drain(), name=DRAIN_TASK_NAME)

    def _next_message(self) -> Message | None:
        while self._order:
            message = self._order.popleft()
            if self._messages.get(message.topic) is message:
                del self._messages[message.topic]
                return message
            logger.debug("%s skipping stale entry: %s", self.lp, message.topic)
        return None

    async def drain(self) -> None:
        """Publish pending messages one at a time until the queue is empty.

        Returns immediately if a drain is already in progress. Stops early when
        the queue is stopped or the publisher loses its registration.
        """
        if self._draining:
            return
        self._draining = True
        lp = f"{self.lp}drain:"
        count = 0
        with correlation_context():
            try:
                while self._running and self.publisher.is_registered() and self._order:
                    message = self._next_message()
                    if message is None:
                        break
                    count += 1
                    await self._send(message)
                    if self.delay:
                        await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                logger.debug("%s drain cancelled after %s message(s)", lp, count)
                raise
            except Exception:
                logger.exception("%s Failed to process queue", lp)
            finally:
                self._draining = False

            if count >= DRAIN_SUMMARY_THRESHOLD:
                logger.info("%s Done processing messages: %s", lp, count)

    async def _send(self, message: Message) -> None:
        lp = f"{self.lp}send:"
        try:
            await self.publisher.publish(message)
        except HubTransportError as exc:
            logger.error("%s Failed to send message: %s", lp, exc, extra={"topic": message.topic})
        except Exception:
            logger.exception("%s Failed to send message", lp, extra={"topic": message.topic})
