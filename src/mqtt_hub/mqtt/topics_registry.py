"""Topic ownership for pending-publish cancellation.

Dispatchers register every topic they publish under the id of the entity that
owns it (a device id, ``"hub"``, ...). When the owner goes away its topics are
cancelled in the queue so no state is published for something that no longer
exists.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from mqtt_hub.logging_abstraction import get_logger

if TYPE_CHECKING:
    from mqtt_hub.mqtt.message_queue import MessageQueue

logger = get_logger(__name__)


class TopicsRegistry:
    lp: str = "topics:"

    def __init__(self, message_queue: MessageQueue) -> None:
        self.message_queue: MessageQueue = message_queue
        self._topics: dict[str, set[str]] = {}

    def register(self, owner_id: str, topic: str) -> None:
        if not owner_id or not topic:
            return
        self._topics.setdefault(owner_id, set()).add(topic)

    def topics_for(self, owner_id: str) -> frozenset[str]:
        return frozenset(self._topics.get(owner_id, ()))

    def owners(self) -> list[str]:
        return list(self._topics)

    def cancel_all(self, topics: Iterable[str]) -> None:
        """Cancel the pending publish of every topic given.

        Topics that are not pending are ignored, topics already in flight are
        still delivered.
        """
        for topic in topics:
            self.message_queue.cancel(topic)

    def remove(self, owner_id: str, cancel: bool = True) -> None:
        """Forget ``owner_id`` and, unless ``cancel`` is False, cancel its topics."""
        topics = self._topics.pop(owner_id, set())
        if cancel and topics:
            logger.debug("%s cancelling %s topic(s) of %s", self.lp, len(topics), owner_id)
            self.cancel_all(topics)

    def clear(self) -> None:
        self._topics.clear()
