"""
Unit tests for TopicsRegistry.

Tests topic ownership tracking and cancellation of pending publishes.
"""

import pytest


class TestTopicsRegistry:
    """Tests for TopicsRegistry register/remove"""

    def test_register_groups_topics_by_owner(self, registry):
        """Test that topics are tracked per owner"""
        registry.register("dev1", "dev1/state")
        registry.register("dev1", "dev1/brightness")
        registry.register("dev2", "dev2/state")

        assert registry.topics_for("dev1") == {"dev1/state", "dev1/brightness"}
        assert sorted(registry.owners()) == ["dev1", "dev2"]

    def test_register_ignores_empty_values(self, registry):
        """Test that empty owner ids and topics are not recorded"""
        registry.register("", "t")
        registry.register("dev1", "")

        assert registry.owners() == []

    def test_topics_for_unknown_owner(self, registry):
        assert registry.topics_for("nobody") == frozenset()

    @pytest.mark.asyncio
    async def test_remove_cancels_pending_topics(self, publisher, queue, registry):
        """Test that removing an owner cancels only its queued topics"""
        queue.enqueue("dev1/state", "on", process=False)
        queue.enqueue("dev2/state", "off", process=False)
        registry.register("dev1", "dev1/state")
        registry.register("dev2", "dev2/state")

        registry.remove("dev1")
        await queue.drain()

        assert publisher.topics == ["dev2/state"]
        assert registry.owners() == ["dev2"]

    def test_remove_without_cancel_keeps_queue(self, queue, registry):
        """Test that cancel=False only forgets the ownership"""
        queue.enqueue("dev1/state", "on", process=False)
        registry.register("dev1", "dev1/state")

        registry.remove("dev1", cancel=False)

        assert queue.get("dev1/state") is not None
        assert registry.topics_for("dev1") == frozenset()

    def test_cancel_all_ignores_topics_not_pending(self, queue, registry):
        """Test that cancelling unknown topics is harmless"""
        queue.enqueue("a", "1", process=False)

        registry.cancel_all(["a", "missing"])

        assert len(queue) == 0

    def test_clear(self, registry):
        registry.register("dev1", "dev1/state")

        registry.clear()

        assert registry.owners() == []
