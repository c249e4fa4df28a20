"""
Unit tests for core data structures.
"""

from mqtt_hub.structs import Message, Signal


class TestMessage:
    """Tests for Message"""

    def test_defaults(self):
        message = Message("a/b", "1")

        assert message.qos == 0
        assert message.retain is False

    def test_update_keeps_omitted_options(self):
        message = Message("a/b", "1", qos=1, retain=True)

        message.update("2")

        assert (message.payload, message.qos, message.retain) == ("2", 1, True)

    def test_messages_compare_by_identity(self):
        assert Message("a/b", "1") != Message("a/b", "1")


class TestSignal:
    """Tests for Signal"""

    def test_emit_calls_subscribers(self):
        signal = Signal("test")
        calls = []
        _ = signal.subscribe(lambda: calls.append("a"))
        _ = signal.subscribe(lambda: calls.append("b"))

        signal.emit()

        assert calls == ["a", "b"]

    def test_unsubscribe(self):
        signal = Signal("test")
        calls = []
        unsubscribe = signal.subscribe(lambda: calls.append("a"))

        unsubscribe()
        unsubscribe()
        signal.emit()

        assert calls == []
        assert len(signal) == 0

    def test_failing_subscriber_does_not_stop_others(self):
        """Test that an exception in one callback is logged and skipped"""
        signal = Signal("test")
        calls = []

        def fail():
            raise RuntimeError("boom")

        _ = signal.subscribe(fail)
        _ = signal.subscribe(lambda: calls.append("ok"))

        signal.emit()

        assert calls == ["ok"]
