"""Exception hierarchy for MQTT Hub.

Transport errors are raised at the Publisher boundary (connect, disconnect,
publish). The dispatch core and the lifecycle catch and log them; they are
never fatal and never retried automatically.
"""

from __future__ import annotations


class HubError(Exception):
    """Base class for all MQTT Hub errors."""


class HubTransportError(HubError):
    """Broker transport failure.

    Attributes:
        reason: Specific failure reason
        operation: Publisher operation that failed

    """

    def __init__(self, reason: str, operation: str = "unknown") -> None:
        self.reason: str = reason
        self.operation: str = operation
        super().__init__(f"Transport error during {operation}: {reason}")


class HubConnectError(HubTransportError):
    """Connecting to the broker failed (refused, bad credentials, timeout)."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason, operation="connect")


class HubDisconnectError(HubTransportError):
    """Closing the broker connection failed."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason, operation="disconnect")


class HubPublishError(HubTransportError):
    """A single publish was rejected or could not be sent.

    Attributes:
        topic: Topic of the message that failed

    """

    def __init__(self, topic: str, reason: str) -> None:
        self.topic: str = topic
        super().__init__(f"{reason} (topic: {topic})", operation="publish")


class HubConfigError(HubError):
    """Hub settings are invalid or name an unknown protocol."""
