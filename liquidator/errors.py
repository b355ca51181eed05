"""
Exceptions raised by the liquidation queue accessor.

Transport failures are not wrapped: redis.RedisError subclasses propagate
to the caller unchanged after being logged.
"""

from typing import Any, Optional


class QueueError(Exception):
    """Base class for queue accessor errors."""


class NotConnectedError(QueueError):
    """Raised when a queue operation runs before connect()."""

    def __init__(self, operation: str):
        super().__init__(f"Redis client not connected (operation: {operation})")
        self.operation = operation


class MalformedRecordError(QueueError):
    """
    Raised when popped entries are not valid UTF-8 JSON.

    The entries are already removed from the list when this is raised, so
    the records that did parse are attached and the caller can still
    process them. Malformed entries are kept as popped (bytes).
    """

    def __init__(
        self,
        malformed: list,
        records: Optional[list[Any]] = None,
    ):
        super().__init__(f"{len(malformed)} malformed record(s) in batch")
        self.malformed = malformed
        self.records = records or []


class EndpointMismatchError(QueueError):
    """Raised in strict mode when connect() asks for a second endpoint."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Already connected to {current}, refusing to switch to {requested}"
        )
        self.current = current
        self.requested = requested
