"""
Redis-backed liquidation work queue.

The collector service pushes JSON-encoded positions that look unhealthy onto
a shared Redis list; the liquidator pops them in batches and evaluates them.
Redis is also used for a handful of integer counters (liquidations executed,
failures, ...).

Delivery is at-most-once: LPOP removes an entry before anyone has looked at
it, and nothing here re-queues it if downstream processing fails.
"""

import json
from contextlib import contextmanager
from threading import Lock
from typing import Any, Iterator, Optional
import structlog

import redis

from liquidator.config import MalformedPolicy, QueueConfig, resolve_queue_key
from liquidator.errors import (
    EndpointMismatchError,
    MalformedRecordError,
    NotConnectedError,
)

logger = structlog.get_logger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"


class RedisConnection:
    """
    Owner of the single Redis client handle.

    Construct one in the composition root and pass it to every
    LiquidationQueue that should share it. connect() is idempotent: the
    first call creates and pings the client, later calls return the same
    object.

    States:
    - Disconnected (initial, and again after close())
    - Connected
    """

    def __init__(self, config: Optional[QueueConfig] = None):
        self.config = config or QueueConfig()
        self._client: Optional[redis.Redis] = None
        self._endpoint: Optional[str] = None
        self._lock = Lock()

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client

    @property
    def endpoint(self) -> Optional[str]:
        return self._endpoint

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def connect(self, url: Optional[str] = None) -> redis.Redis:
        """
        Return the shared client, creating it on first use.

        Args:
            url: Redis URL. Falls back to the configured URL, then to
                localhost. Ignored (with a warning) once connected, unless
                strict_endpoint is set.

        Raises:
            redis.ConnectionError: Handshake (PING) failed. No handle is kept.
            EndpointMismatchError: Strict mode and url names another endpoint.
        """
        with self._lock:
            if self._client is not None:
                self._check_endpoint(url)
                return self._client

            endpoint = url or self.config.redis_url or DEFAULT_REDIS_URL
            client = redis.Redis.from_url(
                endpoint,
                socket_timeout=self.config.socket_timeout,
                decode_responses=False,  # Entries are decoded one by one
            )

            # Handshake
            try:
                client.ping()
            except redis.RedisError as e:
                logger.error(
                    "redis_connection_failed",
                    endpoint=endpoint,
                    error=str(e),
                )
                client.close()
                raise

            self._client = client
            self._endpoint = endpoint

        logger.info("redis_connected", endpoint=endpoint)
        return client

    def _check_endpoint(self, requested: Optional[str]) -> None:
        if requested is None or requested == self._endpoint:
            return

        if self.config.strict_endpoint:
            raise EndpointMismatchError(self._endpoint, requested)

        logger.warning(
            "redis_endpoint_ignored",
            connected=self._endpoint,
            requested=requested,
        )

    def require_client(self, operation: str) -> redis.Redis:
        """Return the client or raise NotConnectedError."""
        client = self._client
        if client is None:
            raise NotConnectedError(operation)
        return client

    @contextmanager
    def observe(self, operation: str, key: str) -> Iterator[None]:
        """
        Log store failures for one round trip.

        Errors are re-raised; the accessor never decides on its own that a
        transport failure is fatal.
        """
        try:
            yield
        except redis.RedisError as e:
            logger.error(
                "redis_command_failed",
                operation=operation,
                key=key,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise

    def close(self) -> None:
        """Close the client and return to the Disconnected state."""
        with self._lock:
            client, self._client = self._client, None
            self._endpoint = None

        if client is not None:
            client.close()
            logger.info("redis_connection_closed")

    def __enter__(self) -> "RedisConnection":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class LiquidationQueue:
    """
    Accessor for the shared liquidation list and for named counters.

    Disconnected policy (all read operations):
    - degrade_when_disconnected=True: log, return []/""/0
    - degrade_when_disconnected=False: raise NotConnectedError

    push() always raises when disconnected; a producer must never lose
    records silently.
    """

    def __init__(
        self,
        connection: RedisConnection,
        key: Optional[str] = None,
        config: Optional[QueueConfig] = None,
    ):
        """
        Args:
            connection: Shared connection owner
            key: Default list key. LIQUIDATION_QUEUE_NAME still takes
                priority, since the key has to match the collector's.
            config: Overrides connection.config for policies
        """
        self.connection = connection
        self.config = config or connection.config

        # Resolved once
        self.key = resolve_queue_key(key) if key else self.config.queue_key

    # =========================================================================
    # Consumer side
    # =========================================================================

    def pop_batch(self, count: int) -> list[Any]:
        """
        Pop up to `count` records from the head of the list, oldest first.

        Returns fewer records if fewer are queued; never waits. Entries are
        parsed from JSON. Malformed entries follow config.malformed_policy.
        """
        if count < 0:
            raise ValueError(f"count must be >= 0, got {count}")
        if count == 0:
            return []

        try:
            client = self.connection.require_client("pop_batch")
        except NotConnectedError as e:
            return self._disconnected(e, [])

        with self.connection.observe("pop_batch", self.key):
            entries = client.lpop(self.key, count)

        if not entries:
            return []

        return self._parse_batch(entries)

    def pop_one(self) -> str:
        """
        Pop a single raw (unparsed) entry, or "" if the list is empty.

        Only UTF-8 decoding is checked; an undecodable entry follows
        config.malformed_policy.
        """
        try:
            client = self.connection.require_client("pop_one")
        except NotConnectedError as e:
            return self._disconnected(e, "")

        with self.connection.observe("pop_one", self.key):
            entry = client.lpop(self.key)

        if not entry:
            return ""

        try:
            return _decode(entry)
        except UnicodeDecodeError as e:
            logger.warning(
                "malformed_record",
                queue_key=self.key,
                index=0,
                error=str(e),
            )
            if self.config.malformed_policy is MalformedPolicy.RAISE:
                raise MalformedRecordError([entry])
            return ""

    def length(self) -> int:
        """Number of entries waiting in the list."""
        try:
            client = self.connection.require_client("length")
        except NotConnectedError as e:
            return self._disconnected(e, 0)

        with self.connection.observe("length", self.key):
            return int(client.llen(self.key))

    # =========================================================================
    # Counters
    # =========================================================================

    def increment_by(self, key: str, value: int) -> int:
        """
        Atomically add `value` to the counter at `key` and return the total.

        A missing key counts from zero.
        """
        try:
            client = self.connection.require_client("increment_by")
        except NotConnectedError as e:
            return self._disconnected(e, 0)

        with self.connection.observe("increment_by", key):
            return int(client.incrby(key, value))

    # =========================================================================
    # Producer side
    # =========================================================================

    def push(self, *records: Any) -> int:
        """
        Append records to the tail of the list.

        Strings are pushed as-is (assumed to be JSON already), anything else
        is JSON-encoded. Returns the new list length.
        """
        if not records:
            raise ValueError("push requires at least one record")

        client = self.connection.require_client("push")
        payload = [r if isinstance(r, str) else json.dumps(r) for r in records]

        with self.connection.observe("push", self.key):
            length = int(client.rpush(self.key, *payload))

        logger.debug("records_pushed", queue_key=self.key, count=len(payload))
        return length

    # =========================================================================
    # Helpers
    # =========================================================================

    def _disconnected(self, error: NotConnectedError, default):
        if not self.config.degrade_when_disconnected:
            raise error

        logger.error(
            "redis_not_connected",
            operation=error.operation,
            queue_key=self.key,
        )
        return default

    def _parse_batch(self, entries: list[bytes]) -> list[Any]:
        records = []
        malformed = []

        for index, entry in enumerate(entries):
            try:
                records.append(json.loads(_decode(entry)))
            except ValueError as e:  # Includes UnicodeDecodeError
                malformed.append(entry)
                logger.warning(
                    "malformed_record",
                    queue_key=self.key,
                    index=index,
                    error=str(e),
                )

        if not malformed:
            return records

        if self.config.malformed_policy is MalformedPolicy.RAISE:
            raise MalformedRecordError(malformed, records)

        logger.error(
            "malformed_records_skipped",
            queue_key=self.key,
            skipped=len(malformed),
            kept=len(records),
        )
        return records


def _decode(entry) -> str:
    """Decode one raw list entry as UTF-8."""
    return entry.decode("utf-8") if isinstance(entry, bytes) else entry
