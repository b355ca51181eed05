"""
Pytest configuration and fixtures.

Shared fixtures for all tests.
"""

import os
from collections import defaultdict, deque
from unittest.mock import MagicMock

import pytest
import redis

from liquidator.config import QueueConfig
from liquidator.storage import LiquidationQueue, RedisConnection

# Set test environment
os.environ["ENVIRONMENT"] = "test"


def make_fake_redis():
    """
    Mock redis client backed by in-memory lists and counters.

    Covers the commands the queue uses: LPOP (with and without count),
    RPUSH, LLEN, INCRBY, PING, CLOSE. Entries are stored as bytes, as
    redis-py returns them without decode_responses.
    """
    lists = defaultdict(deque)
    counters = defaultdict(int)

    def lpop(name, count=None):
        items = lists[name]
        if count is None:
            return items.popleft() if items else None
        if not items:
            return None
        return [items.popleft() for _ in range(min(count, len(items)))]

    def rpush(name, *values):
        lists[name].extend(v.encode("utf-8") if isinstance(v, str) else v for v in values)
        return len(lists[name])

    def llen(name):
        return len(lists[name])

    def incrby(name, amount=1):
        counters[name] += amount
        return counters[name]

    client = MagicMock(spec=redis.Redis)
    client.lpop.side_effect = lpop
    client.rpush.side_effect = rpush
    client.llen.side_effect = llen
    client.incrby.side_effect = incrby
    client.ping.return_value = True
    client.lists = lists
    client.counters = counters
    return client


@pytest.fixture(autouse=True)
def clear_queue_env(monkeypatch):
    """Keep a developer's shell settings out of the tests."""
    monkeypatch.delenv("LIQUIDATION_QUEUE_NAME", raising=False)
    monkeypatch.delenv("REDIS_URL", raising=False)


@pytest.fixture
def fake_redis():
    return make_fake_redis()


@pytest.fixture
def redis_factory(monkeypatch, fake_redis):
    """Patch redis.Redis.from_url to hand out the fake client."""
    factory = MagicMock(return_value=fake_redis)
    monkeypatch.setattr(redis.Redis, "from_url", factory)
    return factory


@pytest.fixture
def queue_config():
    return QueueConfig(queue_key="test-liquidations")


@pytest.fixture
def connection(redis_factory, queue_config):
    conn = RedisConnection(queue_config)
    conn.connect()
    yield conn
    conn.close()


@pytest.fixture
def queue(connection):
    return LiquidationQueue(connection)
