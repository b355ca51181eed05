"""
Liquidator work queue.

Shared Redis list of liquidation candidates (JSON positions) plus atomic
counters, consumed in batches by the liquidation bot.
"""

from liquidator.config import MalformedPolicy, QueueConfig
from liquidator.consumer import BatchResult, LiquidationConsumer
from liquidator.errors import (
    EndpointMismatchError,
    MalformedRecordError,
    NotConnectedError,
    QueueError,
)
from liquidator.storage import LiquidationQueue, RedisConnection

__version__ = "0.1.0"

__all__ = [
    "BatchResult",
    "EndpointMismatchError",
    "LiquidationConsumer",
    "LiquidationQueue",
    "MalformedPolicy",
    "MalformedRecordError",
    "NotConnectedError",
    "QueueConfig",
    "QueueError",
    "RedisConnection",
]
