"""
Storage layer.

- RedisConnection: owner of the shared Redis client handle
- LiquidationQueue: batch dequeue of liquidation candidates, counters
"""

from liquidator.storage.redis_queue import LiquidationQueue, RedisConnection

__all__ = ["LiquidationQueue", "RedisConnection"]
