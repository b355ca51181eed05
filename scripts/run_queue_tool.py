#!/usr/bin/env python3
"""
Operator tool for the liquidation queue.

Usage:
    python scripts/run_queue_tool.py length
    python scripts/run_queue_tool.py pop --count 10
    python scripts/run_queue_tool.py pop-one
    python scripts/run_queue_tool.py push '{"address": "osmo1..."}'
    python scripts/run_queue_tool.py incr liquidator.executed --by 1
    python scripts/run_queue_tool.py drain --batch-size 100 --max-batches 5

Popping is destructive: entries are gone once printed.
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import redis
import structlog
from dotenv import load_dotenv

from liquidator.config import MalformedPolicy, QueueConfig
from liquidator.consumer import LiquidationConsumer
from liquidator.errors import QueueError
from liquidator.storage import LiquidationQueue, RedisConnection


def setup_logging(log_level: str = "INFO") -> None:
    """Configure structured logging to stderr, keeping stdout for results."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Liquidation queue tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/settings.yaml",
        help="Path to settings file",
    )
    parser.add_argument("--url", type=str, default=None, help="Redis URL")
    parser.add_argument("--key", type=str, default=None, help="Queue key")
    parser.add_argument(
        "--fail-on-malformed",
        action="store_true",
        help="Fail on malformed records instead of skipping them",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("length", help="Print number of queued entries")

    pop = sub.add_parser("pop", help="Pop and print a batch of records")
    pop.add_argument("--count", type=int, default=1)

    sub.add_parser("pop-one", help="Pop and print one raw entry")

    push = sub.add_parser("push", help="Push JSON records")
    push.add_argument("records", nargs="+", help="JSON text, one per record")

    incr = sub.add_parser("incr", help="Increment a counter")
    incr.add_argument("counter")
    incr.add_argument("--by", type=int, default=1)

    drain = sub.add_parser("drain", help="Pop batches and print each record")
    drain.add_argument("--batch-size", type=int, default=100)
    drain.add_argument("--max-batches", type=int, default=1)
    drain.add_argument("--counter-prefix", type=str, default="liquidator")

    return parser


def run(args: argparse.Namespace) -> int:
    config = QueueConfig.from_yaml(args.config)
    if args.url:
        config = replace(config, redis_url=args.url)
    if args.fail_on_malformed:
        config = replace(config, malformed_policy=MalformedPolicy.RAISE)

    with RedisConnection(config) as connection:
        queue = LiquidationQueue(connection, key=args.key)

        if args.command == "length":
            print(queue.length())
        elif args.command == "pop":
            for record in queue.pop_batch(args.count):
                print(json.dumps(record))
        elif args.command == "pop-one":
            print(queue.pop_one())
        elif args.command == "push":
            for record in args.records:
                json.loads(record)  # Reject bad JSON before it reaches the list
            print(queue.push(*args.records))
        elif args.command == "incr":
            print(queue.increment_by(args.counter, args.by))
        elif args.command == "drain":
            consumer = LiquidationConsumer(
                queue,
                handler=lambda record: print(json.dumps(record)),
                batch_size=args.batch_size,
                counter_prefix=args.counter_prefix,
            )
            consumer.run(max_batches=args.max_batches, idle_sleep=0)

    return 0


def main() -> int:
    args = build_parser().parse_args()

    load_dotenv()
    setup_logging(args.log_level)
    logger = structlog.get_logger(__name__)

    try:
        return run(args)
    except (QueueError, redis.RedisError, ValueError) as e:
        logger.error("queue_tool_failed", command=args.command, error=str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
