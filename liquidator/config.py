"""
Queue configuration.

The queue key is a deployment-time binding: the collector that fills the
list and the liquidator that drains it must agree on it, so the environment
value always wins over anything set in code or in the settings file.

Key precedence:
    1. LIQUIDATION_QUEUE_NAME environment variable (production)
    2. Caller-supplied default (constructor argument or settings file)
    3. "testing-queue"
"""

import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional
import structlog
import yaml

logger = structlog.get_logger(__name__)

QUEUE_NAME_ENV = "LIQUIDATION_QUEUE_NAME"
REDIS_URL_ENV = "REDIS_URL"
DEFAULT_QUEUE_KEY = "testing-queue"


class MalformedPolicy(Enum):
    """What pop_batch does with entries that are not valid JSON."""
    SKIP = "skip"    # Log and drop the entry, return the rest
    RAISE = "raise"  # Raise MalformedRecordError after parsing the batch


def resolve_queue_key(
    default_key: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Resolve the list key using the documented precedence."""
    env = os.environ if environ is None else environ
    return env.get(QUEUE_NAME_ENV) or default_key or DEFAULT_QUEUE_KEY


def _expand_env_vars(value, environ: Mapping[str, str]):
    """Expand ${VAR} references; unresolved references become None."""
    if not isinstance(value, str) or "${" not in value:
        return value

    def replace_env(match):
        return environ.get(match.group(1), match.group(0))

    expanded = re.sub(r"\$\{([^}]+)\}", replace_env, value)
    return None if "${" in expanded else expanded


@dataclass(frozen=True)
class QueueConfig:
    """
    Settings for a RedisConnection / LiquidationQueue pair.

    Built once at startup (from_env or from_yaml) and passed down.
    """
    queue_key: str = DEFAULT_QUEUE_KEY
    redis_url: Optional[str] = None  # None -> localhost:6379
    socket_timeout: float = 5.0

    malformed_policy: MalformedPolicy = MalformedPolicy.SKIP

    # Return []/""/0 and log when not connected, instead of raising
    degrade_when_disconnected: bool = True

    # Raise on connect() to a different endpoint once connected
    strict_endpoint: bool = False

    @classmethod
    def from_env(
        cls,
        default_key: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        **overrides,
    ) -> "QueueConfig":
        """Build config from environment variables."""
        env = os.environ if environ is None else environ

        config = cls(
            queue_key=resolve_queue_key(default_key, env),
            redis_url=env.get(REDIS_URL_ENV) or None,
            **overrides,
        )
        logger.debug(
            "queue_config_resolved",
            queue_key=config.queue_key,
            source="env",
        )
        return config

    @classmethod
    def from_yaml(
        cls,
        path: str,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "QueueConfig":
        """
        Build config from a YAML settings file.

        Expected layout:

            redis:
              url: ${REDIS_URL}
              socket_timeout: 5.0
            queue:
              key: liquidation-queue
              malformed_policy: skip
              degrade_when_disconnected: true
              strict_endpoint: false

        A missing file falls back to environment-only configuration.
        """
        env = os.environ if environ is None else environ
        config_path = Path(path)

        if not config_path.exists():
            logger.warning("config_not_found_using_defaults", path=str(path))
            return cls.from_env(environ=env)

        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        redis_section = raw.get("redis") or {}
        queue_section = raw.get("queue") or {}

        config = cls(
            queue_key=resolve_queue_key(
                _expand_env_vars(queue_section.get("key"), env), env
            ),
            redis_url=(
                _expand_env_vars(redis_section.get("url"), env)
                or env.get(REDIS_URL_ENV)
                or None
            ),
            socket_timeout=float(redis_section.get("socket_timeout", 5.0)),
            malformed_policy=MalformedPolicy(
                queue_section.get("malformed_policy", MalformedPolicy.SKIP.value)
            ),
            degrade_when_disconnected=bool(
                queue_section.get("degrade_when_disconnected", True)
            ),
            strict_endpoint=bool(queue_section.get("strict_endpoint", False)),
        )

        logger.info("config_loaded", path=str(path), queue_key=config.queue_key)
        return config
