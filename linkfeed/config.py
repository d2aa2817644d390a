"""Configuration utilities for the linkfeed server."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

NAME = "linkfeed"
VERSION = "0.3.0"
HOMEPAGE = "https://github.com/linkfeed/linkfeed"

# Authority used when minting tag: URIs for the feed and its entries.
TAG_AUTHORITY = "linkfeed.7bit.org"

DEFAULT_ADDR = "0.0.0.0"
DEFAULT_PORT = 8001
MIN_TOKEN_LENGTH = 32

ENV_ADDRESS = "LINKFEED_ADDRESS"
ENV_PORT = "LINKFEED_PORT"
ENV_PRIVATE_TOKEN = "LINKFEED_PRIVATE_TOKEN"
ENV_FEED_TOKEN = "LINKFEED_FEED_TOKEN"
ENV_LOG = "LINKFEED_LOG"

LOGGER = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when the environment does not hold a usable configuration."""


@dataclass(frozen=True)
class Config:
    """Runtime configuration values for the server."""

    private_token: str
    feed_token: str
    addr: str = DEFAULT_ADDR
    port: int = DEFAULT_PORT

    @property
    def feed_route(self) -> str:
        return f"/feed/{self.feed_token}"

    def __repr__(self) -> str:
        # Tokens are secrets and must not end up in logs or tracebacks.
        return f"Config(addr={self.addr!r}, port={self.port!r})"


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load configuration from environment variables and defaults."""

    environ = os.environ if environ is None else environ

    addr = environ.get(ENV_ADDRESS) or DEFAULT_ADDR
    port = _parse_port(environ.get(ENV_PORT))
    private_token = _read_token(environ, ENV_PRIVATE_TOKEN)
    feed_token = _read_token(environ, ENV_FEED_TOKEN)

    return Config(private_token=private_token, feed_token=feed_token, addr=addr, port=port)


def _parse_port(value: Optional[str]) -> int:
    if not value:
        return DEFAULT_PORT
    try:
        port = int(value)
    except ValueError:
        LOGGER.warning("Ignoring invalid %s value %r", ENV_PORT, value)
        return DEFAULT_PORT
    if not 0 <= port <= 65535:
        LOGGER.warning("Ignoring out of range %s value %d", ENV_PORT, port)
        return DEFAULT_PORT
    return port


def parse_log_spec(spec: Optional[str], default: int = logging.INFO) -> Tuple[int, Dict[str, int]]:
    """Parse a filter like ``"info"`` or ``"warning,linkfeed.server=debug"``.

    Returns the root level and per-logger overrides. Unknown levels are ignored.
    """

    level = default
    overrides: Dict[str, int] = {}
    for item in (spec or "").split(","):
        item = item.strip()
        if not item:
            continue
        name, _, value = item.rpartition("=")
        parsed = logging.getLevelName(value.strip().upper())
        if not isinstance(parsed, int):
            LOGGER.warning("Ignoring unknown log level %r in %s", value, ENV_LOG)
            continue
        if name.strip():
            overrides[name.strip()] = parsed
        else:
            level = parsed
    return level, overrides


def _read_token(environ: Mapping[str, str], name: str) -> str:
    token = environ.get(name)
    if token is None:
        raise ConfigError(f"{name} environment variable is not set")
    if len(token) < MIN_TOKEN_LENGTH:
        raise ConfigError(f"{name} is too short")
    return token


__all__ = ["Config", "ConfigError", "load_config", "parse_log_spec"]
