"""
Harness configuration.

Connection settings and credentials are opaque to the harness: they are
handed to the SDK client factory and to ``logon()`` as-is. Only the timing
budget and the logging level are interpreted here.

Resolution order for the config file:
1. Explicit ``path`` argument
2. ``CIRCUIT_E2E_CONFIG`` environment variable

Example file:
    {
        "client_factory": "circuit_sdk:Client",
        "client_options": {"domain": "circuitsandbox.net", "client_id": "..."},
        "credentials": {"username": "bot1@example.com", "password": "..."},
        "peer_credentials": [{"username": "peer1@..."}, {"username": "peer2@..."}],
        "conference_participants": ["c2e5d330-5ea2-4f85-aba1-2c00dac2991a"],
        "expect_timeout": 10,
        "log_level": "ERROR"
    }
"""

from __future__ import annotations

import json
import logging
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ._constants import (
    CONFIG_PATH_ENV,
    DEFAULT_CALL_READY_DELAY,
    DEFAULT_EXPECT_TIMEOUT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SEARCH_DELAY,
    DEFAULT_SETTLE_DELAY,
    LOG_LEVEL_ENV,
)
from .exceptions import HarnessConfigError

logger = logging.getLogger(__name__)

_TIMING_KEYS = (
    "expect_timeout",
    "settle_delay",
    "call_ready_delay",
    "search_delay",
    "poll_interval",
)


@dataclass(frozen=True, slots=True)
class HarnessConfig:
    """
    Immutable harness configuration.

    Attributes:
        client_factory: "module:attr" import path of the SDK client class
        client_options: Passed to the client factory unchanged
        credentials: Passed to the primary client's logon() unchanged
        peer_credentials: One credentials mapping per peer actor
        conference_participants: Extra user ids invited to the test conference
        expect_timeout: Default deadline for expectation lists
        settle_delay: Bound for polling state after an action
        call_ready_delay: Pause before peers join a freshly started conference
        search_delay: Bound for polling search results (indexing is async)
        poll_interval: Pause between polls
        log_level: Level name applied to the harness (and SDK) loggers
    """

    client_factory: str | None = None
    client_options: Mapping[str, Any] = field(default_factory=dict)
    credentials: Mapping[str, Any] = field(default_factory=dict)
    peer_credentials: tuple[Mapping[str, Any], ...] = ()
    conference_participants: tuple[str, ...] = ()
    expect_timeout: float = DEFAULT_EXPECT_TIMEOUT
    settle_delay: float = DEFAULT_SETTLE_DELAY
    call_ready_delay: float = DEFAULT_CALL_READY_DELAY
    search_delay: float = DEFAULT_SEARCH_DELAY
    poll_interval: float = DEFAULT_POLL_INTERVAL
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        for key in _TIMING_KEYS:
            value = getattr(self, key)
            if not (math.isfinite(value) and value > 0):
                raise HarnessConfigError(f"{key} must be a positive finite number, got {value}")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise HarnessConfigError(f"Unknown log_level '{self.log_level}'")

    @property
    def sdk_logger_name(self) -> str | None:
        """Top-level module of ``client_factory``; the SDK logs under it."""
        if not self.client_factory:
            return None
        return self.client_factory.partition(":")[0].split(".")[0] or None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HarnessConfig:
        """
        Build a config from a plain mapping (e.g. parsed JSON).

        Unknown keys are ignored with a debug log so configs shared with
        other tooling keep working.

        Raises:
            HarnessConfigError: If a value has the wrong type or range
        """
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            logger.debug(f"[CONFIG] Ignoring unknown keys: {sorted(unknown)}")

        kwargs: dict[str, Any] = {}
        try:
            if data.get("client_factory"):
                kwargs["client_factory"] = str(data["client_factory"])
            for key in ("client_options", "credentials"):
                if key in data:
                    kwargs[key] = dict(data[key] or {})
            if "peer_credentials" in data:
                kwargs["peer_credentials"] = tuple(dict(c) for c in data["peer_credentials"] or ())
            if "conference_participants" in data:
                kwargs["conference_participants"] = tuple(
                    str(p) for p in data["conference_participants"] or ()
                )
            for key in _TIMING_KEYS:
                if key in data:
                    kwargs[key] = float(data[key])
        except (TypeError, ValueError) as e:
            raise HarnessConfigError(f"Invalid configuration: {e}") from e

        log_level = os.environ.get(LOG_LEVEL_ENV) or data.get("log_level")
        if log_level:
            kwargs["log_level"] = str(log_level)

        return cls(**kwargs)


def load_config(path: str | Path | None = None) -> HarnessConfig:
    """
    Load configuration from a JSON file.

    Args:
        path: Config file path; falls back to $CIRCUIT_E2E_CONFIG

    Raises:
        HarnessConfigError: If no path is given, or the file is unreadable,
            malformed or invalid
    """
    resolved = path or os.environ.get(CONFIG_PATH_ENV)
    if not resolved:
        raise HarnessConfigError(
            f"No config path given. Pass one explicitly or set {CONFIG_PATH_ENV}."
        )

    config_path = Path(resolved)
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise HarnessConfigError(f"Cannot read config file {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise HarnessConfigError(f"Malformed JSON in {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise HarnessConfigError(f"Config root must be an object, got {type(raw).__name__}")

    config = HarnessConfig.from_dict(raw)
    logger.debug(f"[CONFIG] Loaded {config_path} (log_level={config.log_level})")
    return config


def configure_logging(level: str | int, *logger_names: str | None) -> None:
    """
    Apply ``level`` to the harness package logger and to ``logger_names``.

    Pass ``config.sdk_logger_name`` to apply the same level to the SDK.
    Empty names are skipped.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    for name in (__name__.rpartition(".")[0], *logger_names):
        if name:
            logging.getLogger(name).setLevel(level)
