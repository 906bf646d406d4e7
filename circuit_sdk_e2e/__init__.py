"""
Circuit SDK end-to-end harness.

Drives a third-party real-time collaboration SDK (the Circuit client)
through its public API and asserts on asynchronous event delivery.

The reusable core is the ordered event matcher:

    waiter = expect_events(client, [
        expectation("callStatus", lambda e: e["call"]["state"] == "Initiated"),
        expectation("callStatus", lambda e: e["call"]["state"] == "Waiting"),
    ])
    await client.start_conference(conv_id, AUDIO_ONLY)
    events = await waiter

Everything else (peer actors, scenario context, the call-muting and label
suites) is orchestration on top of that core.

Usage:
    Point CIRCUIT_E2E_CONFIG at a JSON config (see config.py) and run:

    ```bash
    RUN_LIVE_TESTS=1 python -m pytest tests/integration -v
    ```
"""

from __future__ import annotations

from ._constants import (
    CallState,
    CallStatusReason,
    EventType,
    FilterTarget,
    RetrieveAction,
)
from .client import CircuitClient, connect, labels_supported, load_client_factory
from .config import HarnessConfig, configure_logging, load_config
from .events import Event, EventEmitter, EventSource, log_events
from .exceptions import (
    ExpectationCancelledError,
    ExpectationTimeoutError,
    HarnessConfigError,
    HarnessError,
    PeerActorError,
    ScenarioAssertionError,
    ScenarioSkipped,
)
from .matcher import Expectation, ExpectationWaiter, expect_events, expectation
from .peer import PeerActor
from .scenario import ScenarioContext, check, poll_until, settle

__all__ = [
    # Matcher
    "Expectation",
    "ExpectationWaiter",
    "expect_events",
    "expectation",
    # Events
    "Event",
    "EventEmitter",
    "EventSource",
    "log_events",
    # Client boundary
    "CircuitClient",
    "PeerActor",
    "connect",
    "labels_supported",
    "load_client_factory",
    # Scenarios
    "ScenarioContext",
    "check",
    "poll_until",
    "settle",
    # Configuration
    "HarnessConfig",
    "configure_logging",
    "load_config",
    # SDK enums
    "CallState",
    "CallStatusReason",
    "EventType",
    "FilterTarget",
    "RetrieveAction",
    # Exceptions
    "HarnessError",
    "HarnessConfigError",
    "ExpectationTimeoutError",
    "ExpectationCancelledError",
    "PeerActorError",
    "ScenarioSkipped",
    "ScenarioAssertionError",
]
