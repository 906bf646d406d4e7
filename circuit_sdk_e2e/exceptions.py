"""
Custom exceptions for the Circuit SDK end-to-end harness.

Exception Hierarchy:
    HarnessError (base)
    ├── HarnessConfigError - Invalid configuration or client factory
    ├── ExpectationTimeoutError - Expectation list not satisfied in time
    ├── ExpectationCancelledError - Wait cancelled before completion
    ├── PeerActorError - Misuse of a peer actor proxy
    ├── ScenarioSkipped - Connected SDK lacks a required feature
    └── ScenarioAssertionError - Re-fetched state did not match

Errors raised by the SDK client itself are NOT part of this hierarchy.
They propagate unchanged so the failing remote call stays visible.
"""

from __future__ import annotations

from typing import Any


class HarnessError(Exception):
    """
    Base exception for all harness errors.

    Example:
        try:
            await run_label_suite(ctx)
        except HarnessError as e:
            logger.error(f"Scenario failed: {e}")
    """

    pass


class HarnessConfigError(HarnessError):
    """
    Raised when configuration is missing or invalid.

    Covers unreadable config files, malformed JSON, non-positive timeouts,
    unknown log levels and client factories that cannot be imported.

    Example:
        raise HarnessConfigError("expect_timeout must be positive, got 0")
    """

    pass


class ExpectationTimeoutError(HarnessError):
    """
    Raised when an expectation list is not satisfied before its deadline.

    Attributes:
        index: Position of the expectation that was still outstanding.
        event_type: Event type that expectation was waiting for.
        description: Optional human-readable description of the expectation.
        timeout: The timeout that was exceeded, in seconds.
        matched_count: How many expectations had been satisfied.

    Example:
        raise ExpectationTimeoutError(
            index=1, event_type="callStatus", timeout=10.0, matched_count=1
        )
    """

    def __init__(
        self,
        index: int,
        event_type: str,
        timeout: float,
        matched_count: int,
        description: str | None = None,
    ):
        self.index = index
        self.event_type = event_type
        self.timeout = timeout
        self.matched_count = matched_count
        self.description = description
        label = f"{event_type}: {description}" if description else event_type
        super().__init__(
            f"Expectation {index} ({label}) not satisfied within {timeout}s "
            f"({matched_count} matched)"
        )


class ExpectationCancelledError(HarnessError):
    """
    Raised by a pending wait when its waiter is cancelled explicitly.

    Attributes:
        index: Position of the expectation that was still outstanding.
        event_type: Event type that expectation was waiting for.
    """

    def __init__(self, index: int, event_type: str):
        self.index = index
        self.event_type = event_type
        super().__init__(f"Wait cancelled at expectation {index} ({event_type})")


class PeerActorError(HarnessError):
    """
    Raised when a peer actor is asked to do something it cannot do.

    This covers unknown or non-callable method names and calls made after
    ``destroy()``. Errors from the underlying client pass through unchanged.
    """

    pass


class ScenarioSkipped(HarnessError):
    """
    Raised when a scenario cannot run against the connected SDK.

    Example:
        raise ScenarioSkipped("Label API not supported by this client")
    """

    pass


class ScenarioAssertionError(HarnessError, AssertionError):
    """
    Raised when a post-action state check fails.

    Subclasses AssertionError so test runners report it as a failed
    assertion rather than an error.

    Attributes:
        details: Extra context (ids, observed values) for diagnostics.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.details = details or {}
        if self.details:
            rendered = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            super().__init__(f"{message} ({rendered})")
        else:
            super().__init__(message)
