"""
Ordered asynchronous event matcher.

Correlates events from an EventSource against an ordered list of
expectations and resolves once every expectation has matched in order.

Matching rules:
- Exactly one expectation is active at a time (the one at the cursor)
- An event advances the cursor only if its type equals the active
  expectation's type AND the predicate returns True
- Everything else is ignored: unrelated types, duplicates, out-of-order
  arrivals, predicates that fail or raise
- One subscription per distinct event type, released exactly once

Usage:
    waiter = expect_events(client, [
        Expectation("callStatus", lambda e: e["call"]["state"] == "Initiated"),
        Expectation("callStatus", lambda e: e["call"]["state"] == "Waiting"),
    ])
    call = await client.start_conference(conv_id, AUDIO_ONLY)
    events = await waiter

Subscription happens when expect_events() is called, so the expectation is
in place before the action that triggers the events.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Generator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ._constants import DEFAULT_EXPECT_TIMEOUT
from .events import Event, EventSource, event_type_name
from .exceptions import ExpectationCancelledError, ExpectationTimeoutError

logger = logging.getLogger(__name__)

Predicate = Callable[[Event], bool]


def _always(event: Event) -> bool:
    return True


@dataclass(frozen=True)
class Expectation:
    """
    One (event type, predicate) pair in an expectation list.

    Attributes:
        type: Event type the expectation listens for
        predicate: Called with each candidate event; True means matched
        description: Optional label used in timeout messages
    """

    type: str
    predicate: Predicate = _always
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", event_type_name(self.type))

    def matches(self, event: Event) -> bool:
        """Evaluate the predicate; a raising predicate counts as no match."""
        try:
            return bool(self.predicate(event))
        except Exception as e:
            logger.debug(
                f"[MATCHER] Predicate for '{self.type}' raised {type(e).__name__}: {e} "
                f"- treating as no match"
            )
            return False


def expectation(
    event_type: str | Enum,
    predicate: Predicate = _always,
    description: str | None = None,
) -> Expectation:
    """Build an Expectation, accepting enum event types."""
    return Expectation(type=event_type_name(event_type), predicate=predicate, description=description)


class ExpectationWaiter:
    """
    Wait handle for one expectation list.

    Tracks the cursor, the absolute deadline and the matched events. Owns
    its handler registrations on the source and removes only those, so any
    number of waiters can share one source without cross-talk.

    The waiter is awaitable and resolves to the matched events in order.
    """

    def __init__(
        self,
        source: EventSource,
        expectations: Sequence[Expectation],
        timeout: float = DEFAULT_EXPECT_TIMEOUT,
    ):
        if not expectations:
            raise ValueError("expectations must be a non-empty sequence")
        if not timeout > 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        self._source = source
        self._expectations: tuple[Expectation, ...] = tuple(expectations)
        self._timeout = timeout
        self._cursor = 0
        self._matched: list[Event] = []
        self._handlers: dict[str, Callable[[Event], None]] = {}
        self._timer: asyncio.TimerHandle | None = None

        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future[tuple[Event, ...]] = self._loop.create_future()
        self._future.add_done_callback(self._stop_timer)
        self._deadline = self._loop.time() + timeout

    # ─── Subscription bookkeeping ─────────────────────────────────────────

    def start(self) -> ExpectationWaiter:
        """
        Subscribe once to every distinct event type in the list.

        Also arms the deadline, so the waiter expires and releases its
        subscriptions even if nobody ever awaits it.
        """
        if self._handlers or self._future.done():
            return self

        for event_type in dict.fromkeys(exp.type for exp in self._expectations):

            def handler(event: Event, _type: str = event_type) -> None:
                self._on_event(_type, event)

            self._source.on(event_type, handler)
            self._handlers[event_type] = handler

        if self._timer is None:
            self._timer = self._loop.call_at(self._deadline, self._expire)

        logger.debug(
            f"[MATCHER] Waiting for {len(self._expectations)} expectation(s) "
            f"on {list(self._handlers)} (timeout={self._timeout}s)"
        )
        return self

    def release(self) -> None:
        """Remove this waiter's handlers from the source. Idempotent."""
        while self._handlers:
            event_type, handler = self._handlers.popitem()
            self._source.remove_listener(event_type, handler)

    def cancel(self) -> None:
        """Release subscriptions and fail a pending wait with ExpectationCancelledError."""
        self.release()
        if not self._future.done():
            logger.debug(f"[MATCHER] Cancelled at expectation {self._cursor}")
            self._future.cancel()

    def _expire(self) -> None:
        self._timer = None
        if self._future.done():
            return
        active = self.active
        logger.debug(
            f"[MATCHER] Timed out at expectation {self._cursor} "
            f"('{active.type if active else '?'}')"
        )
        self.release()
        self._future.set_exception(
            ExpectationTimeoutError(
                index=self._cursor,
                event_type=active.type if active else "",
                timeout=self._timeout,
                matched_count=len(self._matched),
                description=active.description if active else None,
            )
        )

    def _stop_timer(self, future: asyncio.Future) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # ─── Matching ─────────────────────────────────────────────────────────

    def _on_event(self, event_type: str, event: Event) -> None:
        if self._future.done():
            return

        active = self._expectations[self._cursor]
        if event_type != active.type:
            return
        if not active.matches(event):
            logger.debug(f"[MATCHER] Ignoring '{event_type}' at expectation {self._cursor}")
            return

        self._matched.append(event)
        self._cursor += 1
        logger.debug(
            f"[MATCHER] Matched '{event_type}' ({self._cursor}/{len(self._expectations)})"
        )

        if self._cursor == len(self._expectations):
            self.release()
            self._future.set_result(tuple(self._matched))

    # ─── Waiting ──────────────────────────────────────────────────────────

    async def wait(self) -> tuple[Event, ...]:
        """
        Wait until every expectation has matched.

        Returns:
            Matched events, one per expectation, in list order

        Raises:
            ExpectationTimeoutError: If the deadline passes first
            ExpectationCancelledError: If cancel() was called
        """
        self.start()
        try:
            # Cancelling the awaiting task cancels the future (and the waiter)
            return await self._future
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if self._future.cancelled() and (task is None or not task.cancelling()):
                active = self.active
                raise ExpectationCancelledError(
                    index=self._cursor,
                    event_type=active.type if active else "",
                ) from None
            raise
        finally:
            self.release()

    def __await__(self) -> Generator[Any, None, tuple[Event, ...]]:
        return self.wait().__await__()

    # ─── Introspection ────────────────────────────────────────────────────

    @property
    def cursor(self) -> int:
        """Index of the active expectation."""
        return self._cursor

    @property
    def active(self) -> Expectation | None:
        """The expectation currently being waited for, if any."""
        if self._cursor < len(self._expectations):
            return self._expectations[self._cursor]
        return None

    @property
    def matched(self) -> tuple[Event, ...]:
        return tuple(self._matched)

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def subscribed_types(self) -> tuple[str, ...]:
        return tuple(self._handlers)


def expect_events(
    source: EventSource,
    expectations: Sequence[Expectation],
    timeout: float | None = None,
) -> ExpectationWaiter:
    """
    Subscribe to ``source`` and return an awaitable waiter.

    Must be called from a running event loop.

    Args:
        source: Anything with on/remove_listener (the client, a fake, ...)
        expectations: Non-empty ordered expectation list
        timeout: Seconds until ExpectationTimeoutError (default 10s)

    Returns:
        Started ExpectationWaiter; ``await`` it for the matched events
    """
    effective_timeout = DEFAULT_EXPECT_TIMEOUT if timeout is None else timeout
    return ExpectationWaiter(source, expectations, effective_timeout).start()
