"""
Scenario context and sequencing helpers.

Every scenario follows the same four steps:

1. act      - call the client or a peer actor
2. expect   - concurrently wait for the events the action should cause
3. poll     - re-fetch state until it settles (bounded)
4. assert   - compare fields of the re-fetched state

State that scenarios share (the conversation, the call, the labels created
so far) lives on an explicit ScenarioContext that the runner owns and
passes to each scenario function.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .client import ClientFactory, labels_supported
from .config import HarnessConfig
from .events import Event, EventSource
from .exceptions import HarnessConfigError, ScenarioAssertionError
from .matcher import Expectation, ExpectationWaiter, expect_events
from .peer import PeerActor

logger = logging.getLogger(__name__)

T = TypeVar("T")


def check(condition: Any, message: str, **details: Any) -> None:
    """Raise ScenarioAssertionError unless ``condition`` is truthy."""
    if not condition:
        raise ScenarioAssertionError(message, details)


async def settle(delay: float) -> None:
    """Fixed pause for backends that need time before the next step."""
    logger.debug(f"[SCENARIO] Settling for {delay}s")
    await asyncio.sleep(delay)


async def poll_until(
    query: Callable[[], Awaitable[T]],
    condition: Callable[[T], bool],
    timeout: float,
    interval: float,
    message: str,
    **details: Any,
) -> T:
    """
    Re-run ``query`` until ``condition`` holds or ``timeout`` elapses.

    The query always runs at least once. Errors from the query propagate
    unchanged.

    Returns:
        The first query result that satisfied ``condition``

    Raises:
        ScenarioAssertionError: If the condition never held in time
    """
    if timeout <= 0:
        raise ValueError(f"timeout must be positive, got {timeout}")

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempts = 0
    while True:
        result = await query()
        attempts += 1
        if condition(result):
            logger.debug(f"[SCENARIO] Condition met after {attempts} poll(s)")
            return result
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise ScenarioAssertionError(
                message, {**details, "attempts": attempts, "last": result}
            )
        await asyncio.sleep(min(interval, remaining))


@dataclass
class ScenarioContext:
    """
    Explicit state threaded through a suite of scenarios.

    Attributes:
        config: Harness configuration
        client: The primary, logged-on client (also the event source)
        client_factory: Builds further clients (for peer actors)
        peers: Peer actors created by the suite
        conversation: Conversation the suite operates on
        call: Most recently fetched call state
        added_labels: labelId -> label for labels the suite created
    """

    config: HarnessConfig
    client: Any
    client_factory: ClientFactory
    peers: list[PeerActor] = field(default_factory=list)
    conversation: dict[str, Any] | None = None
    call: dict[str, Any] | None = None
    added_labels: dict[str, dict[str, Any]] = field(default_factory=dict)
    _waiters: list[ExpectationWaiter] = field(default_factory=list, repr=False)

    # ─── Expectations ─────────────────────────────────────────────────────

    def expect(
        self,
        expectations: Sequence[Expectation],
        source: EventSource | None = None,
        timeout: float | None = None,
    ) -> ExpectationWaiter:
        """Start waiting on ``source`` (default: the primary client)."""
        waiter = expect_events(
            source if source is not None else self.client,
            expectations,
            timeout if timeout is not None else self.config.expect_timeout,
        )
        self._waiters = [w for w in self._waiters if not w.done]
        self._waiters.append(waiter)
        return waiter

    async def act_and_expect(
        self,
        action: Awaitable[T],
        *waiters: ExpectationWaiter,
    ) -> tuple[T, list[tuple[Event, ...]]]:
        """
        Run ``action`` concurrently with already-started waiters.

        Waiters must be created (via expect()) before the action is
        awaited, so no event can slip past.

        Returns:
            (action result, matched events per waiter)

        Raises:
            Whatever the action raised (unchanged), or the first waiter
            error. If anything fails, the waiters are cancelled and a
            still-running action is cancelled and awaited before raising.
        """
        action_task = asyncio.ensure_future(action)
        wait_tasks = [asyncio.ensure_future(w.wait()) for w in waiters]
        try:
            result, *matched = await asyncio.gather(action_task, *wait_tasks)
        except BaseException:
            for waiter in waiters:
                waiter.cancel()
            if not action_task.done():
                logger.debug("[SCENARIO] Cancelling action after failed expectation")
                action_task.cancel()
            await asyncio.gather(action_task, *wait_tasks, return_exceptions=True)
            raise
        return result, matched

    # ─── Peers ────────────────────────────────────────────────────────────

    async def create_peers(self, count: int) -> list[PeerActor]:
        """Create ``count`` peers from ``config.peer_credentials`` concurrently."""
        credentials = list(self.config.peer_credentials)
        if len(credentials) < count:
            raise HarnessConfigError(
                f"{count} peer credentials required, {len(credentials)} configured"
            )
        peers = await asyncio.gather(
            *(
                PeerActor.create(
                    self.client_factory,
                    credentials[i],
                    self.config.client_options,
                    name=f"peer{i + 1}",
                )
                for i in range(count)
            )
        )
        self.peers.extend(peers)
        return list(peers)

    async def destroy_peers(self) -> None:
        """Destroy every peer. Never raises for logout failures."""
        peers, self.peers = self.peers, []
        await asyncio.gather(*(peer.destroy() for peer in peers))

    # ─── Housekeeping ─────────────────────────────────────────────────────

    def reset(self) -> None:
        """
        Per-scenario teardown.

        Removes all client listeners and cancels waits still in flight.
        """
        self.client.remove_all_listeners()
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            waiter.cancel()
        logger.debug(f"[SCENARIO] Reset ({len(waiters)} waiter(s) cleared)")

    @property
    def labels_supported(self) -> bool:
        return labels_supported(self.client)
