"""
Circuit client boundary and lifecycle helpers.

The SDK client is an external collaborator: the harness never implements
signaling, labeling or authentication, it only calls the public surface
described by ``CircuitClient`` and listens to its events.

Errors raised by client calls are propagated unchanged. The only errors
this module raises itself are configuration errors (factory cannot be
imported) so a broken setup is distinguishable from a failing backend.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any, Protocol, runtime_checkable

from ._constants import LABEL_EVENTS, LABEL_METHODS
from .config import HarnessConfig, configure_logging
from .events import EventHandler, event_type_name
from .exceptions import HarnessConfigError

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Mapping[str, Any]], Any]


@runtime_checkable
class CircuitClient(Protocol):
    """
    Public surface of the Circuit client used by the scenarios.

    Payloads are JSON-like mappings keyed the way the SDK keys them
    (``callId``, ``convId``, ``labelId``, ``userData`` ...).
    """

    # Lifecycle
    async def logon(self, credentials: Mapping[str, Any] | None = None) -> Mapping[str, Any]: ...

    async def logout(self) -> None: ...

    async def get_logged_on_user(self) -> Mapping[str, Any]: ...

    # Conversations and calls
    async def create_group_conversation(
        self, participants: list[str], topic: str
    ) -> Mapping[str, Any]: ...

    async def get_conversation_by_id(self, conv_id: str) -> Mapping[str, Any]: ...

    async def start_conference(
        self, conv_id: str, media: Mapping[str, bool]
    ) -> Mapping[str, Any]: ...

    async def find_call(self, call_id: str) -> Mapping[str, Any] | None: ...

    async def join_conference(self, call_id: str, media: Mapping[str, bool]) -> None: ...

    async def mute_participant(self, call_id: str, user_id: str) -> None: ...

    async def mute(self, call_id: str) -> None: ...

    async def unmute(self, call_id: str) -> None: ...

    async def mute_rtc_session(self, call_id: str) -> None: ...

    async def get_local_audio_video_stream(self) -> Any: ...

    # Labels
    async def add_labels(self, values: list[str]) -> list[Mapping[str, Any]]: ...

    async def edit_label(self, label: Mapping[str, Any]) -> Mapping[str, Any]: ...

    async def assign_labels(self, conv_id: str, label_ids: list[str]) -> list[str]: ...

    async def unassign_labels(self, conv_id: str, label_ids: list[str]) -> list[str]: ...

    async def remove_labels(self, label_ids: list[str]) -> list[str]: ...

    async def get_all_labels(self) -> list[Mapping[str, Any]]: ...

    async def get_conversations_by_filter(
        self, filter: Mapping[str, Any]
    ) -> list[Mapping[str, Any]]: ...

    async def get_conversations_by_label(self, label_id: str) -> list[Mapping[str, Any]]: ...

    # Events
    def on(self, event_type: str, handler: EventHandler) -> None: ...

    def remove_listener(self, event_type: str, handler: EventHandler) -> None: ...

    def remove_all_listeners(self) -> None: ...


def load_client_factory(path: str) -> ClientFactory:
    """
    Import a client factory from a "module:attr" path.

    The SDK is imported lazily so the harness (and its unit tests) work
    without it installed.

    Raises:
        HarnessConfigError: If the path is malformed or cannot be imported
    """
    module_name, sep, attr_path = path.partition(":")
    if not sep or not module_name or not attr_path:
        raise HarnessConfigError(f"client_factory must look like 'module:attr', got '{path}'")

    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise HarnessConfigError(f"Cannot import client module '{module_name}': {e}") from e

    for attr in attr_path.split("."):
        try:
            target = getattr(target, attr)
        except AttributeError as e:
            raise HarnessConfigError(f"'{path}' does not resolve: no attribute '{attr}'") from e

    if not callable(target):
        raise HarnessConfigError(f"'{path}' is not callable")

    logger.debug(f"[CLIENT] Loaded client factory {path}")
    return target


def resolve_client_factory(config: HarnessConfig) -> ClientFactory:
    """Return the configured client factory."""
    if not config.client_factory:
        raise HarnessConfigError("client_factory is not configured")
    return load_client_factory(config.client_factory)


def labels_supported(client: Any) -> bool:
    """
    Probe whether the connected SDK build ships the label API.

    True only when every label method exists and the client advertises
    every label event in ``supported_events``.
    """
    if not all(callable(getattr(client, name, None)) for name in LABEL_METHODS):
        return False
    supported = {event_type_name(e) for e in getattr(client, "supported_events", None) or ()}
    return LABEL_EVENTS <= supported


async def user_id_of(client: Any, logon_result: Any = None) -> str:
    """Resolve the logged-on user's id from logon() output or the client."""
    user = logon_result
    if not isinstance(user, Mapping) or "userId" not in user:
        user = await client.get_logged_on_user()
    return str(user["userId"])


@asynccontextmanager
async def connect(
    config: HarnessConfig,
    client_factory: ClientFactory | None = None,
) -> AsyncIterator[Any]:
    """
    Create the primary client, log it on, and log it out afterwards.

    Args:
        config: Harness configuration (options and credentials are opaque)
        client_factory: Overrides ``config.client_factory`` (used by tests)

    Yields:
        The logged-on client

    Example:
        >>> async with connect(load_config()) as client:
        ...     labels = await client.get_all_labels()
    """
    configure_logging(config.log_level, config.sdk_logger_name)
    factory = client_factory or resolve_client_factory(config)

    client = factory(dict(config.client_options))
    logger.info("[CLIENT] Logging on primary client...")
    await client.logon(dict(config.credentials))
    logger.info("[CLIENT] Primary client logged on")

    # Yield separately from logon so caller exceptions pass through unchanged
    try:
        yield client
    finally:
        try:
            await client.logout()
            logger.info("[CLIENT] Primary client logged out")
        except Exception as e:
            # Log but don't raise - don't mask the original exception
            logger.warning(f"[CLIENT] Error during logout: {e}")
