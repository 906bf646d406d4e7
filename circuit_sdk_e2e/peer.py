"""
Peer actors: secondary simulated users.

A peer wraps its own client instance and exposes it through one generic
``exec(method_name, *args)`` proxy. Scenarios use peers to cause side
effects (joining a conference, muting) that the primary client observes
as events.

How the peer reaches its client (in-process here, a browser page or a
remote worker elsewhere) is hidden behind exec(); scenarios only depend on
create() / exec() / destroy() and ``user_id``.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from typing import Any

from .client import ClientFactory, user_id_of
from .exceptions import PeerActorError

logger = logging.getLogger(__name__)


class PeerActor:
    """
    Remote-invocation proxy around a peer's client.

    Example:
        >>> peer = await PeerActor.create(factory, {"username": "peer1@..."})
        >>> await peer.exec("join_conference", call_id, AUDIO_ONLY)
        >>> await peer.destroy()
    """

    __slots__ = ("_client", "_name", "_user_id", "_destroyed")

    def __init__(self, client: Any, user_id: str, name: str | None = None):
        self._client = client
        self._user_id = user_id
        self._name = name or f"peer-{user_id[:8]}"
        self._destroyed = False

    @classmethod
    async def create(
        cls,
        client_factory: ClientFactory,
        credentials: Mapping[str, Any] | None = None,
        client_options: Mapping[str, Any] | None = None,
        name: str | None = None,
    ) -> PeerActor:
        """
        Build a client for the peer and log it on.

        Errors from the factory or from logon() propagate unchanged.
        """
        client = client_factory(dict(client_options or {}))
        logon_result = await client.logon(dict(credentials or {}))
        user_id = await user_id_of(client, logon_result)
        peer = cls(client, user_id, name=name)
        logger.info(f"[PEER] {peer.name} logged on as {user_id}")
        return peer

    async def exec(self, method_name: str, *args: Any, **kwargs: Any) -> Any:
        """
        Invoke ``method_name`` on the peer's client and return its result.

        Sync and async client methods are both supported.

        Raises:
            PeerActorError: If the peer was destroyed or the method is unknown
        """
        if self._destroyed:
            raise PeerActorError(f"{self._name} is destroyed; cannot call '{method_name}'")

        method = getattr(self._client, method_name, None)
        if method_name.startswith("_") or not callable(method):
            raise PeerActorError(f"{self._name}: client has no method '{method_name}'")

        logger.debug(f"[PEER] {self._name}.{method_name}{args}")
        result = method(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def destroy(self) -> None:
        """
        Log the peer out. Safe to call multiple times.

        Logout failures are logged, not raised: teardown must reach every peer.
        """
        if self._destroyed:
            return
        self._destroyed = True
        try:
            await self._client.logout()
            logger.info(f"[PEER] {self._name} logged out")
        except Exception as e:
            logger.warning(f"[PEER] Error logging out {self._name}: {e}")

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed
