"""
In-process fake of the Circuit backend for scenario suite tests.

FakeCircuitBackend holds users, conversations, calls and labels. Each
FakeCircuitClient is one logged-on session; events are delivered to every
session of the affected users on the next loop iteration, never inline,
so the suites see the same "event after the call returns" timing as with
the real SDK.

Knobs:
    propagation_delay: Seconds before a mute becomes visible in find_call()
    indexing_delay: Seconds before an assigned label is searchable by filter
    labels_enabled: False simulates an SDK build without the label API
    dropped_events: Event types that are never delivered
    start_states: Call states reported when a conference starts
"""

from __future__ import annotations

import asyncio
import copy
import itertools
from collections.abc import Iterable, Mapping
from typing import Any

import pytest
import pytest_asyncio

from circuit_sdk_e2e import EventEmitter, EventType, ScenarioContext, connect
from circuit_sdk_e2e._constants import CallState, CallStatusReason, FilterTarget


class CircuitBackendError(Exception):
    """Error raised by the fake backend for invalid requests."""


class FakeCircuitBackend:
    def __init__(
        self,
        propagation_delay: float = 0.0,
        indexing_delay: float = 0.0,
        labels_enabled: bool = True,
        dropped_events: Iterable[str] = (),
        start_states: Iterable[str] = (CallState.INITIATED.value, CallState.WAITING.value),
    ):
        self.propagation_delay = propagation_delay
        self.indexing_delay = indexing_delay
        self.labels_enabled = labels_enabled
        self.dropped_events = frozenset(dropped_events)
        self.start_states = tuple(start_states)

        self.sessions: list[FakeCircuitClient] = []
        self.users: dict[str, str] = {}
        self.conversations: dict[str, dict[str, Any]] = {}
        self.calls: dict[str, dict[str, Any]] = {}
        self.labels: dict[str, dict[str, dict[str, Any]]] = {}
        self.search_index: set[tuple[str, str, str]] = set()
        self._ids = itertools.count(1)

    def client_factory(self, options: Mapping[str, Any]) -> FakeCircuitClient:
        return FakeCircuitClient(self, options)

    def new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids):04d}"

    def user_for(self, username: str) -> str:
        if username not in self.users:
            self.users[username] = self.new_id("user")
        return self.users[username]

    # ─── Delivery ─────────────────────────────────────────────────────────

    def deliver(self, user_ids: Iterable[str], event_type: str, data: dict[str, Any]) -> None:
        if event_type in self.dropped_events:
            return
        targets = set(user_ids)
        loop = asyncio.get_running_loop()
        for session in list(self.sessions):
            if session.user_id in targets:
                loop.call_soon(session.emit, event_type, copy.deepcopy(data))

    def later(self, delay: float, callback, *args) -> None:
        if delay > 0:
            asyncio.get_running_loop().call_later(delay, callback, *args)
        else:
            callback(*args)

    # ─── Lookups ──────────────────────────────────────────────────────────

    def conversation(self, conv_id: str) -> dict[str, Any]:
        try:
            return self.conversations[conv_id]
        except KeyError:
            raise CircuitBackendError(f"Conversation {conv_id} not found") from None

    def call(self, call_id: str) -> dict[str, Any]:
        try:
            return self.calls[call_id]
        except KeyError:
            raise CircuitBackendError(f"Call {call_id} not found") from None

    def call_view(self, call: dict[str, Any], user_id: str) -> dict[str, Any]:
        return {
            "callId": call["callId"],
            "convId": call["convId"],
            "state": call["state"],
            "participants": copy.deepcopy(call["participants"]),
            "locallyMuted": user_id in call["locally_muted"],
        }

    def call_members(self, call: dict[str, Any]) -> list[str]:
        return self.conversations[call["convId"]]["participants"]


class FakeCircuitClient(EventEmitter):
    """One logged-on session against FakeCircuitBackend."""

    def __init__(self, backend: FakeCircuitBackend, options: Mapping[str, Any]):
        super().__init__()
        self.backend = backend
        self.options = dict(options)
        self.user_id: str | None = None

    @property
    def supported_events(self) -> tuple[str, ...]:
        if self.backend.labels_enabled:
            return tuple(e.value for e in EventType)
        return (EventType.CALL_STATUS.value,)

    def _require_logon(self) -> str:
        if self.user_id is None:
            raise CircuitBackendError("Not logged on")
        return self.user_id

    # ─── Lifecycle ────────────────────────────────────────────────────────

    async def logon(self, credentials: Mapping[str, Any] | None = None) -> dict[str, Any]:
        username = (credentials or {}).get("username", "anonymous")
        self.user_id = self.backend.user_for(username)
        self.backend.sessions.append(self)
        return {"userId": self.user_id, "displayName": username}

    async def logout(self) -> None:
        if self in self.backend.sessions:
            self.backend.sessions.remove(self)
        self.user_id = None

    async def get_logged_on_user(self) -> dict[str, Any]:
        return {"userId": self._require_logon()}

    # ─── Conversations and calls ──────────────────────────────────────────

    async def create_group_conversation(self, participants: list[str], topic: str) -> dict[str, Any]:
        user_id = self._require_logon()
        conv_id = self.backend.new_id("conv")
        self.backend.conversations[conv_id] = {
            "convId": conv_id,
            "topic": topic,
            "participants": [user_id, *(p for p in participants if p != user_id)],
            "user_data": {},
        }
        return await self.get_conversation_by_id(conv_id)

    async def get_conversation_by_id(self, conv_id: str) -> dict[str, Any]:
        user_id = self._require_logon()
        conv = self.backend.conversation(conv_id)
        return {
            "convId": conv_id,
            "topic": conv["topic"],
            "participants": list(conv["participants"]),
            "userData": {"labelIds": list(conv["user_data"].get(user_id, ()))},
        }

    async def start_conference(self, conv_id: str, media: Mapping[str, bool]) -> dict[str, Any]:
        user_id = self._require_logon()
        conv = self.backend.conversation(conv_id)
        call_id = self.backend.new_id("call")
        call = {
            "callId": call_id,
            "convId": conv_id,
            "state": CallState.INITIATED.value,
            "participants": [{"userId": user_id, "muted": not media.get("audio", True)}],
            "locally_muted": set(),
        }
        self.backend.calls[call_id] = call
        for state in self.backend.start_states:
            call["state"] = state
            self.backend.deliver(
                conv["participants"],
                EventType.CALL_STATUS.value,
                {"reason": CallStatusReason.CALL_STATE_CHANGED.value, "call": self.backend.call_view(call, user_id)},
            )
        return self.backend.call_view(call, user_id)

    async def join_conference(self, call_id: str, media: Mapping[str, bool]) -> None:
        user_id = self._require_logon()
        call = self.backend.call(call_id)
        members = self.backend.call_members(call)
        if call["state"] != CallState.ACTIVE.value:
            call["state"] = CallState.ACTIVE.value
            self.backend.deliver(
                members,
                EventType.CALL_STATUS.value,
                {"reason": CallStatusReason.CALL_STATE_CHANGED.value, "call": self.backend.call_view(call, user_id)},
            )
        participant = {"userId": user_id, "muted": not media.get("audio", True)}
        call["participants"].append(participant)
        self.backend.deliver(
            members,
            EventType.CALL_STATUS.value,
            {
                "reason": CallStatusReason.PARTICIPANT_JOINED.value,
                "call": self.backend.call_view(call, user_id),
                "participants": [dict(participant)],
            },
        )

    async def find_call(self, call_id: str) -> dict[str, Any] | None:
        user_id = self._require_logon()
        call = self.backend.calls.get(call_id)
        return self.backend.call_view(call, user_id) if call else None

    def _set_muted(self, call: dict[str, Any], target: str, muted: bool) -> None:
        def apply() -> None:
            for participant in call["participants"]:
                if participant["userId"] == target:
                    participant["muted"] = muted
            self.backend.deliver(
                self.backend.call_members(call),
                EventType.CALL_STATUS.value,
                {
                    "reason": CallStatusReason.PARTICIPANT_UPDATED.value,
                    "call": self.backend.call_view(call, target),
                },
            )

        self.backend.later(self.backend.propagation_delay, apply)

    async def mute_participant(self, call_id: str, user_id: str) -> None:
        self._require_logon()
        self._set_muted(self.backend.call(call_id), user_id, True)

    async def mute(self, call_id: str) -> None:
        user_id = self._require_logon()
        call = self.backend.call(call_id)
        self.backend.later(self.backend.propagation_delay, call["locally_muted"].add, user_id)

    async def unmute(self, call_id: str) -> None:
        user_id = self._require_logon()
        call = self.backend.call(call_id)
        self.backend.later(self.backend.propagation_delay, call["locally_muted"].discard, user_id)

    async def mute_rtc_session(self, call_id: str) -> None:
        user_id = self._require_logon()
        self._set_muted(self.backend.call(call_id), user_id, True)

    async def get_local_audio_video_stream(self) -> dict[str, Any]:
        self._require_logon()
        return {"audio": True, "video": False}

    # ─── Labels ───────────────────────────────────────────────────────────

    def _labels(self) -> dict[str, dict[str, Any]]:
        if not self.backend.labels_enabled:
            raise CircuitBackendError("Label API not available")
        return self.backend.labels.setdefault(self._require_logon(), {})

    async def add_labels(self, values: list[str]) -> list[dict[str, Any]]:
        store = self._labels()
        added = []
        for value in values:
            label = {"labelId": self.backend.new_id("label"), "value": value}
            store[label["labelId"]] = label
            added.append(dict(label))
        self.backend.deliver([self.user_id], EventType.LABELS_ADDED.value, {"labels": added})
        return copy.deepcopy(added)

    async def edit_label(self, label: Mapping[str, Any]) -> dict[str, Any]:
        store = self._labels()
        if label["labelId"] not in store:
            raise CircuitBackendError(f"Label {label['labelId']} not found")
        store[label["labelId"]]["value"] = label["value"]
        edited = dict(store[label["labelId"]])
        self.backend.deliver([self.user_id], EventType.LABEL_EDITED.value, {"label": edited})
        return dict(edited)

    def _user_data_changed(self, conv_id: str, label_ids: list[str]) -> None:
        self.backend.deliver(
            [self.user_id],
            EventType.CONVERSATION_USER_DATA_CHANGED.value,
            {"data": {"convId": conv_id, "labels": list(label_ids)}},
        )

    async def assign_labels(self, conv_id: str, label_ids: list[str]) -> list[str]:
        store = self._labels()
        conv = self.backend.conversation(conv_id)
        assigned = conv["user_data"].setdefault(self.user_id, [])
        for label_id in label_ids:
            if label_id not in store:
                raise CircuitBackendError(f"Label {label_id} not found")
            if label_id not in assigned:
                assigned.append(label_id)
                self.backend.later(
                    self.backend.indexing_delay,
                    self.backend.search_index.add,
                    (self.user_id, conv_id, label_id),
                )
        self._user_data_changed(conv_id, assigned)
        return list(assigned)

    async def unassign_labels(self, conv_id: str, label_ids: list[str]) -> list[str]:
        self._labels()
        conv = self.backend.conversation(conv_id)
        assigned = conv["user_data"].setdefault(self.user_id, [])
        for label_id in label_ids:
            if label_id in assigned:
                assigned.remove(label_id)
            self.backend.search_index.discard((self.user_id, conv_id, label_id))
        self._user_data_changed(conv_id, assigned)
        return list(assigned)

    async def remove_labels(self, label_ids: list[str]) -> list[str]:
        store = self._labels()
        removed = [label_id for label_id in label_ids if store.pop(label_id, None) is not None]
        for conv in self.backend.conversations.values():
            assigned = conv["user_data"].get(self.user_id, [])
            assigned[:] = [label_id for label_id in assigned if label_id not in removed]
        self.backend.search_index = {
            entry for entry in self.backend.search_index if entry[2] not in removed
        }
        self.backend.deliver([self.user_id], EventType.LABELS_REMOVED.value, {"labelIds": removed})
        return removed

    async def get_all_labels(self) -> list[dict[str, Any]]:
        return [dict(label) for label in self._labels().values()]

    async def get_conversations_by_filter(self, filter: Mapping[str, Any]) -> list[dict[str, Any]]:
        self._labels()
        wanted: set[str] = set()
        for condition in filter["filterConnector"]["conditions"]:
            if condition["filterTarget"] == FilterTarget.LABEL_ID.value:
                wanted.update(condition["expectedValue"])
        conv_ids = {
            conv_id
            for user_id, conv_id, label_id in self.backend.search_index
            if user_id == self.user_id and label_id in wanted
        }
        return [await self.get_conversation_by_id(conv_id) for conv_id in sorted(conv_ids)]

    async def get_conversations_by_label(self, label_id: str) -> list[dict[str, Any]]:
        self._labels()
        return [
            await self.get_conversation_by_id(conv_id)
            for conv_id, conv in self.backend.conversations.items()
            if label_id in conv["user_data"].get(self.user_id, ())
        ]


@pytest.fixture
def backend_options() -> dict[str, Any]:
    """Override with @pytest.mark.parametrize("backend_options", [...])."""
    return {}


@pytest.fixture
def backend(backend_options) -> FakeCircuitBackend:
    return FakeCircuitBackend(**backend_options)


@pytest_asyncio.fixture
async def ctx(backend, harness_config):
    """ScenarioContext with a logged-on primary client against the fake backend."""
    async with connect(harness_config, backend.client_factory) as client:
        context = ScenarioContext(harness_config, client, backend.client_factory)
        yield context
        context.reset()
        await context.destroy_peers()
