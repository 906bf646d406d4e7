"""
Conversation labels suite.

Walks the whole label lifecycle against one conversation: add, edit,
assign, search (by filter and by label), unassign, remove. Each step relies
on the labels the previous steps recorded in ``ctx.added_labels``, so the
scenarios are meant to run in order (see run_label_suite).

Every scenario first checks that the connected SDK build ships the label
API and raises ScenarioSkipped otherwise.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from .._constants import (
    LABEL_CONVERSATION_TOPIC,
    EventType,
    FilterTarget,
    RetrieveAction,
)
from ..exceptions import ScenarioSkipped
from ..matcher import expectation
from ..scenario import ScenarioContext, check, poll_until

logger = logging.getLogger(__name__)


def _require_labels(ctx: ScenarioContext) -> None:
    if not ctx.labels_supported:
        raise ScenarioSkipped("Label API not supported by this client")


def _label_value(suffix: str) -> str:
    return f"{int(time.time() * 1000)}{suffix}"


def _conv_id(ctx: ScenarioContext) -> str:
    check(ctx.conversation is not None, "No conversation to label")
    return ctx.conversation["convId"]


def _assigned_label_ids(conversation: dict[str, Any]) -> list[str]:
    return list((conversation.get("userData") or {}).get("labelIds") or ())


async def ensure_conversation(ctx: ScenarioContext) -> dict[str, Any]:
    """Reuse ctx.conversation, or create a group conversation to label."""
    if ctx.conversation is None:
        participants = [p.user_id for p in ctx.peers] + list(ctx.config.conference_participants)
        ctx.conversation = await ctx.client.create_group_conversation(
            participants, LABEL_CONVERSATION_TOPIC
        )
        logger.info(f"[SCENARIO] Conversation {ctx.conversation['convId']} created for labels")
    return ctx.conversation


async def add_labels(ctx: ScenarioContext) -> list[dict[str, Any]]:
    """Add two labels; expect labelsAdded; both must appear in the full listing."""
    _require_labels(ctx)
    client = ctx.client
    values = {_label_value("a"), _label_value("b")}

    added_event = ctx.expect(
        [
            expectation(
                EventType.LABELS_ADDED,
                lambda evt: all(label["value"] in values for label in evt["labels"]),
                "labels added",
            )
        ]
    )
    added, _ = await ctx.act_and_expect(client.add_labels(sorted(values)), added_event)
    for label in added:
        ctx.added_labels[label["labelId"]] = dict(label)

    existing = {label["labelId"]: label for label in await client.get_all_labels()}
    for label_id, label in ctx.added_labels.items():
        check(
            label_id in existing and existing[label_id]["value"] == label["value"],
            "Added label missing from listing",
            label_id=label_id,
            value=label["value"],
        )
    return added


async def edit_label(ctx: ScenarioContext) -> dict[str, Any]:
    """Rename the first added label; expect labelEdited; listing must agree."""
    _require_labels(ctx)
    check(ctx.added_labels, "No labels to edit")
    client = ctx.client
    label_id = next(iter(ctx.added_labels))
    new_value = _label_value("c")

    edited_event = ctx.expect(
        [
            expectation(
                EventType.LABEL_EDITED,
                lambda evt: evt["label"]["labelId"] == label_id
                and evt["label"]["value"] == new_value,
                "label edited",
            )
        ]
    )
    edited, _ = await ctx.act_and_expect(
        client.edit_label({"labelId": label_id, "value": new_value}), edited_event
    )
    check(edited["value"] == new_value, "Edit returned a stale value", returned=edited["value"])
    ctx.added_labels[label_id] = dict(edited)

    listed = next((lbl for lbl in await client.get_all_labels() if lbl["labelId"] == label_id), None)
    check(
        listed is not None and listed["value"] == new_value,
        "Edited label not reflected in listing",
        label_id=label_id,
    )
    return edited


async def assign_labels(ctx: ScenarioContext) -> list[str]:
    """Assign every added label to the conversation."""
    _require_labels(ctx)
    client = ctx.client
    conv_id = _conv_id(ctx)
    label_ids = list(ctx.added_labels)

    changed_event = ctx.expect(
        [
            expectation(
                EventType.CONVERSATION_USER_DATA_CHANGED,
                lambda evt: evt["data"]["convId"] == conv_id
                and all(lbl in label_ids for lbl in evt["data"]["labels"]),
                "labels assigned",
            )
        ]
    )
    assigned, _ = await ctx.act_and_expect(
        client.assign_labels(conv_id, label_ids), changed_event
    )
    for label_id in assigned:
        check(label_id in label_ids, "Unexpected label assigned", label_id=label_id)

    ctx.conversation = await client.get_conversation_by_id(conv_id)
    current = _assigned_label_ids(ctx.conversation)
    for label_id in label_ids:
        check(label_id in current, "Label not assigned to conversation", label_id=label_id)
    return assigned


async def find_conversations_by_filter(ctx: ScenarioContext) -> list[dict[str, Any]]:
    """Search by LABEL_ID filter; the backend indexes asynchronously, so poll."""
    _require_labels(ctx)
    check(ctx.added_labels, "No labels to search for")
    client = ctx.client
    conv_id = _conv_id(ctx)
    label_id = next(iter(ctx.added_labels))

    search = {
        "filterConnector": {
            "conditions": [
                {
                    "filterTarget": FilterTarget.LABEL_ID.value,
                    "expectedValue": [label_id],
                }
            ]
        },
        "retrieveAction": RetrieveAction.CONVERSATIONS.value,
    }
    return await poll_until(
        lambda: client.get_conversations_by_filter(search),
        lambda convs: any(conv["convId"] == conv_id for conv in convs),
        ctx.config.search_delay,
        ctx.config.poll_interval,
        "Conversation not found by label filter",
        label_id=label_id,
    )


async def find_conversations_by_label(ctx: ScenarioContext) -> list[dict[str, Any]]:
    _require_labels(ctx)
    check(ctx.added_labels, "No labels to search for")
    conv_id = _conv_id(ctx)
    label_id = next(iter(ctx.added_labels))

    conversations = await ctx.client.get_conversations_by_label(label_id)
    check(
        any(conv["convId"] == conv_id for conv in conversations),
        "Conversation not found by label",
        label_id=label_id,
    )
    return conversations


async def unassign_labels(ctx: ScenarioContext) -> list[str]:
    """Unassign every added label from the conversation."""
    _require_labels(ctx)
    client = ctx.client
    conv_id = _conv_id(ctx)
    label_ids = list(ctx.added_labels)

    changed_event = ctx.expect(
        [
            expectation(
                EventType.CONVERSATION_USER_DATA_CHANGED,
                lambda evt: evt["data"]["convId"] == conv_id
                and not any(lbl in (evt["data"].get("labels") or ()) for lbl in label_ids),
                "labels unassigned",
            )
        ]
    )
    remaining, _ = await ctx.act_and_expect(
        client.unassign_labels(conv_id, label_ids), changed_event
    )
    for label_id in label_ids:
        check(label_id not in remaining, "Label still reported assigned", label_id=label_id)

    ctx.conversation = await client.get_conversation_by_id(conv_id)
    current = _assigned_label_ids(ctx.conversation)
    for label_id in label_ids:
        check(label_id not in current, "Label still on conversation", label_id=label_id)
    return remaining


async def remove_labels(ctx: ScenarioContext) -> list[str]:
    """Remove every added label; none may remain in the listing."""
    _require_labels(ctx)
    client = ctx.client
    label_ids = list(ctx.added_labels)

    removed_event = ctx.expect(
        [
            expectation(
                EventType.LABELS_REMOVED,
                lambda evt: all(lbl in label_ids for lbl in evt["labelIds"]),
                "labels removed",
            )
        ]
    )
    removed, _ = await ctx.act_and_expect(client.remove_labels(label_ids), removed_event)
    for label_id in label_ids:
        check(label_id in removed, "Label not reported removed", label_id=label_id)

    remaining = {label["labelId"] for label in await client.get_all_labels()}
    for label_id in label_ids:
        check(label_id not in remaining, "Removed label still listed", label_id=label_id)

    ctx.added_labels.clear()
    return removed


LABEL_SCENARIOS = (
    add_labels,
    edit_label,
    assign_labels,
    find_conversations_by_filter,
    find_conversations_by_label,
    unassign_labels,
    remove_labels,
)


async def run_label_suite(ctx: ScenarioContext) -> None:
    """Run the label lifecycle in order, resetting listeners between steps."""
    _require_labels(ctx)
    await ensure_conversation(ctx)
    for scenario in LABEL_SCENARIOS:
        logger.info(f"[SCENARIO] {scenario.__name__}")
        try:
            await scenario(ctx)
        finally:
            ctx.reset()
