"""
Call muting suite.

Setup starts an audio-only conference from the primary client and has two
peers join it. The individual scenarios then mute and unmute participants
and check the re-fetched call state.

Assumes the backend reports "Initiated" before "Waiting" when a conference
starts; the matcher would otherwise wait for an Initiated that never comes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .._constants import (
    AUDIO_ONLY,
    CONFERENCE_PEER_COUNT,
    CONFERENCE_TOPIC,
    CallState,
    CallStatusReason,
    EventType,
)
from ..matcher import expectation
from ..peer import PeerActor
from ..scenario import ScenarioContext, check, poll_until, settle

logger = logging.getLogger(__name__)


def _call_state_is(state: CallState):
    def predicate(evt) -> bool:
        return evt["call"]["state"] == state.value

    return predicate


def _participant(call: dict[str, Any] | None, user_id: str) -> dict[str, Any] | None:
    for participant in (call or {}).get("participants") or ():
        if participant.get("userId") == user_id:
            return participant
    return None


def _call_id(ctx: ScenarioContext) -> str:
    check(ctx.call is not None, "Conference has not been set up")
    return ctx.call["callId"]


def _peers(ctx: ScenarioContext, count: int) -> list[PeerActor]:
    check(
        len(ctx.peers) >= count,
        "Not enough peers in the conference",
        required=count,
        present=len(ctx.peers),
    )
    return ctx.peers[:count]


async def setup_conference(ctx: ScenarioContext) -> dict[str, Any]:
    """
    Start a conference and bring two peers into it.

    Steps:
    1. Create the peers
    2. Create a group conversation with the peers (plus configured users)
    3. Start the conference; expect callStatus Initiated then Waiting
    4. Give the backend call_ready_delay before anyone joins
    5. Both peers join; expect Active (callStateChanged) then participantJoined
    6. Re-fetch the call into ctx.call
    """
    client = ctx.client
    peer1, peer2 = await ctx.create_peers(CONFERENCE_PEER_COUNT)

    participants = [peer1.user_id, peer2.user_id, *ctx.config.conference_participants]
    ctx.conversation = await client.create_group_conversation(participants, CONFERENCE_TOPIC)
    logger.info(f"[SCENARIO] Conversation {ctx.conversation['convId']} created")

    started = ctx.expect(
        [
            expectation(EventType.CALL_STATUS, _call_state_is(CallState.INITIATED), "Initiated"),
            expectation(EventType.CALL_STATUS, _call_state_is(CallState.WAITING), "Waiting"),
        ]
    )
    ctx.call, _ = await ctx.act_and_expect(
        client.start_conference(ctx.conversation["convId"], AUDIO_ONLY), started
    )
    call_id = ctx.call["callId"]
    logger.info(f"[SCENARIO] Conference {call_id} waiting for participants")

    await settle(ctx.config.call_ready_delay)

    joined = ctx.expect(
        [
            expectation(
                EventType.CALL_STATUS,
                lambda evt: evt["reason"] == CallStatusReason.CALL_STATE_CHANGED.value
                and evt["call"]["state"] == CallState.ACTIVE.value,
                "Active",
            ),
            expectation(
                EventType.CALL_STATUS,
                lambda evt: evt["reason"] == CallStatusReason.PARTICIPANT_JOINED.value,
                "participantJoined",
            ),
        ]
    )
    await ctx.act_and_expect(
        asyncio.gather(
            peer1.exec("join_conference", call_id, AUDIO_ONLY),
            peer2.exec("join_conference", call_id, AUDIO_ONLY),
        ),
        joined,
    )

    ctx.call = await client.find_call(call_id)
    logger.info(f"[SCENARIO] Conference {call_id} active")
    return ctx.call


async def teardown_conference(ctx: ScenarioContext) -> None:
    await ctx.destroy_peers()


async def get_local_audio_video_stream(ctx: ScenarioContext) -> tuple[Any, Any]:
    """Query local media on a peer and on the primary client."""
    peer_stream = await _peers(ctx, 1)[0].exec("get_local_audio_video_stream")
    logger.info(f"[SCENARIO] Peer local stream: {peer_stream!r}")
    client_stream = await ctx.client.get_local_audio_video_stream()
    logger.info(f"[SCENARIO] Client local stream: {client_stream!r}")
    return peer_stream, client_stream


async def mute_participant(ctx: ScenarioContext) -> dict[str, Any]:
    """Peer 1 mutes peer 2; peer 1's view must show peer 2 muted."""
    call_id = _call_id(ctx)
    peer1, peer2 = _peers(ctx, 2)

    await peer1.exec("mute_participant", call_id, peer2.user_id)

    def muted(call) -> bool:
        participant = _participant(call, peer2.user_id)
        return bool(participant and participant.get("muted"))

    return await poll_until(
        lambda: peer1.exec("find_call", call_id),
        muted,
        ctx.config.settle_delay,
        ctx.config.poll_interval,
        "Participant was not muted",
        user_id=peer2.user_id,
    )


async def mute_call(ctx: ScenarioContext) -> dict[str, Any]:
    """Peer 1 mutes itself; its call must report locallyMuted."""
    call_id = _call_id(ctx)
    peer1 = _peers(ctx, 1)[0]

    await peer1.exec("mute", call_id)
    return await poll_until(
        lambda: peer1.exec("find_call", call_id),
        lambda call: bool(call and call.get("locallyMuted")),
        ctx.config.settle_delay,
        ctx.config.poll_interval,
        "Call was not locally muted",
        call_id=call_id,
    )


async def unmute_call(ctx: ScenarioContext) -> dict[str, Any]:
    """Peer 1 unmutes itself; locallyMuted must clear."""
    call_id = _call_id(ctx)
    peer1 = _peers(ctx, 1)[0]

    await peer1.exec("unmute", call_id)
    return await poll_until(
        lambda: peer1.exec("find_call", call_id),
        lambda call: bool(call) and not call.get("locallyMuted"),
        ctx.config.settle_delay,
        ctx.config.poll_interval,
        "Call is still locally muted",
        call_id=call_id,
    )


async def mute_rtc_session(ctx: ScenarioContext) -> dict[str, Any]:
    """The primary client mutes its RTC session; its own participant entry must be muted."""
    call_id = _call_id(ctx)
    client = ctx.client

    await client.mute_rtc_session(call_id)
    user = await client.get_logged_on_user()

    def self_muted(call) -> bool:
        participant = _participant(call, user["userId"])
        return bool(participant and participant.get("muted"))

    return await poll_until(
        lambda: client.find_call(call_id),
        self_muted,
        ctx.config.settle_delay,
        ctx.config.poll_interval,
        "RTC session was not muted",
        user_id=user["userId"],
    )
