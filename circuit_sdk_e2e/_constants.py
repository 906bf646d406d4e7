"""Constants for the Circuit SDK end-to-end harness.

Single source of truth for event names, enum-like SDK values and the
default timing budget used by the scenarios.

Timing Philosophy:
- The real backend is eventually consistent; state queries right after an
  action can be stale for a few seconds.
- Waits are bounded everywhere. A scenario fails with an assertion or a
  timeout error, it never hangs.
- Override via config if the backend under test is faster or slower:
    {"expect_timeout": 20, "settle_delay": 5}
"""

from enum import Enum

# ═══════════════════════════════════════════════════════════════════════════════
# Timing defaults (seconds)
# ═══════════════════════════════════════════════════════════════════════════════

DEFAULT_EXPECT_TIMEOUT = 10.0
DEFAULT_SETTLE_DELAY = 3.0
DEFAULT_CALL_READY_DELAY = 5.0
DEFAULT_SEARCH_DELAY = 3.0
DEFAULT_POLL_INTERVAL = 0.25

DEFAULT_LOG_LEVEL = "ERROR"

# Environment variables
CONFIG_PATH_ENV = "CIRCUIT_E2E_CONFIG"
LOG_LEVEL_ENV = "CIRCUIT_E2E_LOG_LEVEL"

# Topic used for the conversation the call-muting suite runs in
CONFERENCE_TOPIC = "SDK Test: Conference Call"
LABEL_CONVERSATION_TOPIC = "SDK Test: Conversation Labels"

# Media options for an audio-only conference
AUDIO_ONLY = {"audio": True, "video": False}

# Number of peer actors the call-muting suite drives
CONFERENCE_PEER_COUNT = 2


# ═══════════════════════════════════════════════════════════════════════════════
# SDK event names
# ═══════════════════════════════════════════════════════════════════════════════


class EventType(str, Enum):
    """Event names emitted by the Circuit client."""

    CALL_STATUS = "callStatus"
    LABELS_ADDED = "labelsAdded"
    LABEL_EDITED = "labelEdited"
    LABELS_REMOVED = "labelsRemoved"
    CONVERSATION_USER_DATA_CHANGED = "conversationUserDataChanged"


class CallStatusReason(str, Enum):
    """Values of the ``reason`` field on ``callStatus`` events."""

    CALL_STATE_CHANGED = "callStateChanged"
    PARTICIPANT_JOINED = "participantJoined"
    PARTICIPANT_UPDATED = "participantUpdated"
    PARTICIPANT_REMOVED = "participantRemoved"


class CallState(str, Enum):
    """Mirror of ``Circuit.Enums.CallStateName`` (values must match exactly)."""

    INITIATED = "Initiated"
    WAITING = "Waiting"
    STARTED = "Started"
    ACTIVE = "Active"
    TERMINATED = "Terminated"


class FilterTarget(str, Enum):
    """Mirror of ``Circuit.Constants.FilterTarget``."""

    LABEL_ID = "LABEL_ID"
    CONVERSATION_TYPE = "CONVERSATION_TYPE"


class RetrieveAction(str, Enum):
    """Mirror of ``Circuit.Enums.RetrieveAction``."""

    CONVERSATIONS = "CONVERSATIONS"
    CONVERSATION_IDS = "CONVERSATION_IDS"


# ═══════════════════════════════════════════════════════════════════════════════
# Label API feature probe
# ═══════════════════════════════════════════════════════════════════════════════
#
# Older SDK builds ship without the label API. The label suite only runs when
# every method and every event below is present.

LABEL_METHODS: tuple[str, ...] = (
    "add_labels",
    "edit_label",
    "assign_labels",
    "unassign_labels",
    "remove_labels",
)

LABEL_EVENTS: frozenset[str] = frozenset(
    {
        EventType.LABELS_ADDED.value,
        EventType.LABEL_EDITED.value,
        EventType.LABELS_REMOVED.value,
    }
)
