"""
Noteable State Machine

Defines allowed states and valid transitions for issues and merge requests.
The close and reopen reply commands check can_transition before queueing a
state change.
"""

from enum import Enum
from typing import Final


class NoteableType(str, Enum):
    """Kinds of work item that can receive notes."""

    ISSUE = "Issue"
    MERGE_REQUEST = "MergeRequest"


class NoteableState(str, Enum):
    """
    Noteable state enum.

    States are mutually exclusive.
    """

    OPENED = "opened"
    """Open for discussion and work."""

    CLOSED = "closed"
    """Closed without further work; can be reopened."""

    MERGED = "merged"
    """Merge request has been merged. Never reached by an issue."""

    @classmethod
    def from_string(cls, value: str) -> "NoteableState":
        """Convert string to NoteableState enum."""
        try:
            return cls(value.lower())
        except ValueError as e:
            raise ValueError(
                f"Invalid noteable state: '{value}'. "
                f"Valid values are: {[s.value for s in cls]}"
            ) from e


# Key: current state, Value: set of allowed next states
VALID_TRANSITIONS: Final[dict[NoteableState, frozenset[NoteableState]]] = {
    NoteableState.OPENED: frozenset({
        NoteableState.CLOSED,
        NoteableState.MERGED,
    }),
    NoteableState.CLOSED: frozenset({
        NoteableState.OPENED,
    }),
    NoteableState.MERGED: frozenset(),  # Terminal
}

# States each noteable type may ever be in
STATES_BY_TYPE: Final[dict[NoteableType, frozenset[NoteableState]]] = {
    NoteableType.ISSUE: frozenset({NoteableState.OPENED, NoteableState.CLOSED}),
    NoteableType.MERGE_REQUEST: frozenset(NoteableState),
}


def can_transition(
    noteable_type: NoteableType | str,
    current_state: NoteableState | str,
    new_state: NoteableState | str,
) -> bool:
    """
    Check that a state transition is allowed for a noteable type.

    Args:
        noteable_type: Issue or MergeRequest
        current_state: Current noteable state
        new_state: Desired next state

    Returns:
        True if the transition is valid
    """
    noteable_type = NoteableType(noteable_type)
    if isinstance(current_state, str):
        current_state = NoteableState.from_string(current_state)
    if isinstance(new_state, str):
        new_state = NoteableState.from_string(new_state)

    allowed = VALID_TRANSITIONS.get(current_state, frozenset()) & STATES_BY_TYPE[noteable_type]
    return new_state in allowed
