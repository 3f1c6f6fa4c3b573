"""
Permission Tools

Yes/no capability check used before a reply command may touch a noteable.
Capability comes from the user's access level on the noteable's project.
"""

from typing import Final

import structlog

from tracker.models.dynamo import AccessLevel, Identity, Noteable
from tracker.tools.dynamodb import get_project_member

log = structlog.get_logger()

# Commands that only affect the acting user's own todo / subscription
PERSONAL_COMMANDS: Final[frozenset[str]] = frozenset({
    "todo",
    "done",
    "subscribe",
    "unsubscribe",
})

REQUIRED_ACCESS: Final[dict[str, AccessLevel]] = {
    name: AccessLevel.GUEST for name in PERSONAL_COMMANDS
}


def required_access_level(command_kind: str) -> AccessLevel:
    """Minimum project access level for a command; developer by default."""
    return REQUIRED_ACCESS.get(command_kind, AccessLevel.DEVELOPER)


def can_mutate(identity: Identity, noteable: Noteable, command_kind: str) -> bool:
    """
    Check whether a user may run a command against a noteable.

    Args:
        identity: Acting user
        noteable: Target issue or merge request
        command_kind: Command name (e.g. "close", "due")

    Returns:
        True if the user's project access level is high enough
    """
    member = get_project_member(noteable.project_id, identity.user_id)
    required = required_access_level(command_kind)
    allowed = member is not None and member.access_level >= required

    log.debug(
        "permission_checked",
        user_id=identity.user_id,
        project_id=noteable.project_id,
        command=command_kind,
        required=required.name,
        access_level=member.access_level.name if member else None,
        allowed=allowed,
    )
    return allowed
