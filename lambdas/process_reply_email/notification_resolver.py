"""
Notification Resolution

Maps a reply key to the sent notification it was stamped on, and from
there to the noteable and the user the reply acts for.
"""

from dataclasses import dataclass

import structlog

from tracker.exceptions import NoteableNotFoundError, SentNotificationNotFoundError
from tracker.models.dynamo import Identity, Noteable, SentNotification
from tracker.tools.dynamodb import find_noteable, find_sent_notification

log = structlog.get_logger()


@dataclass(frozen=True)
class ResolvedNotification:
    """Everything a reply key resolves to."""

    sent_notification: SentNotification
    noteable: Noteable
    identity: Identity


def resolve_notification(reply_key: str) -> ResolvedNotification:
    """
    Resolve a reply key.

    Raises:
        SentNotificationNotFoundError: If no notification carries the key
        NoteableNotFoundError: If the noteable was deleted since sending
    """
    sent_notification = find_sent_notification(reply_key)
    if sent_notification is None:
        log.warning("sent_notification_not_found", reply_key=reply_key)
        raise SentNotificationNotFoundError(reply_key)

    noteable = find_noteable(sent_notification.noteable_ref)
    if noteable is None:
        log.warning(
            "noteable_not_found",
            reply_key=reply_key,
            noteable_type=sent_notification.noteable_type.value,
            noteable_id=sent_notification.noteable_id,
        )
        raise NoteableNotFoundError(
            sent_notification.noteable_type.value,
            sent_notification.noteable_id,
        )

    log.info(
        "notification_resolved",
        reply_key=reply_key,
        noteable_type=noteable.noteable_type.value,
        noteable_id=noteable.noteable_id,
        recipient_id=sent_notification.recipient_id,
    )
    return ResolvedNotification(
        sent_notification=sent_notification,
        noteable=noteable,
        identity=sent_notification.recipient,
    )
