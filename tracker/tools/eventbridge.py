"""
EventBridge Tools

Notification collaborator: tells downstream consumers (todo and
participant notification delivery) that a note was created.
"""

import json

import boto3
from botocore.exceptions import ClientError
import structlog

from tracker.config import get_settings
from tracker.exceptions import EventPublishError
from tracker.models.dynamo import Identity, Note, Noteable
from tracker.models.events import BaseEvent, NoteCreatedEvent

log = structlog.get_logger()


def _get_client():
    """Get EventBridge client."""
    settings = get_settings()
    return boto3.client("events", **settings.eventbridge_config)


def send_event(
    event: BaseEvent,
    *,
    source: str | None = None,
    detail_type: str | None = None,
) -> str:
    """
    Publish a single event to EventBridge.

    Args:
        event: Event model to publish
        source: Override event source (default: from settings)
        detail_type: Override detail-type (default: from event class)

    Returns:
        EventBridge event ID

    Raises:
        EventPublishError: If publication fails
    """
    settings = get_settings()
    client = _get_client()

    event_source = source or settings.eventbridge_source
    event_detail_type = detail_type or event.detail_type()
    detail = event.to_eventbridge_detail()

    log.info(
        "publishing_event",
        detail_type=event_detail_type,
        project_id=event.project_id,
        source=event_source,
    )

    try:
        response = client.put_events(
            Entries=[
                {
                    "EventBusName": settings.eventbridge_bus_name,
                    "Source": event_source,
                    "DetailType": event_detail_type,
                    "Detail": json.dumps(detail),
                }
            ]
        )
    except ClientError as e:
        log.error(
            "eventbridge_put_failed",
            detail_type=event_detail_type,
            error=str(e),
        )
        raise EventPublishError(
            event_type=event_detail_type,
            error_code=e.response["Error"]["Code"],
            error_message=e.response["Error"]["Message"],
        ) from e

    if response.get("FailedEntryCount", 0) > 0:
        failed = response["Entries"][0]
        log.error(
            "eventbridge_entry_failed",
            detail_type=event_detail_type,
            error_code=failed.get("ErrorCode"),
            error_message=failed.get("ErrorMessage"),
        )
        raise EventPublishError(
            event_type=event_detail_type,
            error_code=failed.get("ErrorCode"),
            error_message=failed.get("ErrorMessage"),
        )

    event_id = response["Entries"][0]["EventId"]
    log.info("event_published", detail_type=event_detail_type, event_id=event_id)
    return event_id


def notify_todo_on_note(noteable: Noteable, identity: Identity, note: Note) -> str | None:
    """
    Fire-and-forget NoteCreated notification.

    The note is already committed when this runs, so a publish failure is
    logged and swallowed rather than failing the reply.

    Returns:
        EventBridge event ID, or None if publication failed
    """
    event = NoteCreatedEvent(
        project_id=noteable.project_id,
        noteable_type=noteable.noteable_type.value,
        noteable_id=noteable.noteable_id,
        note_id=note.note_id,
        author_id=identity.user_id,
        system=note.system,
    )

    try:
        return send_event(event)
    except EventPublishError as e:
        log.warning(
            "note_notification_failed",
            note_id=note.note_id,
            noteable_id=noteable.noteable_id,
            error=str(e),
        )
        return None
