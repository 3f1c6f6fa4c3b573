"""
DynamoDB Tools

Storage collaborator for reply ingestion: sent notifications, noteables,
notes, project membership and todos, all in a single table.
The note transaction is the one place that writes several items at once.
"""

from datetime import datetime, timezone
from typing import Any

import boto3
from botocore.exceptions import ClientError
from pydantic import ValidationError
import structlog

from tracker.config import get_settings
from tracker.exceptions import (
    ConditionalWriteError,
    DynamoDBError,
    NoteValidationError,
)
from tracker.models.dynamo import (
    AccessLevel,
    Note,
    Noteable,
    NoteableRef,
    ProjectMember,
    SentNotification,
    Todo,
)

log = structlog.get_logger()


def _get_table():
    """Get DynamoDB table resource."""
    settings = get_settings()
    dynamodb = boto3.resource("dynamodb", **settings.dynamodb_config)
    return dynamodb.Table(settings.dynamodb_table_name)


def _get_item(key: dict[str, str], *, consistent_read: bool = True) -> dict[str, Any] | None:
    settings = get_settings()
    table = _get_table()

    try:
        response = table.get_item(Key=key, ConsistentRead=consistent_read)
    except ClientError as e:
        log.error("dynamodb_get_failed", key=key, error=str(e))
        raise DynamoDBError(
            operation="get",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    return response.get("Item")


# =====================================================
# Sent Notifications
# =====================================================


def record_sent_notification(
    noteable: Noteable,
    recipient_id: str,
    reply_key: str,
) -> SentNotification:
    """
    Record an outbound notification so replies to it can be routed back.

    Reply keys are never reused: writing an existing key fails.

    Raises:
        DynamoDBError: If the key already exists or the put fails
    """
    settings = get_settings()
    table = _get_table()

    sent = SentNotification(
        reply_key=reply_key,
        noteable_type=noteable.noteable_type,
        noteable_id=noteable.noteable_id,
        project_id=noteable.project_id,
        recipient_id=recipient_id,
    )

    try:
        table.put_item(
            Item=sent.to_dynamodb(),
            ConditionExpression="attribute_not_exists(PK)",
        )
    except ClientError as e:
        log.error("sent_notification_put_failed", reply_key=reply_key, error=str(e))
        raise DynamoDBError(
            operation="put",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    log.info(
        "sent_notification_recorded",
        reply_key=reply_key,
        noteable_type=noteable.noteable_type.value,
        noteable_id=noteable.noteable_id,
        recipient_id=recipient_id,
    )
    return sent


def find_sent_notification(reply_key: str) -> SentNotification | None:
    """
    Load the sent notification stamped with a reply key.

    Returns:
        SentNotification if found, None otherwise

    Raises:
        DynamoDBError: On DynamoDB operation failure
    """
    item = _get_item({"PK": f"SENT#{reply_key}", "SK": "METADATA"})
    if not item:
        log.debug("sent_notification_not_found", reply_key=reply_key)
        return None
    return SentNotification.from_dynamodb(item)


# =====================================================
# Noteables
# =====================================================


def create_noteable(noteable: Noteable) -> Noteable:
    """
    Create a noteable record.

    This is idempotent - if the record already exists, it returns the existing record.
    """
    settings = get_settings()
    table = _get_table()

    now = int(datetime.now(timezone.utc).timestamp())
    if noteable.created_at is None:
        noteable = noteable.model_copy(update={"created_at": now, "updated_at": now})

    try:
        table.put_item(
            Item=noteable.to_dynamodb(),
            ConditionExpression="attribute_not_exists(PK)",
        )
        log.info(
            "noteable_created",
            noteable_type=noteable.noteable_type.value,
            noteable_id=noteable.noteable_id,
        )
        return noteable
    except ClientError as e:
        if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            existing = find_noteable(noteable.ref)
            if existing:
                return existing
        log.error(
            "noteable_put_failed",
            noteable_id=noteable.noteable_id,
            error=str(e),
        )
        raise DynamoDBError(
            operation="put",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e


def find_noteable(ref: NoteableRef) -> Noteable | None:
    """Load a noteable, or None when it does not exist (any more)."""
    item = _get_item(ref.to_key())
    if not item:
        log.debug(
            "noteable_not_found",
            noteable_type=ref.noteable_type.value,
            noteable_id=ref.noteable_id,
        )
        return None
    return Noteable.from_dynamodb(item)


def delete_noteable(ref: NoteableRef) -> None:
    """Delete a noteable record. Its notes are left in place."""
    settings = get_settings()
    table = _get_table()

    try:
        table.delete_item(Key=ref.to_key())
    except ClientError as e:
        raise DynamoDBError(
            operation="delete",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    log.info(
        "noteable_deleted",
        noteable_type=ref.noteable_type.value,
        noteable_id=ref.noteable_id,
    )


# =====================================================
# Project Membership
# =====================================================


def add_project_member(
    project_id: str,
    user_id: str,
    access_level: AccessLevel,
) -> ProjectMember:
    """Grant (or change) a user's access level on a project."""
    settings = get_settings()
    table = _get_table()
    member = ProjectMember(project_id=project_id, user_id=user_id, access_level=access_level)

    try:
        table.put_item(Item=member.to_dynamodb())
    except ClientError as e:
        raise DynamoDBError(
            operation="put",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    log.info(
        "project_member_added",
        project_id=project_id,
        user_id=user_id,
        access_level=access_level.name,
    )
    return member


def get_project_member(project_id: str, user_id: str) -> ProjectMember | None:
    """Load a user's membership of a project."""
    item = _get_item({"PK": f"PROJECT#{project_id}", "SK": f"MEMBER#{user_id}"})
    if not item:
        return None
    return ProjectMember.from_dynamodb(item)


# =====================================================
# Notes
# =====================================================


def list_noteable_notes(ref: NoteableRef) -> list[Note]:
    """List all notes of a noteable, oldest first."""
    settings = get_settings()
    table = _get_table()

    query_params: dict[str, Any] = {
        "KeyConditionExpression": "PK = :pk AND begins_with(SK, :sk_prefix)",
        "ExpressionAttributeValues": {
            ":pk": ref.pk,
            ":sk_prefix": "NOTE#",
        },
        "ScanIndexForward": True,
    }

    try:
        response = table.query(**query_params)
        items = response.get("Items", [])

        while "LastEvaluatedKey" in response:
            query_params["ExclusiveStartKey"] = response["LastEvaluatedKey"]
            response = table.query(**query_params)
            items.extend(response.get("Items", []))
    except ClientError as e:
        log.error("dynamodb_query_failed", noteable_id=ref.noteable_id, error=str(e))
        raise DynamoDBError(
            operation="query",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    return [Note.from_dynamodb(item) for item in items]


def build_notes(drafts: list[dict[str, Any]]) -> list[Note]:
    """
    Validate note drafts into Note models.

    Raises:
        NoteValidationError: If any draft is rejected
    """
    notes = []
    errors: list[str] = []
    for draft in drafts:
        try:
            notes.append(Note.model_validate(draft))
        except ValidationError as e:
            errors.extend(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
    if errors:
        log.warning("note_validation_failed", errors=errors)
        raise NoteValidationError(errors)
    return notes


def create_note_transaction(
    noteable: Noteable,
    note_drafts: list[dict[str, Any]],
    *,
    updated_noteable: Noteable | None = None,
    todo: Todo | None = None,
) -> list[Note]:
    """
    Persist notes together with the noteable mutations, all or nothing.

    The noteable write is conditioned on the version that was read, so a
    concurrent reply touching the same noteable cancels the transaction
    instead of interleaving with it. Without mutations the noteable is
    only checked for existence.

    Args:
        noteable: Noteable as read at the start of the invocation
        note_drafts: Field dicts for the notes to create
        updated_noteable: Noteable after command effects, if any
        todo: Todo to write for the acting user, if any

    Returns:
        The persisted notes

    Raises:
        NoteValidationError: If a note draft fails validation
        ConditionalWriteError: If the noteable changed or disappeared
        DynamoDBError: On other DynamoDB failures
    """
    settings = get_settings()
    table = _get_table()
    table_name = settings.dynamodb_table_name

    notes = build_notes(note_drafts)

    transact_items: list[dict[str, Any]] = [
        {
            "Put": {
                "TableName": table_name,
                "Item": note.to_dynamodb(),
                "ConditionExpression": "attribute_not_exists(SK)",
            }
        }
        for note in notes
    ]

    if updated_noteable is not None:
        transact_items.append({
            "Put": {
                "TableName": table_name,
                "Item": updated_noteable.to_dynamodb(),
                "ConditionExpression": "attribute_exists(PK) AND #version = :current_version",
                "ExpressionAttributeNames": {"#version": "version"},
                "ExpressionAttributeValues": {":current_version": noteable.version},
            }
        })
    else:
        transact_items.append({
            "ConditionCheck": {
                "TableName": table_name,
                "Key": noteable.ref.to_key(),
                "ConditionExpression": "attribute_exists(PK)",
            }
        })

    if todo is not None:
        transact_items.append({
            "Put": {
                "TableName": table_name,
                "Item": todo.to_dynamodb(),
            }
        })

    log.info(
        "writing_note_transaction",
        noteable_type=noteable.noteable_type.value,
        noteable_id=noteable.noteable_id,
        note_count=len(notes),
        mutates_noteable=updated_noteable is not None,
        writes_todo=todo is not None,
        version=noteable.version,
    )

    try:
        table.meta.client.transact_write_items(TransactItems=transact_items)
    except ClientError as e:
        error_code = e.response["Error"]["Code"]
        reasons = [r.get("Code") for r in e.response.get("CancellationReasons", [])]
        # The reasons are also listed in the message, e.g.
        # "... specific reasons [ConditionalCheckFailed, None]"
        condition_failed = "ConditionalCheckFailed" in reasons or (
            "ConditionalCheckFailed" in e.response["Error"].get("Message", "")
        )
        if error_code == "TransactionCanceledException" and condition_failed:
            log.warning(
                "note_transaction_conflict",
                noteable_id=noteable.noteable_id,
                expected_version=noteable.version,
                cancellation_reasons=reasons,
            )
            raise ConditionalWriteError(
                table_name=table_name,
                expected_version=noteable.version,
            ) from e

        log.error(
            "note_transaction_failed",
            noteable_id=noteable.noteable_id,
            error=str(e),
        )
        raise DynamoDBError(
            operation="transact_write",
            table_name=table_name,
            error_message=str(e),
        ) from e

    log.info(
        "note_transaction_committed",
        noteable_id=noteable.noteable_id,
        note_ids=[n.note_id for n in notes],
    )
    return notes


# =====================================================
# Todos
# =====================================================


def find_todo(user_id: str, ref: NoteableRef) -> Todo | None:
    """Load a user's todo for a noteable."""
    item = _get_item(
        {"PK": f"USER#{user_id}", "SK": f"TODO#{ref.noteable_type.value}#{ref.noteable_id}"}
    )
    if not item:
        return None
    return Todo.from_dynamodb(item)


def todo_exists(user_id: str, ref: NoteableRef) -> bool:
    """Whether the user has a pending todo for the noteable."""
    todo = find_todo(user_id, ref)
    return todo is not None and todo.state == "pending"
