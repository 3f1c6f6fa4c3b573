"""
Custom Exceptions for Reply-by-Email Note Ingestion

All exceptions follow the pattern of specific, actionable errors
with context needed for debugging and logging.

Pipeline rejections derive from EmailProcessingError; the Lambda entry
point maps each of them to a status code and a bounce reason.
Infrastructure failures (DynamoDB, S3, EventBridge) are kept separate
so the dispatcher can tell retryable errors from permanent rejections.
"""

from dataclasses import dataclass
from typing import Any


class TrackerError(Exception):
    """Base exception for the reply ingestion system."""

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


# =====================================================
# Pipeline rejections
# =====================================================


class EmailProcessingError(TrackerError):
    """Base class for every reason an inbound reply is rejected."""

    reason: str = "processing_error"


class MalformedMessageError(EmailProcessingError):
    """The raw message could not be parsed as MIME."""

    reason = "malformed_message"


class AutoGeneratedEmailError(EmailProcessingError):
    """The message carries an auto-reply / vacation responder indicator."""

    reason = "auto_generated"

    def __init__(self, header: str, value: str) -> None:
        self.header = header
        self.value = value
        super().__init__(
            "Message was generated automatically",
            header=header,
            value=value,
        )


class UnknownIncomingEmailError(EmailProcessingError):
    """No routing key could be extracted from the message."""

    reason = "unknown_incoming_email"


@dataclass
class SentNotificationNotFoundError(EmailProcessingError):
    """The routing key does not match any sent notification."""

    reply_key: str

    reason = "sent_notification_not_found"

    def __init__(self, reply_key: str) -> None:
        self.reply_key = reply_key
        super().__init__(
            f"No sent notification found for reply key '{reply_key}'",
            reply_key=reply_key,
        )


@dataclass
class NoteableNotFoundError(EmailProcessingError):
    """The noteable referenced by a sent notification no longer exists."""

    noteable_type: str
    noteable_id: str

    reason = "noteable_not_found"

    def __init__(self, noteable_type: str, noteable_id: str) -> None:
        self.noteable_type = noteable_type
        self.noteable_id = noteable_id
        super().__init__(
            f"{noteable_type} '{noteable_id}' no longer exists",
            noteable_type=noteable_type,
            noteable_id=noteable_id,
        )


class EmptyEmailError(EmailProcessingError):
    """Nothing human-authored is left after stripping quotes and signatures."""

    reason = "empty_email"


class InvalidNoteError(EmailProcessingError):
    """The note was rejected and nothing was persisted."""

    reason = "invalid_note"


class CommandsOnlyNoteError(InvalidNoteError):
    """The reply only held commands, and none of them had any effect."""

    reason = "commands_only"


# =====================================================
# Domain and storage errors
# =====================================================


class NoteValidationError(TrackerError):
    """A note failed model validation before it reached DynamoDB."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(
            "Note failed validation: " + "; ".join(errors),
            error_count=len(errors),
        )


@dataclass
class EventPublishError(TrackerError):
    """Failed to publish event to EventBridge."""

    event_type: str
    error_code: str | None = None
    error_message: str | None = None

    def __init__(
        self,
        event_type: str,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        self.event_type = event_type
        self.error_code = error_code
        self.error_message = error_message
        super().__init__(
            f"Failed to publish event '{event_type}': {error_message or 'Unknown error'}",
            event_type=event_type,
            error_code=error_code,
            error_message=error_message,
        )


@dataclass
class DynamoDBError(TrackerError):
    """DynamoDB operation failed."""

    operation: str  # "get", "put", "update", "query", "transact_write"
    table_name: str

    def __init__(
        self,
        operation: str,
        table_name: str,
        error_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.table_name = table_name
        super().__init__(
            f"DynamoDB {operation} failed on table '{table_name}': {error_message or 'Unknown error'}",
            operation=operation,
            table_name=table_name,
            error_message=error_message,
        )


@dataclass
class ConditionalWriteError(DynamoDBError):
    """DynamoDB conditional write failed (optimistic lock conflict)."""

    expected_version: int | None = None
    actual_version: int | None = None

    def __init__(
        self,
        table_name: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            operation="conditional_write",
            table_name=table_name,
            error_message=f"Version mismatch: expected {expected_version}, got {actual_version}",
        )


@dataclass
class S3Error(TrackerError):
    """S3 operation failed."""

    operation: str  # "upload", "download", "delete"
    bucket: str
    key: str | None = None

    def __init__(
        self,
        operation: str,
        bucket: str,
        key: str | None = None,
        error_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.bucket = bucket
        self.key = key
        super().__init__(
            f"S3 {operation} failed for s3://{bucket}/{key or '*'}: "
            f"{error_message or 'Unknown error'}",
            operation=operation,
            bucket=bucket,
            key=key,
            error_message=error_message,
        )
