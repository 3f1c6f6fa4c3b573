"""
DynamoDB Models

Pydantic models for items in the single IssueTracker table.

Key layout:
    SENT#<reply_key>              METADATA                      sent notification
    NOTEABLE#<type>#<id>          METADATA                      issue / merge request
    NOTEABLE#<type>#<id>          NOTE#<created_ms>#<note_id>   note
    PROJECT#<project_id>          MEMBER#<user_id>              project membership
    USER#<user_id>                TODO#<type>#<id>              todo
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import IntEnum
from typing import Any, Final, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tracker.state_machine import NoteableState, NoteableType

MAX_NOTE_LENGTH: Final[int] = 1_000_000


def _number(value: Any, default: int | None = 0) -> int | None:
    """DynamoDB returns numbers as Decimal."""
    if value is None:
        return default
    return int(value)


def _now() -> int:
    return int(datetime.now(timezone.utc).timestamp())


# =====================================================
# Access levels and capabilities
# =====================================================


class AccessLevel(IntEnum):
    """Project membership access levels."""

    GUEST = 10
    REPORTER = 20
    DEVELOPER = 30
    MAINTAINER = 40


_COMMON_COMMANDS: Final[frozenset[str]] = frozenset({
    "close",
    "reopen",
    "title",
    "label",
    "unlabel",
    "todo",
    "done",
    "subscribe",
    "unsubscribe",
})

SUPPORTED_COMMANDS: Final[dict[NoteableType, frozenset[str]]] = {
    NoteableType.ISSUE: _COMMON_COMMANDS | {"due", "remove_due_date"},
    NoteableType.MERGE_REQUEST: _COMMON_COMMANDS | {"wip"},
}


@dataclass(frozen=True)
class Identity:
    """The user a reply acts on behalf of (the notification's recipient)."""

    user_id: str


@dataclass(frozen=True)
class NoteableRef:
    """
    DynamoDB key for a noteable record.

    Utility class for key construction.
    """

    noteable_type: NoteableType
    noteable_id: str

    @property
    def pk(self) -> str:
        return f"NOTEABLE#{self.noteable_type.value}#{self.noteable_id}"

    @property
    def sk(self) -> str:
        return "METADATA"

    def to_key(self) -> dict[str, str]:
        """Return DynamoDB key dict."""
        return {"PK": self.pk, "SK": self.sk}


# =====================================================
# Sent Notification
# =====================================================


class SentNotification(BaseModel):
    """
    Record of an outbound notification that can be replied to.

    PK: SENT#<reply_key>
    SK: METADATA
    """

    model_config = ConfigDict(frozen=True)

    reply_key: str = Field(..., min_length=1, description="Routing key stamped on the email")
    noteable_type: NoteableType = Field(..., description="Issue or MergeRequest")
    noteable_id: str = Field(..., description="Noteable identifier")
    project_id: str = Field(..., description="Project the noteable belongs to")
    recipient_id: str = Field(..., description="User the notification was sent to")
    created_at: int = Field(default_factory=_now, description="Unix epoch timestamp")

    @property
    def pk(self) -> str:
        return f"SENT#{self.reply_key}"

    @property
    def sk(self) -> str:
        return "METADATA"

    @property
    def noteable_ref(self) -> NoteableRef:
        return NoteableRef(self.noteable_type, self.noteable_id)

    @property
    def recipient(self) -> Identity:
        return Identity(user_id=self.recipient_id)

    def to_dynamodb(self) -> dict[str, Any]:
        """Convert to DynamoDB item."""
        return {
            "PK": self.pk,
            "SK": self.sk,
            "reply_key": self.reply_key,
            "noteable_type": self.noteable_type.value,
            "noteable_id": self.noteable_id,
            "project_id": self.project_id,
            "recipient_id": self.recipient_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "SentNotification":
        """Parse from DynamoDB item."""
        return cls(
            reply_key=item.get("reply_key", ""),
            noteable_type=NoteableType(item["noteable_type"]),
            noteable_id=item.get("noteable_id", ""),
            project_id=item.get("project_id", ""),
            recipient_id=item.get("recipient_id", ""),
            created_at=_number(item.get("created_at")),
        )


# =====================================================
# Noteable
# =====================================================


class Noteable(BaseModel):
    """
    Issue or merge request that notes attach to.

    PK: NOTEABLE#<type>#<id>
    SK: METADATA
    """

    model_config = ConfigDict(frozen=True)

    noteable_type: NoteableType = Field(..., description="Issue or MergeRequest")
    noteable_id: str = Field(..., description="Noteable identifier")
    project_id: str = Field(..., description="Project granting permissions")
    title: str = Field(..., min_length=1, description="Title")
    state: NoteableState = Field(default=NoteableState.OPENED, description="Current state")
    due_date: date | None = Field(default=None, description="Due date (issues only)")
    labels: list[str] = Field(default_factory=list, description="Applied label names")
    subscribers: list[str] = Field(default_factory=list, description="Subscribed user ids")
    author_id: str | None = Field(default=None, description="Creator")
    created_at: int | None = Field(default=None, description="Record creation timestamp")
    updated_at: int | None = Field(default=None, description="Last update timestamp")
    version: int = Field(default=1, description="Optimistic locking version")

    @property
    def ref(self) -> NoteableRef:
        return NoteableRef(self.noteable_type, self.noteable_id)

    @property
    def pk(self) -> str:
        return self.ref.pk

    @property
    def sk(self) -> str:
        return self.ref.sk

    @property
    def supported_commands(self) -> frozenset[str]:
        """Commands that make sense for this kind of noteable."""
        return SUPPORTED_COMMANDS[self.noteable_type]

    def to_dynamodb(self) -> dict[str, Any]:
        """
        Convert to DynamoDB item format.

        Returns a dict ready for put_item operations.
        """
        item: dict[str, Any] = {
            "PK": self.pk,
            "SK": self.sk,
            "noteable_type": self.noteable_type.value,
            "noteable_id": self.noteable_id,
            "project_id": self.project_id,
            "title": self.title,
            "state": self.state.value,
            "labels": self.labels,
            "subscribers": self.subscribers,
            "version": self.version,
        }
        if self.due_date:
            item["due_date"] = self.due_date.isoformat()
        if self.author_id:
            item["author_id"] = self.author_id
        if self.created_at:
            item["created_at"] = self.created_at
        if self.updated_at:
            item["updated_at"] = self.updated_at
        return item

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "Noteable":
        """Create Noteable from DynamoDB item."""
        due_date = item.get("due_date")
        return cls(
            noteable_type=NoteableType(item["noteable_type"]),
            noteable_id=item.get("noteable_id", ""),
            project_id=item.get("project_id", ""),
            title=item.get("title", ""),
            state=NoteableState.from_string(item.get("state", "opened")),
            due_date=date.fromisoformat(due_date) if due_date else None,
            labels=list(item.get("labels", [])),
            subscribers=list(item.get("subscribers", [])),
            author_id=item.get("author_id"),
            created_at=_number(item.get("created_at"), default=None),
            updated_at=_number(item.get("updated_at"), default=None),
            version=_number(item.get("version"), default=1),
        )

    def with_updates(self, **updates: Any) -> "Noteable":
        """
        Create a new Noteable with the specified updates.

        Since Noteable is frozen, this returns a new instance.
        """
        data = self.model_dump()
        data.update(updates)
        data["version"] = self.version + 1
        data["updated_at"] = _now()
        return Noteable.model_validate(data)


# =====================================================
# Note
# =====================================================


class Note(BaseModel):
    """
    A comment on a noteable, authored by a user or by the system.

    PK: NOTEABLE#<type>#<id>
    SK: NOTE#<created_ms>#<note_id>
    """

    model_config = ConfigDict(frozen=True)

    note_id: str = Field(default_factory=lambda: uuid4().hex, description="Note identifier")
    noteable_type: NoteableType = Field(..., description="Issue or MergeRequest")
    noteable_id: str = Field(..., description="Noteable identifier")
    project_id: str = Field(..., description="Project identifier")
    author_id: str = Field(..., min_length=1, description="Author user id")
    note: str = Field(..., max_length=MAX_NOTE_LENGTH, description="Markdown body")
    system: bool = Field(default=False, description="Generated from a state change")
    created_ms: int = Field(
        default_factory=lambda: int(datetime.now(timezone.utc).timestamp() * 1000),
        description="Millisecond timestamp for ordering",
    )
    attachments: list[str] = Field(default_factory=list, description="Stored upload URLs")

    @field_validator("note")
    @classmethod
    def validate_note(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Note can't be blank")
        return v

    @property
    def pk(self) -> str:
        return NoteableRef(self.noteable_type, self.noteable_id).pk

    @property
    def sk(self) -> str:
        return f"NOTE#{self.created_ms:015d}#{self.note_id}"

    def to_dynamodb(self) -> dict[str, Any]:
        """Convert to DynamoDB item."""
        return {
            "PK": self.pk,
            "SK": self.sk,
            "note_id": self.note_id,
            "noteable_type": self.noteable_type.value,
            "noteable_id": self.noteable_id,
            "project_id": self.project_id,
            "author_id": self.author_id,
            "note": self.note,
            "system": self.system,
            "created_ms": self.created_ms,
            "attachments": self.attachments,
        }

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "Note":
        """Parse from DynamoDB item."""
        return cls(
            note_id=item.get("note_id", ""),
            noteable_type=NoteableType(item["noteable_type"]),
            noteable_id=item.get("noteable_id", ""),
            project_id=item.get("project_id", ""),
            author_id=item.get("author_id", ""),
            note=item.get("note", ""),
            system=bool(item.get("system", False)),
            created_ms=_number(item.get("created_ms")),
            attachments=list(item.get("attachments", [])),
        )


# =====================================================
# Membership and Todos
# =====================================================


class ProjectMember(BaseModel):
    """
    A user's access level on a project.

    PK: PROJECT#<project_id>
    SK: MEMBER#<user_id>
    """

    model_config = ConfigDict(frozen=True)

    project_id: str
    user_id: str
    access_level: AccessLevel

    @property
    def pk(self) -> str:
        return f"PROJECT#{self.project_id}"

    @property
    def sk(self) -> str:
        return f"MEMBER#{self.user_id}"

    def to_dynamodb(self) -> dict[str, Any]:
        return {
            "PK": self.pk,
            "SK": self.sk,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "access_level": int(self.access_level),
        }

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "ProjectMember":
        return cls(
            project_id=item.get("project_id", ""),
            user_id=item.get("user_id", ""),
            access_level=AccessLevel(_number(item.get("access_level"))),
        )


class Todo(BaseModel):
    """
    A user's todo for a noteable.

    PK: USER#<user_id>
    SK: TODO#<type>#<id>
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    noteable_type: NoteableType
    noteable_id: str
    project_id: str
    state: Literal["pending", "done"] = "pending"
    updated_at: int = Field(default_factory=_now)

    @property
    def pk(self) -> str:
        return f"USER#{self.user_id}"

    @property
    def sk(self) -> str:
        return f"TODO#{self.noteable_type.value}#{self.noteable_id}"

    def to_dynamodb(self) -> dict[str, Any]:
        return {
            "PK": self.pk,
            "SK": self.sk,
            "user_id": self.user_id,
            "noteable_type": self.noteable_type.value,
            "noteable_id": self.noteable_id,
            "project_id": self.project_id,
            "state": self.state,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "Todo":
        return cls(
            user_id=item.get("user_id", ""),
            noteable_type=NoteableType(item["noteable_type"]),
            noteable_id=item.get("noteable_id", ""),
            project_id=item.get("project_id", ""),
            state=item.get("state", "pending"),
            updated_at=_number(item.get("updated_at")),
        )
