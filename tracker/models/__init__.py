# Shared Models
"""
Pydantic models for DynamoDB items and events.
"""

from tracker.models.dynamo import (
    AccessLevel,
    Identity,
    Note,
    Noteable,
    NoteableRef,
    ProjectMember,
    SentNotification,
    Todo,
)
from tracker.models.events import BaseEvent, NoteCreatedEvent

__all__ = [
    # DynamoDB
    "AccessLevel",
    "Identity",
    "Note",
    "Noteable",
    "NoteableRef",
    "ProjectMember",
    "SentNotification",
    "Todo",
    # Events
    "BaseEvent",
    "NoteCreatedEvent",
]
