# Shared Infrastructure for Reply-by-Email Note Ingestion
"""
Shared infrastructure components for the reply ingestion Lambda.

This package provides:
- Noteable state machine (NoteableState, valid transitions)
- Pydantic models for DynamoDB items and events
- Tool implementations for DynamoDB, EventBridge, S3 and permissions
- Configuration management
- Custom exceptions
"""

from tracker.config import Settings, get_settings
from tracker.exceptions import (
    AutoGeneratedEmailError,
    CommandsOnlyNoteError,
    EmailProcessingError,
    EmptyEmailError,
    InvalidNoteError,
    MalformedMessageError,
    NoteableNotFoundError,
    SentNotificationNotFoundError,
    TrackerError,
    UnknownIncomingEmailError,
)
from tracker.state_machine import NoteableState, NoteableType, can_transition

__all__ = [
    # State machine
    "NoteableState",
    "NoteableType",
    "can_transition",
    # Exceptions
    "TrackerError",
    "EmailProcessingError",
    "MalformedMessageError",
    "AutoGeneratedEmailError",
    "UnknownIncomingEmailError",
    "SentNotificationNotFoundError",
    "NoteableNotFoundError",
    "EmptyEmailError",
    "InvalidNoteError",
    "CommandsOnlyNoteError",
    # Config
    "Settings",
    "get_settings",
]
