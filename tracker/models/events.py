"""
Event Models

Pydantic models for events published after a reply has been ingested.
"""

from pydantic import BaseModel, ConfigDict, Field


class BaseEvent(BaseModel):
    """Base class for all events."""

    model_config = ConfigDict(frozen=True)

    project_id: str = Field(..., description="Project identifier")

    def to_eventbridge_detail(self) -> dict:
        """Convert to EventBridge detail payload."""
        return self.model_dump(mode="json", exclude_none=True)


class NoteCreatedEvent(BaseEvent):
    """
    A note was created from an email reply.

    Source: tracker.lambdas.process_reply_email
    Triggers: todo and participant notification delivery
    """

    noteable_type: str = Field(..., description="Issue or MergeRequest")
    noteable_id: str = Field(..., description="Noteable identifier")
    note_id: str = Field(..., description="Created note")
    author_id: str = Field(..., description="User the reply acted for")
    system: bool = Field(default=False, description="System-generated state change note")

    @classmethod
    def detail_type(cls) -> str:
        return "NoteCreated"
