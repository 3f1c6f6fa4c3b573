"""
Note Creation

Turns the interpreted reply into notes and commits them, together with the
queued noteable mutations and todo change, in one DynamoDB transaction.

At most two notes are created per reply:
- a user note with the residual body (plus attachment links)
- one system note describing the noteable attribute changes
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

import structlog

from lambdas.process_reply_email.commands import (
    CommandResult,
    QueuedMutations,
    is_draft_title,
    strip_draft_prefix,
)
from tracker.exceptions import CommandsOnlyNoteError, InvalidNoteError, NoteValidationError
from tracker.models.dynamo import Identity, Note, Noteable, Todo
from tracker.state_machine import NoteableState
from tracker.tools.dynamodb import create_note_transaction

log = structlog.get_logger()

@dataclass(frozen=True)
class CreatedNotes:
    """What a reply's note transaction committed."""

    notes: list[Note]
    noteable: Noteable


_STATE_PHRASES = {
    NoteableState.CLOSED: "closed",
    NoteableState.OPENED: "reopened",
    NoteableState.MERGED: "merged",
}


def _format_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def _format_labels(labels: list[str]) -> str:
    names = " ".join(f'~"{label}"' if " " in label else f"~{label}" for label in labels)
    return f"{names} label" + ("s" if len(labels) > 1 else "")


def _join_phrases(phrases: list[str]) -> str:
    if len(phrases) == 1:
        return phrases[0]
    return ", ".join(phrases[:-1]) + " and " + phrases[-1]


def describe_changes(noteable: Noteable, changes: dict[str, Any]) -> str | None:
    """
    Describe noteable attribute changes as a system note body.

    Subscription changes are not described.

    Returns:
        Markdown text, or None when nothing worth a system note changed
    """
    phrases: list[str] = []

    if "state" in changes:
        phrases.append(_STATE_PHRASES[changes["state"]])

    if "title" in changes:
        old_title, new_title = noteable.title, changes["title"]
        if is_draft_title(old_title) != is_draft_title(new_title):
            phrases.append("marked as **draft**" if is_draft_title(new_title) else "marked as **ready**")
        if strip_draft_prefix(old_title) != strip_draft_prefix(new_title):
            phrases.append(
                f"changed title from **{strip_draft_prefix(old_title)}** "
                f"to **{strip_draft_prefix(new_title)}**"
            )

    if "labels" in changes:
        added = [label for label in changes["labels"] if label not in noteable.labels]
        removed = [label for label in noteable.labels if label not in changes["labels"]]
        if added:
            phrases.append(f"added {_format_labels(added)}")
        if removed:
            phrases.append(f"removed {_format_labels(removed)}")

    if "due_date" in changes:
        due_date = changes["due_date"]
        if due_date is None:
            phrases.append("removed due date")
        else:
            phrases.append(f"changed due date to {_format_date(due_date)}")

    return _join_phrases(phrases) if phrases else None


def ensure_note_content(
    noteable: Noteable,
    command_result: CommandResult,
    *,
    has_attachments: bool = False,
) -> None:
    """
    Reject a commands-only reply whose commands all came to nothing.

    Raises:
        CommandsOnlyNoteError: If there is nothing to post and nothing to change
    """
    if (
        command_result.commands_only
        and not has_attachments
        and not command_result.mutations.has_effect(noteable)
    ):
        log.warning(
            "commands_only_reply_rejected",
            noteable_type=noteable.noteable_type.value,
            noteable_id=noteable.noteable_id,
            commands=[command.name for command in command_result.commands],
        )
        raise CommandsOnlyNoteError(
            "Reply only contained commands, and none of them could be applied",
            commands=[command.name for command in command_result.commands],
        )


def _build_todo(noteable: Noteable, identity: Identity, mutations: QueuedMutations) -> Todo | None:
    if mutations.todo is None:
        return None
    return Todo(
        user_id=identity.user_id,
        noteable_type=noteable.noteable_type,
        noteable_id=noteable.noteable_id,
        project_id=noteable.project_id,
        state="pending" if mutations.todo == "add" else "done",
    )


def build_note_drafts(
    noteable: Noteable,
    identity: Identity,
    body: str,
    mutations: QueuedMutations,
    *,
    attachment_urls: list[str] | None = None,
) -> list[dict[str, Any]]:
    """Field dicts for the user note and the system note, in that order."""
    created_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    base = {
        "noteable_type": noteable.noteable_type,
        "noteable_id": noteable.noteable_id,
        "project_id": noteable.project_id,
        "author_id": identity.user_id,
    }

    drafts: list[dict[str, Any]] = []
    if body.strip():
        drafts.append({
            **base,
            "note": body,
            "system": False,
            "created_ms": created_ms,
            "attachments": list(attachment_urls or []),
        })

    system_body = describe_changes(noteable, mutations.changed_attributes(noteable))
    if system_body:
        drafts.append({
            **base,
            "note": system_body,
            "system": True,
            "created_ms": created_ms + 1,
        })

    return drafts


def create_notes(
    noteable: Noteable,
    identity: Identity,
    command_result: CommandResult,
    *,
    body: str | None = None,
    attachment_urls: list[str] | None = None,
) -> CreatedNotes:
    """
    Persist the notes for a reply together with its command effects.

    Args:
        noteable: Noteable as read at the start of the invocation
        identity: User the notes are authored by
        command_result: Interpreted commands and residual body
        body: Note body to post (defaults to the residual body)
        attachment_urls: URLs of attachments linked from the body

    Returns:
        CreatedNotes with the notes (possibly none, for a todo-only reply)
        and the noteable as written (unchanged when nothing was mutated)

    Raises:
        CommandsOnlyNoteError: If only ineffective commands were sent
        InvalidNoteError: If a note fails validation
        ConditionalWriteError: If the noteable changed concurrently
        DynamoDBError: On other storage failures
    """
    body = command_result.body if body is None else body
    ensure_note_content(noteable, command_result, has_attachments=bool(attachment_urls))

    mutations = command_result.mutations
    drafts = build_note_drafts(
        noteable,
        identity,
        body,
        mutations,
        attachment_urls=attachment_urls,
    )

    updated_noteable = mutations.apply_to(noteable)
    try:
        notes = create_note_transaction(
            noteable,
            drafts,
            updated_noteable=updated_noteable,
            todo=_build_todo(noteable, identity, mutations),
        )
    except NoteValidationError as e:
        raise InvalidNoteError(e.message, errors=e.errors) from e

    log.info(
        "notes_created",
        noteable_type=noteable.noteable_type.value,
        noteable_id=noteable.noteable_id,
        author_id=identity.user_id,
        note_ids=[note.note_id for note in notes],
        system_notes=sum(1 for note in notes if note.system),
    )
    return CreatedNotes(notes=notes, noteable=updated_noteable or noteable)
