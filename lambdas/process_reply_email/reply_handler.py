"""
Reply Handler

Runs one inbound reply through the whole pipeline:

    parse -> auto-reply check -> mail key -> resolve notification
          -> extract content -> interpret commands -> upload attachments
          -> create notes -> notify

The first failing stage aborts the reply with its typed error. Until the
note transaction commits, the only side effect is stored attachments, and
those are deleted again when the transaction fails.

Re-running a reply that already succeeded creates a duplicate note;
at-most-once delivery is up to the dispatcher.
"""

from dataclasses import dataclass, field
from datetime import date

import structlog

from lambdas.process_reply_email.attachment_handler import discard_uploads, upload_attachments
from lambdas.process_reply_email.auto_reply import ensure_not_auto_reply
from lambdas.process_reply_email.commands import interpret_commands
from lambdas.process_reply_email.content_extractor import extract_reply_content
from lambdas.process_reply_email.email_parser import parse_message
from lambdas.process_reply_email.mail_key import extract_mail_key
from lambdas.process_reply_email.note_creator import create_notes, ensure_note_content
from lambdas.process_reply_email.notification_resolver import resolve_notification
from tracker.config import Settings, get_settings
from tracker.models.dynamo import Note, Noteable
from tracker.tools.eventbridge import notify_todo_on_note
from tracker.tools.s3 import StoredUpload

log = structlog.get_logger()


@dataclass(frozen=True)
class ReplyResult:
    """Outcome of a successfully processed reply."""

    reply_key: str
    noteable: Noteable
    notes: tuple[Note, ...] = ()
    applied_commands: tuple[str, ...] = ()
    uploads: tuple[StoredUpload, ...] = ()
    event_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def user_note(self) -> Note | None:
        return next((note for note in self.notes if not note.system), None)

    @property
    def system_notes(self) -> list[Note]:
        return [note for note in self.notes if note.system]


class ReplyHandler:
    """
    Turns a raw reply email into notes on the noteable it answers.

    Usage:
        result = ReplyHandler(raw_email).execute()
    """

    def __init__(
        self,
        raw_email: str | bytes,
        settings: Settings | None = None,
        *,
        today: date | None = None,
    ) -> None:
        self.raw_email = raw_email
        self.settings = settings or get_settings()
        self.today = today

    def execute(self) -> ReplyResult:
        """
        Process the reply.

        Returns:
            ReplyResult with the created notes

        Raises:
            EmailProcessingError: Subclass naming the stage that rejected the reply
            DynamoDBError: On storage failures (retryable)
        """
        settings = self.settings

        message = parse_message(
            self.raw_email,
            max_attachment_size=settings.max_attachment_size_bytes,
        )
        ensure_not_auto_reply(message, settings.auto_reply_headers)

        reply_key = extract_mail_key(message, settings)
        resolved = resolve_notification(reply_key)
        noteable, identity = resolved.noteable, resolved.identity

        content = extract_reply_content(message.body, settings)
        command_result = interpret_commands(
            content,
            noteable,
            identity,
            settings,
            today=self.today,
        )
        ensure_note_content(
            noteable,
            command_result,
            has_attachments=bool(message.attachments),
        )

        body, uploads = command_result.body, []
        if message.attachments:
            body, uploads = upload_attachments(message, body, noteable.project_id)

        try:
            created = create_notes(
                noteable,
                identity,
                command_result,
                body=body,
                attachment_urls=[upload.url for upload in uploads],
            )
        except Exception:
            discard_uploads(uploads)
            raise
        notes = created.notes

        event_ids = []
        for note in notes:
            event_id = notify_todo_on_note(noteable, identity, note)
            if event_id:
                event_ids.append(event_id)

        log.info(
            "reply_processed",
            reply_key=reply_key,
            message_id=message.message_id,
            noteable_type=noteable.noteable_type.value,
            noteable_id=noteable.noteable_id,
            note_count=len(notes),
            applied_commands=list(command_result.applied),
            upload_count=len(uploads),
        )

        return ReplyResult(
            reply_key=reply_key,
            noteable=created.noteable,
            notes=tuple(notes),
            applied_commands=command_result.applied,
            uploads=tuple(uploads),
            event_ids=tuple(event_ids),
        )
