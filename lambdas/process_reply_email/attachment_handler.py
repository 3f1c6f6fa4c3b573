"""
Attachment Handling

Stores reply attachments in S3 and points the note body at the stored
copies. A failing attachment is logged and skipped; it never costs the
user their note.
"""

import re

import structlog

from lambdas.process_reply_email.email_parser import AttachmentPart, IncomingMessage
from tracker.exceptions import S3Error
from tracker.tools.s3 import StoredUpload, delete_upload, store_upload

log = structlog.get_logger()


def _rewrite_references(body: str, part: AttachmentPart, upload: StoredUpload) -> tuple[str, bool]:
    """
    Replace references to one attachment in the body.

    Handles cid: links to inline parts, Gmail "[image: name]" placeholders
    and markdown link targets naming the bare filename.

    Returns:
        Tuple of (rewritten body, whether any reference was found)
    """
    referenced = False

    if part.content_id:
        cid = re.compile(rf"cid:{re.escape(part.content_id)}", re.IGNORECASE)
        body, count = cid.subn(lambda _: upload.url, body)
        referenced = referenced or count > 0

    placeholder = re.compile(rf"\[image:\s*{re.escape(part.filename)}\s*\]", re.IGNORECASE)
    body, count = placeholder.subn(lambda _: upload.markdown, body)
    referenced = referenced or count > 0

    link_target = re.compile(rf"\]\(\s*{re.escape(part.filename)}\s*\)")
    body, count = link_target.subn(lambda _: f"]({upload.url})", body)
    referenced = referenced or count > 0

    return body, referenced


def upload_attachments(
    message: IncomingMessage,
    body: str,
    project_id: str,
) -> tuple[str, list[StoredUpload]]:
    """
    Store every attachment of a message and link them from the body.

    Attachments the body does not reference are appended as markdown.

    Args:
        message: Parsed inbound message
        body: Note body after command removal
        project_id: Project the note belongs to

    Returns:
        Tuple of (rewritten body, stored uploads)
    """
    uploads: list[StoredUpload] = []
    appended: list[str] = []

    for part in message.attachments:
        try:
            upload = store_upload(
                part.content,
                project_id,
                part.filename,
                content_type=part.content_type,
                metadata={"message-id": message.message_id[:256]} if message.message_id else None,
            )
        except Exception as e:
            log.warning(
                "attachment_skipped",
                filename=part.filename,
                content_type=part.content_type,
                error=str(e),
            )
            continue

        uploads.append(upload)
        body, referenced = _rewrite_references(body, part, upload)
        if not referenced:
            appended.append(upload.markdown)

    if appended:
        body = "\n\n".join(chunk for chunk in (body.rstrip(), "\n".join(appended)) if chunk)

    if uploads:
        log.info(
            "attachments_uploaded",
            project_id=project_id,
            uploaded=len(uploads),
            skipped=len(message.attachments) - len(uploads),
        )
    return body, uploads


def discard_uploads(uploads: list[StoredUpload]) -> None:
    """
    Delete stored uploads after the note transaction failed.

    Deletion failures are logged; the original error is what matters to
    the caller.
    """
    for upload in uploads:
        try:
            delete_upload(upload.key)
        except S3Error as e:
            log.error("upload_cleanup_failed", key=upload.key, error=str(e))
