"""
Email Parser Module

Parses raw MIME replies into an immutable IncomingMessage: addressing and
threading headers, a plain-text body and the attachment parts.
"""

import email
import html
import re
from dataclasses import dataclass, field
from email import errors as email_errors
from email.message import EmailMessage
from email.policy import default as default_policy
from email.utils import getaddresses

import structlog

from tracker.exceptions import MalformedMessageError

log = structlog.get_logger()

DEFAULT_MAX_ATTACHMENT_SIZE = 10 * 1024 * 1024  # 10MB

# Structural defects that leave the part tree unusable
_FATAL_DEFECTS = (
    email_errors.NoBoundaryInMultipartDefect,
    email_errors.StartBoundaryNotFoundDefect,
    email_errors.MultipartInvariantViolationDefect,
)

# Headers naming the envelope recipient when the To header does not
_DELIVERY_HEADERS = ("Delivered-To", "Envelope-To", "X-Envelope-To", "X-Original-To")

_HTML_QUOTE_BLOCKS = re.compile(
    r"<blockquote\b.*?</blockquote>"
    r"|<div[^>]*class=\"?(?:gmail_quote|gmail_extra)\"?[^>]*>.*$"
    r"|<div[^>]*id=\"?(?:divRplyFwdMsg|appendonsend)\"?[^>]*>.*$",
    re.IGNORECASE | re.DOTALL,
)
_HTML_LINE_BREAKS = re.compile(r"<br\s*/?>|</(?:p|div|li|tr|h[1-6])>", re.IGNORECASE)
_HTML_DROPPED = re.compile(r"<(script|style|head)\b.*?</\1>", re.IGNORECASE | re.DOTALL)
_HTML_TAGS = re.compile(r"<[^>]+>")


@dataclass(frozen=True)
class AttachmentPart:
    """Raw attachment data from email parse."""

    filename: str
    content: bytes
    content_type: str
    size_bytes: int
    content_id: str | None = None


@dataclass(frozen=True)
class IncomingMessage:
    """
    Result of parsing an inbound reply.

    Immutable once parsed; owned by a single pipeline invocation.
    """

    raw: bytes
    from_address: str
    subject: str
    message_id: str
    body: str

    to_addresses: tuple[str, ...] = ()
    cc_addresses: tuple[str, ...] = ()
    delivered_to: tuple[str, ...] = ()
    in_reply_to: tuple[str, ...] = ()
    references: tuple[str, ...] = ()

    # Every header as (lower-cased name, value), in message order
    headers: tuple[tuple[str, str], ...] = ()
    html_body: str | None = None

    # Attachments (raw data, not yet stored)
    attachments: tuple[AttachmentPart, ...] = field(default_factory=tuple)

    def header_values(self, name: str) -> list[str]:
        """All values of a header, case-insensitively."""
        name = name.lower()
        return [value for key, value in self.headers if key == name]

    @property
    def recipient_addresses(self) -> tuple[str, ...]:
        """Addresses that may carry the reply key, most specific first."""
        return self.to_addresses + self.delivered_to + self.cc_addresses


def _extract_address(header_value: str | None) -> str:
    """
    Extract email address from a header value.

    Handles formats like:
    - "John Doe <john@example.com>"
    - "<john@example.com>"
    - "john@example.com"
    """
    if not header_value:
        return ""
    addresses = _extract_addresses([header_value])
    return addresses[0] if addresses else header_value.strip()


def _extract_addresses(header_values: list[str] | None) -> list[str]:
    """Extract every email address from one or more address headers."""
    if not header_values:
        return []
    return [addr.strip() for _, addr in getaddresses(header_values) if addr.strip()]


def _extract_message_ids(header_value: str | None) -> tuple[str, ...]:
    """Split a References / In-Reply-To value into bare message ids."""
    if not header_value:
        return ()
    ids = re.findall(r"<([^<>\s]+)>", header_value)
    if not ids:
        ids = header_value.split()
    return tuple(i.strip("<>") for i in ids if i.strip("<>"))


def _decode_part(part: EmailMessage) -> str:
    payload = part.get_payload(decode=True)
    if not payload:
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except (LookupError, UnicodeDecodeError):
        return payload.decode("utf-8", errors="replace")


def html_to_text(markup: str) -> str:
    """
    Reduce an HTML body to plain text.

    Quoted history (blockquotes, Gmail and Outlook reply containers) is
    dropped before tags are stripped, since it cannot be told apart
    afterwards.
    """
    text = _HTML_DROPPED.sub("", markup)
    text = _HTML_QUOTE_BLOCKS.sub("", text)
    text = _HTML_LINE_BREAKS.sub("\n", text)
    text = _HTML_TAGS.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines()]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def _is_attachment_part(part: EmailMessage) -> bool:
    if part.is_multipart():
        return False
    if part.get_content_disposition() == "attachment":
        return True
    return bool(part.get_filename() or part.get("Content-ID"))


def _extract_body_text(msg: EmailMessage) -> tuple[str, str | None]:
    """
    Extract plaintext body from email message.

    Prefers text/plain, falls back to text/html converted to text.

    Returns:
        Tuple of (text body, raw HTML body or None)
    """
    plain: str | None = None
    markup: str | None = None

    for part in msg.walk():
        if part.is_multipart() or _is_attachment_part(part):
            continue
        content_type = part.get_content_type()
        if content_type == "text/plain" and plain is None:
            plain = _decode_part(part)
        elif content_type == "text/html" and markup is None:
            markup = _decode_part(part)

    if plain is not None:
        return plain, markup
    if markup is not None:
        return html_to_text(markup), markup
    return "", None


def _extract_attachments(
    msg: EmailMessage,
    max_size: int = DEFAULT_MAX_ATTACHMENT_SIZE,
) -> list[AttachmentPart]:
    """
    Extract attachments from email message.

    Parts without a payload and parts above the size limit are skipped.
    """
    attachments = []

    if not msg.is_multipart():
        return attachments

    for part in msg.walk():
        if not _is_attachment_part(part):
            continue

        content_type = part.get_content_type()
        filename = part.get_filename()
        if not filename:
            ext = content_type.split("/")[-1]
            filename = f"attachment.{ext}"

        try:
            payload = part.get_payload(decode=True)
        except (ValueError, TypeError) as e:
            log.warning("skipping_undecodable_attachment", filename=filename, error=str(e))
            continue
        if not payload:
            log.warning("skipping_empty_attachment", filename=filename)
            continue

        size_bytes = len(payload)
        if size_bytes > max_size:
            log.warning(
                "skipping_oversized_attachment",
                filename=filename,
                size_bytes=size_bytes,
                max_size=max_size,
            )
            continue

        content_id = part.get("Content-ID")
        attachments.append(
            AttachmentPart(
                filename=filename,
                content=payload,
                content_type=content_type,
                size_bytes=size_bytes,
                content_id=str(content_id).strip().strip("<>") if content_id else None,
            )
        )

        log.debug(
            "extracted_attachment",
            filename=filename,
            content_type=content_type,
            size_bytes=size_bytes,
        )

    return attachments


def _check_structure(msg: EmailMessage) -> None:
    if not msg.keys():
        raise MalformedMessageError("Message has no headers")
    for part in msg.walk():
        for defect in part.defects:
            if isinstance(defect, _FATAL_DEFECTS):
                raise MalformedMessageError(
                    "Message MIME structure is broken",
                    defect=type(defect).__name__,
                )


def parse_message(
    raw_email: str | bytes,
    *,
    max_attachment_size: int = DEFAULT_MAX_ATTACHMENT_SIZE,
) -> IncomingMessage:
    """
    Parse raw email content (MIME format) into an IncomingMessage.

    Args:
        raw_email: Raw email content as string or bytes
        max_attachment_size: Attachments larger than this are skipped

    Returns:
        IncomingMessage with parsed fields

    Raises:
        MalformedMessageError: If the MIME structure cannot be parsed
    """
    raw_bytes = raw_email.encode("utf-8") if isinstance(raw_email, str) else raw_email
    if not raw_bytes or not raw_bytes.strip():
        raise MalformedMessageError("Message is empty")

    try:
        msg = email.message_from_bytes(raw_bytes, policy=default_policy)
        _check_structure(msg)

        headers = tuple((name.lower(), str(value)) for name, value in msg.items())
        body, html_body = _extract_body_text(msg)
        attachments = _extract_attachments(msg, max_attachment_size)

        parsed = IncomingMessage(
            raw=raw_bytes,
            from_address=_extract_address(msg.get("From")),
            subject=str(msg.get("Subject", "") or ""),
            message_id=str(msg.get("Message-ID", "") or "").strip().strip("<>"),
            body=body,
            to_addresses=tuple(_extract_addresses(msg.get_all("To"))),
            cc_addresses=tuple(_extract_addresses(msg.get_all("Cc"))),
            delivered_to=tuple(
                addr
                for header in _DELIVERY_HEADERS
                for addr in _extract_addresses(msg.get_all(header))
            ),
            in_reply_to=_extract_message_ids(msg.get("In-Reply-To")),
            references=_extract_message_ids(msg.get("References")),
            headers=headers,
            html_body=html_body,
            attachments=tuple(attachments),
        )
    except MalformedMessageError as e:
        log.warning("email_malformed", error=str(e))
        raise
    except (email_errors.MessageError, ValueError, TypeError, IndexError) as e:
        log.error("email_parse_failed", error=str(e))
        raise MalformedMessageError(f"Failed to parse email: {e}") from e

    log.debug(
        "email_parsed",
        message_id=parsed.message_id,
        from_address=parsed.from_address,
        to_addresses=list(parsed.to_addresses),
        body_length=len(parsed.body),
        attachment_count=len(parsed.attachments),
    )
    return parsed
