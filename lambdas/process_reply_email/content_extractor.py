"""
Reply Content Extraction

Reduces a reply body to the text the user actually wrote: the quoted
conversation, signatures and configured disclaimers are removed.

Runs before command parsing so that commands quoted from an earlier
message are never executed.
"""

import re

import structlog

from tracker.config import Settings
from tracker.exceptions import EmptyEmailError

log = structlog.get_logger()

# Reply delimiters: everything from the matching line on is quoted history
_ON_WROTE = re.compile(r"^\s*On\b.*\bwrote:\s*$", re.IGNORECASE)
_ON_START = re.compile(r"^\s*On\s\S", re.IGNORECASE)
_WROTE_END = re.compile(r"\bwrote:\s*$", re.IGNORECASE)
_ORIGINAL_MESSAGE = re.compile(r"^\s*-{2,}\s*Original Message\s*-{2,}\s*$", re.IGNORECASE)
_OUTLOOK_FROM = re.compile(r"^\s*\*?From:\*?\s", re.IGNORECASE)
_OUTLOOK_SENT = re.compile(r"^\s*\*?(?:Sent|Date):\*?\s", re.IGNORECASE)
_UNDERSCORE_SEPARATOR = re.compile(r"^\s*_{4,}\s*$")

_QUOTED_LINE = re.compile(r"^\s*>")

# Signatures: everything from the matching line on is dropped
_SIGNATURE_DELIMITER = re.compile(r"^--\s*$")
_MOBILE_SIGNATURE = re.compile(r"^\s*(?:Sent from my\b|Get Outlook for\b)", re.IGNORECASE)


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _is_reply_delimiter(lines: list[str], index: int, extra: list[re.Pattern[str]]) -> bool:
    line = lines[index]
    if _ON_WROTE.match(line) or _ORIGINAL_MESSAGE.match(line) or _UNDERSCORE_SEPARATOR.match(line):
        return True

    following = [ln for ln in lines[index + 1:index + 4] if ln.strip()]

    # "On <date>, <name>" wrapped onto a second "<address> wrote:" line
    if _ON_START.match(line) and following and _WROTE_END.search(following[0]):
        return True

    # Outlook header block: From: ... followed closely by Sent: / Date:
    if _OUTLOOK_FROM.match(line) and any(_OUTLOOK_SENT.match(ln) for ln in following):
        return True

    return any(pattern.search(line) for pattern in extra)


def _cut_at(lines: list[str], predicate) -> list[str]:
    for index in range(len(lines)):
        if predicate(index):
            return lines[:index]
    return lines


def _trim_blank_lines(lines: list[str]) -> list[str]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


def strip_quoted_text(body: str, settings: Settings) -> str:
    """
    Remove quoted history, signature and disclaimers from a reply body.

    Args:
        body: Plain-text reply body
        settings: Supplies extra quote delimiters and disclaimer patterns

    Returns:
        The remaining text (possibly empty)
    """
    extra_delimiters = [re.compile(p, re.IGNORECASE) for p in settings.quote_delimiters]
    disclaimers = [re.compile(p, re.IGNORECASE) for p in settings.disclaimer_patterns]

    lines = _normalize_newlines(body).split("\n")
    lines = _cut_at(lines, lambda i: _is_reply_delimiter(lines, i, extra_delimiters))
    lines = [line for line in lines if not _QUOTED_LINE.match(line)]
    lines = _cut_at(
        lines,
        lambda i: bool(_SIGNATURE_DELIMITER.match(lines[i]) or _MOBILE_SIGNATURE.match(lines[i])),
    )
    lines = [line for line in lines if not any(p.search(line) for p in disclaimers)]

    return "\n".join(line.rstrip() for line in _trim_blank_lines(lines))


def extract_reply_content(body: str, settings: Settings) -> str:
    """
    Extract the human-authored part of a reply.

    Raises:
        EmptyEmailError: If nothing remains after stripping
    """
    content = strip_quoted_text(body, settings)
    if not content.strip():
        log.warning("empty_reply_content", original_length=len(body))
        raise EmptyEmailError("Reply contains no content after removing quoted text")

    log.debug("reply_content_extracted", original_length=len(body), content_length=len(content))
    return content
