"""
Auto-Reply Detection

Rejects vacation responders and other automated messages before they can
turn into notes. Indicators are configured as header name -> values,
where "*" matches any value except "no".
"""

import structlog

from lambdas.process_reply_email.email_parser import IncomingMessage
from tracker.exceptions import AutoGeneratedEmailError

log = structlog.get_logger()


def _value_matches(value: str, indicators: list[str]) -> bool:
    normalized = value.strip().lower()
    for indicator in indicators:
        indicator = indicator.lower()
        if indicator == "*":
            if normalized and normalized != "no":
                return True
        elif normalized == indicator or normalized.startswith(indicator + ";"):
            return True
    return False


def is_auto_reply(
    message: IncomingMessage,
    auto_reply_headers: dict[str, list[str]],
) -> tuple[str, str] | None:
    """
    Find the first auto-reply indicator on a message.

    Returns:
        (header name, value) of the matching header, or None
    """
    for name, value in message.headers:
        indicators = auto_reply_headers.get(name)
        if indicators and _value_matches(value, indicators):
            return name, value
    return None


def ensure_not_auto_reply(
    message: IncomingMessage,
    auto_reply_headers: dict[str, list[str]],
) -> None:
    """
    Raise if the message was generated automatically.

    Raises:
        AutoGeneratedEmailError: If any configured indicator matches
    """
    match = is_auto_reply(message, {k.lower(): v for k, v in auto_reply_headers.items()})
    if match:
        header, value = match
        log.warning(
            "auto_generated_email_rejected",
            message_id=message.message_id,
            from_address=message.from_address,
            header=header,
            value=value,
        )
        raise AutoGeneratedEmailError(header=header, value=value)
