"""
Mail Key Extraction

Recovers the reply key that routes an inbound reply back to the
notification it answers.

Two modes, chosen by configuration:
- Sub-addressing: the key sits in the recipient local-part, following the
  configured template, e.g. reply+%{key}@appmail.example.com
- Header fallback: outbound notifications carry a Message-ID of the form
  reply-<key>@<host>, which mail clients echo in In-Reply-To / References.

The outbound side uses the helpers below so both ends agree on the format.
"""

import re
import secrets

import structlog

from lambdas.process_reply_email.email_parser import IncomingMessage
from tracker.config import Settings
from tracker.exceptions import UnknownIncomingEmailError

log = structlog.get_logger()

KEY_PLACEHOLDER = "%{key}"
KEY_CHARS = r"[^@\s<>]+"


def generate_reply_key() -> str:
    """New random reply key: 32 hex characters."""
    return secrets.token_hex(16)


def reply_address_for(key: str, settings: Settings) -> str:
    """Reply-To address for a key; falls back to the plain address when sub-addressing is off."""
    if not settings.sub_addressing_enabled:
        return settings.incoming_email_address or ""
    return settings.incoming_email_address.replace(KEY_PLACEHOLDER, key)


def fallback_message_id_for(key: str, settings: Settings) -> str:
    """Message-ID stamped on outbound notifications (without angle brackets)."""
    return f"reply-{key}@{settings.host}"


def address_regex(template: str) -> re.Pattern[str]:
    """
    Turn an address template into an anchored regex capturing the key.

    >>> address_regex("reply+%{key}@example.com").match("reply+abc@example.com").group("key")
    'abc'
    """
    before, _, after = template.partition(KEY_PLACEHOLDER)
    return re.compile(
        rf"^{re.escape(before)}(?P<key>{KEY_CHARS}){re.escape(after)}$",
        re.IGNORECASE,
    )


def fallback_message_id_regex(host: str) -> re.Pattern[str]:
    return re.compile(rf"^reply-(?P<key>{KEY_CHARS})@{re.escape(host)}$", re.IGNORECASE)


def key_from_address(address: str, settings: Settings) -> str | None:
    """Reply key embedded in a recipient address, if any."""
    if not settings.sub_addressing_enabled:
        return None
    match = address_regex(settings.incoming_email_address).match(address.strip())
    return match.group("key") if match else None


def key_from_message_id(message_id: str, settings: Settings) -> str | None:
    """Reply key embedded in a fallback Message-ID, if any."""
    match = fallback_message_id_regex(settings.host).match(message_id.strip().strip("<>"))
    return match.group("key") if match else None


def extract_mail_key(message: IncomingMessage, settings: Settings) -> str:
    """
    Extract the reply key from an inbound message.

    Args:
        message: Parsed inbound message
        settings: Supplies the address template and fallback host

    Returns:
        The reply key

    Raises:
        UnknownIncomingEmailError: If no key can be found
    """
    if settings.sub_addressing_enabled:
        for address in message.recipient_addresses:
            key = key_from_address(address, settings)
            if key:
                log.debug("mail_key_found_in_address", address=address)
                return key
        log.warning(
            "mail_key_missing_from_address",
            message_id=message.message_id,
            recipients=list(message.recipient_addresses),
        )
        raise UnknownIncomingEmailError(
            "No reply key found in the recipient address",
            recipients=list(message.recipient_addresses),
        )

    for header, message_ids in (
        ("In-Reply-To", message.in_reply_to),
        ("References", message.references),
    ):
        for message_id in message_ids:
            key = key_from_message_id(message_id, settings)
            if key:
                log.debug("mail_key_found_in_header", header=header)
                return key

    log.warning(
        "mail_key_missing_from_headers",
        message_id=message.message_id,
        in_reply_to=list(message.in_reply_to),
        references=list(message.references),
    )
    raise UnknownIncomingEmailError(
        "No reply key found in In-Reply-To or References",
        message_id=message.message_id,
    )
