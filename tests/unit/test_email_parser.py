"""
Unit tests for the reply email parser.

Tests cover:
- Address and message-id helpers
- Body extraction (plain text, HTML fallback)
- Attachment extraction and size limits
- Malformed input
"""

import pytest

from tracker.exceptions import MalformedMessageError


# ============================================================================
# Helper Tests
# ============================================================================


class TestExtractAddress:
    """Tests for _extract_address helper function."""

    def test_extract_from_angle_brackets(self):
        """Test extracting address from 'Name <email>' format."""
        from lambdas.process_reply_email.email_parser import _extract_address

        assert _extract_address("Jake the Dog <jake@example.com>") == "jake@example.com"
        assert _extract_address("<jake@example.com>") == "jake@example.com"

    def test_extract_plain_email(self):
        from lambdas.process_reply_email.email_parser import _extract_address

        assert _extract_address("  jake@example.com  ") == "jake@example.com"

    def test_extract_empty(self):
        from lambdas.process_reply_email.email_parser import _extract_address

        assert _extract_address("") == ""
        assert _extract_address(None) == ""


class TestExtractMessageIds:
    """Tests for _extract_message_ids."""

    def test_strips_angle_brackets(self):
        from lambdas.process_reply_email.email_parser import _extract_message_ids

        result = _extract_message_ids("<a@host> <reply-abc@localhost>")

        assert result == ("a@host", "reply-abc@localhost")

    def test_bare_ids(self):
        from lambdas.process_reply_email.email_parser import _extract_message_ids

        assert _extract_message_ids("a@host b@host") == ("a@host", "b@host")

    def test_missing_header(self):
        from lambdas.process_reply_email.email_parser import _extract_message_ids

        assert _extract_message_ids(None) == ()


class TestHtmlToText:
    """Tests for html_to_text."""

    def test_drops_quoted_history(self):
        """Blockquotes and Gmail quote containers are not part of the reply."""
        from lambdas.process_reply_email.email_parser import html_to_text

        markup = (
            "<div>Sounds good<br/>See you</div>"
            "<blockquote>older text</blockquote>"
            "<div class=\"gmail_quote\">On Sun someone wrote: /close</div>"
        )

        assert html_to_text(markup) == "Sounds good\nSee you"

    def test_unescapes_entities(self):
        from lambdas.process_reply_email.email_parser import html_to_text

        assert html_to_text("<p>Tom &amp; Jerry&nbsp;rock</p>") == "Tom & Jerry rock"


# ============================================================================
# parse_message Tests
# ============================================================================


class TestParseMessage:
    """Tests for parse_message."""

    def test_parse_plain_reply(self):
        """Headers and body of a plain text reply."""
        from lambdas.process_reply_email.email_parser import parse_message
        from tests.fixtures.emails import REPLY_KEY, valid_reply

        message = parse_message(valid_reply())

        assert message.from_address == "jake@adventuretime.example"
        assert message.to_addresses == (f"reply+{REPLY_KEY}@appmail.example.com",)
        assert message.in_reply_to == ("issue_42@localhost",)
        assert message.subject.startswith("Re: [Tracker]")
        assert "I could not disagree more." in message.body
        assert message.attachments == ()

    def test_headers_are_lower_cased(self):
        from lambdas.process_reply_email.email_parser import parse_message
        from tests.fixtures.emails import auto_reply

        message = parse_message(auto_reply())

        assert message.header_values("Auto-Submitted") == ["auto-replied"]
        assert ("x-autoreply", "yes") in message.headers

    def test_delivered_to_is_a_recipient(self):
        """Envelope recipients are considered after To."""
        from lambdas.process_reply_email.email_parser import parse_message

        raw = (
            "From: jake@example.com\n"
            "To: team@example.com\n"
            "Delivered-To: reply+abc@appmail.example.com\n"
            "Subject: Re: hi\n"
            "\n"
            "Hello\n"
        )
        message = parse_message(raw)

        assert message.recipient_addresses == (
            "team@example.com",
            "reply+abc@appmail.example.com",
        )

    def test_html_only_reply(self):
        """Without a text/plain part the HTML body is converted."""
        from lambdas.process_reply_email.email_parser import parse_message
        from tests.fixtures.emails import html_only_reply

        message = parse_message(html_only_reply())

        assert message.body == "Mathematical!\nTotally agree."
        assert message.html_body is not None

    def test_attachments_extracted(self):
        from lambdas.process_reply_email.email_parser import parse_message
        from tests.fixtures.emails import reply_with_attachment

        message = parse_message(reply_with_attachment(content_id="img-1"))

        assert len(message.attachments) == 1
        attachment = message.attachments[0]
        assert attachment.filename == "screenshot.png"
        assert attachment.content_type == "image/png"
        assert attachment.content.startswith(b"\x89PNG")
        assert attachment.content_id == "img-1"
        assert "See the screenshot below." in message.body

    def test_oversized_attachment_skipped(self):
        from lambdas.process_reply_email.email_parser import parse_message
        from tests.fixtures.emails import reply_with_attachment

        message = parse_message(
            reply_with_attachment(content=b"x" * 2048, content_type="application/pdf"),
            max_attachment_size=1024,
        )

        assert message.attachments == ()

    def test_accepts_bytes_and_str(self):
        from lambdas.process_reply_email.email_parser import parse_message
        from tests.fixtures.emails import valid_reply

        raw = valid_reply()

        assert parse_message(raw).body == parse_message(raw.encode("utf-8")).body

    @pytest.mark.parametrize("raw", ["", "   \n  ", b""])
    def test_empty_input_is_malformed(self, raw):
        from lambdas.process_reply_email.email_parser import parse_message

        with pytest.raises(MalformedMessageError):
            parse_message(raw)

    def test_no_headers_is_malformed(self):
        """Text that does not start with a header block is not an email."""
        from lambdas.process_reply_email.email_parser import parse_message

        with pytest.raises(MalformedMessageError):
            parse_message("\nJust some text without any headers\n")

    def test_missing_boundary_is_malformed(self):
        from lambdas.process_reply_email.email_parser import parse_message

        raw = (
            "From: jake@example.com\n"
            "To: reply+abc@appmail.example.com\n"
            "Content-Type: multipart/mixed\n"
            "\n"
            "no boundary here\n"
        )

        with pytest.raises(MalformedMessageError):
            parse_message(raw)
