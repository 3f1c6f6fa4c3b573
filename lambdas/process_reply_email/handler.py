"""
ProcessReplyEmail Lambda Handler

Main entry point for turning email replies to notifications into notes.

Trigger: SNS topic subscribed to the SES inbound rule for the reply address
Output: Notes in DynamoDB, NoteCreated events on EventBridge

Flow:
1. Parse SNS notification
2. Extract raw email (embedded or from S3)
3. Run the ReplyHandler pipeline
4. Map rejections to a status code and a bounce reason
"""

import base64
import binascii
import json
from typing import Any

import structlog

from lambdas.process_reply_email.reply_handler import ReplyHandler
from tracker.config import get_settings
from tracker.exceptions import (
    AutoGeneratedEmailError,
    DynamoDBError,
    EmailProcessingError,
    S3Error,
)
from tracker.tools.s3 import fetch_object

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()

# Status code per rejection reason; the reason doubles as the bounce key
STATUS_BY_REASON: dict[str, int] = {
    "malformed_message": 400,
    "auto_generated": 200,
    "unknown_incoming_email": 400,
    "sent_notification_not_found": 404,
    "noteable_not_found": 404,
    "empty_email": 422,
    "commands_only": 422,
    "invalid_note": 422,
}


def _response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {"statusCode": status_code, "body": json.dumps(body)}


def _extract_s3_reference(sns_message: dict) -> tuple[str, str] | None:
    """
    Extract S3 bucket/key from SES action if email is stored in S3.

    Returns:
        Tuple of (bucket, key) or None if embedded
    """
    receipt = sns_message.get("receipt", {})
    action = receipt.get("action", {})

    if action.get("type") == "S3":
        return action.get("bucketName"), action.get(
            "objectKey", action.get("objectKeyPrefix", "")
        )

    return None


def _embedded_content(sns_message: dict[str, Any]) -> bytes | None:
    """Raw MIME embedded in an SES notification, decoded if SNS base64-encoded it."""
    content = sns_message.get("content")
    if not content:
        return None

    encoding = sns_message.get("receipt", {}).get("action", {}).get("encoding", "")
    if encoding.upper() == "BASE64":
        try:
            return base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError) as e:
            log.warning("embedded_content_not_base64", error=str(e))
    return content.encode("utf-8")


def process_raw_email(raw_email: str | bytes, request_id: str = "local") -> dict[str, Any]:
    """
    Run one raw email through the reply pipeline.

    Returns:
        Lambda response dict
    """
    try:
        result = ReplyHandler(raw_email, get_settings()).execute()
    except AutoGeneratedEmailError as e:
        log.info("auto_generated_email_dropped", request_id=request_id, header=e.header)
        return _response(200, {"status": "dropped", "reason": e.reason})
    except EmailProcessingError as e:
        status_code = STATUS_BY_REASON.get(e.reason, 422)
        log.warning(
            "reply_rejected",
            request_id=request_id,
            reason=e.reason,
            status_code=status_code,
            error=str(e),
        )
        return _response(
            status_code,
            {"status": "rejected", "reason": e.reason, "error": e.message},
        )
    except (DynamoDBError, S3Error) as e:
        log.error("reply_processing_failed", request_id=request_id, error=str(e))
        return _response(500, {"status": "error", "retryable": True, "error": str(e)})

    return _response(
        200,
        {
            "status": "processed",
            "reply_key": result.reply_key,
            "noteable_type": result.noteable.noteable_type.value,
            "noteable_id": result.noteable.noteable_id,
            "note_ids": [note.note_id for note in result.notes],
            "applied_commands": list(result.applied_commands),
            "attachments_stored": len(result.uploads),
        },
    )


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    AWS Lambda handler for processing reply emails.

    Args:
        event: SNS event containing SES notification
        context: Lambda context

    Returns:
        Response dict with processing status
    """
    request_id = getattr(context, "aws_request_id", "local")

    log.info(
        "processing_reply_email",
        request_id=request_id,
        event_keys=list(event.keys()),
    )

    try:
        # Handle SNS Records format (Lambda trigger)
        if "Records" in event:
            responses = [_process_sns_record(record, request_id) for record in event["Records"]]
            if not responses:
                return _response(400, {"error": "No records in event"})
            failed = [r for r in responses if r["statusCode"] >= 300]
            return failed[0] if failed else responses[-1]

        # Handle direct SNS message (for testing)
        if "Message" in event:
            return _process_sns_message(json.loads(event["Message"]), request_id)

        # Handle raw SES notification (for testing)
        if "mail" in event or "content" in event:
            return _process_sns_message(event, request_id)

        log.error("unknown_event_format", event_keys=list(event.keys()))
        return _response(400, {"error": "Unknown event format"})

    except Exception as e:
        log.error("lambda_handler_failed", error=str(e), exc_info=True)
        return _response(500, {"error": str(e)})


def _process_sns_record(record: dict[str, Any], request_id: str) -> dict[str, Any]:
    """Process a single SNS record from Lambda event."""
    sns_data = record.get("Sns", {})
    message = sns_data.get("Message", "{}")

    try:
        sns_message = json.loads(message)
    except json.JSONDecodeError as e:
        log.error("sns_message_parse_failed", error=str(e))
        return _response(400, {"error": "Invalid SNS message JSON"})

    return _process_sns_message(sns_message, request_id)


def _process_sns_message(sns_message: dict[str, Any], request_id: str) -> dict[str, Any]:
    """
    Process SES notification from SNS.

    Handles both embedded content and S3 reference modes.
    """
    notification_type = sns_message.get("notificationType")

    if notification_type in ("Bounce", "Complaint"):
        log.info(
            "received_delivery_notification",
            type=notification_type,
            message_id=sns_message.get("mail", {}).get("messageId"),
        )
        return _response(
            200,
            {"status": "skipped", "reason": f"{notification_type} notification - not a reply"},
        )

    s3_ref = _extract_s3_reference(sns_message)

    if s3_ref:
        bucket, key = s3_ref
        log.info("email_stored_in_s3", bucket=bucket, key=key)
        try:
            raw_email = fetch_object(bucket, key)
        except S3Error as e:
            return _response(
                500,
                {"status": "error", "retryable": True, "error": f"Failed to fetch email from S3: {e}"},
            )
    else:
        raw_email = _embedded_content(sns_message)
        if raw_email is None:
            log.error(
                "email_content_missing",
                message_id=sns_message.get("mail", {}).get("messageId"),
            )
            return _response(
                400,
                {"status": "rejected", "reason": "malformed_message", "error": "No email content"},
            )

    return process_raw_email(raw_email, request_id)
