#!/usr/bin/env python3
"""
Replay a Reply Email

Feeds a raw .eml file through the reply pipeline and prints the Lambda
response and the resulting notes.

Usage:
    # Against mocked AWS: seeds an issue and a sent notification for the
    # reply key found in the email, then processes it
    python scripts/replay_email.py reply.eml --local

    # Let the replying user run commands
    python scripts/replay_email.py reply.eml --local --access developer

    # Wrap the email in an SES/SNS event and go through lambda_handler
    python scripts/replay_email.py reply.eml --local --sns

    # Against real AWS (requires credentials and TRACKER_* settings)
    python scripts/replay_email.py reply.eml
"""

import argparse
import json
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import structlog

structlog.configure(
    processors=[
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()

ACCESS_LEVELS = ("none", "guest", "reporter", "developer", "maintainer")


def _create_local_resources() -> None:
    """Create the table, bucket and bus the pipeline expects."""
    import boto3

    from tracker.config import get_settings

    settings = get_settings()

    dynamodb = boto3.resource("dynamodb", **settings.dynamodb_config)
    dynamodb.create_table(
        TableName=settings.dynamodb_table_name,
        KeySchema=[
            {"AttributeName": "PK", "KeyType": "HASH"},
            {"AttributeName": "SK", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "PK", "AttributeType": "S"},
            {"AttributeName": "SK", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    s3 = boto3.client("s3", **settings.s3_config)
    s3.create_bucket(
        Bucket=settings.s3_bucket_name,
        CreateBucketConfiguration={"LocationConstraint": settings.aws_region},
    )

    events = boto3.client("events", **settings.eventbridge_config)
    events.create_event_bus(Name=settings.eventbridge_bus_name)


def _seed_notification(raw_email: bytes, access: str) -> tuple[str, str]:
    """
    Seed an issue and a sent notification matching the email's reply key.

    Returns:
        Tuple of (reply key, user id)
    """
    from lambdas.process_reply_email.email_parser import parse_message
    from lambdas.process_reply_email.mail_key import extract_mail_key
    from tracker.config import get_settings
    from tracker.models.dynamo import AccessLevel, Noteable
    from tracker.state_machine import NoteableType
    from tracker.tools.dynamodb import add_project_member, create_noteable, record_sent_notification

    reply_key = extract_mail_key(parse_message(raw_email), get_settings())
    user_id = "user-local"

    noteable = create_noteable(
        Noteable(
            noteable_type=NoteableType.ISSUE,
            noteable_id="1",
            project_id="proj-local",
            title="Replayed issue",
            author_id="user-author",
        )
    )
    record_sent_notification(noteable, user_id, reply_key)
    if access != "none":
        add_project_member(noteable.project_id, user_id, AccessLevel[access.upper()])

    log.info("local_notification_seeded", reply_key=reply_key, user_id=user_id, access=access)
    return reply_key, user_id


def _sns_event(raw_email: bytes) -> dict:
    notification = {
        "notificationType": "Received",
        "mail": {"messageId": "replay"},
        "receipt": {"action": {"type": "SNS", "encoding": "UTF8"}},
        "content": raw_email.decode("utf-8", errors="replace"),
    }
    return {"Records": [{"EventSource": "aws:sns", "Sns": {"Message": json.dumps(notification)}}]}


def _print_notes() -> None:
    from tracker.models.dynamo import NoteableRef
    from tracker.state_machine import NoteableType
    from tracker.tools.dynamodb import find_noteable, list_noteable_notes

    ref = NoteableRef(NoteableType.ISSUE, "1")
    noteable = find_noteable(ref)
    print(f"\nIssue state: {noteable.state.value}, due: {noteable.due_date}, labels: {noteable.labels}")
    for note in list_noteable_notes(ref):
        kind = "system" if note.system else "user"
        print(f"\n[{kind} note {note.note_id}]")
        print(note.note)


def main() -> int:
    parser = argparse.ArgumentParser(description="Replay a reply email through the pipeline")
    parser.add_argument("eml", type=Path, help="Path to the raw .eml file")
    parser.add_argument("--local", action="store_true", help="Run against mocked AWS")
    parser.add_argument(
        "--access",
        choices=ACCESS_LEVELS,
        default="none",
        help="Project access of the replying user (--local only)",
    )
    parser.add_argument("--sns", action="store_true", help="Go through lambda_handler")
    args = parser.parse_args()

    raw_email = args.eml.read_bytes()

    mock = None
    if args.local:
        os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
        os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
        from moto import mock_aws

        mock = mock_aws()
        mock.start()
        _create_local_resources()
        _seed_notification(raw_email, args.access)

    try:
        from lambdas.process_reply_email.handler import lambda_handler, process_raw_email

        if args.sns:
            response = lambda_handler(_sns_event(raw_email), None)
        else:
            response = process_raw_email(raw_email, request_id="replay")

        print(f"\nStatus: {response['statusCode']}")
        print(json.dumps(json.loads(response["body"]), indent=2))

        if args.local:
            _print_notes()
    finally:
        if mock is not None:
            mock.stop()

    return 0 if response["statusCode"] < 300 else 1


if __name__ == "__main__":
    sys.exit(main())
