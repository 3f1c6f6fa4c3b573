"""
ProcessReplyEmail Lambda

Turns email replies to notifications into notes on issues and merge
requests, applying any slash commands the reply contains.

Flow:
    User Reply
    → SES Receipt Rule
    → SNS Topic
    → This Lambda
    → DynamoDB: notes + noteable changes (one transaction)
    → EventBridge: NoteCreated
"""

from lambdas.process_reply_email.email_parser import (
    AttachmentPart,
    IncomingMessage,
    parse_message,
)
from lambdas.process_reply_email.handler import lambda_handler, process_raw_email
from lambdas.process_reply_email.reply_handler import ReplyHandler, ReplyResult

__all__ = [
    "AttachmentPart",
    "IncomingMessage",
    "ReplyHandler",
    "ReplyResult",
    "lambda_handler",
    "parse_message",
    "process_raw_email",
]
