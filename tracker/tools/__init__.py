# Shared Tools
"""
Collaborators used by the reply ingestion pipeline.

DynamoDB is the storage collaborator, S3 stores attachments, EventBridge
carries NoteCreated notifications, and permissions answers the capability
question for commands.
"""

from tracker.tools.dynamodb import (
    add_project_member,
    create_note_transaction,
    create_noteable,
    find_noteable,
    find_sent_notification,
    list_noteable_notes,
    record_sent_notification,
    todo_exists,
)
from tracker.tools.eventbridge import (
    notify_todo_on_note,
    send_event,
)
from tracker.tools.permissions import can_mutate
from tracker.tools.s3 import (
    StoredUpload,
    delete_upload,
    fetch_object,
    store_upload,
)

__all__ = [
    # DynamoDB tools
    "add_project_member",
    "create_note_transaction",
    "create_noteable",
    "find_noteable",
    "find_sent_notification",
    "list_noteable_notes",
    "record_sent_notification",
    "todo_exists",
    # EventBridge tools
    "notify_todo_on_note",
    "send_event",
    # Permission tools
    "can_mutate",
    # S3 tools
    "StoredUpload",
    "delete_upload",
    "fetch_object",
    "store_upload",
]
