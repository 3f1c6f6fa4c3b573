"""
Integration test fixtures and configuration.

Integration tests run whole replies through the pipeline against moto
DynamoDB, S3 and EventBridge.
"""

import json
from typing import Any
from unittest.mock import patch

import pytest


@pytest.fixture
def event_collector(mock_aws_all):
    """
    Collect events published to EventBridge during tests.

    Events still reach the mocked bus; the collector only records them.
    """
    collected_events: list[dict[str, Any]] = []
    events = mock_aws_all["events"]
    original_put_events = events.put_events

    def recording_put_events(**kwargs):
        for entry in kwargs.get("Entries", []):
            collected_events.append({
                "Source": entry.get("Source"),
                "DetailType": entry.get("DetailType"),
                "Detail": json.loads(entry.get("Detail", "{}")),
                "EventBusName": entry.get("EventBusName"),
            })
        return original_put_events(**kwargs)

    events.put_events = recording_put_events
    with patch("tracker.tools.eventbridge._get_client", return_value=events):
        yield collected_events

    events.put_events = original_put_events


@pytest.fixture
def stored_issue(mock_aws_all, issue, user_id):
    """
    The issue, persisted, with a notification about it sent to the user.

    Replies built with the default REPLY_KEY resolve to this issue.
    """
    from tests.fixtures.emails import REPLY_KEY
    from tracker.tools.dynamodb import create_noteable, record_sent_notification

    noteable = create_noteable(issue)
    record_sent_notification(noteable, user_id, REPLY_KEY)
    return noteable


@pytest.fixture
def developer(stored_issue, user_id):
    """Give the notified user developer access to the issue's project."""
    from tracker.models.dynamo import AccessLevel
    from tracker.tools.dynamodb import add_project_member

    return add_project_member(stored_issue.project_id, user_id, AccessLevel.DEVELOPER)


@pytest.fixture
def uploaded_keys(mock_aws_all):
    """Callable listing the keys currently in the uploads bucket."""
    s3 = mock_aws_all["s3"]

    def list_keys() -> list[str]:
        listed = s3.list_objects_v2(Bucket="test-tracker-uploads")
        return [obj["Key"] for obj in listed.get("Contents", [])]

    return list_keys
