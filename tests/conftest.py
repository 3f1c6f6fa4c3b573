"""
Pytest Configuration and Shared Fixtures

Provides moto AWS mocking, sample noteables and test utilities.
"""

import os
from datetime import date
from typing import Any

import boto3
from botocore.exceptions import ClientError
import pytest
from moto import mock_aws

# Set test environment before importing application modules
os.environ["TRACKER_DYNAMODB_TABLE_NAME"] = "TestIssueTracker"
os.environ["TRACKER_S3_BUCKET_NAME"] = "test-tracker-uploads"
os.environ["TRACKER_EVENTBRIDGE_BUS_NAME"] = "test-tracker"
os.environ["TRACKER_INCOMING_EMAIL_ADDRESS"] = "reply+%{key}@appmail.example.com"
os.environ["TRACKER_HOST"] = "localhost"
os.environ["TRACKER_AWS_REGION"] = "us-west-2"
os.environ["AWS_DEFAULT_REGION"] = "us-west-2"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"

TABLE_NAME = "TestIssueTracker"
BUCKET_NAME = "test-tracker-uploads"
EVENT_BUS_NAME = "test-tracker"


# --- Time Fixtures ---


@pytest.fixture
def today() -> date:
    """Fixed reference date for relative due dates (a Wednesday)."""
    return date(2025, 6, 4)


# --- AWS Mocking Fixtures ---


@pytest.fixture
def aws_credentials():
    """Mock AWS credentials for moto."""
    return {
        "aws_access_key_id": "testing",
        "aws_secret_access_key": "testing",
        "region_name": "us-west-2",
    }


def _create_table(dynamodb) -> Any:
    try:
        table = dynamodb.create_table(
            TableName=TABLE_NAME,
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
        table.meta.client.get_waiter("table_exists").wait(TableName=TABLE_NAME)
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") != "ResourceInUseException":
            raise
        table = dynamodb.Table(TABLE_NAME)
    return table


def _create_bucket(s3) -> None:
    s3.create_bucket(
        Bucket=BUCKET_NAME,
        CreateBucketConfiguration={"LocationConstraint": "us-west-2"},
    )


@pytest.fixture
def mock_dynamodb(aws_credentials):
    """
    Create a mocked DynamoDB table.

    Single table with PK/SK keys, no secondary indexes.
    """
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", **aws_credentials)
        _create_table(dynamodb)
        yield dynamodb


@pytest.fixture
def mock_s3(aws_credentials):
    """Create a mocked S3 bucket."""
    with mock_aws():
        s3 = boto3.client("s3", **aws_credentials)
        _create_bucket(s3)
        yield s3


@pytest.fixture
def mock_eventbridge(aws_credentials):
    """Create a mocked EventBridge client with bus."""
    with mock_aws():
        events = boto3.client("events", **aws_credentials)
        events.create_event_bus(Name=EVENT_BUS_NAME)
        yield events


@pytest.fixture
def mock_aws_all(aws_credentials):
    """
    Mock all AWS services used by the application.

    Provides a complete mocked AWS environment.
    """
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", **aws_credentials)
        _create_table(dynamodb)

        s3 = boto3.client("s3", **aws_credentials)
        _create_bucket(s3)

        events = boto3.client("events", **aws_credentials)
        events.create_event_bus(Name=EVENT_BUS_NAME)

        yield {
            "dynamodb": dynamodb,
            "table": dynamodb.Table(TABLE_NAME),
            "s3": s3,
            "events": events,
        }


# --- Settings Fixtures ---


@pytest.fixture
def settings():
    """Settings built from the test environment."""
    from tracker.config import Settings

    return Settings()


@pytest.fixture
def fallback_settings():
    """Settings with sub-addressing disabled (header fallback mode)."""
    from tracker.config import Settings

    return Settings(incoming_email_address=None)


# --- ID Fixtures ---


@pytest.fixture
def project_id() -> str:
    """Sample project ID."""
    return "proj-adventure-time"


@pytest.fixture
def user_id() -> str:
    """User the notification was sent to."""
    return "user-jake"


@pytest.fixture
def identity(user_id: str):
    from tracker.models.dynamo import Identity

    return Identity(user_id=user_id)


# --- Noteable Fixtures ---


@pytest.fixture
def issue(project_id: str):
    """An open issue (not persisted)."""
    from tracker.models.dynamo import Noteable
    from tracker.state_machine import NoteableType

    return Noteable(
        noteable_type=NoteableType.ISSUE,
        noteable_id="42",
        project_id=project_id,
        title="Is adventure time the greatest show?",
        author_id="user-finn",
    )


@pytest.fixture
def merge_request(project_id: str):
    """An open merge request (not persisted)."""
    from tracker.models.dynamo import Noteable
    from tracker.state_machine import NoteableType

    return Noteable(
        noteable_type=NoteableType.MERGE_REQUEST,
        noteable_id="7",
        project_id=project_id,
        title="Add episode guide",
        author_id="user-finn",
    )
