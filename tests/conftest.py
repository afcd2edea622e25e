"""Pytest configuration and fixtures."""

import json
import os
from datetime import datetime, timedelta, timezone

import pytest

# Set environment variables before imports
os.environ["TABLE_NAME"] = "roomgate-test"
os.environ["STAGE"] = "test"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["ROOM_TOKEN_SECRET"] = "test-room-token-secret-with-enough-length"
os.environ["ROOM_TOKEN_ISSUER"] = "roomgate-test"
os.environ["APP_BASE_URL"] = "https://app.roomgate.test"
os.environ["GEOLOCATION_ENABLED"] = "false"

OWNER_ID = "owner-123"
OTHER_OWNER_ID = "owner-999"
ROOM_NAME = "consult-room-1"

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)
FIREFOX_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:127.0) Gecko/20100101 Firefox/127.0"
EDGE_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36 Edg/126.0.2592.68"
)
SAFARI_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_5) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.5 Safari/605.1.15"
)


@pytest.fixture
def aws_credentials():
    """Mock AWS credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


@pytest.fixture
def dynamodb_table(aws_credentials):
    """Create mocked DynamoDB table."""
    import boto3
    from moto import mock_aws

    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")

        table = dynamodb.create_table(
            TableName="roomgate-test",
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
                {"AttributeName": "GSI1PK", "AttributeType": "S"},
                {"AttributeName": "GSI1SK", "AttributeType": "S"},
                {"AttributeName": "GSI2PK", "AttributeType": "S"},
                {"AttributeName": "GSI2SK", "AttributeType": "S"},
            ],
            GlobalSecondaryIndexes=[
                {
                    "IndexName": "GSI1",
                    "KeySchema": [
                        {"AttributeName": "GSI1PK", "KeyType": "HASH"},
                        {"AttributeName": "GSI1SK", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                },
                {
                    "IndexName": "GSI2",
                    "KeySchema": [
                        {"AttributeName": "GSI2PK", "KeyType": "HASH"},
                        {"AttributeName": "GSI2SK", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                },
            ],
            BillingMode="PAY_PER_REQUEST",
        )

        table.wait_until_exists()

        yield table


class FakeClock:
    """Controllable clock for services that accept a ``clock`` callable."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """A clock that only moves when told to."""
    return FakeClock()


@pytest.fixture
def token_service(clock):
    """Token service using the test secret."""
    from roomgate.services.token_service import TokenService

    return TokenService(clock=clock)


@pytest.fixture
def geolocation():
    """Geolocation double that reports no location unless configured."""
    from unittest.mock import MagicMock

    client = MagicMock()
    client.lookup.return_value = None
    return client


@pytest.fixture
def invitation_service(dynamodb_table, clock, token_service, geolocation):
    """InvitationService wired to the mocked table and a fake clock."""
    from roomgate.services.invitation_service import InvitationService

    return InvitationService(token_service=token_service, geolocation=geolocation, clock=clock)


@pytest.fixture
def create_request():
    """Build a CreateInvitationRequest from camelCase fields."""
    from roomgate.models.invitation import CreateInvitationRequest

    def _create(**overrides):
        data = {"roomName": ROOM_NAME}
        data.update(overrides)
        return CreateInvitationRequest.model_validate(data)

    return _create


@pytest.fixture
def client_context():
    """Build a ClientContext for an access attempt."""
    from roomgate.models.access import ClientContext, DeviceFingerprint

    def _create(
        ip: str = "203.0.113.10",
        user_agent: str = CHROME_UA,
        fingerprint: dict | None = None,
        **kwargs,
    ):
        device = None
        if fingerprint is not None:
            device = DeviceFingerprint.model_validate({"userAgent": user_agent, **fingerprint})
        return ClientContext(
            client_ip=ip,
            user_agent=user_agent,
            device_fingerprint=device,
            **kwargs,
        )

    return _create


@pytest.fixture
def api_gateway_event():
    """Create a sample API Gateway event."""
    def _create_event(
        method: str = "GET",
        path: str = "/",
        path_params: dict = None,
        query_params: dict = None,
        body: dict = None,
        user_id: str | None = OWNER_ID,
        headers: dict = None,
        source_ip: str = "203.0.113.10",
    ):
        event_headers = {
            "Content-Type": "application/json",
            "User-Agent": CHROME_UA,
            "X-Forwarded-For": "203.0.113.10",
        }
        event_headers.update(headers or {})

        request_context: dict = {"identity": {"sourceIp": source_ip}}
        if user_id:
            event_headers["Authorization"] = "Bearer test-token"
            request_context["authorizer"] = {
                "userId": user_id,
                "email": "doctor@example.com",
                "isAdmin": "false",
            }

        return {
            "httpMethod": method,
            "path": path,
            "pathParameters": path_params or {},
            "queryStringParameters": query_params or {},
            "body": body if isinstance(body, str) else (json.dumps(body) if body else None),
            "headers": event_headers,
            "requestContext": request_context,
        }

    return _create_event


class LambdaContext:
    """Mock Lambda context."""

    def __init__(self):
        self.function_name = "test-function"
        self.memory_limit_in_mb = 128
        self.invoked_function_arn = "arn:aws:lambda:us-east-1:123456789:function:test"
        self.aws_request_id = "test-request-id"

    def get_remaining_time_in_millis(self):
        return 30000


@pytest.fixture
def lambda_context():
    """Create a mock Lambda context."""
    return LambdaContext()
