"""Rate limiting utilities for public endpoints."""

import os
import time
from typing import NamedTuple

import boto3
import structlog
from botocore.exceptions import ClientError

logger = structlog.get_logger()

# Rate limit defaults (can be overridden per-endpoint)
DEFAULT_REQUESTS_PER_MINUTE = 10
DEFAULT_REQUESTS_PER_HOUR = 100


class RateLimitResult(NamedTuple):
    """Result of a rate limit check."""

    allowed: bool
    requests_remaining: int
    retry_after: int | None  # Seconds until limit resets


class RateLimitConfig(NamedTuple):
    """Per-action request budget."""

    action: str
    requests_per_minute: int
    requests_per_hour: int


VALIDATE = RateLimitConfig("invite_validate", 10, 60)
POLL = RateLimitConfig("admission_poll", 60, 1200)
CREATE = RateLimitConfig("invite_create", 10, 100)


def _get_dynamodb():
    """Get DynamoDB resource."""
    return boto3.resource("dynamodb")


def _increment(table, key: str, identifier: str, ttl: int) -> int:
    response = table.update_item(
        Key={"PK": key, "SK": identifier},
        UpdateExpression="SET #count = if_not_exists(#count, :zero) + :inc, #ttl = :ttl",
        ExpressionAttributeNames={"#count": "count", "#ttl": "ttl"},
        ExpressionAttributeValues={":zero": 0, ":inc": 1, ":ttl": ttl},
        ReturnValues="ALL_NEW",
    )
    return int(response["Attributes"]["count"])


def check_rate_limit(
    identifier: str,
    action: str,
    requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
    requests_per_hour: int = DEFAULT_REQUESTS_PER_HOUR,
) -> RateLimitResult:
    """Check if a request should be rate limited.

    Uses DynamoDB to track request counts with automatic TTL cleanup, in
    fixed minute and hour buckets. Counters live in the shared table, so the
    limit holds across every Lambda instance.

    Args:
        identifier: Unique identifier (client IP, or owner ID for owner actions).
        action: Action being rate limited (e.g., "invite_validate").
        requests_per_minute: Max requests allowed per minute.
        requests_per_hour: Max requests allowed per hour.

    Returns:
        RateLimitResult with allowed status and remaining requests.
    """
    table = _get_dynamodb().Table(os.environ.get("TABLE_NAME", "roomgate-dev"))
    current_time = int(time.time())
    current_minute = current_time // 60
    current_hour = current_time // 3600

    try:
        minute_count = _increment(
            table,
            f"RATELIMIT#{action}#MIN#{current_minute}",
            identifier,
            current_time + 120,
        )

        # Minute limit first (stricter)
        if minute_count > requests_per_minute:
            logger.warning(
                "Rate limit exceeded (minute)",
                identifier=identifier[:20],
                action=action,
                count=minute_count,
                limit=requests_per_minute,
            )
            return RateLimitResult(
                allowed=False,
                requests_remaining=0,
                retry_after=60 - (current_time % 60),
            )

        hour_count = _increment(
            table,
            f"RATELIMIT#{action}#HOUR#{current_hour}",
            identifier,
            current_time + 7200,
        )

        if hour_count > requests_per_hour:
            logger.warning(
                "Rate limit exceeded (hour)",
                identifier=identifier[:20],
                action=action,
                count=hour_count,
                limit=requests_per_hour,
            )
            return RateLimitResult(
                allowed=False,
                requests_remaining=0,
                retry_after=3600 - (current_time % 3600),
            )

        return RateLimitResult(
            allowed=True,
            requests_remaining=min(
                requests_per_minute - minute_count,
                requests_per_hour - hour_count,
            ),
            retry_after=None,
        )

    except ClientError as e:
        # If DynamoDB fails, allow the request but log the error
        logger.error(
            "Rate limiter DynamoDB error",
            error=str(e),
            identifier=identifier[:20],
            action=action,
        )
        return RateLimitResult(allowed=True, requests_remaining=-1, retry_after=None)


def check_preset(identifier: str, config: RateLimitConfig) -> RateLimitResult:
    """Check a request against one of the preset budgets."""
    return check_rate_limit(
        identifier=identifier,
        action=config.action,
        requests_per_minute=config.requests_per_minute,
        requests_per_hour=config.requests_per_hour,
    )


def _header(headers: dict, name: str) -> str | None:
    """Look up a header case-insensitively."""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def get_client_ip(event: dict) -> str:
    """Extract client IP from API Gateway event.

    Checks X-Forwarded-For, X-Real-IP and CF-Connecting-IP in that order,
    then the API Gateway source IP.

    Args:
        event: API Gateway event dict.

    Returns:
        Client IP address string.
    """
    headers = event.get("headers", {}) or {}
    request_context = event.get("requestContext", {}) or {}
    identity = request_context.get("identity", {}) or {}

    forwarded_for = _header(headers, "X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    for name in ("X-Real-IP", "CF-Connecting-IP"):
        value = _header(headers, name)
        if value:
            return value.strip()

    return identity.get("sourceIp", "unknown")


def get_source_ip(event: dict) -> str:
    """Extract the connection source IP resolved by API Gateway.

    Unlike get_client_ip this ignores client-supplied forwarding headers,
    so it is the address to check against IP allowlists.
    """
    request_context = event.get("requestContext", {}) or {}
    identity = request_context.get("identity", {}) or {}
    return identity.get("sourceIp") or "unknown"


def get_user_agent(event: dict) -> str:
    """Extract the User-Agent header from an API Gateway event."""
    headers = event.get("headers", {}) or {}
    return _header(headers, "User-Agent") or ""

