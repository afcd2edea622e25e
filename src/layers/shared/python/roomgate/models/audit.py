"""Audit trail records appended to an invitation.

Both record types are immutable: they are written once with a conditional
put and never updated or deleted.

DynamoDB keys:
    PK: INVITE#{invitation_id}
    SK: ATTEMPT#{timestamp}#{id} or VIOLATION#{timestamp}#{id}
"""

from datetime import datetime
from enum import Enum
from typing import ClassVar

from pydantic import Field

from roomgate.models.base import BaseModel, sortable_timestamp, utc_now


class ViolationType(str, Enum):
    """Typed reasons an access attempt was denied."""

    WRONG_EMAIL = "wrong_email"
    WRONG_COUNTRY = "wrong_country"
    WRONG_BROWSER = "wrong_browser"
    WRONG_IP = "wrong_ip"
    WRONG_DEVICE = "wrong_device"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    REVOKED = "revoked"


class AccessAttempt(BaseModel):
    """One attempt to use an invitation, successful or not."""

    _sk_prefix: ClassVar[str] = "ATTEMPT#"

    invitation_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    ip: str
    user_agent: str = ""
    country: str | None = None
    device_fingerprint: str | None = None
    success: bool = False
    reason: str | None = None

    def get_pk(self) -> str:
        return f"INVITE#{self.invitation_id}"

    def get_sk(self) -> str:
        return f"ATTEMPT#{sortable_timestamp(self.timestamp)}#{self.id}"


class SecurityViolation(BaseModel):
    """A single failed check recorded against an access attempt."""

    _sk_prefix: ClassVar[str] = "VIOLATION#"

    invitation_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    type: ViolationType
    details: str = ""
    ip: str
    user_agent: str = ""

    def get_pk(self) -> str:
        return f"INVITE#{self.invitation_id}"

    def get_sk(self) -> str:
        return f"VIOLATION#{sortable_timestamp(self.timestamp)}#{self.id}"
