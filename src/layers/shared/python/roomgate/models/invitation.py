"""Invitation model."""

from datetime import datetime, timedelta
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel as PydanticBaseModel, Field

from roomgate.models.base import BaseModel, sortable_timestamp, utc_now

# Lifetime bounds for a new invitation, in hours
MIN_EXPIRY_HOURS = 1
MAX_EXPIRY_HOURS = 168
DEFAULT_EXPIRY_HOURS = 24

DEFAULT_MAX_PATIENTS = 10


class InvitationStatus(str, Enum):
    """Invitation lifecycle status. Only ACTIVE is non-terminal."""

    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"
    REVOKED = "revoked"


def clamp_expiry_hours(hours: int | float | None) -> float:
    """Clamp a requested lifetime to the allowed window."""
    if hours is None:
        return DEFAULT_EXPIRY_HOURS
    return max(MIN_EXPIRY_HOURS, min(MAX_EXPIRY_HOURS, hours))


class InvitationConstraints(PydanticBaseModel):
    """Access constraints baked into an invitation.

    None means the constraint is absent and its check is skipped. An empty
    list means present but empty, which only the IP and device allowlists
    accept (and treat as unconfigured).
    """

    email_allowed: str | None = None
    country_allowlist: list[str] | None = None
    browser_allowlist: list[str] | None = None
    allowed_ip_addresses: list[str] | None = None
    allowed_device_ids: list[str] | None = None
    device_binding: bool = False


class Invitation(BaseModel):
    """Invitation entity.

    PK: INVITE#{id}
    SK: META
    GSI1PK: ROOM#{room_name}#INVITES
    GSI1SK: {created_at}
    GSI2PK: OWNER#{owner_id}#INVITES
    GSI2SK: {created_at}
    """

    _pk_prefix: ClassVar[str] = "INVITE#"
    _sk_prefix: ClassVar[str] = "META"

    owner_id: str = Field(..., description="User ID of the issuing room owner")
    room_name: str = Field(..., description="Room the invitation grants entry to")
    constraints: InvitationConstraints = Field(default_factory=InvitationConstraints)
    bound_device_hash: str | None = Field(None, description="Fingerprint hash bound on first use")

    waiting_room_enabled: bool = False
    max_uses: int | None = Field(None, description="None means unbounded")
    current_uses: int = 0
    max_patients: int | None = None

    status: InvitationStatus = InvitationStatus.ACTIVE
    expires_at: datetime
    used_at: datetime | None = None
    used_by: str | None = None
    revoked_at: datetime | None = None
    last_accessed_at: datetime | None = None

    def get_pk(self) -> str:
        """Get partition key."""
        return f"INVITE#{self.id}"

    def get_sk(self) -> str:
        """Get sort key."""
        return "META"

    def get_gsi_keys(self) -> dict[str, str]:
        """Get GSI1 (room) and GSI2 (owner) keys."""
        created = sortable_timestamp(self.created_at)
        return {
            "GSI1PK": f"ROOM#{self.room_name}#INVITES",
            "GSI1SK": created,
            "GSI2PK": f"OWNER#{self.owner_id}#INVITES",
            "GSI2SK": created,
        }

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the invitation has expired."""
        return (now or utc_now()) > self.expires_at

    @property
    def is_active(self) -> bool:
        """Check if the invitation still accepts access attempts."""
        return self.status == InvitationStatus.ACTIVE

    @property
    def uses_exhausted(self) -> bool:
        """Check whether current_uses has reached max_uses."""
        return self.max_uses is not None and self.current_uses >= self.max_uses


class CreateInvitationRequest(PydanticBaseModel):
    """Request model for creating an invitation."""

    room_name: str = Field(..., alias="roomName", min_length=1, max_length=100)
    email_allowed: str | None = Field(None, alias="emailAllowed")
    country_allowlist: list[str] | None = Field(None, alias="countryAllowlist")
    browser_allowlist: list[str] | None = Field(None, alias="browserAllowlist")
    allowed_ip_addresses: list[str] | None = Field(None, alias="allowedIpAddresses")
    allowed_device_ids: list[str] | None = Field(None, alias="allowedDeviceIds")
    device_binding: bool = Field(False, alias="deviceBinding")
    waiting_room_enabled: bool = Field(False, alias="waitingRoomEnabled")
    max_patients: int | None = Field(None, alias="maxPatients", ge=1, le=100)
    max_uses: int | None = Field(None, alias="maxUses", ge=1)
    expires_in_hours: float | None = Field(None, alias="expiresInHours")

    model_config = {"populate_by_name": True}

    def to_constraints(self) -> InvitationConstraints:
        """Build the constraint struct from the request fields."""
        return InvitationConstraints(
            email_allowed=self.email_allowed,
            country_allowlist=self.country_allowlist,
            browser_allowlist=self.browser_allowlist,
            allowed_ip_addresses=self.allowed_ip_addresses,
            allowed_device_ids=self.allowed_device_ids,
            device_binding=self.device_binding,
        )


def expires_at_from_hours(hours: int | float | None, now: datetime | None = None) -> datetime:
    """Derive an absolute expiry from a (clamped) lifetime in hours."""
    return (now or utc_now()) + timedelta(hours=clamp_expiry_hours(hours))
