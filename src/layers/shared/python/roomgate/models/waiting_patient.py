"""Waiting patient model."""

from datetime import datetime
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel as PydanticBaseModel, Field

from roomgate.models.base import BaseModel, sortable_timestamp, utc_now


class WaitingStatus(str, Enum):
    """Waiting entry status. ADMITTED and LEFT are terminal."""

    WAITING = "waiting"
    ADMITTED = "admitted"
    LEFT = "left"


class WaitingMetadata(PydanticBaseModel):
    """Request details captured when the entry was created."""

    ip: str | None = None
    user_agent: str | None = None
    device_fingerprint_hash: str | None = None
    last_accessed_at: datetime | None = None


class WaitingPatient(BaseModel):
    """A validated visitor queued for admission by the room owner.

    PK: WAITING#{id}
    SK: META
    GSI1PK: INVITE#{invitation_id}#WAITING
    GSI1SK: {joined_at}#{id}
    GSI2PK: OWNER#{doctor_user_id}#WAITING
    GSI2SK: {joined_at}#{id}
    """

    _pk_prefix: ClassVar[str] = "WAITING#"
    _sk_prefix: ClassVar[str] = "META"

    invitation_id: str
    room_name: str
    doctor_user_id: str = Field(..., description="Room owner, copied from the invitation")
    patient_id: str | None = None
    patient_name: str | None = None
    patient_email: str | None = None

    status: WaitingStatus = WaitingStatus.WAITING
    joined_at: datetime = Field(default_factory=utc_now)
    admitted_at: datetime | None = None
    left_at: datetime | None = None

    metadata: WaitingMetadata = Field(default_factory=WaitingMetadata)

    def get_pk(self) -> str:
        """Get partition key."""
        return f"WAITING#{self.id}"

    def get_sk(self) -> str:
        """Get sort key."""
        return "META"

    def get_gsi_keys(self) -> dict[str, str]:
        """Get GSI1 (invitation) and GSI2 (owner) keys."""
        joined = f"{sortable_timestamp(self.joined_at)}#{self.id}"
        return {
            "GSI1PK": f"INVITE#{self.invitation_id}#WAITING",
            "GSI1SK": joined,
            "GSI2PK": f"OWNER#{self.doctor_user_id}#WAITING",
            "GSI2SK": joined,
        }

    @property
    def is_waiting(self) -> bool:
        """Check if the entry is still awaiting a decision."""
        return self.status == WaitingStatus.WAITING
