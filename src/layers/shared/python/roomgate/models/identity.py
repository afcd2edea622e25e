"""Identity models: known users, room sessions and resolver results."""

from enum import Enum
from typing import ClassVar

from pydantic import BaseModel as PydanticBaseModel, Field, field_validator

from roomgate.models.base import BaseModel

ANONYMOUS_ID = "anonymous"


class UserProfile(BaseModel):
    """Known identity record that email lookups resolve against.

    PK: USER#{id}
    SK: PROFILE
    GSI1PK: USER_EMAIL#{email}
    GSI1SK: USER#{id}
    """

    _pk_prefix: ClassVar[str] = "USER#"
    _sk_prefix: ClassVar[str] = "PROFILE"

    email: str
    display_name: str | None = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Store emails lower-cased so lookups are exact."""
        return v.strip().lower()

    def get_pk(self) -> str:
        return f"USER#{self.id}"

    def get_sk(self) -> str:
        return "PROFILE"

    def get_gsi_keys(self) -> dict[str, str]:
        return {
            "GSI1PK": f"USER_EMAIL#{self.email}",
            "GSI1SK": f"USER#{self.id}",
        }


class RoomSession(BaseModel):
    """Per-room consultation record the visitor identity is persisted against.

    PK: ROOM#{room_name}
    SK: SESSION
    """

    room_name: str
    owner_id: str | None = None
    patient_user_id: str | None = None
    patient_email: str | None = None
    patient_name: str | None = None

    def get_pk(self) -> str:
        return f"ROOM#{self.room_name}"

    def get_sk(self) -> str:
        return "SESSION"


class IdentitySource(str, Enum):
    """Which resolver strategy produced an identity."""

    DECLARED_USER_ID = "declared_user_id"
    DECLARED_EMAIL = "declared_email"
    INVITATION_EMAIL = "invitation_email"
    ANONYMOUS = "anonymous"


class IdentityCandidate(PydanticBaseModel):
    """Partial identity signals gathered for one visitor."""

    declared_user_id: str | None = None
    declared_email: str | None = None
    invitation_email: str | None = None
    owner_id: str


class ResolvedIdentity(PydanticBaseModel):
    """Best-effort canonical identity with its provenance."""

    source: IdentitySource
    id: str
    confidence: float = Field(ge=0.0, le=1.0)
    email: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.source == IdentitySource.ANONYMOUS

    @classmethod
    def anonymous(cls, email: str | None = None) -> "ResolvedIdentity":
        return cls(source=IdentitySource.ANONYMOUS, id=ANONYMOUS_ID, confidence=0.0, email=email)
