"""Pydantic models for roomgate entities."""

from roomgate.models.access import (
    AccessContext,
    ClientContext,
    DeviceFingerprint,
    Geolocation,
    ValidateInvitationRequest,
)
from roomgate.models.audit import AccessAttempt, SecurityViolation, ViolationType
from roomgate.models.base import BaseModel, TimestampMixin
from roomgate.models.identity import (
    ANONYMOUS_ID,
    IdentityCandidate,
    IdentitySource,
    ResolvedIdentity,
    RoomSession,
    UserProfile,
)
from roomgate.models.invitation import (
    CreateInvitationRequest,
    Invitation,
    InvitationConstraints,
    InvitationStatus,
)
from roomgate.models.waiting_patient import WaitingMetadata, WaitingPatient, WaitingStatus

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    # Invitation
    "Invitation",
    "InvitationConstraints",
    "InvitationStatus",
    "CreateInvitationRequest",
    # Waiting room
    "WaitingPatient",
    "WaitingStatus",
    "WaitingMetadata",
    # Audit
    "AccessAttempt",
    "SecurityViolation",
    "ViolationType",
    # Identity
    "ANONYMOUS_ID",
    "IdentityCandidate",
    "IdentitySource",
    "ResolvedIdentity",
    "RoomSession",
    "UserProfile",
    # Access
    "AccessContext",
    "ClientContext",
    "DeviceFingerprint",
    "Geolocation",
    "ValidateInvitationRequest",
]
