"""Service classes for business logic."""

from roomgate.services.audit import AuditTrail, AuditTrailView
from roomgate.services.geolocation import GeolocationClient
from roomgate.services.identity_resolver import IdentityResolver
from roomgate.services.invitation_service import (
    AccessGranted,
    InvitationCreated,
    InvitationLink,
    InvitationService,
)
from roomgate.services.security_validation import SecurityValidator, ValidationOutcome
from roomgate.services.token_service import TokenService
from roomgate.services.waiting_room import (
    AdmissionStatus,
    PatientInfo,
    WaitingRoomEngine,
    WaitingScope,
)

__all__ = [
    "AccessGranted",
    "AdmissionStatus",
    "AuditTrail",
    "AuditTrailView",
    "GeolocationClient",
    "IdentityResolver",
    "InvitationCreated",
    "InvitationLink",
    "InvitationService",
    "PatientInfo",
    "SecurityValidator",
    "TokenService",
    "ValidationOutcome",
    "WaitingRoomEngine",
    "WaitingScope",
]
