"""Invitation lifecycle and access validation.

Ties the token service, the security validator, the identity resolver, the
audit trail and the waiting room together into the operations the API
handlers expose.
"""

import os
from datetime import datetime
from typing import Any, Callable

import structlog
from pydantic import BaseModel as PydanticBaseModel

from roomgate.models.access import AccessContext, ClientContext
from roomgate.models.audit import SecurityViolation, ViolationType
from roomgate.models.base import utc_now
from roomgate.models.identity import IdentityCandidate, ResolvedIdentity
from roomgate.models.invitation import CreateInvitationRequest, Invitation, InvitationStatus
from roomgate.models.waiting_patient import WaitingPatient
from roomgate.repositories.invitation import InvitationRepository
from roomgate.services.audit import AuditTrail, AuditTrailView
from roomgate.services.geolocation import GeolocationClient
from roomgate.services.identity_resolver import IdentityResolver
from roomgate.services.security_validation import SecurityValidator
from roomgate.services.token_service import DIRECT_JOIN_TTL, LOBBY_TTL, TokenService
from roomgate.services.waiting_room import PatientInfo, WaitingRoomEngine, participant_identity
from roomgate.utils.exceptions import (
    AlreadyTerminalError,
    ForbiddenError,
    InvitationExpiredError,
    InvitationNotActiveError,
    MalformedTokenError,
    NotFoundError,
    SecurityViolationError,
    ValidationError,
    WaitingRoomFullError,
)

logger = structlog.get_logger()

ALREADY_USED_MESSAGE = "This invitation has already been used"
LOBBY_SUFFIX = "-waiting"


class InvitationCreated(PydanticBaseModel):
    """Result of creating an invitation."""

    invitation_id: str
    invitation_token: str
    expires_at: datetime
    invite_url: str


class InvitationLink(PydanticBaseModel):
    """A fresh link for an existing invitation."""

    invitation_id: str
    room_name: str
    invitation_token: str
    expires_at: datetime
    invite_url: str


class OwnerRoomToken(PydanticBaseModel):
    """Room-join token minted for the room owner."""

    room_name: str
    room_join_token: str


class AccessGranted(PydanticBaseModel):
    """Result of a successful validation.

    For waiting-room invitations the token only admits to the lobby room;
    the consultation room token arrives through poll_admission.
    """

    invitation_id: str
    room_name: str
    room_join_token: str
    waiting_room_enabled: bool
    waiting_patient_id: str | None = None
    lobby_room_name: str | None = None
    identity_source: str


def lobby_room(room_name: str) -> str:
    """Name of the lobby room attached to a consultation room."""
    return f"{room_name}{LOBBY_SUFFIX}"


def invite_url(token: str) -> str:
    """Build the link a visitor opens to use an invitation."""
    base_url = os.environ.get("APP_BASE_URL", "http://localhost:3000").rstrip("/")
    return f"{base_url}/invite/{token}"


class InvitationService:
    """Service for invitation issuance and access validation."""

    def __init__(
        self,
        invitation_repo: InvitationRepository | None = None,
        token_service: TokenService | None = None,
        validator: SecurityValidator | None = None,
        audit: AuditTrail | None = None,
        identity_resolver: IdentityResolver | None = None,
        waiting_room: WaitingRoomEngine | None = None,
        geolocation: GeolocationClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize invitation service.

        Collaborators default to production instances sharing one
        repository and one token service.
        """
        self.clock = clock
        self.invitation_repo = invitation_repo or InvitationRepository()
        self.token_service = token_service or TokenService(clock=clock)
        self.validator = validator or SecurityValidator(clock=clock)
        self.audit = audit or AuditTrail(invitation_repo=self.invitation_repo, clock=clock)
        self.identity_resolver = identity_resolver or IdentityResolver()
        self.waiting_room = waiting_room or WaitingRoomEngine(
            invitation_repo=self.invitation_repo,
            token_service=self.token_service,
            clock=clock,
        )
        self.geolocation = geolocation or GeolocationClient()

    # -------------------------------------------------------------------------
    # Owner operations
    # -------------------------------------------------------------------------

    def create_invitation(self, owner_id: str, request: CreateInvitationRequest) -> InvitationCreated:
        """Create an invitation and its first link.

        Raises:
            InvalidConstraintError: If the request is malformed.
        """
        invitation = self.invitation_repo.create_invitation(owner_id, request, now=self.clock())
        token = self.token_service.issue_invitation_token(invitation)
        return InvitationCreated(
            invitation_id=invitation.id,
            invitation_token=token,
            expires_at=invitation.expires_at,
            invite_url=invite_url(token),
        )

    def get_invitation_link(
        self,
        invitation_id: str | None = None,
        room_name: str | None = None,
        owner_id: str | None = None,
    ) -> InvitationLink:
        """Re-issue the link for an invitation, by id or by room.

        By room, the most recently created active invitation is used.

        Raises:
            NotFoundError: If no invitation matches.
            InvitationNotActiveError: If it is used, expired or revoked.
            InvitationExpiredError: If it is past its expiry.
        """
        if invitation_id:
            invitation = self.invitation_repo.get_by_id_or_raise(invitation_id)
        elif room_name:
            invitation = self.invitation_repo.find_active_by_room(room_name)
            if invitation is None:
                raise NotFoundError(
                    "Invitation",
                    room_name,
                    message="No active invitation found for this room",
                )
        else:
            raise ValidationError(
                "invitationId or roomName is required",
                errors=[{"field": "invitationId", "message": "Provide invitationId or roomName"}],
            )

        self._require_owner(invitation, owner_id)

        if not invitation.is_active:
            raise InvitationNotActiveError(invitation.status)
        if invitation.is_expired(self.clock()):
            raise InvitationExpiredError()

        token = self.token_service.issue_invitation_token(invitation)
        return InvitationLink(
            invitation_id=invitation.id,
            room_name=invitation.room_name,
            invitation_token=token,
            expires_at=invitation.expires_at,
            invite_url=invite_url(token),
        )

    def revoke_invitation(self, invitation_id: str, owner_id: str | None = None) -> Invitation:
        """Revoke an active invitation.

        Raises:
            NotFoundError: If the invitation does not exist.
            AlreadyTerminalError: If it is no longer active.
        """
        invitation = self.invitation_repo.get_by_id_or_raise(invitation_id)
        self._require_owner(invitation, owner_id)
        return self.invitation_repo.mark_revoked(invitation_id, at=self.clock())

    def get_audit_trail(self, invitation_id: str, owner_id: str | None = None) -> AuditTrailView:
        """Get the access attempts and violations recorded for an invitation."""
        invitation = self.invitation_repo.get_by_id_or_raise(invitation_id)
        self._require_owner(invitation, owner_id)
        return self.audit.get_trail(invitation_id)

    def issue_owner_room_token(
        self,
        owner_id: str,
        room_name: str,
        participant_name: str | None = None,
    ) -> OwnerRoomToken:
        """Mint a room-join token for the owner of a room.

        A room belongs to whoever issued invitations for it.

        Raises:
            NotFoundError: If no invitation was ever issued for the room.
            ForbiddenError: If none of them was issued by the caller.
        """
        invitations = self.invitation_repo.list_by_room(room_name)
        if not invitations:
            raise NotFoundError("Room", room_name, message="No invitations found for this room")
        if not any(invitation.owner_id == owner_id for invitation in invitations):
            logger.warning("Room ownership check failed", room_name=room_name)
            raise ForbiddenError(
                message="You don't have access to this room",
                resource_type="Room",
                action="join",
            )

        token = self.token_service.issue_room_join_token(
            identity=owner_id,
            room=room_name,
            ttl=DIRECT_JOIN_TTL,
            name=participant_name,
        )
        logger.info("Owner room token issued", room_name=room_name)
        return OwnerRoomToken(room_name=room_name, room_join_token=token)

    def _require_owner(self, invitation: Invitation, owner_id: str | None) -> None:
        if owner_id is not None and invitation.owner_id != owner_id:
            logger.warning("Invitation ownership check failed", invitation_id=invitation.id)
            raise ForbiddenError(
                message="You don't have access to this invitation",
                resource_type="Invitation",
                action="access",
            )

    # -------------------------------------------------------------------------
    # Visitor operations
    # -------------------------------------------------------------------------

    def verify_invitation_token(self, token: str) -> dict[str, Any]:
        """Verify an invitation token (see TokenService.verify_invitation_token)."""
        return self.token_service.verify_invitation_token(token)

    def validate_invitation_access(self, invitation_token: str, client: ClientContext) -> AccessGranted:
        """Validate an access attempt and grant entry on success.

        Non-waiting-room invitations are marked used and the caller receives
        a token for the room itself. Waiting-room invitations enqueue the
        caller and return a token for the lobby room only.

        Every denial is written to the audit trail before it is raised.

        Raises:
            TokenError: If the token is invalid (not audited: no trusted id).
            NotFoundError: If the invitation no longer exists.
            InvitationExpiredError: If the invitation has expired.
            InvitationNotActiveError: If it was revoked or already used.
            SecurityViolationError: If any constraint check failed.
            WaitingRoomFullError: If the waiting room is at capacity.
        """
        claims = self.token_service.verify_invitation_token(invitation_token)
        invitation = self.invitation_repo.get_by_id_or_raise(claims["invitationId"])
        if claims.get("roomName") != invitation.room_name:
            logger.warning("Token room does not match invitation", invitation_id=invitation.id)
            raise MalformedTokenError()

        # Lookup happens before any write
        geolocation = self.geolocation.lookup(client.client_ip)
        context = AccessContext.from_client(claims, client, geolocation)

        self._check_lifecycle(invitation, context)

        outcome = self.validator.validate(invitation, context)
        if not outcome.passed:
            self._reject(invitation, context, outcome.violations)

        identity = self.identity_resolver.resolve(
            IdentityCandidate(
                declared_user_id=client.declared_user_id,
                declared_email=client.declared_email,
                invitation_email=invitation.constraints.email_allowed,
                owner_id=invitation.owner_id,
            )
        )

        # Nothing else is written until the invitation has been claimed
        patient = None
        if invitation.waiting_room_enabled:
            patient = self._claim_waiting_entry(invitation, context, client, identity, outcome.device_hash)
        else:
            self._claim_direct(invitation, context, client)

        if outcome.bind_device and outcome.device_hash:
            self._bind_device(invitation, context, outcome.device_hash, patient)

        self.identity_resolver.record(
            identity,
            invitation.room_name,
            owner_id=invitation.owner_id,
            patient_name=client.patient_name,
        )

        if patient is None:
            granted = self._room_grant(invitation, client, identity)
        else:
            granted = self._lobby_grant(invitation, client, identity, patient)

        self.audit.record_attempt(
            invitation.id,
            self.audit.build_attempt(invitation.id, context, success=True),
        )
        logger.info(
            "Invitation access granted",
            invitation_id=invitation.id,
            waiting_room=invitation.waiting_room_enabled,
            identity_source=identity.source.value,
        )
        return granted

    def _check_lifecycle(self, invitation: Invitation, context: AccessContext) -> None:
        """Deny access to expired, revoked or used invitations.

        Expiry is checked first so an expired invitation always fails with
        an expiry error.
        """
        if invitation.status == InvitationStatus.EXPIRED.value or invitation.is_expired(self.clock()):
            self.audit.record_denial(invitation, context, "Invitation has expired", ViolationType.EXPIRED)
            if invitation.is_active:
                try:
                    self.invitation_repo.mark_expired(invitation.id, at=self.clock())
                except AlreadyTerminalError:
                    logger.info("Invitation already terminal", invitation_id=invitation.id)
            raise InvitationExpiredError()

        if invitation.status == InvitationStatus.REVOKED.value:
            self.audit.record_denial(invitation, context, "Invitation has been revoked", ViolationType.REVOKED)
            raise InvitationNotActiveError(invitation.status, message="Invitation has been revoked")

        if invitation.status == InvitationStatus.USED.value or invitation.uses_exhausted:
            raise self._used_denial(invitation, context)

    def _used_denial(self, invitation: Invitation, context: AccessContext) -> InvitationNotActiveError:
        """Audit a use of a spent invitation and build the error to raise."""
        self.audit.record_denial(invitation, context, ALREADY_USED_MESSAGE, ViolationType.ALREADY_USED)
        return InvitationNotActiveError(InvitationStatus.USED.value, message=ALREADY_USED_MESSAGE)

    def _violation(
        self,
        invitation: Invitation,
        context: AccessContext,
        kind: ViolationType,
        details: str,
    ) -> SecurityViolation:
        return SecurityViolation(
            invitation_id=invitation.id,
            timestamp=self.clock(),
            type=kind,
            details=details,
            ip=context.client_ip,
            user_agent=context.user_agent,
        )

    def _reject(
        self,
        invitation: Invitation,
        context: AccessContext,
        violations: list[SecurityViolation],
    ) -> None:
        self.audit.record_rejection(invitation, context, violations)
        logger.warning(
            "Invitation access denied",
            invitation_id=invitation.id,
            violations=[v.type for v in violations],
        )
        raise SecurityViolationError(violations)

    def _claim_direct(self, invitation: Invitation, context: AccessContext, client: ClientContext) -> None:
        """Consume a single-use invitation. Of two racing requests one wins."""
        try:
            self.invitation_repo.mark_used(invitation.id, used_by=client.client_ip, at=self.clock())
        except AlreadyTerminalError:
            raise self._used_denial(invitation, context)

    def _claim_waiting_entry(
        self,
        invitation: Invitation,
        context: AccessContext,
        client: ClientContext,
        identity: ResolvedIdentity,
        device_hash: str | None,
    ) -> WaitingPatient:
        info = PatientInfo(
            patient_id=None if identity.is_anonymous else identity.id,
            patient_name=client.patient_name,
            patient_email=client.declared_email or context.token_claims.get("email"),
            ip=client.client_ip,
            user_agent=client.user_agent,
            device_fingerprint_hash=device_hash,
        )
        try:
            return self.waiting_room.enqueue(invitation, info)
        except AlreadyTerminalError:
            raise self._used_denial(invitation, context)
        except WaitingRoomFullError:
            self.audit.record_attempt(
                invitation.id,
                self.audit.build_attempt(invitation.id, context, success=False, reason="waiting_room_full"),
            )
            raise

    def _bind_device(
        self,
        invitation: Invitation,
        context: AccessContext,
        device_hash: str,
        patient: WaitingPatient | None,
    ) -> None:
        """Bind the invitation to the claiming device.

        Losing the binding to another device withdraws the waiting entry
        just created and denies the request.
        """
        bound = self.invitation_repo.bind_device(invitation.id, device_hash)
        if bound == device_hash:
            return
        if patient is not None:
            self.waiting_room.reject(patient.id)
        mismatch = self._violation(
            invitation, context, ViolationType.WRONG_DEVICE, "Device does not match the bound device"
        )
        self._reject(invitation, context, [mismatch])

    def _room_grant(
        self,
        invitation: Invitation,
        client: ClientContext,
        identity: ResolvedIdentity,
    ) -> AccessGranted:
        participant = identity.id if not identity.is_anonymous else f"guest_{invitation.id}"
        token = self.token_service.issue_room_join_token(
            identity=participant,
            room=invitation.room_name,
            ttl=DIRECT_JOIN_TTL,
            name=client.patient_name,
        )
        return AccessGranted(
            invitation_id=invitation.id,
            room_name=invitation.room_name,
            room_join_token=token,
            waiting_room_enabled=False,
            identity_source=identity.source.value,
        )

    def _lobby_grant(
        self,
        invitation: Invitation,
        client: ClientContext,
        identity: ResolvedIdentity,
        patient: WaitingPatient,
    ) -> AccessGranted:
        lobby = lobby_room(invitation.room_name)
        token = self.token_service.issue_room_join_token(
            identity=participant_identity(patient),
            room=lobby,
            ttl=LOBBY_TTL,
            name=client.patient_name,
        )
        return AccessGranted(
            invitation_id=invitation.id,
            room_name=invitation.room_name,
            room_join_token=token,
            waiting_room_enabled=True,
            waiting_patient_id=patient.id,
            lobby_room_name=lobby,
            identity_source=identity.source.value,
        )
