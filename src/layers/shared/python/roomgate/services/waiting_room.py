"""Waiting room admission engine.

Per-entry state machine::

    waiting --admit--> admitted
    waiting --reject/leave--> left

``admitted`` and ``left`` are terminal. Transitions are conditional updates
on ``status = waiting``, so two owners admitting the same patient at once
produce one admission and one InvalidStatusError.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

import structlog
from pydantic import BaseModel as PydanticBaseModel

from roomgate.models.base import utc_now
from roomgate.models.invitation import DEFAULT_MAX_PATIENTS, Invitation
from roomgate.models.waiting_patient import WaitingMetadata, WaitingPatient, WaitingStatus
from roomgate.repositories.invitation import InvitationRepository
from roomgate.repositories.waiting_patient import WaitingPatientRepository
from roomgate.services.token_service import ADMISSION_TTL, TokenService
from roomgate.utils.exceptions import (
    ForbiddenError,
    InvalidStatusError,
    NotFoundError,
    RoomMismatchError,
    ValidationError,
    WaitingRoomFullError,
)

logger = structlog.get_logger()

# Re-validations from the same IP and user agent within this window reuse
# the existing entry
REJOIN_WINDOW = timedelta(minutes=5)


class ScopeKind(str, Enum):
    """What a waiting list is scoped to."""

    OWNER = "owner"
    INVITATION = "invitation"
    ROOM = "room"


class WaitingScope(PydanticBaseModel):
    """Selector for list_waiting."""

    kind: ScopeKind
    value: str

    @classmethod
    def by_owner(cls, owner_id: str) -> "WaitingScope":
        return cls(kind=ScopeKind.OWNER, value=owner_id)

    @classmethod
    def by_invitation(cls, invitation_id: str) -> "WaitingScope":
        return cls(kind=ScopeKind.INVITATION, value=invitation_id)

    @classmethod
    def by_room(cls, room_name: str) -> "WaitingScope":
        return cls(kind=ScopeKind.ROOM, value=room_name)


class PatientInfo(PydanticBaseModel):
    """Visitor details captured at enqueue time."""

    patient_id: str | None = None
    patient_name: str | None = None
    patient_email: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    device_fingerprint_hash: str | None = None


class AdmissionStatus(PydanticBaseModel):
    """What a polling visitor learns about their entry."""

    admitted: bool
    status: WaitingStatus
    waiting_patient_id: str
    room_name: str | None = None
    room_join_token: str | None = None


def participant_identity(patient: WaitingPatient) -> str:
    """Identity a waiting patient joins the room under."""
    return f"patient_{patient.invitation_id}_{patient.id}"


class WaitingRoomEngine:
    """Queue validated visitors and let the room owner admit or reject them."""

    def __init__(
        self,
        waiting_repo: WaitingPatientRepository | None = None,
        invitation_repo: InvitationRepository | None = None,
        token_service: TokenService | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.waiting_repo = waiting_repo or WaitingPatientRepository()
        self.invitation_repo = invitation_repo or InvitationRepository()
        self.token_service = token_service or TokenService()
        self.clock = clock

    def enqueue(self, invitation: Invitation, patient_info: PatientInfo) -> WaitingPatient:
        """Add a validated visitor to an invitation's waiting room.

        A visitor re-validating from the same device gets their existing
        entry back instead of a second one.

        Args:
            invitation: A waiting-room invitation that passed validation.
            patient_info: Visitor details.

        Returns:
            The new or reused waiting entry.

        Raises:
            ValidationError: If the invitation has no waiting room.
            WaitingRoomFullError: If max_patients entries are already waiting.
            AlreadyTerminalError: If the invitation's uses are exhausted.
        """
        if not invitation.waiting_room_enabled:
            raise ValidationError("Invitation does not use a waiting room")

        now = self.clock()
        waiting = self.waiting_repo.list_by_invitation(invitation.id, status=WaitingStatus.WAITING)

        existing = self._find_rejoin(waiting, patient_info, now)
        if existing:
            self.waiting_repo.touch(existing.id, now)
            logger.info(
                "Reusing waiting entry",
                waiting_patient_id=existing.id,
                invitation_id=invitation.id,
            )
            return existing

        max_patients = invitation.max_patients or DEFAULT_MAX_PATIENTS
        if len(waiting) >= max_patients:
            logger.warning(
                "Waiting room full",
                invitation_id=invitation.id,
                max_patients=max_patients,
            )
            raise WaitingRoomFullError(max_patients)

        self.invitation_repo.record_use(invitation.id, used_by=patient_info.ip)

        patient = WaitingPatient(
            invitation_id=invitation.id,
            room_name=invitation.room_name,
            doctor_user_id=invitation.owner_id,
            patient_id=patient_info.patient_id,
            patient_name=patient_info.patient_name,
            patient_email=patient_info.patient_email,
            joined_at=now,
            metadata=WaitingMetadata(
                ip=patient_info.ip,
                user_agent=patient_info.user_agent,
                device_fingerprint_hash=patient_info.device_fingerprint_hash,
                last_accessed_at=now,
            ),
        )
        return self.waiting_repo.create_entry(patient)

    def _find_rejoin(
        self,
        waiting: list[WaitingPatient],
        info: PatientInfo,
        now: datetime,
    ) -> WaitingPatient | None:
        for patient in waiting:
            meta = patient.metadata
            if info.device_fingerprint_hash and meta.device_fingerprint_hash == info.device_fingerprint_hash:
                return patient
        for patient in waiting:
            meta = patient.metadata
            seen = meta.last_accessed_at or patient.joined_at
            if (
                info.ip
                and meta.ip == info.ip
                and meta.user_agent == info.user_agent
                and now - seen <= REJOIN_WINDOW
            ):
                return patient
        return None

    def list_waiting(self, scope: WaitingScope) -> list[WaitingPatient]:
        """List waiting entries in a scope, earliest joined first.

        The room scope has no index of its own: it resolves the room's
        invitations and unions their waiting entries.
        """
        if scope.kind == ScopeKind.OWNER:
            patients = self.waiting_repo.list_waiting_by_owner(scope.value)
        elif scope.kind == ScopeKind.INVITATION:
            patients = self.waiting_repo.list_by_invitation(scope.value, status=WaitingStatus.WAITING)
        else:
            patients = []
            for invitation in self.invitation_repo.list_by_room(scope.value):
                patients.extend(
                    self.waiting_repo.list_by_invitation(invitation.id, status=WaitingStatus.WAITING)
                )

        return sorted(patients, key=lambda p: (p.joined_at, p.id))

    def admit(self, waiting_patient_id: str, room_name: str) -> tuple[WaitingPatient, str]:
        """Admit a waiting patient into the room.

        Args:
            waiting_patient_id: Entry to admit.
            room_name: Room the owner is admitting into; must match the entry.

        Returns:
            Tuple of (admitted entry, room-join token).

        Raises:
            NotFoundError: If the entry does not exist.
            InvalidStatusError: If the entry is no longer waiting.
            RoomMismatchError: If room_name is not the entry's room.
        """
        patient = self.waiting_repo.get_by_id_or_raise(waiting_patient_id)
        if not patient.is_waiting:
            raise InvalidStatusError(patient.status)
        if patient.room_name != room_name:
            logger.warning(
                "Admission room mismatch",
                waiting_patient_id=waiting_patient_id,
                requested_room=room_name,
            )
            raise RoomMismatchError()

        admitted = self.waiting_repo.transition(waiting_patient_id, WaitingStatus.ADMITTED, self.clock())
        token = self._room_token(admitted)

        logger.info(
            "Patient admitted",
            waiting_patient_id=waiting_patient_id,
            room_name=room_name,
        )
        return admitted, token

    def reject(self, waiting_patient_id: str) -> WaitingPatient:
        """Move a waiting patient to ``left``.

        Rejecting an entry that is already terminal is a successful no-op
        and performs no write.

        Raises:
            NotFoundError: If the entry does not exist.
        """
        patient = self.waiting_repo.get_by_id_or_raise(waiting_patient_id)
        if not patient.is_waiting:
            return patient

        try:
            patient = self.waiting_repo.transition(waiting_patient_id, WaitingStatus.LEFT, self.clock())
        except InvalidStatusError:
            # Another request made the entry terminal first
            return self.waiting_repo.get_by_id_or_raise(waiting_patient_id)

        logger.info("Patient rejected", waiting_patient_id=waiting_patient_id)
        return patient

    def leave(self, waiting_patient_id: str, invitation_id: str) -> WaitingPatient:
        """Let a visitor withdraw their own entry.

        Raises:
            NotFoundError: If the entry does not exist.
            ForbiddenError: If the entry belongs to another invitation.
        """
        patient = self.waiting_repo.get_by_id_or_raise(waiting_patient_id)
        if patient.invitation_id != invitation_id:
            raise ForbiddenError(
                message="This waiting entry belongs to another invitation",
                resource_type="WaitingPatient",
                action="leave",
            )
        return self.reject(waiting_patient_id)

    def poll_admission(
        self,
        invitation_id: str,
        email_hint: str | None = None,
        waiting_patient_id: str | None = None,
    ) -> AdmissionStatus:
        """Report a waiting visitor's admission status.

        Picks the exact entry when its id is given, else the latest entry
        whose email matches the hint, else the latest entry for the
        invitation. Safe to call repeatedly.

        Raises:
            NotFoundError: If no entry matches.
        """
        patient = self._select_entry(invitation_id, email_hint, waiting_patient_id)

        admitted = patient.status == WaitingStatus.ADMITTED
        return AdmissionStatus(
            admitted=admitted,
            status=patient.status,
            waiting_patient_id=patient.id,
            room_name=patient.room_name if admitted else None,
            room_join_token=self._room_token(patient) if admitted else None,
        )

    def _select_entry(
        self,
        invitation_id: str,
        email_hint: str | None,
        waiting_patient_id: str | None,
    ) -> WaitingPatient:
        if waiting_patient_id:
            patient = self.waiting_repo.get_by_id(waiting_patient_id)
            if patient is None or patient.invitation_id != invitation_id:
                raise NotFoundError("WaitingPatient", waiting_patient_id)
            return patient

        entries = self.waiting_repo.list_by_invitation(invitation_id)
        if not entries:
            raise NotFoundError(
                "WaitingPatient",
                invitation_id,
                message="No waiting room entry found for this invitation",
            )

        entries.sort(key=lambda p: (p.joined_at, p.id), reverse=True)
        if email_hint:
            hint = email_hint.strip().lower()
            for patient in entries:
                if patient.patient_email and patient.patient_email.strip().lower() == hint:
                    return patient
        return entries[0]

    def _room_token(self, patient: WaitingPatient) -> str:
        return self.token_service.issue_room_join_token(
            identity=participant_identity(patient),
            room=patient.room_name,
            ttl=ADMISSION_TTL,
            name=patient.patient_name,
        )
