"""Invitation repository for DynamoDB operations."""

import ipaddress
import re
from datetime import datetime

import structlog

from roomgate.models.base import utc_now
from roomgate.models.invitation import (
    DEFAULT_MAX_PATIENTS,
    CreateInvitationRequest,
    Invitation,
    InvitationConstraints,
    InvitationStatus,
    expires_at_from_hours,
)
from roomgate.repositories.base import BaseRepository
from roomgate.utils.countries import is_known_country
from roomgate.utils.device import canonical_browser
from roomgate.utils.exceptions import (
    AlreadyTerminalError,
    ConflictError,
    InvalidConstraintError,
    NotFoundError,
)

logger = structlog.get_logger()

ROOM_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,50}$")
EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

MAX_INPUT_LENGTH = 1000
_SCRIPT_PATTERNS = (
    re.compile(r"[<>]"),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+=", re.IGNORECASE),
)

_STATUS_NAMES = {"#status": "status"}

# Optimistic retries for the use counter before giving up
RECORD_USE_ATTEMPTS = 3


def sanitize_input(value: str) -> str:
    """Strip markup and script fragments from owner-supplied text."""
    cleaned = value.strip()
    for pattern in _SCRIPT_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return cleaned[:MAX_INPUT_LENGTH]


def _sanitize_list(values: list[str] | None) -> list[str] | None:
    if values is None:
        return None
    return [v for v in (sanitize_input(str(item)) for item in values) if v]


def validate_constraints(request: CreateInvitationRequest) -> tuple[str, InvitationConstraints]:
    """Sanitize and validate a creation request.

    Args:
        request: Raw create request.

    Returns:
        Tuple of (room name, constraints) ready to persist.

    Raises:
        InvalidConstraintError: If any field is malformed.
    """
    room_name = sanitize_input(request.room_name)
    if not ROOM_NAME_PATTERN.match(room_name):
        raise InvalidConstraintError(
            "room_name",
            "must be 3-50 characters of letters, digits, hyphen or underscore",
        )

    constraints = request.to_constraints()

    email = sanitize_input(constraints.email_allowed) if constraints.email_allowed else None
    if email and not EMAIL_REGEX.match(email):
        raise InvalidConstraintError("email_allowed", "invalid email address")

    countries = _sanitize_list(constraints.country_allowlist)
    if countries is not None:
        if not countries:
            raise InvalidConstraintError("country_allowlist", "must not be empty")
        unknown = [c for c in countries if not is_known_country(c)]
        if unknown:
            raise InvalidConstraintError("country_allowlist", f"unknown countries: {', '.join(unknown)}")

    browsers = None
    if constraints.browser_allowlist is not None:
        raw = _sanitize_list(constraints.browser_allowlist)
        if not raw:
            raise InvalidConstraintError("browser_allowlist", "must not be empty")
        browsers = []
        for name in raw:
            family = canonical_browser(name)
            if family is None:
                raise InvalidConstraintError("browser_allowlist", f"unknown browser: {name}")
            if family not in browsers:
                browsers.append(family)

    ips = _sanitize_list(constraints.allowed_ip_addresses)
    if ips is not None:
        if not ips:
            raise InvalidConstraintError("allowed_ip_addresses", "must not be empty")
        for ip in ips:
            try:
                ipaddress.ip_address(ip)
            except ValueError:
                raise InvalidConstraintError("allowed_ip_addresses", f"invalid IP address: {ip}")

    devices = _sanitize_list(constraints.allowed_device_ids)
    if devices is not None and not devices:
        raise InvalidConstraintError("allowed_device_ids", "must not be empty")

    return room_name, InvitationConstraints(
        email_allowed=email or None,
        country_allowlist=countries,
        browser_allowlist=browsers,
        allowed_ip_addresses=ips,
        allowed_device_ids=devices,
        device_binding=constraints.device_binding,
    )


class InvitationRepository(BaseRepository[Invitation]):
    """Repository for Invitation entities.

    Every status change is a conditional update on ``status = active``, so a
    terminal invitation can never be moved again.
    """

    def __init__(self, table_name: str | None = None):
        """Initialize invitation repository."""
        super().__init__(Invitation, table_name)

    def create_invitation(
        self,
        owner_id: str,
        request: CreateInvitationRequest,
        now: datetime | None = None,
    ) -> Invitation:
        """Validate a request and persist a new active invitation.

        Args:
            owner_id: Issuing room owner.
            request: Create request.
            now: Creation time (defaults to the current time).

        Returns:
            The created invitation.

        Raises:
            InvalidConstraintError: If the request is malformed.
        """
        room_name, constraints = validate_constraints(request)
        now = now or utc_now()

        if request.waiting_room_enabled:
            max_uses = request.max_uses
            max_patients = request.max_patients or DEFAULT_MAX_PATIENTS
        else:
            max_uses = 1
            max_patients = None

        invitation = Invitation(
            owner_id=owner_id,
            room_name=room_name,
            constraints=constraints,
            waiting_room_enabled=request.waiting_room_enabled,
            max_uses=max_uses,
            max_patients=max_patients,
            created_at=now,
            expires_at=expires_at_from_hours(request.expires_in_hours, now=now),
        )
        self.create(invitation)

        logger.info(
            "Invitation created",
            invitation_id=invitation.id,
            room_name=room_name,
            waiting_room_enabled=invitation.waiting_room_enabled,
        )
        return invitation

    def get_by_id(self, invitation_id: str) -> Invitation | None:
        """Get invitation by ID."""
        return self.get(pk=f"INVITE#{invitation_id}", sk="META")

    def get_by_id_or_raise(self, invitation_id: str) -> Invitation:
        """Get invitation by ID or raise NotFoundError."""
        return self.get_or_raise(
            pk=f"INVITE#{invitation_id}",
            sk="META",
            resource_type="Invitation",
            resource_id=invitation_id,
        )

    def list_by_room(self, room_name: str) -> list[Invitation]:
        """List all invitations for a room, newest first."""
        return self.query_all(
            pk=f"ROOM#{room_name}#INVITES",
            index_name="GSI1",
            scan_forward=False,
        )

    def find_active_by_room(self, room_name: str) -> Invitation | None:
        """Get the most recently created active invitation for a room.

        Expiry is not checked here; callers decide how to report it.
        """
        invitations = self.query_all(
            pk=f"ROOM#{room_name}#INVITES",
            index_name="GSI1",
            scan_forward=False,
            filter_expression="#status = :active",
            expression_values={":active": InvitationStatus.ACTIVE.value},
            expression_names=_STATUS_NAMES,
        )
        return invitations[0] if invitations else None

    def list_by_owner(self, owner_id: str, limit: int = 50) -> list[Invitation]:
        """List an owner's invitations, newest first."""
        invitations, _ = self.query(
            pk=f"OWNER#{owner_id}#INVITES",
            index_name="GSI2",
            scan_forward=False,
            limit=limit,
        )
        return invitations

    def _transition(
        self,
        invitation_id: str,
        status: InvitationStatus,
        set_values: dict[str, object],
        at: datetime | None = None,
    ) -> Invitation:
        """Move an active invitation to a terminal status.

        Raises:
            NotFoundError: If the invitation does not exist.
            AlreadyTerminalError: If it is no longer active.
        """
        assignments = ["#status = :new_status", "updated_at = :now", "version = version + :one"]
        values: dict[str, object] = {
            ":new_status": status.value,
            ":active": InvitationStatus.ACTIVE.value,
            ":now": (at or utc_now()).isoformat(),
            ":one": 1,
        }
        for name, value in set_values.items():
            assignments.append(f"{name} = :{name}")
            values[f":{name}"] = value

        try:
            invitation = self.update_attributes(
                pk=f"INVITE#{invitation_id}",
                sk="META",
                update_expression="SET " + ", ".join(assignments),
                expression_values=values,
                expression_names=_STATUS_NAMES,
                condition_expression="#status = :active",
            )
        except ConflictError:
            current = self.get_by_id(invitation_id)
            if current is None:
                raise NotFoundError("Invitation", invitation_id)
            raise AlreadyTerminalError(invitation_id, current.status)

        logger.info("Invitation status changed", invitation_id=invitation_id, status=status.value)
        return invitation

    def mark_used(self, invitation_id: str, used_by: str, at: datetime | None = None) -> Invitation:
        """Mark an active invitation as used."""
        at = at or utc_now()
        return self._transition(
            invitation_id,
            InvitationStatus.USED,
            {"used_at": at.isoformat(), "used_by": used_by},
            at=at,
        )

    def mark_revoked(self, invitation_id: str, at: datetime | None = None) -> Invitation:
        """Revoke an active invitation."""
        at = at or utc_now()
        return self._transition(
            invitation_id,
            InvitationStatus.REVOKED,
            {"revoked_at": at.isoformat()},
            at=at,
        )

    def mark_expired(self, invitation_id: str, at: datetime | None = None) -> Invitation:
        """Record that an active invitation has passed its expiry."""
        return self._transition(invitation_id, InvitationStatus.EXPIRED, {}, at=at)

    def record_use(self, invitation_id: str, used_by: str | None = None) -> Invitation:
        """Atomically increment the use counter.

        The write is conditioned on the counter value just read, so the
        increment and the move to ``used`` on exhaustion land together.

        Raises:
            NotFoundError: If the invitation does not exist.
            AlreadyTerminalError: If it is not active or its uses are exhausted.
            ConflictError: If concurrent writers keep winning the race.
        """
        for _ in range(RECORD_USE_ATTEMPTS):
            current = self.get_by_id_or_raise(invitation_id)
            if not current.is_active:
                raise AlreadyTerminalError(invitation_id, current.status)
            if current.uses_exhausted:
                raise AlreadyTerminalError(invitation_id, InvitationStatus.USED.value)

            next_uses = current.current_uses + 1
            now = utc_now().isoformat()
            assignments = ["current_uses = :next", "updated_at = :now", "version = version + :one"]
            values: dict[str, object] = {
                ":next": next_uses,
                ":seen": current.current_uses,
                ":active": InvitationStatus.ACTIVE.value,
                ":now": now,
                ":one": 1,
            }
            if current.max_uses is not None and next_uses >= current.max_uses:
                assignments += ["#status = :used", "used_at = :now"]
                values[":used"] = InvitationStatus.USED.value
                if used_by:
                    assignments.append("used_by = :used_by")
                    values[":used_by"] = used_by

            try:
                return self.update_attributes(
                    pk=f"INVITE#{invitation_id}",
                    sk="META",
                    update_expression="SET " + ", ".join(assignments),
                    expression_values=values,
                    expression_names=_STATUS_NAMES,
                    condition_expression="#status = :active AND current_uses = :seen",
                )
            except ConflictError:
                logger.debug("Use counter race, retrying", invitation_id=invitation_id)

        raise ConflictError("Invitation use counter is contended", conflict_type="record_use")

    def bind_device(self, invitation_id: str, device_hash: str) -> str:
        """Bind the invitation to a device hash if it is not bound yet.

        Returns:
            The hash the invitation is bound to after the call, which is the
            earlier binding when another request got there first.
        """
        try:
            invitation = self.update_attributes(
                pk=f"INVITE#{invitation_id}",
                sk="META",
                update_expression="SET bound_device_hash = :hash",
                expression_values={":hash": device_hash},
                condition_expression="attribute_exists(PK) AND attribute_not_exists(bound_device_hash)",
            )
            logger.info("Invitation bound to device", invitation_id=invitation_id)
            return invitation.bound_device_hash
        except ConflictError:
            current = self.get_by_id_or_raise(invitation_id)
            return current.bound_device_hash

    def touch_last_accessed(self, invitation_id: str, at: datetime | None = None) -> None:
        """Stamp last_accessed_at without touching anything else."""
        try:
            self.update_attributes(
                pk=f"INVITE#{invitation_id}",
                sk="META",
                update_expression="SET last_accessed_at = :at",
                expression_values={":at": (at or utc_now()).isoformat()},
                condition_expression="attribute_exists(PK)",
            )
        except ConflictError:
            raise NotFoundError("Invitation", invitation_id)
