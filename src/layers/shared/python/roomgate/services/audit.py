"""Append-only audit trail for invitation access."""

from datetime import datetime
from typing import Callable

import structlog
from pydantic import BaseModel as PydanticBaseModel, Field

from roomgate.models.access import AccessContext
from roomgate.models.audit import AccessAttempt, SecurityViolation, ViolationType
from roomgate.models.base import utc_now
from roomgate.models.invitation import Invitation
from roomgate.repositories.audit import AccessAttemptRepository, SecurityViolationRepository
from roomgate.repositories.invitation import InvitationRepository

logger = structlog.get_logger()


class AuditTrailView(PydanticBaseModel):
    """An invitation's attempts and violations in time order."""

    attempts: list[AccessAttempt] = Field(default_factory=list)
    violations: list[SecurityViolation] = Field(default_factory=list)


class AuditTrail:
    """Record access attempts and violations against an invitation.

    Each record is its own item written with a conditional put; nothing is
    read back and rewritten, so racing attempts never lose entries.
    """

    def __init__(
        self,
        attempt_repo: AccessAttemptRepository | None = None,
        violation_repo: SecurityViolationRepository | None = None,
        invitation_repo: InvitationRepository | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.attempt_repo = attempt_repo or AccessAttemptRepository()
        self.violation_repo = violation_repo or SecurityViolationRepository()
        self.invitation_repo = invitation_repo or InvitationRepository()
        self.clock = clock

    def build_attempt(
        self,
        invitation_id: str,
        context: AccessContext,
        success: bool,
        reason: str | None = None,
    ) -> AccessAttempt:
        """Describe an access attempt from its context."""
        geo = context.geolocation
        return AccessAttempt(
            invitation_id=invitation_id,
            timestamp=self.clock(),
            ip=context.client_ip,
            user_agent=context.user_agent,
            country=(geo.country or geo.country_code) if geo else None,
            device_fingerprint=(
                context.device_fingerprint.hash if context.device_fingerprint else None
            ),
            success=success,
            reason=reason,
        )

    def record_attempt(self, invitation_id: str, attempt: AccessAttempt) -> AccessAttempt:
        """Append an access attempt."""
        self.attempt_repo.append(attempt)
        self.invitation_repo.touch_last_accessed(invitation_id, attempt.timestamp)
        logger.info(
            "Access attempt recorded",
            invitation_id=invitation_id,
            success=attempt.success,
            reason=attempt.reason,
        )
        return attempt

    def record_violations(
        self,
        invitation_id: str,
        violations: list[SecurityViolation],
    ) -> list[SecurityViolation]:
        """Append violations, one item each."""
        for violation in violations:
            self.violation_repo.append(violation)
        if violations:
            self.invitation_repo.touch_last_accessed(invitation_id, self.clock())
            logger.warning(
                "Security violations recorded",
                invitation_id=invitation_id,
                types=[v.type for v in violations],
            )
        return violations

    def record_rejection(
        self,
        invitation: Invitation,
        context: AccessContext,
        violations: list[SecurityViolation],
    ) -> None:
        """Record a failed attempt together with the violations that caused it."""
        reason = ", ".join(v.type for v in violations)
        self.record_attempt(
            invitation.id,
            self.build_attempt(invitation.id, context, success=False, reason=reason),
        )
        self.record_violations(invitation.id, violations)

    def record_denial(
        self,
        invitation: Invitation,
        context: AccessContext,
        reason: str,
        violation_type: ViolationType,
    ) -> SecurityViolation:
        """Record a lifecycle denial (expired, used, revoked) as attempt plus violation."""
        violation = SecurityViolation(
            invitation_id=invitation.id,
            timestamp=self.clock(),
            type=violation_type,
            details=reason,
            ip=context.client_ip,
            user_agent=context.user_agent,
        )
        self.record_rejection(invitation, context, [violation])
        return violation

    def get_trail(self, invitation_id: str) -> AuditTrailView:
        """Get an invitation's audit trail, oldest first."""
        attempts = self.attempt_repo.list_by_invitation(invitation_id)
        violations = self.violation_repo.list_by_invitation(invitation_id)
        return AuditTrailView(
            attempts=sorted(attempts, key=lambda a: a.timestamp),
            violations=sorted(violations, key=lambda v: v.timestamp),
        )
