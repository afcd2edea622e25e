"""Security validation pipeline for invitation access attempts.

Every check runs on every attempt, so a denied caller gets the complete list
of failed checks in one response. Each check yields at most one violation.
The validator is pure; persisting violations and binding devices is left to
the caller.
"""

from datetime import datetime
from typing import Callable

from pydantic import BaseModel as PydanticBaseModel, Field

from roomgate.models.access import AccessContext
from roomgate.models.audit import SecurityViolation, ViolationType
from roomgate.models.base import utc_now
from roomgate.models.invitation import Invitation
from roomgate.utils.countries import country_in_allowlist
from roomgate.utils.device import detect_browser, fingerprint_hash


class ValidationOutcome(PydanticBaseModel):
    """Result of running every check against one attempt."""

    violations: list[SecurityViolation] = Field(default_factory=list)
    device_hash: str | None = None
    bind_device: bool = False

    @property
    def passed(self) -> bool:
        return not self.violations


class SecurityValidator:
    """Run the constraint checks of an invitation against an access attempt."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock

    def validate(self, invitation: Invitation, attempt: AccessContext) -> ValidationOutcome:
        """Check an attempt against the invitation's constraints.

        Args:
            invitation: The invitation being used.
            attempt: What is known about the requester.

        Returns:
            Outcome with all violations found. ``bind_device`` is set when the
            attempt should bind a device-bound invitation on success.
        """
        now = self.clock()
        device_hash = fingerprint_hash(attempt.device_fingerprint) if attempt.device_fingerprint else None

        def violation(kind: ViolationType, details: str) -> SecurityViolation:
            return SecurityViolation(
                invitation_id=invitation.id,
                timestamp=now,
                type=kind,
                details=details,
                ip=attempt.client_ip,
                user_agent=attempt.user_agent,
            )

        violations: list[SecurityViolation] = []
        for check in (self._check_email, self._check_country, self._check_browser, self._check_ip):
            found = check(invitation, attempt)
            if found:
                violations.append(violation(*found))

        found = self._check_device_allowlist(invitation, attempt, device_hash)
        if found:
            violations.append(violation(*found))

        bind_device = False
        if invitation.constraints.device_binding:
            if device_hash is None:
                violations.append(violation(ViolationType.WRONG_DEVICE, "Device fingerprint required"))
            elif invitation.bound_device_hash is None:
                bind_device = True
            elif invitation.bound_device_hash != device_hash:
                violations.append(
                    violation(ViolationType.WRONG_DEVICE, "Device does not match the bound device")
                )

        return ValidationOutcome(
            violations=violations,
            device_hash=device_hash,
            bind_device=bind_device and not violations,
        )

    def _check_email(
        self, invitation: Invitation, attempt: AccessContext
    ) -> tuple[ViolationType, str] | None:
        allowed = invitation.constraints.email_allowed
        presented = attempt.declared_email or attempt.token_claims.get("email")
        if not allowed or not presented:
            return None
        if presented.strip().lower() != allowed.strip().lower():
            return ViolationType.WRONG_EMAIL, "Email does not match the invitation"
        return None

    def _check_country(
        self, invitation: Invitation, attempt: AccessContext
    ) -> tuple[ViolationType, str] | None:
        allowlist = invitation.constraints.country_allowlist
        geo = attempt.geolocation
        # No geolocation means the lookup was unavailable; skip
        if allowlist is None or geo is None:
            return None
        if not country_in_allowlist([geo.country_code, geo.country], allowlist):
            where = geo.country or geo.country_code or "unknown country"
            return ViolationType.WRONG_COUNTRY, f"Access from {where} is not allowed"
        return None

    def _check_browser(
        self, invitation: Invitation, attempt: AccessContext
    ) -> tuple[ViolationType, str] | None:
        allowlist = invitation.constraints.browser_allowlist
        if allowlist is None:
            return None
        user_agent = attempt.user_agent
        if not user_agent and attempt.device_fingerprint:
            user_agent = attempt.device_fingerprint.user_agent
        browser = detect_browser(user_agent)
        if browser.lower() not in {b.strip().lower() for b in allowlist}:
            return ViolationType.WRONG_BROWSER, f"Browser {browser} is not allowed"
        return None

    def _check_ip(
        self, invitation: Invitation, attempt: AccessContext
    ) -> tuple[ViolationType, str] | None:
        allowlist = invitation.constraints.allowed_ip_addresses
        if not allowlist:
            return None
        if attempt.client_ip not in allowlist:
            return ViolationType.WRONG_IP, "IP address is not allowed"
        return None

    def _check_device_allowlist(
        self, invitation: Invitation, attempt: AccessContext, device_hash: str | None
    ) -> tuple[ViolationType, str] | None:
        allowlist = invitation.constraints.allowed_device_ids
        if not allowlist:
            return None
        raw = attempt.device_fingerprint.hash if attempt.device_fingerprint else None
        if (raw and raw in allowlist) or (device_hash and device_hash in allowlist):
            return None
        return ViolationType.WRONG_DEVICE, "Device is not allowed"
