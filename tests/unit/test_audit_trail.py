"""Tests for the append-only audit trail."""

import pytest

from roomgate.models.access import AccessContext, Geolocation
from roomgate.models.audit import SecurityViolation, ViolationType
from roomgate.models.invitation import CreateInvitationRequest
from roomgate.repositories.invitation import InvitationRepository
from roomgate.services.audit import AuditTrail


@pytest.fixture
def invitation_repo(dynamodb_table):
    return InvitationRepository()


@pytest.fixture
def invitation(invitation_repo, clock):
    return invitation_repo.create_invitation(
        "owner-123", CreateInvitationRequest(room_name="consult-room-1"), now=clock()
    )


@pytest.fixture
def audit(invitation_repo, clock):
    return AuditTrail(invitation_repo=invitation_repo, clock=clock)


@pytest.fixture
def context():
    return AccessContext(
        token_claims={},
        client_ip="198.51.100.7",
        user_agent="Mozilla/5.0",
        geolocation=Geolocation(ip="198.51.100.7", country="Germany", country_code="DE"),
    )


class TestAuditTrail:
    """Tests for AuditTrail."""

    def test_build_attempt(self, audit, context, clock):
        attempt = audit.build_attempt("inv-1", context, success=False, reason="wrong_ip")

        assert attempt.timestamp == clock()
        assert attempt.ip == "198.51.100.7"
        assert attempt.country == "Germany"
        assert attempt.success is False
        assert attempt.reason == "wrong_ip"

    def test_record_attempt_touches_invitation(self, audit, invitation, context, invitation_repo, clock):
        audit.record_attempt(invitation.id, audit.build_attempt(invitation.id, context, success=True))

        trail = audit.get_trail(invitation.id)
        assert len(trail.attempts) == 1
        assert trail.attempts[0].success is True
        assert trail.violations == []
        assert invitation_repo.get_by_id(invitation.id).last_accessed_at == clock()

    def test_record_rejection(self, audit, invitation, context):
        """A rejection stores one attempt and every violation."""
        violations = [
            SecurityViolation(
                invitation_id=invitation.id,
                type=kind,
                details="denied",
                ip=context.client_ip,
            )
            for kind in (ViolationType.WRONG_COUNTRY, ViolationType.WRONG_IP)
        ]

        audit.record_rejection(invitation, context, violations)

        trail = audit.get_trail(invitation.id)
        assert len(trail.attempts) == 1
        assert trail.attempts[0].reason == "wrong_country, wrong_ip"
        assert sorted(v.type for v in trail.violations) == ["wrong_country", "wrong_ip"]

    def test_record_denial(self, audit, invitation, context):
        violation = audit.record_denial(invitation, context, "Invitation has expired", ViolationType.EXPIRED)

        trail = audit.get_trail(invitation.id)
        assert violation.type == "expired"
        assert [v.type for v in trail.violations] == ["expired"]
        assert trail.attempts[0].success is False

    def test_trail_is_time_ordered_and_append_only(self, audit, invitation, context, clock):
        """Records accumulate in time order; nothing is overwritten."""
        for _ in range(3):
            audit.record_attempt(invitation.id, audit.build_attempt(invitation.id, context, success=False))
            clock.advance(seconds=1)

        attempts = audit.get_trail(invitation.id).attempts

        assert len(attempts) == 3
        assert [a.timestamp for a in attempts] == sorted(a.timestamp for a in attempts)
        assert len({a.id for a in attempts}) == 3

    def test_trails_are_per_invitation(self, audit, invitation, invitation_repo, context, clock):
        other = invitation_repo.create_invitation(
            "owner-123", CreateInvitationRequest(room_name="consult-room-1"), now=clock()
        )
        audit.record_attempt(invitation.id, audit.build_attempt(invitation.id, context, success=True))

        assert audit.get_trail(other.id).attempts == []
