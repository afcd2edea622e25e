"""Tests for TokenService."""

import base64
import json
from datetime import timedelta

import jwt
import pytest

from roomgate.models.invitation import Invitation, InvitationConstraints
from roomgate.services.token_service import ADMISSION_TTL, INVITATION_TOKEN_GRACE, TokenService
from roomgate.utils.exceptions import (
    ConfigurationError,
    MalformedTokenError,
    SignatureInvalidError,
    TokenError,
    TokenExpiredError,
)

SECRET = "test-room-token-secret-with-enough-length"


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _invitation(clock, **overrides) -> Invitation:
    data = {
        "owner_id": "owner-123",
        "room_name": "consult-room-1",
        "expires_at": clock() + timedelta(hours=24),
    }
    data.update(overrides)
    return Invitation(**data)


class TestIssueAndVerify:
    """Tests for the generic issue/verify pair."""

    def test_round_trip(self, token_service, clock):
        """Issued claims come back with iat and exp added."""
        token = token_service.issue({"foo": "bar"}, timedelta(minutes=5))

        claims = token_service.verify(token)

        assert claims["foo"] == "bar"
        assert claims["iat"] == int(clock().timestamp())
        assert claims["exp"] - claims["iat"] == 300

    def test_expired_token(self, token_service):
        """A token past exp is rejected as expired."""
        token = token_service.issue({"foo": "bar"}, timedelta(seconds=-30))

        with pytest.raises(TokenExpiredError):
            token_service.verify(token)

    def test_expiry_follows_service_clock(self, token_service, clock):
        """exp is judged against the clock that issued the token, not wall time."""
        clock.advance(hours=-3)
        token = token_service.issue({"foo": "bar"}, timedelta(minutes=5))

        assert token_service.verify(token)["foo"] == "bar"

        clock.advance(minutes=5)
        with pytest.raises(TokenExpiredError):
            token_service.verify(token)

    def test_future_issued_token_is_accepted(self, token_service, clock):
        """iat ahead of wall time is fine while the service clock agrees."""
        clock.advance(hours=3)
        token = token_service.issue({"foo": "bar"}, timedelta(minutes=5))

        assert token_service.verify(token)["foo"] == "bar"

    def test_non_numeric_exp_is_malformed(self, token_service, clock):
        token = jwt.encode({"iat": int(clock().timestamp()), "exp": "soon"}, SECRET, algorithm="HS256")

        with pytest.raises(MalformedTokenError):
            token_service.verify(token)

    def test_wrong_secret(self, token_service, clock):
        """A token signed with another secret fails signature checks."""
        other = TokenService(secret="another-secret-of-sufficient-length", clock=clock)
        token = other.issue({"foo": "bar"}, timedelta(minutes=5))

        with pytest.raises(SignatureInvalidError):
            token_service.verify(token)

    def test_tampered_payload(self, token_service):
        """Changing the payload invalidates the signature."""
        token = token_service.issue({"role": "visitor"}, timedelta(minutes=5))
        header, _, signature = token.split(".")
        claims = jwt.decode(token, options={"verify_signature": False})
        claims["role"] = "owner"
        forged = f"{header}.{_b64(claims)}.{signature}"

        with pytest.raises(SignatureInvalidError):
            token_service.verify(forged)

    def test_alg_none_is_refused(self, token_service, clock):
        """Unsigned tokens are never accepted."""
        now = int(clock().timestamp())
        token = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64({'iat': now, 'exp': now + 60})}."

        with pytest.raises(SignatureInvalidError):
            token_service.verify(token)

    def test_other_algorithm_is_refused(self, token_service, clock):
        """A token signed with a different HMAC algorithm is refused."""
        now = int(clock().timestamp())
        token = jwt.encode({"iat": now, "exp": now + 60}, SECRET, algorithm="HS512")

        with pytest.raises(SignatureInvalidError):
            token_service.verify(token)

    @pytest.mark.parametrize("token", ["", "not-a-token", "a.b", "!!!.???.###"])
    def test_malformed_token(self, token_service, token):
        """Garbage input is reported as malformed."""
        with pytest.raises(MalformedTokenError):
            token_service.verify(token)

    def test_missing_exp_is_malformed(self, token_service, clock):
        """Tokens must carry exp."""
        token = jwt.encode({"iat": int(clock().timestamp())}, SECRET, algorithm="HS256")

        with pytest.raises(MalformedTokenError):
            token_service.verify(token)

    def test_token_errors_share_public_message(self, token_service):
        """All token failures look the same to the caller."""
        expired = token_service.issue({}, timedelta(seconds=-30))

        with pytest.raises(TokenError) as exc_info:
            token_service.verify(expired)

        assert exc_info.value.message == MalformedTokenError().message
        assert exc_info.value.status_code == 401

    def test_missing_secret(self, monkeypatch):
        """Construction fails loudly without a signing secret."""
        monkeypatch.delenv("ROOM_TOKEN_SECRET", raising=False)

        with pytest.raises(ConfigurationError):
            TokenService()


class TestInvitationTokens:
    """Tests for invitation token issuance."""

    def test_invitation_claims(self, token_service, clock):
        """Invitation tokens carry the invitation id, room and email."""
        invitation = _invitation(
            clock,
            constraints=InvitationConstraints(email_allowed="patient@example.com"),
        )

        claims = token_service.verify_invitation_token(token_service.issue_invitation_token(invitation))

        assert claims["typ"] == "invite"
        assert claims["invitationId"] == invitation.id
        assert claims["roomName"] == "consult-room-1"
        assert claims["email"] == "patient@example.com"
        assert claims["oneUse"] is True

    def test_invitation_token_outlives_invitation(self, token_service, clock):
        """exp is the invitation's expiry plus the grace window."""
        invitation = _invitation(clock, expires_at=clock() + timedelta(hours=2))

        claims = token_service.verify(token_service.issue_invitation_token(invitation))

        assert claims["exp"] == int((invitation.expires_at + INVITATION_TOKEN_GRACE).timestamp())

    def test_expired_invitation_token_still_verifies(self, token_service, clock):
        """A token for a lapsed invitation still identifies it during the grace window."""
        invitation = _invitation(clock, expires_at=clock() + timedelta(hours=1))
        token = token_service.issue_invitation_token(invitation)
        clock.advance(hours=3)

        claims = token_service.verify_invitation_token(token)

        assert claims["invitationId"] == invitation.id

        clock.advance(days=8)
        with pytest.raises(TokenExpiredError):
            token_service.verify_invitation_token(token)

    def test_waiting_room_token_is_not_one_use(self, token_service, clock):
        """Waiting-room invitations admit several visitors."""
        invitation = _invitation(clock, waiting_room_enabled=True, max_uses=None)

        claims = token_service.verify(token_service.issue_invitation_token(invitation))

        assert claims["oneUse"] is False
        assert "email" not in claims

    def test_room_join_token_is_not_an_invitation_token(self, token_service):
        """A room-join token cannot be replayed as an invitation."""
        token = token_service.issue_room_join_token("user-1", "consult-room-1")

        with pytest.raises(MalformedTokenError):
            token_service.verify_invitation_token(token)


class TestRoomJoinTokens:
    """Tests for room-join token issuance."""

    def test_grant_is_scoped_to_one_room(self, token_service):
        """The video grant names exactly the requested room."""
        token = token_service.issue_room_join_token("user-1", "consult-room-1", name="Pat")

        claims = token_service.verify(token)

        assert claims["sub"] == "user-1"
        assert claims["iss"] == "roomgate-test"
        assert claims["name"] == "Pat"
        assert claims["video"] == {
            "room": "consult-room-1",
            "roomJoin": True,
            "canPublish": True,
            "canSubscribe": True,
            "canPublishData": True,
        }

    def test_ttl_is_capped(self, token_service):
        """Room-join tokens never outlive the admission lifetime."""
        token = token_service.issue_room_join_token("user-1", "consult-room-1", ttl=timedelta(days=1))

        claims = token_service.verify(token)

        assert claims["exp"] - claims["iat"] == int(ADMISSION_TTL.total_seconds())
