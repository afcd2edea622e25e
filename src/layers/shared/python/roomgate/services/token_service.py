"""Signed token issuance and verification.

Two token kinds are signed with the same secret:

- invitation tokens, handed out with the invite link and presented back to
  the validation endpoint;
- room-join tokens, carrying the video grant the transport layer accepts.

Holding an invitation token never grants room access by itself; a room-join
token is only minted after validation (or admission) succeeds.
"""

import os
from datetime import datetime, timedelta
from typing import Any, Callable

import jwt
import structlog

from roomgate.models.base import utc_now
from roomgate.models.invitation import Invitation
from roomgate.utils.exceptions import (
    ConfigurationError,
    MalformedTokenError,
    SignatureInvalidError,
    TokenExpiredError,
)

logger = structlog.get_logger()

INVITATION_TOKEN_TYPE = "invite"

DIRECT_JOIN_TTL = timedelta(hours=1)
ADMISSION_TTL = timedelta(hours=2)
LOBBY_TTL = timedelta(hours=1)
MAX_ROOM_JOIN_TTL = timedelta(hours=2)

# Invitation tokens outlive their invitation so a late visitor is still
# identified and the expiry denial lands in the audit trail
INVITATION_TOKEN_GRACE = timedelta(days=7)


class TokenService:
    """Issue and verify HMAC-signed JWTs."""

    def __init__(
        self,
        secret: str | None = None,
        issuer: str | None = None,
        algorithm: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize token service.

        Args:
            secret: Signing secret. Defaults to ROOM_TOKEN_SECRET env var.
            issuer: ``iss`` for room-join tokens. Defaults to ROOM_TOKEN_ISSUER.
            algorithm: Signing algorithm. Defaults to ROOM_TOKEN_ALGORITHM or HS256.
            clock: Source of the issue time.

        Raises:
            ConfigurationError: If no secret is configured.
        """
        self.secret = secret or os.environ.get("ROOM_TOKEN_SECRET")
        if not self.secret:
            raise ConfigurationError("ROOM_TOKEN_SECRET")
        self.issuer = issuer or os.environ.get("ROOM_TOKEN_ISSUER", "roomgate")
        self.algorithm = algorithm or os.environ.get("ROOM_TOKEN_ALGORITHM", "HS256")
        self.clock = clock

    def issue(self, claims: dict[str, Any], ttl: timedelta) -> str:
        """Sign claims with ``iat`` and ``exp = iat + ttl`` added.

        Args:
            claims: Payload claims.
            ttl: Token lifetime.

        Returns:
            Encoded JWT.
        """
        now = self.clock()
        payload = {
            **claims,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> dict[str, Any]:
        """Verify a token's signature, algorithm and expiry.

        Expiry is judged against the service clock, the same clock that
        stamped ``iat`` and ``exp`` on issue.

        Args:
            token: Encoded JWT.

        Returns:
            The decoded claims.

        Raises:
            MalformedTokenError: If the token cannot be decoded.
            SignatureInvalidError: If the signature or algorithm is wrong.
            TokenExpiredError: If the token is past ``exp``.
        """
        if not token or not isinstance(token, str):
            raise MalformedTokenError()

        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError:
            logger.warning("Token rejected", reason=MalformedTokenError.reason)
            raise MalformedTokenError()

        # alg=none and any algorithm other than the configured one are refused
        if header.get("alg") != self.algorithm:
            logger.warning("Token rejected", reason=SignatureInvalidError.reason, alg=header.get("alg"))
            raise SignatureInvalidError()

        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidSignatureError:
            logger.warning("Token rejected", reason=SignatureInvalidError.reason)
            raise SignatureInvalidError()
        except jwt.InvalidTokenError as e:
            logger.warning("Token rejected", reason=MalformedTokenError.reason, error=str(e))
            raise MalformedTokenError()

        exp = claims["exp"]
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            logger.warning("Token rejected", reason=MalformedTokenError.reason, error="exp is not a timestamp")
            raise MalformedTokenError()
        if self.clock().timestamp() >= exp:
            logger.warning("Token rejected", reason=TokenExpiredError.reason)
            raise TokenExpiredError()
        return claims

    def issue_invitation_token(self, invitation: Invitation) -> str:
        """Issue the token embedded in an invite link.

        The token expires a grace window after the invitation. The
        invitation record decides whether access is still allowed.
        """
        claims: dict[str, Any] = {
            "typ": INVITATION_TOKEN_TYPE,
            "invitationId": invitation.id,
            "roomName": invitation.room_name,
            "oneUse": not invitation.waiting_room_enabled,
        }
        if invitation.constraints.email_allowed:
            claims["email"] = invitation.constraints.email_allowed

        ttl = invitation.expires_at + INVITATION_TOKEN_GRACE - self.clock()
        return self.issue(claims, max(ttl, timedelta(seconds=1)))

    def verify_invitation_token(self, token: str) -> dict[str, Any]:
        """Verify a token and check that it is an invitation token.

        Raises:
            TokenError: If the token is invalid or of another kind.
        """
        claims = self.verify(token)
        if claims.get("typ") != INVITATION_TOKEN_TYPE or not claims.get("invitationId"):
            logger.warning("Token rejected", reason="wrong_type")
            raise MalformedTokenError()
        return claims

    def issue_room_join_token(
        self,
        identity: str,
        room: str,
        ttl: timedelta = DIRECT_JOIN_TTL,
        name: str | None = None,
    ) -> str:
        """Mint a room-join token scoped to exactly one room.

        Args:
            identity: Participant identity (``sub``).
            room: The only room the grant is valid for.
            ttl: Lifetime, capped at two hours.
            name: Optional display name.

        Returns:
            Encoded JWT with a video grant.
        """
        claims: dict[str, Any] = {
            "sub": identity,
            "iss": self.issuer,
            "video": {
                "room": room,
                "roomJoin": True,
                "canPublish": True,
                "canSubscribe": True,
                "canPublishData": True,
            },
        }
        if name:
            claims["name"] = name
        return self.issue(claims, min(ttl, MAX_ROOM_JOIN_TTL))
