"""Layered visitor identity resolution.

Strategies are tried in order and the first one that yields an identity
wins. The result records which strategy produced it and how much to trust it.
"""

from typing import Callable

import structlog

from roomgate.models.identity import (
    IdentityCandidate,
    IdentitySource,
    ResolvedIdentity,
    RoomSession,
)
from roomgate.repositories.session import SessionRepository
from roomgate.repositories.user import UserRepository

logger = structlog.get_logger()

Strategy = Callable[[IdentityCandidate], ResolvedIdentity | None]


class IdentityResolver:
    """Resolve a visitor to the best available canonical identity."""

    def __init__(
        self,
        user_repo: UserRepository | None = None,
        session_repo: SessionRepository | None = None,
    ):
        self.user_repo = user_repo or UserRepository()
        self.session_repo = session_repo or SessionRepository()
        self.strategies: list[Strategy] = [
            self._from_declared_user_id,
            self._from_declared_email,
            self._from_invitation_email,
        ]

    def resolve(self, candidate: IdentityCandidate) -> ResolvedIdentity:
        """Run the strategies in order, falling back to anonymous."""
        for strategy in self.strategies:
            identity = strategy(candidate)
            if identity is not None:
                logger.debug(
                    "Identity resolved",
                    source=identity.source.value,
                    confidence=identity.confidence,
                )
                return identity
        return ResolvedIdentity.anonymous(email=candidate.declared_email or candidate.invitation_email)

    def record(
        self,
        identity: ResolvedIdentity,
        room_name: str,
        owner_id: str | None = None,
        patient_name: str | None = None,
    ) -> RoomSession:
        """Persist a resolved identity against the room session.

        An anonymous identity never replaces one already stored for the
        room.
        """
        return self.session_repo.record_participant(
            room_name,
            identity,
            email=identity.email,
            patient_name=patient_name,
            owner_id=owner_id,
        )

    def _from_declared_user_id(self, candidate: IdentityCandidate) -> ResolvedIdentity | None:
        user_id = (candidate.declared_user_id or "").strip()
        # The owner's own id is never a valid visitor identity
        if not user_id or user_id == candidate.owner_id:
            return None
        return ResolvedIdentity(
            source=IdentitySource.DECLARED_USER_ID,
            id=user_id,
            confidence=1.0,
            email=candidate.declared_email or candidate.invitation_email,
        )

    def _lookup_email(
        self,
        email: str | None,
        source: IdentitySource,
        confidence: float,
    ) -> ResolvedIdentity | None:
        if not email or not email.strip():
            return None
        users = self.user_repo.find_by_email(email)
        if len(users) != 1:
            if len(users) > 1:
                logger.warning("Ambiguous email lookup", source=source.value, matches=len(users))
            return None
        return ResolvedIdentity(
            source=source,
            id=users[0].id,
            confidence=confidence,
            email=users[0].email,
        )

    def _from_declared_email(self, candidate: IdentityCandidate) -> ResolvedIdentity | None:
        return self._lookup_email(candidate.declared_email, IdentitySource.DECLARED_EMAIL, 0.8)

    def _from_invitation_email(self, candidate: IdentityCandidate) -> ResolvedIdentity | None:
        return self._lookup_email(candidate.invitation_email, IdentitySource.INVITATION_EMAIL, 0.6)
