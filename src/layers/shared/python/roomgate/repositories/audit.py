"""Audit trail repositories for DynamoDB operations.

Attempts and violations are separate immutable items under the invitation's
partition, so concurrent appends never overwrite one another.
"""

from roomgate.models.audit import AccessAttempt, SecurityViolation
from roomgate.repositories.base import BaseRepository


class AccessAttemptRepository(BaseRepository[AccessAttempt]):
    """Repository for AccessAttempt records."""

    def __init__(self, table_name: str | None = None):
        """Initialize access attempt repository."""
        super().__init__(AccessAttempt, table_name)

    def append(self, attempt: AccessAttempt) -> AccessAttempt:
        """Append an attempt (conditional put, never overwrites)."""
        return self.create(attempt)

    def list_by_invitation(self, invitation_id: str) -> list[AccessAttempt]:
        """List attempts for an invitation, oldest first.

        Args:
            invitation_id: The invitation ID.

        Returns:
            Attempts in timestamp order.
        """
        return self.query_all(
            pk=f"INVITE#{invitation_id}",
            sk_begins_with="ATTEMPT#",
        )


class SecurityViolationRepository(BaseRepository[SecurityViolation]):
    """Repository for SecurityViolation records."""

    def __init__(self, table_name: str | None = None):
        """Initialize security violation repository."""
        super().__init__(SecurityViolation, table_name)

    def append(self, violation: SecurityViolation) -> SecurityViolation:
        """Append a violation (conditional put, never overwrites)."""
        return self.create(violation)

    def list_by_invitation(self, invitation_id: str) -> list[SecurityViolation]:
        """List violations for an invitation, oldest first."""
        return self.query_all(
            pk=f"INVITE#{invitation_id}",
            sk_begins_with="VIOLATION#",
        )
