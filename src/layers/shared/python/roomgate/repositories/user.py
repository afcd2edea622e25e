"""User profile repository for DynamoDB operations."""

from roomgate.models.identity import UserProfile
from roomgate.repositories.base import BaseRepository


class UserRepository(BaseRepository[UserProfile]):
    """Repository for known user identities."""

    def __init__(self, table_name: str | None = None):
        """Initialize user repository."""
        super().__init__(UserProfile, table_name)

    def find_by_email(self, email: str) -> list[UserProfile]:
        """Find users whose email matches exactly, ignoring case.

        Args:
            email: Email address to look up.

        Returns:
            Matching profiles (normally zero or one).
        """
        normalized = email.strip().lower()
        if not normalized:
            return []
        users, _ = self.query(
            pk=f"USER_EMAIL#{normalized}",
            index_name="GSI1",
        )
        return users

    def create_user(self, user: UserProfile) -> UserProfile:
        """Create a new user profile."""
        return self.create(user)
