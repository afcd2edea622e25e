"""Authentication context helpers."""

from dataclasses import dataclass
from typing import Any

import structlog

from roomgate.utils.exceptions import ForbiddenError

logger = structlog.get_logger()


@dataclass
class AuthContext:
    """Authentication context extracted from API Gateway event.

    The authorizer only vouches for the room owner's identity; ownership of
    individual invitations is checked against ``user_id``.
    """

    user_id: str
    email: str | None = None
    is_admin: bool = False

    def owns(self, owner_id: str | None) -> bool:
        """Check whether this user owns a resource.

        Args:
            owner_id: The owner recorded on the resource.

        Returns:
            True if the user owns it (or is an admin).
        """
        if self.is_admin:
            return True
        return bool(owner_id) and owner_id == self.user_id


def get_auth_context(event: dict[str, Any]) -> AuthContext:
    """Extract authentication context from API Gateway event.

    Args:
        event: API Gateway event dict.

    Returns:
        AuthContext with user information.

    Raises:
        ValueError: If authentication context cannot be extracted.
    """
    request_context = event.get("requestContext", {}) or {}
    authorizer = request_context.get("authorizer", {}) or {}

    # Lambda authorizer context is nested differently depending on payload
    # format version
    context = authorizer
    if "lambda" in authorizer:
        context = authorizer["lambda"]

    user_id = context.get("userId") or context.get("user_id") or context.get("sub")

    if not user_id:
        logger.warning("No user ID in auth context")
        raise ValueError("No user ID in authentication context")

    is_admin = context.get("isAdmin", False) or context.get("is_admin", False)
    if isinstance(is_admin, str):
        is_admin = is_admin.lower() == "true"

    return AuthContext(
        user_id=user_id,
        email=context.get("email"),
        is_admin=is_admin,
    )


def require_owner(auth: AuthContext, owner_id: str | None, resource_type: str) -> None:
    """Ensure the caller owns a resource.

    Args:
        auth: Authentication context.
        owner_id: Owner recorded on the resource.
        resource_type: Resource name for the error.

    Raises:
        ForbiddenError: If the caller is not the owner.
    """
    if not auth.owns(owner_id):
        logger.warning(
            "Ownership check failed",
            user_id=auth.user_id,
            resource_type=resource_type,
        )
        raise ForbiddenError(
            message=f"You don't have access to this {resource_type.lower()}",
            resource_type=resource_type,
            action="access",
        )
