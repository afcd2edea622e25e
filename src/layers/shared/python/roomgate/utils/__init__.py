"""Utility functions and helpers."""

from roomgate.utils.responses import success, created, error, from_error, validation_error
from roomgate.utils.auth import get_auth_context, require_owner, AuthContext
from roomgate.utils.exceptions import (
    RoomgateError,
    NotFoundError,
    ValidationError,
    UnauthorizedError,
    ForbiddenError,
    ConflictError,
)
