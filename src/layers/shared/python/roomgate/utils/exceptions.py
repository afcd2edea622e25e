"""Custom exception classes for roomgate."""


class RoomgateError(Exception):
    """Base exception for all roomgate errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 500,
        details: dict | None = None,
    ):
        """Initialize RoomgateError.

        Args:
            message: Human-readable error message.
            error_code: Machine-readable error code.
            status_code: HTTP status code for API responses.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "INTERNAL_ERROR"
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API response."""
        result = {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class NotFoundError(RoomgateError):
    """Raised when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        message: str | None = None,
    ):
        """Initialize NotFoundError.

        Args:
            resource_type: Type of resource (e.g., "Invitation", "WaitingPatient").
            resource_id: ID of the resource that was not found.
            message: Optional custom message.
        """
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            message=message or f"{resource_type} with ID '{resource_id}' not found",
            error_code="NOT_FOUND",
            status_code=404,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class ValidationError(RoomgateError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str = "Validation failed",
        errors: list[dict] | None = None,
    ):
        """Initialize ValidationError.

        Args:
            message: Error message.
            errors: List of validation errors with field and message.
        """
        self.errors = errors or []
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=400,
            details={"errors": self.errors},
        )

    @classmethod
    def from_pydantic(cls, exc: Exception) -> "ValidationError":
        """Create ValidationError from Pydantic ValidationError."""
        errors = []
        if hasattr(exc, "errors"):
            for error in exc.errors():
                errors.append(
                    {
                        "field": ".".join(str(loc) for loc in error.get("loc", [])),
                        "message": error.get("msg", "Invalid value"),
                        "type": error.get("type", "unknown"),
                    }
                )
        return cls(message="Validation failed", errors=errors)


class InvalidConstraintError(ValidationError):
    """Raised when an invitation constraint is malformed at creation."""

    def __init__(self, field: str, message: str):
        """Initialize InvalidConstraintError.

        Args:
            field: Constraint field that failed validation.
            message: What is wrong with it.
        """
        super().__init__(
            message=f"Invalid constraint '{field}': {message}",
            errors=[{"field": field, "message": message}],
        )
        self.error_code = "INVALID_CONSTRAINT"
        self.field = field


class RoomMismatchError(RoomgateError):
    """Raised when an admission names a room other than the entry's room."""

    def __init__(self, message: str = "Room name mismatch"):
        """Initialize RoomMismatchError."""
        super().__init__(
            message=message,
            error_code="ROOM_MISMATCH",
            status_code=400,
        )


class UnauthorizedError(RoomgateError):
    """Raised when authentication fails."""

    def __init__(self, message: str = "Authentication required"):
        """Initialize UnauthorizedError."""
        super().__init__(
            message=message,
            error_code="UNAUTHORIZED",
            status_code=401,
        )


class TokenError(UnauthorizedError):
    """Raised when a signed token cannot be trusted.

    Every subclass presents the same public message so callers cannot tell a
    forged token from an expired one. The precise cause stays on ``reason``
    for logging.
    """

    reason = "invalid"

    def __init__(self, message: str = "Invalid or expired token"):
        """Initialize TokenError."""
        super().__init__(message)
        self.error_code = "TOKEN_INVALID"


class MalformedTokenError(TokenError):
    """Token is not a decodable JWT or lacks required claims."""

    reason = "malformed"


class SignatureInvalidError(TokenError):
    """Token signature or algorithm does not match the configuration."""

    reason = "signature_invalid"


class TokenExpiredError(TokenError):
    """Token is past its ``exp`` claim."""

    reason = "expired"


class ForbiddenError(RoomgateError):
    """Raised when user lacks permission for an action."""

    def __init__(
        self,
        message: str = "You don't have permission to perform this action",
        resource_type: str | None = None,
        action: str | None = None,
    ):
        """Initialize ForbiddenError."""
        details = {}
        if resource_type:
            details["resource_type"] = resource_type
        if action:
            details["action"] = action

        super().__init__(
            message=message,
            error_code="FORBIDDEN",
            status_code=403,
            details=details if details else None,
        )


class SecurityViolationError(RoomgateError):
    """Raised when one or more invitation checks fail for an access attempt."""

    def __init__(self, violations: list, message: str = "Access denied due to security violations"):
        """Initialize SecurityViolationError.

        Args:
            violations: SecurityViolation records that caused the denial.
            message: Error message.
        """
        self.violations = violations
        super().__init__(
            message=message,
            error_code="SECURITY_VIOLATION",
            status_code=403,
            details={
                "violations": [
                    {"type": v.type, "details": v.details} for v in violations
                ],
            },
        )


class InvitationExpiredError(RoomgateError):
    """Raised when an invitation is past its expiry."""

    def __init__(self, message: str = "Invitation has expired"):
        """Initialize InvitationExpiredError."""
        super().__init__(
            message=message,
            error_code="INVITATION_EXPIRED",
            status_code=403,
        )


class InvitationNotActiveError(RoomgateError):
    """Raised when an invitation is used or revoked."""

    def __init__(self, status: str, message: str | None = None):
        """Initialize InvitationNotActiveError.

        Args:
            status: Current invitation status.
            message: Optional custom message.
        """
        self.status = status
        super().__init__(
            message=message or f"Invitation is not active. Current status: {status}",
            error_code="INVITATION_NOT_ACTIVE",
            status_code=403,
            details={"status": status},
        )


class WaitingRoomFullError(RoomgateError):
    """Raised when a waiting room has reached its patient capacity."""

    def __init__(self, max_patients: int):
        """Initialize WaitingRoomFullError."""
        super().__init__(
            message=f"Waiting room is full. Maximum {max_patients} patients allowed.",
            error_code="WAITING_ROOM_FULL",
            status_code=403,
            details={"max_patients": max_patients},
        )


class ConflictError(RoomgateError):
    """Raised when there's a conflict (e.g., duplicate, optimistic lock failure)."""

    def __init__(
        self,
        message: str = "Resource conflict",
        conflict_type: str | None = None,
    ):
        """Initialize ConflictError."""
        super().__init__(
            message=message,
            error_code="CONFLICT",
            status_code=409,
            details={"conflict_type": conflict_type} if conflict_type else None,
        )


class AlreadyTerminalError(ConflictError):
    """Raised when transitioning an invitation that is no longer active."""

    def __init__(self, invitation_id: str, status: str | None = None):
        """Initialize AlreadyTerminalError."""
        self.invitation_id = invitation_id
        self.status = status
        message = (
            f"Invitation is already {status}" if status else "Invitation is no longer active"
        )
        super().__init__(message=message, conflict_type="already_terminal")
        self.error_code = "ALREADY_TERMINAL"


class InvalidStatusError(ConflictError):
    """Raised when acting on a waiting entry that is no longer waiting."""

    def __init__(self, status: str):
        """Initialize InvalidStatusError."""
        self.status = status
        super().__init__(
            message=f"Patient is no longer waiting. Current status: {status}",
            conflict_type="invalid_status",
        )
        self.error_code = "INVALID_STATUS"


class RateLimitError(RoomgateError):
    """Raised when rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Too many requests. Please try again later.",
        retry_after: int | None = None,
    ):
        """Initialize RateLimitError."""
        self.retry_after = retry_after
        details = {}
        if retry_after:
            details["retry_after_seconds"] = retry_after

        super().__init__(
            message=message,
            error_code="RATE_LIMIT_EXCEEDED",
            status_code=429,
            details=details if details else None,
        )


class InfrastructureUnavailableError(RoomgateError):
    """Raised when the document store or another dependency is down."""

    def __init__(
        self,
        service: str,
        message: str | None = None,
        original_error: str | None = None,
    ):
        """Initialize InfrastructureUnavailableError."""
        super().__init__(
            message=message or f"Service '{service}' is unavailable",
            error_code="INFRASTRUCTURE_UNAVAILABLE",
            status_code=503,
            details={
                "service": service,
                "original_error": original_error,
            },
        )


class ConfigurationError(RoomgateError):
    """Raised when required configuration is missing."""

    def __init__(self, setting: str):
        """Initialize ConfigurationError."""
        super().__init__(
            message=f"Required setting '{setting}' is not configured",
            error_code="CONFIGURATION_ERROR",
            status_code=500,
        )
