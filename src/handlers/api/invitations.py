"""Invitations API handler."""

import json
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from roomgate.models.access import ClientContext, ValidateInvitationRequest
from roomgate.models.invitation import CreateInvitationRequest
from roomgate.services.invitation_service import InvitationService
from roomgate.utils.auth import AuthContext, get_auth_context
from roomgate.utils.exceptions import RateLimitError, RoomgateError
from roomgate.utils.rate_limiter import CREATE, VALIDATE, check_preset, get_source_ip, get_user_agent
from roomgate.utils.responses import (
    created,
    error,
    from_error,
    success,
    unauthorized,
    validation_error,
)

logger = structlog.get_logger()


def handler(event: dict[str, Any], context: Any) -> dict:
    """Handle invitation API requests.

    Routes:
        POST /invitations                          - Create invitation (owner)
        GET  /invitations/link?invitationId=&roomName=  - Get invite link (owner)
        POST /invitations/validate                 - Validate access (public)
        POST /invitations/{invitation_id}/revoke   - Revoke invitation (owner)
        GET  /invitations/{invitation_id}/audit    - Audit trail (owner)
    """
    try:
        http_method = event.get("httpMethod", "").upper()
        path = event.get("path", "")
        path_params = event.get("pathParameters", {}) or {}
        invitation_id = path_params.get("invitation_id")

        service = InvitationService()

        # Public route
        if path.endswith("/invitations/validate") and http_method == "POST":
            return validate_invitation(service, event)

        try:
            auth = get_auth_context(event)
        except ValueError:
            return unauthorized()

        if path.endswith("/invitations/link") and http_method == "GET":
            return get_invitation_link(service, auth, event)
        elif path.endswith("/revoke") and invitation_id and http_method == "POST":
            return revoke_invitation(service, auth, invitation_id)
        elif path.endswith("/audit") and invitation_id and http_method == "GET":
            return get_audit_trail(service, auth, invitation_id)
        elif path.rstrip("/").endswith("/invitations") and http_method == "POST":
            return create_invitation(service, auth, event)
        else:
            return error("Not found", 404)

    except json.JSONDecodeError:
        return error("Invalid JSON body", 400)
    except PydanticValidationError as e:
        return validation_error(
            [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()]
        )
    except RoomgateError as e:
        return from_error(e)
    except Exception as e:
        logger.exception("Invitations handler error", error=str(e))
        return error("Internal server error", 500)


def _parse_body(event: dict) -> dict:
    return json.loads(event.get("body") or "{}")


def create_invitation(service: InvitationService, auth: AuthContext, event: dict) -> dict:
    """Create an invitation for a room the caller owns."""
    limit = check_preset(auth.user_id, CREATE)
    if not limit.allowed:
        raise RateLimitError(retry_after=limit.retry_after or 60)

    request = CreateInvitationRequest.model_validate(_parse_body(event))
    result = service.create_invitation(auth.user_id, request)

    return created(result)


def get_invitation_link(service: InvitationService, auth: AuthContext, event: dict) -> dict:
    """Re-issue the invite link, by invitation id or by room."""
    query_params = event.get("queryStringParameters", {}) or {}
    link = service.get_invitation_link(
        invitation_id=query_params.get("invitationId"),
        room_name=query_params.get("roomName"),
        owner_id=auth.user_id,
    )
    return success(link)


def validate_invitation(service: InvitationService, event: dict) -> dict:
    """Validate an invitation token presented by a visitor.

    Rate limited per client IP. On success the caller receives a room-join
    token (or a lobby token and waiting entry for waiting-room invitations).
    The IP allowlist and audit trail see the API Gateway source IP, never
    a forwarding header.
    """
    client_ip = get_source_ip(event)
    limit = check_preset(client_ip, VALIDATE)
    if not limit.allowed:
        raise RateLimitError(retry_after=limit.retry_after or 60)

    request = ValidateInvitationRequest.model_validate(_parse_body(event))

    user_agent = get_user_agent(event)
    if not user_agent and request.device_fingerprint:
        user_agent = request.device_fingerprint.user_agent

    client = ClientContext(
        client_ip=client_ip,
        user_agent=user_agent,
        device_fingerprint=request.device_fingerprint,
        declared_user_id=request.user_id,
        declared_email=request.user_email,
        patient_name=request.patient_name,
    )
    granted = service.validate_invitation_access(request.token, client)
    return success(granted)


def revoke_invitation(service: InvitationService, auth: AuthContext, invitation_id: str) -> dict:
    """Revoke an invitation."""
    invitation = service.revoke_invitation(invitation_id, owner_id=auth.user_id)
    logger.info("Invitation revoked", invitation_id=invitation_id)
    return success(invitation.model_dump(mode="json"))


def get_audit_trail(service: InvitationService, auth: AuthContext, invitation_id: str) -> dict:
    """Return the invitation's access attempts and violations."""
    trail = service.get_audit_trail(invitation_id, owner_id=auth.user_id)
    return success(trail)
