"""Waiting room API handler."""

import json
from typing import Any

import structlog
from pydantic import BaseModel as PydanticBaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from roomgate.services.invitation_service import InvitationService
from roomgate.services.waiting_room import WaitingRoomEngine, WaitingScope
from roomgate.utils.auth import AuthContext, get_auth_context, require_owner
from roomgate.utils.exceptions import RateLimitError, RoomgateError
from roomgate.utils.rate_limiter import POLL, check_preset, get_client_ip
from roomgate.utils.responses import error, from_error, success, unauthorized, validation_error

logger = structlog.get_logger()


class AdmitRequest(PydanticBaseModel):
    """Request to admit a waiting patient."""

    room_name: str = Field(..., alias="roomName", min_length=1)

    model_config = {"populate_by_name": True}


class AdmissionPollRequest(PydanticBaseModel):
    """Visitor's admission status check."""

    token: str = Field(..., min_length=1)
    email: str | None = None
    waiting_patient_id: str | None = Field(None, alias="waitingPatientId")

    model_config = {"populate_by_name": True}


class LeaveRequest(PydanticBaseModel):
    """Visitor leaving the waiting room."""

    token: str = Field(..., min_length=1)


def handler(event: dict[str, Any], context: Any) -> dict:
    """Handle waiting room API requests.

    Routes:
        GET  /waiting-room?scope=owner|invitation|room   - List waiting patients (owner)
        POST /waiting-room/{waiting_patient_id}/admit    - Admit patient (owner)
        POST /waiting-room/{waiting_patient_id}/reject   - Reject patient (owner)
        POST /waiting-room/check-admission               - Poll admission (public)
        POST /waiting-room/{waiting_patient_id}/leave    - Leave (invitation token holder)
    """
    try:
        http_method = event.get("httpMethod", "").upper()
        path = event.get("path", "")
        path_params = event.get("pathParameters", {}) or {}
        waiting_patient_id = path_params.get("waiting_patient_id")

        service = InvitationService()
        engine = service.waiting_room

        # Public routes (authorized by the invitation token)
        if path.endswith("/check-admission") and http_method == "POST":
            return check_admission(service, engine, event)
        if path.endswith("/leave") and waiting_patient_id and http_method == "POST":
            return leave_waiting_room(service, engine, waiting_patient_id, event)

        try:
            auth = get_auth_context(event)
        except ValueError:
            return unauthorized()

        if path.endswith("/admit") and waiting_patient_id and http_method == "POST":
            return admit_patient(engine, auth, waiting_patient_id, event)
        elif path.endswith("/reject") and waiting_patient_id and http_method == "POST":
            return reject_patient(engine, auth, waiting_patient_id)
        elif path.rstrip("/").endswith("/waiting-room") and http_method == "GET":
            return list_waiting(service, engine, auth, event)
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
        logger.exception("Waiting room handler error", error=str(e))
        return error("Internal server error", 500)


def _parse_body(event: dict) -> dict:
    return json.loads(event.get("body") or "{}")


def list_waiting(
    service: InvitationService,
    engine: WaitingRoomEngine,
    auth: AuthContext,
    event: dict,
) -> dict:
    """List the caller's waiting patients, oldest first."""
    query_params = event.get("queryStringParameters", {}) or {}
    scope_name = query_params.get("scope", "owner")

    if scope_name == "owner":
        patients = engine.list_waiting(WaitingScope.by_owner(auth.user_id))
    elif scope_name == "invitation":
        invitation_id = query_params.get("invitationId")
        if not invitation_id:
            return error("invitationId is required for scope=invitation", 400)
        invitation = service.invitation_repo.get_by_id_or_raise(invitation_id)
        require_owner(auth, invitation.owner_id, "Invitation")
        patients = engine.list_waiting(WaitingScope.by_invitation(invitation_id))
    elif scope_name == "room":
        room_name = query_params.get("roomName")
        if not room_name:
            return error("roomName is required for scope=room", 400)
        # A room can hold other owners' invitations; only show the caller's
        patients = [
            p for p in engine.list_waiting(WaitingScope.by_room(room_name))
            if auth.owns(p.doctor_user_id)
        ]
    else:
        return error("scope must be one of owner, invitation, room", 400)

    return success({
        "items": [p.model_dump(mode="json") for p in patients],
        "count": len(patients),
    })


def admit_patient(
    engine: WaitingRoomEngine,
    auth: AuthContext,
    waiting_patient_id: str,
    event: dict,
) -> dict:
    """Admit a waiting patient and return their room-join token."""
    request = AdmitRequest.model_validate(_parse_body(event))

    patient = engine.waiting_repo.get_by_id_or_raise(waiting_patient_id)
    require_owner(auth, patient.doctor_user_id, "WaitingPatient")

    admitted, token = engine.admit(waiting_patient_id, request.room_name)
    return success({
        "waiting_patient": admitted.model_dump(mode="json"),
        "room_join_token": token,
    })


def reject_patient(engine: WaitingRoomEngine, auth: AuthContext, waiting_patient_id: str) -> dict:
    """Reject a waiting patient. Rejecting twice is not an error."""
    patient = engine.waiting_repo.get_by_id_or_raise(waiting_patient_id)
    require_owner(auth, patient.doctor_user_id, "WaitingPatient")

    rejected = engine.reject(waiting_patient_id)
    return success({"waiting_patient": rejected.model_dump(mode="json")})


def check_admission(service: InvitationService, engine: WaitingRoomEngine, event: dict) -> dict:
    """Report whether the visitor holding an invitation token has been admitted."""
    limit = check_preset(get_client_ip(event), POLL)
    if not limit.allowed:
        raise RateLimitError(retry_after=limit.retry_after or 60)

    request = AdmissionPollRequest.model_validate(_parse_body(event))
    claims = service.verify_invitation_token(request.token)

    status = engine.poll_admission(
        claims["invitationId"],
        email_hint=request.email or claims.get("email"),
        waiting_patient_id=request.waiting_patient_id,
    )
    return success(status)


def leave_waiting_room(
    service: InvitationService,
    engine: WaitingRoomEngine,
    waiting_patient_id: str,
    event: dict,
) -> dict:
    """Withdraw the caller's own waiting entry."""
    request = LeaveRequest.model_validate(_parse_body(event))
    claims = service.verify_invitation_token(request.token)

    patient = engine.leave(waiting_patient_id, claims["invitationId"])
    return success({"waiting_patient": patient.model_dump(mode="json")})
