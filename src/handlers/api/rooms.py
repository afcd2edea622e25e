"""Rooms API handler."""

import json
from typing import Any

import structlog
from pydantic import BaseModel as PydanticBaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from roomgate.services.invitation_service import InvitationService
from roomgate.utils.auth import AuthContext, get_auth_context
from roomgate.utils.exceptions import RoomgateError
from roomgate.utils.responses import error, from_error, success, unauthorized, validation_error

logger = structlog.get_logger()


class OwnerTokenRequest(PydanticBaseModel):
    """Optional display name for the owner's participant."""

    participant_name: str | None = Field(None, alias="participantName", max_length=100)

    model_config = {"populate_by_name": True}


def handler(event: dict[str, Any], context: Any) -> dict:
    """Handle room API requests.

    Routes:
        POST /rooms/{room_name}/token - Room-join token for the room owner
    """
    try:
        http_method = event.get("httpMethod", "").upper()
        path = event.get("path", "")
        path_params = event.get("pathParameters", {}) or {}
        room_name = path_params.get("room_name")

        try:
            auth = get_auth_context(event)
        except ValueError:
            return unauthorized()

        if path.endswith("/token") and room_name and http_method == "POST":
            return issue_owner_token(InvitationService(), auth, room_name, event)
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
        logger.exception("Rooms handler error", error=str(e))
        return error("Internal server error", 500)


def issue_owner_token(service: InvitationService, auth: AuthContext, room_name: str, event: dict) -> dict:
    """Mint a room-join token so the owner can enter their own room."""
    request = OwnerTokenRequest.model_validate(json.loads(event.get("body") or "{}"))
    result = service.issue_owner_room_token(auth.user_id, room_name, participant_name=request.participant_name)
    return success(result)
