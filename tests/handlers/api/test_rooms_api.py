"""Tests for the rooms API handler."""

import json

import jwt

from conftest import OTHER_OWNER_ID, OWNER_ID, ROOM_NAME


def _token_event(api_gateway_event, room: str = ROOM_NAME, user_id: str | None = OWNER_ID, body: dict | None = None):
    return api_gateway_event(
        method="POST",
        path=f"/rooms/{room}/token",
        path_params={"room_name": room},
        body=body,
        user_id=user_id,
    )


def _create_invitation(api_gateway_event, user_id: str = OWNER_ID) -> None:
    from api.invitations import handler

    response = handler(
        api_gateway_event(method="POST", path="/invitations", body={"roomName": ROOM_NAME}, user_id=user_id),
        None,
    )
    assert response["statusCode"] == 201, response["body"]


class TestOwnerRoomToken:
    """Tests for POST /rooms/{room_name}/token."""

    def test_owner_receives_room_token(self, dynamodb_table, api_gateway_event):
        from api.rooms import handler

        _create_invitation(api_gateway_event)

        response = handler(_token_event(api_gateway_event, body={"participantName": "Dr. Lee"}), None)

        assert response["statusCode"] == 200
        data = json.loads(response["body"])
        assert data["room_name"] == ROOM_NAME
        claims = jwt.decode(data["room_join_token"], options={"verify_signature": False})
        assert claims["sub"] == OWNER_ID
        assert claims["name"] == "Dr. Lee"
        assert claims["video"]["room"] == ROOM_NAME

    def test_other_owner_is_forbidden(self, dynamodb_table, api_gateway_event):
        from api.rooms import handler

        _create_invitation(api_gateway_event)

        response = handler(_token_event(api_gateway_event, user_id=OTHER_OWNER_ID), None)

        assert response["statusCode"] == 403

    def test_unknown_room(self, dynamodb_table, api_gateway_event):
        from api.rooms import handler

        response = handler(_token_event(api_gateway_event, room="no-such-room"), None)

        assert response["statusCode"] == 404

    def test_requires_auth(self, dynamodb_table, api_gateway_event):
        from api.rooms import handler

        response = handler(_token_event(api_gateway_event, user_id=None), None)

        assert response["statusCode"] == 401

    def test_unknown_route(self, dynamodb_table, api_gateway_event):
        from api.rooms import handler

        response = handler(api_gateway_event(method="GET", path=f"/rooms/{ROOM_NAME}"), None)

        assert response["statusCode"] == 404
