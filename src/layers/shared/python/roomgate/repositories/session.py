"""Room session repository for DynamoDB operations."""

import structlog

from roomgate.models.base import utc_now
from roomgate.models.identity import ResolvedIdentity, RoomSession
from roomgate.repositories.base import BaseRepository

logger = structlog.get_logger()


class SessionRepository(BaseRepository[RoomSession]):
    """Repository for per-room session records."""

    def __init__(self, table_name: str | None = None):
        """Initialize session repository."""
        super().__init__(RoomSession, table_name)

    def get_by_room(self, room_name: str) -> RoomSession | None:
        """Get the session record for a room."""
        return self.get(pk=f"ROOM#{room_name}", sk="SESSION")

    def record_participant(
        self,
        room_name: str,
        identity: ResolvedIdentity,
        email: str | None = None,
        patient_name: str | None = None,
        owner_id: str | None = None,
    ) -> RoomSession:
        """Persist a resolved visitor identity against the room session.

        A known identity overwrites the stored one. An anonymous identity
        only fills an empty slot via ``if_not_exists``, so it can never demote
        a known id. Email and name follow the same rule independently: an
        absent value never clears a stored one.

        Args:
            room_name: Room the visitor is joining.
            identity: Result of the identity resolver.
            email: Visitor email, if known.
            patient_name: Visitor display name, if given.
            owner_id: Room owner.

        Returns:
            The session after the write.
        """
        now = utc_now().isoformat()
        assignments = [
            "room_name = :room",
            "#id = if_not_exists(#id, :room)",
            "created_at = if_not_exists(created_at, :now)",
            "updated_at = :now",
            "version = if_not_exists(version, :one)",
        ]
        values: dict[str, object] = {":room": room_name, ":now": now, ":one": 1}

        if identity.is_anonymous:
            assignments.append("patient_user_id = if_not_exists(patient_user_id, :user_id)")
        else:
            assignments.append("patient_user_id = :user_id")
        values[":user_id"] = identity.id

        if email:
            assignments.append("patient_email = :email")
            values[":email"] = email.strip().lower()
        if patient_name:
            assignments.append("patient_name = :name")
            values[":name"] = patient_name
        if owner_id:
            assignments.append("owner_id = if_not_exists(owner_id, :owner)")
            values[":owner"] = owner_id

        session = self.update_attributes(
            pk=f"ROOM#{room_name}",
            sk="SESSION",
            update_expression="SET " + ", ".join(assignments),
            expression_values=values,
            expression_names={"#id": "id"},
        )
        logger.info(
            "Session participant recorded",
            room_name=room_name,
            identity_source=identity.source.value,
            stored_user_id=session.patient_user_id,
        )
        return session
