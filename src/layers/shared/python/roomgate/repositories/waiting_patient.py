"""Waiting patient repository for DynamoDB operations."""

from datetime import datetime

import structlog

from roomgate.models.base import utc_now
from roomgate.models.waiting_patient import WaitingPatient, WaitingStatus
from roomgate.repositories.base import BaseRepository
from roomgate.utils.exceptions import ConflictError, InvalidStatusError

logger = structlog.get_logger()

_STATUS_NAMES = {"#status": "status"}


class WaitingPatientRepository(BaseRepository[WaitingPatient]):
    """Repository for WaitingPatient entities."""

    def __init__(self, table_name: str | None = None):
        """Initialize waiting patient repository."""
        super().__init__(WaitingPatient, table_name)

    def get_by_id(self, waiting_patient_id: str) -> WaitingPatient | None:
        """Get waiting entry by ID."""
        return self.get(pk=f"WAITING#{waiting_patient_id}", sk="META")

    def get_by_id_or_raise(self, waiting_patient_id: str) -> WaitingPatient:
        """Get waiting entry by ID or raise NotFoundError."""
        return self.get_or_raise(
            pk=f"WAITING#{waiting_patient_id}",
            sk="META",
            resource_type="WaitingPatient",
            resource_id=waiting_patient_id,
        )

    def create_entry(self, patient: WaitingPatient) -> WaitingPatient:
        """Persist a new waiting entry."""
        self.create(patient)
        logger.info(
            "Patient joined waiting room",
            waiting_patient_id=patient.id,
            invitation_id=patient.invitation_id,
        )
        return patient

    def list_by_invitation(
        self,
        invitation_id: str,
        status: WaitingStatus | None = None,
    ) -> list[WaitingPatient]:
        """List entries for an invitation, oldest first.

        Args:
            invitation_id: The invitation ID.
            status: Optional status filter.
        """
        kwargs: dict = {}
        if status:
            kwargs = {
                "filter_expression": "#status = :status",
                "expression_values": {":status": status.value},
                "expression_names": _STATUS_NAMES,
            }
        return self.query_all(
            pk=f"INVITE#{invitation_id}#WAITING",
            index_name="GSI1",
            **kwargs,
        )

    def list_waiting_by_owner(self, doctor_user_id: str) -> list[WaitingPatient]:
        """List an owner's waiting entries across all invitations, oldest first."""
        return self.query_all(
            pk=f"OWNER#{doctor_user_id}#WAITING",
            index_name="GSI2",
            filter_expression="#status = :status",
            expression_values={":status": WaitingStatus.WAITING.value},
            expression_names=_STATUS_NAMES,
        )

    def transition(
        self,
        waiting_patient_id: str,
        status: WaitingStatus,
        at: datetime | None = None,
    ) -> WaitingPatient:
        """Move a waiting entry to a terminal status.

        The update is conditioned on ``status = waiting``; of two concurrent
        transitions exactly one succeeds.

        Raises:
            NotFoundError: If the entry does not exist.
            InvalidStatusError: If the entry is no longer waiting.
        """
        stamp_field = "admitted_at" if status == WaitingStatus.ADMITTED else "left_at"
        now = (at or utc_now()).isoformat()
        try:
            patient = self.update_attributes(
                pk=f"WAITING#{waiting_patient_id}",
                sk="META",
                update_expression=(
                    f"SET #status = :new_status, {stamp_field} = :at, "
                    "updated_at = :at, version = version + :one"
                ),
                expression_values={
                    ":new_status": status.value,
                    ":waiting": WaitingStatus.WAITING.value,
                    ":at": now,
                    ":one": 1,
                },
                expression_names=_STATUS_NAMES,
                condition_expression="#status = :waiting",
            )
        except ConflictError:
            current = self.get_by_id_or_raise(waiting_patient_id)
            raise InvalidStatusError(current.status)

        logger.info(
            "Waiting entry status changed",
            waiting_patient_id=waiting_patient_id,
            status=status.value,
        )
        return patient

    def touch(self, waiting_patient_id: str, at: datetime | None = None) -> None:
        """Stamp metadata.last_accessed_at on a re-validation."""
        self.update_attributes(
            pk=f"WAITING#{waiting_patient_id}",
            sk="META",
            update_expression="SET #metadata.last_accessed_at = :at",
            expression_values={":at": (at or utc_now()).isoformat()},
            expression_names={"#metadata": "metadata"},
            condition_expression="attribute_exists(PK)",
        )
