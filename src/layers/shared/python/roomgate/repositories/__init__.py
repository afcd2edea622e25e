"""Repository classes for DynamoDB data access."""

from roomgate.repositories.audit import AccessAttemptRepository, SecurityViolationRepository
from roomgate.repositories.base import BaseRepository
from roomgate.repositories.invitation import InvitationRepository
from roomgate.repositories.session import SessionRepository
from roomgate.repositories.user import UserRepository
from roomgate.repositories.waiting_patient import WaitingPatientRepository

__all__ = [
    "AccessAttemptRepository",
    "BaseRepository",
    "InvitationRepository",
    "SecurityViolationRepository",
    "SessionRepository",
    "UserRepository",
    "WaitingPatientRepository",
]
