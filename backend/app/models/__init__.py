"""Follow Loop Engine - Data Models"""
from .db_models import (
    # Enums
    InteractionStatus, ActorType, ParticipantFilter, UserRole,
    # Tables
    OrganizationDB, UserDB, FollowLoopDB, ParticipantDB, InteractionDB, InteractionEventDB,
)

__all__ = [
    "InteractionStatus", "ActorType", "ParticipantFilter", "UserRole",
    "OrganizationDB", "UserDB", "FollowLoopDB", "ParticipantDB", "InteractionDB", "InteractionEventDB",
]
