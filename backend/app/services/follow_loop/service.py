"""
Follow Loop Service

Wires the registry, selector, ledger and validation engine onto one
database session for the routers. Join goes through the eligibility gate
and the profile provider before it reaches the registry.
"""
from typing import Optional
import logging

from sqlalchemy.orm import Session

from ...models.db_models import ParticipantDB
from .eligibility import (
    EligibilityGate, EligibilityProvider, ProfileProvider,
    UserProfileProvider, UserStatsEligibilityProvider,
)
from .ledger import InteractionLedger
from .registry import ParticipantRegistry, participant_key
from .selector import CandidateSelector
from .validation import ValidationEngine

logger = logging.getLogger(__name__)


class FollowLoopService:
    """Entry point used by the API layer."""

    def __init__(
        self,
        db: Session,
        profile_provider: Optional[ProfileProvider] = None,
        eligibility_provider: Optional[EligibilityProvider] = None,
        selector: Optional[CandidateSelector] = None,
    ):
        self.db = db
        self.registry = ParticipantRegistry(db)
        self.ledger = InteractionLedger(db, self.registry)
        self.engine = ValidationEngine(db, self.ledger, self.registry)
        self.selector = selector or CandidateSelector(db, self.registry)
        self.profiles = profile_provider or UserProfileProvider(db)
        self.gate = EligibilityGate(eligibility_provider or UserStatsEligibilityProvider(db))

    def join(self, loop_id: str, person_id: str) -> ParticipantDB:
        """
        Admit a person into a loop.

        Eligibility is only checked for first-time members; a returning
        participant is refreshed and reactivated unless banned.
        """
        loop = self.registry.require_active_loop(loop_id)
        if self.registry.get_participant_for_person(loop_id, person_id) is None:
            self.gate.ensure_eligible(person_id, loop.organization_id)

        profile = self.profiles.get_profile(person_id)
        return self.registry.join(loop_id, person_id, profile)

    def participant_id_for(self, loop_id: str, person_id: str) -> str:
        return participant_key(loop_id, person_id)
