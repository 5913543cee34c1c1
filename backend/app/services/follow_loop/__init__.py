"""
Follow Loop Services

Mutual-engagement loop: participants claim to have followed each other,
targets confirm or reject, disputes can undo a rejection or report a
broken follow, and three reputation counters track the outcome.

- ParticipantRegistry: loops, membership, bans
- CandidateSelector: who to follow next
- InteractionLedger: claims and listings
- InteractionStateMachine: legal status transitions
- ValidationEngine: decisions, disputes, admin pairing, counter audit
"""

from .exceptions import (
    FollowLoopError, NotFoundError, ConflictError, InvalidStateError,
    InvalidInputError, ForbiddenError, NotEligibleError,
)
from .eligibility import (
    ProfileSnapshot, EligibilityResult, EligibilityGate, completion_rate,
    UserProfileProvider, UserStatsEligibilityProvider,
)
from .registry import ParticipantRegistry, participant_key
from .selector import CandidateSelector
from .state_machine import InteractionStateMachine, TRANSITIONS
from .ledger import InteractionLedger, interaction_key
from .validation import ValidationEngine, CounterDrift
from .service import FollowLoopService

__all__ = [
    # Errors
    'FollowLoopError',
    'NotFoundError',
    'ConflictError',
    'InvalidStateError',
    'InvalidInputError',
    'ForbiddenError',
    'NotEligibleError',
    # Collaborators
    'ProfileSnapshot',
    'EligibilityResult',
    'EligibilityGate',
    'completion_rate',
    'UserProfileProvider',
    'UserStatsEligibilityProvider',
    # Core
    'ParticipantRegistry',
    'participant_key',
    'CandidateSelector',
    'InteractionStateMachine',
    'TRANSITIONS',
    'InteractionLedger',
    'interaction_key',
    'ValidationEngine',
    'CounterDrift',
    'FollowLoopService',
]
