"""
Interaction State Machine

Deterministic state machine for follow claims.

    pending_validation -> validated | rejected      (target decides)
    rejected           -> validated                 (undo a rejection)
    validated          -> unfollowed                (report a broken follow)

unfollowed is terminal. Every transition is a compare-and-swap on the
status column and is logged immutably in follow_interaction_events.
Counter deltas live next to each transition so the engine applies them in
the same unit of work.
"""
from datetime import datetime
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from ...models.db_models import (
    InteractionStatus, ActorType, InteractionDB, InteractionEventDB,
)
from .exceptions import InvalidStateError

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSITION TABLE
# =============================================================================
#
# Counter deltas are keyed by role:
# - follower: the participant who made the claim
# - followed: the participant the claim is about
#
# =============================================================================

TRANSITIONS: Dict[Tuple[InteractionStatus, InteractionStatus], Dict] = {
    (InteractionStatus.PENDING_VALIDATION, InteractionStatus.VALIDATED): {
        "trigger": "accepted",
        "follower": {"following_count": 1},
        "followed": {"followers_count": 1},
    },
    (InteractionStatus.PENDING_VALIDATION, InteractionStatus.REJECTED): {
        "trigger": "rejected",
        "follower": {"rejected_count": 1},
        "followed": {},
    },
    (InteractionStatus.REJECTED, InteractionStatus.VALIDATED): {
        "trigger": "rejection_undone",
        "follower": {"rejected_count": -1, "following_count": 1},
        "followed": {"followers_count": 1},
    },
    (InteractionStatus.VALIDATED, InteractionStatus.UNFOLLOWED): {
        "trigger": "unfollow_reported",
        "follower": {"following_count": -1, "rejected_count": 1},
        "followed": {"followers_count": -1},
    },
}

# Effect of creating a record that is already validated (admin pairing)
ADMIN_CREATION_DELTAS = {
    "trigger": "admin_created",
    "follower": {"following_count": 1},
    "followed": {"followers_count": 1},
}


class InteractionStateMachine:
    """Applies status transitions to follow interactions."""

    def __init__(self, db: Session):
        self.db = db

    def can_transition(
        self,
        from_status: InteractionStatus,
        to_status: InteractionStatus,
    ) -> bool:
        return (from_status, to_status) in TRANSITIONS

    def get_deltas(
        self,
        from_status: InteractionStatus,
        to_status: InteractionStatus,
    ) -> Dict:
        return TRANSITIONS[(from_status, to_status)]

    def get_next_statuses(self, status: InteractionStatus) -> List[InteractionStatus]:
        return [to for (frm, to) in TRANSITIONS if frm == status]

    def is_terminal(self, status: InteractionStatus) -> bool:
        return not self.get_next_statuses(status)

    def transition(
        self,
        interaction: InteractionDB,
        from_status: InteractionStatus,
        to_status: InteractionStatus,
        actor: ActorType,
        actor_id: Optional[str] = None,
    ) -> Dict:
        """
        Move an interaction from from_status to to_status.

        The UPDATE only matches while the row still holds from_status, so a
        concurrent decision on the same interaction loses instead of applying
        its counter deltas twice. Does not commit.

        Returns the counter deltas for the transition.
        """
        if not self.can_transition(from_status, to_status):
            raise InvalidStateError(interaction.id, from_status, to_status)

        now = datetime.utcnow()
        updated = self.db.query(InteractionDB).filter(
            InteractionDB.id == interaction.id,
            InteractionDB.status == from_status,
        ).update(
            {InteractionDB.status: to_status, InteractionDB.status_changed_at: now},
            synchronize_session=False,
        )
        if updated != 1:
            self.db.refresh(interaction)
            raise InvalidStateError(interaction.id, interaction.status, to_status)

        config = self.get_deltas(from_status, to_status)
        self.log_event(interaction.id, from_status, to_status, config["trigger"], actor, actor_id)
        return config

    def log_event(
        self,
        interaction_id: str,
        from_status: Optional[InteractionStatus],
        to_status: InteractionStatus,
        trigger: str,
        actor: ActorType,
        actor_id: Optional[str] = None,
    ) -> InteractionEventDB:
        """Append an immutable event row."""
        event = InteractionEventDB(
            interaction_id=interaction_id,
            from_status=from_status,
            to_status=to_status,
            trigger=trigger,
            actor=actor,
            actor_id=actor_id,
            created_at=datetime.utcnow(),
        )
        self.db.add(event)
        return event
