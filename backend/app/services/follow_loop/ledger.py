"""
Interaction Ledger

Records follow claims and serves the listings built on them.

- One interaction per ordered (follower, followed) pair. The id is
  "{follower_id}_{followed_id}", so the primary key rejects a duplicate
  even when two requests race past the existence check.
- Claims start in pending_validation. Only the validation engine moves
  them afterwards.
- Display names are copied from the participants at creation time and
  are not refreshed when profiles change.
"""
from datetime import datetime
from typing import List, Optional, Set
import logging
import os

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.db_models import (
    InteractionDB, InteractionEventDB, InteractionStatus, ParticipantDB, ActorType,
)
from .exceptions import NotFoundError, ConflictError, ForbiddenError
from .registry import ParticipantRegistry, KEY_SEPARATOR
from .state_machine import InteractionStateMachine

logger = logging.getLogger(__name__)

ADMIN_LIST_LIMIT = int(os.getenv("FOLLOW_LOOP_ADMIN_LIST_LIMIT", "200"))


def interaction_key(follower_id: str, followed_id: str) -> str:
    """
    Natural key of an interaction: one row per ordered pair.

    Participant keys hold exactly one separator, so the four parts of an
    interaction key split back unambiguously.
    """
    return f"{follower_id}{KEY_SEPARATOR}{followed_id}"


class InteractionLedger:
    """Source of truth for who claimed to follow whom."""

    def __init__(self, db: Session, registry: Optional[ParticipantRegistry] = None):
        self.db = db
        self.registry = registry or ParticipantRegistry(db)
        self.state_machine = InteractionStateMachine(db)

    # =========================================================================
    # CLAIMS
    # =========================================================================

    def register_claim(self, follower_id: str, followed_id: str) -> InteractionDB:
        """
        Record that follower says they followed followed.

        Raises ConflictError for self-claims, cross-loop claims and
        duplicates; NotFoundError when either participant is missing;
        ForbiddenError when the loop is inactive or either side is banned.
        """
        follower, followed = self.load_pair(follower_id, followed_id)
        self.registry.require_active_loop(follower.loop_id)

        if follower.is_banned:
            raise ForbiddenError(f"Participant {follower_id} is banned")
        if followed.is_banned or not followed.is_active:
            raise ForbiddenError(f"Participant {followed_id} is not available")

        interaction = self.insert_interaction(
            follower, followed, InteractionStatus.PENDING_VALIDATION,
            trigger="claimed", actor=ActorType.FOLLOWER, actor_id=follower_id,
        )
        self.registry.touch(follower_id)
        self.db.commit()

        logger.info(f"Claim registered: {follower_id} -> {followed_id}")
        return interaction

    def load_pair(self, follower_id: str, followed_id: str):
        """Fetch both ends of a claim and check they can be paired."""
        if follower_id == followed_id:
            raise ConflictError("A participant cannot claim to follow themselves")

        follower = self.registry.get_participant(follower_id)
        followed = self.registry.get_participant(followed_id)

        if follower.loop_id != followed.loop_id:
            raise ConflictError(
                f"Participants {follower_id} and {followed_id} belong to different loops"
            )
        return follower, followed

    def insert_interaction(
        self,
        follower: ParticipantDB,
        followed: ParticipantDB,
        status: InteractionStatus,
        trigger: str,
        actor: ActorType,
        actor_id: Optional[str] = None,
    ) -> InteractionDB:
        """
        Insert the interaction row and its creation event. Does not commit.

        Status is chosen by the caller; the only callers are register_claim
        (pending) and the validation engine (admin pairing, validated).
        """
        key = interaction_key(follower.id, followed.id)
        if self.db.get(InteractionDB, key) is not None:
            logger.warning(f"Duplicate claim rejected: {key}")
            raise ConflictError(f"{follower.id} already has a claim toward {followed.id}")

        now = datetime.utcnow()
        interaction = InteractionDB(
            id=key,
            loop_id=follower.loop_id,
            follower_id=follower.id,
            followed_id=followed.id,
            organization_id=follower.organization_id,
            status=status,
            follower_name=follower.display_name,
            follower_handle=follower.handle,
            followed_name=followed.display_name,
            followed_handle=followed.handle,
            created_at=now,
            status_changed_at=now,
        )
        try:
            with self.db.begin_nested():
                self.db.add(interaction)
        except IntegrityError:
            logger.warning(f"Duplicate claim rejected on insert: {key}")
            raise ConflictError(f"{follower.id} already has a claim toward {followed.id}")

        self.state_machine.log_event(key, None, status, trigger, actor, actor_id)
        return interaction

    # =========================================================================
    # READS
    # =========================================================================

    def get_interaction(self, interaction_id: str) -> InteractionDB:
        interaction = self.db.get(InteractionDB, interaction_id)
        if interaction is None:
            raise NotFoundError("Interaction", interaction_id)
        return interaction

    def outgoing_target_ids(self, follower_id: str) -> Set[str]:
        """Everyone the follower has claimed, whatever the claim's status."""
        rows = self.db.query(InteractionDB.followed_id).filter(
            InteractionDB.follower_id == follower_id
        ).all()
        return {row[0] for row in rows}

    def _incoming(self, participant_id: str, status: InteractionStatus) -> List[InteractionDB]:
        return self.db.query(InteractionDB).filter(
            InteractionDB.followed_id == participant_id,
            InteractionDB.status == status,
        ).order_by(InteractionDB.created_at.desc()).all()

    def _outgoing(self, participant_id: str, *statuses: InteractionStatus) -> List[InteractionDB]:
        return self.db.query(InteractionDB).filter(
            InteractionDB.follower_id == participant_id,
            InteractionDB.status.in_(statuses),
        ).order_by(InteractionDB.created_at.desc()).all()

    def list_pending_for(self, participant_id: str) -> List[InteractionDB]:
        """Claims waiting for this participant's decision, newest first."""
        return self._incoming(participant_id, InteractionStatus.PENDING_VALIDATION)

    def list_validated_incoming_for(self, participant_id: str) -> List[InteractionDB]:
        """Confirmed followers."""
        return self._incoming(participant_id, InteractionStatus.VALIDATED)

    def list_validated_outgoing_for(self, participant_id: str) -> List[InteractionDB]:
        return self._outgoing(participant_id, InteractionStatus.VALIDATED)

    def list_rejected_outgoing_for(self, participant_id: str) -> List[InteractionDB]:
        """
        Claims held against the follower: denied outright, or validated and
        later reported broken. Same set rejected_count counts.
        """
        return self._outgoing(
            participant_id, InteractionStatus.REJECTED, InteractionStatus.UNFOLLOWED
        )

    def list_interactions_in_loop(self, loop_id: str, limit: int = ADMIN_LIST_LIMIT) -> List[InteractionDB]:
        """Admin listing, newest first, never more than ADMIN_LIST_LIMIT rows."""
        limit = max(1, min(limit, ADMIN_LIST_LIMIT))
        return self.db.query(InteractionDB).filter(
            InteractionDB.loop_id == loop_id
        ).order_by(InteractionDB.created_at.desc()).limit(limit).all()

    def list_history(self, interaction_id: str) -> List[InteractionEventDB]:
        self.get_interaction(interaction_id)
        return self.db.query(InteractionEventDB).filter(
            InteractionEventDB.interaction_id == interaction_id
        ).order_by(InteractionEventDB.id).all()
