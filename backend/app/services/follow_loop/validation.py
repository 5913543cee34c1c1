"""
Validation / Dispute Engine

The only writer of the participant counters:

- followers_count: incoming interactions that are validated
- following_count: outgoing interactions that are validated
- rejected_count:  outgoing interactions that are rejected or unfollowed

Each operation applies its status transition and counter deltas in one
transaction. Counter deltas are relative SQL updates (col = col + delta),
so concurrent decisions on different interactions touching the same
participant do not lose increments. A failure anywhere rolls back the whole
unit; nothing is committed half-way.
"""
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional
import logging

from sqlalchemy import func, case
from sqlalchemy.orm import Session

from ...models.db_models import (
    InteractionDB, InteractionStatus, ParticipantDB, ActorType,
)
from .exceptions import ForbiddenError
from .ledger import InteractionLedger
from .registry import ParticipantRegistry
from .state_machine import InteractionStateMachine, ADMIN_CREATION_DELTAS

logger = logging.getLogger(__name__)

COUNTER_FIELDS = ("followers_count", "following_count", "rejected_count")


@dataclass
class CounterDrift:
    """Stored counters of one participant that disagree with the ledger."""
    participant_id: str
    stored: Dict[str, int]
    expected: Dict[str, int]

    def to_dict(self) -> Dict:
        return asdict(self)


class ValidationEngine:
    """Human decisions on claims: confirm, reject, undo, report broken."""

    def __init__(
        self,
        db: Session,
        ledger: Optional[InteractionLedger] = None,
        registry: Optional[ParticipantRegistry] = None,
    ):
        self.db = db
        self.registry = registry or ParticipantRegistry(db)
        self.ledger = ledger or InteractionLedger(db, self.registry)
        self.state_machine = InteractionStateMachine(db)

    # =========================================================================
    # COUNTERS
    # =========================================================================

    def _apply_deltas(self, participant_id: str, deltas: Dict[str, int]) -> None:
        if not deltas:
            return
        values = {
            getattr(ParticipantDB, field): getattr(ParticipantDB, field) + delta
            for field, delta in deltas.items()
        }
        self.db.query(ParticipantDB).filter(ParticipantDB.id == participant_id).update(
            values, synchronize_session=False
        )

    def _apply_config(self, interaction: InteractionDB, config: Dict) -> None:
        self._apply_deltas(interaction.follower_id, config["follower"])
        self._apply_deltas(interaction.followed_id, config["followed"])

    def _run_transition(
        self,
        interaction_id: str,
        from_status: InteractionStatus,
        to_status: InteractionStatus,
        actor: ActorType,
        actor_id: Optional[str],
    ) -> InteractionDB:
        interaction = self.ledger.get_interaction(interaction_id)
        try:
            config = self.state_machine.transition(
                interaction, from_status, to_status, actor, actor_id
            )
            self._apply_config(interaction, config)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Interaction {interaction_id}: {from_status.value} -> {to_status.value} "
            f"({config['trigger']}, {actor.value})"
        )
        return interaction

    @staticmethod
    def _require_actor(interaction: InteractionDB, actor_participant_id: Optional[str], action: str) -> None:
        if actor_participant_id is not None and actor_participant_id != interaction.followed_id:
            raise ForbiddenError(f"Only the followed participant can {action} this interaction")

    # =========================================================================
    # DECISIONS
    # =========================================================================

    def decide(
        self,
        interaction_id: str,
        accepted: bool,
        actor_participant_id: Optional[str] = None,
    ) -> InteractionDB:
        """Target confirms (accepted=True) or denies a pending claim."""
        interaction = self.ledger.get_interaction(interaction_id)
        self._require_actor(interaction, actor_participant_id, "decide on")

        to_status = InteractionStatus.VALIDATED if accepted else InteractionStatus.REJECTED
        return self._run_transition(
            interaction_id,
            InteractionStatus.PENDING_VALIDATION,
            to_status,
            ActorType.FOLLOWED,
            actor_participant_id or interaction.followed_id,
        )

    def undo_rejection(
        self,
        interaction_id: str,
        actor_participant_id: Optional[str] = None,
        by_admin: bool = False,
    ) -> InteractionDB:
        """Turn a rejection into a validation."""
        interaction = self.ledger.get_interaction(interaction_id)
        if not by_admin:
            self._require_actor(interaction, actor_participant_id, "undo a rejection of")

        return self._run_transition(
            interaction_id,
            InteractionStatus.REJECTED,
            InteractionStatus.VALIDATED,
            ActorType.ADMIN if by_admin else ActorType.FOLLOWED,
            actor_participant_id or (None if by_admin else interaction.followed_id),
        )

    def report_broken(
        self,
        interaction_id: str,
        actor_participant_id: Optional[str] = None,
    ) -> InteractionDB:
        """The followed participant reports that a validated follow was undone."""
        interaction = self.ledger.get_interaction(interaction_id)
        self._require_actor(interaction, actor_participant_id, "report")

        return self._run_transition(
            interaction_id,
            InteractionStatus.VALIDATED,
            InteractionStatus.UNFOLLOWED,
            ActorType.FOLLOWED,
            actor_participant_id or interaction.followed_id,
        )

    # =========================================================================
    # ADMINISTRATIVE PAIRING
    # =========================================================================

    def admin_create_interaction(
        self,
        follower_id: str,
        followed_id: str,
        admin_id: Optional[str] = None,
    ) -> InteractionDB:
        """
        Record a follow already known to be true.

        Same self/duplicate checks as a claim, but the row is born validated
        and the counters move immediately.
        """
        follower, followed = self.ledger.load_pair(follower_id, followed_id)
        try:
            interaction = self.ledger.insert_interaction(
                follower, followed, InteractionStatus.VALIDATED,
                trigger=ADMIN_CREATION_DELTAS["trigger"],
                actor=ActorType.ADMIN, actor_id=admin_id,
            )
            self._apply_config(interaction, ADMIN_CREATION_DELTAS)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Admin created validated interaction {follower_id} -> {followed_id}")
        return interaction

    # =========================================================================
    # DRIFT DETECTION
    # =========================================================================

    def _expected_counters(self, loop_id: str) -> Dict[str, Dict[str, int]]:
        expected: Dict[str, Dict[str, int]] = {}

        outgoing = self.db.query(
            InteractionDB.follower_id,
            func.sum(case((InteractionDB.status == InteractionStatus.VALIDATED, 1), else_=0)),
            func.sum(case(
                (InteractionDB.status.in_([InteractionStatus.REJECTED, InteractionStatus.UNFOLLOWED]), 1),
                else_=0,
            )),
        ).filter(InteractionDB.loop_id == loop_id).group_by(InteractionDB.follower_id).all()

        for participant_id, following, rejected in outgoing:
            counters = expected.setdefault(participant_id, dict.fromkeys(COUNTER_FIELDS, 0))
            counters["following_count"] = int(following or 0)
            counters["rejected_count"] = int(rejected or 0)

        incoming = self.db.query(
            InteractionDB.followed_id,
            func.count(InteractionDB.id),
        ).filter(
            InteractionDB.loop_id == loop_id,
            InteractionDB.status == InteractionStatus.VALIDATED,
        ).group_by(InteractionDB.followed_id).all()

        for participant_id, followers in incoming:
            counters = expected.setdefault(participant_id, dict.fromkeys(COUNTER_FIELDS, 0))
            counters["followers_count"] = int(followers or 0)

        return expected

    def audit_counters(self, loop_id: str) -> List[CounterDrift]:
        """Compare stored counters with values recomputed from the ledger."""
        self.registry.get_loop(loop_id)
        expected = self._expected_counters(loop_id)

        drifts = []
        participants = self.db.query(ParticipantDB).filter(ParticipantDB.loop_id == loop_id).all()
        for participant in participants:
            stored = {field: getattr(participant, field) or 0 for field in COUNTER_FIELDS}
            should_be = expected.get(participant.id, dict.fromkeys(COUNTER_FIELDS, 0))
            if stored != should_be:
                drifts.append(CounterDrift(participant.id, stored, should_be))

        if drifts:
            logger.warning(f"Counter drift in loop {loop_id}: {len(drifts)} participants")
        return drifts

    def reconcile_counters(self, loop_id: str) -> List[CounterDrift]:
        """Overwrite drifted counters with the ledger values."""
        drifts = self.audit_counters(loop_id)
        try:
            for drift in drifts:
                self.db.query(ParticipantDB).filter(ParticipantDB.id == drift.participant_id).update(
                    {getattr(ParticipantDB, field): value for field, value in drift.expected.items()},
                    synchronize_session=False,
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Reconciled counters in loop {loop_id}: {len(drifts)} participants fixed")
        return drifts
