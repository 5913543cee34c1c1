"""
Candidate Selector

Answers "who should I follow next" for a participant.

The exclusion set is the requester plus every participant the requester
has ever claimed, whatever happened to the claim afterwards. The eligible
set is every active, non-banned participant of the loop outside that set,
optionally narrowed to a region (participants without a region tag are
kept). One candidate is drawn uniformly at random.

Filtering happens in the database. The draw counts the eligible rows and
fetches the one at a random offset, so a loop of any size costs two
indexed queries instead of loading every participant into memory.
"""
import random
from typing import Optional, Set
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models.db_models import InteractionDB, ParticipantDB
from .exceptions import ConflictError, ForbiddenError
from .registry import ParticipantRegistry

logger = logging.getLogger(__name__)

# Attempts when the eligible set shrinks between the count and the fetch
MAX_DRAW_ATTEMPTS = 3


class CandidateSelector:
    """Fair, non-repeating next match."""

    def __init__(
        self,
        db: Session,
        registry: Optional[ParticipantRegistry] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.registry = registry or ParticipantRegistry(db)
        self.rng = rng or random.SystemRandom()

    def exclusion_set(self, requester_id: str) -> Set[str]:
        """Requester plus all targets of the requester's claims."""
        rows = self.db.query(InteractionDB.followed_id).filter(
            InteractionDB.follower_id == requester_id
        ).all()
        excluded = {row[0] for row in rows}
        excluded.add(requester_id)
        return excluded

    def _eligible_query(self, requester_id: str, loop_id: str, region: Optional[str]):
        claimed = self.db.query(InteractionDB.followed_id).filter(
            InteractionDB.follower_id == requester_id
        )
        query = self.db.query(ParticipantDB).filter(
            ParticipantDB.loop_id == loop_id,
            ParticipantDB.is_active.is_(True),
            ParticipantDB.is_banned.is_(False),
            ParticipantDB.id != requester_id,
            ParticipantDB.id.notin_(claimed.scalar_subquery()),
        )
        if region:
            query = query.filter(or_(
                ParticipantDB.region.is_(None),
                ParticipantDB.region == "",
                ParticipantDB.region == region,
            ))
        return query

    def next_candidate(
        self,
        requester_id: str,
        loop_id: str,
        region: Optional[str] = None,
    ) -> Optional[ParticipantDB]:
        """
        Pick the next participant to follow.

        Returns None when nobody is left; that is a normal outcome, not an
        error.
        """
        requester = self.registry.get_participant(requester_id)
        if requester.loop_id != loop_id:
            raise ConflictError(f"Participant {requester_id} is not a member of loop {loop_id}")
        if requester.is_banned:
            raise ForbiddenError(f"Participant {requester_id} is banned")
        self.registry.require_active_loop(loop_id)

        query = self._eligible_query(requester_id, loop_id, region)

        for _ in range(MAX_DRAW_ATTEMPTS):
            total = query.count()
            if total == 0:
                logger.info(f"No candidates left for {requester_id} in loop {loop_id}")
                return None

            offset = self.rng.randrange(total)
            candidate = query.order_by(ParticipantDB.id).offset(offset).limit(1).first()
            if candidate is not None:
                return candidate

        return None
