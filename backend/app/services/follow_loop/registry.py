"""
Participant Registry

Owns loops and loop membership: join/re-join, ban toggling, handle
corrections and the activity timestamp. Never touches the three counters;
those belong to the validation engine.
"""
from datetime import datetime
from typing import List, Optional
from uuid import uuid4
import logging
import os

from sqlalchemy import or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.db_models import FollowLoopDB, ParticipantDB, ParticipantFilter
from .eligibility import ProfileSnapshot
from .exceptions import NotFoundError, ForbiddenError, InvalidInputError

logger = logging.getLogger(__name__)

HIGH_REJECTION_THRESHOLD = int(os.getenv("FOLLOW_LOOP_HIGH_REJECTION_THRESHOLD", "2"))


KEY_SEPARATOR = "_"


def participant_key(loop_id: str, person_id: str) -> str:
    """
    Natural key of a participant: one row per (loop, person).

    Neither part may contain the separator, otherwise ("a", "b_c") and
    ("a_b", "c") would share a key.
    """
    for part in (loop_id, person_id):
        if not part or KEY_SEPARATOR in part:
            raise InvalidInputError(
                f"Identifier '{part}' must be non-empty and cannot contain '{KEY_SEPARATOR}'"
            )
    return f"{loop_id}{KEY_SEPARATOR}{person_id}"


class ParticipantRegistry:
    """Membership records per (loop, person)."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # LOOPS
    # =========================================================================

    def create_loop(self, name: str, organization_id: Optional[str] = None) -> FollowLoopDB:
        loop = FollowLoopDB(
            id=str(uuid4()),
            name=name,
            organization_id=organization_id,
            is_active=True,
        )
        self.db.add(loop)
        self.db.commit()
        logger.info(f"Loop created: {loop.id} ({name})")
        return loop

    def get_loop(self, loop_id: str) -> FollowLoopDB:
        loop = self.db.get(FollowLoopDB, loop_id)
        if loop is None:
            raise NotFoundError("Loop", loop_id)
        return loop

    def require_active_loop(self, loop_id: str) -> FollowLoopDB:
        loop = self.get_loop(loop_id)
        if not loop.is_active:
            raise ForbiddenError(f"Loop {loop_id} is not active")
        return loop

    def set_loop_active(self, loop_id: str, active: bool) -> FollowLoopDB:
        loop = self.get_loop(loop_id)
        loop.is_active = active
        loop.updated_at = datetime.utcnow()
        self.db.commit()
        logger.info(f"Loop {loop_id} {'activated' if active else 'deactivated'}")
        return loop

    # =========================================================================
    # MEMBERSHIP
    # =========================================================================

    def join(self, loop_id: str, person_id: str, profile: ProfileSnapshot) -> ParticipantDB:
        """
        Create or reactivate the participant for (loop, person).

        The insert runs inside a savepoint; if another request created the
        row first, the key collision turns this into a merge of the display
        fields instead of a second record.
        """
        self.require_active_loop(loop_id)
        key = participant_key(loop_id, person_id)

        participant = self.db.get(ParticipantDB, key)
        if participant is None:
            now = datetime.utcnow()
            participant = ParticipantDB(
                id=key,
                loop_id=loop_id,
                person_id=person_id,
                display_name=profile.name,
                handle=profile.handle,
                avatar_url=profile.avatar_ref,
                organization_id=profile.organization_ref,
                region=profile.region,
                is_active=True,
                is_banned=False,
                followers_count=0,
                following_count=0,
                rejected_count=0,
                joined_at=now,
                last_active_at=now,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(participant)
                self.db.commit()
                logger.info(f"Participant joined: {key}")
                return participant
            except IntegrityError:
                logger.info(f"Participant {key} created concurrently, merging")
                participant = self.db.get(ParticipantDB, key)
                if participant is None:
                    raise

        if participant.is_banned:
            logger.warning(f"Banned participant {key} attempted to re-join")
            raise ForbiddenError("You were removed from this loop. Contact the administration.")

        participant.display_name = profile.name
        participant.handle = profile.handle
        participant.avatar_url = profile.avatar_ref
        participant.organization_id = profile.organization_ref
        participant.region = profile.region
        participant.is_active = True
        participant.last_active_at = datetime.utcnow()
        self.db.commit()
        logger.info(f"Participant re-joined: {key}")
        return participant

    def set_banned(self, participant_id: str, banned: bool) -> ParticipantDB:
        """Ban or unban; active is always the negation of banned afterwards."""
        participant = self.get_participant(participant_id)
        participant.is_banned = banned
        participant.is_active = not banned
        self.db.commit()
        logger.info(f"Participant {participant_id} {'banned' if banned else 'unbanned'}")
        return participant

    def update_handle(self, participant_id: str, new_handle: str) -> ParticipantDB:
        participant = self.get_participant(participant_id)
        handle = new_handle.strip().lstrip("@").strip()
        if not handle:
            raise InvalidInputError("Handle cannot be empty")

        old_handle = participant.handle
        participant.handle = handle
        self.db.commit()
        logger.info(f"Participant {participant_id} handle changed: {old_handle} -> {participant.handle}")
        return participant

    def touch(self, participant_id: str, commit: bool = False) -> None:
        """Refresh last_active_at."""
        self.db.query(ParticipantDB).filter(ParticipantDB.id == participant_id).update(
            {ParticipantDB.last_active_at: datetime.utcnow()},
            synchronize_session=False,
        )
        if commit:
            self.db.commit()

    # =========================================================================
    # READS
    # =========================================================================

    def get_participant(self, participant_id: str) -> ParticipantDB:
        participant = self.db.get(ParticipantDB, participant_id)
        if participant is None:
            raise NotFoundError("Participant", participant_id)
        return participant

    def get_participant_for_person(self, loop_id: str, person_id: str) -> Optional[ParticipantDB]:
        """Status lookup; None when the person never joined the loop."""
        return self.db.get(ParticipantDB, participant_key(loop_id, person_id))

    def list_participants(
        self,
        loop_id: str,
        filter_type: ParticipantFilter = ParticipantFilter.ALL,
        search: Optional[str] = None,
    ) -> List[ParticipantDB]:
        """
        Admin console listing.

        Search matches name or handle case-insensitively. Results are sorted
        by rejected_count, highest first.
        """
        query = self.db.query(ParticipantDB).filter(ParticipantDB.loop_id == loop_id)

        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(or_(
                func.lower(ParticipantDB.display_name).like(pattern),
                func.lower(ParticipantDB.handle).like(pattern),
            ))

        if filter_type == ParticipantFilter.ACTIVE:
            query = query.filter(ParticipantDB.is_active.is_(True), ParticipantDB.is_banned.is_(False))
        elif filter_type == ParticipantFilter.BANNED:
            query = query.filter(ParticipantDB.is_banned.is_(True))
        elif filter_type == ParticipantFilter.HIGH_REJECTION:
            query = query.filter(ParticipantDB.rejected_count > HIGH_REJECTION_THRESHOLD)

        return query.order_by(ParticipantDB.rejected_count.desc(), ParticipantDB.joined_at).all()
