"""
Follow Loop API Routes

Participant-facing endpoints: join a loop, get the next profile to follow,
register a follow claim, and confirm, reject or dispute claims made about
you. The authenticated user is the person; their participant in a loop is
"{loop_id}_{user_id}".
"""
from datetime import datetime
from typing import Optional, List
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user, is_admin
from ..models.db_models import UserDB, InteractionStatus, ActorType
from ..services.follow_loop import FollowLoopService, ForbiddenError, participant_key

router = APIRouter(prefix="/follow-loop", tags=["follow-loop"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class ParticipantResponse(BaseModel):
    """Participant card."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    loop_id: str
    person_id: str
    display_name: str
    handle: str
    avatar_url: Optional[str] = None
    organization_id: Optional[str] = None
    region: Optional[str] = None
    is_active: bool
    is_banned: bool
    followers_count: int
    following_count: int
    rejected_count: int
    joined_at: Optional[datetime] = None
    last_active_at: Optional[datetime] = None


class InteractionResponse(BaseModel):
    """Follow claim with the names captured when it was made."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    loop_id: str
    follower_id: str
    followed_id: str
    organization_id: Optional[str] = None
    status: InteractionStatus
    follower_name: str
    follower_handle: str
    followed_name: str
    followed_handle: str
    created_at: Optional[datetime] = None
    status_changed_at: Optional[datetime] = None


class InteractionEventResponse(BaseModel):
    """One entry of an interaction's history."""
    model_config = ConfigDict(from_attributes=True)

    from_status: Optional[InteractionStatus] = None
    to_status: InteractionStatus
    trigger: str
    actor: ActorType
    actor_id: Optional[str] = None
    created_at: Optional[datetime] = None


class ParticipantStatusResponse(BaseModel):
    participant: Optional[ParticipantResponse] = None


class CandidateResponse(BaseModel):
    """candidate is null when nobody is left to follow."""
    candidate: Optional[ParticipantResponse] = None


class ClaimRequest(BaseModel):
    followed_id: str = Field(..., description="Participant id of the profile that was followed")


class DecisionRequest(BaseModel):
    accepted: bool = Field(..., description="True confirms the follow, False rejects it")


# =============================================================================
# MEMBERSHIP
# =============================================================================

@router.post("/loops/{loop_id}/join", response_model=ParticipantResponse)
async def join_loop(
    loop_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Join (or re-join) a loop. Banned participants are refused."""
    service = FollowLoopService(db)
    return service.join(loop_id, current_user.id)


@router.get("/loops/{loop_id}/me", response_model=ParticipantStatusResponse)
async def get_my_status(
    loop_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Current user's membership, or null if they never joined."""
    service = FollowLoopService(db)
    participant = service.registry.get_participant_for_person(loop_id, current_user.id)
    return ParticipantStatusResponse(
        participant=ParticipantResponse.model_validate(participant) if participant else None
    )


# =============================================================================
# SELECTION AND CLAIMS
# =============================================================================

@router.get("/loops/{loop_id}/next", response_model=CandidateResponse)
async def get_next_candidate(
    loop_id: str,
    region: Optional[str] = Query(None, description="Only suggest participants from this region"),
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Next profile to follow."""
    service = FollowLoopService(db)
    candidate = service.selector.next_candidate(
        participant_key(loop_id, current_user.id), loop_id, region
    )
    return CandidateResponse(
        candidate=ParticipantResponse.model_validate(candidate) if candidate else None
    )


@router.post("/loops/{loop_id}/claims", response_model=InteractionResponse, status_code=status.HTTP_201_CREATED)
async def register_claim(
    loop_id: str,
    request: ClaimRequest,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Record that the current user followed another participant."""
    service = FollowLoopService(db)
    return service.ledger.register_claim(participant_key(loop_id, current_user.id), request.followed_id)


# =============================================================================
# LISTINGS
# =============================================================================

def _my_participant_id(service: FollowLoopService, loop_id: str, user: UserDB) -> str:
    return service.registry.get_participant(participant_key(loop_id, user.id)).id


@router.get("/loops/{loop_id}/pending", response_model=List[InteractionResponse])
async def list_pending(
    loop_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Claims waiting for the current user's decision."""
    service = FollowLoopService(db)
    return service.ledger.list_pending_for(_my_participant_id(service, loop_id, current_user))


@router.get("/loops/{loop_id}/followers", response_model=List[InteractionResponse])
async def list_followers(
    loop_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Confirmed followers of the current user."""
    service = FollowLoopService(db)
    return service.ledger.list_validated_incoming_for(_my_participant_id(service, loop_id, current_user))


@router.get("/loops/{loop_id}/following", response_model=List[InteractionResponse])
async def list_following(
    loop_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Follows of the current user that were confirmed."""
    service = FollowLoopService(db)
    return service.ledger.list_validated_outgoing_for(_my_participant_id(service, loop_id, current_user))


@router.get("/loops/{loop_id}/rejected", response_model=List[InteractionResponse])
async def list_rejected(
    loop_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Claims of the current user that count against them: denied or reported broken."""
    service = FollowLoopService(db)
    return service.ledger.list_rejected_outgoing_for(_my_participant_id(service, loop_id, current_user))


# =============================================================================
# DECISIONS AND DISPUTES
# =============================================================================

def _actor_for(service: FollowLoopService, interaction_id: str, user: UserDB) -> str:
    interaction = service.ledger.get_interaction(interaction_id)
    return participant_key(interaction.loop_id, user.id)


@router.post("/interactions/{interaction_id}/decision", response_model=InteractionResponse)
async def decide(
    interaction_id: str,
    request: DecisionRequest,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Confirm or reject a pending claim about the current user."""
    service = FollowLoopService(db)
    actor_id = _actor_for(service, interaction_id, current_user)
    return service.engine.decide(interaction_id, request.accepted, actor_participant_id=actor_id)


@router.post("/interactions/{interaction_id}/undo-rejection", response_model=InteractionResponse)
async def undo_rejection(
    interaction_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Change a rejection into a confirmation."""
    service = FollowLoopService(db)
    actor_id = _actor_for(service, interaction_id, current_user)
    return service.engine.undo_rejection(interaction_id, actor_participant_id=actor_id)


@router.post("/interactions/{interaction_id}/report-unfollow", response_model=InteractionResponse)
async def report_unfollow(
    interaction_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Report that a confirmed follower stopped following."""
    service = FollowLoopService(db)
    actor_id = _actor_for(service, interaction_id, current_user)
    return service.engine.report_broken(interaction_id, actor_participant_id=actor_id)


@router.get("/interactions/{interaction_id}/history", response_model=List[InteractionEventResponse])
async def interaction_history(
    interaction_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Status history of an interaction the current user is part of."""
    service = FollowLoopService(db)
    interaction = service.ledger.get_interaction(interaction_id)
    me = participant_key(interaction.loop_id, current_user.id)
    if me not in (interaction.follower_id, interaction.followed_id) and not is_admin(current_user):
        raise ForbiddenError("Only the participants of an interaction can read its history")
    return service.ledger.list_history(interaction_id)
