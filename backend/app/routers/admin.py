"""
Follow Loop Engine - Admin Router
Loop administration, participant console, manual pairing and counter audits.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import UserDB, ParticipantFilter
from ..auth import require_admin
from ..services.follow_loop import FollowLoopService
from ..services.follow_loop.ledger import ADMIN_LIST_LIMIT
from .follow_loop import ParticipantResponse, InteractionResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class CreateLoopRequest(BaseModel):
    name: str = Field(..., min_length=1)
    organization_id: Optional[str] = None


class LoopResponse(BaseModel):
    id: str
    name: str
    organization_id: Optional[str] = None
    is_active: bool


class LoopActiveRequest(BaseModel):
    active: bool


class BanRequest(BaseModel):
    banned: bool


class HandleRequest(BaseModel):
    handle: str = Field(..., min_length=1)


class AdminInteractionRequest(BaseModel):
    follower_id: str
    followed_id: str


class CounterDriftResponse(BaseModel):
    participant_id: str
    stored: dict
    expected: dict


class CounterAuditResponse(BaseModel):
    loop_id: str
    applied: bool
    drifts: List[CounterDriftResponse]


def _loop_response(loop) -> LoopResponse:
    return LoopResponse(
        id=loop.id,
        name=loop.name,
        organization_id=loop.organization_id,
        is_active=loop.is_active,
    )


# =============================================================================
# LOOPS
# =============================================================================

@router.post("/loops", response_model=LoopResponse, status_code=status.HTTP_201_CREATED)
async def create_loop(
    request: CreateLoopRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    service = FollowLoopService(db)
    loop = service.registry.create_loop(request.name, request.organization_id)
    return _loop_response(loop)


@router.put("/loops/{loop_id}/active", response_model=LoopResponse)
async def set_loop_active(
    loop_id: str,
    request: LoopActiveRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    service = FollowLoopService(db)
    loop = service.registry.set_loop_active(loop_id, request.active)
    return _loop_response(loop)


# =============================================================================
# PARTICIPANTS
# =============================================================================

@router.get("/loops/{loop_id}/participants", response_model=List[ParticipantResponse])
async def list_participants(
    loop_id: str,
    filter_type: ParticipantFilter = Query(ParticipantFilter.ALL, alias="filter"),
    search: Optional[str] = Query(None, description="Matches name or handle"),
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """All participants of a loop, highest rejection count first."""
    service = FollowLoopService(db)
    service.registry.get_loop(loop_id)
    return service.registry.list_participants(loop_id, filter_type, search)


@router.put("/participants/{participant_id}/ban", response_model=ParticipantResponse)
async def set_banned(
    participant_id: str,
    request: BanRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    service = FollowLoopService(db)
    logger.info(f"Admin {admin.id} set banned={request.banned} on {participant_id}")
    return service.registry.set_banned(participant_id, request.banned)


@router.put("/participants/{participant_id}/handle", response_model=ParticipantResponse)
async def update_handle(
    participant_id: str,
    request: HandleRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    service = FollowLoopService(db)
    return service.registry.update_handle(participant_id, request.handle)


# =============================================================================
# INTERACTIONS
# =============================================================================

@router.get("/loops/{loop_id}/interactions", response_model=List[InteractionResponse])
async def list_interactions(
    loop_id: str,
    limit: int = Query(ADMIN_LIST_LIMIT, ge=1, le=ADMIN_LIST_LIMIT),
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Most recent interactions of a loop."""
    service = FollowLoopService(db)
    service.registry.get_loop(loop_id)
    return service.ledger.list_interactions_in_loop(loop_id, limit)


@router.post("/interactions", response_model=InteractionResponse, status_code=status.HTTP_201_CREATED)
async def create_validated_interaction(
    request: AdminInteractionRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Pair two participants with an already-validated follow."""
    service = FollowLoopService(db)
    return service.engine.admin_create_interaction(
        request.follower_id, request.followed_id, admin_id=admin.id
    )


@router.post("/interactions/{interaction_id}/undo-rejection", response_model=InteractionResponse)
async def admin_undo_rejection(
    interaction_id: str,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Review a disputed rejection and turn it into a validation."""
    service = FollowLoopService(db)
    return service.engine.undo_rejection(interaction_id, by_admin=True)


# =============================================================================
# COUNTER AUDIT
# =============================================================================

@router.get("/loops/{loop_id}/counter-audit", response_model=CounterAuditResponse)
async def audit_counters(
    loop_id: str,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Participants whose counters disagree with the interaction ledger."""
    service = FollowLoopService(db)
    drifts = service.engine.audit_counters(loop_id)
    return CounterAuditResponse(
        loop_id=loop_id,
        applied=False,
        drifts=[CounterDriftResponse(**d.to_dict()) for d in drifts],
    )


@router.post("/loops/{loop_id}/counter-audit/reconcile", response_model=CounterAuditResponse)
async def reconcile_counters(
    loop_id: str,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Rewrite drifted counters from the ledger."""
    service = FollowLoopService(db)
    drifts = service.engine.reconcile_counters(loop_id)
    logger.info(f"Admin {admin.id} reconciled {len(drifts)} participants in loop {loop_id}")
    return CounterAuditResponse(
        loop_id=loop_id,
        applied=True,
        drifts=[CounterDriftResponse(**d.to_dict()) for d in drifts],
    )
