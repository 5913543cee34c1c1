"""
Follow Loop Engine - FastAPI Application

Main entry point for the Follow Loop backend.

Architecture:
- ParticipantRegistry: loops, membership, bans
- CandidateSelector: next profile to follow
- InteractionLedger: follow claims
- ValidationEngine: decisions, disputes and the participant counters
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routers import auth_router, follow_loop_router, admin_router
from .database import init_db
from .services.follow_loop import (
    FollowLoopError, NotFoundError, ConflictError, InvalidStateError, InvalidInputError,
    ForbiddenError, NotEligibleError,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Status code per domain error; every kind stays distinguishable for clients
ERROR_STATUS = {
    NotFoundError: 404,
    ConflictError: 409,
    InvalidStateError: 400,
    InvalidInputError: 400,
    ForbiddenError: 403,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Follow Loop Engine",
    description="""
    Follow Loop Engine - Mutual Engagement Backend

    Participants of a campaign are paired to follow each other. Each follow
    is recorded as an unverified claim that the followed participant
    confirms or rejects. Confirmed, rejected and broken follows maintain
    three reputation counters per participant.

    ## Flow
    1. **Join**: person enters a loop (eligibility and ban checks)
    2. **Next**: selector suggests a random profile not yet claimed
    3. **Claim**: follower registers the follow (pending validation)
    4. **Decide**: followed participant confirms or rejects
    5. **Dispute**: undo a rejection, or report a broken follow
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FollowLoopError)
async def follow_loop_error_handler(request: Request, exc: FollowLoopError):
    """Map domain errors to HTTP responses."""
    status_code = 400
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break

    body = {"error": exc.code, "detail": exc.message}
    if isinstance(exc, NotEligibleError):
        body["current_rate"] = exc.current_rate
        body["required_rate"] = exc.required_rate

    logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}")
    return JSONResponse(status_code=status_code, content=body)


# Include routers
app.include_router(auth_router)
app.include_router(follow_loop_router)
app.include_router(admin_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Follow Loop Engine",
        "version": "1.0.0",
        "description": "Mutual engagement loop backend",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
