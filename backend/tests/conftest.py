"""
Shared fixtures for the Follow Loop tests.

Every test gets a fresh in-memory SQLite database with the full schema.
"""
import os

# Must be set before app.database is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")

from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, build_engine
from app.models.db_models import UserDB, OrganizationDB
from app.services.follow_loop import (
    ParticipantRegistry, InteractionLedger, ValidationEngine, CandidateSelector,
    ProfileSnapshot,
)


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    test_engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db(engine):
    """Database session bound to the test engine."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


# =============================================================================
# SERVICES
# =============================================================================

@pytest.fixture
def registry(db):
    return ParticipantRegistry(db)


@pytest.fixture
def ledger(db, registry):
    return InteractionLedger(db, registry)


@pytest.fixture
def engine_service(db, ledger, registry):
    """Validation engine sharing the ledger and registry."""
    return ValidationEngine(db, ledger, registry)


@pytest.fixture
def selector(db, registry):
    return CandidateSelector(db, registry)


# =============================================================================
# DATA BUILDERS
# =============================================================================

@pytest.fixture
def organization(db):
    org = OrganizationDB(id=str(uuid4()), name="Acme Events", follow_loop_threshold=0)
    db.add(org)
    db.commit()
    return org


@pytest.fixture
def loop(registry, organization):
    return registry.create_loop("Summer Loop", organization.id)


def make_profile(name: str, region: str = None, organization_id: str = None) -> ProfileSnapshot:
    return ProfileSnapshot(
        name=name,
        handle=name.lower().replace(" ", "_"),
        avatar_ref=f"https://cdn.example.com/{name.lower()}.jpg",
        organization_ref=organization_id,
        region=region,
    )


@pytest.fixture
def join(registry, loop):
    """join("Ana") -> participant of the default loop."""
    def _join(name: str, region: str = None, person_id: str = None):
        return registry.join(loop.id, person_id or str(uuid4()), make_profile(name, region, loop.organization_id))
    return _join


def make_user(db, email: str, role: str = "user", **fields) -> UserDB:
    user = UserDB(
        id=str(uuid4()),
        email=email,
        username=email.split("@")[0],
        password_hash="not-used",
        role=role,
        **fields,
    )
    db.add(user)
    db.commit()
    return user


def miss_first_get(monkeypatch, db, model):
    """
    Make the next db.get for model return None, as if another request
    inserted the row between the existence check and the insert.

    The identity map is cleared so the insert really reaches the database.
    """
    real_get = db.get
    state = {"missed": False}

    def _get(entity, ident, **kwargs):
        if entity is model and not state["missed"]:
            state["missed"] = True
            return None
        return real_get(entity, ident, **kwargs)

    db.expunge_all()
    monkeypatch.setattr(db, "get", _get)
    return state
