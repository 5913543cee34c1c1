"""
Follow Loop Engine - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Enum as SQLEnum, Boolean,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS FOR THE FOLLOW LOOP
# =============================================================================

class InteractionStatus(str, Enum):
    """Lifecycle of a follow claim."""
    PENDING_VALIDATION = "pending_validation"
    VALIDATED = "validated"
    REJECTED = "rejected"
    UNFOLLOWED = "unfollowed"


class ActorType(str, Enum):
    """Who triggered an interaction event."""
    FOLLOWER = "FOLLOWER"
    FOLLOWED = "FOLLOWED"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class UserRole(str, Enum):
    """Account role carried in the access token."""
    USER = "user"
    ADMIN = "admin"


class ParticipantFilter(str, Enum):
    """Admin console filters for the participant list."""
    ALL = "all"
    ACTIVE = "active"
    BANNED = "banned"
    HIGH_REJECTION = "high_rejection"


# =============================================================================
# IDENTITY / MEMBERSHIP SOURCES
# =============================================================================

class OrganizationDB(Base):
    """Organization owning loops; supplies the eligibility threshold."""
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(255), nullable=False)
    # Minimum task completion percentage required to join a loop (0 = open)
    follow_loop_threshold = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    loops = relationship("FollowLoopDB", back_populates="organization")


class UserDB(Base):
    """User account; the person behind every participant."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default=UserRole.USER.value, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # ==========================================================================
    # PUBLIC PROFILE - copied into participant snapshots at join time
    # ==========================================================================
    full_name = Column(String(255), nullable=True)
    instagram = Column(String(100), nullable=True)
    avatar_url = Column(String(500), nullable=True)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True)
    region = Column(String(50), nullable=True)

    # ==========================================================================
    # TASK STATISTICS - maintained by the posts feature, read for eligibility
    # ==========================================================================
    tasks_assigned = Column(Integer, default=0, nullable=False)
    tasks_completed = Column(Integer, default=0, nullable=False)
    justifications_accepted = Column(Integer, default=0, nullable=False)


# =============================================================================
# FOLLOW LOOP
# =============================================================================

class FollowLoopDB(Base):
    """A named engagement campaign scoped to an organization."""
    __tablename__ = "follow_loops"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(255), nullable=False)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    organization = relationship("OrganizationDB", back_populates="loops")
    # No cascade - participants and interactions outlive their loop
    participants = relationship("ParticipantDB", back_populates="loop", passive_deletes="all")


class ParticipantDB(Base):
    """
    Membership of one person in one loop.

    The id is "{loop_id}_{person_id}" so a second join lands on the same row.
    Counters are written only by the validation engine.
    """
    __tablename__ = "follow_loop_participants"
    __table_args__ = (
        UniqueConstraint("loop_id", "person_id", name="uq_participant_loop_person"),
        Index("ix_participant_selectable", "loop_id", "is_active", "is_banned"),
    )

    id = Column(String(80), primary_key=True)
    loop_id = Column(String(36), ForeignKey("follow_loops.id", ondelete="NO ACTION"), nullable=False)
    person_id = Column(String(36), nullable=False, index=True)

    # Display snapshot (refreshed on every join)
    display_name = Column(String(255), nullable=False, default="")
    handle = Column(String(100), nullable=False, default="")
    avatar_url = Column(String(500), nullable=True)
    organization_id = Column(String(36), nullable=True, index=True)
    region = Column(String(50), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    is_banned = Column(Boolean, default=False, nullable=False)

    # Derived from follow_interactions
    followers_count = Column(Integer, default=0, nullable=False)
    following_count = Column(Integer, default=0, nullable=False)
    rejected_count = Column(Integer, default=0, nullable=False)

    joined_at = Column(DateTime, default=datetime.utcnow)
    last_active_at = Column(DateTime, default=datetime.utcnow)

    loop = relationship("FollowLoopDB", back_populates="participants")


class InteractionDB(Base):
    """
    A directed follow claim inside one loop.

    The id is "{follower_id}_{followed_id}"; the primary key is what rejects
    a second claim toward the same target. Names are captured at creation
    and never refreshed.
    """
    __tablename__ = "follow_interactions"
    __table_args__ = (
        Index("ix_interaction_followed_status", "followed_id", "status"),
        Index("ix_interaction_follower_status", "follower_id", "status"),
        Index("ix_interaction_loop_created", "loop_id", "created_at"),
    )

    id = Column(String(161), primary_key=True)
    loop_id = Column(String(36), nullable=False)
    follower_id = Column(String(80), ForeignKey("follow_loop_participants.id"), nullable=False)
    followed_id = Column(String(80), ForeignKey("follow_loop_participants.id"), nullable=False)
    organization_id = Column(String(36), nullable=True)

    status = Column(
        SQLEnum(InteractionStatus, values_callable=lambda e: [m.value for m in e]),
        default=InteractionStatus.PENDING_VALIDATION,
        nullable=False,
    )

    follower_name = Column(String(255), nullable=False, default="")
    follower_handle = Column(String(100), nullable=False, default="")
    followed_name = Column(String(255), nullable=False, default="")
    followed_handle = Column(String(100), nullable=False, default="")

    created_at = Column(DateTime, default=datetime.utcnow)
    status_changed_at = Column(DateTime, default=datetime.utcnow)

    events = relationship(
        "InteractionEventDB",
        back_populates="interaction",
        order_by="InteractionEventDB.id",
    )


class InteractionEventDB(Base):
    """Immutable log of interaction status transitions."""
    __tablename__ = "follow_interaction_events"

    id = Column(Integer, primary_key=True, autoincrement=True)  # insertion order
    interaction_id = Column(String(161), ForeignKey("follow_interactions.id"), nullable=False, index=True)
    from_status = Column(
        SQLEnum(InteractionStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=True,  # NULL for the creation event
    )
    to_status = Column(
        SQLEnum(InteractionStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    trigger = Column(String(50), nullable=False)
    actor = Column(SQLEnum(ActorType), nullable=False)
    actor_id = Column(String(80), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    interaction = relationship("InteractionDB", back_populates="events")
