"""
Membership and Eligibility Collaborators

The follow loop does not own profiles or task statistics. It consumes them
through two narrow interfaces:

- ProfileProvider.get_profile(person_id) -> ProfileSnapshot
- EligibilityProvider.get_completion_rate(person_id) / get_threshold(org_id)

Default implementations read the users and organizations tables.
EligibilityGate combines them into the admission decision used before join.
"""
from dataclasses import dataclass
from typing import Optional, Protocol
import logging

from sqlalchemy.orm import Session

from ...models.db_models import UserDB, OrganizationDB
from .exceptions import NotFoundError, NotEligibleError

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class ProfileSnapshot:
    """Display fields copied into a participant record at join time."""
    name: str
    handle: str
    avatar_ref: Optional[str] = None
    organization_ref: Optional[str] = None
    region: Optional[str] = None


@dataclass(frozen=True)
class EligibilityResult:
    """Outcome of an admission check."""
    eligible: bool
    current_rate: int
    required_rate: int


# =============================================================================
# COLLABORATOR INTERFACES
# =============================================================================

class ProfileProvider(Protocol):
    def get_profile(self, person_id: str) -> ProfileSnapshot: ...


class EligibilityProvider(Protocol):
    def get_completion_rate(self, person_id: str) -> int: ...

    def get_threshold(self, organization_id: Optional[str]) -> int: ...


def completion_rate(completed: int, accepted_justifications: int, assigned: int) -> int:
    """
    Percentage of assigned tasks that were completed or justified.

    A person with nothing assigned yet counts as 100 so new members can join.
    """
    if assigned <= 0:
        return 100
    return round((completed + accepted_justifications) / assigned * 100)


# =============================================================================
# DEFAULT IMPLEMENTATIONS
# =============================================================================

class UserProfileProvider:
    """Builds profile snapshots from the users table."""

    def __init__(self, db: Session):
        self.db = db

    def get_profile(self, person_id: str) -> ProfileSnapshot:
        user = self.db.get(UserDB, person_id)
        if user is None:
            raise NotFoundError("Person", person_id)
        return ProfileSnapshot(
            name=user.full_name or user.username,
            handle=user.instagram or "",
            avatar_ref=user.avatar_url,
            organization_ref=user.organization_id,
            region=user.region,
        )


class UserStatsEligibilityProvider:
    """Reads task statistics from users and thresholds from organizations."""

    def __init__(self, db: Session):
        self.db = db

    def get_completion_rate(self, person_id: str) -> int:
        user = self.db.get(UserDB, person_id)
        if user is None:
            raise NotFoundError("Person", person_id)
        return completion_rate(
            user.tasks_completed or 0,
            user.justifications_accepted or 0,
            user.tasks_assigned or 0,
        )

    def get_threshold(self, organization_id: Optional[str]) -> int:
        if not organization_id:
            return 0
        org = self.db.get(OrganizationDB, organization_id)
        if org is None:
            return 0
        return org.follow_loop_threshold or 0


# =============================================================================
# GATE
# =============================================================================

class EligibilityGate:
    """Decides whether a person may join a loop of an organization."""

    def __init__(self, provider: EligibilityProvider):
        self.provider = provider

    def check(self, person_id: str, organization_id: Optional[str]) -> EligibilityResult:
        required = self.provider.get_threshold(organization_id)
        if required <= 0:
            return EligibilityResult(eligible=True, current_rate=100, required_rate=required)

        current = self.provider.get_completion_rate(person_id)
        return EligibilityResult(
            eligible=current >= required,
            current_rate=current,
            required_rate=required,
        )

    def ensure_eligible(self, person_id: str, organization_id: Optional[str]) -> EligibilityResult:
        """Raise NotEligibleError when the person is below the threshold."""
        result = self.check(person_id, organization_id)
        if not result.eligible:
            logger.warning(
                f"Person {person_id} not eligible: {result.current_rate}% < {result.required_rate}%"
            )
            raise NotEligibleError(result.current_rate, result.required_rate)
        return result
