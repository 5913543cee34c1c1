"""
Tests for membership eligibility and the join flow.

Test Coverage:
1. Completion rate formula
2. Gate decisions against a threshold
3. Providers backed by users and organizations
4. FollowLoopService.join: gate on first join only, bans, profile copy
"""
import pytest
from unittest.mock import MagicMock

from app.services.follow_loop import (
    FollowLoopService, NotEligibleError, ForbiddenError, NotFoundError,
)
from app.services.follow_loop.eligibility import (
    completion_rate, EligibilityGate, UserProfileProvider, UserStatsEligibilityProvider,
)
from conftest import make_user


# =============================================================================
# TEST: COMPLETION RATE
# =============================================================================

class TestCompletionRate:

    def test_nothing_assigned_counts_as_full(self):
        assert completion_rate(0, 0, 0) == 100

    def test_justifications_count_as_completed(self):
        assert completion_rate(6, 2, 10) == 80

    def test_rounds_to_integer(self):
        assert completion_rate(2, 0, 3) == 67
        assert completion_rate(1, 0, 3) == 33


# =============================================================================
# TEST: GATE
# =============================================================================

class TestEligibilityGate:

    def _provider(self, rate, threshold):
        provider = MagicMock()
        provider.get_completion_rate.return_value = rate
        provider.get_threshold.return_value = threshold
        return provider

    def test_below_threshold(self):
        gate = EligibilityGate(self._provider(rate=60, threshold=80))
        result = gate.check("person-1", "org-1")

        assert not result.eligible
        assert (result.current_rate, result.required_rate) == (60, 80)

    def test_at_threshold_is_enough(self):
        gate = EligibilityGate(self._provider(rate=80, threshold=80))
        assert gate.check("person-1", "org-1").eligible

    def test_zero_threshold_skips_rate_lookup(self):
        provider = self._provider(rate=0, threshold=0)
        gate = EligibilityGate(provider)

        assert gate.check("person-1", None).eligible
        provider.get_completion_rate.assert_not_called()

    def test_ensure_eligible_raises_with_rates(self):
        gate = EligibilityGate(self._provider(rate=40, threshold=75))

        with pytest.raises(NotEligibleError) as exc:
            gate.ensure_eligible("person-1", "org-1")

        assert exc.value.current_rate == 40
        assert exc.value.required_rate == 75
        assert exc.value.code == "forbidden"


# =============================================================================
# TEST: USER-BACKED PROVIDERS
# =============================================================================

class TestUserProviders:

    def test_profile_snapshot_from_user(self, db, organization):
        user = make_user(
            db, "ana@example.com", full_name="Ana Souza", instagram="ana.souza",
            avatar_url="https://cdn.example.com/ana.jpg",
            organization_id=organization.id, region="south",
        )

        profile = UserProfileProvider(db).get_profile(user.id)

        assert profile.name == "Ana Souza"
        assert profile.handle == "ana.souza"
        assert profile.organization_ref == organization.id
        assert profile.region == "south"

    def test_profile_falls_back_to_username(self, db):
        user = make_user(db, "bia@example.com")
        profile = UserProfileProvider(db).get_profile(user.id)

        assert profile.name == "bia"
        assert profile.handle == ""

    def test_unknown_person(self, db):
        with pytest.raises(NotFoundError):
            UserProfileProvider(db).get_profile("nobody")

    def test_stats_provider(self, db, organization):
        organization.follow_loop_threshold = 70
        db.commit()
        user = make_user(
            db, "caio@example.com", tasks_assigned=20, tasks_completed=12, justifications_accepted=3,
        )

        provider = UserStatsEligibilityProvider(db)

        assert provider.get_completion_rate(user.id) == 75
        assert provider.get_threshold(organization.id) == 70
        assert provider.get_threshold(None) == 0
        assert provider.get_threshold("unknown-org") == 0


# =============================================================================
# TEST: SERVICE JOIN
# =============================================================================

class TestServiceJoin:

    def test_join_copies_profile(self, db, loop, organization):
        user = make_user(db, "ana@example.com", full_name="Ana", instagram="ana", organization_id=organization.id)

        participant = FollowLoopService(db).join(loop.id, user.id)

        assert participant.id == f"{loop.id}_{user.id}"
        assert participant.display_name == "Ana"
        assert participant.handle == "ana"

    def test_low_completion_rate_is_refused(self, db, loop, organization):
        organization.follow_loop_threshold = 80
        db.commit()
        user = make_user(db, "ana@example.com", tasks_assigned=10, tasks_completed=5)
        service = FollowLoopService(db)

        with pytest.raises(NotEligibleError) as exc:
            service.join(loop.id, user.id)

        assert exc.value.current_rate == 50
        assert service.registry.get_participant_for_person(loop.id, user.id) is None

    def test_returning_member_skips_the_gate(self, db, loop, organization):
        user = make_user(db, "ana@example.com", tasks_assigned=10, tasks_completed=10)
        service = FollowLoopService(db)
        service.join(loop.id, user.id)

        # Rate drops after joining; coming back is still allowed
        organization.follow_loop_threshold = 90
        user.tasks_completed = 1
        db.commit()

        participant = service.join(loop.id, user.id)
        assert participant.is_active

    def test_banned_member_cannot_rejoin(self, db, loop):
        user = make_user(db, "ana@example.com")
        service = FollowLoopService(db)
        participant = service.join(loop.id, user.id)

        service.registry.set_banned(participant.id, True)
        with pytest.raises(ForbiddenError):
            service.join(loop.id, user.id)

        service.registry.set_banned(participant.id, False)
        assert service.join(loop.id, user.id).is_active

    def test_inactive_loop_refuses_join(self, db, loop):
        user = make_user(db, "ana@example.com")
        service = FollowLoopService(db)
        service.registry.set_loop_active(loop.id, False)

        with pytest.raises(ForbiddenError):
            service.join(loop.id, user.id)

    def test_injected_providers(self, db, loop):
        from app.services.follow_loop import ProfileSnapshot

        profiles = MagicMock()
        profiles.get_profile.return_value = ProfileSnapshot(name="External", handle="ext")
        stats = MagicMock()
        stats.get_threshold.return_value = 0

        participant = FollowLoopService(db, profile_provider=profiles, eligibility_provider=stats).join(
            loop.id, "external-person"
        )

        assert participant.display_name == "External"
        profiles.get_profile.assert_called_once_with("external-person")
