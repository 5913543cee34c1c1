"""
Tests for the Validation / Dispute Engine.

1. decide, undo_rejection and report_broken move counters exactly as the
   transition table says
2. Illegal transitions raise InvalidStateError and change nothing
3. Only the followed participant may decide or report
4. A failure half-way through leaves status and counters untouched
5. Admin pairing is born validated with counters applied
6. Counters always equal what the ledger implies
7. Drift audit and reconciliation
"""
from unittest.mock import patch

import pytest

from app.models.db_models import (
    InteractionDB, InteractionStatus, ParticipantDB, ActorType,
)
from app.services.follow_loop import (
    InvalidStateError, ForbiddenError, ConflictError, NotFoundError,
)


# =============================================================================
# HELPERS
# =============================================================================

def counters(registry, participant_id):
    p = registry.get_participant(participant_id)
    return {
        "followers": p.followers_count,
        "following": p.following_count,
        "rejected": p.rejected_count,
    }


def assert_counters_match_ledger(db):
    """followers/following/rejected recomputed from follow_interactions."""
    interactions = db.query(InteractionDB).all()
    for p in db.query(ParticipantDB).all():
        following = sum(
            1 for i in interactions
            if i.follower_id == p.id and i.status == InteractionStatus.VALIDATED
        )
        followers = sum(
            1 for i in interactions
            if i.followed_id == p.id and i.status == InteractionStatus.VALIDATED
        )
        rejected = sum(
            1 for i in interactions
            if i.follower_id == p.id
            and i.status in (InteractionStatus.REJECTED, InteractionStatus.UNFOLLOWED)
        )
        assert (p.following_count, p.followers_count, p.rejected_count) == (following, followers, rejected), p.id


@pytest.fixture
def pair(join):
    return join("Ana"), join("Bia")


# =============================================================================
# TEST: DECISIONS
# =============================================================================

class TestDecide:

    def test_accept(self, ledger, engine_service, registry, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)

        result = engine_service.decide(claim.id, True)

        assert result.status == InteractionStatus.VALIDATED
        assert counters(registry, a.id) == {"followers": 0, "following": 1, "rejected": 0}
        assert counters(registry, b.id) == {"followers": 1, "following": 0, "rejected": 0}

    def test_reject(self, ledger, engine_service, registry, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)

        result = engine_service.decide(claim.id, False)

        assert result.status == InteractionStatus.REJECTED
        assert counters(registry, a.id) == {"followers": 0, "following": 0, "rejected": 1}
        assert counters(registry, b.id) == {"followers": 0, "following": 0, "rejected": 0}

    def test_second_decision_is_invalid(self, ledger, engine_service, registry, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)
        engine_service.decide(claim.id, True)

        with pytest.raises(InvalidStateError):
            engine_service.decide(claim.id, True)
        with pytest.raises(InvalidStateError):
            engine_service.decide(claim.id, False)

        assert counters(registry, a.id)["following"] == 1
        assert counters(registry, b.id)["followers"] == 1

    def test_only_followed_participant_decides(self, ledger, engine_service, registry, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)

        with pytest.raises(ForbiddenError):
            engine_service.decide(claim.id, True, actor_participant_id=a.id)

        assert ledger.get_interaction(claim.id).status == InteractionStatus.PENDING_VALIDATION
        engine_service.decide(claim.id, True, actor_participant_id=b.id)
        assert ledger.get_interaction(claim.id).status == InteractionStatus.VALIDATED

    def test_unknown_interaction(self, engine_service):
        with pytest.raises(NotFoundError):
            engine_service.decide("missing", True)


# =============================================================================
# TEST: DISPUTES
# =============================================================================

class TestDisputes:

    def test_claim_accept_then_report_broken(self, ledger, engine_service, registry, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)
        assert ledger.get_interaction(claim.id).status == InteractionStatus.PENDING_VALIDATION

        engine_service.decide(claim.id, True)
        assert counters(registry, a.id)["following"] == 1
        assert counters(registry, b.id)["followers"] == 1

        result = engine_service.report_broken(claim.id)
        assert result.status == InteractionStatus.UNFOLLOWED
        assert counters(registry, a.id) == {"followers": 0, "following": 0, "rejected": 1}
        assert counters(registry, b.id) == {"followers": 0, "following": 0, "rejected": 0}

    def test_claim_reject_then_undo(self, ledger, engine_service, registry, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)

        engine_service.decide(claim.id, False)
        assert counters(registry, a.id)["rejected"] == 1

        result = engine_service.undo_rejection(claim.id)
        assert result.status == InteractionStatus.VALIDATED
        assert counters(registry, a.id) == {"followers": 0, "following": 1, "rejected": 0}
        assert counters(registry, b.id) == {"followers": 1, "following": 0, "rejected": 0}

    def test_undo_after_accept_is_invalid(self, ledger, engine_service, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)
        engine_service.decide(claim.id, True)

        with pytest.raises(InvalidStateError):
            engine_service.undo_rejection(claim.id)

    def test_undo_on_pending_is_invalid(self, ledger, engine_service, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)
        with pytest.raises(InvalidStateError):
            engine_service.undo_rejection(claim.id)

    def test_report_requires_validated(self, ledger, engine_service, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)
        with pytest.raises(InvalidStateError):
            engine_service.report_broken(claim.id)

        engine_service.decide(claim.id, False)
        with pytest.raises(InvalidStateError):
            engine_service.report_broken(claim.id)

    def test_unfollowed_is_terminal(self, ledger, engine_service, registry, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)
        engine_service.decide(claim.id, True)
        engine_service.report_broken(claim.id)
        before = counters(registry, a.id), counters(registry, b.id)

        for action in (
            lambda: engine_service.decide(claim.id, True),
            lambda: engine_service.undo_rejection(claim.id),
            lambda: engine_service.report_broken(claim.id),
        ):
            with pytest.raises(InvalidStateError):
                action()

        assert (counters(registry, a.id), counters(registry, b.id)) == before

    def test_only_followed_participant_reports(self, ledger, engine_service, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)
        engine_service.decide(claim.id, True)

        with pytest.raises(ForbiddenError):
            engine_service.report_broken(claim.id, actor_participant_id=a.id)

    def test_admin_undo_skips_actor_check(self, ledger, engine_service, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)
        engine_service.decide(claim.id, False)

        engine_service.undo_rejection(claim.id, by_admin=True)

        history = ledger.list_history(claim.id)
        assert history[-1].actor == ActorType.ADMIN
        assert history[-1].trigger == "rejection_undone"

    def test_history_follows_the_lifecycle(self, ledger, engine_service, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)
        engine_service.decide(claim.id, False)
        engine_service.undo_rejection(claim.id)
        engine_service.report_broken(claim.id)

        steps = [(e.from_status, e.to_status) for e in ledger.list_history(claim.id)]
        assert steps == [
            (None, InteractionStatus.PENDING_VALIDATION),
            (InteractionStatus.PENDING_VALIDATION, InteractionStatus.REJECTED),
            (InteractionStatus.REJECTED, InteractionStatus.VALIDATED),
            (InteractionStatus.VALIDATED, InteractionStatus.UNFOLLOWED),
        ]


# =============================================================================
# TEST: ATOMICITY
# =============================================================================

class TestAtomicity:

    def test_failure_in_counter_update_rolls_back_status(self, ledger, engine_service, registry, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)

        with patch.object(engine_service, "_apply_deltas", side_effect=RuntimeError("store down")):
            with pytest.raises(RuntimeError):
                engine_service.decide(claim.id, True)

        assert ledger.get_interaction(claim.id).status == InteractionStatus.PENDING_VALIDATION
        assert counters(registry, a.id) == {"followers": 0, "following": 0, "rejected": 0}
        assert counters(registry, b.id) == {"followers": 0, "following": 0, "rejected": 0}
        assert len(ledger.list_history(claim.id)) == 1

        # The retry applies exactly once
        engine_service.decide(claim.id, True)
        assert counters(registry, a.id)["following"] == 1

    def test_stale_status_loses_the_race(self, db, ledger, engine_service, registry, pair):
        a, b = pair
        claim = ledger.register_claim(a.id, b.id)
        engine_service.decide(claim.id, True)

        # A caller holding the old status tries the pending transition again
        stale = ledger.get_interaction(claim.id)
        with pytest.raises(InvalidStateError):
            engine_service.state_machine.transition(
                stale, InteractionStatus.PENDING_VALIDATION, InteractionStatus.REJECTED,
                ActorType.FOLLOWED,
            )
        db.rollback()

        assert counters(registry, a.id) == {"followers": 0, "following": 1, "rejected": 0}


# =============================================================================
# TEST: ADMIN PAIRING
# =============================================================================

class TestAdminCreate:

    def test_admin_pairing_is_validated(self, ledger, engine_service, registry, pair):
        a, b = pair

        interaction = engine_service.admin_create_interaction(a.id, b.id, admin_id="admin-1")

        assert interaction.status == InteractionStatus.VALIDATED
        assert counters(registry, a.id)["following"] == 1
        assert counters(registry, b.id)["followers"] == 1
        history = ledger.list_history(interaction.id)
        assert history[0].actor == ActorType.ADMIN
        assert history[0].actor_id == "admin-1"

    def test_admin_pairing_conflicts(self, ledger, engine_service, registry, pair):
        a, b = pair
        with pytest.raises(ConflictError):
            engine_service.admin_create_interaction(a.id, a.id)

        ledger.register_claim(a.id, b.id)
        with pytest.raises(ConflictError):
            engine_service.admin_create_interaction(a.id, b.id)

        assert counters(registry, a.id)["following"] == 0
        assert counters(registry, b.id)["followers"] == 0

    def test_admin_pairing_can_be_reported(self, engine_service, registry, pair):
        a, b = pair
        interaction = engine_service.admin_create_interaction(a.id, b.id)
        engine_service.report_broken(interaction.id)

        assert counters(registry, a.id) == {"followers": 0, "following": 0, "rejected": 1}
        assert counters(registry, b.id)["followers"] == 0


# =============================================================================
# TEST: LEDGER INVARIANT
# =============================================================================

class TestCounterInvariant:

    def test_counters_match_ledger_after_mixed_activity(self, db, ledger, engine_service, join):
        people = [join(name) for name in ("Ana", "Bia", "Caio", "Dani", "Edu")]

        for i, follower in enumerate(people):
            for j, followed in enumerate(people):
                if i == j:
                    continue
                claim = ledger.register_claim(follower.id, followed.id)
                kind = (i + 2 * j) % 5
                if kind == 0:
                    continue
                engine_service.decide(claim.id, kind != 1)
                if kind == 2:
                    engine_service.report_broken(claim.id)
                elif kind == 1 and j % 2 == 0:
                    engine_service.undo_rejection(claim.id)
            assert_counters_match_ledger(db)

        assert engine_service.audit_counters(people[0].loop_id) == []


# =============================================================================
# TEST: DRIFT AUDIT
# =============================================================================

class TestCounterAudit:

    def test_audit_reports_and_reconcile_fixes(self, db, ledger, engine_service, registry, pair):
        a, b = pair
        engine_service.decide(ledger.register_claim(a.id, b.id).id, True)

        # Simulate a write that bypassed the engine
        db.query(ParticipantDB).filter(ParticipantDB.id == b.id).update({"followers_count": 5})
        db.commit()

        drifts = engine_service.audit_counters(a.loop_id)
        assert len(drifts) == 1
        assert drifts[0].participant_id == b.id
        assert drifts[0].stored["followers_count"] == 5
        assert drifts[0].expected["followers_count"] == 1

        fixed = engine_service.reconcile_counters(a.loop_id)
        assert [d.participant_id for d in fixed] == [b.id]
        assert counters(registry, b.id)["followers"] == 1
        assert engine_service.audit_counters(a.loop_id) == []

    def test_audit_unknown_loop(self, engine_service):
        with pytest.raises(NotFoundError):
            engine_service.audit_counters("missing")
