"""
Unit tests for the trust score calculator.

Covers tier weights, the saturation cap, tier thresholds, expiry handling
and the order/duplicate invariance of ``compute``.
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from taskbridge.models.verification import VerificationStepStatus, VerificationTier
from taskbridge.services.trustScoreCalculator import (
    MAX_TRUST_SCORE,
    TIER_WEIGHTS,
    compute,
    is_expired,
    tier_for_score,
)
from taskbridge.services.verificationRegistry import STEP_REGISTRY


AS_OF = datetime(2025, 7, 20, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class TestCompute:

    def test_no_steps_is_zero_basic(self):
        result = compute([], AS_OF)
        assert result.trust_score == 0
        assert result.tier == VerificationTier.BASIC
        assert result.approved_keys == frozenset()

    def test_each_tier_weight(self, make_step):
        assert compute([make_step("phone")], AS_OF).trust_score == TIER_WEIGHTS[1]
        assert compute([make_step("identity")], AS_OF).trust_score == TIER_WEIGHTS[2]
        assert compute([make_step("background")], AS_OF).trust_score == TIER_WEIGHTS[3]
        assert compute([make_step("community")], AS_OF).trust_score == TIER_WEIGHTS[4]

    def test_phone_email_identity_reaches_government(self, make_step):
        steps = [make_step("phone"), make_step("email"), make_step("identity")]
        result = compute(steps, AS_OF)
        assert result.trust_score == 65
        assert result.tier == VerificationTier.GOVERNMENT

    def test_adding_background_reaches_community(self, make_step):
        steps = [
            make_step("phone"),
            make_step("email"),
            make_step("identity"),
            make_step("background"),
        ]
        result = compute(steps, AS_OF)
        assert result.trust_score == 95
        assert result.tier == VerificationTier.COMMUNITY

    def test_all_steps_saturate_at_cap(self, make_step):
        steps = [make_step(d.key) for d in STEP_REGISTRY]
        result = compute(steps, AS_OF)
        assert result.trust_score == MAX_TRUST_SCORE
        assert result.tier == VerificationTier.COMMUNITY

    @pytest.mark.parametrize(
        "status",
        [
            VerificationStepStatus.PENDING,
            VerificationStepStatus.SUBMITTED,
            VerificationStepStatus.REJECTED,
        ],
    )
    def test_non_approved_steps_contribute_nothing(self, make_step, status):
        result = compute([make_step("identity", status)], AS_OF)
        assert result.trust_score == 0

    def test_duplicate_keys_count_once(self, make_step):
        steps = [make_step("phone"), make_step("phone"), make_step("phone")]
        assert compute(steps, AS_OF).trust_score == 20

    def test_order_does_not_matter(self, make_step):
        steps = [
            make_step("phone"),
            make_step("address"),
            make_step("references"),
            make_step("email", VerificationStepStatus.REJECTED),
        ]
        scores = {compute(list(p), AS_OF).trust_score for p in itertools.permutations(steps)}
        assert scores == {75}

    def test_score_never_drops_when_approvals_are_added(self, make_step):
        steps = []
        previous = 0
        for definition in STEP_REGISTRY:
            steps.append(make_step(definition.key))
            score = compute(steps, AS_OF).trust_score
            assert previous <= score <= MAX_TRUST_SCORE
            previous = score

    def test_points_to_next_tier(self, make_step):
        result = compute([make_step("phone"), make_step("email")], AS_OF)
        assert result.trust_score == 40
        assert result.points_to_next_tier == 30

    def test_points_to_next_tier_none_at_top(self, make_step):
        steps = [make_step(d.key) for d in STEP_REGISTRY]
        assert compute(steps, AS_OF).points_to_next_tier is None


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class TestExpiry:

    def test_lapsed_approval_does_not_count(self, make_step):
        step = make_step("address", expires_at=AS_OF - timedelta(seconds=1))
        assert is_expired(step, AS_OF) is True
        assert compute([step], AS_OF).trust_score == 0

    def test_future_expiry_counts(self, make_step):
        step = make_step("address", expires_at=AS_OF + timedelta(days=1))
        assert compute([step], AS_OF).trust_score == 25

    def test_expiry_at_reference_instant_still_counts(self, make_step):
        step = make_step("address", expires_at=AS_OF)
        assert is_expired(step, AS_OF) is False

    def test_naive_expiry_is_treated_as_utc(self, make_step):
        step = make_step("address", expires_at=datetime(2025, 7, 20, 11, 0))
        assert is_expired(step, AS_OF) is True

    def test_no_expiry_never_lapses(self, make_step):
        step = make_step("phone")
        assert is_expired(step, AS_OF + timedelta(days=36500)) is False


# ---------------------------------------------------------------------------
# Tier thresholds
# ---------------------------------------------------------------------------


class TestTierForScore:

    @pytest.mark.parametrize(
        "score, tier",
        [
            (0, VerificationTier.BASIC),
            (39, VerificationTier.BASIC),
            (40, VerificationTier.GOVERNMENT),
            (69, VerificationTier.GOVERNMENT),
            (70, VerificationTier.ENHANCED),
            (89, VerificationTier.ENHANCED),
            (90, VerificationTier.COMMUNITY),
            (100, VerificationTier.COMMUNITY),
        ],
    )
    def test_thresholds(self, score, tier):
        assert tier_for_score(score) == tier
