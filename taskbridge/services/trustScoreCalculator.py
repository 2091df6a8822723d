"""
Trust Score Calculator
======================

Pure mapping from a user's verification steps to a 0-100 trust score and a
verification tier. Nothing here touches the database; the verification
service calls ``compute`` after every step transition and persists the
result as a projection.

Scoring rules:
- Only approved, non-expired steps count.
- Each approved step adds a fixed weight for its tier
  (tier 1 = 20, tier 2 = 25, tier 3 = 30, tier 4 = 40).
- The sum saturates at 100. It is not an average, so stacking many tier 1
  approvals can never exceed the cap.
- The tier is a step function of the score:
  ``>= 90 community``, ``>= 70 enhanced``, ``>= 40 government``, else ``basic``.

The result depends only on the *set* of approved step keys, so input order
and duplicate rows do not change it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Protocol

from taskbridge.models.verification import VerificationStepStatus, VerificationTier


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TIER_WEIGHTS: dict[int, int] = {
    1: 20,
    2: 25,
    3: 30,
    4: 40,
}

MIN_TRUST_SCORE: int = 0
MAX_TRUST_SCORE: int = 100

# Highest threshold first
TIER_THRESHOLDS: tuple[tuple[int, VerificationTier], ...] = (
    (90, VerificationTier.COMMUNITY),
    (70, VerificationTier.ENHANCED),
    (40, VerificationTier.GOVERNMENT),
)


class ScorableStep(Protocol):
    """Anything that looks like a verification step (ORM row or DTO)."""

    step_key: str
    tier: int
    status: VerificationStepStatus
    expires_at: Optional[datetime]


@dataclass(frozen=True)
class TrustScoreResult:
    trust_score: int
    tier: VerificationTier
    approved_keys: frozenset[str]

    @property
    def points_to_next_tier(self) -> Optional[int]:
        """Points missing to reach the next tier, or None at the top tier."""
        for threshold, _tier in reversed(TIER_THRESHOLDS):
            if self.trust_score < threshold:
                return threshold - self.trust_score
        return None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_expired(step: ScorableStep, as_of: Optional[datetime] = None) -> bool:
    if step.expires_at is None:
        return False
    now = as_of or datetime.now(timezone.utc)
    return as_utc(step.expires_at) < as_utc(now)


def is_effectively_approved(
    step: ScorableStep,
    as_of: Optional[datetime] = None,
) -> bool:
    """An approved step counts only while it has not lapsed."""
    return step.status == VerificationStepStatus.APPROVED and not is_expired(step, as_of)


def tier_for_score(score: int) -> VerificationTier:
    for threshold, tier in TIER_THRESHOLDS:
        if score >= threshold:
            return tier
    return VerificationTier.BASIC


def clamp_score(raw: int) -> int:
    return max(MIN_TRUST_SCORE, min(MAX_TRUST_SCORE, raw))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def compute(
    steps: Iterable[ScorableStep],
    as_of: Optional[datetime] = None,
) -> TrustScoreResult:
    """Compute the trust score and tier for a collection of steps.

    Args:
        steps: All verification steps for one user, in any order.
        as_of: Reference instant for expiry checks (defaults to now).

    Returns:
        ``TrustScoreResult`` with the clamped score, derived tier and the
        set of step keys that contributed.
    """
    approved: dict[str, int] = {}
    for step in steps:
        if is_effectively_approved(step, as_of):
            approved[step.step_key] = step.tier

    raw = sum(TIER_WEIGHTS.get(tier, 0) for tier in approved.values())
    score = clamp_score(raw)

    return TrustScoreResult(
        trust_score=score,
        tier=tier_for_score(score),
        approved_keys=frozenset(approved),
    )
