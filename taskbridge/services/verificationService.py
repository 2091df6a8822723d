"""
Verification Service
====================

Drives each user's verification steps through their state machine and
keeps the persisted ``TrustProfile`` projection in sync.

- Steps are instantiated from the registry the first time a profile loads.
- Document submission moves a step ``pending -> submitted``.
- Verifier results (opaque, already decided) move it to ``approved`` or
  ``rejected``; a result for a still-pending step records an implicit
  submission first.
- Rejected steps may be resubmitted.
- Expiry is evaluated lazily on every load: lapsed approvals are demoted to
  ``pending`` and reported as ``StaleVerificationStep`` notices.

Each approval, rejection and demotion recomputes the trust score and emits
a ``VerificationStepChanged`` event. Events are returned to the caller,
which hands them to the dispatcher after the commit.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskbridge.core.errors import StaleVerificationStep, VerificationStepNotFound
from taskbridge.events.taskEvents import DomainEvent, verification_step_changed
from taskbridge.models.verification import (
    TrustProfile,
    VerificationStep,
    VerificationStepStatus,
)
from taskbridge.services import trustScoreCalculator
from taskbridge.services.verificationRegistry import (
    build_steps_for_user,
    expiry_for,
    get_step_definition,
    validate_step_transition,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VerifierResult:
    """Outcome reported by the external document/identity verifier.

    Identify the step either by ``step_id`` or by ``user_id`` + ``step_key``.
    """
    approved: bool
    step_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    step_key: Optional[str] = None
    confidence: Optional[Union[Decimal, float]] = None
    rejection_reason: Optional[str] = None


@dataclass
class TrustProfileView:
    user_id: uuid.UUID
    trust_score: int
    verification_tier: str
    computed_at: Optional[datetime]
    points_to_next_tier: Optional[int]
    required_complete: bool
    steps: list[VerificationStep]
    stale: list[StaleVerificationStep] = field(default_factory=list)
    events: list[DomainEvent] = field(default_factory=list)


@dataclass
class StepChangeOutcome:
    step: VerificationStep
    profile: TrustProfile
    stale: list[StaleVerificationStep] = field(default_factory=list)
    events: list[DomainEvent] = field(default_factory=list)


@dataclass
class _Refreshed:
    steps: list[VerificationStep]
    profile: TrustProfile
    result: trustScoreCalculator.TrustScoreResult
    stale: list[StaleVerificationStep]
    events: list[DomainEvent]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _load_steps(db: AsyncSession, user_id: uuid.UUID) -> list[VerificationStep]:
    stmt = (
        select(VerificationStep)
        .where(VerificationStep.user_id == user_id)
        .order_by(VerificationStep.tier, VerificationStep.step_key)
    )
    return list((await db.execute(stmt)).scalars().all())


async def _ensure_steps(db: AsyncSession, user_id: uuid.UUID) -> list[VerificationStep]:
    """Load the user's steps, creating any the registry has and they lack.

    A concurrent first load may insert the same rows; the unique constraint
    rejects ours and the rows the other request committed are used instead.
    """
    steps = await _load_steps(db, user_id)
    missing = build_steps_for_user(user_id, frozenset(s.step_key for s in steps))
    if missing:
        try:
            async with db.begin_nested():
                db.add_all(missing)
                await db.flush()
        except IntegrityError:
            logger.info(
                "Verification steps for user %s were created concurrently; reloading",
                user_id,
            )
        else:
            logger.info(
                "Created %d verification steps for user %s", len(missing), user_id
            )
        steps = await _load_steps(db, user_id)
    return steps


async def _get_or_create_profile(db: AsyncSession, user_id: uuid.UUID) -> TrustProfile:
    stmt = select(TrustProfile).where(TrustProfile.user_id == user_id)
    profile = (await db.execute(stmt)).scalar_one_or_none()
    if profile is not None:
        return profile
    try:
        async with db.begin_nested():
            profile = TrustProfile(user_id=user_id)
            db.add(profile)
            await db.flush()
    except IntegrityError:
        logger.info("Trust profile for user %s was created concurrently; reloading", user_id)
        profile = (await db.execute(stmt)).scalar_one()
    return profile


async def _recompute_profile(
    db: AsyncSession,
    user_id: uuid.UUID,
    steps: list[VerificationStep],
    as_of: datetime,
) -> tuple[TrustProfile, trustScoreCalculator.TrustScoreResult]:
    """Rewrite the projection from the current step set."""
    result = trustScoreCalculator.compute(steps, as_of)
    profile = await _get_or_create_profile(db, user_id)

    previous = (profile.trust_score, profile.verification_tier)
    profile.trust_score = result.trust_score
    profile.verification_tier = result.tier
    profile.computed_at = as_of
    await db.flush()

    if previous != (result.trust_score, result.tier):
        logger.info(
            "Trust profile recomputed for user %s: score=%d tier=%s",
            user_id,
            result.trust_score,
            result.tier.value,
        )
    return profile, result


def _demote_expired(
    steps: list[VerificationStep],
    as_of: datetime,
) -> list[tuple[VerificationStep, StaleVerificationStep]]:
    demoted = []
    for step in steps:
        if step.status != VerificationStepStatus.APPROVED:
            continue
        if not trustScoreCalculator.is_expired(step, as_of):
            continue

        validate_step_transition(step.status, VerificationStepStatus.PENDING, expired=True)
        expired_at = trustScoreCalculator.as_utc(step.expires_at)
        step.status = VerificationStepStatus.PENDING
        step.expires_at = None
        notice = StaleVerificationStep(step.step_key, expired_at)
        logger.warning(
            "Verification step %s for user %s expired at %s; demoted to pending",
            step.step_key,
            step.user_id,
            expired_at.isoformat(),
        )
        demoted.append((step, notice))
    return demoted


async def _refresh(
    db: AsyncSession,
    user_id: uuid.UUID,
    as_of: datetime,
) -> _Refreshed:
    """Ensure steps exist, apply lazy expiry and rewrite the projection."""
    steps = await _ensure_steps(db, user_id)
    demoted = _demote_expired(steps, as_of)
    profile, result = await _recompute_profile(db, user_id, steps, as_of)

    events: list[DomainEvent] = []
    for step, _notice in demoted:
        events.extend(
            verification_step_changed(
                step,
                VerificationStepStatus.APPROVED.value,
                result.trust_score,
                result.tier.value,
            )
        )

    return _Refreshed(
        steps=steps,
        profile=profile,
        result=result,
        stale=[notice for _step, notice in demoted],
        events=events,
    )


def _find_step(
    steps: list[VerificationStep],
    user_id: uuid.UUID,
    step_key: str,
) -> VerificationStep:
    for step in steps:
        if step.step_key == step_key:
            return step
    raise VerificationStepNotFound(f"{user_id}/{step_key}")


def _now(as_of: Optional[datetime]) -> datetime:
    return as_of or datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def load_trust_profile(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    as_of: Optional[datetime] = None,
) -> TrustProfileView:
    """Load (and lazily maintain) a user's trust profile.

    Missing steps are created from the registry, lapsed approvals demoted,
    and the projection rewritten before the view is returned.
    """
    now = _now(as_of)
    refreshed = await _refresh(db, user_id, now)
    result = refreshed.result

    required_complete = all(
        trustScoreCalculator.is_effectively_approved(step, now)
        for step in refreshed.steps
        if step.required
    )

    return TrustProfileView(
        user_id=user_id,
        trust_score=result.trust_score,
        verification_tier=result.tier.value,
        computed_at=refreshed.profile.computed_at,
        points_to_next_tier=result.points_to_next_tier,
        required_complete=required_complete,
        steps=refreshed.steps,
        stale=refreshed.stale,
        events=refreshed.events,
    )


async def submit_step(
    db: AsyncSession,
    user_id: uuid.UUID,
    step_key: str,
    *,
    document_url: Optional[str] = None,
    as_of: Optional[datetime] = None,
) -> StepChangeOutcome:
    """Record a document upload for a pending step.

    Raises:
        VerificationStepNotFound: If ``step_key`` is not in the registry.
        InvalidTransition: If the step is not pending.
    """
    get_step_definition(step_key)
    now = _now(as_of)
    refreshed = await _refresh(db, user_id, now)
    step = _find_step(refreshed.steps, user_id, step_key)

    validate_step_transition(step.status, VerificationStepStatus.SUBMITTED)
    step.status = VerificationStepStatus.SUBMITTED
    step.submitted_at = now
    if document_url is not None:
        step.document_url = document_url
    await db.flush()

    logger.info("Verification step %s submitted for user %s", step_key, user_id)

    return StepChangeOutcome(
        step=step,
        profile=refreshed.profile,
        stale=refreshed.stale,
        events=refreshed.events,
    )


async def resubmit_step(
    db: AsyncSession,
    user_id: uuid.UUID,
    step_key: str,
    *,
    document_url: Optional[str] = None,
    as_of: Optional[datetime] = None,
) -> StepChangeOutcome:
    """Reopen a rejected step. With a new document it is submitted right away.

    Raises:
        VerificationStepNotFound: If ``step_key`` is not in the registry.
        InvalidTransition: If the step is not rejected.
    """
    get_step_definition(step_key)
    now = _now(as_of)
    refreshed = await _refresh(db, user_id, now)
    step = _find_step(refreshed.steps, user_id, step_key)

    validate_step_transition(step.status, VerificationStepStatus.PENDING)
    step.status = VerificationStepStatus.PENDING
    step.rejection_reason = None
    step.reviewed_at = None
    step.confidence = None

    if document_url is not None:
        validate_step_transition(step.status, VerificationStepStatus.SUBMITTED)
        step.status = VerificationStepStatus.SUBMITTED
        step.submitted_at = now
        step.document_url = document_url
    await db.flush()

    logger.info(
        "Verification step %s reopened for user %s (status=%s)",
        step_key,
        user_id,
        step.status.value,
    )

    return StepChangeOutcome(
        step=step,
        profile=refreshed.profile,
        stale=refreshed.stale,
        events=refreshed.events,
    )


async def apply_verifier_result(
    db: AsyncSession,
    result: VerifierResult,
    *,
    as_of: Optional[datetime] = None,
) -> StepChangeOutcome:
    """Apply an approve/reject decision from the external verifier.

    Raises:
        VerificationStepNotFound: If the step cannot be located.
        InvalidTransition: If the step already holds a decision.
    """
    now = _now(as_of)

    if result.step_id is not None:
        stmt = select(VerificationStep).where(VerificationStep.id == result.step_id)
        located = (await db.execute(stmt)).scalar_one_or_none()
        if located is None:
            raise VerificationStepNotFound(result.step_id)
        user_id, step_key = located.user_id, located.step_key
    elif result.user_id is not None and result.step_key is not None:
        get_step_definition(result.step_key)
        user_id, step_key = result.user_id, result.step_key
    else:
        raise VerificationStepNotFound(result.step_key or "<unidentified>")

    refreshed = await _refresh(db, user_id, now)
    step = _find_step(refreshed.steps, user_id, step_key)
    previous_status = step.status

    # Auto-check results can arrive before any upload was recorded
    if step.status == VerificationStepStatus.PENDING:
        validate_step_transition(step.status, VerificationStepStatus.SUBMITTED)
        step.status = VerificationStepStatus.SUBMITTED
        step.submitted_at = now

    target = (
        VerificationStepStatus.APPROVED
        if result.approved
        else VerificationStepStatus.REJECTED
    )
    validate_step_transition(step.status, target)

    step.status = target
    step.reviewed_at = now
    step.confidence = (
        Decimal(str(result.confidence)) if result.confidence is not None else None
    )
    if result.approved:
        step.rejection_reason = None
        step.expires_at = expiry_for(step.step_key, now)
    else:
        step.rejection_reason = result.rejection_reason
        step.expires_at = None

    profile, score = await _recompute_profile(db, user_id, refreshed.steps, now)

    events = list(refreshed.events)
    events.extend(
        verification_step_changed(
            step,
            previous_status.value,
            score.trust_score,
            score.tier.value,
        )
    )

    logger.info(
        "Verifier result applied to %s for user %s: %s -> %s (confidence=%s)",
        step_key,
        user_id,
        previous_status.value,
        target.value,
        step.confidence,
    )

    return StepChangeOutcome(
        step=step,
        profile=profile,
        stale=refreshed.stale,
        events=events,
    )
