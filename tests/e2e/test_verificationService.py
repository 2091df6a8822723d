"""
E2E: verification steps, trust profile projection and lazy expiry.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from taskbridge.core.errors import InvalidTransition, VerificationStepNotFound
from taskbridge.events.taskEvents import EventKind
from taskbridge.models import (
    TrustProfile,
    VerificationStep,
    VerificationStepStatus,
    VerificationTier,
)
from taskbridge.services import verificationService
from taskbridge.services.verificationService import VerifierResult
from tests.e2e.conftest import AS_OF, CLIENT_ID


pytestmark = pytest.mark.asyncio


async def _approve(db, key, *, user_id=CLIENT_ID, as_of=AS_OF):
    return await verificationService.apply_verifier_result(
        db,
        VerifierResult(approved=True, user_id=user_id, step_key=key, confidence=97.5),
        as_of=as_of,
    )


async def _stored_profile(db, user_id=CLIENT_ID):
    stmt = (
        select(TrustProfile)
        .where(TrustProfile.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one()


# ---------------------------------------------------------------------------
# Profile loading
# ---------------------------------------------------------------------------


class TestLoadProfile:

    async def test_first_load_creates_all_steps(self, db_session):
        view = await verificationService.load_trust_profile(
            db_session, CLIENT_ID, as_of=AS_OF
        )

        assert len(view.steps) == 7
        assert all(s.status == VerificationStepStatus.PENDING for s in view.steps)
        assert view.trust_score == 0
        assert view.verification_tier == "basic"
        assert view.points_to_next_tier == 40
        assert view.required_complete is False
        assert view.stale == []
        profile = await _stored_profile(db_session)
        assert profile.trust_score == 0

    async def test_second_load_does_not_duplicate(self, db_session):
        await verificationService.load_trust_profile(db_session, CLIENT_ID, as_of=AS_OF)
        view = await verificationService.load_trust_profile(
            db_session, CLIENT_ID, as_of=AS_OF
        )
        assert len(view.steps) == 7

    async def test_rows_inserted_by_a_concurrent_load_are_reused(self, db_session):
        first = await verificationService.load_trust_profile(
            db_session, CLIENT_ID, as_of=AS_OF
        )
        real_load = verificationService._load_steps
        calls = 0

        # The first read misses the rows another request has just written
        async def _stale_first_read(db, user_id):
            nonlocal calls
            calls += 1
            if calls == 1:
                return []
            return await real_load(db, user_id)

        with patch.object(verificationService, "_load_steps", new=_stale_first_read):
            view = await verificationService.load_trust_profile(
                db_session, CLIENT_ID, as_of=AS_OF
            )

        assert calls == 2
        assert sorted(s.id for s in view.steps) == sorted(s.id for s in first.steps)
        stored = await db_session.execute(
            select(func.count())
            .select_from(VerificationStep)
            .where(VerificationStep.user_id == CLIENT_ID)
        )
        assert stored.scalar_one() == 7


# ---------------------------------------------------------------------------
# Scoring through approvals
# ---------------------------------------------------------------------------


class TestApprovals:

    async def test_government_then_community(self, db_session):
        for key in ("phone", "email", "identity"):
            await _approve(db_session, key)

        profile = await _stored_profile(db_session)
        assert profile.trust_score == 65
        assert profile.verification_tier == VerificationTier.GOVERNMENT

        outcome = await _approve(db_session, "background")
        assert outcome.profile.trust_score == 95
        assert outcome.profile.verification_tier == VerificationTier.COMMUNITY

    async def test_result_for_pending_step_is_implicitly_submitted(self, db_session):
        outcome = await _approve(db_session, "phone")

        assert outcome.step.status == VerificationStepStatus.APPROVED
        assert outcome.step.submitted_at is not None
        assert outcome.step.reviewed_at is not None
        assert outcome.step.expires_at is None
        (event,) = outcome.events
        assert event.kind == EventKind.VERIFICATION_STEP_CHANGED
        assert event.user_id == CLIENT_ID
        assert event.payload["previous_status"] == "pending"
        assert event.payload["status"] == "approved"
        assert event.payload["trust_score"] == 20

    async def test_approval_stamps_expiry(self, db_session):
        outcome = await _approve(db_session, "address")
        assert outcome.step.expires_at == AS_OF + timedelta(days=90)

    async def test_required_complete(self, db_session):
        for key in ("phone", "email", "identity", "address"):
            await _approve(db_session, key)
        view = await verificationService.load_trust_profile(
            db_session, CLIENT_ID, as_of=AS_OF
        )
        assert view.required_complete is True
        assert view.trust_score == 90

    async def test_cannot_approve_twice(self, db_session):
        await _approve(db_session, "phone")
        with pytest.raises(InvalidTransition) as exc_info:
            await _approve(db_session, "phone")
        assert exc_info.value.entity == "verification_step"

    async def test_result_by_step_id(self, db_session):
        view = await verificationService.load_trust_profile(
            db_session, CLIENT_ID, as_of=AS_OF
        )
        email = next(s for s in view.steps if s.step_key == "email")

        outcome = await verificationService.apply_verifier_result(
            db_session, VerifierResult(approved=True, step_id=email.id), as_of=AS_OF
        )
        assert outcome.step.id == email.id
        assert outcome.profile.trust_score == 20

    async def test_unknown_step_id(self, db_session):
        with pytest.raises(VerificationStepNotFound):
            await verificationService.apply_verifier_result(
                db_session, VerifierResult(approved=True, step_id=uuid.uuid4())
            )

    async def test_unknown_step_key(self, db_session):
        with pytest.raises(VerificationStepNotFound):
            await _approve(db_session, "passport")


# ---------------------------------------------------------------------------
# Submission, rejection & resubmission
# ---------------------------------------------------------------------------


class TestSubmissionCycle:

    async def test_reject_then_resubmit_then_approve(self, db_session):
        submitted = await verificationService.submit_step(
            db_session, CLIENT_ID, "identity",
            document_url="https://files.example/id-front.jpg", as_of=AS_OF,
        )
        assert submitted.step.status == VerificationStepStatus.SUBMITTED

        rejected = await verificationService.apply_verifier_result(
            db_session,
            VerifierResult(
                approved=False,
                user_id=CLIENT_ID,
                step_key="identity",
                rejection_reason="Document is blurry",
            ),
            as_of=AS_OF,
        )
        assert rejected.step.status == VerificationStepStatus.REJECTED
        assert rejected.step.rejection_reason == "Document is blurry"
        assert rejected.profile.trust_score == 0

        reopened = await verificationService.resubmit_step(
            db_session, CLIENT_ID, "identity",
            document_url="https://files.example/id-front-2.jpg", as_of=AS_OF,
        )
        assert reopened.step.status == VerificationStepStatus.SUBMITTED
        assert reopened.step.rejection_reason is None

        approved = await _approve(db_session, "identity")
        assert approved.profile.trust_score == 25

    async def test_resubmit_without_document_returns_to_pending(self, db_session):
        await verificationService.apply_verifier_result(
            db_session,
            VerifierResult(approved=False, user_id=CLIENT_ID, step_key="email"),
            as_of=AS_OF,
        )
        outcome = await verificationService.resubmit_step(
            db_session, CLIENT_ID, "email", as_of=AS_OF
        )
        assert outcome.step.status == VerificationStepStatus.PENDING

    async def test_resubmit_requires_rejection(self, db_session):
        with pytest.raises(InvalidTransition):
            await verificationService.resubmit_step(
                db_session, CLIENT_ID, "email", as_of=AS_OF
            )

    async def test_submit_twice(self, db_session):
        await verificationService.submit_step(db_session, CLIENT_ID, "phone", as_of=AS_OF)
        with pytest.raises(InvalidTransition):
            await verificationService.submit_step(
                db_session, CLIENT_ID, "phone", as_of=AS_OF
            )


# ---------------------------------------------------------------------------
# Lazy expiry
# ---------------------------------------------------------------------------


class TestExpiry:

    async def test_lapsed_approval_is_demoted_on_load(self, db_session):
        await _approve(db_session, "phone")
        await _approve(db_session, "address")
        later = AS_OF + timedelta(days=91)

        view = await verificationService.load_trust_profile(
            db_session, CLIENT_ID, as_of=later
        )

        assert view.trust_score == 20
        (notice,) = view.stale
        assert notice.code == "stale_verification_step"
        assert notice.step_key == "address"
        assert notice.expired_at == AS_OF + timedelta(days=90)

        address = next(s for s in view.steps if s.step_key == "address")
        assert address.status == VerificationStepStatus.PENDING
        assert address.expires_at is None

        (event,) = view.events
        assert event.payload["step_key"] == "address"
        assert event.payload["previous_status"] == "approved"
        assert event.payload["status"] == "pending"

        profile = await _stored_profile(db_session)
        assert profile.trust_score == 20

    async def test_demotion_is_reported_once(self, db_session):
        await _approve(db_session, "address")
        later = AS_OF + timedelta(days=91)
        await verificationService.load_trust_profile(db_session, CLIENT_ID, as_of=later)

        again = await verificationService.load_trust_profile(
            db_session, CLIENT_ID, as_of=later
        )
        assert again.stale == []
        assert again.events == []

    async def test_expiry_instant_still_counts(self, db_session):
        await _approve(db_session, "address")
        view = await verificationService.load_trust_profile(
            db_session, CLIENT_ID, as_of=AS_OF + timedelta(days=90)
        )
        assert view.trust_score == 25
        assert view.stale == []

    async def test_demoted_step_can_be_renewed(self, db_session):
        await _approve(db_session, "address")
        later = AS_OF + timedelta(days=91)
        await verificationService.load_trust_profile(db_session, CLIENT_ID, as_of=later)

        renewed = await _approve(db_session, "address", as_of=later)
        assert renewed.step.status == VerificationStepStatus.APPROVED
        assert renewed.step.expires_at == later + timedelta(days=90)
        assert renewed.profile.trust_score == 25
