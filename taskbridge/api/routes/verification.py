"""
Verification API Routes
=======================

Routes:
  GET    /api/v1/verification/{user_id}                          -- Trust profile with steps
  POST   /api/v1/verification/{user_id}/steps/{step_key}/submit   -- Record a document upload
  POST   /api/v1/verification/{user_id}/steps/{step_key}/resubmit -- Reopen a rejected step
  POST   /api/v1/verification/results                            -- Verifier decision intake
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter

from taskbridge.api.deps import DBSession, Dispatcher
from taskbridge.api.errors import http_error
from taskbridge.api.schemas.verification import (
    StaleStepNotice,
    StepChangeOut,
    StepSubmitRequest,
    TrustProfileOut,
    VerificationStepOut,
    VerifierResultRequest,
)
from taskbridge.core.errors import StaleVerificationStep, TaskBridgeError
from taskbridge.events.dispatcher import commit_and_publish
from taskbridge.services import verificationService
from taskbridge.services.verificationService import StepChangeOutcome, VerifierResult

router = APIRouter(prefix="/verification", tags=["Verification"])


def _notices(stale: list[StaleVerificationStep]) -> list[StaleStepNotice]:
    return [StaleStepNotice(**notice.to_dict()) for notice in stale]


def _step_change(outcome: StepChangeOutcome) -> StepChangeOut:
    return StepChangeOut(
        step=VerificationStepOut.model_validate(outcome.step),
        trust_score=outcome.profile.trust_score,
        verification_tier=outcome.profile.verification_tier,
        stale_steps=_notices(outcome.stale),
    )


@router.get(
    "/{user_id}",
    response_model=TrustProfileOut,
    summary="Get a user's trust profile",
    description=(
        "Creates missing steps from the registry, demotes lapsed approvals "
        "(reported under stale_steps) and returns the recomputed profile."
    ),
)
async def get_trust_profile(
    db: DBSession,
    dispatcher: Dispatcher,
    user_id: uuid.UUID,
) -> TrustProfileOut:
    try:
        view = await verificationService.load_trust_profile(db, user_id)
        await commit_and_publish(db, dispatcher, view.events)
    except TaskBridgeError as exc:
        raise http_error(exc) from exc

    return TrustProfileOut(
        user_id=view.user_id,
        trust_score=view.trust_score,
        verification_tier=view.verification_tier,
        computed_at=view.computed_at,
        points_to_next_tier=view.points_to_next_tier,
        required_complete=view.required_complete,
        steps=[VerificationStepOut.model_validate(s) for s in view.steps],
        stale_steps=_notices(view.stale),
    )


@router.post(
    "/{user_id}/steps/{step_key}/submit",
    response_model=StepChangeOut,
    summary="Submit a document for a pending step",
)
async def submit_step(
    db: DBSession,
    dispatcher: Dispatcher,
    user_id: uuid.UUID,
    step_key: str,
    body: StepSubmitRequest,
) -> StepChangeOut:
    try:
        outcome = await verificationService.submit_step(
            db, user_id, step_key, document_url=body.document_url
        )
        await commit_and_publish(db, dispatcher, outcome.events)
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return _step_change(outcome)


@router.post(
    "/{user_id}/steps/{step_key}/resubmit",
    response_model=StepChangeOut,
    summary="Reopen a rejected step",
)
async def resubmit_step(
    db: DBSession,
    dispatcher: Dispatcher,
    user_id: uuid.UUID,
    step_key: str,
    body: StepSubmitRequest,
) -> StepChangeOut:
    try:
        outcome = await verificationService.resubmit_step(
            db, user_id, step_key, document_url=body.document_url
        )
        await commit_and_publish(db, dispatcher, outcome.events)
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return _step_change(outcome)


@router.post(
    "/results",
    response_model=StepChangeOut,
    summary="Apply a verifier decision",
)
async def apply_verifier_result(
    db: DBSession,
    dispatcher: Dispatcher,
    body: VerifierResultRequest,
) -> StepChangeOut:
    result = VerifierResult(
        approved=body.approved,
        step_id=body.step_id,
        user_id=body.user_id,
        step_key=body.step_key,
        confidence=body.confidence,
        rejection_reason=body.rejection_reason,
    )
    try:
        outcome = await verificationService.apply_verifier_result(db, result)
        await commit_and_publish(db, dispatcher, outcome.events)
    except TaskBridgeError as exc:
        raise http_error(exc) from exc
    return _step_change(outcome)
