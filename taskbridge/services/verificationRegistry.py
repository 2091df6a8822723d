"""
Verification Step Registry
==========================

Static catalog of the proof-of-identity steps every user works through,
and the per-step state machine::

    pending --> submitted --> approved
                          \\-> rejected --> pending   (resubmission)

    approved --> pending   (only through lazy expiry demotion)

Tiers 1-2 are required, tiers 3-4 optional. No step blocks another; users
may pursue them in any order.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from taskbridge.core.errors import InvalidTransition, VerificationStepNotFound
from taskbridge.models.verification import VerificationStep, VerificationStepStatus


@dataclass(frozen=True)
class StepDefinition:
    key: str
    title: str
    description: str
    tier: int
    required: bool
    document_type: str
    validity: Optional[timedelta] = None


STEP_REGISTRY: tuple[StepDefinition, ...] = (
    StepDefinition(
        key="phone",
        title="Phone number",
        description="SMS code confirmation",
        tier=1,
        required=True,
        document_type="sms_code",
    ),
    StepDefinition(
        key="email",
        title="Email address",
        description="Email link confirmation",
        tier=1,
        required=True,
        document_type="email_link",
    ),
    StepDefinition(
        key="identity",
        title="Identity document",
        description="National ID scan with face match",
        tier=2,
        required=True,
        document_type="identity_document",
        validity=timedelta(days=5 * 365),
    ),
    StepDefinition(
        key="address",
        title="Proof of address",
        description="Recent utility bill",
        tier=2,
        required=True,
        document_type="address_proof",
        validity=timedelta(days=90),
    ),
    StepDefinition(
        key="background",
        title="Background check",
        description="Criminal record check",
        tier=3,
        required=False,
        document_type="background_check",
        validity=timedelta(days=365),
    ),
    StepDefinition(
        key="references",
        title="Professional references",
        description="Two or three verifiable contacts",
        tier=3,
        required=False,
        document_type="professional_references",
        validity=timedelta(days=365),
    ),
    StepDefinition(
        key="community",
        title="Community validation",
        description="Endorsement from a local community member",
        tier=4,
        required=False,
        document_type="community_endorsement",
        validity=timedelta(days=365),
    ),
)

_REGISTRY_BY_KEY: dict[str, StepDefinition] = {d.key: d for d in STEP_REGISTRY}


# ---------------------------------------------------------------------------
# Step state machine
# ---------------------------------------------------------------------------

VALID_STEP_TRANSITIONS: dict[VerificationStepStatus, set[VerificationStepStatus]] = {
    VerificationStepStatus.PENDING: {VerificationStepStatus.SUBMITTED},
    VerificationStepStatus.SUBMITTED: {
        VerificationStepStatus.APPROVED,
        VerificationStepStatus.REJECTED,
    },
    VerificationStepStatus.REJECTED: {VerificationStepStatus.PENDING},
    # Expiry demotion only; never driven by a caller
    VerificationStepStatus.APPROVED: {VerificationStepStatus.PENDING},
}


def validate_step_transition(
    current: VerificationStepStatus,
    target: VerificationStepStatus,
    *,
    expired: bool = False,
) -> None:
    """Raise ``InvalidTransition`` unless ``current -> target`` is allowed.

    ``approved -> pending`` is only accepted when ``expired`` is set.
    """
    allowed = VALID_STEP_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise InvalidTransition(
            current.value, target.value, entity="verification_step"
        )
    if current == VerificationStepStatus.APPROVED and not expired:
        raise InvalidTransition(
            current.value,
            target.value,
            entity="verification_step",
            reason="Approved steps only return to pending once they expire.",
        )


# ---------------------------------------------------------------------------
# Registry lookups
# ---------------------------------------------------------------------------

def get_step_definition(key: str) -> StepDefinition:
    try:
        return _REGISTRY_BY_KEY[key]
    except KeyError:
        raise VerificationStepNotFound(key) from None


def expiry_for(key: str, approved_at: datetime) -> Optional[datetime]:
    """When an approval for ``key`` granted at ``approved_at`` lapses."""
    validity = get_step_definition(key).validity
    if validity is None:
        return None
    return approved_at + validity


def build_steps_for_user(
    user_id: uuid.UUID,
    existing_keys: frozenset[str] = frozenset(),
) -> list[VerificationStep]:
    """Instantiate pending step rows for every registry entry the user lacks."""
    return [
        VerificationStep(
            user_id=user_id,
            step_key=definition.key,
            title=definition.title,
            tier=definition.tier,
            required=definition.required,
            document_type=definition.document_type,
            status=VerificationStepStatus.PENDING,
        )
        for definition in STEP_REGISTRY
        if definition.key not in existing_keys
    ]
