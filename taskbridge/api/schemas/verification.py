"""
Pydantic v2 schemas for verification steps and trust profiles.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from taskbridge.models.verification import VerificationStepStatus, VerificationTier


class VerificationStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    step_key: str
    title: str
    tier: int
    required: bool
    document_type: str
    status: VerificationStepStatus
    rejection_reason: Optional[str] = None
    confidence: Optional[Decimal] = None
    document_url: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class StaleStepNotice(BaseModel):
    code: str
    step_key: str
    expired_at: datetime
    message: str


class TrustProfileOut(BaseModel):
    user_id: uuid.UUID
    trust_score: int = Field(ge=0, le=100)
    verification_tier: VerificationTier
    computed_at: Optional[datetime] = None
    points_to_next_tier: Optional[int] = None
    required_complete: bool
    steps: list[VerificationStepOut]
    stale_steps: list[StaleStepNotice] = Field(default_factory=list)


class StepSubmitRequest(BaseModel):
    document_url: Optional[str] = Field(default=None, max_length=2000)


class VerifierResultRequest(BaseModel):
    """Decision from the external document/identity verifier."""

    approved: bool
    step_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    step_key: Optional[str] = Field(default=None, max_length=50)
    confidence: Optional[Decimal] = Field(default=None, ge=0, le=100)
    rejection_reason: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _identifies_step(self) -> "VerifierResultRequest":
        if self.step_id is None and (self.user_id is None or self.step_key is None):
            raise ValueError("Provide step_id, or user_id together with step_key.")
        return self


class StepChangeOut(BaseModel):
    step: VerificationStepOut
    trust_score: int
    verification_tier: VerificationTier
    stale_steps: list[StaleStepNotice] = Field(default_factory=list)
