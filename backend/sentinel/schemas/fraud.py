"""Pydantic schemas for fraud checks."""

from typing import Literal

from pydantic import BaseModel, Field

FraudAction = Literal["order", "payment", "login"]


class FraudCheckRequest(BaseModel):
    user_id: str | None = Field(None, max_length=64)
    action: FraudAction
    order_id: str | None = Field(None, max_length=64)
    amount: float | None = Field(None, ge=0)
    shipping_address: str | None = Field(None, max_length=500)
    ip: str | None = Field(None, max_length=45)


class RiskAssessmentResponse(BaseModel):
    is_anomalous: bool
    risk_score: int = Field(..., ge=0, le=100)
    reasons: list[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class DetectorAssessmentResponse(RiskAssessmentResponse):
    detector: str


class FraudCheckResponse(RiskAssessmentResponse):
    action: FraudAction
    user_id: str | None = None
    detectors: list[DetectorAssessmentResponse] = Field(default_factory=list)
    audit_entry_id: str | None = None
