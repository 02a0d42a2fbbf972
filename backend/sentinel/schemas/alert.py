"""Pydantic schemas for outbound alerts."""

import enum
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class AlertCategory(str, enum.Enum):
    FRAUD = "fraud"
    HIGH_RISK = "high_risk"
    SECURITY = "security"
    SYSTEM = "system"


class AlertSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertData(BaseModel):
    type: AlertCategory
    severity: AlertSeverity
    title: str
    description: str
    user_id: str | None = None
    event_type: str | None = None
    risk_score: int | None = Field(None, ge=0, le=100)
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    recommendations: list[str] = Field(default_factory=list)
