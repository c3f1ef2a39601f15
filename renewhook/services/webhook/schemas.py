"""Request/response schemas and the outbound webhook body."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from renewhook.services.webhook.models import RISK_FLAGGED_EVENT


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RiskSignals(CamelModel):
    """Inputs that drove the risk score, echoed to the receiver."""

    days_to_expiry_days: int
    payment_history_delinquent: bool
    no_renewal_offer_yet: bool
    rent_growth_above_market: bool


class RiskSnapshot(CamelModel):
    """Risk facts supplied by the scoring side when triggering a notification."""

    risk_score: int = Field(ge=0, le=100)
    risk_tier: Literal["high", "medium", "low"]
    days_to_expiry: int
    signals: RiskSignals


class RiskFlaggedPayload(CamelModel):
    """Body POSTed to the RMS endpoint."""

    event: str = RISK_FLAGGED_EVENT
    event_id: str
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    tenant_id: str
    subject_id: str
    data: RiskSnapshot

    def serialize(self) -> str:
        """Serialize once; the result is stored, signed, and sent verbatim."""

        return self.model_dump_json(by_alias=True)


class TriggerResponse(CamelModel):
    """Acknowledgement for accepted or replayed triggers."""

    event_id: str
    message: str
    already_exists: bool | None = None


class WebhookStatusResponse(CamelModel):
    """Latest delivery state for one resident."""

    event_id: str
    status: str
    attempt_count: int
    last_attempt_at: datetime | None
    delivered_at: datetime | None


class DeadLetterResponse(CamelModel):
    """One dead-lettered event for ops review."""

    event_id: str
    tenant_id: str
    subject_id: str
    failure_reason: str
    attempt_count: int
    last_response_code: int | None
    moved_at: datetime
