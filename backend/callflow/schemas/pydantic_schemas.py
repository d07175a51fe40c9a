from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..utils import UNKNOWN_PHONE, is_valid_phone, parse_iso


Sentiment = Literal["positive", "neutral", "negative"]
Outcome = Literal["booked", "callback_requested", "declined", "no_action", "unknown"]
MatchType = Literal["contains", "exact", "regex"]
CarrierCheck = Literal["verified", "flagged", "pending"]


class NormalizedEvent(BaseModel):
    """Canonical view of one provider webhook delivery, whatever its version."""

    event_type: str = "unknown"
    status: str = "unknown"
    conversation_id: Optional[str] = None
    call_sid: Optional[str] = None
    provider_agent_id: Optional[str] = None
    caller_number: str = UNKNOWN_PHONE
    agent_number: str = ""
    direction: str = "inbound"
    duration_secs: float = 0
    termination_reason: Optional[str] = None
    summary: Optional[str] = None
    summary_title: Optional[str] = None
    call_successful: Optional[str] = None
    transcript: str = ""
    recording_url: Optional[str] = None
    cost: Optional[float] = None
    shipper: Optional[str] = None
    equipment_type: Optional[str] = None
    assigned_agent_id: Optional[str] = None
    event_timestamp: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def has_valid_caller(self) -> bool:
        return is_valid_phone(self.caller_number)

    @property
    def duration_minutes(self) -> float:
        return (self.duration_secs or 0) / 60

    @property
    def is_terminal(self) -> bool:
        etype = self.event_type.lower()
        return (
            "transcription" in etype
            or "call" in etype
            or self.status.lower() in ("done", "completed")
            or self.has_valid_caller
        )


class Enrichment(BaseModel):
    sentiment: Optional[Sentiment] = None
    intent: Optional[str] = None
    outcome: Optional[Outcome] = None
    summary: Optional[str] = None
    carrier_usdot: Optional[str] = None
    carrier_mc: Optional[str] = None
    carrier_name: Optional[str] = None
    shipper: Optional[str] = None
    equipment_type: Optional[Literal["flatbed", "not_flatbed"]] = None

    @property
    def has_carrier_id(self) -> bool:
        return bool(self.carrier_usdot or self.carrier_mc)


class KeywordRule(BaseModel):
    id: str
    keyword: str
    match_type: str = "contains"
    case_sensitive: bool = False
    weight: Optional[float] = None
    active: bool = True
    expires_at: Optional[datetime] = None
    agency_id: Optional[str] = None
    agent_id: Optional[str] = None
    scope: Optional[str] = None

    def is_live(self, now: datetime) -> bool:
        if not self.active:
            return False
        expires = parse_iso(self.expires_at)
        return expires is None or expires > now


class KeywordMatch(BaseModel):
    rule_id: str
    keyword: str
    match_type: MatchType
    weight: float


class CarrierStatus(BaseModel):
    check: CarrierCheck
    identifier: str
    carrier_name: Optional[str] = None
    issues: List[str] = Field(default_factory=list)
    note: str


class IntentScore(BaseModel):
    score: int
    is_high_intent: bool
    reasons: List[str] = Field(default_factory=list)
    breakdown: Optional[Dict[str, Any]] = None


class LeadMatch(BaseModel):
    lead: Dict[str, Any]
    strategy: Literal["direct_link", "phone_match", "temporal", "created"]

    @property
    def lead_id(self) -> str:
        return self.lead["id"]


class WebhookResult(BaseModel):
    success: bool = True
    event: Optional[str] = None
    message: Optional[str] = None
    call_event_id: Optional[str] = None
    conversation_id: Optional[str] = None
    lead_id: Optional[str] = None
    intent_score: Optional[int] = None
    is_high_intent: Optional[bool] = None
    analysis: Optional[Dict[str, Any]] = None
