import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from ..schemas.pydantic_schemas import Enrichment, NormalizedEvent
from ..utils import agency_phone_variants

logger = logging.getLogger(__name__)


def synthesize_conversation_id() -> str:
    return f"webhook-{uuid4()}"


def resolve_agency(db, agent_number: str, allow_default: bool = True) -> Optional[str]:
    """Owning agency for the number the caller dialled, else the default agency when allowed."""
    if agent_number and agent_number != "unknown" and len(agent_number) > 5:
        try:
            agency_id = db.find_agency_by_phone(agency_phone_variants(agent_number))
        except Exception as e:
            logger.error(f"Agency phone lookup failed for {agent_number}: {e}")
            agency_id = None
        if agency_id:
            logger.info(f"Matched agency {agency_id} by phone {agent_number}")
            return agency_id

    if not allow_default:
        logger.error(f"No agency registered for agent number {agent_number!r}")
        return None
    try:
        agency_id = db.first_agency_id()
    except Exception as e:
        logger.error(f"Default agency lookup failed: {e}")
        return None
    if agency_id:
        logger.warning(f"No agency matched agent number {agent_number!r}; falling back to default agency {agency_id}")
    return agency_id


def store_call_event(db, event: NormalizedEvent, agency_id: Optional[str]) -> Dict[str, Any]:
    """Upsert the raw delivery keyed by conversation id, so re-delivery updates the same row."""
    conversation_id = event.conversation_id or synthesize_conversation_id()
    if not event.conversation_id:
        logger.warning(f"Provider sent no conversation id; using synthesized {conversation_id}")
    row = {
        "conversation_id": conversation_id,
        "provider_event_id": event.payload.get("event_id") or event.payload.get("id"),
        "call_sid": event.call_sid,
        "agent_id": event.provider_agent_id,
        "agent_number": event.agent_number,
        "caller_number": event.caller_number,
        "direction": event.direction,
        "status": event.status,
        "event_type": event.event_type,
        "termination_reason": event.termination_reason,
        "duration_secs": event.duration_secs,
        "transcript_summary": event.summary,
        "call_summary_title": event.summary_title,
        "agency_id": agency_id,
        "event_timestamp": event.event_timestamp,
        "payload": event.payload,
    }
    stored = db.upsert_call_event(row)
    logger.info(f"Stored call event {stored.get('id')} for conversation {conversation_id}")
    return stored


def save_conversation(db, call_event: Dict[str, Any], event: NormalizedEvent, enrichment: Enrichment) -> Dict[str, Any]:
    row = {
        "call_event_id": call_event["id"],
        "conversation_id": call_event.get("conversation_id"),
        "call_sid": event.call_sid,
        "transcript": event.transcript or None,
        "summary": enrichment.summary,
        "sentiment": enrichment.sentiment,
        "intent": enrichment.intent,
        "outcome": enrichment.outcome,
        "recording_url": event.recording_url,
        "raw_payload": event.payload,
    }
    conversation = db.upsert_conversation({k: v for k, v in row.items() if v is not None})
    logger.info(f"Conversation {conversation.get('id')}: sentiment={enrichment.sentiment} intent={enrichment.intent} outcome={enrichment.outcome}")
    return conversation


def annotate_call_event(db, call_event_id: str, enrichment: Enrichment, agency_id: Optional[str]) -> None:
    """Copy the resolved summary/title and carrier DOT back onto the raw event row."""
    updates: Dict[str, Any] = {}
    if enrichment.summary:
        updates["transcript_summary"] = enrichment.summary
        title = enrichment.intent or enrichment.outcome
        if title:
            updates["call_summary_title"] = title
    if enrichment.carrier_usdot:
        updates["carrier_usdot"] = enrichment.carrier_usdot
    if agency_id:
        updates["agency_id"] = agency_id
    if updates:
        db.update_call_event(call_event_id, updates)
