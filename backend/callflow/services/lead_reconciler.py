"""Attach a call event to exactly one sales lead.

Strategies run in order and stop at the first success:

1. direct link   - a lead already points at this call event
2. phone match   - pending, unlinked lead whose caller_phone is a variant of the caller number
3. temporal      - newest pending, unlinked lead created inside the trailing match window

With no match and a usable caller number a new pending lead is created. The
lead -> call link is write-once: ``link_lead`` only sets ``phone_call_id`` while
it is still null, and a lost race falls through to the next strategy.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from ..schemas.pydantic_schemas import CarrierStatus, Enrichment, IntentScore, LeadMatch, NormalizedEvent
from ..utils import caller_phone_variants, is_placeholder_phone, is_valid_phone, to_iso, utcnow

logger = logging.getLogger(__name__)


def _link(db, lead: Dict[str, Any], call_event_id: str) -> bool:
    if db.link_lead(lead["id"], call_event_id):
        lead["phone_call_id"] = call_event_id
        return True
    logger.warning(f"Lead {lead['id']} was linked by another delivery; trying next strategy")
    return False


def _by_phone(db, event: NormalizedEvent, agency_id: Optional[str], call_event_id: str) -> Optional[Dict[str, Any]]:
    if not event.has_valid_caller:
        return None
    variants = caller_phone_variants(event.caller_number)
    logger.info(f"Trying phone match with variants: {variants}")
    lead = db.find_pending_lead_by_phones(agency_id, variants)
    if lead and _link(db, lead, call_event_id):
        logger.info(f"Matched lead by phone number: {lead['id']}")
        return lead
    return None


def _by_recency(db, event: NormalizedEvent, agency_id: Optional[str], call_event_id: str, window_minutes: int, now: datetime) -> Optional[Dict[str, Any]]:
    since = now - timedelta(minutes=window_minutes)
    lead = db.find_recent_pending_lead(agency_id, since)
    if not lead or not _link(db, lead, call_event_id):
        return None
    logger.info(f"Matched lead by recent time: {lead['id']} phone: {lead.get('caller_phone')}")
    _backfill_phone(db, event, lead, call_event_id)
    return lead


def _backfill_phone(db, event: NormalizedEvent, lead: Dict[str, Any], call_event_id: str) -> None:
    # The link is already committed; a failed backfill must not lose it
    try:
        if is_placeholder_phone(lead.get("caller_phone")) and event.has_valid_caller:
            db.update_lead(lead["id"], {"caller_phone": event.caller_number})
            lead["caller_phone"] = event.caller_number
            logger.info(f"Backfilled placeholder phone on lead {lead['id']}")
        elif not event.has_valid_caller and is_valid_phone(lead.get("caller_phone")):
            db.update_call_event(call_event_id, {"caller_number": lead["caller_phone"]})
            logger.info(f"Backfilled unknown caller on call event {call_event_id} from lead")
    except Exception as e:
        logger.warning(f"Phone backfill failed for lead {lead['id']}: {e}")


def reconcile_lead(
    db,
    event: NormalizedEvent,
    call_event_id: str,
    agency_id: Optional[str],
    window_minutes: int = 5,
    now: Optional[datetime] = None,
) -> Optional[LeadMatch]:
    now = now or utcnow()

    lead = db.get_lead_by_phone_call(call_event_id)
    if lead:
        logger.info(f"Lead {lead['id']} already linked to call event {call_event_id}")
        return LeadMatch(lead=lead, strategy="direct_link")

    lead = _by_phone(db, event, agency_id, call_event_id)
    if lead:
        return LeadMatch(lead=lead, strategy="phone_match")

    lead = _by_recency(db, event, agency_id, call_event_id, window_minutes, now)
    if lead:
        return LeadMatch(lead=lead, strategy="temporal")

    if not event.has_valid_caller:
        logger.info(f"No lead matched and no valid caller number to create one (caller={event.caller_number})")
        return None
    if not agency_id:
        logger.warning("No lead matched and no agency resolved; not creating a lead")
        return None

    lead = db.create_lead({
        "agency_id": agency_id,
        "caller_phone": event.caller_number,
        "phone_call_id": call_event_id,
        "status": "pending",
    })
    logger.info(f"Created new lead {lead.get('id')} for caller {event.caller_number}")
    return LeadMatch(lead=lead, strategy="created")


def build_lead_notes(enrichment: Enrichment, carrier: Optional[CarrierStatus], include_summary: bool) -> Optional[str]:
    blocks = []
    if include_summary and enrichment.summary:
        blocks.append(f"[AI SUMMARY] {enrichment.summary}")
    if carrier is not None:
        lines = ["[CARRIER STATUS]", carrier.note]
        if enrichment.carrier_name:
            lines.append(f"Company: {enrichment.carrier_name}")
        if enrichment.carrier_usdot:
            lines.append(f"DOT: {enrichment.carrier_usdot}")
        if enrichment.carrier_mc:
            lines.append(f"MC: {enrichment.carrier_mc}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) if blocks else None


def apply_lead_update(
    db,
    match: LeadMatch,
    intent: IntentScore,
    enrichment: Enrichment,
    carrier: Optional[CarrierStatus],
    conversation_id: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Write the score, carrier details and tags onto the matched lead. Null values never overwrite."""
    carrier_name = (carrier.carrier_name if carrier else None) or enrichment.carrier_name
    updates: Dict[str, Any] = {
        "intent_score": intent.score,
        "is_high_intent": intent.is_high_intent,
    }
    optional = {
        "conversation_id": conversation_id,
        "caller_company": carrier_name,
        "carrier_name": carrier_name,
        "carrier_usdot": enrichment.carrier_usdot,
        "carrier_mc": enrichment.carrier_mc,
        "carrier_verified_at": to_iso(now or utcnow()) if enrichment.has_carrier_id else None,
        "shipper": enrichment.shipper,
        "equipment_type": enrichment.equipment_type,
        "intent_reason_breakdown": intent.breakdown,
        "notes": build_lead_notes(enrichment, carrier, include_summary=match.strategy == "created"),
    }
    updates.update({k: v for k, v in optional.items() if v is not None})
    db.update_lead(match.lead_id, updates)
    logger.info(
        f"Updated lead {match.lead_id} ({match.strategy}): intent_score={intent.score} "
        f"is_high_intent={intent.is_high_intent}"
    )
    return updates
