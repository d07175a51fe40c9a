import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from ..db import DuplicateKeyError
from ..schemas.pydantic_schemas import Enrichment, IntentScore, KeywordMatch, NormalizedEvent
from ..utils import to_iso, utcnow

logger = logging.getLogger(__name__)


def local_date(now: datetime, tz_name: str) -> str:
    return now.astimezone(ZoneInfo(tz_name)).date().isoformat()


def high_intent_reasons(keyword: Optional[KeywordMatch], enrichment: Enrichment) -> Optional[Dict[str, Any]]:
    if keyword is not None:
        return {"reasons": [f"Keyword match: {keyword.keyword}"], "keyword_id": keyword.rule_id}
    if enrichment.has_carrier_id:
        return {"reasons": ["Carrier ID provided"]}
    return None


def build_call_summary(
    event: NormalizedEvent,
    conversation_id: str,
    agency_id: Optional[str],
    enrichment: Enrichment,
    intent: IntentScore,
    keyword: Optional[KeywordMatch],
    carrier_name: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    return {
        "conversation_id": conversation_id,
        "agency_id": agency_id,
        "call_sid": event.call_sid,
        "agent_number": event.agent_number,
        "external_number": event.caller_number,
        "duration_secs": event.duration_secs,
        "call_outcome": enrichment.outcome,
        "termination_reason": event.termination_reason,
        "summary": enrichment.summary,
        "summary_short": enrichment.summary,
        "summary_title": enrichment.intent or enrichment.outcome or "Call",
        "transcript": event.transcript,
        "is_high_intent": intent.is_high_intent,
        "intent_score": intent.score,
        "high_intent_reasons": high_intent_reasons(keyword, enrichment),
        "carrier_usdot": enrichment.carrier_usdot,
        "carrier_mc": enrichment.carrier_mc,
        "carrier_name": carrier_name,
        "call_cost_credits": event.cost,
        "started_at": to_iso(now - timedelta(seconds=event.duration_secs or 0)),
        "ended_at": to_iso(now),
    }


def upsert_call_summary(db, row: Dict[str, Any]) -> bool:
    try:
        db.upsert_call_summary(row)
    except Exception as e:
        logger.error(f"Failed to upsert call summary for {row.get('conversation_id')}: {e}")
        return False
    logger.info(f"Upserted call summary for {row['conversation_id']}")
    return True


def _increment_one(db, agent_id: str, agency_id: str, day: str, minutes: float, high_intent: bool, booked: bool) -> None:
    existing = db.get_daily_state(agent_id, day)
    if existing is None:
        try:
            db.insert_daily_state({
                "agent_id": agent_id,
                "agency_id": agency_id,
                "local_date": day,
                "ai_calls": 1,
                "ai_minutes": minutes,
                "high_intent": 1 if high_intent else 0,
                "booked": 1 if booked else 0,
            })
            return
        except DuplicateKeyError:
            # Another delivery created today's row first; fall through to increment it
            existing = db.get_daily_state(agent_id, day)
            if existing is None:
                raise

    updates: Dict[str, Any] = {
        "ai_calls": (existing.get("ai_calls") or 0) + 1,
        "ai_minutes": float(existing.get("ai_minutes") or 0) + minutes,
    }
    if high_intent:
        updates["high_intent"] = (existing.get("high_intent") or 0) + 1
    if booked:
        updates["booked"] = (existing.get("booked") or 0) + 1
    db.update_daily_state(existing["id"], updates)


def target_agents(db, agency_id: str, assigned_agent_id: Optional[str], attribute_to_assigned: bool) -> List[str]:
    if attribute_to_assigned and assigned_agent_id:
        return [assigned_agent_id]
    members = db.list_agency_members(agency_id)
    agent_ids = [m["user_id"] for m in members if m.get("user_id")]
    if len(agent_ids) > 1:
        logger.warning(f"Attributing call to all {len(agent_ids)} members of agency {agency_id} (no agent assignment)")
    return agent_ids


def increment_daily_state(
    db,
    agency_id: str,
    event: NormalizedEvent,
    is_high_intent: bool,
    booked: bool,
    tz_name: str = "UTC",
    attribute_to_assigned: bool = False,
    now: Optional[datetime] = None,
) -> int:
    """Add this call to today's counters for the target agents. Returns how many rows were written."""
    try:
        agent_ids = target_agents(db, agency_id, event.assigned_agent_id, attribute_to_assigned)
    except Exception as e:
        logger.error(f"Failed to load agency members for {agency_id}: {e}")
        return 0

    day = local_date(now or utcnow(), tz_name)
    written = 0
    for agent_id in agent_ids:
        try:
            _increment_one(db, agent_id, agency_id, day, event.duration_minutes, is_high_intent, booked)
            written += 1
        except Exception as e:
            logger.error(f"Failed to update agent_daily_state for agent {agent_id}: {e}")
    logger.info(f"Updated agent_daily_state for {written}/{len(agent_ids)} agents on {day}")
    return written
