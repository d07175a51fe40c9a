import json
import logging
import re
from typing import Any, Dict, Optional

from ..config import Settings
from ..schemas.pydantic_schemas import Enrichment, NormalizedEvent

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_SENTIMENTS = {"positive", "neutral", "negative"}
_OUTCOMES = {"booked", "callback_requested", "declined", "no_action", "unknown"}
_EQUIPMENT = {"flatbed", "not_flatbed"}


def extract_json_object(content: str) -> Optional[Dict[str, Any]]:
    """Pull the outermost JSON object out of a completion that may wrap it in prose."""
    match = _JSON_OBJECT.search(content or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ("null", "none", "n/a"):
        return None
    return text


def _choice(value: Any, allowed) -> Optional[str]:
    text = _text(value)
    if text is None:
        return None
    text = text.lower()
    return text if text in allowed else None


def _identifier(value: Any) -> Optional[str]:
    text = _text(value)
    if text is None:
        return None
    digits = re.sub(r"\D", "", text)
    return digits or None


def parse_analysis(parsed: Dict[str, Any]) -> Enrichment:
    return Enrichment(
        sentiment=_choice(parsed.get("sentiment"), _SENTIMENTS),
        intent=_text(parsed.get("intent")),
        outcome=_choice(parsed.get("outcome"), _OUTCOMES),
        summary=_text(parsed.get("summary")),
        carrier_usdot=_identifier(parsed.get("carrier_usdot")),
        carrier_mc=_identifier(parsed.get("carrier_mc")),
        carrier_name=_text(parsed.get("carrier_name")),
        shipper=_text(parsed.get("shipper")),
        equipment_type=_choice(parsed.get("equipment_type"), _EQUIPMENT),
    )


async def analyze_transcript(event: NormalizedEvent, ai_client, settings: Settings) -> Enrichment:
    """Ask the AI for a structured read of the call; any failure yields an empty Enrichment."""
    transcript = event.transcript or ""
    if len(transcript) <= settings.min_transcript_chars:
        logger.info(f"Transcript too short for AI analysis ({len(transcript)} chars)")
        return Enrichment()
    if ai_client is None or not ai_client.enabled:
        logger.info("AI analysis skipped: no AI client configured")
        return Enrichment()

    try:
        content = await ai_client.analyze_call(transcript[: settings.transcript_char_limit])
    except Exception as e:
        logger.error(f"AI analysis failed: {type(e).__name__}: {e}")
        return Enrichment()

    parsed = extract_json_object(content)
    if parsed is None:
        logger.warning(f"AI analysis returned no parseable JSON: {content[:200]!r}")
        return Enrichment()
    analysis = parse_analysis(parsed)
    logger.info(
        f"AI analysis: sentiment={analysis.sentiment} outcome={analysis.outcome} "
        f"dot={analysis.carrier_usdot} mc={analysis.carrier_mc}"
    )
    return analysis


def merge_with_provider(event: NormalizedEvent, analysis: Enrichment) -> Enrichment:
    """Provider-supplied summary, title and agent tags win; AI output only fills gaps."""
    return analysis.model_copy(update={
        "summary": event.summary or analysis.summary,
        "intent": event.summary_title or analysis.intent,
        "shipper": event.shipper or analysis.shipper,
        "equipment_type": _choice(event.equipment_type, _EQUIPMENT) or analysis.equipment_type,
    })


async def enrich_transcript(event: NormalizedEvent, ai_client, settings: Settings) -> Enrichment:
    analysis = await analyze_transcript(event, ai_client, settings)
    return merge_with_provider(event, analysis)
