"""Flatten a provider webhook body into a ``NormalizedEvent``.

Field locations differ between provider event types and API versions, so
each logical value is looked up along a prioritized list of paths and the
first non-empty hit wins. Nothing here raises: missing values become
defaults or the ``"unknown"`` phone sentinel.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from ..schemas.pydantic_schemas import NormalizedEvent
from ..utils import UNKNOWN_PHONE, parse_iso, to_iso

Path = Tuple[str, ...]

# Longest call duration accepted from a payload; anything above is clamped
MAX_CALL_SECONDS = 24 * 60 * 60


def deep_get(d: Any, path: Sequence[str], default=None):
    cur = d
    for key in path:
        if isinstance(cur, dict) and key in cur:
            cur = cur[key]
        else:
            return default
    return cur


def first_present(sources: Iterable[Tuple[Any, Path]], default=None):
    for root, path in sources:
        value = deep_get(root, path)
        if value not in (None, "", [], {}):
            return value
    return default


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _finite(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _as_duration(value: Any) -> float:
    """Seconds in ``[0, MAX_CALL_SECONDS]``; garbage, negatives and non-finite values become 0."""
    number = _finite(value)
    if number is None or number <= 0:
        return 0
    return min(number, MAX_CALL_SECONDS)


def _optional_number(value: Any) -> Optional[float]:
    return _finite(value)


def _as_timestamp(value: Any) -> Optional[str]:
    """ISO-8601 UTC from epoch seconds (or milliseconds) or an ISO string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = _finite(value)
        if seconds is None or seconds <= 0:
            return None
        if seconds > 1e11:
            seconds = seconds / 1000
        try:
            return to_iso(datetime.fromtimestamp(seconds, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        if value.strip().isdigit():
            return _as_timestamp(int(value.strip()))
        parsed = parse_iso(value.strip())
        return to_iso(parsed) if parsed else None
    return None


def render_transcript(raw: Any) -> str:
    """Turn a transcript string or a list of ``{role, message}`` turns into plain text."""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        lines = []
        for turn in raw:
            if not isinstance(turn, dict) or not turn.get("message"):
                continue
            lines.append(f"{turn.get('role') or 'unknown'}: {turn['message']}")
        return "\n".join(lines)
    return ""


def normalize_event(payload: Any) -> NormalizedEvent:
    payload = _as_dict(payload)
    data = _as_dict(payload.get("data")) or payload
    metadata = _as_dict(payload.get("metadata")) or _as_dict(data.get("metadata"))
    phone_call = _as_dict(metadata.get("phone_call"))
    analysis = _as_dict(data.get("analysis")) or _as_dict(payload.get("analysis"))
    tags = _as_dict(data.get("tags")) or _as_dict(payload.get("tags")) or _as_dict(metadata.get("tags"))

    event_type = _as_str(first_present([(payload, ("type",)), (payload, ("event_type",)), (payload, ("event",))])) or "unknown"
    status = _as_str(payload.get("status")) or event_type

    caller = first_present([
        (phone_call, ("external_number",)),
        (data, ("external_number",)),
        (payload, ("external_number",)),
        (payload, ("from",)),
        (payload, ("caller_phone",)),
    ])
    agent_number = first_present([
        (phone_call, ("agent_number",)),
        (data, ("agent_number",)),
        (payload, ("agent_number",)),
        (payload, ("to",)),
    ])
    conversation_id = first_present([
        (data, ("conversation_id",)),
        (payload, ("conversation_id",)),
        (payload, ("call_id",)),
    ])
    call_sid = first_present([
        (phone_call, ("call_sid",)),
        (data, ("call_sid",)),
        (payload, ("call_sid",)),
        (payload, ("twilio_call_sid",)),
    ])
    summary = first_present([
        (analysis, ("transcript_summary",)),
        (data, ("transcript_summary",)),
        (data, ("summary",)),
        (payload, ("transcript_summary",)),
        (payload, ("summary",)),
    ])
    summary_title = first_present([
        (analysis, ("call_summary_title",)),
        (data, ("call_summary_title",)),
        (payload, ("call_summary_title",)),
    ])
    duration = first_present([
        (data, ("call_duration_secs",)),
        (payload, ("call_duration_secs",)),
        (metadata, ("call_duration_secs",)),
        (data, ("duration",)),
        (payload, ("duration",)),
    ])

    transcript = render_transcript(data.get("transcript"))
    if not transcript:
        transcript = render_transcript(first_present([
            (payload, ("transcript",)),
            (payload, ("transcription",)),
            (payload, ("text",)),
        ], default=""))

    recording_url = first_present([
        (data, ("recording_url",)),
        (payload, ("recording_url",)),
        (payload, ("recording", "url")),
        (data, ("recording", "url")),
        (payload, ("audio_url",)),
        (data, ("audio_url",)),
        (analysis, ("recording_url",)),
    ])
    cost = first_present([(metadata, ("cost",)), (data, ("metadata", "cost"))])
    assigned_agent = first_present([
        (metadata, ("assigned_agent_id",)),
        (data, ("conversation_initiation_client_data", "dynamic_variables", "agent_user_id")),
    ])

    return NormalizedEvent(
        event_type=event_type,
        status=status,
        conversation_id=_as_str(conversation_id),
        call_sid=_as_str(call_sid),
        provider_agent_id=_as_str(first_present([(data, ("agent_id",)), (payload, ("agent_id",))])),
        caller_number=_as_str(caller) or UNKNOWN_PHONE,
        agent_number=_as_str(agent_number) or "",
        direction=_as_str(payload.get("direction")) or "inbound",
        duration_secs=_as_duration(duration),
        termination_reason=_as_str(first_present([(data, ("termination_reason",)), (payload, ("termination_reason",))])),
        summary=_as_str(summary),
        summary_title=_as_str(summary_title),
        call_successful=_as_str(analysis.get("call_successful")),
        transcript=transcript or "",
        recording_url=_as_str(recording_url),
        cost=_optional_number(cost),
        shipper=_as_str(tags.get("shipper")),
        equipment_type=_as_str(tags.get("equipment_type")),
        assigned_agent_id=_as_str(assigned_agent),
        event_timestamp=_as_timestamp(first_present([
            (payload, ("event_timestamp",)),
            (data, ("event_timestamp",)),
            (payload, ("timestamp",)),
        ])),
        payload=payload,
    )
