"""High-intent keyword rules evaluated against a call transcript.

Rules are scanned in stored order and the first one that fires wins; there
is no ranking across several matching rules.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..schemas.pydantic_schemas import KeywordMatch, KeywordRule
from ..utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT = 0.85
MIN_TRANSCRIPT_CHARS = 10
AUDIT_SOURCE = "webhook_transcript"


def rule_matches(rule: KeywordRule, transcript: str) -> bool:
    """Apply one rule. Raises ``re.error`` for an invalid user-supplied regex."""
    match_type = rule.match_type or "contains"
    flags = 0 if rule.case_sensitive else re.IGNORECASE

    if match_type == "exact":
        return re.search(rf"\b{re.escape(rule.keyword)}\b", transcript, flags) is not None
    if match_type == "regex":
        return re.compile(rule.keyword, flags).search(transcript) is not None

    if match_type != "contains":
        logger.warning(f"Unknown match_type {match_type!r} on keyword {rule.id}; treating as contains")
    if rule.case_sensitive:
        return rule.keyword in transcript
    return rule.keyword.lower() in transcript.lower()


def _coerce_rules(rows: Iterable[Dict[str, Any]]) -> List[KeywordRule]:
    rules = []
    for row in rows:
        try:
            rules.append(KeywordRule.model_validate(row))
        except ValidationError as e:
            logger.warning(f"Skipping malformed keyword rule {row.get('id')}: {e}")
    return rules


def find_first_match(transcript: str, rules: Iterable[KeywordRule], now: Optional[datetime] = None) -> Optional[KeywordMatch]:
    now = now or utcnow()
    for rule in rules:
        if not rule.keyword or not rule.is_live(now):
            continue
        try:
            matched = rule_matches(rule, transcript)
        except re.error as e:
            logger.warning(f"Invalid regex pattern {rule.keyword!r} on keyword {rule.id}: {e}")
            continue
        if matched:
            match_type = rule.match_type if rule.match_type in ("contains", "exact", "regex") else "contains"
            weight = DEFAULT_WEIGHT if rule.weight is None else rule.weight
            logger.info(f"Keyword matched: {rule.keyword!r} ({match_type}, weight {weight})")
            return KeywordMatch(rule_id=rule.id, keyword=rule.keyword, match_type=match_type, weight=weight)
    return None


def match_keywords(db, agency_id: Optional[str], transcript: str, conversation_id: Optional[str] = None, now: Optional[datetime] = None) -> Optional[KeywordMatch]:
    """Load the agency's live rules, find the first match and write its audit row."""
    if not agency_id or len(transcript or "") <= MIN_TRANSCRIPT_CHARS:
        return None
    now = now or utcnow()
    try:
        rows = db.list_active_keyword_rules(agency_id, now)
    except Exception as e:
        logger.error(f"Failed to fetch keyword rules for agency {agency_id}: {e}")
        return None
    if not rows:
        return None

    logger.info(f"Checking {len(rows)} active keyword rules")
    match = find_first_match(transcript, _coerce_rules(rows), now)
    if match is None:
        return None

    try:
        db.record_keyword_match({
            "agency_id": agency_id,
            "keyword_id": match.rule_id,
            "source": AUDIT_SOURCE,
            "matched_text": match.keyword,
            "conversation_id": conversation_id,
        })
    except Exception as e:
        logger.warning(f"Failed to record keyword match event: {e}")
    return match
