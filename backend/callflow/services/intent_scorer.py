"""Deterministic 0-10 intent score.

Every applicable signal contributes a floor and the score is the highest
floor, so stacking strong signals never double counts and adding a signal
never lowers the result.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

from ..schemas.pydantic_schemas import Enrichment, IntentScore, KeywordMatch
from ..utils import to_iso, utcnow

OUTCOME_SCORES = {"booked": 10, "callback_requested": 8, "declined": 2}
BASELINE_SCORE = 5
CARRIER_ID_FLOOR = 9
SENTIMENT_FLOORS = {"positive": 7, "negative": 3}
LONG_CALL_FLOOR = 6
LONG_CALL_SECONDS = 30
HIGH_INTENT_THRESHOLD = 7


def keyword_floor(weight: float) -> int:
    """``weight x 10`` rounded half-up (0.85 -> 9)."""
    return int((Decimal(str(weight)) * 10).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _floors(
    outcome: Optional[str],
    sentiment: Optional[str],
    has_carrier_id: bool,
    duration_secs: float,
    keyword: Optional[KeywordMatch],
) -> List[Tuple[int, str]]:
    floors = [(OUTCOME_SCORES.get(outcome or "", BASELINE_SCORE), f"Outcome: {outcome or 'unresolved'}")]
    if has_carrier_id:
        floors.append((CARRIER_ID_FLOOR, "Carrier ID provided"))
    if sentiment in SENTIMENT_FLOORS:
        floors.append((SENTIMENT_FLOORS[sentiment], f"Sentiment: {sentiment}"))
    if (duration_secs or 0) > LONG_CALL_SECONDS:
        floors.append((LONG_CALL_FLOOR, f"Call longer than {LONG_CALL_SECONDS}s"))
    if keyword is not None:
        floors.append((keyword_floor(keyword.weight), f"Keyword match: {keyword.keyword}"))
    return floors


def score_intent(
    outcome: Optional[str] = None,
    sentiment: Optional[str] = None,
    has_carrier_id: bool = False,
    duration_secs: float = 0,
    keyword: Optional[KeywordMatch] = None,
    now: Optional[datetime] = None,
) -> IntentScore:
    floors = _floors(outcome, sentiment, has_carrier_id, duration_secs, keyword)
    score = max(0, min(10, max(value for value, _ in floors)))
    reasons = [reason for value, reason in floors if value == score]

    breakdown = None
    if keyword is not None:
        breakdown = {
            "keyword_match": {
                "rule_id": keyword.rule_id,
                "keyword": keyword.keyword,
                "match_type": keyword.match_type,
                "weight": keyword.weight,
                "matched_at": to_iso(now or utcnow()),
            }
        }

    return IntentScore(
        score=score,
        is_high_intent=score >= HIGH_INTENT_THRESHOLD or has_carrier_id or keyword is not None,
        reasons=reasons,
        breakdown=breakdown,
    )


def score_call(enrichment: Enrichment, duration_secs: float, keyword: Optional[KeywordMatch]) -> IntentScore:
    return score_intent(
        outcome=enrichment.outcome,
        sentiment=enrichment.sentiment,
        has_carrier_id=enrichment.has_carrier_id,
        duration_secs=duration_secs,
        keyword=keyword,
    )
