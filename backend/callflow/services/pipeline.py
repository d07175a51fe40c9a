"""End-to-end processing of one provider webhook delivery.

normalize -> agency -> raw event -> enrichment -> keywords -> carrier ->
conversation -> lead -> score -> aggregates

Stages after the raw event write degrade on their own; a failed write is
logged and the independent stages after it still run.
"""

import logging
from typing import Any, Dict, Optional

from ..config import Settings
from ..errors import AgencyResolutionError
from ..logging_context import set_conversation_id
from ..schemas.pydantic_schemas import CarrierStatus, Enrichment, IntentScore, LeadMatch, NormalizedEvent, WebhookResult
from . import aggregates, event_store
from .carrier_resolver import resolve_carrier
from .enrichment import enrich_transcript, merge_with_provider
from .intent_scorer import score_call
from .keyword_matcher import match_keywords
from .lead_reconciler import apply_lead_update, reconcile_lead
from .normalizer import normalize_event

logger = logging.getLogger(__name__)

SERVICE_NAME = "voice_webhook"


class CallEventPipeline:
    def __init__(self, db, ai_client, settings: Settings) -> None:
        self.db = db
        self.ai_client = ai_client
        self.settings = settings

    async def process(self, payload: Dict[str, Any]) -> WebhookResult:
        event = normalize_event(payload)
        set_conversation_id(event.conversation_id or "-")
        logger.info(f"Event type: {event.event_type} status: {event.status} caller: {event.caller_number}")

        agency_id = event_store.resolve_agency(self.db, event.agent_number, self.settings.allow_default_agency)
        call_event = self._store(event, agency_id)

        if not event.is_terminal:
            self._health("ok", metadata={"call_event_id": (call_event or {}).get("id"), "event_type": event.event_type})
            return WebhookResult(event=event.event_type)

        if not event.transcript and not event.has_valid_caller:
            logger.info("No transcript or caller info, skipping call processing")
            self._health("ok", metadata={"call_event_id": (call_event or {}).get("id")})
            return WebhookResult(message="Event logged", call_event_id=(call_event or {}).get("id"))

        if not agency_id and not self.settings.allow_default_agency:
            raise AgencyResolutionError(f"No agency resolved for agent number {event.agent_number!r}")

        conversation_key = (call_event or {}).get("conversation_id") or event.conversation_id
        enrichment = await self._enrich(event)
        keyword = match_keywords(self.db, agency_id, event.transcript, conversation_key)
        carrier = resolve_carrier(self.db, enrichment.carrier_usdot, enrichment.carrier_mc, enrichment.carrier_name)
        carrier_name = (carrier.carrier_name if carrier else None) or enrichment.carrier_name
        intent = score_call(enrichment, event.duration_secs, keyword)

        conversation = None
        lead_match = None
        if call_event is not None:
            conversation = self._save_conversation(call_event, event, enrichment)
            lead_match = self._reconcile(event, call_event, agency_id, intent, enrichment, carrier, conversation)
            self._annotate(call_event, enrichment, agency_id)

        if conversation_key:
            self._summarize(event, conversation_key, agency_id, enrichment, intent, keyword, carrier_name)

        if agency_id:
            aggregates.increment_daily_state(
                self.db,
                agency_id,
                event,
                is_high_intent=intent.is_high_intent,
                booked=enrichment.outcome == "booked",
                tz_name=self.settings.daily_state_timezone,
                attribute_to_assigned=self.settings.attribute_to_assigned_agent,
            )

        call_event_id = (call_event or {}).get("id")
        conversation_id = (conversation or {}).get("id")
        self._health("ok", metadata={"call_event_id": call_event_id, "conversation_id": conversation_id})
        return WebhookResult(
            call_event_id=call_event_id,
            conversation_id=conversation_id,
            lead_id=lead_match.lead_id if lead_match else None,
            intent_score=intent.score,
            is_high_intent=intent.is_high_intent,
            analysis={"sentiment": enrichment.sentiment, "intent": enrichment.intent, "outcome": enrichment.outcome},
        )

    def _store(self, event: NormalizedEvent, agency_id: Optional[str]) -> Optional[Dict[str, Any]]:
        try:
            return event_store.store_call_event(self.db, event, agency_id)
        except Exception as e:
            logger.error(f"Error storing call event: {e}")
            return None

    async def _enrich(self, event: NormalizedEvent) -> Enrichment:
        try:
            return await enrich_transcript(event, self.ai_client, self.settings)
        except Exception as e:
            logger.error(f"Transcript enrichment failed: {e}")
            return merge_with_provider(event, Enrichment())

    def _save_conversation(self, call_event, event, enrichment) -> Optional[Dict[str, Any]]:
        try:
            return event_store.save_conversation(self.db, call_event, event, enrichment)
        except Exception as e:
            logger.error(f"Failed to save conversation: {e}")
            return None

    def _reconcile(
        self,
        event: NormalizedEvent,
        call_event: Dict[str, Any],
        agency_id: str,
        intent: IntentScore,
        enrichment: Enrichment,
        carrier: Optional[CarrierStatus],
        conversation: Optional[Dict[str, Any]],
    ) -> Optional[LeadMatch]:
        try:
            match = reconcile_lead(
                self.db, event, call_event["id"], agency_id, self.settings.lead_match_window_minutes
            )
            if match is not None:
                apply_lead_update(self.db, match, intent, enrichment, carrier, (conversation or {}).get("id"))
            return match
        except Exception as e:
            logger.error(f"Lead reconciliation failed: {e}")
            return None

    def _summarize(self, event, conversation_key, agency_id, enrichment, intent, keyword, carrier_name) -> None:
        try:
            row = aggregates.build_call_summary(
                event, conversation_key, agency_id, enrichment, intent, keyword, carrier_name
            )
        except Exception as e:
            logger.error(f"Failed to build call summary for {conversation_key}: {e}")
            return
        aggregates.upsert_call_summary(self.db, row)

    def _annotate(self, call_event, enrichment, agency_id) -> None:
        try:
            event_store.annotate_call_event(self.db, call_event["id"], enrichment, agency_id)
        except Exception as e:
            logger.error(f"Failed to annotate call event {call_event.get('id')}: {e}")

    def _health(self, status: str, error: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> None:
        record_health_event(self.db, status, error, metadata)


def record_health_event(db, status: str, error: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> None:
    try:
        db.record_health_event(SERVICE_NAME, status, error_message=error, metadata=metadata)
    except Exception as e:
        logger.error(f"Failed to log health event: {e}")
