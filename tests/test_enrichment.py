"""Tests for AI transcript enrichment."""

import pytest

from callflow.config import Settings
from callflow.schemas.pydantic_schemas import Enrichment, NormalizedEvent
from callflow.services.enrichment import (
    analyze_transcript,
    enrich_transcript,
    extract_json_object,
    merge_with_provider,
    parse_analysis,
)
from tests.conftest import FakeAIClient

LONG_TRANSCRIPT = "user: I run a flatbed out of Dallas, my DOT is 1234567, do you have anything to Tulsa?"

ANALYSIS = {
    "sentiment": "Positive",
    "intent": "book load",
    "outcome": "booked",
    "summary": "Carrier booked a Dallas to Tulsa flatbed load.",
    "carrier_usdot": "DOT 1234567",
    "carrier_mc": None,
    "carrier_name": "Roadrunner LLC",
    "shipper": "null",
    "equipment_type": "flatbed",
}


def _event(transcript=LONG_TRANSCRIPT, **kwargs) -> NormalizedEvent:
    return NormalizedEvent(transcript=transcript, **kwargs)


class TestExtractJson:
    def test_wrapped_in_prose(self):
        content = 'Sure! Here you go:\n```json\n{"sentiment": "neutral"}\n```'
        assert extract_json_object(content) == {"sentiment": "neutral"}

    def test_no_object(self):
        assert extract_json_object("I cannot help with that") is None

    def test_invalid_json(self):
        assert extract_json_object("{not: json}") is None


class TestParseAnalysis:
    def test_normalizes_fields(self):
        result = parse_analysis(ANALYSIS)
        assert result.sentiment == "positive"
        assert result.outcome == "booked"
        assert result.carrier_usdot == "1234567"
        assert result.carrier_mc is None
        assert result.shipper is None
        assert result.equipment_type == "flatbed"

    def test_invalid_enums_become_null(self):
        result = parse_analysis({"sentiment": "ecstatic", "outcome": "maybe", "equipment_type": "reefer"})
        assert result.sentiment is None
        assert result.outcome is None
        assert result.equipment_type is None


class TestAnalyzeTranscript:
    @pytest.mark.asyncio
    async def test_successful_analysis(self):
        client = FakeAIClient(ANALYSIS)
        result = await analyze_transcript(_event(), client, Settings())
        assert result.summary.startswith("Carrier booked")
        assert client.calls == [LONG_TRANSCRIPT]

    @pytest.mark.asyncio
    async def test_transcript_truncated(self):
        client = FakeAIClient(ANALYSIS)
        await analyze_transcript(_event("x" * 5000), client, Settings(transcript_char_limit=3000))
        assert len(client.calls[0]) == 3000

    @pytest.mark.asyncio
    async def test_short_transcript_skips_ai(self):
        client = FakeAIClient(ANALYSIS)
        result = await analyze_transcript(_event("user: hi there"), client, Settings())
        assert result == Enrichment()
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_disabled_client(self):
        result = await analyze_transcript(_event(), FakeAIClient(ANALYSIS, enabled=False), Settings())
        assert result == Enrichment()

    @pytest.mark.asyncio
    async def test_no_client(self):
        assert await analyze_transcript(_event(), None, Settings()) == Enrichment()

    @pytest.mark.asyncio
    async def test_ai_error_degrades(self):
        client = FakeAIClient(error=TimeoutError("timed out"))
        assert await analyze_transcript(_event(), client, Settings()) == Enrichment()

    @pytest.mark.asyncio
    async def test_unparseable_response_degrades(self):
        client = FakeAIClient("no json here")
        assert await analyze_transcript(_event(), client, Settings()) == Enrichment()


class TestMergeWithProvider:
    def test_provider_values_win(self):
        event = _event(summary="Provider summary", summary_title="Load inquiry", shipper="Acme Steel", equipment_type="not_flatbed")
        merged = merge_with_provider(event, parse_analysis(ANALYSIS))
        assert merged.summary == "Provider summary"
        assert merged.intent == "Load inquiry"
        assert merged.shipper == "Acme Steel"
        assert merged.equipment_type == "not_flatbed"
        assert merged.outcome == "booked"

    def test_ai_fills_gaps(self):
        merged = merge_with_provider(_event(), parse_analysis(ANALYSIS))
        assert merged.summary == ANALYSIS["summary"]
        assert merged.intent == "book load"

    @pytest.mark.asyncio
    async def test_enrich_without_ai_keeps_provider_summary(self):
        result = await enrich_transcript(_event(summary="Provider summary"), None, Settings())
        assert result.summary == "Provider summary"
        assert result.outcome is None
