"""Tests for the Supabase store adapter against a recording client."""

from datetime import datetime, timezone

import pytest

from callflow.config import Settings
from callflow.db import DuplicateKeyError, InMemoryDB, SupabaseDB, get_db, reset_db
from callflow.errors import ConfigurationError
from callflow.services.pipeline import CallEventPipeline
from tests.conftest import KEYWORD_RULE, FakeSupabaseClient, make_payload, seeded_client

NOW = datetime(2025, 3, 15, 3, 30, tzinfo=timezone.utc)


class PgError(Exception):
    def __init__(self, code: str):
        super().__init__(f"postgres error {code}")
        self.code = code


class TestLeadLinking:
    def test_link_is_conditional_on_null_phone_call(self):
        client = FakeSupabaseClient()
        assert SupabaseDB(client).link_lead("lead-1", "ce-1") is True

        query = client.writes("leads")[0]
        assert query.op == "update"
        assert query.payload == {"phone_call_id": "ce-1"}
        assert query.called("eq", "id", "lead-1")
        assert query.called("is_", "phone_call_id", "null")

    def test_already_linked_lead_is_not_taken(self):
        client = FakeSupabaseClient()
        client.results[("leads", "update")] = []
        assert SupabaseDB(client).link_lead("lead-1", "ce-2") is False

    def test_pending_phone_lookup_filters(self):
        client = FakeSupabaseClient({"leads": [{"id": "lead-1"}]})
        lead = SupabaseDB(client).find_pending_lead_by_phones("agency-1", ["+15551234567", "5551234567"])
        assert lead == {"id": "lead-1"}

        query = client.queries[0]
        assert query.called("is_", "phone_call_id", "null")
        assert query.called("eq", "status", "pending")
        assert query.called("eq", "agency_id", "agency-1")
        assert query.called("in_", "caller_phone", ["+15551234567", "5551234567"])
        assert query.called("order", "created_at", desc=True)

    def test_recent_lookup_uses_window_start(self):
        client = FakeSupabaseClient()
        assert SupabaseDB(client).find_recent_pending_lead(None, NOW) is None

        query = client.queries[0]
        assert query.called("gte", "created_at", "2025-03-15T03:30:00Z")
        assert not any(name == "eq" and args[0] == "agency_id" for name, args, _ in query.calls)


class TestKeywordRules:
    def test_active_unexpired_rules_in_creation_order(self):
        client = FakeSupabaseClient({"high_intent_keywords": [KEYWORD_RULE]})
        assert SupabaseDB(client).list_active_keyword_rules("agency-1", NOW) == [KEYWORD_RULE]

        query = client.queries[0]
        assert query.table == "high_intent_keywords"
        assert query.called("eq", "agency_id", "agency-1")
        assert query.called("eq", "active", True)
        assert query.called("or_", "expires_at.is.null,expires_at.gt.2025-03-15T03:30:00Z")
        assert query.called("order", "created_at", desc=False)


class TestDailyState:
    def test_unique_violation_becomes_duplicate_key(self):
        client = FakeSupabaseClient()
        client.errors[("agent_daily_state", "insert")] = PgError("23505")
        with pytest.raises(DuplicateKeyError):
            SupabaseDB(client).insert_daily_state({"agent_id": "user-1", "local_date": "2025-03-15"})

    def test_other_insert_errors_propagate(self):
        client = FakeSupabaseClient()
        client.errors[("agent_daily_state", "insert")] = PgError("42P01")
        with pytest.raises(PgError):
            SupabaseDB(client).insert_daily_state({"agent_id": "user-1", "local_date": "2025-03-15"})

    def test_update_stamps_updated_at(self):
        client = FakeSupabaseClient()
        SupabaseDB(client).update_daily_state("ds-1", {"ai_calls": 2})

        query = client.writes("agent_daily_state")[0]
        assert query.payload["ai_calls"] == 2
        assert "updated_at" in query.payload
        assert query.called("eq", "id", "ds-1")


class TestUpserts:
    def test_call_event_upserts_on_conversation_id(self):
        client = FakeSupabaseClient()
        row = SupabaseDB(client).upsert_call_event({"conversation_id": "conv_001"})
        assert row["id"] == "call_events-1"
        assert client.queries[0].called("upsert", client.queries[0].payload, on_conflict="conversation_id")
        assert "updated_at" in client.queries[0].payload

    def test_conversation_upserts_on_call_event_id(self):
        client = FakeSupabaseClient()
        SupabaseDB(client).upsert_conversation({"call_event_id": "ce-1"})
        assert client.queries[0].called("upsert", client.queries[0].payload, on_conflict="call_event_id")


class TestPipelineOnSupabase:
    @pytest.mark.asyncio
    async def test_first_delivery_writes_every_table(self):
        client = seeded_client()
        pipeline = CallEventPipeline(SupabaseDB(client), None, Settings(store_backend="supabase"))
        result = await pipeline.process(make_payload())

        assert result.intent_score == 9
        assert result.lead_id == "leads-1"
        assert {q.table for q in client.writes()} == {
            "call_events",
            "conversations",
            "keyword_match_events",
            "leads",
            "call_summaries",
            "agent_daily_state",
            "system_health_events",
        }
        daily = client.writes("agent_daily_state")[0]
        assert daily.op == "insert"
        assert daily.payload["agent_id"] == "user-1"

    @pytest.mark.asyncio
    async def test_daily_insert_race_retries_as_update(self):
        client = seeded_client()
        client.errors[("agent_daily_state", "insert")] = PgError("23505")
        existing = [{"id": "ds-1", "ai_calls": 3, "ai_minutes": 1.5}]
        selects = iter([[], existing])
        db = SupabaseDB(client)
        db.get_daily_state = lambda agent_id, day: (next(selects) or [None])[0]

        await CallEventPipeline(db, None, Settings(store_backend="supabase")).process(make_payload())
        update = client.writes("agent_daily_state")[-1]
        assert update.op == "update"
        assert update.payload["ai_calls"] == 4
        assert update.called("eq", "id", "ds-1")


class TestGetDb:
    def test_memory_backend(self, clean_env):
        assert isinstance(get_db(Settings(store_backend="memory")), InMemoryDB)

    def test_supabase_backend_builds_client_once(self, clean_env):
        created = []

        def fake_create_client(url, key):
            created.append((url, key))
            return FakeSupabaseClient()

        clean_env.setattr("callflow.db.create_client", fake_create_client)
        settings = Settings(supabase_url="https://x.supabase.co", supabase_service_role_key="service-key")
        first = get_db(settings)
        assert isinstance(first, SupabaseDB)
        assert get_db(settings) is first
        assert created == [("https://x.supabase.co", "service-key")]
        reset_db()

    def test_missing_credentials(self, clean_env):
        with pytest.raises(ConfigurationError):
            get_db(Settings())
