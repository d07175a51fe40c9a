"""Shared test fixtures and helpers."""

import json
from datetime import timedelta
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from callflow.config import Settings
from callflow.db import InMemoryDB, reset_db
from callflow.utils import to_iso, utcnow

AGENT_NUMBER = "+18005550100"


class FakeAIClient:
    """Stands in for OpenAIClient: returns a canned completion and records prompts."""

    def __init__(self, response: Any = None, enabled: bool = True, error: Optional[Exception] = None):
        if isinstance(response, dict):
            response = json.dumps(response)
        self.response = response or "{}"
        self.enabled = enabled
        self.error = error
        self.calls: List[str] = []

    async def analyze_call(self, transcript_text: str) -> str:
        self.calls.append(transcript_text)
        if self.error is not None:
            raise self.error
        return self.response


class FakeQuery:
    """Chainable stand-in for a supabase table query. Records filters and the write payload."""

    def __init__(self, client: "FakeSupabaseClient", table: str):
        self.client = client
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.calls: List[tuple] = []

    def __getattr__(self, name: str):
        def chain(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            if name in ("insert", "upsert", "update"):
                self.op = name
                self.payload = args[0]
            return self
        return chain

    def called(self, name: str, *args, **kwargs) -> bool:
        return (name, args, kwargs) in self.calls

    def execute(self):
        error = self.client.errors.get((self.table, self.op))
        if error is not None:
            raise error
        if (self.table, self.op) in self.client.results:
            return SimpleNamespace(data=self.client.results[(self.table, self.op)])
        if self.op == "select":
            return SimpleNamespace(data=self.client.rows.get(self.table, []))
        return SimpleNamespace(data=[dict(self.payload, id=f"{self.table}-1")])


class FakeSupabaseClient:
    """Answers selects from canned ``rows`` and echoes writes back with an id."""

    def __init__(self, rows: Optional[Dict[str, list]] = None):
        self.rows = rows or {}
        self.results: Dict[tuple, list] = {}
        self.errors: Dict[tuple, Exception] = {}
        self.queries: List[FakeQuery] = []

    def table(self, name: str) -> FakeQuery:
        query = FakeQuery(self, name)
        self.queries.append(query)
        return query

    def writes(self, table: Optional[str] = None) -> List[FakeQuery]:
        return [q for q in self.queries if q.op != "select" and table in (None, q.table)]


KEYWORD_RULE = {
    "id": "kw-1",
    "keyword": "truck available",
    "match_type": "contains",
    "case_sensitive": False,
    "weight": 0.85,
    "scope": "agency",
    "agent_id": None,
    "agency_id": "agency-1",
    "active": True,
    "expires_at": None,
}


def seeded_client(**rows) -> FakeSupabaseClient:
    """One agency on the agent number with one member and one live keyword rule."""
    base = {
        "agency_phone_numbers": [{"agency_id": "agency-1"}],
        "agency_members": [{"user_id": "user-1", "agency_id": "agency-1"}],
        "high_intent_keywords": [KEYWORD_RULE],
    }
    base.update(rows)
    return FakeSupabaseClient(base)


@pytest.fixture
def settings():
    return Settings(store_backend="memory")


@pytest.fixture
def db():
    return InMemoryDB()


@pytest.fixture
def agency(db):
    """One agency reachable on AGENT_NUMBER with a single member."""
    obj = db.add_agency("Acme Freight")
    db.add_agency_phone(obj["id"], AGENT_NUMBER)
    obj["member_id"] = db.add_member(obj["id"])
    return obj


def make_turns(*messages: str) -> List[Dict[str, str]]:
    """Alternate agent/user turns starting with the agent."""
    roles = ("agent", "user")
    return [{"role": roles[i % 2], "message": m} for i, m in enumerate(messages)]


def make_payload(
    conversation_id: Optional[str] = "conv_001",
    caller: Optional[str] = "+15551234567",
    agent_number: str = AGENT_NUMBER,
    duration: float = 45,
    transcript: Any = None,
    summary: Optional[str] = None,
    event_type: str = "post_call_transcription",
    tags: Optional[Dict[str, str]] = None,
    extra_metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """A provider post-call payload in the nested ``data.metadata.phone_call`` shape."""
    if transcript is None:
        transcript = make_turns(
            "Thanks for calling Acme Freight, how can I help?",
            "Hi, I have a truck available in Dallas and I'm looking for a load.",
        )
    phone_call: Dict[str, Any] = {"agent_number": agent_number, "call_sid": "CA123"}
    if caller is not None:
        phone_call["external_number"] = caller
    metadata: Dict[str, Any] = {"call_duration_secs": duration, "phone_call": phone_call, "cost": 120}
    metadata.update(extra_metadata or {})
    data: Dict[str, Any] = {
        "agent_id": "agent_abc",
        "status": "done",
        "transcript": transcript,
        "metadata": metadata,
        "analysis": {"call_successful": "success"},
    }
    if conversation_id is not None:
        data["conversation_id"] = conversation_id
    if summary is not None:
        data["analysis"]["transcript_summary"] = summary
    if tags is not None:
        data["tags"] = tags
    return {"type": event_type, "event_timestamp": 1739537297, "data": data}


def minutes_ago(minutes: float) -> str:
    return to_iso(utcnow() - timedelta(minutes=minutes))


BASE_ENV = {
    "SUPABASE_URL": "",
    "SUPABASE_SERVICE_ROLE_KEY": "",
    "STORE_BACKEND": "supabase",
    "AI_API_KEY": "",
    "OPENAI_API_KEY": "",
    "GROQ_API_KEY": "",
    "AI_BASE_URL": "",
    "AI_MODEL": "",
    "AI_TIMEOUT_SECONDS": "20",
    "TRANSCRIPT_CHAR_LIMIT": "3000",
    "MIN_TRANSCRIPT_CHARS": "20",
    "LEAD_MATCH_WINDOW_MINUTES": "5",
    "ALLOW_DEFAULT_AGENCY": "true",
    "DAILY_STATE_TIMEZONE": "UTC",
    "ATTRIBUTE_TO_ASSIGNED_AGENT": "false",
    "WEBHOOK_SECRET": "",
}


@pytest.fixture
def clean_env(monkeypatch):
    """Pin every setting to its default and drop the cached store."""
    # Empty values rather than deletions so a local .env cannot leak in
    for key, value in BASE_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.delenv("GROQ_MODEL", raising=False)
    reset_db()
    yield monkeypatch
    reset_db()
