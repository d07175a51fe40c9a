from typing import Any, Dict, List, Optional
from uuid import uuid4
from datetime import datetime
import logging

# Thin adapter over the Supabase client. STORE_BACKEND=memory swaps in an in-process store with the same surface.
from supabase import create_client, Client

from .config import Settings, load_settings
from .errors import ConfigurationError
from .utils import parse_iso, to_iso, utcnow

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class DuplicateKeyError(Exception):
    """An insert collided with an existing row on a unique key."""


def _first(res) -> Optional[Dict[str, Any]]:
    data = getattr(res, "data", None) or []
    if isinstance(data, dict):
        return data
    return data[0] if data else None


class InMemoryDB:
    def __init__(self) -> None:
        self.agencies: List[Dict[str, Any]] = []
        self.agency_phone_numbers: List[Dict[str, Any]] = []
        self.agency_members: List[Dict[str, Any]] = []
        self.call_events: Dict[str, Dict[str, Any]] = {}
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.leads: List[Dict[str, Any]] = []
        self.keyword_rules: List[Dict[str, Any]] = []
        self.keyword_match_events: List[Dict[str, Any]] = []
        self.carriers: List[Dict[str, Any]] = []
        self.call_summaries: Dict[str, Dict[str, Any]] = {}
        self.agent_daily_state: List[Dict[str, Any]] = []
        self.health_events: List[Dict[str, Any]] = []

    # Seeding (local dev and tests)
    def add_agency(self, name: str = "Agency", agency_id: Optional[str] = None) -> Dict[str, Any]:
        obj = {"id": agency_id or str(uuid4()), "name": name, "created_at": to_iso(utcnow())}
        self.agencies.append(obj)
        return obj

    def add_agency_phone(self, agency_id: str, phone_number: str, is_active: bool = True) -> None:
        self.agency_phone_numbers.append({"agency_id": agency_id, "phone_number": phone_number, "is_active": is_active})

    def add_member(self, agency_id: str, user_id: Optional[str] = None) -> str:
        uid = user_id or str(uuid4())
        self.agency_members.append({"agency_id": agency_id, "user_id": uid})
        return uid

    def add_keyword_rule(self, **fields) -> Dict[str, Any]:
        obj = {
            "id": str(uuid4()),
            "match_type": "contains",
            "case_sensitive": False,
            "weight": 0.85,
            "active": True,
            "expires_at": None,
            "created_at": to_iso(utcnow()),
        }
        obj.update(fields)
        self.keyword_rules.append(obj)
        return obj

    def add_carrier(self, **fields) -> Dict[str, Any]:
        self.carriers.append(dict(fields))
        return fields

    def add_lead(self, **fields) -> Dict[str, Any]:
        return self.create_lead(fields)

    # Agencies
    def find_agency_by_phone(self, variants: List[str]) -> Optional[str]:
        for row in self.agency_phone_numbers:
            if row.get("is_active") and row.get("phone_number") in variants:
                return row["agency_id"]
        return None

    def first_agency_id(self) -> Optional[str]:
        return self.agencies[0]["id"] if self.agencies else None

    def list_agency_members(self, agency_id: str) -> List[Dict[str, Any]]:
        return [m for m in self.agency_members if m.get("agency_id") == agency_id]

    # Call events
    def upsert_call_event(self, row: Dict[str, Any]) -> Dict[str, Any]:
        key = row["conversation_id"]
        now = to_iso(utcnow())
        existing = self.call_events.get(key)
        if existing:
            existing.update(row)
            existing["updated_at"] = now
            return existing
        obj = {"id": str(uuid4()), "created_at": now, "updated_at": now}
        obj.update(row)
        self.call_events[key] = obj
        return obj

    def update_call_event(self, call_event_id: str, updates: Dict[str, Any]) -> None:
        for row in self.call_events.values():
            if row["id"] == call_event_id:
                row.update(updates)
                row["updated_at"] = to_iso(utcnow())

    # Conversations
    def upsert_conversation(self, row: Dict[str, Any]) -> Dict[str, Any]:
        key = row["call_event_id"]
        existing = self.conversations.get(key)
        if existing:
            existing.update(row)
            existing["updated_at"] = to_iso(utcnow())
            return existing
        obj = {"id": str(uuid4()), "created_at": to_iso(utcnow())}
        obj.update(row)
        self.conversations[key] = obj
        return obj

    # Keyword rules
    def list_active_keyword_rules(self, agency_id: str, now: datetime) -> List[Dict[str, Any]]:
        out = []
        for rule in self.keyword_rules:
            if rule.get("agency_id") != agency_id or not rule.get("active"):
                continue
            expires = parse_iso(rule.get("expires_at"))
            if expires is not None and expires <= now:
                continue
            out.append(rule)
        return out

    def record_keyword_match(self, row: Dict[str, Any]) -> None:
        self.keyword_match_events.append(dict(row, id=str(uuid4()), created_at=to_iso(utcnow())))

    # Carrier cache
    def get_carrier_record(self, usdot: Optional[str] = None, mc: Optional[str] = None) -> Optional[Dict[str, Any]]:
        for row in self.carriers:
            if usdot and str(row.get("usdot")) == str(usdot):
                return row
        for row in self.carriers:
            if mc and str(row.get("mc_number")) == str(mc):
                return row
        return None

    # Leads
    def get_lead_by_phone_call(self, call_event_id: str) -> Optional[Dict[str, Any]]:
        for lead in self.leads:
            if lead.get("phone_call_id") == call_event_id:
                return lead
        return None

    def _pending_unlinked(self, agency_id: Optional[str]) -> List[Dict[str, Any]]:
        rows = [
            lead for lead in self.leads
            if lead.get("status") == "pending"
            and lead.get("phone_call_id") is None
            and (agency_id is None or lead.get("agency_id") == agency_id)
        ]
        return sorted(rows, key=lambda r: parse_iso(r.get("created_at")), reverse=True)

    def find_pending_lead_by_phones(self, agency_id: Optional[str], variants: List[str]) -> Optional[Dict[str, Any]]:
        for lead in self._pending_unlinked(agency_id):
            if lead.get("caller_phone") in variants:
                return lead
        return None

    def find_recent_pending_lead(self, agency_id: Optional[str], since: datetime) -> Optional[Dict[str, Any]]:
        for lead in self._pending_unlinked(agency_id):
            if parse_iso(lead.get("created_at")) >= since:
                return lead
        return None

    def link_lead(self, lead_id: str, call_event_id: str) -> bool:
        for lead in self.leads:
            if lead["id"] == lead_id:
                if lead.get("phone_call_id") is not None:
                    return False
                lead["phone_call_id"] = call_event_id
                return True
        return False

    def update_lead(self, lead_id: str, updates: Dict[str, Any]) -> None:
        for lead in self.leads:
            if lead["id"] == lead_id:
                lead.update(updates)

    def create_lead(self, row: Dict[str, Any]) -> Dict[str, Any]:
        obj = {
            "id": str(uuid4()),
            "status": "pending",
            "phone_call_id": None,
            "created_at": to_iso(utcnow()),
        }
        obj.update(row)
        if isinstance(obj.get("created_at"), datetime):
            obj["created_at"] = to_iso(obj["created_at"])
        self.leads.append(obj)
        return obj

    # Aggregates
    def upsert_call_summary(self, row: Dict[str, Any]) -> None:
        key = row["conversation_id"]
        existing = self.call_summaries.get(key)
        if existing:
            existing.update(row)
        else:
            self.call_summaries[key] = dict(row, id=str(uuid4()))

    def get_daily_state(self, agent_id: str, local_date: str) -> Optional[Dict[str, Any]]:
        for row in self.agent_daily_state:
            if row["agent_id"] == agent_id and row["local_date"] == local_date:
                return row
        return None

    def insert_daily_state(self, row: Dict[str, Any]) -> None:
        if self.get_daily_state(row["agent_id"], row["local_date"]):
            raise DuplicateKeyError(f"agent_daily_state ({row['agent_id']}, {row['local_date']})")
        self.agent_daily_state.append(dict(row, id=str(uuid4())))

    def update_daily_state(self, state_id: str, updates: Dict[str, Any]) -> None:
        for row in self.agent_daily_state:
            if row["id"] == state_id:
                row.update(updates)

    # Health log
    def record_health_event(self, service_name: str, status: str, error_message: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.health_events.append({
            "service_name": service_name,
            "status": status,
            "error_message": error_message,
            "metadata": metadata,
            "created_at": to_iso(utcnow()),
        })


class SupabaseDB:
    def __init__(self, client: Client) -> None:
        self.client = client

    # Agencies
    def find_agency_by_phone(self, variants: List[str]) -> Optional[str]:
        res = (
            self.client.table("agency_phone_numbers")
            .select("agency_id")
            .in_("phone_number", variants)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        row = _first(res)
        return row["agency_id"] if row else None

    def first_agency_id(self) -> Optional[str]:
        res = self.client.table("agencies").select("id").order("created_at", desc=False).limit(1).execute()
        row = _first(res)
        return row["id"] if row else None

    def list_agency_members(self, agency_id: str) -> List[Dict[str, Any]]:
        res = self.client.table("agency_members").select("user_id,agency_id").eq("agency_id", agency_id).execute()
        return res.data or []

    # Call events
    def upsert_call_event(self, row: Dict[str, Any]) -> Dict[str, Any]:
        payload = dict(row, updated_at=to_iso(utcnow()))
        res = self.client.table("call_events").upsert(payload, on_conflict="conversation_id").execute()
        return _first(res) or payload

    def update_call_event(self, call_event_id: str, updates: Dict[str, Any]) -> None:
        payload = dict(updates, updated_at=to_iso(utcnow()))
        self.client.table("call_events").update(payload).eq("id", call_event_id).execute()

    # Conversations
    def upsert_conversation(self, row: Dict[str, Any]) -> Dict[str, Any]:
        payload = dict(row, updated_at=to_iso(utcnow()))
        res = self.client.table("conversations").upsert(payload, on_conflict="call_event_id").execute()
        return _first(res) or payload

    # Keyword rules
    def list_active_keyword_rules(self, agency_id: str, now: datetime) -> List[Dict[str, Any]]:
        now_str = now.strftime("%Y-%m-%dT%H:%M:%SZ")
        res = (
            self.client.table("high_intent_keywords")
            .select("id,keyword,match_type,case_sensitive,weight,scope,agent_id,agency_id,active,expires_at")
            .eq("agency_id", agency_id)
            .eq("active", True)
            .or_(f"expires_at.is.null,expires_at.gt.{now_str}")
            .order("created_at", desc=False)
            .execute()
        )
        return res.data or []

    def record_keyword_match(self, row: Dict[str, Any]) -> None:
        self.client.table("keyword_match_events").insert(row).execute()

    # Carrier cache
    def get_carrier_record(self, usdot: Optional[str] = None, mc: Optional[str] = None) -> Optional[Dict[str, Any]]:
        columns = "usdot,mc_number,carrier_name,fmcsa_data"
        if usdot:
            row = _first(self.client.table("carrier_intelligence").select(columns).eq("usdot", str(usdot)).limit(1).execute())
            if row:
                return row
        if mc:
            return _first(self.client.table("carrier_intelligence").select(columns).eq("mc_number", str(mc)).limit(1).execute())
        return None

    # Leads
    def get_lead_by_phone_call(self, call_event_id: str) -> Optional[Dict[str, Any]]:
        res = self.client.table("leads").select("*").eq("phone_call_id", call_event_id).limit(1).execute()
        return _first(res)

    def _pending_unlinked(self, agency_id: Optional[str]):
        query = self.client.table("leads").select("*").is_("phone_call_id", "null").eq("status", "pending")
        if agency_id:
            query = query.eq("agency_id", agency_id)
        return query

    def find_pending_lead_by_phones(self, agency_id: Optional[str], variants: List[str]) -> Optional[Dict[str, Any]]:
        res = (
            self._pending_unlinked(agency_id)
            .in_("caller_phone", variants)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return _first(res)

    def find_recent_pending_lead(self, agency_id: Optional[str], since: datetime) -> Optional[Dict[str, Any]]:
        res = (
            self._pending_unlinked(agency_id)
            .gte("created_at", since.strftime("%Y-%m-%dT%H:%M:%SZ"))
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return _first(res)

    def link_lead(self, lead_id: str, call_event_id: str) -> bool:
        # Conditional update: only succeeds while the lead is still unlinked
        res = (
            self.client.table("leads")
            .update({"phone_call_id": call_event_id})
            .eq("id", lead_id)
            .is_("phone_call_id", "null")
            .execute()
        )
        return bool(res.data)

    def update_lead(self, lead_id: str, updates: Dict[str, Any]) -> None:
        self.client.table("leads").update(updates).eq("id", lead_id).execute()

    def create_lead(self, row: Dict[str, Any]) -> Dict[str, Any]:
        res = self.client.table("leads").insert(row).execute()
        return _first(res) or dict(row)

    # Aggregates
    def upsert_call_summary(self, row: Dict[str, Any]) -> None:
        self.client.table("call_summaries").upsert(row, on_conflict="conversation_id").execute()

    def get_daily_state(self, agent_id: str, local_date: str) -> Optional[Dict[str, Any]]:
        res = (
            self.client.table("agent_daily_state")
            .select("*")
            .eq("agent_id", agent_id)
            .eq("local_date", local_date)
            .limit(1)
            .execute()
        )
        return _first(res)

    def insert_daily_state(self, row: Dict[str, Any]) -> None:
        try:
            self.client.table("agent_daily_state").insert(row).execute()
        except Exception as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                raise DuplicateKeyError(str(e)) from e
            raise

    def update_daily_state(self, state_id: str, updates: Dict[str, Any]) -> None:
        payload = dict(updates, updated_at=to_iso(utcnow()))
        self.client.table("agent_daily_state").update(payload).eq("id", state_id).execute()

    # Health log
    def record_health_event(self, service_name: str, status: str, error_message: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.client.table("system_health_events").insert({
            "service_name": service_name,
            "status": status,
            "error_message": error_message,
            "metadata": metadata,
        }).execute()


_client: Optional[Client] = None
_db_instance: Optional[Any] = None


def get_db(settings: Optional[Settings] = None):
    global _client, _db_instance

    settings = settings or load_settings()
    if settings.store_backend == "memory":
        if _db_instance is None or not isinstance(_db_instance, InMemoryDB):
            logger.warning("Using in-memory store (STORE_BACKEND=memory); data is not persisted")
            _db_instance = InMemoryDB()
        return _db_instance

    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
    if _client is None:
        _client = create_client(settings.supabase_url, settings.supabase_service_role_key)
    if _db_instance is None or not isinstance(_db_instance, SupabaseDB):
        _db_instance = SupabaseDB(_client)
    return _db_instance


def reset_db() -> None:
    global _client, _db_instance
    _client = None
    _db_instance = None
