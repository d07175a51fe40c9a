# Supabase schema SQL for reference
# Run SCHEMA_SQL in the Supabase SQL editor

SCHEMA_SQL = """
CREATE TABLE agencies (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  name text NOT NULL,
  created_at timestamptz DEFAULT now()
);

CREATE TABLE agency_phone_numbers (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  agency_id uuid REFERENCES agencies(id) ON DELETE CASCADE,
  phone_number text NOT NULL,
  is_active boolean DEFAULT true
);

CREATE TABLE agency_members (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  agency_id uuid REFERENCES agencies(id) ON DELETE CASCADE,
  user_id uuid NOT NULL
);

CREATE TABLE call_events (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  provider_event_id text,
  conversation_id text NOT NULL UNIQUE,  -- upsert key, never the per-delivery event id
  call_sid text,
  agent_id text,
  agent_number text,
  caller_number text DEFAULT 'unknown',
  direction text DEFAULT 'inbound',
  status text,
  event_type text,
  termination_reason text,
  duration_secs numeric DEFAULT 0,
  transcript_summary text,
  call_summary_title text,
  carrier_usdot text,
  agency_id uuid REFERENCES agencies(id) ON DELETE SET NULL,
  event_timestamp timestamptz,
  payload jsonb DEFAULT '{}'::jsonb,
  created_at timestamptz DEFAULT now(),
  updated_at timestamptz DEFAULT now()
);

CREATE TABLE conversations (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  call_event_id uuid NOT NULL UNIQUE REFERENCES call_events(id) ON DELETE CASCADE,
  conversation_id text,
  call_sid text,
  transcript text,
  summary text,
  sentiment text CHECK (sentiment IN ('positive','neutral','negative')),
  intent text,
  outcome text CHECK (outcome IN ('booked','callback_requested','declined','no_action','unknown')),
  recording_url text,
  raw_payload jsonb,
  created_at timestamptz DEFAULT now(),
  updated_at timestamptz DEFAULT now()
);

CREATE TABLE leads (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  agency_id uuid REFERENCES agencies(id) ON DELETE CASCADE,
  status text CHECK (status IN ('pending','claimed','booked','closed')) DEFAULT 'pending',
  caller_phone text,
  caller_company text,
  phone_call_id uuid REFERENCES call_events(id) ON DELETE SET NULL,  -- written once
  conversation_id uuid REFERENCES conversations(id) ON DELETE SET NULL,
  intent_score int CHECK (intent_score BETWEEN 0 AND 10),
  is_high_intent boolean DEFAULT false,
  intent_reason_breakdown jsonb,
  carrier_usdot text,
  carrier_mc text,
  carrier_name text,
  carrier_verified_at timestamptz,
  shipper text,
  equipment_type text,
  notes text,
  created_at timestamptz DEFAULT now()
);

CREATE TABLE high_intent_keywords (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  agency_id uuid REFERENCES agencies(id) ON DELETE CASCADE,
  agent_id uuid,
  scope text,
  keyword text NOT NULL,
  match_type text CHECK (match_type IN ('contains','exact','regex')) DEFAULT 'contains',
  case_sensitive boolean DEFAULT false,
  weight float CHECK (weight BETWEEN 0 AND 1) DEFAULT 0.85,
  active boolean DEFAULT true,
  expires_at timestamptz,
  created_at timestamptz DEFAULT now()
);

CREATE TABLE keyword_match_events (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  agency_id uuid REFERENCES agencies(id) ON DELETE CASCADE,
  keyword_id uuid REFERENCES high_intent_keywords(id) ON DELETE SET NULL,
  source text DEFAULT 'webhook_transcript',
  matched_text text,
  conversation_id text,
  created_at timestamptz DEFAULT now()
);

CREATE TABLE carrier_intelligence (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  usdot text,
  mc_number text,
  carrier_name text,
  fmcsa_data jsonb,  -- {authority_status, insurance_status}
  updated_at timestamptz DEFAULT now()
);

CREATE TABLE call_summaries (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  conversation_id text NOT NULL UNIQUE,
  agency_id uuid REFERENCES agencies(id) ON DELETE SET NULL,
  call_sid text,
  agent_number text,
  external_number text,
  duration_secs numeric,
  call_outcome text,
  termination_reason text,
  summary text,
  summary_short text,
  summary_title text,
  transcript text,
  is_high_intent boolean DEFAULT false,
  intent_score int,
  high_intent_reasons jsonb,
  carrier_usdot text,
  carrier_mc text,
  carrier_name text,
  call_cost_credits numeric,
  started_at timestamptz,
  ended_at timestamptz,
  updated_at timestamptz DEFAULT now()
);

CREATE TABLE agent_daily_state (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  agent_id uuid NOT NULL,
  agency_id uuid REFERENCES agencies(id) ON DELETE CASCADE,
  local_date date NOT NULL,
  ai_calls int DEFAULT 0,
  ai_minutes numeric DEFAULT 0,
  high_intent int DEFAULT 0,
  booked int DEFAULT 0,
  updated_at timestamptz DEFAULT now(),
  UNIQUE (agent_id, local_date)
);

CREATE TABLE system_health_events (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  service_name text NOT NULL,
  status text CHECK (status IN ('ok','fail')),
  error_message text,
  metadata jsonb,
  created_at timestamptz DEFAULT now()
);
"""

TABLES = (
    "agencies",
    "agency_phone_numbers",
    "agency_members",
    "call_events",
    "conversations",
    "leads",
    "high_intent_keywords",
    "keyword_match_events",
    "carrier_intelligence",
    "call_summaries",
    "agent_daily_state",
    "system_health_events",
)
