"""
Pipeline Pulse — Record Normalizer
====================================

Maps provider-specific payloads (webhooks, Zapier/Make exports, CRM
dumps) onto the canonical Lead / Opportunity / Activity / Rep / Contact
models. Field names are resolved through alias tables; vocabularies are
mapped by the model validators.

A record without an id gets a deterministic content hash, so repeated
normalization of the same payload yields the same ids.

Functions:
  normalize_lead()         - raw dict -> Lead
  normalize_opportunity()  - raw dict -> Opportunity
  normalize_activity()     - raw dict -> Activity
  normalize_rep()          - raw dict -> Rep
  normalize_contact()      - raw dict -> Contact
  normalize_snapshot()     - raw payload -> PipelineSnapshot
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from analytics.lib.errors import InvalidInputError
from analytics.lib.logger import setup_logger
from analytics.lib.utils import stable_id
from models.crm_models import Activity, Contact, Lead, Opportunity, PipelineSnapshot, Rep

logger = setup_logger(__name__)

AliasTable = Dict[str, Sequence[str]]

# ---------------------------------------------------------------------------
# Alias tables: canonical field -> provider names tried in order
# ---------------------------------------------------------------------------
PERSON_ALIASES: AliasTable = {
    "first_name": ("firstName", "first_name", "firstname", "given_name"),
    "last_name": ("lastName", "last_name", "lastname", "family_name"),
    "email": ("email", "email_address", "emailAddress"),
    "phone": ("phone", "phone_number", "phoneNumber", "mobile"),
    "assigned_to": ("assignedTo", "assigned_to", "owner_id", "ownerId", "hubspot_owner_id"),
    "created_at": ("createdAt", "created_at", "createdate", "date_added", "dateAdded"),
    "updated_at": ("updatedAt", "updated_at", "lastmodifieddate", "date_updated"),
}

LEAD_ALIASES: AliasTable = {
    "id": ("id", "lead_id", "leadId", "contact_id"),
    "status": ("status", "lead_status", "hs_lead_status"),
    "lead_source": ("leadSource", "lead_source", "source", "hs_analytics_source"),
    "first_contacted_at": ("firstContactedAt", "first_contacted_at", "first_contact_date"),
    "company": ("company", "companyName", "company_name"),
    "title": ("title", "jobTitle", "job_title", "jobtitle"),
    "budget": ("budget", "estimatedValue", "estimated_value"),
    "timeline": ("timeline", "expectedCloseDate", "expected_close_date"),
}

OPPORTUNITY_ALIASES: AliasTable = {
    "id": ("id", "opportunity_id", "opportunityId", "deal_id", "dealId"),
    "name": ("name", "title", "dealname", "deal_name"),
    "contact_id": ("contactId", "contact_id"),
    "value": ("value", "amount", "deal_value", "monetaryValue"),
    "status": ("status", "stage_type", "dealstatus"),
    "stage": ("stage", "stage_name", "pipeline_stage", "dealstage"),
    "assigned_to": ("assignedTo", "assigned_to", "owner_id", "ownerId", "hubspot_owner_id"),
    "created_at": ("createdAt", "created_at", "createdate"),
    "updated_at": ("updatedAt", "updated_at", "lastmodifieddate"),
    "stage_changed_at": ("stageChangedAt", "stage_changed_at", "lastStageChangeAt"),
    "last_activity_at": ("lastActivityAt", "last_activity_at", "notes_last_updated"),
    "lost_reason": ("lostReason", "lost_reason", "closed_lost_reason"),
}

ACTIVITY_ALIASES: AliasTable = {
    "id": ("id", "activity_id", "activityId", "engagement_id"),
    "type": ("type", "activity_type", "activityType"),
    "contact_id": ("contactId", "contact_id", "leadId", "lead_id"),
    "deal_id": ("dealId", "deal_id", "opportunityId", "opportunity_id"),
    "performed_by": ("performedBy", "performed_by", "owner_id", "user_id", "userId"),
    "outcome": ("outcome", "status", "disposition"),
    "subject": ("subject", "title"),
    "created_at": ("createdAt", "created_at", "timestamp", "date"),
}

REP_ALIASES: AliasTable = {
    "id": ("id", "user_id", "rep_id", "userId", "owner_id"),
    "email": ("email",),
    "active": ("active", "is_active", "isActive"),
}

CONTACT_ALIASES: AliasTable = {
    "id": ("id", "contact_id", "contactId"),
    "status": ("status", "contact_status"),
    "opted_out": ("optedOut", "opted_out", "unsubscribed", "dnd"),
}

DEFAULT_ACTIVITY_OUTCOME = "completed"
DEFAULT_LEAD_SOURCE = "webhook"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _pick(raw: Dict[str, Any], names: Sequence[str]) -> Any:
    """First alias with a non-empty value."""
    for name in names:
        value = raw.get(name)
        if value is not None and value != "":
            return value
    return None


def _apply(
    raw: Dict[str, Any],
    *tables: AliasTable,
    aliases: Optional[AliasTable] = None,
) -> Dict[str, Any]:
    """Resolve canonical fields; caller `aliases` are tried last and win."""
    record: Dict[str, Any] = {}
    for table in tables + ((aliases,) if aliases else ()):
        for field, names in table.items():
            value = _pick(raw, names)
            if value is not None:
                record[field] = value
    return record


def _split_name(raw: Dict[str, Any], record: Dict[str, Any]) -> None:
    """Fill first/last name from a single `name` field."""
    full = raw.get("name") or raw.get("full_name") or raw.get("fullName")
    if not full or not isinstance(full, str):
        return
    parts = full.split()
    if "first_name" not in record and parts:
        record["first_name"] = parts[0]
    if "last_name" not in record and len(parts) > 1:
        record["last_name"] = " ".join(parts[1:])


def _require_mapping(raw: Any, kind: str) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    raise InvalidInputError(
        f"{kind} record must be a mapping, got {type(raw).__name__}", argument=kind,
    )


# ---------------------------------------------------------------------------
# Normalizers
# ---------------------------------------------------------------------------

def normalize_lead(raw: Dict[str, Any], aliases: Optional[AliasTable] = None) -> Lead:
    raw = _require_mapping(raw, "lead")
    record = _apply(raw, PERSON_ALIASES, LEAD_ALIASES, aliases=aliases)
    _split_name(raw, record)
    record.setdefault("id", stable_id(Lead.ID_PREFIX, raw))
    record.setdefault("lead_source", DEFAULT_LEAD_SOURCE)
    return Lead.model_validate(record)


def normalize_opportunity(raw: Dict[str, Any], aliases: Optional[AliasTable] = None) -> Opportunity:
    raw = _require_mapping(raw, "opportunity")
    record = _apply(raw, OPPORTUNITY_ALIASES, aliases=aliases)
    record.setdefault("id", stable_id(Opportunity.ID_PREFIX, raw))
    return Opportunity.model_validate(record)


def normalize_activity(raw: Dict[str, Any], aliases: Optional[AliasTable] = None) -> Activity:
    raw = _require_mapping(raw, "activity")
    record = _apply(raw, ACTIVITY_ALIASES, aliases=aliases)
    record.setdefault("id", stable_id(Activity.ID_PREFIX, raw))
    record.setdefault("outcome", DEFAULT_ACTIVITY_OUTCOME)
    if "subject" not in record and isinstance(raw.get("description"), str):
        record["subject"] = raw["description"][:50]
    return Activity.model_validate(record)


def normalize_rep(raw: Dict[str, Any], aliases: Optional[AliasTable] = None) -> Rep:
    raw = _require_mapping(raw, "rep")
    record = _apply(raw, REP_ALIASES, aliases=aliases)
    record.setdefault("id", stable_id(Rep.ID_PREFIX, raw))
    name = raw.get("name")
    if not name:
        first = _pick(raw, PERSON_ALIASES["first_name"]) or ""
        last = _pick(raw, PERSON_ALIASES["last_name"]) or ""
        name = f"{first} {last}".strip()
    record["name"] = name
    return Rep.model_validate(record)


def normalize_contact(raw: Dict[str, Any], aliases: Optional[AliasTable] = None) -> Contact:
    raw = _require_mapping(raw, "contact")
    record = _apply(raw, PERSON_ALIASES, CONTACT_ALIASES, aliases=aliases)
    _split_name(raw, record)
    record.setdefault("id", stable_id(Contact.ID_PREFIX, raw))
    return Contact.model_validate(record)


NORMALIZERS = {
    "leads": normalize_lead,
    "contacts": normalize_contact,
    "opportunities": normalize_opportunity,
    "activities": normalize_activity,
    "reps": normalize_rep,
}

# Collection-level aliases seen in provider exports.
COLLECTION_ALIASES: Dict[str, Sequence[str]] = {
    "leads": ("leads",),
    "contacts": ("contacts",),
    "opportunities": ("opportunities", "deals"),
    "activities": ("activities", "engagements"),
    "reps": ("reps", "users", "owners"),
}


def normalize_records(kind: str, raws: Any) -> List[Any]:
    """Normalize one collection, e.g. normalize_records("leads", [...])."""
    if raws is None:
        return []
    if not isinstance(raws, (list, tuple)):
        raise InvalidInputError(
            f"`{kind}` must be a list, got {type(raws).__name__}", argument=kind,
        )
    normalizer = NORMALIZERS[kind]
    return [normalizer(raw) for raw in raws]


def normalize_payload(payload: Dict[str, Any]) -> Dict[str, List[Any]]:
    """Normalize every collection present in a payload. Absent ones are omitted."""
    if not isinstance(payload, dict):
        raise InvalidInputError(
            f"payload must be a mapping, got {type(payload).__name__}", argument="payload",
        )
    normalized: Dict[str, List[Any]] = {}
    for kind, names in COLLECTION_ALIASES.items():
        raws: Optional[Any] = None
        for name in names:
            if name in payload:
                raws = payload[name]
                break
        if raws is not None:
            normalized[kind] = normalize_records(kind, raws)
    return normalized


def normalize_snapshot(payload: Dict[str, Any]) -> PipelineSnapshot:
    """Normalize a raw provider payload into a PipelineSnapshot."""
    normalized = normalize_payload(payload)
    snapshot = PipelineSnapshot(**normalized)
    logger.info(
        "Normalized snapshot: %d leads, %d contacts, %d opportunities, %d activities, %d reps",
        len(snapshot.leads), len(snapshot.contacts), len(snapshot.opportunities),
        len(snapshot.activities), len(snapshot.reps),
    )
    return snapshot
