"""
Pipeline Pulse — Canonical CRM Models
=======================================

Immutable pydantic records every engine consumes. Validators degrade
malformed fields locally instead of rejecting the record: unparsable
timestamps become None, unparsable or negative money becomes 0, and free
text statuses are mapped onto the canonical vocabulary.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from analytics.lib.utils import clean_phone, match_keyword, parse_timestamp, safe_float


# ─── Vocabularies ───────────────────────────────────────────

LEAD_STATUSES = ("new", "contacted", "qualified", "unqualified")
DEAL_STATUSES = ("open", "won", "lost", "abandoned")
ACTIVITY_TYPES = ("call", "email", "sms", "meeting", "note", "task", "demo")

# "unqualified" contains "qualif", so it must be tested first.
LEAD_STATUS_KEYWORDS = [
    (("unqual", "disqual"), "unqualified"),
    (("contact",), "contacted"),
    (("qualif",), "qualified"),
]

DEAL_STATUS_KEYWORDS = [
    (("won",), "won"),
    (("lost",), "lost"),
    (("abandon",), "abandoned"),
]

ACTIVITY_TYPE_KEYWORDS = [
    (("call",), "call"),
    (("email",), "email"),
    (("sms", "text"), "sms"),
    (("demo",), "demo"),
    (("meet",), "meeting"),
    (("task",), "task"),
]

_FALSY_FLAGS = {"false", "0", "no", "off", "inactive", "disabled"}


def _to_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class CRMRecord(BaseModel):
    """Shared config and validators for canonical records."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    # Prefix for content-hash ids given to records that arrive without one.
    ID_PREFIX: ClassVar[str] = "record"

    @field_validator(
        "created_at", "updated_at", "first_contacted_at", "stage_changed_at",
        "last_activity_at",
        mode="before", check_fields=False,
    )
    @classmethod
    def _parse_dates(cls, value: Any) -> Optional[datetime]:
        return parse_timestamp(value)

    @field_validator(
        "assigned_to", "contact_id", "deal_id", "performed_by",
        mode="before", check_fields=False,
    )
    @classmethod
    def _parse_refs(cls, value: Any) -> Optional[str]:
        return _to_id(value)

    @field_validator("id", mode="before", check_fields=False)
    @classmethod
    def _parse_id(cls, value: Any) -> str:
        return _to_id(value) or ""

    @field_validator("email", "subject", "lost_reason", mode="before", check_fields=False)
    @classmethod
    def _parse_optional_text(cls, value: Any) -> Optional[str]:
        return _to_text(value)

    @field_validator("phone", mode="before", check_fields=False)
    @classmethod
    def _parse_phone(cls, value: Any) -> Optional[str]:
        return clean_phone(value)

    @field_validator("first_name", "last_name", "name", mode="before", check_fields=False)
    @classmethod
    def _parse_name(cls, value: Any) -> str:
        return _to_text(value) or ""


# ─── Inputs ─────────────────────────────────────────────────

class Lead(CRMRecord):
    """An inbound or sourced prospect not yet converted to a deal."""
    ID_PREFIX: ClassVar[str] = "lead"

    id: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    status: str = "new"
    assigned_to: Optional[str] = None
    lead_source: Optional[str] = None
    created_at: Optional[datetime] = None
    first_contacted_at: Optional[datetime] = None
    company: Optional[str] = None
    title: Optional[str] = None
    budget: Optional[str] = None
    timeline: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _map_status(cls, value: Any) -> str:
        text = (_to_text(value) or "").lower()
        if text in LEAD_STATUSES:
            return text
        return match_keyword(text, LEAD_STATUS_KEYWORDS, "new")

    @field_validator("lead_source", "company", "title", "budget", "timeline", mode="before")
    @classmethod
    def _parse_signal(cls, value: Any) -> Optional[str]:
        return _to_text(value)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Opportunity(CRMRecord):
    """A deal in the pipeline."""
    ID_PREFIX: ClassVar[str] = "opp"

    id: str
    name: str = "Untitled"
    contact_id: Optional[str] = None
    value: float = 0.0
    status: str = "open"
    stage: str = ""
    assigned_to: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    stage_changed_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    lost_reason: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _parse_value(cls, value: Any) -> float:
        return max(0.0, safe_float(value))

    @field_validator("status", mode="before")
    @classmethod
    def _map_status(cls, value: Any) -> str:
        text = (_to_text(value) or "").lower()
        if text in DEAL_STATUSES:
            return text
        return match_keyword(text, DEAL_STATUS_KEYWORDS, "open")

    @field_validator("stage", mode="before")
    @classmethod
    def _parse_stage(cls, value: Any) -> str:
        return _to_text(value) or ""

    @property
    def is_open(self) -> bool:
        return self.status == "open"


class Activity(CRMRecord):
    """A logged touch: call, email, meeting, note..."""
    ID_PREFIX: ClassVar[str] = "act"

    id: str
    type: str = "note"
    contact_id: Optional[str] = None
    deal_id: Optional[str] = None
    performed_by: Optional[str] = None
    outcome: str = ""
    subject: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("type", mode="before")
    @classmethod
    def _map_type(cls, value: Any) -> str:
        text = (_to_text(value) or "").lower()
        if text in ACTIVITY_TYPES:
            return text
        return match_keyword(text, ACTIVITY_TYPE_KEYWORDS, "note")

    @field_validator("outcome", mode="before")
    @classmethod
    def _parse_outcome(cls, value: Any) -> str:
        return (_to_text(value) or "").lower()


class Rep(CRMRecord):
    """A sales rep. Anything but an explicit false keeps the rep active."""
    ID_PREFIX: ClassVar[str] = "rep"

    id: str
    name: str = ""
    email: Optional[str] = None
    active: bool = True

    @field_validator("active", mode="before")
    @classmethod
    def _parse_active(cls, value: Any) -> bool:
        if value is False:
            return False
        if isinstance(value, str) and value.strip().lower() in _FALSY_FLAGS:
            return False
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0:
            return False
        return True


class Contact(CRMRecord):
    """A person record, used by outreach validation."""
    ID_PREFIX: ClassVar[str] = "contact"

    id: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    assigned_to: Optional[str] = None
    status: Optional[str] = None
    opted_out: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> Optional[str]:
        text = _to_text(value)
        return text.lower() if text else None

    @field_validator("opted_out", mode="before")
    @classmethod
    def _parse_opted_out(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "y")
        return bool(value)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PipelineSnapshot(BaseModel):
    """One normalized CRM snapshot: the unit every analysis runs on."""
    model_config = ConfigDict(frozen=True)

    leads: List[Lead] = Field(default_factory=list)
    contacts: List[Contact] = Field(default_factory=list)
    opportunities: List[Opportunity] = Field(default_factory=list)
    activities: List[Activity] = Field(default_factory=list)
    reps: List[Rep] = Field(default_factory=list)
