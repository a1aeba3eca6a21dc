"""Tests for the record normalizer and canonical models."""

from datetime import datetime, timezone

import pytest

from analytics.lib.errors import InvalidInputError
from analytics.normalizer import (
    normalize_activity,
    normalize_contact,
    normalize_lead,
    normalize_opportunity,
    normalize_rep,
    normalize_snapshot,
    stable_id,
)


class TestNormalizeLead:
    def test_camel_case_webhook(self):
        lead = normalize_lead({
            "id": 42,
            "firstName": "Ann",
            "lastName": "Lee",
            "phone": "+1 (555) 010-0100",
            "leadSource": "Google Ads",
            "status": "Qualified",
            "createdAt": "2025-02-01T10:00:00Z",
        })
        assert lead.id == "42"
        assert lead.full_name == "Ann Lee"
        assert lead.phone == "+15550100100"
        assert lead.status == "qualified"
        assert lead.created_at == datetime(2025, 2, 1, 10, tzinfo=timezone.utc)

    def test_single_name_field_and_defaults(self):
        lead = normalize_lead({"name": "Mary Ann Smith"})
        assert lead.first_name == "Mary"
        assert lead.last_name == "Ann Smith"
        assert lead.lead_source == "webhook"
        assert lead.id.startswith("lead_")

    @pytest.mark.parametrize("raw, expected", [
        ("Unqualified", "unqualified"),
        ("disqualified", "unqualified"),
        ("Attempted contact", "contacted"),
        ("Sales Qualified", "qualified"),
        ("whatever", "new"),
        (None, "new"),
    ])
    def test_status_mapping(self, raw, expected):
        assert normalize_lead({"id": "x", "status": raw}).status == expected

    def test_bad_timestamp_becomes_none(self):
        assert normalize_lead({"id": "x", "createdAt": "not a date"}).created_at is None

    def test_rejects_non_mapping(self):
        with pytest.raises(InvalidInputError):
            normalize_lead(["id", "x"])


class TestNormalizeOpportunity:
    def test_amount_and_status(self):
        opp = normalize_opportunity({
            "dealId": "D9", "dealname": "Renewal", "amount": "$12,500",
            "status": "Closed Won", "dealstage": "contractsent",
        })
        assert opp.id == "D9"
        assert opp.name == "Renewal"
        assert opp.value == 12_500
        assert opp.status == "won"
        assert opp.is_open is False

    @pytest.mark.parametrize("amount", [None, "n/a", -500, float("nan")])
    def test_bad_amounts_become_zero(self, amount):
        assert normalize_opportunity({"id": "x", "value": amount}).value == 0

    def test_caller_aliases_win(self):
        raw = {"id": "x", "amount": 100, "Net Value": "2500"}
        opp = normalize_opportunity(raw, aliases={"value": ("Net Value",)})
        assert opp.value == 2_500

    def test_epoch_millis(self):
        opp = normalize_opportunity({"id": "x", "createdate": 1_735_689_600_000})
        assert opp.created_at == datetime(2025, 1, 1, tzinfo=timezone.utc)


class TestNormalizeActivity:
    @pytest.mark.parametrize("raw, expected", [
        ("Outbound Call", "call"),
        ("EMAIL", "email"),
        ("Text message", "sms"),
        ("Product demo", "demo"),
        ("Meeting", "meeting"),
        ("Follow-up task", "task"),
        ("LinkedIn", "note"),
    ])
    def test_type_mapping(self, raw, expected):
        assert normalize_activity({"id": "a", "type": raw}).type == expected

    def test_defaults(self):
        act = normalize_activity({"id": "a", "description": "x" * 80, "leadId": "L1"})
        assert act.outcome == "completed"
        assert act.subject == "x" * 50
        assert act.contact_id == "L1"


class TestNormalizeRepAndContact:
    def test_rep_name_from_parts(self):
        rep = normalize_rep({"user_id": 7, "firstName": "Sam", "lastName": "Ray", "is_active": "no"})
        assert rep.id == "7"
        assert rep.name == "Sam Ray"
        assert rep.active is False

    def test_rep_active_by_default(self):
        assert normalize_rep({"id": "r", "name": "Sam"}).active is True

    def test_contact(self):
        contact = normalize_contact({"contactId": "C1", "name": "Ann Lee", "unsubscribed": "yes",
                                     "status": "Inactive"})
        assert contact.id == "C1"
        assert contact.full_name == "Ann Lee"
        assert contact.opted_out is True
        assert contact.status == "inactive"


class TestNormalizeSnapshot:
    def test_collection_aliases(self):
        snapshot = normalize_snapshot({
            "deals": [{"id": "D1", "amount": 100}],
            "engagements": [{"id": "A1", "type": "call"}],
            "users": [{"id": "R1", "name": "Sam"}],
        })
        assert [o.id for o in snapshot.opportunities] == ["D1"]
        assert [a.id for a in snapshot.activities] == ["A1"]
        assert [r.id for r in snapshot.reps] == ["R1"]
        assert snapshot.leads == []

    def test_stable_ids_are_deterministic(self):
        raw = {"firstName": "Ann", "email": "ann@acme.com"}
        assert normalize_lead(raw).id == normalize_lead(dict(raw)).id
        assert stable_id("lead", raw) != stable_id("lead", {"firstName": "Bob"})

    def test_rejects_non_list_collection(self):
        with pytest.raises(InvalidInputError):
            normalize_snapshot({"leads": {"id": "x"}})

    def test_rejects_non_mapping_payload(self):
        with pytest.raises(InvalidInputError):
            normalize_snapshot([])
