"""Tests for outreach validation."""

import pytest

from analytics.contact_validation import HOLD_ACTION, PASS_ACTION, validate_batch, validate_outreach
from analytics.lib.errors import InvalidInputError
from models.crm_models import Activity, Contact, Opportunity, PipelineSnapshot
from models.insight_models import ValidationStatus


@pytest.fixture
def snapshot_with():
    def _build(contact=None, activities=(), opportunities=()):
        contact = contact or {}
        contact.setdefault("id", "C1")
        return PipelineSnapshot(
            contacts=[Contact(first_name="Ann", last_name="Lee", **contact)],
            activities=[Activity(id=f"A{i}", contact_id="C1", **a)
                        for i, a in enumerate(activities)],
            opportunities=[Opportunity(**o) for o in opportunities],
        )
    return _build


class TestValidateOutreach:
    def test_pass(self, snapshot_with, now, ago):
        snapshot = snapshot_with({"email": "ann@acme.com"},
                                 [{"type": "call", "performed_by": "R1", "created_at": ago(days=3)}])
        result = validate_outreach(contact_id="C1", outreach_type="email",
                                   rep_id="R1", snapshot=snapshot, now=now)

        assert result.status == ValidationStatus.PASS
        assert result.recommended_action == PASS_ACTION
        assert result.metadata["contact_name"] == "Ann Lee"

    def test_unknown_contact(self, snapshot_with, now):
        result = validate_outreach(contact_id="nope", outreach_type="sms",
                                   snapshot=snapshot_with(), now=now)
        assert result.status == ValidationStatus.FAIL
        assert result.failures == ["CONTACT_NOT_FOUND"]

    def test_missing_channel_info(self, snapshot_with, now):
        snapshot = snapshot_with()
        sms = validate_outreach(contact_id="C1", outreach_type="sms", snapshot=snapshot, now=now)
        email = validate_outreach(contact_id="C1", outreach_type="EMAIL", snapshot=snapshot, now=now)

        assert sms.failures == ["MISSING_PHONE"]
        assert email.failures == ["MISSING_EMAIL"]

    def test_review_request_needs_recent_positive_interaction(self, snapshot_with, now, ago):
        old = snapshot_with({"phone": "555"}, [{"type": "call", "created_at": ago(days=10)}])
        negative = snapshot_with({"phone": "555"},
                                 [{"type": "call", "outcome": "Negative", "created_at": ago(days=1)}])

        stale = validate_outreach(contact_id="C1", outreach_type="review_request",
                                  snapshot=old, now=now)
        upset = validate_outreach(contact_id="C1", outreach_type="review_request",
                                  snapshot=negative, now=now)

        assert stale.failures == ["NO_RECENT_INTERACTION"]
        assert upset.failures == ["NEGATIVE_LAST_INTERACTION"]

    def test_recent_complaint_by_subject(self, snapshot_with, now, ago):
        snapshot = snapshot_with({"phone": "555"}, [
            {"type": "note", "subject": "Billing issue", "created_at": ago(days=20)},
            {"type": "call", "outcome": "completed", "created_at": ago(days=1)},
        ])
        result = validate_outreach(contact_id="C1", outreach_type="review_request",
                                   snapshot=snapshot, now=now)
        assert result.failures == ["RECENT_COMPLAINT"]

    def test_follow_up_without_history(self, snapshot_with, now):
        result = validate_outreach(contact_id="C1", outreach_type="follow_up",
                                   snapshot=snapshot_with({"email": "a@b.co"}), now=now)
        assert result.failures == ["NO_PRIOR_INTERACTION"]

    def test_opted_out(self, snapshot_with, now):
        snapshot = snapshot_with({"email": "a@b.co", "status": "do_not_contact"})
        result = validate_outreach(contact_id="C1", outreach_type="email",
                                   snapshot=snapshot, now=now)
        assert result.status == ValidationStatus.FAIL
        assert "OPTED_OUT" in result.failures
        assert "opted out" in result.recommended_action

    def test_warnings_hold(self, snapshot_with, now, ago):
        snapshot = snapshot_with(
            {"email": "a@b.co", "status": "Inactive"},
            [{"type": "email", "performed_by": "R2", "created_at": ago(hours=3)}],
        )
        result = validate_outreach(contact_id="C1", outreach_type="email", rep_id="R1",
                                   snapshot=snapshot, now=now)

        assert result.status == ValidationStatus.HOLD
        assert result.warnings == [
            "REP_NO_RELATIONSHIP", "DUPLICATE_OUTREACH_24H", "INACTIVE_CONTACT",
        ]
        assert result.recommended_action == HOLD_ACTION

    def test_deal_owner_has_relationship(self, snapshot_with, now):
        snapshot = snapshot_with(
            {"email": "a@b.co"},
            opportunities=[{"id": "D1", "contact_id": "C1", "assigned_to": "R1"}],
        )
        result = validate_outreach(contact_id="C1", outreach_type="email", rep_id="R1",
                                   snapshot=snapshot, now=now)
        assert result.status == ValidationStatus.PASS

    def test_win_back_skips_inactive_warning(self, snapshot_with, now):
        snapshot = snapshot_with({"status": "inactive"})
        result = validate_outreach(contact_id="C1", outreach_type="win_back",
                                   snapshot=snapshot, now=now)
        assert result.status == ValidationStatus.PASS

    def test_rejects_raw_snapshot(self, now):
        with pytest.raises(InvalidInputError):
            validate_outreach(contact_id="C1", outreach_type="sms", snapshot={}, now=now)


class TestValidateBatch:
    def test_tallies(self, snapshot_with, now):
        snapshot = snapshot_with({"email": "a@b.co", "phone": "555"})
        result = validate_batch([
            {"contact_id": "C1", "outreach_type": "email"},
            {"contact_id": "C1", "outreach_type": "sms", "rep_id": "R9"},
            {"contact_id": "missing", "outreach_type": "sms"},
            {"outreach_type": "sms"},
        ], snapshot, now)

        assert (result.total, result.passed, result.held, result.failed) == (4, 1, 1, 2)
        assert result.details[3].contact_id == ""

    def test_rejects_non_list(self, snapshot_with, now):
        with pytest.raises(InvalidInputError):
            validate_batch({"contact_id": "C1"}, snapshot_with(), now)
