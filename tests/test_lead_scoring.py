"""Tests for lead scoring."""

import pytest

from analytics.lead_scoring import classify_score, normalize_source, score_lead, score_leads
from analytics.lib.config import load_config
from analytics.lib.errors import InvalidInputError


class TestNormalizeSource:
    @pytest.mark.parametrize("raw, expected", [
        ("Referral", "referral"),
        ("Google Ads - Demo Form", "demo_request"),
        ("Inbound Phone", "inbound_call"),
        ("Trade Show", "trade_show"),
        ("Cold Call", "cold_outbound"),
        ("Purchased List", "purchased_list"),
        ("Organic Search", "website"),
        (None, "unknown"),
        ("Newsletter", "unknown"),
    ])
    def test_keyword_table(self, raw, expected):
        assert normalize_source(raw) == expected


class TestScoreLead:
    def test_hot_lead(self, make_lead, make_activity, now, ago):
        lead = make_lead(
            lead_source="Referral", email="ann@acme.com", phone="555-0100",
            company="Acme", title="VP Sales", created_at=ago(days=5),
        )
        activities = [make_activity(type="meeting", outcome="completed",
                                    contact_id="L1", created_at=ago(days=1))]
        score = score_lead(lead, activities, now)

        assert score.breakdown.source == 24
        assert score.breakdown.engagement == 30
        assert score.breakdown.recency == 25
        assert score.breakdown.fit == 14
        assert score.score == 93
        assert (score.grade, score.tier, score.priority) == ("A", "HOT", "HIGH")
        assert "meeting_completed" in score.signals.activity_types

    def test_warm_lead(self, make_lead, make_activity, now, ago):
        lead = make_lead(lead_source="demo request", email="b@x.io", phone="555")
        activities = [make_activity(type="call", outcome="connected", created_at=ago(days=2))]
        score = score_lead(lead, activities, now)

        assert score.breakdown.source == 23
        assert score.breakdown.engagement == 20
        assert score.breakdown.recency == 22
        assert score.breakdown.fit == 7
        assert score.score == 72
        assert score.tier == "WARM"
        assert score.priority == "HIGH"

    def test_no_activity_gets_engagement_floor(self, make_lead, now, ago):
        lead = make_lead(lead_source="purchased list", created_at=ago(days=90))
        score = score_lead(lead, [], now)

        assert score.breakdown.engagement == 5
        assert score.breakdown.recency == 2
        assert score.score == 12
        assert score.tier == "DEAD"
        assert score.recommendation.action == "DISQUALIFY"

    def test_engagement_capped_at_budget(self, make_lead, make_activity, now, ago):
        lead = make_lead()
        activities = [
            make_activity(type="meeting", outcome="completed", created_at=ago(days=1))
            for _ in range(4)
        ]
        assert score_lead(lead, activities, now).breakdown.engagement == 30

    def test_missing_created_at_uses_recency_floor(self, make_lead, now):
        lead = make_lead(created_at=None)
        score = score_lead(lead, [], now)
        assert score.breakdown.recency == 2
        assert score.signals.days_since_last_activity is None

    def test_accepts_mapping(self, now):
        score = score_lead({"id": "X", "lead_source": "webinar"}, [], now)
        assert score.lead_id == "X"
        assert score.signals.source == "webinar"

    def test_intent_scored_only_when_budgeted(self, make_lead, make_activity, now, ago):
        lead = make_lead()
        activities = [make_activity(type="call", outcome="pricing_discussed", created_at=ago(days=1))]

        default = score_lead(lead, activities, now)
        outbound = score_lead(lead, activities, now, load_config(profile="outbound"))

        assert default.breakdown.intent == 0
        assert outbound.breakdown.intent == 15


class TestScoreLeads:
    def test_ranks_descending_and_dense(self, make_lead, make_activity, now, ago):
        leads = [
            make_lead("cold", lead_source="purchased list", created_at=ago(days=90)),
            make_lead("hot", lead_source="referral", email="a@b.co", phone="1",
                      company="Co", title="CEO"),
        ]
        activities = [make_activity(type="meeting", outcome="completed",
                                    contact_id="hot", created_at=ago(days=1))]
        result = score_leads(leads, activities, now)

        assert [s.lead_id for s in result.leads] == ["hot", "cold"]
        assert [s.rank for s in result.leads] == [1, 2]
        assert all(0 <= s.score <= 100 for s in result.leads)

    def test_ties_keep_input_order(self, make_lead, now):
        leads = [make_lead("first"), make_lead("second"), make_lead("third")]
        result = score_leads(leads, [], now)
        assert [s.lead_id for s in result.leads] == ["first", "second", "third"]

    def test_length_matches_input(self, make_lead, now):
        leads = [make_lead(f"L{i}") for i in range(7)]
        assert len(score_leads(leads, [], now).leads) == 7

    def test_record_without_id_is_scored(self, now):
        result = score_leads([{"firstName": "x"}, {"id": "ok"}], [], now)
        ids = [s.lead_id for s in result.leads]
        assert len(ids) == 2
        assert "ok" in ids
        assert any(i.startswith("lead_") for i in ids)

    def test_summary(self, make_lead, make_activity, now, ago):
        leads = [
            make_lead("hot", lead_source="referral", email="a@b.co", phone="1",
                      company="Co", title="CEO"),
            make_lead("dead", lead_source="purchased list", created_at=ago(days=90)),
        ]
        activities = [make_activity(type="meeting", outcome="completed",
                                    contact_id="hot", created_at=ago(days=1))]
        summary = score_leads(leads, activities, now).summary

        assert summary.total == 2
        assert summary.hot == 1
        assert summary.dead == 1
        assert summary.grade_distribution == {"A": 1, "B": 0, "C": 0, "D": 1}
        assert summary.avg_score == 53

    def test_empty_input(self, now):
        result = score_leads([], [], now)
        assert result.leads == []
        assert result.summary.avg_score == 0

    def test_rejects_non_list(self, now):
        with pytest.raises(InvalidInputError):
            score_leads("not a list", [], now)

    def test_rejects_bad_now(self, make_lead):
        with pytest.raises(InvalidInputError):
            score_leads([make_lead()], [], "yesterday-ish")


class TestClassifyScore:
    @pytest.mark.parametrize("score, expected", [
        (80, ("A", "HOT", "HIGH")),
        (79, ("B", "WARM", "HIGH")),
        (65, ("B", "WARM", "MEDIUM")),
        (50, ("C", "COLD", "MEDIUM")),
        (49, ("D", "DEAD", "LOW")),
    ])
    def test_boundaries(self, score, expected):
        assert classify_score(score) == expected
