"""Tests for the action queue."""

import pytest

from analytics.action_recommendations import (
    format_minutes,
    generate_actions,
    get_next_best_action,
    get_rep_actions,
    parse_minutes,
)
from analytics.deal_prioritization import prioritize_deals
from analytics.lead_scoring import score_leads
from analytics.leak_detector import detect_leaks
from analytics.lib.errors import InvalidInputError
from models.insight_models import ActionType, Urgency


@pytest.fixture
def pipeline(make_lead, make_deal, make_activity, now, ago):
    """One hot lead, one closeable deal, one deal going cold."""
    hot = make_lead("hot", first_name="Ann", last_name="Lee", lead_source="referral",
                    email="ann@acme.com", phone="555", company="Acme", title="CEO",
                    assigned_to="R1")
    closing = make_deal("big", name="Big Deal", value=60_000, stage="Negotiation",
                        contact_id="c1", assigned_to="R1", updated_at=ago(days=2))
    cold = make_deal("empty", name="Empty Deal", value=0, assigned_to="R2")
    activities = [make_activity(type="meeting", outcome="completed", contact_id="hot",
                                created_at=ago(days=1))]
    activities += [
        make_activity(deal_id="big", contact_id=c, created_at=ago(days=d))
        for c, d in (("c1", 1), ("c1", 1), ("c2", 2), ("c2", 2), ("c1", 3))
    ]
    leads = [hot]
    deals = [cold, closing]
    return {
        "leads": leads,
        "deals": deals,
        "activities": activities,
        "lead_scores": score_leads(leads, activities, now).leads,
        "deal_priorities": prioritize_deals(deals, activities, now).deals,
    }


class TestTimeEstimates:
    @pytest.mark.parametrize("text, minutes", [
        ("15 min", 15),
        ("1 hour", 60),
        ("2 hours", 120),
        ("soon", 0),
        (None, 10),
    ])
    def test_parse_minutes(self, text, minutes):
        assert parse_minutes(text) == minutes

    def test_format_minutes(self):
        assert format_minutes(50) == "50 min"
        assert format_minutes(125) == "2h 5m"
        assert format_minutes(60) == "1h 0m"


class TestGenerateActions:
    def test_queue_order_and_summary(self, pipeline, now):
        plan = generate_actions(now=now, **pipeline)

        assert [a.type for a in plan.actions] == [
            ActionType.CALL_HOT_LEAD, ActionType.RESCUE_DEAL, ActionType.CLOSE_DEAL,
        ]
        assert [a.priority for a in plan.actions] == [100, 95, 90]
        assert plan.actions[0].title == "Call hot lead: Ann Lee"
        assert plan.actions[2].related_id == "big"
        assert plan.summary.total_actions == 3
        assert plan.summary.immediate_count == 2
        assert plan.summary.today_count == 1
        assert plan.summary.total_potential_revenue == 65_000
        assert plan.summary.estimated_time_to_complete == "50 min"
        assert len(plan.by_urgency.immediate) == 2

    def test_next_best_action_is_head(self, pipeline, now):
        nba = generate_actions(now=now, **pipeline).next_best_action
        assert nba.action.type == ActionType.CALL_HOT_LEAD
        assert nba.urgency == Urgency.IMMEDIATE
        assert nba.time_required == "5 min"
        assert nba.message.startswith("Call hot lead: Ann Lee - Score ")

    def test_empty_inputs_give_healthy_sentinel(self, now):
        plan = generate_actions(now=now)
        assert plan.actions == []
        assert plan.next_best_action.action is None
        assert plan.next_best_action.message == (
            "No immediate actions required. Pipeline is healthy."
        )
        assert plan.summary.estimated_time_to_complete == "0 min"

    def test_critical_leaks_become_fix_actions(self, make_deal, now, ago):
        deal = make_deal(value=50_000, created_at=ago(days=60))
        leaks = detect_leaks(opportunities=[deal], now=now).leaks
        plan = generate_actions(leaks=leaks, now=now)

        assert [a.type for a in plan.actions] == [ActionType.FIX_LEAK, ActionType.FIX_LEAK]
        assert plan.summary.estimated_time_to_complete == "2h 0m"

    def test_follow_up_for_moderate_decay(self, make_deal, make_activity, now, ago):
        deal = make_deal(value=5_000, updated_at=ago(days=1))
        acts = [make_activity(deal_id="D1", created_at=ago(days=20))]
        priorities = prioritize_deals([deal], acts, now).deals
        plan = generate_actions(deal_priorities=priorities, now=now)

        assert [a.type for a in plan.actions] == [ActionType.FOLLOW_UP]
        assert plan.actions[0].estimated_revenue == 2_500

    def test_category_caps(self, make_lead, make_activity, now, ago):
        leads = [make_lead(f"L{i}", lead_source="referral", email="a@b.co", phone="1",
                           company="Co", title="CEO") for i in range(5)]
        acts = [make_activity(type="meeting", outcome="completed", contact_id=f"L{i}",
                              created_at=ago(days=1)) for i in range(5)]
        scores = score_leads(leads, acts, now).leads
        plan = generate_actions(leads=leads, lead_scores=scores, now=now)
        assert len(plan.actions) == 3

    def test_unknown_lead_name_falls_back_to_id(self, pipeline, now):
        plan = generate_actions(lead_scores=pipeline["lead_scores"], now=now)
        assert plan.actions[0].title == "Call hot lead: Lead #hot"

    def test_rejects_raw_dicts_as_scores(self, now):
        with pytest.raises(InvalidInputError):
            generate_actions(lead_scores=[{"lead_id": "x"}], now=now)


class TestNextBestAndRepActions:
    def test_get_next_best_action(self, pipeline, now):
        nba = get_next_best_action(now=now, **pipeline)
        assert nba.action.related_id == "hot"

    def test_rep_actions_only_cover_that_rep(self, pipeline, now):
        r1 = get_rep_actions("R1", now=now, **pipeline)
        r2 = get_rep_actions("R2", now=now, **pipeline)

        assert [a.type for a in r1.actions] == [ActionType.CALL_HOT_LEAD, ActionType.CLOSE_DEAL]
        assert [a.related_id for a in r2.actions] == ["empty"]

    def test_unknown_rep_gets_sentinel(self, pipeline, now):
        plan = get_rep_actions("nobody", now=now, **pipeline)
        assert plan.next_best_action.action is None
