"""
Pipeline Pulse — Action Recommendations
=========================================

Answers "what should I do right now to increase revenue?" by merging
lead scores, deal priorities and leaks into one ranked action queue.

Categories and their fixed priority bands (highest first):
  CALL_HOT_LEAD  100  hot-tier leads
  RESCUE_DEAL     95  deals with IMMEDIATE urgency
  CLOSE_DEAL      90  high-probability deals recommended to CLOSE
  FIX_LEAK        85  critical leaks
  FOLLOW_UP       70  deals with moderate decay
  WORK_LEAD       50  warm-tier leads

Functions:
  generate_actions()      - full action plan
  get_next_best_action()  - single head action or healthy sentinel
  get_rep_actions()       - action plan restricted to one rep
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from analytics.lib.config import resolve_config
from analytics.lib.logger import setup_logger
from analytics.lib.utils import ensure_records, ensure_results, require_now
from models.crm_models import Activity, Lead, Opportunity, Rep
from models.insight_models import (
    Action,
    ActionPlan,
    ActionsByUrgency,
    ActionSummary,
    ActionType,
    DealPriority,
    Leak,
    LeadScore,
    NextBestAction,
    Severity,
    Urgency,
)

logger = setup_logger(__name__)

_LEADING_NUMBER = re.compile(r"^\s*(\d+)")


# ---------------------------------------------------------------------------
# Time estimates
# ---------------------------------------------------------------------------

def parse_minutes(text: Optional[str], default: str = "10 min") -> int:
    """'15 min' -> 15, '1 hour' -> 60, '2 hours' -> 120."""
    text = text or default
    match = _LEADING_NUMBER.match(text)
    if not match:
        return 0
    number = int(match.group(1))
    return number * 60 if "hour" in text.lower() else number


def format_minutes(minutes: int) -> str:
    if minutes >= 60:
        return f"{minutes // 60}h {minutes % 60}m"
    return f"{minutes} min"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _lead_name(lead_id: str, leads: Dict[str, Lead]) -> str:
    lead = leads.get(lead_id)
    if lead is None:
        return f"Lead #{lead_id}"
    return lead.full_name or lead.email or f"Lead #{lead_id}"


def _money(value: float) -> str:
    return f"{value:,.0f}"


def _make(category: str, cfg: Dict[str, Any], **fields) -> Action:
    priority, urgency, _cap, time_to_execute = cfg["categories"][category]
    return Action(
        type=ActionType(category),
        priority=priority,
        urgency=Urgency(urgency),
        time_to_execute=time_to_execute,
        **fields,
    )


def _cap(category: str, cfg: Dict[str, Any]) -> int:
    return cfg["categories"][category][2]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def generate_actions(
    *,
    leads: Optional[Sequence[Lead]] = None,
    deals: Optional[Sequence[Opportunity]] = None,
    activities: Optional[Sequence[Activity]] = None,
    reps: Optional[Sequence[Rep]] = None,
    lead_scores: Optional[Sequence[LeadScore]] = None,
    deal_priorities: Optional[Sequence[DealPriority]] = None,
    leaks: Optional[Sequence[Leak]] = None,
    now: datetime,
    config: Optional[Dict[str, Any]] = None,
) -> ActionPlan:
    """
    Build the ranked action queue.

    Lead scores and deal priorities are expected in ranked order; each
    category takes its first N entries.
    """
    now = require_now(now)
    cfg = resolve_config(config)["actions"]
    leads = ensure_records(leads, Lead, "leads")
    ensure_records(deals, Opportunity, "deals")
    ensure_records(activities, Activity, "activities")
    ensure_records(reps, Rep, "reps")
    lead_scores = ensure_results(lead_scores, LeadScore, "lead_scores")
    deal_priorities = ensure_results(deal_priorities, DealPriority, "deal_priorities")
    leaks = ensure_results(leaks, Leak, "leaks")

    lead_index = {l.id: l for l in leads}
    actions: List[Action] = []

    hot = [s for s in lead_scores if s.tier == "HOT"]
    for score in hot[: _cap("CALL_HOT_LEAD", cfg)]:
        actions.append(_make(
            "CALL_HOT_LEAD", cfg,
            id=f"call_hot_{score.lead_id}",
            title=f"Call hot lead: {_lead_name(score.lead_id, lead_index)}",
            description=f"Score {score.score}/100. {score.recommendation.message}",
            estimated_revenue=cfg["hot_lead_revenue"],
            related_id=score.lead_id,
        ))

    at_risk = [d for d in deal_priorities if d.urgency == Urgency.IMMEDIATE]
    for deal in at_risk[: _cap("RESCUE_DEAL", cfg)]:
        actions.append(_make(
            "RESCUE_DEAL", cfg,
            id=f"rescue_{deal.deal_id}",
            title=f"Rescue deal: {deal.deal_name}",
            description=f"${_money(deal.value)} at risk. {deal.recommendation.message}",
            estimated_revenue=deal.value,
            related_id=deal.deal_id,
        ))

    closeable = [
        d for d in deal_priorities
        if d.scores.probability >= cfg["close_probability"] and d.recommendation.action == "CLOSE"
    ]
    for deal in closeable[: _cap("CLOSE_DEAL", cfg)]:
        actions.append(_make(
            "CLOSE_DEAL", cfg,
            id=f"close_{deal.deal_id}",
            title=f"Close deal: {deal.deal_name}",
            description=f"High probability ({deal.scores.probability}%). Ask for the business.",
            estimated_revenue=deal.value,
            related_id=deal.deal_id,
        ))

    critical = [l for l in leaks if l.severity == Severity.CRITICAL]
    for leak in critical[: _cap("FIX_LEAK", cfg)]:
        actions.append(_make(
            "FIX_LEAK", cfg,
            id=f"fix_{leak.id}",
            title=leak.title,
            description=leak.description,
            estimated_revenue=leak.estimated_revenue,
            related_id=leak.id,
        ))

    low, high = cfg["follow_up_decay"]
    follow_ups = [d for d in deal_priorities if low <= d.scores.decay < high]
    for deal in follow_ups[: _cap("FOLLOW_UP", cfg)]:
        actions.append(_make(
            "FOLLOW_UP", cfg,
            id=f"followup_{deal.deal_id}",
            title=f"Follow up: {deal.deal_name}",
            description=f"${_money(deal.value)} - needs touch to maintain momentum",
            estimated_revenue=deal.expected_value,
            related_id=deal.deal_id,
        ))

    warm = [s for s in lead_scores if s.tier == "WARM"]
    for score in warm[: _cap("WORK_LEAD", cfg)]:
        actions.append(_make(
            "WORK_LEAD", cfg,
            id=f"work_warm_{score.lead_id}",
            title=f"Work warm lead: {_lead_name(score.lead_id, lead_index)}",
            description=f"Score {score.score}/100. Start outreach sequence.",
            estimated_revenue=cfg["warm_lead_revenue"],
            related_id=score.lead_id,
        ))

    actions.sort(key=lambda a: -a.priority)

    buckets = ActionsByUrgency(
        immediate=[a for a in actions if a.urgency == Urgency.IMMEDIATE],
        today=[a for a in actions if a.urgency == Urgency.TODAY],
        this_week=[a for a in actions if a.urgency == Urgency.THIS_WEEK],
        scheduled=[a for a in actions if a.urgency == Urgency.SCHEDULED],
    )
    minutes = sum(parse_minutes(a.time_to_execute, cfg["default_time"]) for a in actions)
    summary = ActionSummary(
        total_actions=len(actions),
        immediate_count=len(buckets.immediate),
        today_count=len(buckets.today),
        total_potential_revenue=sum(a.estimated_revenue for a in actions),
        estimated_time_to_complete=format_minutes(minutes),
    )
    logger.info(
        "Generated %d actions (%d immediate)", summary.total_actions, summary.immediate_count,
    )

    return ActionPlan(
        actions=actions,
        next_best_action=next_best_from(actions, cfg),
        summary=summary,
        by_urgency=buckets,
        generated_at=now,
    )


def next_best_from(actions: Sequence[Action], cfg: Dict[str, Any]) -> NextBestAction:
    """Head of the sorted queue, or the healthy-pipeline sentinel."""
    if not actions:
        return NextBestAction(
            action=None,
            message=cfg["healthy_message"],
            suggestion=cfg["healthy_suggestion"],
        )
    head = actions[0]
    return NextBestAction(
        action=head,
        message=f"{head.title} - {head.description}",
        revenue=head.estimated_revenue,
        urgency=head.urgency,
        time_required=head.time_to_execute,
    )


def get_next_best_action(*, now: datetime, config: Optional[Dict[str, Any]] = None,
                         **data) -> NextBestAction:
    """Single most important action for the given inputs."""
    return generate_actions(now=now, config=config, **data).next_best_action


def get_rep_actions(
    rep_id: str,
    *,
    leads: Optional[Sequence[Lead]] = None,
    deals: Optional[Sequence[Opportunity]] = None,
    activities: Optional[Sequence[Activity]] = None,
    lead_scores: Optional[Sequence[LeadScore]] = None,
    deal_priorities: Optional[Sequence[DealPriority]] = None,
    leaks: Optional[Sequence[Leak]] = None,
    now: datetime,
    config: Optional[Dict[str, Any]] = None,
) -> ActionPlan:
    """Action plan for one rep: their leads, deals, activities and leaks."""
    leads = ensure_records(leads, Lead, "leads")
    deals = ensure_records(deals, Opportunity, "deals")
    activities = ensure_records(activities, Activity, "activities")

    rep_leads = [l for l in leads if l.assigned_to == rep_id]
    rep_deals = [d for d in deals if d.assigned_to == rep_id]
    lead_ids = {l.id for l in rep_leads}
    deal_ids = {d.id for d in rep_deals}

    rep_leaks = [
        l for l in ensure_results(leaks, Leak, "leaks")
        if l.metadata.get("assigned_to") == rep_id or rep_id in l.related_ids
    ]

    return generate_actions(
        leads=rep_leads,
        deals=rep_deals,
        activities=[a for a in activities if a.performed_by == rep_id],
        lead_scores=[
            s for s in ensure_results(lead_scores, LeadScore, "lead_scores")
            if s.lead_id in lead_ids
        ],
        deal_priorities=[
            p for p in ensure_results(deal_priorities, DealPriority, "deal_priorities")
            if p.deal_id in deal_ids
        ],
        leaks=rep_leaks,
        now=now,
        config=config,
    )
