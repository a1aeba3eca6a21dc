"""
Pipeline Pulse — Deal Prioritization
======================================

Ranks open deals by a weighted priority score (0-100):
  Value (30):        log-like step function of deal size
  Probability (25):  stage keyword lookup + engagement and multi-thread bonuses
  Velocity (20):     recency and frequency of touches, recent stage change
  Decay (15):        risk of going cold; higher means more at risk
  Effort (10):       inverse of effort left; higher means easier to close

Each sub-score is 0-100 and capped independently; weights come from config
and must sum to 100.

Functions:
  prioritize_deal()   - score one deal against its activities
  prioritize_deals()  - filter to open deals, score, rank and summarize
"""
from __future__ import annotations

import math
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from analytics.lib.config import resolve_config
from analytics.lib.logger import setup_logger
from analytics.lib.utils import (
    coerce_record,
    days_since,
    ensure_records,
    match_keyword,
    require_now,
    round_half_up,
    step_lookup,
)
from models.crm_models import Activity, Opportunity
from models.insight_models import (
    DealPrioritizationResult,
    DealPrioritizationSummary,
    DealPriority,
    DealSubScores,
    FocusItem,
    Recommendation,
    Urgency,
)

logger = setup_logger(__name__)


# ---------------------------------------------------------------------------
# Sub-scores
# ---------------------------------------------------------------------------

def score_value(value: float, cfg: Dict[str, Any]) -> int:
    if not value or value <= 0:
        return cfg["value_none"]
    return step_lookup(value, cfg["value_steps"], cfg["value_small"])


def score_probability(deal: Opportunity, activities: Sequence[Activity], cfg: Dict[str, Any]) -> int:
    stage = (deal.stage or "").lower()
    score = cfg["probability_base"]
    for patterns, points in cfg["stage_probability"]:
        if any(p in stage for p in patterns):
            score = points
            break

    score += step_lookup(len(activities), cfg["activity_bonus"], 0)

    contacts = {a.contact_id for a in activities}
    score += step_lookup(len(contacts), cfg["contact_bonus"], 0)
    return min(score, 100)


def _last_activity(activities: Sequence[Activity]) -> Optional[datetime]:
    dated = [a.created_at for a in activities if a.created_at is not None]
    return max(dated) if dated else None


def score_velocity(deal: Opportunity, activities: Sequence[Activity], now: datetime,
                   cfg: Dict[str, Any]) -> int:
    if not activities:
        return cfg["velocity_no_activity"]

    score = 0
    since_last = days_since(_last_activity(activities), now)
    if since_last is not None:
        for bound, points in cfg["velocity_recency"]:
            if since_last <= bound:
                score += points
                break

    window = cfg["velocity_window_days"]
    recent = 0
    for activity in activities:
        age = days_since(activity.created_at, now)
        if age is not None and age <= window:
            recent += 1
    score += step_lookup(recent, cfg["velocity_frequency"], 0)

    changed = days_since(deal.stage_changed_at, now)
    if changed is not None and changed <= window:
        score += cfg["stage_change_bonus"]
    return min(score, 100)


def score_decay(deal: Opportunity, activities: Sequence[Activity], now: datetime,
                cfg: Dict[str, Any]) -> int:
    """Higher means more at risk."""
    since_last = days_since(_last_activity(activities), now)
    if since_last is None:
        since_last = cfg["decay_no_activity_days"]

    risk = 0
    for bound, points in cfg["decay_inactivity"]:
        if since_last > bound:
            risk += points
            break

    if deal.value >= cfg["decay_high_value"] and since_last > cfg["decay_high_value_days"]:
        risk += cfg["decay_high_value_bonus"]

    in_stage = days_since(deal.updated_at, now)
    if in_stage is None:
        in_stage = cfg["decay_stage_default_days"]
    for bound, points in cfg["decay_stage"]:
        if in_stage > bound:
            risk += points
            break
    return min(risk, 100)


def score_effort(deal: Opportunity, activities: Sequence[Activity], cfg: Dict[str, Any]) -> int:
    """Higher means less effort left."""
    score = cfg["effort_base"]
    score += step_lookup(len(activities), cfg["effort_activity"], 0)
    score += match_keyword(deal.stage, cfg["effort_stage"], 0)
    return min(score, 100)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------

def get_urgency(decay: int, velocity: int, cfg: Dict[str, Any]) -> Urgency:
    thresholds = cfg["urgency"]
    if decay >= thresholds["immediate"]:
        return Urgency.IMMEDIATE
    if decay >= thresholds["today"]:
        return Urgency.TODAY
    if decay >= thresholds["this_week"] or velocity <= thresholds["stalled_velocity"]:
        return Urgency.THIS_WEEK
    return Urgency.SCHEDULED


def get_recommendation(scores: DealSubScores, cfg: Dict[str, Any]) -> Recommendation:
    """First matching rule wins: rescue > accelerate > close > advance."""
    limits = cfg["recommendation_thresholds"]
    if scores.decay >= limits["rescue_decay"]:
        action = "RESCUE"
    elif scores.velocity <= limits["accelerate_velocity"]:
        action = "ACCELERATE"
    elif scores.probability >= limits["close_probability"]:
        action = "CLOSE"
    else:
        action = "ADVANCE"
    message, tactic = cfg["recommendations"][action]
    return Recommendation(action=action, message=message, tactic=tactic)


def _priority_tier(score: int, cfg: Dict[str, Any]) -> str:
    tiers = cfg["priority_tiers"]
    if score >= tiers["high"]:
        return "HIGH"
    if score >= tiers["medium"]:
        return "MEDIUM"
    return "LOW"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def prioritize_deal(
    deal: Opportunity,
    activities: Optional[Sequence[Activity]] = None,
    now: datetime = None,
    config: Optional[Dict[str, Any]] = None,
) -> DealPriority:
    """
    Score one deal against the activities linked to it.

    Args:
        deal: Canonical opportunity (or a mapping accepted by Opportunity).
        activities: Activities linked to this deal.
        now: Evaluation instant.
        config: Full config or partial overrides.

    Returns:
        DealPriority with sub-scores, urgency and recommendation.
    """
    now = require_now(now)
    cfg = resolve_config(config)["deal_prioritization"]
    if isinstance(deal, dict):
        deal = coerce_record(deal, Opportunity)
    activities = ensure_records(activities, Activity, "activities")

    scores = DealSubScores(
        value=score_value(deal.value, cfg),
        probability=score_probability(deal, activities, cfg),
        velocity=score_velocity(deal, activities, now, cfg),
        decay=score_decay(deal, activities, now, cfg),
        effort=score_effort(deal, activities, cfg),
    )
    weights = cfg["weights"]
    weighted = sum(getattr(scores, name) / 100 * weight for name, weight in weights.items())
    priority_score = round_half_up(weighted)
    # Rounding half up can pass a fractional value at probability 100.
    expected_value = min(
        round_half_up(deal.value * scores.probability / 100), math.floor(deal.value),
    )

    needs_attention = (
        deal.value >= cfg["needs_attention_value"]
        and scores.velocity <= cfg["urgency"]["stalled_velocity"]
    )

    return DealPriority(
        deal_id=deal.id,
        deal_name=deal.name,
        value=deal.value,
        assigned_to=deal.assigned_to,
        priority_score=priority_score,
        priority_tier=_priority_tier(priority_score, cfg),
        expected_value=expected_value,
        scores=scores,
        urgency=get_urgency(scores.decay, scores.velocity, cfg),
        recommendation=get_recommendation(scores, cfg),
        needs_attention=needs_attention,
        scored_at=now,
    )


def group_activities_by_deal(
    activities: Sequence[Activity],
    deals: Sequence[Opportunity],
) -> Dict[str, List[Activity]]:
    """
    Link activities to deals: direct deal id first, else contact id -> deal.

    The contact map is built from every deal, not only open ones; when a
    contact has several deals the last one listed wins.
    """
    contact_to_deal: Dict[str, str] = {}
    for deal in deals:
        if deal.contact_id:
            contact_to_deal[deal.contact_id] = deal.id

    grouped: Dict[str, List[Activity]] = defaultdict(list)
    for activity in activities:
        deal_id = activity.deal_id
        if not deal_id and activity.contact_id:
            deal_id = contact_to_deal.get(activity.contact_id)
        if deal_id:
            grouped[deal_id].append(activity)
    return grouped


def prioritize_deals(
    opportunities: Sequence[Opportunity],
    activities: Optional[Sequence[Activity]] = None,
    now: datetime = None,
    config: Optional[Dict[str, Any]] = None,
) -> DealPrioritizationResult:
    """Score open deals, rank by priority (ties keep input order), and summarize."""
    now = require_now(now)
    resolved = resolve_config(config)
    cfg = resolved["deal_prioritization"]
    opportunities = ensure_records(opportunities, Opportunity, "opportunities")
    activities = ensure_records(activities, Activity, "activities")

    grouped = group_activities_by_deal(activities, opportunities)
    open_deals = [d for d in opportunities if d.is_open]
    logger.info("Prioritizing %d open deals (of %d)", len(open_deals), len(opportunities))

    prioritized = [
        prioritize_deal(deal, grouped.get(deal.id, []), now, resolved) for deal in open_deals
    ]
    prioritized.sort(key=lambda p: -p.priority_score)
    prioritized = [p.model_copy(update={"rank": i}) for i, p in enumerate(prioritized, start=1)]

    total = len(prioritized)
    distribution = {"HIGH": 0, "MEDIUM": 0, "LOW": 0}
    for p in prioritized:
        distribution[p.priority_tier] += 1

    summary = DealPrioritizationSummary(
        total_deals=total,
        total_pipeline_value=sum(p.value for p in prioritized),
        weighted_pipeline_value=sum(p.expected_value for p in prioritized),
        avg_priority_score=(
            round_half_up(sum(p.priority_score for p in prioritized) / total) if total else 0
        ),
        urgent_count=sum(1 for p in prioritized if p.urgency in (Urgency.IMMEDIATE, Urgency.TODAY)),
        needs_attention_count=sum(1 for p in prioritized if p.needs_attention),
        priority_distribution=distribution,
        top_deal=prioritized[0] if prioritized else None,
    )

    focus_list = [
        FocusItem(
            rank=p.rank,
            name=p.deal_name,
            value=p.value,
            urgency=p.urgency,
            action=p.recommendation.action,
        )
        for p in prioritized[: cfg["focus_list_size"]]
    ]

    return DealPrioritizationResult(
        deals=prioritized,
        summary=summary,
        focus_list=focus_list,
        scored_at=now,
    )
