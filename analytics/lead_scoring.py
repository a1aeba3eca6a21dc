"""
Pipeline Pulse — Lead Scoring
===============================

Composite lead quality score (0-100) from independently capped sub-scores:
  Source (0-25):      lead source quality, normalized through a keyword table
  Engagement (0-30):  points per activity by type/outcome
  Recency (0-25):     step function of days since last touch
  Fit (0-20):         completeness of contact and qualification fields
  Intent (0 default): buying signals; only scored by profiles that budget it

Budgets, tables and tier boundaries come from the config profile.

Functions:
  normalize_source()  - free-text lead source -> source key
  score_lead()        - score one lead against its activities
  score_leads()       - score, rank and summarize a lead list
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from analytics.lib.config import resolve_config
from analytics.lib.logger import setup_logger
from analytics.lib.utils import (
    ceiling_lookup,
    clamp,
    coerce_record,
    ensure_records,
    match_keyword,
    require_now,
    round_half_up,
    slugify,
    whole_days_since,
)
from models.crm_models import Activity, Lead
from models.insight_models import (
    LeadScore,
    LeadScoreBreakdown,
    LeadScoringResult,
    LeadScoringSummary,
    LeadSignals,
    Recommendation,
)

logger = setup_logger(__name__)


def normalize_source(source: Optional[str], config: Optional[Dict[str, Any]] = None) -> str:
    """Map a free-text lead source ("Google Ads - Demo Form") to a source key."""
    cfg = resolve_config(config)["lead_scoring"]
    return match_keyword(slugify(source), cfg["source_keywords"], "unknown")


# ---------------------------------------------------------------------------
# Sub-scores
# ---------------------------------------------------------------------------

def _source_score(source_key: str, cfg: Dict[str, Any]) -> int:
    weights = cfg["source_weights"]
    weight = weights.get(source_key, weights["unknown"])
    return round_half_up(weight / 100 * cfg["budgets"]["source"])


def _engagement_score(activities: Sequence[Activity], cfg: Dict[str, Any]) -> tuple:
    """Return (points, signals). No activity at all earns the floor."""
    budget = cfg["budgets"]["engagement"]
    if not activities:
        return min(cfg["engagement_floor"], budget), []

    points = 0
    signals: List[str] = []
    for activity in activities:
        for rule_type, rule_outcome, rule_points, signal in cfg["engagement_rules"]:
            if activity.type != rule_type:
                continue
            if rule_outcome is not None and activity.outcome != rule_outcome:
                continue
            points += rule_points
            if signal not in signals:
                signals.append(signal)
            break
    return min(budget, points), signals


def _last_touch(lead: Lead, activities: Sequence[Activity]) -> Optional[datetime]:
    dated = [a.created_at for a in activities if a.created_at is not None]
    if dated:
        return max(dated)
    return lead.created_at


def _recency_score(days: Optional[int], cfg: Dict[str, Any]) -> int:
    budget = cfg["budgets"]["recency"]
    if budget <= 0:
        return 0
    if days is None:
        points = cfg["recency_floor"]
    else:
        points = ceiling_lookup(days, cfg["recency_steps"], cfg["recency_floor"])
    # Step tables are written against a 25-point budget.
    if budget != 25:
        points = round_half_up(points / 25 * budget)
    return min(points, budget)


def _fit_score(lead: Lead, cfg: Dict[str, Any]) -> int:
    points = cfg["fit_points"]
    fit = 0
    if lead.email and "@" in lead.email:
        fit += points["email"]
    if lead.phone:
        fit += points["phone"]
    if lead.company:
        fit += points["company"]
    if lead.title:
        fit += points["title"]
    if lead.budget:
        fit += points["budget"]
    if lead.timeline:
        fit += points["timeline"]
    return min(fit, cfg["budgets"]["fit"])


def _intent_score(activities: Sequence[Activity], cfg: Dict[str, Any]) -> int:
    budget = cfg["budgets"].get("intent", 0)
    if budget <= 0:
        return 0
    table = cfg["intent_points"]
    points = sum(table.get(a.outcome, 0) for a in activities)
    return min(points, budget)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify_score(score: int, config: Optional[Dict[str, Any]] = None) -> tuple:
    """Return (grade, tier, priority) for a total score."""
    cfg = resolve_config(config)["lead_scoring"]
    grade, tier = cfg["default_tier"]
    for bound, row_grade, row_tier in cfg["tiers"]:
        if score >= bound:
            grade, tier = row_grade, row_tier
            break

    if score >= cfg["priority"]["high"]:
        priority = "HIGH"
    elif score >= cfg["priority"]["medium"]:
        priority = "MEDIUM"
    else:
        priority = "LOW"
    return grade, tier, priority


def _recommend(tier: str, breakdown: LeadScoreBreakdown, days: Optional[int],
               cfg: Dict[str, Any]) -> Recommendation:
    conditions = {"default"}
    if breakdown.engagement <= cfg["low_engagement_max"]:
        conditions.add("low_engagement")
    if breakdown.fit <= cfg["low_fit_max"]:
        conditions.add("low_fit")
    if days is None or days > cfg["stale_days"]:
        conditions.add("stale")

    for row_tier, condition, action, message in cfg["recommendations"]:
        if row_tier == tier and condition in conditions:
            return Recommendation(action=action, message=message)
    return Recommendation(action="REVIEW", message="Review lead manually.")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def score_lead(
    lead: Lead,
    activities: Optional[Sequence[Activity]] = None,
    now: datetime = None,
    config: Optional[Dict[str, Any]] = None,
) -> LeadScore:
    """
    Score one lead against the activities logged on it.

    Args:
        lead: Canonical lead (or a mapping accepted by Lead).
        activities: Activities whose contact id is this lead's id.
        now: Evaluation instant.
        config: Full config or partial overrides.

    Returns:
        LeadScore with breakdown, signals, tier and recommendation.
    """
    now = require_now(now)
    config = resolve_config(config)
    cfg = config["lead_scoring"]
    if isinstance(lead, dict):
        lead = coerce_record(lead, Lead)
    activities = ensure_records(activities, Activity, "activities")

    source_key = normalize_source(lead.lead_source, config)
    engagement, activity_signals = _engagement_score(activities, cfg)
    last_touch = _last_touch(lead, activities)
    days = whole_days_since(last_touch, now)

    breakdown = LeadScoreBreakdown(
        source=_source_score(source_key, cfg),
        engagement=engagement,
        recency=_recency_score(days, cfg),
        fit=_fit_score(lead, cfg),
        intent=_intent_score(activities, cfg),
    )
    total = int(clamp(
        breakdown.source + breakdown.engagement + breakdown.recency
        + breakdown.fit + breakdown.intent
    ))
    breakdown = breakdown.model_copy(update={"total": total})

    grade, tier, priority = classify_score(total, config)

    return LeadScore(
        lead_id=lead.id,
        lead_name=lead.full_name or lead.email or f"Lead #{lead.id}",
        score=total,
        grade=grade,
        tier=tier,
        priority=priority,
        breakdown=breakdown,
        signals=LeadSignals(
            source=source_key,
            activity_types=activity_signals,
            days_since_last_activity=days,
            has_email=bool(lead.email),
            has_phone=bool(lead.phone),
        ),
        recommendation=_recommend(tier, breakdown, days, cfg),
        scored_at=now,
    )


def score_leads(
    leads: Sequence[Lead],
    activities: Optional[Sequence[Activity]] = None,
    now: datetime = None,
    config: Optional[Dict[str, Any]] = None,
) -> LeadScoringResult:
    """Score every lead, rank by score (stable on ties), and summarize."""
    now = require_now(now)
    config = resolve_config(config)
    leads = ensure_records(leads, Lead, "leads")
    activities = ensure_records(activities, Activity, "activities")
    logger.info("Scoring %d leads against %d activities", len(leads), len(activities))

    by_contact: Dict[str, List[Activity]] = defaultdict(list)
    for activity in activities:
        if activity.contact_id:
            by_contact[activity.contact_id].append(activity)

    scored = [score_lead(lead, by_contact.get(lead.id, []), now, config) for lead in leads]
    scored.sort(key=lambda s: -s.score)
    scored = [s.model_copy(update={"rank": i}) for i, s in enumerate(scored, start=1)]

    return LeadScoringResult(
        leads=scored,
        summary=_summarize(scored),
        scored_at=now,
    )


def _summarize(scored: List[LeadScore]) -> LeadScoringSummary:
    total = len(scored)
    tiers = defaultdict(int)
    priorities = defaultdict(int)
    grades = {"A": 0, "B": 0, "C": 0, "D": 0}
    for s in scored:
        tiers[s.tier] += 1
        priorities[s.priority] += 1
        grades[s.grade] = grades.get(s.grade, 0) + 1

    avg = round_half_up(sum(s.score for s in scored) / total) if total else 0
    return LeadScoringSummary(
        total=total,
        hot=tiers["HOT"],
        warm=tiers["WARM"],
        cold=tiers["COLD"],
        dead=tiers["DEAD"],
        high_priority=priorities["HIGH"],
        medium_priority=priorities["MEDIUM"],
        low_priority=priorities["LOW"],
        avg_score=avg,
        grade_distribution=grades,
    )
