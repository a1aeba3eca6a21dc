"""
Pipeline Pulse — Insight Engine
=================================

Orchestrates the engines over one snapshot:

  1. score leads and prioritize deals
  2. detect leaks (and optionally ask the AI narrator)
  3. merge everything into an action plan
  4. synthesize insights, health score and wasted-effort ratio

Three report shapes come out of the same computation: the full report,
a quick summary (headline numbers + next action) and a voice summary
(the quick numbers rendered as a short English script).

Functions:
  analyze()         - full AnalysisReport
  quick_analysis()  - QuickAnalysis
  voice_summary()   - VoiceSummary
"""
from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

from analytics.action_recommendations import generate_actions, next_best_from
from analytics.deal_prioritization import prioritize_deals
from analytics.leak_detector import Narrator, detect_leaks
from analytics.lead_scoring import score_leads
from analytics.lib.config import resolve_config
from analytics.lib.errors import InvalidInputError
from analytics.lib.logger import setup_logger
from analytics.lib.utils import (
    clamp,
    days_since,
    ensure_records,
    require_now,
    round_half_up,
    safe_div,
)
from analytics.rep_performance import calculate_rep_kpis
from models.crm_models import Activity, Contact, Lead, Opportunity, PipelineSnapshot, Rep
from models.insight_models import (
    ActionPlan,
    AnalysisReport,
    DealPrioritizationResult,
    ExecutiveSummary,
    Insight,
    InsightType,
    LeadScoringResult,
    LeakReport,
    QuickAnalysis,
    VoiceSummary,
)

logger = setup_logger(__name__)


SNAPSHOT_COLLECTIONS = (
    ("leads", Lead),
    ("contacts", Contact),
    ("opportunities", Opportunity),
    ("activities", Activity),
    ("reps", Rep),
)


def _coerce_snapshot(snapshot: Any) -> PipelineSnapshot:
    if isinstance(snapshot, PipelineSnapshot):
        return snapshot
    if isinstance(snapshot, dict):
        return PipelineSnapshot(**{
            name: ensure_records(snapshot.get(name), model, name)
            for name, model in SNAPSHOT_COLLECTIONS
        })
    raise InvalidInputError(
        f"snapshot must be a PipelineSnapshot or mapping, got {type(snapshot).__name__}",
        argument="snapshot",
    )


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------

def wasted_effort_ratio(snapshot: PipelineSnapshot, now: datetime,
                        config: Optional[Dict[str, Any]] = None) -> float:
    """
    Share of the last 30 days' activities spent on contacts that are
    already lost (lost/abandoned deal) or stuck (lead with 5+ touches
    still in `new`). Touch counts use the full activity history.
    """
    now = require_now(now)
    cfg = resolve_config(config)["insights"]

    dead_contacts = {
        o.contact_id for o in snapshot.opportunities
        if o.status in ("lost", "abandoned") and o.contact_id
    }
    touches = Counter(a.contact_id for a in snapshot.activities if a.contact_id)
    stuck_leads = {
        l.id for l in snapshot.leads
        if l.status == "new" and touches[l.id] >= cfg["wasted_effort_touches"]
    }
    wasted_targets = dead_contacts | stuck_leads

    window = cfg["wasted_effort_window_days"]
    recent = [
        a for a in snapshot.activities
        if a.created_at is not None and 0 <= days_since(a.created_at, now) <= window
    ]
    wasted = sum(1 for a in recent if a.contact_id in wasted_targets)
    return round_half_up(safe_div(wasted, len(recent)), 4)


def synthesize_insights(
    lead_scoring: LeadScoringResult,
    deal_prioritization: DealPrioritizationResult,
    leak_report: LeakReport,
    action_plan: ActionPlan,
    wasted_ratio: float = 0.0,
    config: Optional[Dict[str, Any]] = None,
) -> List[Insight]:
    cfg = resolve_config(config)["insights"]
    insights: List[Insight] = []
    leads = lead_scoring.summary

    if leads.hot > 0:
        insights.append(Insight(
            type=InsightType.OPPORTUNITY,
            message=f"{leads.hot} hot leads available. Speed to lead = 21x better conversion.",
        ))

    if leads.total and leads.dead > leads.total * cfg["dead_lead_ratio"]:
        pct = round_half_up(leads.dead / leads.total * 100)
        insights.append(Insight(
            type=InsightType.WARNING,
            message=f"{pct}% of leads are dead. Review lead sources.",
        ))

    stalled = sum(
        1 for d in deal_prioritization.deals if d.scores.velocity <= cfg["stalled_velocity"]
    )
    if stalled > 0:
        insights.append(Insight(
            type=InsightType.WARNING,
            message=f"{stalled} deals have stalled. Create urgency or disqualify.",
        ))

    leaks = leak_report.summary
    if leaks.critical_count > 0:
        insights.append(Insight(
            type=InsightType.CRITICAL,
            message=(
                f"{leaks.critical_count} critical revenue leaks detected. "
                f"${leaks.total_estimated_revenue:,.0f} at risk."
            ),
        ))

    immediate = action_plan.summary.immediate_count
    if immediate > cfg["capacity_immediate"]:
        insights.append(Insight(
            type=InsightType.CAPACITY,
            message=(
                f"{immediate} items need immediate attention. "
                "Consider prioritization or delegation."
            ),
        ))

    if wasted_ratio > cfg["wasted_effort_warning"]:
        insights.append(Insight(
            type=InsightType.WARNING,
            message=(
                f"{round_half_up(wasted_ratio * 100)}% of recent activity went to lost deals "
                "or unresponsive leads. Redirect effort to live pipeline."
            ),
        ))

    return insights


def calculate_health_score(insights: List[Insight],
                           config: Optional[Dict[str, Any]] = None) -> int:
    """100 minus a fixed penalty per insight severity, kept within 0-100."""
    penalties = resolve_config(config)["insights"]["penalties"]
    score = 100
    for insight in insights:
        score -= penalties.get(insight.type.value, 0)
    return int(clamp(score))


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def analyze(
    snapshot: PipelineSnapshot,
    *,
    now: datetime,
    include_ai: bool = False,
    config: Optional[Dict[str, Any]] = None,
    narrator: Optional[Narrator] = None,
) -> AnalysisReport:
    """Run every engine over the snapshot and build the full report."""
    now = require_now(now)
    config = resolve_config(config)
    snapshot = _coerce_snapshot(snapshot)
    logger.info("Running full analysis...")

    lead_scoring = score_leads(snapshot.leads, snapshot.activities, now, config)
    deal_prioritization = prioritize_deals(snapshot.opportunities, snapshot.activities, now, config)

    leak_report = detect_leaks(
        opportunities=snapshot.opportunities,
        activities=snapshot.activities,
        leads=snapshot.leads,
        contacts=snapshot.contacts,
        reps=snapshot.reps,
        now=now,
        include_ai=include_ai,
        narrator=narrator,
        config=config,
    )

    action_plan = generate_actions(
        leads=snapshot.leads,
        deals=snapshot.opportunities,
        activities=snapshot.activities,
        reps=snapshot.reps,
        lead_scores=lead_scoring.leads,
        deal_priorities=deal_prioritization.deals,
        leaks=leak_report.leaks,
        now=now,
        config=config,
    )

    rep_kpis = calculate_rep_kpis(
        opportunities=snapshot.opportunities,
        activities=snapshot.activities,
        reps=snapshot.reps,
        leads=snapshot.leads,
        now=now,
        config=config,
    )

    wasted = wasted_effort_ratio(snapshot, now, config)
    insights = synthesize_insights(
        lead_scoring, deal_prioritization, leak_report, action_plan, wasted, config,
    )
    health = calculate_health_score(insights, config)
    logger.info("Analysis complete: health score %d, %d insights", health, len(insights))

    focus_size = resolve_config(config)["insights"]["focus_list_size"]
    return AnalysisReport(
        summary=ExecutiveSummary(
            health_score=health,
            total_pipeline_value=deal_prioritization.summary.total_pipeline_value,
            weighted_pipeline_value=deal_prioritization.summary.weighted_pipeline_value,
            revenue_at_risk=leak_report.summary.total_estimated_revenue,
            leak_count=leak_report.summary.total_leaks,
            critical_issues=leak_report.summary.critical_count,
            actionable_items=action_plan.summary.total_actions,
            wasted_effort_ratio=wasted,
        ),
        next_best_action=action_plan.next_best_action,
        focus_list=action_plan.actions[:focus_size],
        lead_scoring=lead_scoring,
        deal_prioritization=deal_prioritization,
        leak_detection=leak_report,
        action_plan=action_plan,
        rep_kpis=rep_kpis,
        ai_insights=leak_report.ai_insights,
        insights=insights,
        analyzed_at=now,
    )


def quick_analysis(
    snapshot: PipelineSnapshot,
    *,
    now: datetime,
    config: Optional[Dict[str, Any]] = None,
) -> QuickAnalysis:
    """Headline numbers and the next action, without leak detection."""
    now = require_now(now)
    config = resolve_config(config)
    snapshot = _coerce_snapshot(snapshot)

    lead_scoring = score_leads(snapshot.leads, snapshot.activities, now, config)
    deal_prioritization = prioritize_deals(snapshot.opportunities, snapshot.activities, now, config)
    plan = generate_actions(
        leads=snapshot.leads,
        deals=snapshot.opportunities,
        activities=snapshot.activities,
        lead_scores=lead_scoring.leads,
        deal_priorities=deal_prioritization.deals,
        leaks=[],
        now=now,
        config=config,
    )
    nba = next_best_from(plan.actions, resolve_config(config)["actions"])

    return QuickAnalysis(
        hot_leads=lead_scoring.summary.hot,
        top_deal=deal_prioritization.summary.top_deal,
        pipeline_value=deal_prioritization.summary.total_pipeline_value,
        next_action=nba.action,
        message=nba.message,
        analyzed_at=now,
    )


def _thousands(value: float) -> str:
    return f"${round_half_up(value / 1000)}k"


def voice_summary(
    snapshot: PipelineSnapshot,
    *,
    now: datetime,
    config: Optional[Dict[str, Any]] = None,
) -> VoiceSummary:
    """Quick numbers rendered into a short spoken-style script."""
    quick = quick_analysis(snapshot, now=now, config=config)

    pipeline = _thousands(quick.pipeline_value) if quick.pipeline_value else "no deals"
    parts = [f"Your pipeline has {pipeline} in active opportunities."]

    if quick.hot_leads > 0:
        plural = "s" if quick.hot_leads > 1 else ""
        parts.append(
            f"You have {quick.hot_leads} hot lead{plural} ready for immediate outreach."
        )

    if quick.top_deal is not None:
        parts.append(
            f"Your top priority deal is {quick.top_deal.deal_name} "
            f"worth {_thousands(quick.top_deal.value)}."
        )

    if quick.next_action is not None:
        parts.append(f"Next action: {quick.next_action.title}.")

    return VoiceSummary(text=" ".join(parts), data=quick, generated_at=quick.analyzed_at)
