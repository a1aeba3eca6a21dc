"""
Pipeline Pulse — Rep KPIs
===========================

Per-rep scorecard: deal counts, win rate, revenue, deal size, cycle
length, weekly activity trend, speed to lead and stale deals.

Usage:
    from analytics.rep_performance import calculate_rep_kpis
    kpis = calculate_rep_kpis(opportunities=opps, activities=acts, reps=reps, now=now)
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from analytics.lib.config import resolve_config
from analytics.lib.logger import setup_logger
from analytics.lib.utils import (
    days_since,
    ensure_records,
    hours_between,
    require_now,
    round_half_up,
    safe_div,
)
from models.crm_models import Activity, Lead, Opportunity, Rep
from models.insight_models import RepKPI

logger = setup_logger(__name__)


def _rep_kpi(
    rep: Rep,
    opportunities: Sequence[Opportunity],
    activities: Sequence[Activity],
    leads: Sequence[Lead],
    now: datetime,
    stale_days: int,
) -> RepKPI:
    rep_opps = [o for o in opportunities if o.assigned_to == rep.id]
    rep_acts = [a for a in activities if a.performed_by == rep.id]

    open_opps = [o for o in rep_opps if o.status == "open"]
    won = [o for o in rep_opps if o.status == "won"]
    lost = [o for o in rep_opps if o.status == "lost"]
    closed = len(won) + len(lost)

    win_rate = round_half_up(safe_div(len(won), closed) * 100, 1)
    total_revenue = sum(o.value for o in won)
    avg_deal_size = round_half_up(safe_div(total_revenue, len(won)))

    cycle_days = [
        days_since(o.created_at, o.updated_at)
        for o in won
        if o.created_at is not None and o.updated_at is not None
    ]
    avg_days_to_close = round_half_up(safe_div(sum(cycle_days), len(cycle_days)), 1)

    this_week = 0
    last_week = 0
    for act in rep_acts:
        age = days_since(act.created_at, now)
        if age is None:
            continue
        if age < 7:
            this_week += 1
        elif age < 14:
            last_week += 1
    trend = round_half_up(safe_div(this_week - last_week, last_week) * 100)

    response_hours = [
        hours_between(l.created_at, l.first_contacted_at)
        for l in leads
        if l.assigned_to == rep.id and l.created_at and l.first_contacted_at
    ]
    response_time = round_half_up(safe_div(sum(response_hours), len(response_hours)), 1)

    stale = 0
    for opp in open_opps:
        age = days_since(opp.updated_at, now)
        if age is not None and age > stale_days:
            stale += 1

    return RepKPI(
        rep_id=rep.id,
        rep_name=rep.name,
        total_opportunities=len(rep_opps),
        open_opportunities=len(open_opps),
        won_opportunities=len(won),
        lost_opportunities=len(lost),
        win_rate=win_rate,
        total_revenue=total_revenue,
        avg_deal_size=avg_deal_size,
        avg_days_to_close=avg_days_to_close,
        activities_this_week=this_week,
        activities_last_week=last_week,
        activity_trend=trend,
        response_time=response_time,
        stale_deals=stale,
    )


def calculate_rep_kpis(
    *,
    opportunities: Optional[Sequence[Opportunity]] = None,
    activities: Optional[Sequence[Activity]] = None,
    reps: Optional[Sequence[Rep]] = None,
    now: datetime,
    leads: Optional[Sequence[Lead]] = None,
    config: Optional[Dict[str, Any]] = None,
) -> List[RepKPI]:
    """KPIs for every rep, highest won revenue first (stable on ties)."""
    now = require_now(now)
    opportunities = ensure_records(opportunities, Opportunity, "opportunities")
    activities = ensure_records(activities, Activity, "activities")
    reps = ensure_records(reps, Rep, "reps")
    leads = ensure_records(leads, Lead, "leads")
    stale_days = resolve_config(config)["rep_kpis"]["stale_days"]

    logger.info("Calculating KPIs for %d reps", len(reps))
    kpis = [_rep_kpi(rep, opportunities, activities, leads, now, stale_days) for rep in reps]
    return sorted(kpis, key=lambda k: -k.total_revenue)
