"""
Pipeline Pulse — Revenue Leak Detector
========================================

Runs ten independent rule checks over one snapshot and emits a flat,
severity-ranked list of leaks with estimated revenue impact.

Rules:
  1. STALE_OPPORTUNITY    open deal with no contact activity past stale_days
  2. UNTOUCHED_LEAD       new lead never contacted after a day
  3. SLOW_RESPONSE        first contact later than response_hours
  4. ABANDONED_DEAL       lost/abandoned deals in the last 90 days (batch)
  5. MISSING_FOLLOW_UP    last real interaction 7+ days ago, not yet stale
  6. NO_ACTIVITY_REP      active rep under the 30-day activity floor
  7. UNASSIGNED_LEAD      leads without an owner (batch)
  8. DEAD_PIPELINE        3+ open deals untouched for 14+ days (batch)
  9. LOST_WITHOUT_REASON  lost deals with no recorded reason (batch)
 10. HIGH_VALUE_AT_RISK   high-value deal inactive for a week

Leaks are not deduplicated across rules: one deal may be both stale and
high-value-at-risk, and its value counts toward both.

Exports:
    LeakDetector, detect_leaks
"""
from __future__ import annotations

import math
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from analytics.lib.config import resolve_config
from analytics.lib.logger import setup_logger
from analytics.lib.utils import (
    days_since,
    ensure_records,
    hours_between,
    require_now,
    whole_days_since,
)
from models.crm_models import Activity, Contact, Lead, Opportunity, Rep
from models.insight_models import (
    Leak,
    LeakReport,
    LeakSummary,
    LeakType,
    LeakTypeSummary,
    Severity,
)

logger = setup_logger(__name__)

Narrator = Callable[..., Optional[Dict[str, Any]]]


def _money(value: float) -> str:
    """Format like 12,500 (no decimals when whole)."""
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def _latest(activities: Sequence[Activity]) -> Optional[datetime]:
    dated = [a.created_at for a in activities if a.created_at is not None]
    return max(dated) if dated else None


class LeakDetector:
    """
    Rule-based leak detection over one normalized snapshot.

    Each `check_*` method is independent and returns a list of leaks;
    records missing the field a rule needs are skipped by that rule only.
    """

    def __init__(
        self,
        opportunities: Sequence[Opportunity],
        activities: Sequence[Activity],
        leads: Sequence[Lead],
        reps: Sequence[Rep],
        now: datetime,
        thresholds: Dict[str, Any],
    ):
        self.opportunities = list(opportunities)
        self.activities = list(activities)
        self.leads = list(leads)
        self.reps = list(reps)
        self.now = now
        self.t = thresholds

        self.open_opps = [o for o in self.opportunities if o.is_open]

        self.activity_by_contact: Dict[str, List[Activity]] = defaultdict(list)
        self.activity_by_rep: Dict[str, List[Activity]] = defaultdict(list)
        for act in self.activities:
            if act.contact_id:
                self.activity_by_contact[act.contact_id].append(act)
            if act.performed_by:
                self.activity_by_rep[act.performed_by].append(act)

    # ------------------------------------------------------------------
    # Shared lookups
    # ------------------------------------------------------------------

    def _contact_activities(self, opp: Opportunity) -> List[Activity]:
        if not opp.contact_id:
            return []
        return self.activity_by_contact.get(opp.contact_id, [])

    def _last_touch(self, opp: Opportunity) -> Optional[datetime]:
        """Latest contact activity, else the deal's creation date."""
        latest = _latest(self._contact_activities(opp))
        return latest if latest is not None else opp.created_at

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def check_stale_opportunities(self) -> List[Leak]:
        leaks = []
        for opp in self.open_opps:
            days = whole_days_since(self._last_touch(opp), self.now)
            if days is None or days <= self.t["stale_days"]:
                continue
            if opp.value >= self.t["critical_value_deal"]:
                severity = Severity.CRITICAL
            elif opp.value >= self.t["high_value_deal"]:
                severity = Severity.HIGH
            else:
                severity = Severity.MEDIUM
            leaks.append(Leak(
                id=f"stale_opp_{opp.id}",
                type=LeakType.STALE_OPPORTUNITY,
                severity=severity,
                title="Stale Opportunity",
                description=(
                    f'"{opp.name}" has had no activity for {days} days. '
                    f"Value: ${_money(opp.value)}"
                ),
                recommended_action="Schedule immediate follow-up call or send re-engagement email",
                impacted_count=1,
                estimated_revenue=opp.value,
                related_ids=[opp.id],
                metadata={"days_since_activity": days, "assigned_to": opp.assigned_to},
            ))
        return leaks

    def check_untouched_leads(self) -> List[Leak]:
        leaks = []
        for lead in self.leads:
            if lead.status != "new" or lead.first_contacted_at is not None:
                continue
            days = whole_days_since(lead.created_at, self.now)
            if days is None or days <= self.t["untouched_lead_days"]:
                continue
            source = lead.lead_source or "unknown source"
            leaks.append(Leak(
                id=f"untouched_lead_{lead.id}",
                type=LeakType.UNTOUCHED_LEAD,
                severity=(
                    Severity.HIGH if days > self.t["untouched_lead_high_days"] else Severity.MEDIUM
                ),
                title="Untouched Lead",
                description=(
                    f'Lead "{lead.full_name}" from {source} has not been contacted in {days} days'
                ),
                recommended_action=(
                    "Make first contact within 5 minutes of lead creation for 21x better conversion"
                ),
                impacted_count=1,
                estimated_revenue=self.t["untouched_lead_revenue"],
                related_ids=[lead.id],
                metadata={
                    "days_since_created": days,
                    "lead_source": lead.lead_source,
                    "assigned_to": lead.assigned_to,
                },
            ))
        return leaks

    def check_slow_response(self) -> List[Leak]:
        leaks = []
        for lead in self.leads:
            hours = hours_between(lead.created_at, lead.first_contacted_at)
            if hours is None or hours <= self.t["response_hours"]:
                continue
            leaks.append(Leak(
                id=f"slow_response_{lead.id}",
                type=LeakType.SLOW_RESPONSE,
                severity=(
                    Severity.HIGH if hours > self.t["slow_response_high_hours"] else Severity.MEDIUM
                ),
                title="Slow Response Time",
                description=(
                    f'Lead "{lead.full_name}" took {math.floor(hours)} hours to get first contact'
                ),
                recommended_action=(
                    "Set up speed-to-lead automation. "
                    "Response within 5 min = 100x more likely to connect"
                ),
                impacted_count=1,
                # Historical; the response time cannot be recovered.
                estimated_revenue=0,
                related_ids=[lead.id],
                metadata={"response_hours": round(hours, 2), "assigned_to": lead.assigned_to},
            ))
        return leaks

    def check_abandoned_deals(self) -> List[Leak]:
        recent = []
        for opp in self.opportunities:
            if opp.status not in ("lost", "abandoned"):
                continue
            age = days_since(opp.updated_at, self.now)
            if age is not None and age <= self.t["abandoned_window_days"]:
                recent.append(opp)
        if not recent:
            return []

        total = sum(o.value for o in recent)
        return [Leak(
            id="abandoned_deals_batch",
            type=LeakType.ABANDONED_DEAL,
            severity=Severity.HIGH if total > self.t["abandoned_high_value"] else Severity.MEDIUM,
            title=f"Abandoned Deals (Last {self.t['abandoned_window_days']} Days)",
            description=f"{len(recent)} deals worth ${_money(total)} were abandoned recently",
            recommended_action=(
                'Review lost reasons. Implement win-back campaign for deals lost to "no decision"'
            ),
            impacted_count=len(recent),
            estimated_revenue=math.floor(total * self.t["abandoned_recovery_rate"]),
            related_ids=[o.id for o in recent],
            metadata={"total_value": total},
        )]

    def check_missing_follow_ups(self) -> List[Leak]:
        leaks = []
        for opp in self.open_opps:
            meaningful = [
                a for a in self._contact_activities(opp)
                if (a.outcome == "completed" or a.type == "meeting") and a.created_at is not None
            ]
            if not meaningful:
                continue
            last = max(meaningful, key=lambda a: a.created_at)
            days = whole_days_since(last.created_at, self.now)
            if not (self.t["follow_up_min_days"] <= days < self.t["stale_days"]):
                continue
            leaks.append(Leak(
                id=f"missing_followup_{opp.id}",
                type=LeakType.MISSING_FOLLOW_UP,
                severity=Severity.MEDIUM,
                title="Missing Follow-Up",
                description=(
                    f'"{opp.name}" had a {last.type} {days} days ago but no follow-up scheduled'
                ),
                recommended_action="Schedule next touch within 48 hours of every interaction",
                impacted_count=1,
                estimated_revenue=opp.value,
                related_ids=[opp.id],
                metadata={
                    "last_activity_type": last.type,
                    "days_since": days,
                    "assigned_to": opp.assigned_to,
                },
            ))
        return leaks

    def check_inactive_reps(self) -> List[Leak]:
        leaks = []
        window = self.t["rep_window_days"]
        floor = self.t["min_weekly_activities"] * 4
        for rep in self.reps:
            if not rep.active:
                continue
            recent = [
                a for a in self.activity_by_rep.get(rep.id, [])
                if a.created_at is not None and days_since(a.created_at, self.now) < window
            ]
            if len(recent) >= floor:
                continue
            assigned = [o for o in self.open_opps if o.assigned_to == rep.id]
            if not assigned:
                continue
            at_risk = sum(o.value for o in assigned)
            leaks.append(Leak(
                id=f"inactive_rep_{rep.id}",
                type=LeakType.NO_ACTIVITY_REP,
                severity=Severity.HIGH if at_risk > self.t["rep_high_risk_value"] else Severity.MEDIUM,
                title="Low Activity Rep",
                description=(
                    f"{rep.name} has only {len(recent)} activities in {window} days "
                    f"with ${_money(at_risk)} in open pipeline"
                ),
                recommended_action=(
                    "Schedule 1:1 to identify blockers. Consider reassigning high-value deals"
                ),
                impacted_count=len(assigned),
                estimated_revenue=at_risk,
                related_ids=[rep.id] + [o.id for o in assigned],
                metadata={
                    "activity_count": len(recent),
                    "open_deals": len(assigned),
                    "assigned_to": rep.id,
                },
            ))
        return leaks

    def check_unassigned_leads(self) -> List[Leak]:
        unassigned = [l for l in self.leads if not l.assigned_to and l.status != "unqualified"]
        if not unassigned:
            return []
        count = len(unassigned)
        return [Leak(
            id="unassigned_leads_batch",
            type=LeakType.UNASSIGNED_LEAD,
            severity=Severity.HIGH if count > self.t["unassigned_high_count"] else Severity.MEDIUM,
            title="Unassigned Leads",
            description=f"{count} leads have no assigned rep",
            recommended_action=(
                "Enable round-robin assignment. Every minute unassigned = lower conversion"
            ),
            impacted_count=count,
            estimated_revenue=count * self.t["unassigned_lead_revenue"],
            related_ids=[l.id for l in unassigned],
            metadata={},
        )]

    def check_dead_pipeline(self) -> List[Leak]:
        stuck = []
        stuck_days = []
        for opp in self.open_opps:
            age = days_since(opp.updated_at, self.now)
            if age is not None and age > self.t["dead_pipeline_days"]:
                stuck.append(opp)
                stuck_days.append(age)
        if len(stuck) < self.t["dead_pipeline_min_deals"]:
            return []

        value = sum(o.value for o in stuck)
        return [Leak(
            id="dead_pipeline_batch",
            type=LeakType.DEAD_PIPELINE,
            severity=Severity.HIGH if value > self.t["dead_pipeline_high_value"] else Severity.MEDIUM,
            title="Stuck Pipeline",
            description=(
                f"{len(stuck)} deals worth ${_money(value)} haven't moved stages in "
                f"{self.t['dead_pipeline_days']}+ days"
            ),
            recommended_action=(
                "Implement stage-based SLAs. Deals stuck > 2 weeks need manager intervention"
            ),
            impacted_count=len(stuck),
            estimated_revenue=value,
            related_ids=[o.id for o in stuck],
            metadata={"avg_days_stuck": math.floor(sum(stuck_days) / len(stuck_days))},
        )]

    def check_lost_without_reason(self) -> List[Leak]:
        placeholders = {p.lower() for p in self.t["lost_reason_placeholders"]}
        lost = [
            o for o in self.opportunities
            if o.status == "lost" and (not o.lost_reason or o.lost_reason.lower() in placeholders)
        ]
        if not lost:
            return []
        return [Leak(
            id="lost_no_reason_batch",
            type=LeakType.LOST_WITHOUT_REASON,
            severity=Severity.MEDIUM,
            title="Lost Deals Missing Reason",
            description=(
                f"{len(lost)} lost deals have no recorded loss reason. "
                "Can't fix what you don't measure"
            ),
            recommended_action=(
                "Require loss reason before deal can be marked lost. Review patterns monthly"
            ),
            impacted_count=len(lost),
            estimated_revenue=0,
            related_ids=[o.id for o in lost],
            metadata={"total_lost_value": sum(o.value for o in lost)},
        )]

    def check_high_value_at_risk(self) -> List[Leak]:
        leaks = []
        for opp in self.open_opps:
            if opp.value < self.t["high_value_deal"]:
                continue
            inactive = days_since(self._last_touch(opp), self.now)
            if inactive is None or inactive <= self.t["at_risk_inactive_days"]:
                continue
            leaks.append(Leak(
                id=f"high_value_risk_{opp.id}",
                type=LeakType.HIGH_VALUE_AT_RISK,
                severity=(
                    Severity.CRITICAL if opp.value >= self.t["critical_value_deal"] else Severity.HIGH
                ),
                title="High-Value Deal At Risk",
                description=f'${_money(opp.value)} deal "{opp.name}" showing signs of going cold',
                recommended_action=(
                    "Manager should personally review. Consider executive outreach or special offer"
                ),
                impacted_count=1,
                estimated_revenue=opp.value,
                related_ids=[opp.id],
                metadata={"assigned_to": opp.assigned_to, "stage": opp.stage},
            ))
        return leaks

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    RULES = (
        "check_stale_opportunities",
        "check_untouched_leads",
        "check_slow_response",
        "check_abandoned_deals",
        "check_missing_follow_ups",
        "check_inactive_reps",
        "check_unassigned_leads",
        "check_dead_pipeline",
        "check_lost_without_reason",
        "check_high_value_at_risk",
    )

    def run(self) -> List[Leak]:
        """Run every rule, then sort by severity and revenue."""
        leaks: List[Leak] = []
        for name in self.RULES:
            found = getattr(self, name)()
            logger.debug("%s: %d leaks", name, len(found))
            leaks.extend(found)
        return sort_leaks(leaks)


def sort_leaks(leaks: List[Leak]) -> List[Leak]:
    """CRITICAL first, then larger estimated revenue; stable otherwise."""
    return sorted(leaks, key=lambda l: (l.severity.rank, -l.estimated_revenue))


def summarize_leaks(leaks: Sequence[Leak]) -> LeakSummary:
    counts = defaultdict(int)
    for leak in leaks:
        counts[leak.severity] += 1

    by_type: Dict[str, LeakTypeSummary] = {}
    for leak_type in LeakType:
        typed = [l for l in leaks if l.type == leak_type]
        if typed:
            by_type[leak_type.value] = LeakTypeSummary(
                count=len(typed),
                revenue=sum(l.estimated_revenue for l in typed),
            )

    return LeakSummary(
        total_leaks=len(leaks),
        critical_count=counts[Severity.CRITICAL],
        high_count=counts[Severity.HIGH],
        medium_count=counts[Severity.MEDIUM],
        low_count=counts[Severity.LOW],
        total_estimated_revenue=sum(l.estimated_revenue for l in leaks),
        by_type=by_type,
    )


def detect_leaks(
    *,
    opportunities: Optional[Sequence[Opportunity]] = None,
    activities: Optional[Sequence[Activity]] = None,
    leads: Optional[Sequence[Lead]] = None,
    contacts: Optional[Sequence[Contact]] = None,
    reps: Optional[Sequence[Rep]] = None,
    now: datetime,
    include_ai: bool = False,
    thresholds: Optional[Dict[str, Any]] = None,
    narrator: Optional[Narrator] = None,
    config: Optional[Dict[str, Any]] = None,
) -> LeakReport:
    """
    Detect revenue leaks across a snapshot.

    Args:
        opportunities, activities, leads, contacts, reps: Canonical records.
        now: Evaluation instant.
        include_ai: Ask `narrator` for a narrative on top of the rules.
        thresholds: Overrides for the `leaks` config section.
        narrator: Callable taking the snapshot lists and returning a dict.
        config: Full config or partial overrides.

    Returns:
        LeakReport with sorted leaks, summary and optional AI insights.
    """
    now = require_now(now)
    opportunities = ensure_records(opportunities, Opportunity, "opportunities")
    activities = ensure_records(activities, Activity, "activities")
    leads = ensure_records(leads, Lead, "leads")
    contacts = ensure_records(contacts, Contact, "contacts")
    reps = ensure_records(reps, Rep, "reps")

    t = dict(resolve_config(config)["leaks"])
    if thresholds:
        t.update(thresholds)

    logger.info(
        "Running leak detection: %d opportunities, %d leads, %d activities, %d reps",
        len(opportunities), len(leads), len(activities), len(reps),
    )
    leaks = LeakDetector(opportunities, activities, leads, reps, now, t).run()
    summary = summarize_leaks(leaks)
    logger.info(
        "Found %d leaks (%d critical), $%s estimated at risk",
        summary.total_leaks, summary.critical_count, _money(summary.total_estimated_revenue),
    )

    ai_insights = None
    if include_ai and narrator is not None:
        try:
            ai_insights = narrator(
                opportunities=opportunities,
                activities=activities,
                leads=leads,
                contacts=contacts,
                now=now,
            )
        except Exception as e:
            logger.warning("AI narrative unavailable: %s", e)
            ai_insights = None
    elif include_ai:
        logger.debug("include_ai set but no narrator supplied")

    return LeakReport(
        leaks=leaks,
        summary=summary,
        ai_insights=ai_insights,
        generated_at=now,
    )
