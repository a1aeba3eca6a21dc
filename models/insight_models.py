"""
Pipeline Pulse — Engine Output Models
=======================================

Leaks, scores, priorities, actions and the report shapes built from them.
All outputs are created fresh on every run and serialize with
`model_dump(mode="json")`.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ─── Enumerations ───────────────────────────────────────────

class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class Urgency(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    TODAY = "TODAY"
    THIS_WEEK = "THIS_WEEK"
    SCHEDULED = "SCHEDULED"


class LeakType(str, Enum):
    STALE_OPPORTUNITY = "STALE_OPPORTUNITY"
    UNTOUCHED_LEAD = "UNTOUCHED_LEAD"
    SLOW_RESPONSE = "SLOW_RESPONSE"
    ABANDONED_DEAL = "ABANDONED_DEAL"
    MISSING_FOLLOW_UP = "MISSING_FOLLOW_UP"
    NO_ACTIVITY_REP = "NO_ACTIVITY_REP"
    UNASSIGNED_LEAD = "UNASSIGNED_LEAD"
    DEAD_PIPELINE = "DEAD_PIPELINE"
    LOST_WITHOUT_REASON = "LOST_WITHOUT_REASON"
    HIGH_VALUE_AT_RISK = "HIGH_VALUE_AT_RISK"


class ActionType(str, Enum):
    CALL_HOT_LEAD = "CALL_HOT_LEAD"
    RESCUE_DEAL = "RESCUE_DEAL"
    CLOSE_DEAL = "CLOSE_DEAL"
    FIX_LEAK = "FIX_LEAK"
    FOLLOW_UP = "FOLLOW_UP"
    WORK_LEAD = "WORK_LEAD"


class InsightType(str, Enum):
    OPPORTUNITY = "OPPORTUNITY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    CAPACITY = "CAPACITY"


class ValidationStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    HOLD = "HOLD"


# ─── Leak Detection ─────────────────────────────────────────

class Leak(BaseModel):
    """One detected revenue leak."""
    id: str
    type: LeakType
    severity: Severity
    title: str
    description: str
    recommended_action: str
    impacted_count: int = 1
    estimated_revenue: float = 0
    related_ids: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class LeakTypeSummary(BaseModel):
    count: int = 0
    revenue: float = 0


class LeakSummary(BaseModel):
    total_leaks: int = 0
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    total_estimated_revenue: float = 0
    by_type: Dict[str, LeakTypeSummary] = Field(default_factory=dict)


class LeakReport(BaseModel):
    leaks: List[Leak] = Field(default_factory=list)
    summary: LeakSummary = Field(default_factory=LeakSummary)
    ai_insights: Optional[Dict[str, Any]] = None
    generated_at: datetime


class RepKPI(BaseModel):
    """Per-rep performance snapshot."""
    rep_id: str
    rep_name: str
    total_opportunities: int = 0
    open_opportunities: int = 0
    won_opportunities: int = 0
    lost_opportunities: int = 0
    win_rate: float = 0
    total_revenue: float = 0
    avg_deal_size: int = 0
    avg_days_to_close: float = 0
    activities_this_week: int = 0
    activities_last_week: int = 0
    activity_trend: int = 0
    response_time: float = 0
    stale_deals: int = 0


# ─── Lead Scoring ───────────────────────────────────────────

class LeadScoreBreakdown(BaseModel):
    source: int = 0
    engagement: int = 0
    recency: int = 0
    fit: int = 0
    intent: int = 0
    total: int = 0


class LeadSignals(BaseModel):
    source: str = "unknown"
    activity_types: List[str] = Field(default_factory=list)
    days_since_last_activity: Optional[int] = None
    has_email: bool = False
    has_phone: bool = False


class Recommendation(BaseModel):
    action: str
    message: str
    tactic: Optional[str] = None


class LeadScore(BaseModel):
    lead_id: str
    lead_name: str = ""
    score: int
    grade: str
    tier: str
    priority: str
    breakdown: LeadScoreBreakdown
    signals: LeadSignals
    recommendation: Recommendation
    rank: int = 0
    scored_at: datetime


class LeadScoringSummary(BaseModel):
    total: int = 0
    hot: int = 0
    warm: int = 0
    cold: int = 0
    dead: int = 0
    high_priority: int = 0
    medium_priority: int = 0
    low_priority: int = 0
    avg_score: int = 0
    grade_distribution: Dict[str, int] = Field(default_factory=dict)


class LeadScoringResult(BaseModel):
    leads: List[LeadScore] = Field(default_factory=list)
    summary: LeadScoringSummary = Field(default_factory=LeadScoringSummary)
    scored_at: datetime


# ─── Deal Prioritization ────────────────────────────────────

class DealSubScores(BaseModel):
    value: int = 0
    probability: int = 0
    velocity: int = 0
    decay: int = 0
    effort: int = 0


class DealPriority(BaseModel):
    deal_id: str
    deal_name: str
    value: float
    assigned_to: Optional[str] = None
    priority_score: int
    priority_tier: str
    expected_value: int
    scores: DealSubScores
    urgency: Urgency
    recommendation: Recommendation
    needs_attention: bool = False
    rank: int = 0
    scored_at: datetime


class FocusItem(BaseModel):
    rank: int
    name: str
    value: float
    urgency: Urgency
    action: str


class DealPrioritizationSummary(BaseModel):
    total_deals: int = 0
    total_pipeline_value: float = 0
    weighted_pipeline_value: float = 0
    avg_priority_score: int = 0
    urgent_count: int = 0
    needs_attention_count: int = 0
    priority_distribution: Dict[str, int] = Field(default_factory=dict)
    top_deal: Optional[DealPriority] = None


class DealPrioritizationResult(BaseModel):
    deals: List[DealPriority] = Field(default_factory=list)
    summary: DealPrioritizationSummary = Field(default_factory=DealPrioritizationSummary)
    focus_list: List[FocusItem] = Field(default_factory=list)
    scored_at: datetime


# ─── Actions ────────────────────────────────────────────────

class Action(BaseModel):
    id: str
    type: ActionType
    priority: int
    urgency: Urgency
    title: str
    description: str
    estimated_revenue: float = 0
    time_to_execute: str = "10 min"
    related_id: Optional[str] = None


class NextBestAction(BaseModel):
    """The head of the action queue, or the healthy-pipeline sentinel."""
    action: Optional[Action] = None
    message: str
    suggestion: Optional[str] = None
    revenue: float = 0
    urgency: Optional[Urgency] = None
    time_required: Optional[str] = None


class ActionSummary(BaseModel):
    total_actions: int = 0
    immediate_count: int = 0
    today_count: int = 0
    total_potential_revenue: float = 0
    estimated_time_to_complete: str = "0 min"


class ActionsByUrgency(BaseModel):
    immediate: List[Action] = Field(default_factory=list)
    today: List[Action] = Field(default_factory=list)
    this_week: List[Action] = Field(default_factory=list)
    scheduled: List[Action] = Field(default_factory=list)


class ActionPlan(BaseModel):
    actions: List[Action] = Field(default_factory=list)
    next_best_action: NextBestAction
    summary: ActionSummary = Field(default_factory=ActionSummary)
    by_urgency: ActionsByUrgency = Field(default_factory=ActionsByUrgency)
    generated_at: datetime


# ─── Reports ────────────────────────────────────────────────

class Insight(BaseModel):
    type: InsightType
    message: str


class ExecutiveSummary(BaseModel):
    health_score: int = 100
    total_pipeline_value: float = 0
    weighted_pipeline_value: float = 0
    revenue_at_risk: float = 0
    leak_count: int = 0
    critical_issues: int = 0
    actionable_items: int = 0
    wasted_effort_ratio: float = 0


class AnalysisReport(BaseModel):
    summary: ExecutiveSummary
    next_best_action: NextBestAction
    focus_list: List[Action] = Field(default_factory=list)
    lead_scoring: LeadScoringResult
    deal_prioritization: DealPrioritizationResult
    leak_detection: LeakReport
    action_plan: ActionPlan
    rep_kpis: List[RepKPI] = Field(default_factory=list)
    ai_insights: Optional[Dict[str, Any]] = None
    insights: List[Insight] = Field(default_factory=list)
    analyzed_at: datetime


class QuickAnalysis(BaseModel):
    hot_leads: int = 0
    top_deal: Optional[DealPriority] = None
    pipeline_value: float = 0
    next_action: Optional[Action] = None
    message: str
    analyzed_at: datetime


class VoiceSummary(BaseModel):
    text: str
    data: QuickAnalysis
    generated_at: datetime


# ─── Outreach Validation ────────────────────────────────────

class OutreachValidation(BaseModel):
    contact_id: str
    status: ValidationStatus
    failures: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    recommended_action: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class BatchValidation(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    held: int = 0
    details: List[OutreachValidation] = Field(default_factory=list)
