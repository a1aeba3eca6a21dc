"""
Pipeline Pulse — Configuration
================================

Every weight, threshold, keyword table and tier boundary used by the
engines lives in DEFAULT_CONFIG. Scoring variants are named profiles in
configs/scoring_profiles.yaml that are deep-merged over the defaults.

Keyword tables are ordered lists of [patterns, value] rows: the first row
with a pattern that occurs in the lower-cased text wins. Step tables are
ordered lists of [bound, points] rows.

Usage:
    from analytics.lib.config import load_config
    config = load_config(profile="outbound")
    config["lead_scoring"]["budgets"]["intent"]
"""
from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from analytics.lib.errors import ConfigError
from analytics.lib.logger import setup_logger

logger = setup_logger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
PROFILES_PATH = PROJECT_ROOT / "configs" / "scoring_profiles.yaml"

DEFAULT_PROFILE = "default"


class ResolvedConfig(dict):
    """A merged and validated config; resolve_config passes it through as is."""


# ---------------------------------------------------------------------------
# Default configuration
# ---------------------------------------------------------------------------
DEFAULT_CONFIG: Dict[str, Any] = {
    "leaks": {
        "stale_days": 30,
        "response_hours": 24,
        "high_value_deal": 10_000,
        "critical_value_deal": 50_000,
        "min_weekly_activities": 10,
        "untouched_lead_days": 1,
        "untouched_lead_high_days": 7,
        "untouched_lead_revenue": 5_000,
        "slow_response_high_hours": 72,
        "abandoned_window_days": 90,
        "abandoned_high_value": 100_000,
        "abandoned_recovery_rate": 0.1,
        "follow_up_min_days": 7,
        "rep_window_days": 30,
        "rep_high_risk_value": 50_000,
        "unassigned_high_count": 10,
        "unassigned_lead_revenue": 3_000,
        "dead_pipeline_days": 14,
        "dead_pipeline_min_deals": 3,
        "dead_pipeline_high_value": 100_000,
        "at_risk_inactive_days": 7,
        "lost_reason_placeholders": ["", "unknown"],
    },
    "lead_scoring": {
        "budgets": {
            "source": 25,
            "engagement": 30,
            "recency": 25,
            "fit": 20,
            "intent": 0,
        },
        "source_weights": {
            "referral": 95,
            "demo_request": 90,
            "inbound_call": 85,
            "pricing_page": 80,
            "contact_form": 75,
            "webinar": 70,
            "content_download": 60,
            "website": 50,
            "trade_show": 45,
            "cold_outbound": 30,
            "purchased_list": 20,
            "unknown": 40,
        },
        "source_keywords": [
            [["referral", "refer"], "referral"],
            [["demo"], "demo_request"],
            [["inbound", "phone"], "inbound_call"],
            [["pricing"], "pricing_page"],
            [["contact", "form"], "contact_form"],
            [["webinar", "event"], "webinar"],
            [["download", "content", "ebook"], "content_download"],
            [["website", "web", "organic"], "website"],
            [["trade", "show", "conference"], "trade_show"],
            [["cold", "outbound"], "cold_outbound"],
            [["list", "purchased"], "purchased_list"],
        ],
        # [activity type, outcome or null, points, signal]; first match wins.
        "engagement_rules": [
            ["meeting", "completed", 30, "meeting_completed"],
            ["meeting", None, 25, "meeting_scheduled"],
            ["call", "connected", 20, "call_connected"],
            ["email", "replied", 15, "email_replied"],
            ["demo", None, 30, "demo_completed"],
            ["email", None, 5, "email_opened"],
        ],
        "engagement_floor": 5,
        "recency_steps": [[1, 25], [3, 22], [7, 18], [14, 14], [30, 10], [60, 5]],
        "recency_floor": 2,
        "fit_points": {
            "email": 4,
            "phone": 3,
            "company": 4,
            "title": 3,
            "budget": 3,
            "timeline": 3,
        },
        "intent_points": {
            "proposal_viewed": 20,
            "pricing_discussed": 25,
            "link_clicked": 10,
        },
        "tiers": [
            [80, "A", "HOT"],
            [65, "B", "WARM"],
            [50, "C", "COLD"],
        ],
        "default_tier": ["D", "DEAD"],
        "priority": {"high": 70, "medium": 50},
        "low_engagement_max": 10,
        "low_fit_max": 8,
        "stale_days": 30,
        # Evaluated in order; first row whose tier and condition match wins.
        "recommendations": [
            ["HOT", "low_engagement", "CALL_NOW",
             "High-intent lead with little contact so far. Call within 5 minutes."],
            ["HOT", "default", "CLOSE_MEETING",
             "Hot lead. Book a meeting today and move to opportunity."],
            ["WARM", "stale", "RE_ENGAGE",
             "Warm lead has gone quiet. Send a personal re-engagement email and call."],
            ["WARM", "default", "NURTURE_ACTIVE",
             "Warm lead. Start an outreach sequence this week."],
            ["COLD", "low_fit", "ENRICH",
             "Profile is incomplete. Enrich company, title and budget before outreach."],
            ["COLD", "default", "NURTURE",
             "Add to a nurture sequence and revisit next month."],
            ["DEAD", "low_fit", "DISQUALIFY",
             "Low fit and no engagement. Disqualify or recycle."],
            ["DEAD", "default", "RECYCLE",
             "Move to long-term nurture."],
        ],
    },
    "deal_prioritization": {
        "weights": {
            "value": 30,
            "probability": 25,
            "velocity": 20,
            "decay": 15,
            "effort": 10,
        },
        "value_steps": [
            [500_000, 100], [100_000, 85], [50_000, 70], [25_000, 60],
            [10_000, 50], [5_000, 40], [1_000, 30],
        ],
        "value_small": 20,
        "value_none": 10,
        "stage_probability": [
            [["closed"], 100],
            [["contract"], 90],
            [["negotiation"], 80],
            [["proposal"], 70],
            [["demo"], 60],
            [["qualified"], 50],
            [["discovery"], 40],
            [["lead"], 25],
            [["new"], 20],
        ],
        "probability_base": 50,
        "activity_bonus": [[5, 10], [3, 5]],
        "contact_bonus": [[3, 10], [2, 5]],
        "velocity_no_activity": 20,
        "velocity_recency": [[1, 50], [3, 40], [7, 25], [14, 10]],
        "velocity_window_days": 14,
        "velocity_frequency": [[5, 30], [3, 20], [1, 10]],
        "stage_change_bonus": 20,
        "decay_inactivity": [[30, 50], [14, 35], [7, 20], [3, 10]],
        "decay_no_activity_days": 999,
        "decay_high_value": 50_000,
        "decay_high_value_days": 7,
        "decay_high_value_bonus": 25,
        "decay_stage_default_days": 30,
        "decay_stage": [[21, 25], [14, 15]],
        "effort_base": 50,
        "effort_activity": [[10, 25], [5, 15]],
        "effort_stage": [
            [["contract", "negotiation"], 25],
            [["proposal"], 15],
            [["demo"], 5],
        ],
        "urgency": {"immediate": 70, "today": 50, "this_week": 30, "stalled_velocity": 20},
        "recommendation_thresholds": {"rescue_decay": 70, "accelerate_velocity": 30, "close_probability": 70},
        "recommendations": {
            "RESCUE": ["Deal going cold. Immediate outreach required.",
                       "Call + email same day. Offer meeting or value-add."],
            "ACCELERATE": ["Deal stalled. Create urgency.",
                           "Propose deadline, limited offer, or executive meeting."],
            "CLOSE": ["Deal ready to close. Ask for the business.",
                      "Send contract, schedule signing call, remove final objections."],
            "ADVANCE": ["Move deal forward.",
                        "Schedule next milestone: demo, proposal review, or stakeholder meeting."],
        },
        "priority_tiers": {"high": 70, "medium": 45},
        "needs_attention_value": 10_000,
        "focus_list_size": 5,
    },
    "actions": {
        # category: [priority, urgency, cap, time_to_execute]
        "categories": {
            "CALL_HOT_LEAD": [100, "IMMEDIATE", 3, "5 min"],
            "RESCUE_DEAL": [95, "IMMEDIATE", 3, "15 min"],
            "CLOSE_DEAL": [90, "TODAY", 3, "30 min"],
            "FIX_LEAK": [85, "TODAY", 2, "1 hour"],
            "FOLLOW_UP": [70, "TODAY", 5, "10 min"],
            "WORK_LEAD": [50, "THIS_WEEK", 3, "10 min"],
        },
        "hot_lead_revenue": 5_000,
        "warm_lead_revenue": 3_000,
        "close_probability": 70,
        "follow_up_decay": [30, 70],
        "default_time": "10 min",
        "healthy_message": "No immediate actions required. Pipeline is healthy.",
        "healthy_suggestion": "Focus on prospecting to build pipeline.",
    },
    "insights": {
        "dead_lead_ratio": 0.3,
        "stalled_velocity": 20,
        "capacity_immediate": 5,
        "wasted_effort_window_days": 30,
        "wasted_effort_touches": 5,
        "wasted_effort_warning": 0.25,
        "penalties": {"CRITICAL": 25, "WARNING": 10, "CAPACITY": 5},
        "focus_list_size": 5,
    },
    "rep_kpis": {
        "stale_days": 30,
    },
    "validation": {
        "review_window_days": 7,
        "complaint_window_days": 30,
        "duplicate_window_hours": 24,
        "complaint_subject_keyword": "issue",
        "outreach_activity_types": ["email", "sms"],
    },
}


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge `override` into a copy of `base`. Lists are replaced."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_profiles(path: str | Path | None = None) -> Dict[str, Any]:
    """Read the profile file. A missing default file yields no profiles."""
    target = Path(path) if path else PROFILES_PATH
    if not target.exists():
        if path:
            raise ConfigError(f"Config file not found: {target}", config_path=str(target))
        return {}
    try:
        with open(target, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read config: {e}", config_path=str(target)) from e

    profiles = data.get("profiles", {})
    if not isinstance(profiles, dict):
        raise ConfigError("`profiles` must be a mapping", config_path=str(target))
    return profiles


def load_config(
    path: str | Path | None = None,
    profile: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build the effective configuration.

    Args:
        path: Profile YAML file. Defaults to PULSE_CONFIG_PATH, then
            configs/scoring_profiles.yaml.
        profile: Profile name. Defaults to PULSE_PROFILE, then "default".
        overrides: Nested dict merged last.

    Returns:
        Validated configuration dict.
    """
    path = path or os.getenv("PULSE_CONFIG_PATH") or None
    profile = profile or os.getenv("PULSE_PROFILE") or DEFAULT_PROFILE

    config = copy.deepcopy(DEFAULT_CONFIG)
    profiles = load_profiles(path)

    if profile in profiles:
        config = deep_merge(config, profiles[profile] or {})
        logger.debug("Applied scoring profile '%s'", profile)
    elif profile != DEFAULT_PROFILE:
        raise ConfigError(
            f"Unknown profile '{profile}'. Available: {sorted(profiles)}",
            config_path=str(path or PROFILES_PATH),
        )

    if overrides:
        config = deep_merge(config, overrides)

    validate_config(config)
    return ResolvedConfig(config)


def resolve_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Engines accept a full config, a partial override dict, or None."""
    if config is None or config is DEFAULT_CONFIG:
        return DEFAULT_CONFIG
    if isinstance(config, ResolvedConfig):
        return config
    merged = ResolvedConfig(deep_merge(DEFAULT_CONFIG, config))
    validate_config(merged)
    return merged


def validate_config(config: Dict[str, Any]) -> None:
    """Raise ConfigError on structurally invalid weight tables."""
    weights = config["deal_prioritization"]["weights"]
    total = sum(weights.values())
    if total != 100:
        raise ConfigError(f"Deal weights must sum to 100, got {total}")

    budgets = config["lead_scoring"]["budgets"]
    if any(v < 0 for v in budgets.values()):
        raise ConfigError("Lead scoring budgets must be non-negative")
    if sum(budgets.values()) != 100:
        raise ConfigError(
            f"Lead scoring budgets must sum to 100, got {sum(budgets.values())}"
        )

    bounds = [row[0] for row in config["lead_scoring"]["tiers"]]
    if bounds != sorted(bounds, reverse=True):
        raise ConfigError("Lead tiers must be ordered from highest bound to lowest")
