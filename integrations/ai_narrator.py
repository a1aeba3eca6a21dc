"""
Pipeline Pulse — AI Leak Narrator
===================================

Optional narrative layer on top of rule-based leak detection. Sends a
compact snapshot digest to Groq or Claude and parses the JSON verdict
(critical issues, quick wins, weekly focus...).

Reads AI_PROVIDER to choose the backend ("groq" default, or "claude").
Provider SDKs are imported lazily so the core runs without them.

Usage:
    from integrations.ai_narrator import LeakNarrator
    report = detect_leaks(..., include_ai=True, narrator=LeakNarrator())
"""
from __future__ import annotations

import json
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from analytics.lib.errors import NarrativeError
from analytics.lib.logger import setup_logger
from analytics.lib.utils import whole_days_since

logger = setup_logger("ai_narrator")


# ─── Response Model ─────────────────────────────────────────

@dataclass
class AIResponse:
    """Standardised response from any AI provider."""
    content: str
    provider: str          # "groq" | "claude"
    model: str
    input_tokens: int
    output_tokens: int
    latency_ms: int


# ─── Provider Config ────────────────────────────────────────

GROQ_MODEL = "llama-3.3-70b-versatile"
CLAUDE_MODEL = "claude-sonnet-4-5-20250929"

DEFAULT_MAX_TOKENS = 2048
DEFAULT_TEMPERATURE = 0.4

SYSTEM_PROMPT = (
    "You are a revenue intelligence analyst for high-ticket sales teams "
    "(dealerships, insurance, B2B). Identify revenue leaks in CRM data. Be specific, "
    "actionable, and tie everything to dollar impact. Be brutally honest."
)

RESPONSE_SHAPE = """Respond with a JSON object containing:
{
  "critical_issues": [
    {"title": "string", "description": "string", "estimated_impact": number,
     "affected_records": number, "urgency": "CRITICAL" | "HIGH" | "MEDIUM", "action": "string"}
  ],
  "rep_performance": {
    "top_performer": {"id": "string", "reason": "string"},
    "needs_attention": {"id": "string", "reason": "string"}
  },
  "quick_wins": [
    {"action": "string", "expected_outcome": "string", "effort": "LOW" | "MEDIUM" | "HIGH"}
  ],
  "weekly_focus": "string - one sentence priority for the week",
  "total_revenue_at_risk": number,
  "health_score": number (0-100)
}"""

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_BARE_JSON = re.compile(r"\{[\s\S]*\}")


# ─── Provider Calls ─────────────────────────────────────────

@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type(NarrativeError),
    reraise=True,
)
def ai_complete(
    system_prompt: str,
    user_prompt: str,
    *,
    provider: str | None = None,
    model: str | None = None,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    temperature: float = DEFAULT_TEMPERATURE,
) -> AIResponse:
    """
    Run one completion against the configured provider.

    Args:
        system_prompt: System-level instructions.
        user_prompt: The user-facing prompt content.
        provider: Force a provider. Defaults to AI_PROVIDER env var.
        model: Force a model. Defaults based on provider.
        max_tokens: Max output tokens.
        temperature: Sampling temperature.
    """
    chosen = (provider or os.getenv("AI_PROVIDER", "groq")).lower()

    if chosen == "claude":
        response = _call_claude(
            system_prompt, user_prompt,
            model=model or CLAUDE_MODEL,
            max_tokens=max_tokens,
            temperature=temperature,
        )
    else:
        response = _call_groq(
            system_prompt, user_prompt,
            model=model or GROQ_MODEL,
            max_tokens=max_tokens,
            temperature=temperature,
        )

    logger.info(
        "AI [%s/%s] tokens=%d+%d latency=%dms",
        response.provider, response.model,
        response.input_tokens, response.output_tokens, response.latency_ms,
    )
    return response


def _call_groq(system_prompt: str, user_prompt: str, *, model: str,
               max_tokens: int, temperature: float) -> AIResponse:
    """Call Groq API (Llama 3.3 70B) in JSON mode."""
    try:
        from groq import Groq
    except ImportError as e:
        raise NarrativeError("groq package not installed (pip install .[ai])", provider="groq") from e

    api_key = os.getenv("GROQ_API_KEY")
    if not api_key:
        raise NarrativeError("GROQ_API_KEY not set", provider="groq")

    client = Groq(api_key=api_key)
    start = time.perf_counter()
    response = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        max_tokens=max_tokens,
        temperature=temperature,
        response_format={"type": "json_object"},
    )
    latency_ms = int((time.perf_counter() - start) * 1000)

    usage = response.usage
    return AIResponse(
        content=response.choices[0].message.content or "",
        provider="groq",
        model=model,
        input_tokens=usage.prompt_tokens if usage else 0,
        output_tokens=usage.completion_tokens if usage else 0,
        latency_ms=latency_ms,
    )


def _call_claude(system_prompt: str, user_prompt: str, *, model: str,
                 max_tokens: int, temperature: float) -> AIResponse:
    """Call Anthropic Claude API."""
    try:
        import anthropic
    except ImportError as e:
        raise NarrativeError(
            "anthropic package not installed (pip install .[ai])", provider="claude",
        ) from e

    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise NarrativeError("ANTHROPIC_API_KEY not set", provider="claude")

    client = anthropic.Anthropic(api_key=api_key)
    start = time.perf_counter()
    response = client.messages.create(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        system=system_prompt,
        messages=[{"role": "user", "content": user_prompt}],
    )
    latency_ms = int((time.perf_counter() - start) * 1000)

    content = "".join(block.text for block in response.content if hasattr(block, "text"))
    return AIResponse(
        content=content,
        provider="claude",
        model=model,
        input_tokens=response.usage.input_tokens,
        output_tokens=response.usage.output_tokens,
        latency_ms=latency_ms,
    )


# ─── Prompt & Parsing ───────────────────────────────────────

def build_prompt(
    *,
    opportunities: Sequence[Any],
    activities: Sequence[Any],
    leads: Sequence[Any],
    now: datetime,
    sample_size: int = 20,
) -> str:
    """Digest of the snapshot: headline counts plus small record samples."""
    open_opps = [o for o in opportunities if o.status == "open"]
    pipeline = sum(o.value for o in open_opps)

    opp_sample = [
        {
            "id": o.id,
            "name": o.name,
            "value": o.value,
            "status": o.status,
            "stage": o.stage,
            "assigned_to": o.assigned_to,
            "days_since_activity": whole_days_since(o.last_activity_at, now),
            "created_days_ago": whole_days_since(o.created_at, now),
        }
        for o in opportunities[:sample_size]
    ]
    activity_sample = [
        {
            "type": a.type,
            "outcome": a.outcome,
            "performed_by": a.performed_by,
            "days_ago": whole_days_since(a.created_at, now),
        }
        for a in activities[: sample_size + 10]
    ]
    lead_sample = [
        {
            "id": l.id,
            "status": l.status,
            "assigned_to": l.assigned_to,
            "source": l.lead_source,
            "days_since_created": whole_days_since(l.created_at, now),
            "contacted": l.first_contacted_at is not None,
        }
        for l in leads[:sample_size]
    ]

    return "\n".join([
        "DATA SUMMARY:",
        f"- Total Opportunities: {len(opportunities)}",
        f"- Open Opportunities: {len(open_opps)}",
        f"- Total Pipeline Value: ${pipeline:,.0f}",
        f"- Total Activities: {len(activities)}",
        f"- Total Leads: {len(leads)}",
        f"- New Leads (no contact): {sum(1 for l in leads if l.status == 'new')}",
        "",
        f"OPPORTUNITIES (sample of {len(opp_sample)}):",
        json.dumps(opp_sample, indent=2),
        "",
        f"RECENT ACTIVITIES (sample of {len(activity_sample)}):",
        json.dumps(activity_sample, indent=2),
        "",
        f"LEADS (sample of {len(lead_sample)}):",
        json.dumps(lead_sample, indent=2),
        "",
        RESPONSE_SHAPE,
    ])


def parse_json_reply(text: str) -> Dict[str, Any]:
    """Pull a JSON object out of a reply, fenced or bare."""
    match = _FENCED_JSON.search(text) or _BARE_JSON.search(text)
    if not match:
        raise NarrativeError("AI reply contained no JSON object")
    raw = match.group(1) if match.re is _FENCED_JSON else match.group(0)
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise NarrativeError(f"Could not parse AI reply as JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise NarrativeError("AI reply JSON is not an object")
    return parsed


# ─── Narrator ───────────────────────────────────────────────

class LeakNarrator:
    """
    Callable handed to detect_leaks(narrator=...).

    Returns the parsed narrative dict; any provider or parsing failure
    raises, and detect_leaks degrades to ai_insights=None.
    """

    def __init__(self, provider: Optional[str] = None, model: Optional[str] = None,
                 sample_size: int = 20):
        self.provider = provider
        self.model = model
        self.sample_size = sample_size

    def __call__(self, *, opportunities, activities, leads, contacts=None, now: datetime,
                 **_: Any) -> Dict[str, Any]:
        prompt = build_prompt(
            opportunities=opportunities,
            activities=activities,
            leads=leads,
            now=now,
            sample_size=self.sample_size,
        )
        response = ai_complete(
            SYSTEM_PROMPT, prompt, provider=self.provider, model=self.model,
        )
        insights = parse_json_reply(response.content)
        insights.setdefault("provider", response.provider)
        insights.setdefault("model", response.model)
        return insights
