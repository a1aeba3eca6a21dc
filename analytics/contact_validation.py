"""
Pipeline Pulse — Outreach Contact Validation
==============================================

Gate run before any outbound touch (SMS, email, follow-up, review
request). A request ends in one of three states:
  FAIL  a hard failure; do not send
  HOLD  warnings only; needs a human look
  PASS  clear to send

Functions:
  validate_outreach()  - validate one request
  validate_batch()     - validate many requests and tally the outcomes
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from analytics.lib.config import resolve_config
from analytics.lib.errors import InvalidInputError
from analytics.lib.logger import setup_logger
from analytics.lib.utils import SECONDS_PER_DAY, SECONDS_PER_HOUR, require_now
from models.crm_models import Activity, PipelineSnapshot
from models.insight_models import BatchValidation, OutreachValidation, ValidationStatus

logger = setup_logger(__name__)

PHONE_CHANNELS = ("sms", "review_request")
EMAIL_CHANNELS = ("email", "follow_up")

FAILURE_ACTIONS = {
    "CONTACT_NOT_FOUND": "Verify contact ID. Record may have been deleted.",
    "MISSING_PHONE": "Add phone number to contact record before SMS outreach.",
    "MISSING_EMAIL": "Add email to contact record before email outreach.",
    "NO_RECENT_INTERACTION": (
        "No interaction in last 7 days. Review requests should follow positive interactions."
    ),
    "NO_PRIOR_INTERACTION": "No prior contact. Introduce yourself before follow-up.",
    "NEGATIVE_LAST_INTERACTION": (
        "Last interaction was negative. Resolve issues before requesting review."
    ),
    "RECENT_COMPLAINT": "Recent complaint on file. Address before any promotional outreach.",
    "OPTED_OUT": "Contact has opted out of communications. Do not send.",
}

PASS_ACTION = "Outreach approved. Proceed with send."
HOLD_ACTION = "Review warnings before proceeding. Manager approval recommended."


def _age_seconds(activity: Activity, now: datetime) -> Optional[float]:
    if activity.created_at is None:
        return None
    return (now - activity.created_at).total_seconds()


def _within(activity: Activity, now: datetime, seconds: float) -> bool:
    age = _age_seconds(activity, now)
    return age is not None and age < seconds


def validate_outreach(
    *,
    contact_id: str,
    outreach_type: str,
    snapshot: PipelineSnapshot,
    now: datetime,
    rep_id: Optional[str] = None,
    interaction_id: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
) -> OutreachValidation:
    """
    Validate one outreach request against the snapshot.

    Args:
        contact_id: Target contact.
        outreach_type: sms, email, follow_up, review_request, win_back...
        snapshot: Normalized CRM snapshot.
        now: Evaluation instant.
        rep_id: Sending rep; checked for an existing relationship.
        interaction_id: Triggering interaction, echoed in metadata.
    """
    now = require_now(now)
    if not isinstance(snapshot, PipelineSnapshot):
        raise InvalidInputError("snapshot must be a PipelineSnapshot", argument="snapshot")
    cfg = resolve_config(config)["validation"]
    outreach_type = (outreach_type or "").lower()

    contact = next((c for c in snapshot.contacts if c.id == contact_id), None)
    if contact is None:
        return OutreachValidation(
            contact_id=contact_id,
            status=ValidationStatus.FAIL,
            failures=["CONTACT_NOT_FOUND"],
            recommended_action="Contact does not exist in CRM. Do not send outreach.",
            metadata={"contact_id": contact_id},
        )

    failures: List[str] = []
    warnings: List[str] = []
    history = [a for a in snapshot.activities if a.contact_id == contact_id]

    # Contact info
    if outreach_type in PHONE_CHANNELS and not contact.phone:
        failures.append("MISSING_PHONE")
    if outreach_type in EMAIL_CHANNELS and not contact.email:
        failures.append("MISSING_EMAIL")

    # Interaction history
    if outreach_type == "review_request":
        window = cfg["review_window_days"] * SECONDS_PER_DAY
        if not any(_within(a, now, window) for a in history):
            failures.append("NO_RECENT_INTERACTION")
    if outreach_type == "follow_up" and not history:
        failures.append("NO_PRIOR_INTERACTION")

    # Rep relationship
    if rep_id:
        touched = any(a.performed_by == rep_id for a in history)
        owns = any(
            o.contact_id == contact_id and o.assigned_to == rep_id
            for o in snapshot.opportunities
        )
        if not touched and not owns:
            warnings.append("REP_NO_RELATIONSHIP")

    # Duplicate outreach
    duplicate_window = cfg["duplicate_window_hours"] * SECONDS_PER_HOUR
    outreach_types = set(cfg["outreach_activity_types"])
    if any(a.type in outreach_types and _within(a, now, duplicate_window) for a in history):
        warnings.append("DUPLICATE_OUTREACH_24H")

    # Sentiment gate
    if outreach_type == "review_request":
        dated = [a for a in history if a.created_at is not None]
        if dated:
            last = max(dated, key=lambda a: a.created_at)
            if last.outcome == "negative":
                failures.append("NEGATIVE_LAST_INTERACTION")

        complaint_window = cfg["complaint_window_days"] * SECONDS_PER_DAY
        keyword = cfg["complaint_subject_keyword"]
        if any(
            _within(a, now, complaint_window)
            and (a.outcome == "complaint" or keyword in (a.subject or "").lower())
            for a in history
        ):
            failures.append("RECENT_COMPLAINT")

    # Contact status
    if contact.status == "do_not_contact" or contact.opted_out:
        failures.append("OPTED_OUT")
    if contact.status == "inactive" and outreach_type != "win_back":
        warnings.append("INACTIVE_CONTACT")

    if failures:
        status = ValidationStatus.FAIL
        action = " ".join(FAILURE_ACTIONS.get(f, f) for f in failures)
    elif warnings:
        status = ValidationStatus.HOLD
        action = HOLD_ACTION
    else:
        status = ValidationStatus.PASS
        action = PASS_ACTION

    return OutreachValidation(
        contact_id=contact_id,
        status=status,
        failures=failures,
        warnings=warnings,
        recommended_action=action,
        metadata={
            "contact_id": contact_id,
            "contact_name": contact.full_name,
            "outreach_type": outreach_type,
            "rep_id": rep_id,
            "interaction_id": interaction_id,
            "validated_at": now.isoformat(),
        },
    )


def validate_batch(
    requests: Sequence[Dict[str, Any]],
    snapshot: PipelineSnapshot,
    now: datetime,
    config: Optional[Dict[str, Any]] = None,
) -> BatchValidation:
    """Validate each {contact_id, outreach_type, rep_id?, interaction_id?} request."""
    if not isinstance(requests, (list, tuple)):
        raise InvalidInputError("requests must be a list", argument="requests")

    result = BatchValidation(total=len(requests))
    for item in requests:
        if not isinstance(item, dict):
            raise InvalidInputError("each request must be a mapping", argument="requests")
        outcome = validate_outreach(
            contact_id=str(item.get("contact_id") or ""),
            outreach_type=item.get("outreach_type"),
            rep_id=item.get("rep_id"),
            interaction_id=item.get("interaction_id"),
            snapshot=snapshot,
            now=now,
            config=config,
        )
        result.details.append(outcome)
        if outcome.status == ValidationStatus.PASS:
            result.passed += 1
        elif outcome.status == ValidationStatus.FAIL:
            result.failed += 1
        else:
            result.held += 1

    logger.info(
        "Validated %d outreach requests: %d passed, %d failed, %d held",
        result.total, result.passed, result.failed, result.held,
    )
    return result
