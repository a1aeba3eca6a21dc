"""
Utility functions for Pipeline Pulse.
Timestamp parsing, safe numeric coercion, rounding, keyword tables and atomic writes.

Usage:
    from analytics.lib.utils import parse_timestamp, days_since, round_half_up
"""
from __future__ import annotations

import hashlib
import json
import math
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from dateutil import parser as date_parser
from pydantic import BaseModel

from analytics.lib.errors import InvalidInputError
from analytics.lib.logger import setup_logger

logger = setup_logger(__name__)

SECONDS_PER_DAY = 86_400
SECONDS_PER_HOUR = 3_600

# Epoch values above this are treated as milliseconds.
_EPOCH_MS_CUTOFF = 100_000_000_000

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp into a timezone-aware UTC datetime.

    Accepts datetimes, ISO-8601 strings, human formats understood by
    dateutil, and epoch seconds or milliseconds. Returns None when the
    value is empty or cannot be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        seconds = value / 1000 if abs(value) >= _EPOCH_MS_CUTOFF else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit() and len(text) >= 10:
            return parse_timestamp(int(text))
        try:
            dt = date_parser.isoparse(text)
        except (ValueError, OverflowError):
            try:
                dt = date_parser.parse(text)
            except (ValueError, OverflowError, TypeError):
                return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def require_now(now: Any) -> datetime:
    """Validate the evaluation instant passed to an engine."""
    if isinstance(now, datetime):
        return now if now.tzinfo else now.replace(tzinfo=timezone.utc)
    if isinstance(now, str):
        parsed = parse_timestamp(now)
        if parsed is not None:
            return parsed
    raise InvalidInputError(f"`now` must be a timestamp, got {now!r}", argument="now")


def days_since(then: Optional[datetime], now: datetime) -> Optional[float]:
    """Fractional days between two instants, or None when `then` is unknown."""
    if then is None:
        return None
    return (now - then).total_seconds() / SECONDS_PER_DAY


def whole_days_since(then: Optional[datetime], now: datetime) -> Optional[int]:
    """Floored whole days between two instants."""
    days = days_since(then, now)
    if days is None:
        return None
    return math.floor(days)


def hours_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return (end - start).total_seconds() / SECONDS_PER_HOUR


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def safe_float(val, default: float = 0.0) -> float:
    """Safely convert a value to a finite float."""
    if val is None or isinstance(val, bool):
        return default
    if isinstance(val, str):
        val = val.replace(",", "").replace("$", "").strip()
    try:
        result = float(val)
    except (ValueError, TypeError):
        return default
    if not math.isfinite(result):
        return default
    return result


def safe_div(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide, returning `default` when the denominator is zero."""
    if not denominator:
        return default
    return numerator / denominator


def round_half_up(value: float, ndigits: int = 0) -> float | int:
    """Round halves toward +inf (0.5 -> 1, 2.5 -> 3, -2.5 -> -2), unlike round()."""
    factor = 10 ** ndigits
    rounded = math.floor(value * factor + 0.5) / factor
    if ndigits == 0:
        return int(rounded)
    return rounded


def clamp(value: float, lower: float = 0, upper: float = 100) -> float:
    return max(lower, min(upper, value))


# ---------------------------------------------------------------------------
# Keyword tables
# ---------------------------------------------------------------------------

def slugify(text: Optional[str]) -> str:
    """Lower-case and collapse non-alphanumerics to underscores."""
    return _NON_ALNUM.sub("_", (text or "").lower())


def match_keyword(
    text: Optional[str],
    table: Sequence[Tuple[Iterable[str], str]],
    default: str,
) -> str:
    """
    Return the value of the first (patterns, value) row whose pattern
    occurs as a substring of `text`. Tables are evaluated in order.
    """
    haystack = (text or "").lower()
    if not haystack:
        return default
    for patterns, value in table:
        if any(p in haystack for p in patterns):
            return value
    return default


def step_lookup(value: float, steps: Sequence[Tuple[float, Any]], default: Any) -> Any:
    """
    First row whose bound satisfies `value >= bound` (descending tables).

    Steps are (bound, result) pairs sorted from highest bound to lowest.
    """
    for bound, result in steps:
        if value >= bound:
            return result
    return default


def ceiling_lookup(value: float, steps: Sequence[Tuple[float, Any]], default: Any) -> Any:
    """First row whose bound satisfies `value <= bound` (ascending tables)."""
    for bound, result in steps:
        if value <= bound:
            return result
    return default


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

def clean_phone(phone: Any) -> Optional[str]:
    """Keep digits and a leading '+'."""
    if phone is None:
        return None
    text = str(phone).strip()
    if not text:
        return None
    digits = re.sub(r"\D", "", text)
    if not digits:
        return None
    return f"+{digits}" if text.startswith("+") else digits


def stable_id(prefix: str, raw: Dict[str, Any]) -> str:
    """Deterministic id from record content."""
    payload = json.dumps(raw, sort_keys=True, default=str)
    digest = hashlib.sha1(payload.encode("utf-8")).hexdigest()[:12]
    return f"{prefix}_{digest}"


def coerce_record(item: Dict[str, Any], model: type) -> Any:
    """Validate one mapping into `model`. A missing or blank id becomes a content hash."""
    raw_id = item.get("id")
    if raw_id is None or not str(raw_id).strip():
        item = {**item, "id": stable_id(model.ID_PREFIX, item)}
    return model.model_validate(item)


def ensure_records(value: Any, model: type, argument: str) -> List[Any]:
    """
    Validate a record collection and coerce mappings into `model`.

    A missing collection is treated as empty. Anything that is not a
    list or tuple, or holds elements that are neither mappings nor
    `model` instances, raises InvalidInputError.
    """
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise InvalidInputError(
            f"`{argument}` must be a list, got {type(value).__name__}",
            argument=argument,
        )
    records = []
    for index, item in enumerate(value):
        if isinstance(item, model):
            records.append(item)
        elif isinstance(item, dict):
            records.append(coerce_record(item, model))
        else:
            raise InvalidInputError(
                f"`{argument}[{index}]` must be a mapping or {model.__name__}, "
                f"got {type(item).__name__}",
                argument=argument,
            )
    return records


def ensure_results(value: Any, model: type, argument: str) -> List[Any]:
    """Like ensure_records, for precomputed engine outputs."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise InvalidInputError(
            f"`{argument}` must be a list, got {type(value).__name__}",
            argument=argument,
        )
    for index, item in enumerate(value):
        if not isinstance(item, model):
            raise InvalidInputError(
                f"`{argument}[{index}]` must be {model.__name__}",
                argument=argument,
            )
    return list(value)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

def atomic_write_json(data: Dict | BaseModel, file_path: str | Path, indent: int = 2) -> bool:
    """
    Write JSON data to file atomically using temp file + rename.

    Args:
        data: Dictionary or pydantic model to serialize.
        file_path: Target file path.
        indent: JSON indentation level.

    Returns:
        True if successful, False otherwise.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")

    file_path = Path(file_path)
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=indent, default=str)

        os.replace(temp_path, file_path)
        logger.debug("Atomically wrote JSON to %s", file_path)
        return True

    except (OSError, TypeError, ValueError) as e:
        logger.error("Failed to write JSON to %s: %s", file_path, e)
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                logger.warning("Could not remove temp file %s", temp_path)
        return False
