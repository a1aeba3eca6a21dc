"""Shared fixtures: a fixed clock and small record builders."""

from datetime import datetime, timedelta, timezone

import pytest

from models.crm_models import Activity, Lead, Opportunity, Rep

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def ago():
    """ago(days=3) -> NOW minus three days."""
    def _ago(days: float = 0, hours: float = 0) -> datetime:
        return NOW - timedelta(days=days, hours=hours)
    return _ago


@pytest.fixture
def make_lead():
    def _make(id="L1", **fields) -> Lead:
        fields.setdefault("created_at", NOW - timedelta(days=1))
        return Lead(id=id, **fields)
    return _make


@pytest.fixture
def make_deal():
    def _make(id="D1", **fields) -> Opportunity:
        fields.setdefault("name", f"Deal {id}")
        return Opportunity(id=id, **fields)
    return _make


@pytest.fixture
def make_activity():
    counter = {"n": 0}

    def _make(**fields) -> Activity:
        counter["n"] += 1
        fields.setdefault("id", f"A{counter['n']}")
        return Activity(**fields)
    return _make


@pytest.fixture
def make_rep():
    def _make(id="R1", **fields) -> Rep:
        fields.setdefault("name", f"Rep {id}")
        return Rep(id=id, **fields)
    return _make
