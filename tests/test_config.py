"""Tests for configuration loading and the shared utilities."""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from analytics.lead_scoring import score_leads
from analytics.lib.config import DEFAULT_CONFIG, deep_merge, load_config, resolve_config
from analytics.lib.errors import ConfigError, InvalidInputError, PulseError
from analytics.lib.utils import (
    atomic_write_json,
    coerce_record,
    ensure_records,
    match_keyword,
    parse_timestamp,
    require_now,
    round_half_up,
    safe_float,
)
from models.crm_models import Lead


class TestLoadConfig:
    def test_default_profile(self):
        config = load_config()
        assert config["deal_prioritization"]["weights"] == DEFAULT_CONFIG["deal_prioritization"]["weights"]
        assert config["lead_scoring"]["budgets"]["intent"] == 0

    def test_outbound_profile(self):
        config = load_config(profile="outbound")
        assert config["lead_scoring"]["budgets"]["intent"] == 15
        assert config["lead_scoring"]["tiers"][0] == [75, "A", "HOT"]
        # Untouched sections keep their defaults.
        assert config["leaks"]["stale_days"] == 30

    def test_enterprise_profile(self):
        config = load_config(profile="enterprise")
        assert config["leaks"]["stale_days"] == 45
        assert config["leaks"]["response_hours"] == 24
        assert config["deal_prioritization"]["weights"]["value"] == 35

    def test_profile_from_env(self):
        with patch.dict("os.environ", {"PULSE_PROFILE": "enterprise"}, clear=False):
            assert load_config()["leaks"]["stale_days"] == 45

    def test_unknown_profile(self):
        with pytest.raises(ConfigError):
            load_config(profile="does-not-exist")

    def test_custom_file(self, tmp_path):
        path = tmp_path / "profiles.yaml"
        path.write_text("profiles:\n  fast:\n    leaks:\n      stale_days: 10\n")
        assert load_config(path=path, profile="fast")["leaks"]["stale_days"] == 10

    def test_missing_custom_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(path=tmp_path / "nope.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("profiles: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(path=path)

    def test_invalid_budgets(self):
        with pytest.raises(ConfigError):
            load_config(overrides={"lead_scoring": {"budgets": {"source": 50}}})

    def test_defaults_not_mutated(self):
        load_config(overrides={"leaks": {"stale_days": 1}})
        assert DEFAULT_CONFIG["leaks"]["stale_days"] == 30


class TestMerging:
    def test_deep_merge_replaces_lists(self):
        merged = deep_merge({"a": {"b": 1, "c": [1, 2]}}, {"a": {"c": [3]}})
        assert merged == {"a": {"b": 1, "c": [3]}}

    def test_resolve_none_is_defaults(self):
        assert resolve_config(None) is DEFAULT_CONFIG

    def test_resolve_partial(self):
        assert resolve_config({"rep_kpis": {"stale_days": 5}})["rep_kpis"]["stale_days"] == 5

    def test_resolved_config_passes_through(self):
        resolved = resolve_config({"rep_kpis": {"stale_days": 5}})
        assert resolve_config(resolved) is resolved
        loaded = load_config(profile="outbound")
        assert resolve_config(loaded) is loaded

    def test_batch_scoring_merges_once(self, make_lead, now):
        leads = [make_lead(f"L{i}") for i in range(10)]
        with patch("analytics.lib.config.deep_merge", wraps=deep_merge) as merge:
            score_leads(leads, [], now, {"lead_scoring": {"stale_days": 10}})
        top_level = [c for c in merge.call_args_list if c.args[0] is DEFAULT_CONFIG]
        assert len(top_level) == 1


class TestErrors:
    def test_codes(self):
        err = InvalidInputError("bad", argument="leads")
        assert isinstance(err, PulseError)
        assert err.code == "INVALID_INPUT"
        assert err.details == {"argument": "leads"}
        assert str(err) == "[INVALID_INPUT] bad"


class TestUtils:
    @pytest.mark.parametrize("value, expected", [
        (0.5, 1),
        (1.5, 2),
        (2.5, 3),
        (-2.5, -2),
        (69.75, 70),
    ])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_round_half_up_digits(self):
        assert round_half_up(66.666, 1) == 66.7

    @pytest.mark.parametrize("value, expected", [
        ("2025-03-01T12:00:00Z", datetime(2025, 3, 1, 12, tzinfo=timezone.utc)),
        ("2025-03-01 12:00", datetime(2025, 3, 1, 12, tzinfo=timezone.utc)),
        (1_740_830_400, datetime(2025, 3, 1, 12, tzinfo=timezone.utc)),
        ("1740830400000", datetime(2025, 3, 1, 12, tzinfo=timezone.utc)),
        ("garbage", None),
        ("", None),
        (None, None),
        (True, None),
    ])
    def test_parse_timestamp(self, value, expected):
        assert parse_timestamp(value) == expected

    def test_require_now(self):
        assert require_now("2025-03-01T12:00:00Z").tzinfo is not None
        with pytest.raises(InvalidInputError):
            require_now(None)

    @pytest.mark.parametrize("value, expected", [
        ("$1,250.50", 1250.5),
        ("abc", 0.0),
        (float("inf"), 0.0),
        (None, 0.0),
        (7, 7.0),
    ])
    def test_safe_float(self, value, expected):
        assert safe_float(value) == expected

    def test_match_keyword_first_row_wins(self):
        table = [(("a",), "first"), (("ab",), "second")]
        assert match_keyword("ABC", table, "none") == "first"
        assert match_keyword("", table, "none") == "none"

    def test_ensure_records(self):
        records = ensure_records([{"id": "x"}, Lead(id="y")], Lead, "leads")
        assert [r.id for r in records] == ["x", "y"]
        assert ensure_records(None, Lead, "leads") == []
        with pytest.raises(InvalidInputError):
            ensure_records([42], Lead, "leads")

    @pytest.mark.parametrize("raw", [{"firstName": "Ann"}, {"id": None, "firstName": "Ann"},
                                     {"id": "  ", "firstName": "Ann"}])
    def test_coerce_record_fills_missing_id(self, raw):
        lead = coerce_record(raw, Lead)
        assert lead.id.startswith("lead_")
        assert coerce_record(dict(raw), Lead).id == lead.id

    def test_atomic_write_json(self, tmp_path):
        target = tmp_path / "out" / "report.json"
        assert atomic_write_json({"ok": True}, target) is True
        assert target.read_text(encoding="utf-8").strip().startswith("{")
        assert not target.with_suffix(".json.tmp").exists()
