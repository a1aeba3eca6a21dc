"""Tests for the command-line entry point."""

import json

import pytest

from main import main, parse_args, run

SNAPSHOT = {
    "deals": [
        {"dealId": "D1", "dealname": "Acme Renewal", "amount": 60000, "dealstage": "Negotiation",
         "contactId": "c1", "updatedAt": "2025-02-27T12:00:00Z"},
    ],
    "engagements": [
        {"id": "A1", "type": "call", "dealId": "D1", "contactId": "c1",
         "createdAt": "2025-02-28T12:00:00Z"},
    ],
    "leads": [
        {"id": "L1", "firstName": "Ann", "leadSource": "referral",
         "createdAt": "2025-02-20T12:00:00Z", "assignedTo": "R1"},
    ],
    "users": [{"id": "R1", "name": "Sam"}],
}

NOW = "2025-03-01T12:00:00Z"


@pytest.fixture
def snapshot_file(tmp_path):
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(SNAPSHOT), encoding="utf-8")
    return path


class TestRun:
    def test_full_report(self, snapshot_file):
        report = run(parse_args([str(snapshot_file), "--now", NOW]))
        assert report["summary"]["total_pipeline_value"] == 60000
        assert report["analyzed_at"].startswith("2025-03-01T12:00:00")
        assert report["leak_detection"]["summary"]["total_leaks"] >= 1

    def test_voice_mode(self, snapshot_file):
        report = run(parse_args([str(snapshot_file), "--mode", "voice", "--now", NOW]))
        assert report["text"].startswith("Your pipeline has $60k in active opportunities.")

    def test_quick_mode_with_profile(self, snapshot_file):
        report = run(parse_args([str(snapshot_file), "--mode", "quick", "--now", NOW,
                                 "--profile", "enterprise"]))
        assert report["top_deal"]["deal_id"] == "D1"


class TestMain:
    def test_writes_output_file(self, snapshot_file, tmp_path):
        out = tmp_path / "report.json"
        assert main([str(snapshot_file), "--now", NOW, "--output", str(out)]) == 0
        assert json.loads(out.read_text(encoding="utf-8"))["summary"]["health_score"] <= 100

    def test_missing_file(self, tmp_path):
        assert main([str(tmp_path / "missing.json"), "--now", NOW]) == 2

    def test_bad_profile(self, snapshot_file):
        assert main([str(snapshot_file), "--now", NOW, "--profile", "nope"]) == 1

    def test_bad_now(self, snapshot_file):
        assert main([str(snapshot_file), "--now", "whenever"]) == 1
