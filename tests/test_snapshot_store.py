"""Tests for the in-memory snapshot store."""

from datetime import datetime, timezone

import pytest

from analytics.lib.errors import InvalidInputError
from integrations.snapshot_store import SnapshotStore

FIXED = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return SnapshotStore(clock=lambda: FIXED)


class TestSnapshotStore:
    def test_replace_overwrites_present_collections(self, store):
        store.replace({"leads": [{"id": "L1"}], "deals": [{"id": "D1"}]})
        result = store.replace({"leads": [{"id": "L2"}]})

        snapshot = store.snapshot()
        assert [l.id for l in snapshot.leads] == ["L2"]
        assert [o.id for o in snapshot.opportunities] == ["D1"]
        assert result["ingested"]["leads"] == 1
        assert result["ingested"]["opportunities"] == 0
        assert result["timestamp"] == FIXED.isoformat()

    def test_append_extends(self, store):
        store.append({"activities": [{"id": "A1"}]})
        store.append({"engagements": [{"id": "A2"}]})
        assert [a.id for a in store.snapshot().activities] == ["A1", "A2"]

    def test_status_and_clear(self, store):
        assert store.status()["data_stats"]["last_updated"] is None

        store.ingest({"reps": [{"id": "R1", "name": "Sam"}]})
        stats = store.status()["data_stats"]
        assert stats["reps"] == 1
        assert stats["last_updated"] == FIXED.isoformat()

        store.clear()
        assert store.status()["data_stats"]["reps"] == 0
        assert store.last_updated is None

    def test_snapshot_is_a_copy(self, store):
        store.replace({"leads": [{"id": "L1"}]})
        before = store.snapshot()
        store.append({"leads": [{"id": "L2"}]})
        assert len(before.leads) == 1
        assert len(store.snapshot().leads) == 2

    def test_unknown_mode(self, store):
        with pytest.raises(InvalidInputError):
            store.ingest({"leads": []}, mode="merge")

    def test_bad_payload_leaves_store_untouched(self, store):
        store.replace({"leads": [{"id": "L1"}]})
        with pytest.raises(InvalidInputError):
            store.replace({"leads": "L2"})
        assert [l.id for l in store.snapshot().leads] == ["L1"]
