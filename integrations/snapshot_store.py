"""
Pipeline Pulse — Snapshot Store
=================================

In-memory ingestion buffer for webhook-style sources (Zapier, Make, n8n,
direct POSTs). Raw payloads are normalized on the way in; the engines
only ever see the immutable PipelineSnapshot returned by `snapshot()`.

Usage:
    store = SnapshotStore()
    store.ingest(payload, mode="replace")
    report = analyze(store.snapshot(), now=now)
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from analytics.lib.errors import InvalidInputError
from analytics.lib.logger import setup_logger
from analytics.normalizer import COLLECTION_ALIASES, normalize_payload
from models.crm_models import PipelineSnapshot

logger = setup_logger("snapshot_store")

INGEST_MODES = ("replace", "append")
COLLECTIONS = tuple(COLLECTION_ALIASES)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotStore:
    """
    Holds normalized CRM records between ingestion and analysis.

    Not thread-safe; wrap calls in a lock when shared across requests.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._data: Dict[str, List[Any]] = {name: [] for name in COLLECTIONS}
        self.last_updated: Optional[datetime] = None

    def replace(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Overwrite each collection present in the payload."""
        return self.ingest(payload, mode="replace")

    def append(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Add to each collection present in the payload."""
        return self.ingest(payload, mode="append")

    def ingest(self, payload: Dict[str, Any], mode: str = "replace") -> Dict[str, Any]:
        """
        Normalize and store a payload.

        Collections absent from the payload are left untouched in both
        modes.

        Returns:
            Dict with per-collection ingested counts and the timestamp.
        """
        if mode not in INGEST_MODES:
            raise InvalidInputError(
                f"Unknown ingest mode '{mode}'. Use one of {INGEST_MODES}", argument="mode",
            )
        normalized = normalize_payload(payload)

        for name, records in normalized.items():
            if mode == "replace":
                self._data[name] = list(records)
            else:
                self._data[name].extend(records)

        self.last_updated = self._clock()
        ingested = {name: len(normalized.get(name, [])) for name in COLLECTIONS}
        logger.info("Ingested (%s): %s", mode, ingested)
        return {
            "success": True,
            "ingested": ingested,
            "timestamp": self.last_updated.isoformat(),
        }

    def clear(self) -> Dict[str, Any]:
        self._data = {name: [] for name in COLLECTIONS}
        self.last_updated = None
        logger.info("Snapshot store cleared")
        return {"success": True, "message": "All data cleared"}

    def status(self) -> Dict[str, Any]:
        stats = {name: len(records) for name, records in self._data.items()}
        stats["last_updated"] = self.last_updated.isoformat() if self.last_updated else None
        return {
            "connected": True,
            "message": "Snapshot store ready to receive data",
            "data_stats": stats,
        }

    def snapshot(self) -> PipelineSnapshot:
        """Immutable copy of everything stored so far."""
        return PipelineSnapshot(**{name: list(records) for name, records in self._data.items()})
