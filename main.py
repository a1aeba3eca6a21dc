"""
Pipeline Pulse — Entry Point
==============================

Run an analysis over a raw CRM snapshot (JSON with leads, contacts,
opportunities/deals, activities, reps).

Run:
    python main.py data/snapshot.json
    python main.py data/snapshot.json --mode voice --now 2025-03-01T09:00:00Z
    python main.py data/snapshot.json --profile outbound --output data/report.json
"""

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from analytics.insight_engine import analyze, quick_analysis, voice_summary  # noqa: E402
from analytics.lib.config import load_config  # noqa: E402
from analytics.lib.errors import PulseError  # noqa: E402
from analytics.lib.logger import setup_logger  # noqa: E402
from analytics.lib.utils import atomic_write_json, require_now  # noqa: E402
from analytics.normalizer import normalize_snapshot  # noqa: E402

logger = setup_logger("pipeline-pulse")

MODES = ("full", "quick", "voice")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pipeline Pulse revenue leak analysis")
    parser.add_argument("snapshot", help="Path to a raw CRM snapshot JSON file")
    parser.add_argument("--mode", choices=MODES, default="full", help="Report shape")
    parser.add_argument("--now", help="Evaluation instant (ISO-8601). Defaults to the current time")
    parser.add_argument("--profile", help="Scoring profile name (see configs/scoring_profiles.yaml)")
    parser.add_argument("--config", help="Alternative profile YAML file")
    parser.add_argument("--output", help="Write the report here instead of stdout")
    parser.add_argument("--include-ai", action="store_true", help="Add an AI narrative (full mode)")
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> dict:
    path = Path(args.snapshot)
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)

    now = require_now(args.now) if args.now else datetime.now(timezone.utc)
    config = load_config(path=args.config, profile=args.profile)
    snapshot = normalize_snapshot(payload)

    if args.mode == "quick":
        report = quick_analysis(snapshot, now=now, config=config)
    elif args.mode == "voice":
        report = voice_summary(snapshot, now=now, config=config)
    else:
        narrator = None
        if args.include_ai:
            from integrations.ai_narrator import LeakNarrator
            narrator = LeakNarrator()
        report = analyze(
            snapshot, now=now, include_ai=args.include_ai, config=config, narrator=narrator,
        )
    return report.model_dump(mode="json")


def main(argv=None) -> int:
    args = parse_args(argv)
    logger.info("=" * 60)
    logger.info("  PIPELINE PULSE — %s analysis", args.mode)
    logger.info("=" * 60)

    try:
        result = run(args)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Could not read snapshot %s: %s", args.snapshot, e)
        return 2
    except PulseError as e:
        logger.error("%s", e)
        return 1

    if args.output:
        if not atomic_write_json(result, args.output):
            return 1
        logger.info("Report written to %s", args.output)
    else:
        json.dump(result, sys.stdout, indent=2, ensure_ascii=False)
        sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
