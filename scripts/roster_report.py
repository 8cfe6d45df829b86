#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from roster.runtime import configure_logging, env_path
from roster.scheduling.availability import ConflictDetector, summarize_conflicts
from roster.scheduling.distance import DistanceProvider
from roster.scheduling.sequencing import OptimizationScorer
from roster.scheduling.store import InMemoryTripStore
from roster.scheduling.workload import WorkloadAggregator, summarize_workload
from roster.timeparse import parse_date


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Workload, conflict and route-score report for a dataset directory")
    parser.add_argument(
        "--data-dir",
        default=str(env_path("PRIVATE_DATA_DIR", "./data/private")),
        help="Directory holding drivers.csv, trips.csv and optional leave.csv",
    )
    parser.add_argument("--tenant", type=int, default=1)
    parser.add_argument("--start", required=True, help="First date (YYYY-MM-DD)")
    parser.add_argument("--end", required=True, help="Last date (YYYY-MM-DD)")
    parser.add_argument("--skip-scores", action="store_true", help="Skip route optimisation scores")
    parser.add_argument("--out", default=None, help="Write JSON here instead of stdout")
    return parser.parse_args(argv)


def build_report(store: InMemoryTripStore, tenant_id: int, start, end, include_scores: bool = True) -> Dict[str, Any]:
    metrics = WorkloadAggregator(store).metrics(tenant_id, start, end)
    conflicts = ConflictDetector(store).detect(tenant_id, start, end)
    report: Dict[str, Any] = {
        "tenant_id": tenant_id,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "workload": {
            "metrics": [m.model_dump() for m in metrics],
            "summary": summarize_workload(metrics),
        },
        "conflicts": {
            "items": [c.model_dump() for c in conflicts],
            "summary": summarize_conflicts(conflicts),
        },
    }
    if include_scores:
        scores = OptimizationScorer(store, provider=DistanceProvider()).scores_for_range(tenant_id, start, end)
        report["scores"] = [s.model_dump(mode="json", by_alias=True, exclude_none=True) for s in scores]
    return report


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logger = configure_logging("roster_report")

    data_dir = Path(args.data_dir).expanduser().resolve()
    active = data_dir / "active"
    if active.exists():
        data_dir = active
    try:
        store = InMemoryTripStore.from_dataset_dir(data_dir)
    except FileNotFoundError as exc:
        raise SystemExit(str(exc))

    start, end = parse_date(args.start), parse_date(args.end)
    if end < start:
        raise SystemExit("--end must not be before --start")

    logger.info("Reporting tenant=%s %s..%s from %s", args.tenant, start, end, data_dir)
    report = build_report(store, args.tenant, start, end, include_scores=not args.skip_scores)

    text = json.dumps(report, indent=2, default=str)
    if args.out:
        Path(args.out).write_text(text, encoding="utf-8")
        logger.info("Wrote %s", args.out)
    else:
        sys.stdout.write(text + "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
