# scripts/reconcile_tick.py
"""
Simple reconciliation "tick" script.

The API server polls in-progress batches in the background; this script
runs the same reconciliation once from the command line (cron, ops, or when
the server runs with ENABLE_BACKGROUND_RECONCILIATION=false).

Flow:
1. Pick a batch by ID (or every in-progress batch with --all).
2. Poll the call provider for each in-progress lead.
3. Score finished calls and persist the batch if anything changed.
"""

from __future__ import annotations

import argparse
import sys

from app.config import get_settings
from app.errors import CallCenterError
from app.logging_config import configure_logging
from app.schemas.batch import BatchStatus, LeadStatus
from app.services.batch_store import build_batch_store
from app.services.call_provider import build_call_provider
from app.services.orchestrator_service import BatchOrchestrator, build_orchestrator
from app.services.qualification_service import build_qualification_client


def build_tick_orchestrator() -> BatchOrchestrator:
    settings = get_settings()
    return build_orchestrator(
        build_batch_store(settings),
        build_call_provider(settings),
        build_qualification_client(settings),
    )


def run_once(orchestrator: BatchOrchestrator, batch_ids: list[str]) -> int:
    failures = 0
    for batch_id in batch_ids:
        try:
            batch = orchestrator.reconcile(batch_id)
        except CallCenterError as e:
            print(f"[reconcile_tick] {batch_id}: {e}", file=sys.stderr)
            failures += 1
            continue

        in_progress = sum(1 for lead in batch.leads if lead.status == LeadStatus.IN_PROGRESS)
        print(
            f"[reconcile_tick] {batch_id}: status={batch.status.value} "
            f"in_progress_leads={in_progress}"
        )
    return failures


def main() -> None:
    parser = argparse.ArgumentParser()
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--batch-id", help="Which batch to reconcile")
    target.add_argument(
        "--all",
        action="store_true",
        help="Reconcile every batch that is still in progress",
    )
    args = parser.parse_args()

    configure_logging(get_settings().LOG_LEVEL)
    orchestrator = build_tick_orchestrator()

    if args.all:
        batch_ids = [
            b.id for b in orchestrator.list_batches() if b.status == BatchStatus.IN_PROGRESS
        ]
    else:
        batch_ids = [args.batch_id]

    failures = run_once(orchestrator, batch_ids)
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
