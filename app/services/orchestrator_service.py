# app/services/orchestrator_service.py

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from fastapi import Depends

from app.config import get_settings
from app.errors import CallCenterError, NotFoundError, ProviderError, QualificationError, ValidationError
from app.schemas.batch import Batch, BatchCreated, BatchStatus, Lead, LeadIn, LeadStatus
from app.services import lead_state_machine as lsm
from app.services.batch_store import BatchStore, get_batch_store
from app.services.call_provider import CallProvider, get_call_provider
from app.services.qualification_service import QualificationClient, get_qualification_client
from app.services.reconciliation_scheduler import ReconciliationScheduler

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchLocks:
    """One lock per batch id, so read-modify-write cycles never interleave."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def for_batch(self, batch_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(batch_id)
            if lock is None:
                lock = self._locks[batch_id] = threading.Lock()
            return lock

    def discard(self, batch_id: str) -> None:
        with self._guard:
            self._locks.pop(batch_id, None)


class BatchOrchestrator:
    """
    Owns every batch mutation.

    Responsibility:
    - create a batch and dial all of its leads concurrently
    - reconcile in-progress leads against the call provider and the
      qualification model
    - re-dial a single lead, delete a batch

    Per-lead failures during fan-out are logged and isolated; they never
    fail the batch operation. Writes are serialized per batch id.
    """

    def __init__(
        self,
        store: BatchStore,
        call_provider: CallProvider,
        qualifier: QualificationClient,
        *,
        scheduler: Optional[ReconciliationScheduler] = None,
        locks: Optional[BatchLocks] = None,
        max_workers: int = 8,
        qualification_threshold: float = 3.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.call_provider = call_provider
        self.qualifier = qualifier
        self.scheduler = scheduler
        self.locks = locks or BatchLocks()
        self.max_workers = max(1, max_workers)
        self.qualification_threshold = qualification_threshold
        self.clock = clock

    # ---------- Reads ----------

    def list_batches(self) -> List[Batch]:
        return self.store.list()

    def get_batch(self, batch_id: str) -> Batch:
        batch = self.store.get(batch_id)
        if batch is None:
            raise NotFoundError(f"batch {batch_id} not found")
        return batch

    # ---------- Create ----------

    def create_batch(self, leads: Sequence[LeadIn], name: Optional[str] = None) -> BatchCreated:
        """
        Validate the leads, dial every lead that has a phone, persist.

        Leads without a phone stay in the batch as rejected. Raises
        ValidationError (and persists nothing) when no lead is dialable.
        """
        ingested = self._ingest(leads)
        dialable = [lead for lead in ingested if lead.status == LeadStatus.PENDING]
        if not dialable:
            raise ValidationError("No valid leads with phone numbers found")

        now = self.clock()
        batch_id = self._new_batch_id(now)
        logger.info(
            "Creating batch",
            extra={"batch_id": batch_id, "leads": len(ingested), "dialable": len(dialable)},
        )

        placed = {lead.id: lead for lead in self._fan_out(self._place_call, dialable)}
        batch = Batch(
            id=batch_id,
            name=name or "",
            created_at=now,
            leads=[placed.get(lead.id, lead) for lead in ingested],
        ).with_recomputed_status()

        self.store.put(batch)

        calls_started = sum(1 for lead in batch.leads if lead.status == LeadStatus.IN_PROGRESS)
        logger.info(
            "Call sequence completed",
            extra={"batch_id": batch_id, "calls_started": calls_started, "dialable": len(dialable)},
        )

        if batch.status == BatchStatus.IN_PROGRESS:
            self._schedule(batch_id)

        return BatchCreated(
            id=batch_id,
            leads_processed=len(dialable),
            calls_started=calls_started,
            status=batch.status,
        )

    # ---------- Reconcile ----------

    def reconcile(self, batch_id: str) -> Batch:
        """
        Poll the provider for every in-progress lead and advance it.

        Writes only when at least one lead (or the batch status) changed, so
        repeated calls against an unchanged provider are free.
        """
        with self.locks.for_batch(batch_id):
            batch = self.get_batch(batch_id)

            candidates = [lead for lead in batch.leads if lead.awaiting_call_result]
            updates: Dict[str, Lead] = {}
            for before, after in zip(candidates, self._fan_out(self._check_lead, candidates)):
                if after != before:
                    updates[before.id] = after

            updated = batch.model_copy(
                update={"leads": [updates.get(lead.id, lead) for lead in batch.leads]}
            ).with_recomputed_status()

            if updates or updated.status != batch.status:
                if not self.store.replace(updated):
                    logger.info(
                        "Batch deleted during reconciliation, discarding results",
                        extra={"batch_id": batch_id},
                    )
                    raise NotFoundError(f"batch {batch_id} not found")
                logger.info(
                    "Updated batch with call status changes",
                    extra={"batch_id": batch_id, "changed_leads": len(updates), "status": updated.status.value},
                )

        if updated.status == BatchStatus.COMPLETED and self.scheduler is not None:
            self.scheduler.cancel(batch_id)

        return updated

    # ---------- Single call ----------

    def start_single_call(self, batch_id: str, lead_id: str) -> str:
        """
        Re-dial one lead, whatever its current status.

        Raises NotFoundError, ValidationError (no phone) or ProviderError.
        """
        with self.locks.for_batch(batch_id):
            batch = self.get_batch(batch_id)
            lead = batch.find_lead(lead_id)
            if lead is None:
                raise NotFoundError(f"lead {lead_id} not found in batch {batch_id}")
            if not lsm.has_phone(lead):
                raise ValidationError("Lead has no phone number")

            try:
                handle = self.call_provider.place_call(lead.phone)
            except ProviderError as e:
                logger.warning(
                    "Failed to start individual call",
                    extra={"batch_id": batch_id, "lead_id": lead_id, "error": str(e)},
                )
                self._save_lead(batch, lsm.apply_placement_failed(lead, str(e)))
                raise

            updated = self._save_lead(batch, lsm.apply_call_placed(lead, handle, self.clock()))

        logger.info(
            "Call initiated",
            extra={"batch_id": batch_id, "lead_id": lead_id, "call_id": handle.call_id},
        )
        if updated.status == BatchStatus.IN_PROGRESS:
            self._schedule(batch_id)
        return handle.call_id

    # ---------- Delete ----------

    def delete_batch(self, batch_id: str) -> None:
        if self.scheduler is not None:
            self.scheduler.cancel(batch_id)
        if not self.store.delete(batch_id):
            raise NotFoundError(f"batch {batch_id} not found")
        self.locks.discard(batch_id)
        logger.info("Deleted batch", extra={"batch_id": batch_id})

    # ---------- Startup ----------

    def resume_reconciliation(self) -> List[str]:
        """
        Re-register background polling for every stored in-progress batch.

        Scheduled jobs live in memory only, so this runs once at startup.
        """
        if self.scheduler is None:
            return []
        batch_ids = [b.id for b in self.store.list() if b.status == BatchStatus.IN_PROGRESS]
        for batch_id in batch_ids:
            self._schedule(batch_id)
        logger.info("Resumed background reconciliation", extra={"batches": len(batch_ids)})
        return batch_ids

    # ---------- Internals ----------

    def _ingest(self, leads: Sequence[LeadIn]) -> List[Lead]:
        """Assign positional ids (`lead-<n>`) where missing; reject phoneless leads."""
        supplied = [lead.id for lead in leads if lead.id]
        duplicates = sorted({i for i in supplied if supplied.count(i) > 1})
        if duplicates:
            raise ValidationError(f"Duplicate lead ids: {', '.join(duplicates)}")

        taken = set(supplied)
        ingested: List[Lead] = []
        for index, lead_in in enumerate(leads):
            lead_id = lead_in.id
            if not lead_id:
                n = index + 1
                while f"lead-{n}" in taken:
                    n += 1
                lead_id = f"lead-{n}"
                taken.add(lead_id)

            lead = Lead(id=lead_id, **lead_in.model_dump(exclude={"id"}))
            ingested.append(lsm.ingest(lead))
        return ingested

    def _place_call(self, lead: Lead) -> Lead:
        try:
            handle = self.call_provider.place_call(lead.phone)
        except ProviderError as e:
            logger.warning("Call placement failed", extra={"lead_id": lead.id, "error": str(e)})
            return lsm.apply_placement_failed(lead, str(e))
        except Exception as e:
            logger.exception("Unexpected error placing call", extra={"lead_id": lead.id})
            return lsm.apply_placement_failed(lead, str(e))

        logger.info("Call initiated", extra={"lead_id": lead.id, "call_id": handle.call_id})
        return lsm.apply_call_placed(lead, handle, self.clock())

    def _check_lead(self, lead: Lead) -> Lead:
        try:
            call_status = self.call_provider.get_call_status(lead.call_id)
            return lsm.apply_call_status(
                lead,
                call_status,
                self.qualifier.qualify,
                now=self.clock(),
                threshold=self.qualification_threshold,
            )
        except (ProviderError, QualificationError) as e:
            logger.warning(
                "Error checking call status, will retry",
                extra={"lead_id": lead.id, "call_id": lead.call_id, "error": str(e)},
            )
        except Exception:
            logger.exception(
                "Unexpected error checking call status",
                extra={"lead_id": lead.id, "call_id": lead.call_id},
            )
        return lead

    def _fan_out(self, func: Callable[[Lead], T], leads: Sequence[Lead]) -> List[T]:
        if not leads:
            return []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(leads))) as pool:
            return list(pool.map(func, leads))

    def _save_lead(self, batch: Batch, lead: Lead) -> Batch:
        """Swap one lead into the batch and persist. Caller holds the batch lock."""
        updated = batch.model_copy(
            update={"leads": [lead if item.id == lead.id else item for item in batch.leads]}
        ).with_recomputed_status()
        if not self.store.replace(updated):
            raise NotFoundError(f"batch {batch.id} not found")
        return updated

    def _schedule(self, batch_id: str) -> None:
        if self.scheduler is not None:
            self.scheduler.schedule(batch_id, partial(self._scheduled_reconcile, batch_id))

    def _scheduled_reconcile(self, batch_id: str) -> None:
        try:
            self.reconcile(batch_id)
        except NotFoundError:
            if self.scheduler is not None:
                self.scheduler.cancel(batch_id)
        except CallCenterError as e:
            logger.warning("Background reconciliation failed", extra={"batch_id": batch_id, "error": str(e)})

    @staticmethod
    def _new_batch_id(now: datetime) -> str:
        return f"batch-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:8]}"


# ---------- FastAPI wiring ----------

_locks = BatchLocks()
_scheduler: Optional[ReconciliationScheduler] = None


def get_reconciliation_scheduler() -> Optional[ReconciliationScheduler]:
    """Process-wide scheduler, or None when background polling is disabled."""
    global _scheduler
    settings = get_settings()
    if not settings.ENABLE_BACKGROUND_RECONCILIATION:
        return None
    if _scheduler is None:
        _scheduler = ReconciliationScheduler(interval_seconds=settings.RECONCILE_INTERVAL_SECONDS)
    return _scheduler


def build_orchestrator(
    store: BatchStore,
    call_provider: CallProvider,
    qualifier: QualificationClient,
    scheduler: Optional[ReconciliationScheduler] = None,
) -> BatchOrchestrator:
    settings = get_settings()
    return BatchOrchestrator(
        store=store,
        call_provider=call_provider,
        qualifier=qualifier,
        scheduler=scheduler,
        locks=_locks,
        max_workers=settings.MAX_CONCURRENT_CALLS,
        qualification_threshold=settings.QUALIFICATION_THRESHOLD,
    )


def get_orchestrator(
    store: BatchStore = Depends(get_batch_store),
    call_provider: CallProvider = Depends(get_call_provider),
    qualifier: QualificationClient = Depends(get_qualification_client),
) -> BatchOrchestrator:
    return build_orchestrator(store, call_provider, qualifier, scheduler=get_reconciliation_scheduler())
