# tests/test_reconciliation_scheduler.py
from app.services.reconciliation_scheduler import ReconciliationScheduler


def _noop():
    pass


def test_schedule_and_cancel_per_batch():
    scheduler = ReconciliationScheduler(interval_seconds=60)

    scheduler.schedule("batch-1", _noop)
    scheduler.schedule("batch-2", _noop)
    # re-registering replaces instead of duplicating
    scheduler.schedule("batch-1", _noop)

    assert sorted(scheduler.scheduled_batch_ids()) == ["batch-1", "batch-2"]

    scheduler.cancel("batch-1")
    assert scheduler.scheduled_batch_ids() == ["batch-2"]


def test_cancel_unknown_batch_is_a_noop():
    scheduler = ReconciliationScheduler()
    scheduler.cancel("batch-missing")
    assert scheduler.scheduled_batch_ids() == []


def test_start_and_shutdown():
    scheduler = ReconciliationScheduler(interval_seconds=3600)
    scheduler.start()
    try:
        scheduler.schedule("batch-1", _noop)
        job = scheduler.scheduler.get_job("reconcile:batch-1")
        assert job.max_instances == 1
        assert job.coalesce is True
    finally:
        scheduler.shutdown()
    assert not scheduler.scheduler.running
