"""
Background reconciliation job tests.
"""
import pytest

from iap_ledger.config import settings
from iap_ledger.models.transactions import TransactionStatus
from iap_ledger.services.scheduler import (
    RECONCILIATION_JOB_ID,
    ReconciliationScheduler,
    get_reconciliation_interval_minutes,
    run_reconciliation_job,
    scheduler,
)


@pytest.mark.asyncio
async def test_job_merges_store_receipts(billing, provider, make_transaction):
    txn = make_transaction()
    provider.remote = [txn]

    report = await run_reconciliation_job(billing)

    assert report.inserted == [txn.order_id]
    assert [(e.order_id, e.status) for e in await billing.history()] == [(txn.order_id, TransactionStatus.STORED)]

    # Next run finds nothing new
    assert (await run_reconciliation_job(billing)).mutation_count == 0


@pytest.mark.asyncio
async def test_job_skipped_when_billing_unavailable(billing, provider):
    provider.enabled.set(False)

    assert await run_reconciliation_job(billing) is None
    assert provider.query_count == 0


@pytest.mark.asyncio
async def test_job_failure_is_logged_not_raised(billing, provider, caplog):
    async def broken_query():
        raise RuntimeError("log unavailable")

    provider.query_purchases = broken_query

    assert await run_reconciliation_job(billing) is None
    assert "Reconciliation pass failed" in caplog.text


def test_scheduler_is_singleton():
    assert ReconciliationScheduler() is scheduler


def test_interval_capped_in_demo_mode(monkeypatch):
    monkeypatch.setattr(settings, "demo_mode", True)
    monkeypatch.setattr(settings, "reconcile_interval_minutes", 5)
    assert get_reconciliation_interval_minutes() == 0.5

    monkeypatch.setattr(settings, "demo_mode", False)
    assert get_reconciliation_interval_minutes() == 5


def test_add_and_remove_job():
    service = object()
    job_id = scheduler.add_reconciliation_job(run_reconciliation_job, interval_minutes=5, service=service)

    try:
        job = scheduler.get_job(job_id)
        assert job_id == RECONCILIATION_JOB_ID
        assert job is not None
        assert job.kwargs == {"service": service}
    finally:
        assert scheduler.remove_job(job_id) is True

    assert scheduler.remove_job(job_id) is False
