"""
Purchase log access tests.
"""
import pytest

from iap_ledger.exceptions import DuplicateOrderError, InvalidTransitionError, TransactionNotFoundError
from iap_ledger.models.transactions import TransactionStatus
from iap_ledger.services import transaction_service


async def _insert(db, txn, status=TransactionStatus.STORED):
    return await transaction_service.insert_transaction(
        db,
        order_id=txn.order_id,
        receipt_json=txn.original_json,
        signature=txn.signature,
        status=status
    )


@pytest.mark.asyncio
async def test_insert_and_find(db_session, make_transaction):
    txn = make_transaction()

    entry = await _insert(db_session, txn)

    assert entry.id >= 1
    assert entry.order_id == txn.order_id
    assert entry.receipt_json == txn.original_json
    assert entry.signature == txn.signature
    assert entry.status == TransactionStatus.STORED

    found = await transaction_service.find_by_order_id(db_session, txn.order_id)
    assert found == entry
    assert await transaction_service.find_by_order_id(db_session, "GPA.unknown") is None


@pytest.mark.asyncio
async def test_insert_duplicate_order_rejected(db_session, make_transaction):
    txn = make_transaction()
    await _insert(db_session, txn)

    with pytest.raises(DuplicateOrderError) as exc_info:
        await _insert(db_session, txn, TransactionStatus.PENDING)

    assert exc_info.value.details["order_id"] == txn.order_id
    entries = await transaction_service.get_all(db_session)
    assert len(entries) == 1
    assert entries[0].status == TransactionStatus.STORED


@pytest.mark.asyncio
async def test_update_status_changes_only_status(db_session, make_transaction):
    txn = make_transaction()
    before = await _insert(db_session, txn)

    changed = await transaction_service.update_status(db_session, txn.order_id, TransactionStatus.COMMITTING)

    after = await transaction_service.find_by_order_id(db_session, txn.order_id)
    assert changed is True
    assert after.status == TransactionStatus.COMMITTING
    assert (after.id, after.receipt_json, after.signature) == (before.id, before.receipt_json, before.signature)


@pytest.mark.asyncio
async def test_update_status_same_status_is_noop(db_session, make_transaction):
    txn = make_transaction()
    await _insert(db_session, txn)

    assert await transaction_service.update_status(db_session, txn.order_id, TransactionStatus.STORED) is False


@pytest.mark.asyncio
async def test_update_status_unknown_order(db_session):
    with pytest.raises(TransactionNotFoundError):
        await transaction_service.update_status(db_session, "GPA.missing", TransactionStatus.STORED)

    assert await transaction_service.get_all(db_session) == []


@pytest.mark.asyncio
async def test_update_status_illegal_transition(db_session, make_transaction):
    txn = make_transaction()
    await _insert(db_session, txn, TransactionStatus.PENDING)

    with pytest.raises(InvalidTransitionError):
        await transaction_service.update_status(db_session, txn.order_id, TransactionStatus.COMPLETE)

    found = await transaction_service.find_by_order_id(db_session, txn.order_id)
    assert found.status == TransactionStatus.PENDING


@pytest.mark.asyncio
async def test_cancel_transaction(db_session, make_transaction):
    open_txn = make_transaction()
    done_txn = make_transaction()
    await _insert(db_session, open_txn, TransactionStatus.CONSUMING)
    await _insert(db_session, done_txn)
    await transaction_service.update_status(db_session, done_txn.order_id, TransactionStatus.COMPLETE)

    assert await transaction_service.cancel_transaction(db_session, open_txn.order_id) is True
    with pytest.raises(InvalidTransitionError):
        await transaction_service.cancel_transaction(db_session, done_txn.order_id)


@pytest.mark.asyncio
async def test_resend_candidates_and_get_all_order(db_session, make_transaction):
    statuses = [
        TransactionStatus.PENDING,
        TransactionStatus.CONSUMING,
        TransactionStatus.STORED,
        TransactionStatus.COMMITTING,
    ]
    txns = [make_transaction() for _ in statuses]
    for txn, status in zip(txns, statuses):
        await _insert(db_session, txn, status)

    candidates = await transaction_service.get_resend_candidates(db_session)
    everything = await transaction_service.get_all(db_session)

    assert [c.order_id for c in candidates] == [txns[1].order_id, txns[3].order_id]
    assert [e.order_id for e in everything] == [t.order_id for t in txns]


@pytest.mark.asyncio
async def test_delete_all(db_session, make_transaction):
    for _ in range(3):
        await _insert(db_session, make_transaction())

    assert await transaction_service.delete_all(db_session) == 3
    assert await transaction_service.get_all(db_session) == []
    assert await transaction_service.delete_all(db_session) == 0
