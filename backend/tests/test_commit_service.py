"""
Commit gateway tests against the mock commit API.
"""
import pytest

from iap_ledger.exceptions import CommitFailure
from iap_ledger.models.transactions import SKU_STATIC_TEST, Transaction
from iap_ledger.services.commit_service import ReceiptCommitGateway


@pytest.mark.asyncio
async def test_commit_accepts_signed_receipt(commit_api, make_transaction):
    gateway = ReceiptCommitGateway(commit_api)
    txn = make_transaction()

    result = await gateway.commit(txn)

    assert result["status"] == "committed"
    assert result["duplicate"] is False
    assert commit_api.is_committed(txn.order_id)

    again = await gateway.commit(txn)
    assert again["duplicate"] is True


@pytest.mark.asyncio
async def test_commit_rejects_bad_signature(commit_api, make_transaction):
    gateway = ReceiptCommitGateway(commit_api)
    txn = make_transaction()
    forged = Transaction.from_receipt(txn.original_json, "0" * 64)

    with pytest.raises(CommitFailure) as exc_info:
        await gateway.commit(forged)

    assert exc_info.value.details == {"order_id": txn.order_id, "reason": "signature_invalid"}
    assert not commit_api.is_committed(txn.order_id)


@pytest.mark.asyncio
async def test_commit_accepts_unsigned_static_receipt(commit_api, make_transaction):
    txn = make_transaction(sku=SKU_STATIC_TEST)
    unsigned = Transaction.from_receipt(txn.original_json, "")

    result = await ReceiptCommitGateway(commit_api).commit(unsigned)

    assert result["status"] == "committed"


@pytest.mark.asyncio
async def test_commit_unavailable(commit_api, make_transaction):
    gateway = ReceiptCommitGateway(commit_api)
    txn = make_transaction()
    commit_api.fail_next()

    with pytest.raises(CommitFailure) as exc_info:
        await gateway.commit(txn)
    assert exc_info.value.details["reason"] == "server_unavailable"

    assert (await gateway.commit(txn))["status"] == "committed"
