"""
Commit Service

Sends a consumed purchase to the downstream commit endpoint, which grants
the item. Anything other than an accepted commit raises CommitFailure.
"""
from typing import Any, Dict, Protocol
import logging

from ..exceptions import CommitFailure
from ..mocks.commit_api import CommitApi
from ..models.transactions import Transaction

logger = logging.getLogger(__name__)


class CommitGateway(Protocol):
    async def commit(self, transaction: Transaction) -> Dict[str, Any]:
        """
        Raises:
            CommitFailure: The endpoint did not accept the receipt
        """
        ...


class ReceiptCommitGateway:
    """Commit gateway over the receipt commit API."""

    def __init__(self, api: CommitApi):
        self.api = api

    async def commit(self, transaction: Transaction) -> Dict[str, Any]:
        result = self.api.commit_receipt(
            transaction.order_id,
            transaction.original_json,
            transaction.signature
        )

        if result["status"] != "committed":
            raise CommitFailure(
                f"Commit {result['status']} for {transaction.order_id}",
                details={"order_id": transaction.order_id, "reason": result.get("reason")}
            )

        if result.get("duplicate"):
            logger.info(f"Commit for {transaction.order_id} was already recorded downstream")
        else:
            logger.info(f"Committed {transaction.order_id}")
        return result
