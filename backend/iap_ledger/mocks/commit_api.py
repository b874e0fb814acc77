"""
Mock Commit API

Simulates the downstream server that acknowledges a consumed purchase
(grants the item, records the order). Verifies the receipt signature before
accepting it.

Mock Behavior:
- Receipts with a valid signature are committed
- The static test SKU is accepted without a signature
- fail_next() makes the next commits report the server as unavailable
- Committing the same order twice succeeds and is flagged as a duplicate
"""
import json
import threading
from datetime import datetime
from typing import Any, Dict, Optional

from ..models.transactions import SKU_STATIC_TEST
from ..services.signature_service import verify_receipt


class CommitApi:
    def __init__(self, signing_secret: Optional[str] = None):
        self._signing_secret = signing_secret
        self._lock = threading.Lock()
        self._committed: Dict[str, str] = {}
        self._failures_remaining = 0

    def fail_next(self, count: int = 1) -> None:
        with self._lock:
            self._failures_remaining += count

    def commit_receipt(
        self,
        order_id: str,
        original_json: str,
        signature: str
    ) -> Dict[str, Any]:
        """
        Acknowledge a consumed purchase.

        Returns:
            Commit result dictionary:
            - status: "committed", "rejected" or "unavailable"
            - reason: Reason if not committed
            - duplicate: True if the order was committed before
            - committed_at: Timestamp of processing
        """
        committed_at = datetime.utcnow().isoformat()

        with self._lock:
            if self._failures_remaining > 0:
                self._failures_remaining -= 1
                return {"status": "unavailable", "order_id": order_id, "reason": "server_unavailable"}

        try:
            sku = json.loads(original_json).get("productId")
        except json.JSONDecodeError:
            return {"status": "rejected", "order_id": order_id, "reason": "malformed_receipt"}

        if sku != SKU_STATIC_TEST and not verify_receipt(original_json, signature, self._signing_secret):
            return {"status": "rejected", "order_id": order_id, "reason": "signature_invalid"}

        with self._lock:
            duplicate = order_id in self._committed
            self._committed.setdefault(order_id, committed_at)

        return {
            "status": "committed",
            "order_id": order_id,
            "reason": None,
            "duplicate": duplicate,
            "committed_at": committed_at,
        }

    def is_committed(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._committed
