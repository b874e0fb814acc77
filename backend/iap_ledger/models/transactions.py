"""
Pydantic Transaction Models

Represents store purchases and the rows of the local purchase log.
The receipt (original JSON + signature) is opaque evidence and never rewritten.
"""
import json
from enum import Enum, IntEnum
from typing import Any, Dict
from pydantic import BaseModel, Field


# Catalogue used by the demo store
SKU_ITEM_100 = "com.example.item.100"
SKU_ITEM_10000 = "com.example.item.10000"
SKU_STATIC_TEST = "android.test.purchased"  # static response, unsigned receipt


class TransactionStatus(str, Enum):
    """
    Status of a transaction in the local log.

    The persisted literal is the member value.
    """

    PENDING = "PENDING"  # remote purchase awaiting completion (delayed payment)
    STORED = "STORED"  # purchased and confirmed, not yet settled
    CONSUMING = "CONSUMING"  # settlement attempted, consume failed
    COMMITTING = "COMMITTING"  # consumed, downstream commit failed
    COMPLETE = "COMPLETE"  # consumed and committed
    CANCELED = "CANCELED"  # delayed purchase invalidated (administrative)


class PurchaseState(IntEnum):
    """Purchase state as reported inside the store receipt."""

    PURCHASED = 0
    CANCELED = 1
    PENDING = 2


class Transaction(BaseModel):
    """
    One purchase instance as reported by the store.

    Built from the signed receipt so that a record read back from the log
    produces the same value the provider originally returned.
    """

    order_id: str = Field(min_length=1)
    sku: str
    purchase_token: str
    purchase_state: PurchaseState = PurchaseState.PURCHASED
    original_json: str
    signature: str = ""
    developer_payload: str = ""

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @property
    def is_pending(self) -> bool:
        return self.purchase_state == PurchaseState.PENDING

    @classmethod
    def from_receipt(cls, original_json: str, signature: str) -> "Transaction":
        """
        Decode a store receipt.

        Args:
            original_json: Receipt JSON exactly as signed by the store
            signature: Store signature over original_json

        Raises:
            ValueError: If the receipt is not a JSON object or lacks orderId
        """
        try:
            data: Dict[str, Any] = json.loads(original_json)
        except json.JSONDecodeError as e:
            raise ValueError(f"Receipt is not valid JSON: {e}") from e

        if not isinstance(data, dict) or not data.get("orderId"):
            raise ValueError("Receipt has no orderId")

        return cls(
            order_id=data["orderId"],
            sku=data.get("productId", ""),
            purchase_token=data.get("purchaseToken", ""),
            purchase_state=PurchaseState(data.get("purchaseState", PurchaseState.PURCHASED)),
            original_json=original_json,
            signature=signature,
            developer_payload=data.get("developerPayload") or "",
        )


class PurchaseLogEntry(BaseModel):
    """
    One row of the purchase log (log_table).
    """

    id: int
    order_id: str
    receipt_json: str  # stored in the "json" column
    signature: str
    status: TransactionStatus

    model_config = {
        "from_attributes": True,
        "json_schema_extra": {
            "example": {
                "id": 1,
                "order_id": "GPA.3301-1234-5678-00001",
                "receipt_json": "{\"orderId\":\"GPA.3301-1234-5678-00001\",\"productId\":\"com.example.item.100\"}",
                "signature": "9f2c...",
                "status": "STORED"
            }
        }
    }
