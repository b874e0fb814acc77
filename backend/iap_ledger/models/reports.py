"""
Pydantic Report Models

Results of the purchase, query/merge and resend operations. Each report renders
the diagnostic text shown to the operator via summary().
"""
from typing import List, Optional
from pydantic import BaseModel, Field

from .transactions import PurchaseLogEntry, TransactionStatus


STORE_HEADER = "======= Store ======="
LOCAL_HEADER = "======= LOCAL ======="
NO_STORE_RECEIPTS = "No store receipts."
NO_LOCAL_RESEND = "No local resend data."


class SettlementResult(BaseModel):
    """
    Outcome of one consume + commit attempt.

    consumed/committed are None when the step was not attempted.
    """
    order_id: str
    previous_status: TransactionStatus
    status: TransactionStatus
    consumed: Optional[bool] = None
    committed: Optional[bool] = None
    skipped: bool = False


class RemoteReceipt(BaseModel):
    """A store receipt as seen by one query/merge pass."""
    order_id: str
    status: TransactionStatus
    pending: bool
    has_developer_payload: bool = False


class QueryReport(BaseModel):
    """
    Result of a query/merge pass.

    remote lists what the store returned with the local status after merging;
    local_candidates are the CONSUMING/COMMITTING rows awaiting resend.
    """
    remote: List[RemoteReceipt] = Field(default_factory=list)
    local_candidates: List[PurchaseLogEntry] = Field(default_factory=list)
    inserted: List[str] = Field(default_factory=list)
    updated: List[str] = Field(default_factory=list)

    @property
    def mutation_count(self) -> int:
        return len(self.inserted) + len(self.updated)

    def summary(self) -> str:
        lines = [STORE_HEADER]
        if not self.remote:
            lines.append(NO_STORE_RECEIPTS)
        for receipt in self.remote:
            line = f"{receipt.order_id} : {receipt.status.value}"
            if receipt.has_developer_payload:
                line += " ** FOUND payload **"
            lines.append(line)

        lines.append(LOCAL_HEADER)
        if not self.local_candidates:
            lines.append(NO_LOCAL_RESEND)
        for entry in self.local_candidates:
            lines.append(f"{entry.order_id} : {entry.status.value}")
        return "\n".join(lines) + "\n"


class ResendReport(BaseModel):
    """Result of a resend-all pass."""
    remote: List[SettlementResult] = Field(default_factory=list)
    still_pending: List[str] = Field(default_factory=list)
    local: List[SettlementResult] = Field(default_factory=list)
    deduplicated: List[str] = Field(default_factory=list)

    def summary(self) -> str:
        lines = [STORE_HEADER]
        if not self.remote and not self.still_pending:
            lines.append(NO_STORE_RECEIPTS)
        for result in self.remote:
            lines.append(f"consumed and committed: {result.order_id} -> {result.status.value}")
        for order_id in self.still_pending:
            lines.append(f"still pending: {order_id}")

        lines.append(LOCAL_HEADER)
        if not self.local:
            lines.append(NO_LOCAL_RESEND)
        for result in self.local:
            lines.append(f"committed: {result.order_id} -> {result.status.value}")
        return "\n".join(lines) + "\n"


class PurchaseResult(BaseModel):
    """Outcome of a purchase request."""
    success: bool
    sku: str
    order_id: Optional[str] = None
    status: Optional[TransactionStatus] = None
    summary: str = ""
