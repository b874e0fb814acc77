"""
Billing Service

Operator-facing entry points: purchase, query, resend, delete, history.
Each renders the diagnostic text shown to the operator.
"""
import logging
from typing import Any, Dict, List

from ..models.transactions import PurchaseLogEntry
from ..models.reports import PurchaseResult
from ..providers.base import BillingProvider
from .reconciliation_service import ReconciliationEngine
from .state_machine import SettlementOutcome

logger = logging.getLogger(__name__)


NOT_SUPPORTED = "Not Supported!!"
CANCEL_OR_ERROR = "Cancel or error."
PENDING_TRANSACTION = "PENDING TRANSACTION !!"
NO_LOCAL_DATA = "No local data."


def _render(lines: List[str]) -> str:
    return "\n".join(lines) + "\n"


class BillingService:
    def __init__(self, provider: BillingProvider, engine: ReconciliationEngine):
        self.provider = provider
        self.engine = engine
        self.settlement_outcome = SettlementOutcome.SUCCESS

    async def initialize(self, context: Any) -> bool:
        """
        Ready the billing provider.

        Returns:
            True if billing is available
        """
        enabled = await self.provider.initialize(context)
        if enabled.value:
            logger.info(f"Billing provider ready: {self.provider.variant}")
        else:
            error = self.provider.setup_error
            logger.warning(
                f"Billing provider unavailable: {self.provider.variant}"
                + (f" ({error.error_code} - {error.message})" if error else "")
            )
        return enabled.value

    async def shutdown(self) -> None:
        await self.provider.shutdown()

    # ========================================================================
    # Purchase
    # ========================================================================

    async def purchase(self, sku: str) -> PurchaseResult:
        """
        Buy one item, log it and settle it with the selected outcome.

        Pending purchases are logged but not settled; they are picked up by a
        later query once the store clears them.
        """
        if not self.provider.is_supported():
            return PurchaseResult(success=False, sku=sku, summary=_render([NOT_SUPPORTED]))

        lines = [f"Buying item {sku}"]
        transaction = await self.provider.purchase(sku)

        if transaction is None:
            lines.append(CANCEL_OR_ERROR)
            return PurchaseResult(success=False, sku=sku, summary=_render(lines))

        if transaction.is_pending:
            lines.append(PENDING_TRANSACTION)

        status = await self.engine.record_purchase(transaction)
        lines.append(status.value)

        if not transaction.is_pending:
            settled = await self.engine.settle(transaction, self.settlement_outcome)
            if settled.consumed is not None:
                lines.append(f"Consume result: {str(settled.consumed).lower()}.")
            status = settled.status
            lines.append(status.value)

        return PurchaseResult(
            success=True,
            sku=sku,
            order_id=transaction.order_id,
            status=status,
            summary=_render(lines)
        )

    # ========================================================================
    # Reconciliation
    # ========================================================================

    async def query_purchase_data(self) -> str:
        report = await self.engine.query_purchase_data()
        return report.summary()

    async def resend_all(self) -> str:
        # Resend always runs with SUCCESS and leaves it selected
        self.settlement_outcome = SettlementOutcome.SUCCESS
        report = await self.engine.resend_all()
        return report.summary()

    def set_settlement_outcome(self, outcome: SettlementOutcome) -> SettlementOutcome:
        self.settlement_outcome = SettlementOutcome(outcome)
        logger.info(f"Settlement outcome set to {self.settlement_outcome.value}")
        return self.settlement_outcome

    # ========================================================================
    # Log administration
    # ========================================================================

    async def history(self) -> List[PurchaseLogEntry]:
        return await self.engine.history()

    async def get_all_history(self) -> str:
        entries = await self.engine.history()
        if not entries:
            return _render([NO_LOCAL_DATA])
        return _render([f"{entry.order_id} : {entry.status.value}" for entry in entries])

    async def delete_all_data(self) -> str:
        count = await self.engine.delete_all()
        return _render([f"Deleted {count} records."])

    async def cancel(self, order_id: str) -> str:
        """
        Raises:
            TransactionNotFoundError: Unknown order
            InvalidTransitionError: Order already COMPLETE
        """
        changed = await self.engine.cancel(order_id)
        return _render([f"{order_id} : CANCELED" + ("" if changed else " (unchanged)")])

    def status(self) -> Dict[str, Any]:
        error = self.provider.setup_error
        return {
            "variant": self.provider.variant,
            "enabled": self.provider.enabled.value,
            "supported": self.provider.is_supported(),
            "setup_error": error.to_dict() if error else None,
            "settlement_outcome": self.settlement_outcome.value,
            "open_purchase_flows": len(self.provider.tracker),
        }
