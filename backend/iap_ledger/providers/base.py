"""
Billing Provider Contract

Capability interface every store adapter conforms to, plus the observable
"enabled" flag the adapters publish their readiness through.
"""
import asyncio
import threading
from typing import Any, Callable, List, Optional, Protocol, Tuple, runtime_checkable

from ..exceptions import ProviderSetupFailure
from ..models.transactions import PurchaseLogEntry, Transaction
from ..services.pending_purchases import PendingPurchaseTracker, resolve_future


class EnabledState:
    """
    Observable boolean.

    Setters may run on a store callback thread; listeners are called on the
    thread that changed the value, waiters are woken on their own loop.
    """

    def __init__(self, initial: bool = False):
        self._value = initial
        self._lock = threading.Lock()
        self._listeners: List[Callable[[bool], None]] = []
        self._waiters: List[Tuple[bool, asyncio.Future]] = []

    @property
    def value(self) -> bool:
        return self._value

    def set(self, value: bool) -> None:
        with self._lock:
            changed = self._value != value
            self._value = value
            listeners = list(self._listeners) if changed else []
            ready = [future for expected, future in self._waiters if expected == value]
            self._waiters = [(expected, future) for expected, future in self._waiters if expected != value]

        for listener in listeners:
            listener(value)
        for future in ready:
            resolve_future(future, value)

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        """
        Call listener on every change.

        Returns:
            Function that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    async def wait_for(self, expected: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Wait until the flag has the expected value.

        Returns:
            True if reached, False on timeout
        """
        with self._lock:
            if self._value == expected:
                return True
            future = asyncio.get_running_loop().create_future()
            self._waiters.append((expected, future))

        try:
            await asyncio.wait_for(future, timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            with self._lock:
                self._waiters = [(e, f) for e, f in self._waiters if f is not future]


@runtime_checkable
class BillingProvider(Protocol):
    """
    Store adapter capability contract.

    Implementations: providers.legacy.LegacyBillingProvider and
    providers.modern.ModernBillingProvider.
    """

    variant: str
    enabled: EnabledState
    setup_error: Optional[ProviderSetupFailure]
    tracker: PendingPurchaseTracker

    async def initialize(self, context: Any) -> EnabledState:
        """Ready the provider; suspends until the setup outcome is known."""
        ...

    async def purchase(self, sku: str) -> Optional[Transaction]:
        """Run a purchase flow; None on cancel or error."""
        ...

    async def query_purchases(self) -> List[Transaction]:
        """Purchased and pending store transactions; [] on failure."""
        ...

    async def consume(self, transaction: Transaction) -> bool:
        """Consume a purchase on the store; False on any failure."""
        ...

    def is_supported(self) -> bool:
        ...

    def create_transaction(self, record: PurchaseLogEntry) -> Transaction:
        """Rebuild a Transaction from a logged receipt."""
        ...

    async def shutdown(self) -> None:
        ...
