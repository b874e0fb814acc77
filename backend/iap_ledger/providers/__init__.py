"""
Billing providers

Store adapters behind the BillingProvider contract. The variant is picked
from configuration at startup.
"""
from typing import Optional

from ..config import settings
from ..services.pending_purchases import PendingPurchaseTracker
from .base import BillingProvider, EnabledState
from .legacy import LegacyBillingProvider
from .modern import ModernBillingProvider

PROVIDER_VARIANTS = ("legacy", "modern")


def create_provider(
    variant: Optional[str] = None,
    tracker: Optional[PendingPurchaseTracker] = None,
    **kwargs
) -> BillingProvider:
    """
    Build the billing provider for a variant.

    Args:
        variant: "legacy" or "modern" (default: settings.billing_provider)
        tracker: Shared pending purchase tracker
        **kwargs: Passed to the provider constructor (client/helper factories)

    Raises:
        ValueError: Unknown variant
    """
    variant = variant or settings.billing_provider
    if variant == "legacy":
        return LegacyBillingProvider(tracker=tracker, **kwargs)
    if variant == "modern":
        return ModernBillingProvider(tracker=tracker, **kwargs)
    raise ValueError(f"Unknown billing provider: {variant}. Must be one of {', '.join(PROVIDER_VARIANTS)}")


__all__ = [
    "BillingProvider",
    "EnabledState",
    "LegacyBillingProvider",
    "ModernBillingProvider",
    "PROVIDER_VARIANTS",
    "create_provider",
]
