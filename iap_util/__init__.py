"""
iap-util - In-app purchase verification and notification normalization
for the Apple App Store and Google Play.
"""

from iap_util.models.domain import (
    AppStoreTransactionId,
    ConsumableDetails,
    GooglePlayPurchaseToken,
    IapConsumableId,
    IapDetails,
    IapNonConsumableId,
    IapSubscriptionId,
    NonConsumableDetails,
    PriceInfo,
    ProductType,
    SubscriptionDetails,
    Vendor,
)
from iap_util.models.notifications import IapUpdateNotification, SubscriptionEndReason
from iap_util.services.iap_service import IapService

__version__ = "0.1.0"

__all__ = [
    "AppStoreTransactionId",
    "ConsumableDetails",
    "GooglePlayPurchaseToken",
    "IapConsumableId",
    "IapDetails",
    "IapNonConsumableId",
    "IapService",
    "IapSubscriptionId",
    "IapUpdateNotification",
    "NonConsumableDetails",
    "PriceInfo",
    "ProductType",
    "SubscriptionDetails",
    "SubscriptionEndReason",
    "Vendor",
]
