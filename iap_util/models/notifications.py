"""
Notification Models - Vendor-neutral lifecycle events.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.

Both storefronts' notification taxonomies collapse into the closed
NotificationDetails union below. Events we do not handle surface as
Unsupported instead of raising, so one unknown event never blocks the feed.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from iap_util.models.domain import (
    IapConsumableId,
    IapNonConsumableId,
    IapPurchaseId,
    IapSubscriptionId,
    Vendor,
)


class SubscriptionEndReason(StrEnum):
    """Why a subscription stopped granting entitlement."""

    PAUSED = "paused"
    CANCELLED = "cancelled"
    FAILED_TO_RENEW = "failed_to_renew"
    VOIDED = "voided"
    DECLINED_PRICE_INCREASE = "declined_price_increase"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Test:
    """Test notification requested from the vendor console or API."""


@dataclass(frozen=True)
class ConsumableVoided:
    """A consumable purchase was refunded or revoked."""

    application_id: str
    product_id: IapConsumableId
    purchase_id: IapPurchaseId
    is_refunded: bool
    reason: str | None = None


@dataclass(frozen=True)
class NonConsumableVoided:
    """A non-consumable purchase was refunded or revoked."""

    application_id: str
    product_id: IapNonConsumableId
    purchase_id: IapPurchaseId
    is_refunded: bool
    reason: str | None = None


@dataclass(frozen=True)
class UnknownOneTimePurchaseVoided:
    """A one-time purchase was voided but the vendor did not say which kind.

    Google's voided-purchase notification carries neither the SKU nor the
    consumable/non-consumable distinction.
    """

    application_id: str
    purchase_id: IapPurchaseId
    is_refunded: bool
    reason: str | None = None


@dataclass(frozen=True)
class SubscriptionEnded:
    """A subscription stopped granting entitlement."""

    application_id: str
    product_id: IapSubscriptionId | None
    purchase_id: IapPurchaseId
    reason: SubscriptionEndReason


@dataclass(frozen=True)
class SubscriptionExpiryChanged:
    """A subscription's expiry moved for a reason other than a plain renewal."""

    application_id: str
    product_id: IapSubscriptionId | None
    purchase_id: IapPurchaseId
    expiration_time: datetime | None = None


@dataclass(frozen=True)
class SubscriptionRenewed:
    """A subscription renewed for another period."""

    application_id: str
    product_id: IapSubscriptionId | None
    purchase_id: IapPurchaseId
    renewal_id: str | None = None  # Vendor id of the renewal transaction
    expiration_time: datetime | None = None


@dataclass(frozen=True)
class SubscriptionGracePeriodStarted:
    """Renewal failed but the vendor keeps entitlement during a grace period."""

    application_id: str
    product_id: IapSubscriptionId | None
    purchase_id: IapPurchaseId
    grace_period_expiration_time: datetime | None = None


@dataclass(frozen=True)
class SubscriptionAutoRenewToggled:
    """The user turned auto-renew on or off."""

    application_id: str
    product_id: IapSubscriptionId | None
    purchase_id: IapPurchaseId
    auto_renew_enabled: bool


@dataclass(frozen=True)
class Unsupported:
    """Catch-all for vendor events with no mapping (tier and price changes included)."""

    raw_type_tag: str


NotificationDetails = (
    Test
    | ConsumableVoided
    | NonConsumableVoided
    | UnknownOneTimePurchaseVoided
    | SubscriptionEnded
    | SubscriptionExpiryChanged
    | SubscriptionRenewed
    | SubscriptionGracePeriodStarted
    | SubscriptionAutoRenewToggled
    | Unsupported
)


@dataclass(frozen=True)
class IapUpdateNotification:
    """Normalized notification from either storefront."""

    vendor: Vendor
    notification_id: str
    time: datetime
    details: NotificationDetails

    @property
    def is_supported(self) -> bool:
        """Whether the event mapped to a handled variant."""
        return not isinstance(self.details, Unsupported)
