"""
Domain Models - Vendor-neutral purchase identifiers and verification results.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import ClassVar, Generic, TypeVar


class Vendor(StrEnum):
    """Storefront that originated a purchase or notification."""

    APPLE = "apple_app_store"
    GOOGLE = "google_play"


class ProductType(StrEnum):
    """Purchase type declared by the integrating application."""

    CONSUMABLE = "consumable"
    NON_CONSUMABLE = "non_consumable"
    SUBSCRIPTION = "subscription"


# ============================================================================
# Product identifiers
# ============================================================================


@dataclass(frozen=True)
class IapProductId:
    """Base product identifier. Use one of the typed subclasses."""

    sku: str

    product_type: ClassVar[ProductType]

    def __post_init__(self) -> None:
        """Validate product identifier."""
        if type(self) is IapProductId:
            raise TypeError("Use IapConsumableId, IapNonConsumableId or IapSubscriptionId")
        if not self.sku:
            raise ValueError("SKU required")


@dataclass(frozen=True)
class IapConsumableId(IapProductId):
    """A product that can be bought repeatedly (e.g. in-game currency)."""

    product_type: ClassVar[ProductType] = ProductType.CONSUMABLE


@dataclass(frozen=True)
class IapNonConsumableId(IapProductId):
    """A one-time purchase granting permanent entitlement."""

    product_type: ClassVar[ProductType] = ProductType.NON_CONSUMABLE


@dataclass(frozen=True)
class IapSubscriptionId(IapProductId):
    """A recurring, time-bounded entitlement."""

    product_type: ClassVar[ProductType] = ProductType.SUBSCRIPTION


# ============================================================================
# Purchase identifiers
# ============================================================================


@dataclass(frozen=True)
class AppStoreTransactionId:
    """Apple App Store transaction ID.

    For subscriptions this should be the *original* transaction ID, not the
    transaction ID of the latest renewal.
    """

    transaction_id: str

    vendor: ClassVar[Vendor] = Vendor.APPLE

    def __post_init__(self) -> None:
        """Validate transaction ID."""
        if not self.transaction_id:
            raise ValueError("Transaction ID required")

    def __str__(self) -> str:
        return self.transaction_id


@dataclass(frozen=True)
class GooglePlayPurchaseToken:
    """Google Play purchase token. Stable across subscription renewals."""

    token: str

    vendor: ClassVar[Vendor] = Vendor.GOOGLE

    def __post_init__(self) -> None:
        """Validate purchase token."""
        if not self.token:
            raise ValueError("Purchase token required")

    def __str__(self) -> str:
        return self.token


IapPurchaseId = AppStoreTransactionId | GooglePlayPurchaseToken


# ============================================================================
# Verification results
# ============================================================================


@dataclass(frozen=True)
class PriceInfo:
    """Price paid, in major currency units."""

    currency: str
    amount: Decimal

    def __post_init__(self) -> None:
        """Validate price information."""
        if len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency}")
        if self.amount < 0:
            raise ValueError(f"Price cannot be negative: {self.amount}")


@dataclass(frozen=True)
class ConsumableDetails:
    """Consumable-specific details."""

    is_consumed: bool
    quantity: int = 1


@dataclass(frozen=True)
class NonConsumableDetails:
    """Non-consumables carry no extra state beyond ownership."""


@dataclass(frozen=True)
class SubscriptionDetails:
    """Subscription-specific details."""

    expiration_time: datetime
    is_auto_renewing: bool
    grace_period_expiration_time: datetime | None = None


TypeSpecificDetails = ConsumableDetails | NonConsumableDetails | SubscriptionDetails

T = TypeVar("T", ConsumableDetails, NonConsumableDetails, SubscriptionDetails)

DETAILS_TYPE_BY_PRODUCT_TYPE: dict[ProductType, type] = {
    ProductType.CONSUMABLE: ConsumableDetails,
    ProductType.NON_CONSUMABLE: NonConsumableDetails,
    ProductType.SUBSCRIPTION: SubscriptionDetails,
}


@dataclass(frozen=True)
class IapDetails(Generic[T]):
    """Verified purchase, generic over the purchase-type specific payload."""

    product_id: IapProductId
    purchase_id: IapPurchaseId
    is_active: bool
    purchase_time: datetime
    type_specific_details: T
    price_info: PriceInfo | None = None
    environment: str | None = None  # "Production" or "Sandbox" when the vendor says

    def __post_init__(self) -> None:
        """Enforce that the payload type matches the declared product type."""
        expected = DETAILS_TYPE_BY_PRODUCT_TYPE[self.product_id.product_type]
        if not isinstance(self.type_specific_details, expected):
            raise ValueError(
                f"{type(self.type_specific_details).__name__} does not match "
                f"product type {self.product_id.product_type}"
            )

    @property
    def vendor(self) -> Vendor:
        """Storefront the purchase was verified against."""
        return self.purchase_id.vendor

    @property
    def product_type(self) -> ProductType:
        """Declared product type."""
        return self.product_id.product_type
