"""
Google Play vendor models - Immutable dataclasses for Play Developer API data.

NO DICTIONARIES - Raw JSON is parsed once into these models.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import IntEnum, StrEnum
from typing import Any

from iap_util.models.fields import (
    InvalidFieldError,
    optional_bool,
    optional_int,
    optional_list,
    optional_obj,
    optional_rfc3339,
    optional_str,
    require_int,
    require_millis,
    require_obj,
    require_str,
)


class GooglePurchaseState(IntEnum):
    """purchases.products `purchaseState`."""

    PURCHASED = 0
    CANCELED = 1
    PENDING = 2


class GoogleSubscriptionState(StrEnum):
    """purchases.subscriptionsv2 `subscriptionState`."""

    UNSPECIFIED = "SUBSCRIPTION_STATE_UNSPECIFIED"
    PENDING = "SUBSCRIPTION_STATE_PENDING"
    ACTIVE = "SUBSCRIPTION_STATE_ACTIVE"
    PAUSED = "SUBSCRIPTION_STATE_PAUSED"
    IN_GRACE_PERIOD = "SUBSCRIPTION_STATE_IN_GRACE_PERIOD"
    ON_HOLD = "SUBSCRIPTION_STATE_ON_HOLD"
    CANCELED = "SUBSCRIPTION_STATE_CANCELED"
    EXPIRED = "SUBSCRIPTION_STATE_EXPIRED"
    PENDING_PURCHASE_CANCELED = "SUBSCRIPTION_STATE_PENDING_PURCHASE_CANCELED"


@dataclass(frozen=True)
class GooglePlayProductPurchase:
    """purchases.products.get resource (ProductPurchase)."""

    purchase_time: datetime
    purchase_state: int  # 0: purchased, 1: canceled, 2: pending
    consumption_state: int  # 0: not consumed, 1: consumed
    acknowledgement_state: int  # 0: not acknowledged, 1: acknowledged
    order_id: str | None = None
    product_id: str | None = None
    quantity: int = 1
    purchase_type: int | None = None  # None: real, 0: test, 1: promo, 2: rewarded
    region_code: str | None = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "GooglePlayProductPurchase":
        """Parse a ProductPurchase resource."""
        return cls(
            purchase_time=require_millis(data, "purchaseTimeMillis"),
            purchase_state=require_int(data, "purchaseState"),
            consumption_state=optional_int(data, "consumptionState") or 0,
            acknowledgement_state=optional_int(data, "acknowledgementState") or 0,
            order_id=optional_str(data, "orderId"),
            product_id=optional_str(data, "productId"),
            quantity=optional_int(data, "quantity") or 1,
            purchase_type=optional_int(data, "purchaseType"),
            region_code=optional_str(data, "regionCode"),
        )

    def is_valid(self) -> bool:
        """Check if the purchase completed and was not cancelled."""
        return self.purchase_state == GooglePurchaseState.PURCHASED

    def is_consumed(self) -> bool:
        return self.consumption_state == 1

    def is_test_purchase(self) -> bool:
        """Check if this is a test purchase (license tester account)."""
        return self.purchase_type == 0


@dataclass(frozen=True)
class GooglePlayMoney:
    """google.type.Money: whole units plus nano units."""

    currency_code: str
    units: int
    nanos: int = 0

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "GooglePlayMoney":
        return cls(
            currency_code=require_str(data, "currencyCode"),
            units=optional_int(data, "units") or 0,
            nanos=optional_int(data, "nanos") or 0,
        )

    @property
    def amount(self) -> Decimal:
        return Decimal(self.units) + Decimal(self.nanos) / Decimal(1_000_000_000)


@dataclass(frozen=True)
class GooglePlaySubscriptionLineItem:
    """One line item of a SubscriptionPurchaseV2."""

    product_id: str
    expiry_time: datetime | None
    auto_renew_enabled: bool = False
    recurring_price: Mapping[str, Any] | None = None  # Parsed only when price is requested

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "GooglePlaySubscriptionLineItem":
        plan = optional_obj(data, "autoRenewingPlan")
        return cls(
            product_id=require_str(data, "productId"),
            expiry_time=optional_rfc3339(data, "expiryTime"),
            auto_renew_enabled=optional_bool(plan, "autoRenewEnabled") if plan else False,
            recurring_price=optional_obj(plan, "recurringPrice") if plan else None,
        )


@dataclass(frozen=True)
class GooglePlaySubscriptionPurchase:
    """purchases.subscriptionsv2.get resource (SubscriptionPurchaseV2)."""

    subscription_state: str
    start_time: datetime | None
    line_items: tuple[GooglePlaySubscriptionLineItem, ...]
    latest_order_id: str | None = None
    linked_purchase_token: str | None = None
    is_test_purchase: bool = False

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "GooglePlaySubscriptionPurchase":
        """Parse a SubscriptionPurchaseV2 resource."""
        line_items = tuple(
            GooglePlaySubscriptionLineItem.from_payload(require_obj(item, "lineItems"))
            for item in optional_list(data, "lineItems")
        )
        return cls(
            subscription_state=require_str(data, "subscriptionState"),
            start_time=optional_rfc3339(data, "startTime"),
            line_items=line_items,
            latest_order_id=optional_str(data, "latestOrderId"),
            linked_purchase_token=optional_str(data, "linkedPurchaseToken"),
            is_test_purchase=data.get("testPurchase") is not None,
        )

    def line_item_for(self, product_id: str) -> GooglePlaySubscriptionLineItem | None:
        """Line item for a given subscription SKU."""
        for item in self.line_items:
            if item.product_id == product_id:
                return item
        return None


@dataclass(frozen=True)
class GooglePlayInAppProduct:
    """inappproducts.get resource: catalog entry with its default price."""

    sku: str
    currency: str
    price_micros: int

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "GooglePlayInAppProduct":
        price = optional_obj(data, "defaultPrice")
        if price is None:
            raise InvalidFieldError("defaultPrice", "required field is missing")
        return cls(
            sku=require_str(data, "sku"),
            currency=require_str(price, "currency"),
            price_micros=require_int(price, "priceMicros"),
        )

    @property
    def amount(self) -> Decimal:
        return Decimal(self.price_micros) / Decimal(1_000_000)


@dataclass(frozen=True)
class GooglePlayDeveloperNotification:
    """Real-time developer notification (decoded from the Pub/Sub message data)."""

    package_name: str
    event_time: datetime
    version: str = "1.0"
    subscription_notification: Mapping[str, Any] | None = None
    one_time_product_notification: Mapping[str, Any] | None = None
    voided_purchase_notification: Mapping[str, Any] | None = None
    test_notification: Mapping[str, Any] | None = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "GooglePlayDeveloperNotification":
        return cls(
            package_name=require_str(data, "packageName"),
            event_time=require_millis(data, "eventTimeMillis"),
            version=optional_str(data, "version") or "1.0",
            subscription_notification=optional_obj(data, "subscriptionNotification"),
            one_time_product_notification=optional_obj(data, "oneTimeProductNotification"),
            voided_purchase_notification=optional_obj(data, "voidedPurchaseNotification"),
            test_notification=optional_obj(data, "testNotification"),
        )


@dataclass(frozen=True)
class GooglePlayConfig:
    """Configuration for the Google Play Developer API."""

    service_account_json: str  # Path to the key file or the raw JSON contents
    package_name: str  # Android package name

    def __post_init__(self) -> None:
        """Validate configuration fields."""
        if not self.service_account_json:
            raise ValueError("Google Play service account is required")
        if not self.package_name:
            raise ValueError("Package name required")
