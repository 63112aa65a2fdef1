"""
Apple StoreKit vendor models - Immutable dataclasses for App Store Server data.

NO DICTIONARIES - Raw JSON is parsed once into these models.

Apple App Store Server API v2 and App Store Server Notifications v2 deliver
transaction, renewal and notification data as JWS (JSON Web Signature)
strings; the models below are built from the decoded claim sets.
https://developer.apple.com/documentation/appstoreserverapi
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum, StrEnum
from typing import Any

from iap_util.models.fields import (
    optional_bool,
    optional_int,
    optional_millis,
    optional_obj,
    optional_str,
    require_int,
    require_millis,
    require_str,
)

PRODUCTION_API_BASE_URL = "https://api.storekit.itunes.apple.com"
SANDBOX_API_BASE_URL = "https://api.storekit-sandbox.itunes.apple.com"


class AppleTransactionType(StrEnum):
    """Values of the transaction `type` claim."""

    AUTO_RENEWABLE_SUBSCRIPTION = "Auto-Renewable Subscription"
    NON_CONSUMABLE = "Non-Consumable"
    CONSUMABLE = "Consumable"
    NON_RENEWING_SUBSCRIPTION = "Non-Renewing Subscription"


class AppleRevocationReason(IntEnum):
    """Why Apple refunded or revoked a transaction."""

    OTHER = 0
    APP_ISSUE = 1


@dataclass(frozen=True)
class AppleTransactionInfo:
    """Decoded JWSTransactionDecodedPayload."""

    transaction_id: str  # Unique transaction identifier
    original_transaction_id: str  # First transaction in subscription chain
    product_id: str  # Product identifier from App Store Connect
    bundle_id: str  # App's bundle ID
    purchase_date: datetime
    type: str  # See AppleTransactionType; kept raw so unknown values survive
    environment: str  # "Production" or "Sandbox"
    quantity: int = 1

    # Optional fields
    original_purchase_date: datetime | None = None
    expires_date: datetime | None = None  # Subscriptions only
    revocation_date: datetime | None = None
    revocation_reason: int | None = None
    is_upgraded: bool = False
    web_order_line_item_id: str | None = None
    in_app_ownership_type: str | None = None  # "PURCHASED" or "FAMILY_SHARED"

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "AppleTransactionInfo":
        """Parse a decoded transaction claim set."""
        return cls(
            transaction_id=require_str(data, "transactionId"),
            original_transaction_id=require_str(data, "originalTransactionId"),
            product_id=require_str(data, "productId"),
            bundle_id=require_str(data, "bundleId"),
            purchase_date=require_millis(data, "purchaseDate"),
            type=require_str(data, "type"),
            environment=optional_str(data, "environment") or "Production",
            quantity=optional_int(data, "quantity") or 1,
            original_purchase_date=optional_millis(data, "originalPurchaseDate"),
            expires_date=optional_millis(data, "expiresDate"),
            revocation_date=optional_millis(data, "revocationDate"),
            revocation_reason=optional_int(data, "revocationReason"),
            is_upgraded=optional_bool(data, "isUpgraded"),
            web_order_line_item_id=optional_str(data, "webOrderLineItemId"),
            in_app_ownership_type=optional_str(data, "inAppOwnershipType"),
        )

    def is_revoked(self) -> bool:
        """Check if Apple refunded or revoked this transaction."""
        return self.revocation_date is not None

    def is_sandbox(self) -> bool:
        """Check if this is a sandbox (test) transaction."""
        return self.environment.lower() == "sandbox"

    def revocation_reason_name(self) -> str | None:
        """Readable revocation reason, if any."""
        if self.revocation_reason is None:
            return None
        try:
            return AppleRevocationReason(self.revocation_reason).name
        except ValueError:
            return str(self.revocation_reason)


@dataclass(frozen=True)
class ApplePrice:
    """Price claims of a transaction. Apple reports the price in milliunits."""

    currency: str
    price_milliunits: int

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "ApplePrice | None":
        """Parse price claims; None when Apple omitted them."""
        currency = optional_str(data, "currency")
        price = optional_int(data, "price")
        if currency is None or price is None:
            return None
        return cls(currency=currency, price_milliunits=price)


@dataclass(frozen=True)
class AppleRenewalInfo:
    """Decoded JWSRenewalInfoDecodedPayload."""

    original_transaction_id: str
    product_id: str
    auto_renew_status: int  # 0: off, 1: on
    expiration_intent: int | None = None  # Why subscription expired
    grace_period_expires_date: datetime | None = None
    is_in_billing_retry_period: bool = False
    auto_renew_product_id: str | None = None
    renewal_date: datetime | None = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "AppleRenewalInfo":
        """Parse a decoded renewal info claim set."""
        return cls(
            original_transaction_id=optional_str(data, "originalTransactionId") or "",
            product_id=require_str(data, "productId"),
            auto_renew_status=require_int(data, "autoRenewStatus"),
            expiration_intent=optional_int(data, "expirationIntent"),
            grace_period_expires_date=optional_millis(data, "gracePeriodExpiresDate"),
            is_in_billing_retry_period=optional_bool(data, "isInBillingRetryPeriod"),
            auto_renew_product_id=optional_str(data, "autoRenewProductId"),
            renewal_date=optional_millis(data, "renewalDate"),
        )

    def will_renew(self) -> bool:
        """Check if subscription will auto-renew."""
        return self.auto_renew_status == 1


@dataclass(frozen=True)
class AppleNotificationData:
    """The `data` object of a decoded notification payload."""

    bundle_id: str
    environment: str
    signed_transaction_info: str | None = None
    signed_renewal_info: str | None = None
    status: int | None = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "AppleNotificationData":
        return cls(
            bundle_id=require_str(data, "bundleId"),
            environment=optional_str(data, "environment") or "Production",
            signed_transaction_info=optional_str(data, "signedTransactionInfo"),
            signed_renewal_info=optional_str(data, "signedRenewalInfo"),
            status=optional_int(data, "status"),
        )


@dataclass(frozen=True)
class AppleNotificationPayload:
    """Decoded ResponseBodyV2DecodedPayload (App Store Server Notifications v2).

    Notification types include TEST, REFUND, REVOKE, DID_RENEW, EXPIRED,
    DID_FAIL_TO_RENEW, GRACE_PERIOD_EXPIRED, DID_CHANGE_RENEWAL_STATUS,
    DID_CHANGE_RENEWAL_PREF, PRICE_INCREASE, SUBSCRIBED, RENEWAL_EXTENDED and
    more; see the mapping table in the notification normalizer.
    """

    notification_type: str  # e.g., "REFUND", "DID_RENEW"
    subtype: str | None  # e.g., "INITIAL_BUY", "UPGRADE"
    notification_uuid: str
    signed_date: datetime
    version: str = "2.0"
    data: AppleNotificationData | None = None
    summary_bundle_id: str | None = None  # From `summary` or `externalPurchaseToken`

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "AppleNotificationPayload":
        """Parse a decoded notification claim set."""
        raw_data = optional_obj(data, "data")
        summary = optional_obj(data, "summary") or optional_obj(data, "externalPurchaseToken")
        return cls(
            notification_type=require_str(data, "notificationType"),
            # Apple omits subtype for most types; treat "" the same way
            subtype=optional_str(data, "subtype") or None,
            notification_uuid=require_str(data, "notificationUUID"),
            signed_date=require_millis(data, "signedDate"),
            version=optional_str(data, "version") or "2.0",
            data=AppleNotificationData.from_payload(raw_data) if raw_data is not None else None,
            summary_bundle_id=optional_str(summary, "bundleId") if summary else None,
        )

    @property
    def bundle_id(self) -> str | None:
        """Bundle ID the notification is addressed to."""
        if self.data is not None:
            return self.data.bundle_id
        return self.summary_bundle_id

    @property
    def type_tag(self) -> str:
        """Raw type tag, e.g. "PRICE_INCREASE" or "DID_CHANGE_RENEWAL_PREF/UPGRADE"."""
        if self.subtype:
            return f"{self.notification_type}/{self.subtype}"
        return self.notification_type

    def is_test(self) -> bool:
        """Check if this is a test notification."""
        return self.notification_type == "TEST"


@dataclass(frozen=True)
class AppleStoreKitConfig:
    """Configuration for Apple App Store Server API."""

    key_id: str  # Key ID from App Store Connect
    issuer_id: str  # Issuer ID from App Store Connect
    private_key: str  # Private key (.p8 contents, raw or base64)
    bundle_id: str  # App bundle ID
    environment: str = "production"  # "production" or "sandbox"
    sandbox_fallback: bool = True  # Retry not-found lookups against sandbox

    @property
    def api_base_url(self) -> str:
        """Get the API base URL for the configured environment."""
        if self.environment.lower() == "sandbox":
            return SANDBOX_API_BASE_URL
        return PRODUCTION_API_BASE_URL

    def __post_init__(self) -> None:
        """Validate configuration fields."""
        if not self.key_id:
            raise ValueError("StoreKit key_id is required")
        if not self.issuer_id:
            raise ValueError("StoreKit issuer_id is required")
        if not self.private_key:
            raise ValueError("StoreKit private_key is required")
        if not self.bundle_id:
            raise ValueError("StoreKit bundle_id is required")
        if self.environment.lower() not in ("production", "sandbox"):
            raise ValueError("Environment must be 'production' or 'sandbox'")
