"""
Purchase normalization - vendor purchase records to IapDetails.

Raw vendor JSON is parsed into the typed vendor models first, then checked
against what the caller declared (product type, SKU, application) and
reduced to a vendor-neutral IapDetails. The vendor's stated status is
trusted; entitlement is not re-derived from history.

Active rules:
    Apple one-time:      not revoked
    Apple subscription:  not revoked and (expiresDate or gracePeriodExpiresDate in the future)
    Google one-time:     purchaseState == 0 (consumption does not deactivate)
    Google subscription: ACTIVE or IN_GRACE_PERIOD, or CANCELED before line item expiry
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from structlog import get_logger

from iap_util.exceptions import (
    AudienceMismatchError,
    MalformedVendorResponseError,
    ProductIdMismatchError,
    ProductTypeMismatchError,
    PurchaseNotActiveError,
)
from iap_util.models.apple_storekit import (
    ApplePrice,
    AppleRenewalInfo,
    AppleTransactionInfo,
    AppleTransactionType,
)
from iap_util.models.domain import (
    ConsumableDetails,
    IapDetails,
    IapProductId,
    IapPurchaseId,
    NonConsumableDetails,
    PriceInfo,
    ProductType,
    SubscriptionDetails,
    TypeSpecificDetails,
    Vendor,
)
from iap_util.models.fields import InvalidFieldError, require_obj
from iap_util.models.google_play import (
    GooglePlayInAppProduct,
    GooglePlayMoney,
    GooglePlayProductPurchase,
    GooglePlaySubscriptionPurchase,
    GoogleSubscriptionState,
)

logger = get_logger(__name__)

APPLE_TYPE_BY_PRODUCT_TYPE: dict[ProductType, AppleTransactionType] = {
    ProductType.CONSUMABLE: AppleTransactionType.CONSUMABLE,
    ProductType.NON_CONSUMABLE: AppleTransactionType.NON_CONSUMABLE,
    ProductType.SUBSCRIPTION: AppleTransactionType.AUTO_RENEWABLE_SUBSCRIPTION,
}

GOOGLE_ACTIVE_SUBSCRIPTION_STATES = frozenset(
    {GoogleSubscriptionState.ACTIVE.value, GoogleSubscriptionState.IN_GRACE_PERIOD.value}
)


def _finish(
    vendor: Vendor,
    product_id: IapProductId,
    purchase_id: IapPurchaseId,
    details: IapDetails[Any],
    error_if_not_active: bool,
) -> IapDetails[Any]:
    if not details.is_active and error_if_not_active:
        logger.info(
            "iap_purchase_not_active",
            vendor=vendor,
            sku=product_id.sku,
            product_type=product_id.product_type,
        )
        raise PurchaseNotActiveError(vendor, product_id.sku, str(purchase_id))
    return details


def _check_sku(vendor: Vendor, product_id: IapProductId, vendor_sku: str | None) -> None:
    if vendor_sku is not None and vendor_sku != product_id.sku:
        raise ProductIdMismatchError(vendor, product_id.sku, vendor_sku)


# ============================================================================
# Apple
# ============================================================================


def normalize_apple_transaction(
    transaction: Mapping[str, Any],
    product_id: IapProductId,
    purchase_id: IapPurchaseId,
    *,
    application_id: str,
    include_price_info: bool = False,
    error_if_not_active: bool = True,
    renewal_info: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> IapDetails[Any]:
    """
    Normalize a decoded Apple transaction into IapDetails.

    Args:
        transaction: Decoded JWSTransactionDecodedPayload claims
        product_id: Declared product (selects the details type)
        purchase_id: Transaction ID the caller supplied
        application_id: Expected bundle ID
        include_price_info: Parse `price`/`currency` into PriceInfo
        error_if_not_active: Raise PurchaseNotActiveError instead of returning is_active=False
        renewal_info: Decoded JWSRenewalInfoDecodedPayload (subscriptions only)
        now: Reference time for expiry checks (defaults to current UTC time)

    Raises:
        MalformedVendorResponseError: Required claim missing or mistyped
        AudienceMismatchError: bundleId is not the configured application
        ProductTypeMismatchError: Apple `type` disagrees with the declared type
        ProductIdMismatchError: Apple `productId` is not the declared SKU
        PurchaseNotActiveError: Inactive and error_if_not_active
    """
    now = now or datetime.now(UTC)

    try:
        info = AppleTransactionInfo.from_payload(require_obj(transaction, "transaction"))
        renewal = (
            AppleRenewalInfo.from_payload(require_obj(renewal_info, "renewalInfo"))
            if renewal_info is not None
            else None
        )
    except InvalidFieldError as exc:
        raise MalformedVendorResponseError(Vendor.APPLE, exc.message, exc.field) from exc

    if info.bundle_id != application_id:
        raise AudienceMismatchError(Vendor.APPLE, application_id, info.bundle_id)

    expected_type = APPLE_TYPE_BY_PRODUCT_TYPE[product_id.product_type]
    if info.type != expected_type:
        raise ProductTypeMismatchError(Vendor.APPLE, str(expected_type), info.type)

    _check_sku(Vendor.APPLE, product_id, info.product_id)

    details: TypeSpecificDetails
    if product_id.product_type is ProductType.SUBSCRIPTION:
        if info.expires_date is None:
            raise MalformedVendorResponseError(
                Vendor.APPLE, "subscription transaction has no expiry", "expiresDate"
            )
        grace_expires = renewal.grace_period_expires_date if renewal else None
        is_active = not info.is_revoked() and (
            info.expires_date > now or (grace_expires is not None and grace_expires > now)
        )
        details = SubscriptionDetails(
            expiration_time=info.expires_date,
            is_auto_renewing=renewal.will_renew() if renewal else False,
            grace_period_expiration_time=grace_expires,
        )
    elif product_id.product_type is ProductType.CONSUMABLE:
        # Apple does not report whether the app finished the consumable
        is_active = not info.is_revoked()
        details = ConsumableDetails(is_consumed=False, quantity=info.quantity)
    else:
        is_active = not info.is_revoked()
        details = NonConsumableDetails()

    price_info = None
    if include_price_info:
        try:
            price = ApplePrice.from_payload(transaction)
        except InvalidFieldError as exc:
            raise MalformedVendorResponseError(Vendor.APPLE, exc.message, exc.field) from exc
        if price is not None:
            price_info = _price_info(
                Vendor.APPLE, price.currency, Decimal(price.price_milliunits) / Decimal(1000)
            )

    result: IapDetails[Any] = IapDetails(
        product_id=product_id,
        purchase_id=purchase_id,
        is_active=is_active,
        purchase_time=info.purchase_date,
        type_specific_details=details,
        price_info=price_info,
        environment=info.environment,
    )
    return _finish(Vendor.APPLE, product_id, purchase_id, result, error_if_not_active)


# ============================================================================
# Google
# ============================================================================


def normalize_google_product_purchase(
    purchase: Mapping[str, Any],
    product_id: IapProductId,
    purchase_id: IapPurchaseId,
    *,
    include_price_info: bool = False,
    error_if_not_active: bool = True,
    in_app_product: Mapping[str, Any] | None = None,
) -> IapDetails[Any]:
    """
    Normalize a Google ProductPurchase (consumable or non-consumable).

    Args:
        purchase: purchases.products.get response
        product_id: Declared consumable or non-consumable product
        purchase_id: Purchase token the caller supplied
        include_price_info: Read the catalog price from in_app_product
        error_if_not_active: Raise PurchaseNotActiveError instead of returning is_active=False
        in_app_product: inappproducts.get response (needed only for price info)

    Raises:
        MalformedVendorResponseError: Required field missing or mistyped
        ProductTypeMismatchError: A subscription id was supplied
        ProductIdMismatchError: The record names a different SKU
        PurchaseNotActiveError: Inactive and error_if_not_active
    """
    if product_id.product_type is ProductType.SUBSCRIPTION:
        raise ProductTypeMismatchError(
            Vendor.GOOGLE, str(product_id.product_type), "one-time product purchase"
        )

    try:
        record = GooglePlayProductPurchase.from_payload(require_obj(purchase, "purchase"))
    except InvalidFieldError as exc:
        raise MalformedVendorResponseError(Vendor.GOOGLE, exc.message, exc.field) from exc

    _check_sku(Vendor.GOOGLE, product_id, record.product_id)

    details: TypeSpecificDetails
    if product_id.product_type is ProductType.CONSUMABLE:
        details = ConsumableDetails(is_consumed=record.is_consumed(), quantity=record.quantity)
    else:
        details = NonConsumableDetails()

    price_info = None
    if include_price_info:
        if in_app_product is None:
            raise MalformedVendorResponseError(
                Vendor.GOOGLE, "catalog entry required for price info", "defaultPrice"
            )
        try:
            catalog = GooglePlayInAppProduct.from_payload(
                require_obj(in_app_product, "inAppProduct")
            )
        except InvalidFieldError as exc:
            raise MalformedVendorResponseError(Vendor.GOOGLE, exc.message, exc.field) from exc
        price_info = _price_info(Vendor.GOOGLE, catalog.currency, catalog.amount)

    result: IapDetails[Any] = IapDetails(
        product_id=product_id,
        purchase_id=purchase_id,
        is_active=record.is_valid(),
        purchase_time=record.purchase_time,
        type_specific_details=details,
        price_info=price_info,
        environment="Sandbox" if record.is_test_purchase() else "Production",
    )
    return _finish(Vendor.GOOGLE, product_id, purchase_id, result, error_if_not_active)


def normalize_google_subscription_purchase(
    purchase: Mapping[str, Any],
    product_id: IapProductId,
    purchase_id: IapPurchaseId,
    *,
    include_price_info: bool = False,
    error_if_not_active: bool = True,
    now: datetime | None = None,
) -> IapDetails[Any]:
    """
    Normalize a Google SubscriptionPurchaseV2.

    Args:
        purchase: purchases.subscriptionsv2.get response
        product_id: Declared subscription product
        purchase_id: Purchase token the caller supplied
        include_price_info: Read the line item's recurring price
        error_if_not_active: Raise PurchaseNotActiveError instead of returning is_active=False
        now: Reference time for the CANCELED-until-expiry rule

    Raises:
        MalformedVendorResponseError: Required field missing or mistyped
        ProductTypeMismatchError: A one-time product id was supplied
        ProductIdMismatchError: No line item matches the declared SKU
        PurchaseNotActiveError: Inactive and error_if_not_active
    """
    now = now or datetime.now(UTC)

    if product_id.product_type is not ProductType.SUBSCRIPTION:
        raise ProductTypeMismatchError(
            Vendor.GOOGLE, str(product_id.product_type), "subscription purchase"
        )

    try:
        record = GooglePlaySubscriptionPurchase.from_payload(require_obj(purchase, "purchase"))
    except InvalidFieldError as exc:
        raise MalformedVendorResponseError(Vendor.GOOGLE, exc.message, exc.field) from exc

    if record.start_time is None:
        raise MalformedVendorResponseError(
            Vendor.GOOGLE, "subscription has no start time", "startTime"
        )

    line_item = record.line_item_for(product_id.sku)
    if line_item is None:
        vendor_skus = ",".join(item.product_id for item in record.line_items) or "none"
        raise ProductIdMismatchError(Vendor.GOOGLE, product_id.sku, vendor_skus)
    if line_item.expiry_time is None:
        raise MalformedVendorResponseError(
            Vendor.GOOGLE, "line item has no expiry", "lineItems.expiryTime"
        )

    if record.subscription_state in GOOGLE_ACTIVE_SUBSCRIPTION_STATES:
        is_active = True
    elif record.subscription_state == GoogleSubscriptionState.CANCELED:
        is_active = line_item.expiry_time > now
    else:
        is_active = False

    price_info = None
    if include_price_info and line_item.recurring_price is not None:
        try:
            money = GooglePlayMoney.from_payload(line_item.recurring_price)
        except InvalidFieldError as exc:
            raise MalformedVendorResponseError(
                Vendor.GOOGLE, exc.message, f"recurringPrice.{exc.field}"
            ) from exc
        price_info = _price_info(Vendor.GOOGLE, money.currency_code, money.amount)

    result: IapDetails[Any] = IapDetails(
        product_id=product_id,
        purchase_id=purchase_id,
        is_active=is_active,
        purchase_time=record.start_time,
        type_specific_details=SubscriptionDetails(
            expiration_time=line_item.expiry_time,
            is_auto_renewing=line_item.auto_renew_enabled,
            grace_period_expiration_time=(
                line_item.expiry_time
                if record.subscription_state == GoogleSubscriptionState.IN_GRACE_PERIOD
                else None
            ),
        ),
        price_info=price_info,
        environment="Sandbox" if record.is_test_purchase else "Production",
    )
    return _finish(Vendor.GOOGLE, product_id, purchase_id, result, error_if_not_active)


def _price_info(vendor: Vendor, currency: str, amount: Decimal) -> PriceInfo:
    try:
        return PriceInfo(currency=currency, amount=amount)
    except ValueError as exc:
        raise MalformedVendorResponseError(vendor, str(exc), "price") from exc
