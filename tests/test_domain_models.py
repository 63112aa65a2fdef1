"""
Tests for domain and notification models.

Covers dataclass validation, immutability and the IapDetails tag check.
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

import iap_util.models.notifications as n
from iap_util.models.domain import (
    AppStoreTransactionId,
    ConsumableDetails,
    GooglePlayPurchaseToken,
    IapConsumableId,
    IapDetails,
    IapNonConsumableId,
    IapProductId,
    IapSubscriptionId,
    NonConsumableDetails,
    PriceInfo,
    ProductType,
    SubscriptionDetails,
    Vendor,
)

PURCHASE_TIME = datetime(2024, 5, 1, 10, 0, tzinfo=UTC)


class TestProductIds:
    """Tests for typed product identifiers."""

    @pytest.mark.parametrize(
        "cls,product_type",
        [
            (IapConsumableId, ProductType.CONSUMABLE),
            (IapNonConsumableId, ProductType.NON_CONSUMABLE),
            (IapSubscriptionId, ProductType.SUBSCRIPTION),
        ],
    )
    def test_product_type(self, cls, product_type):
        """Each identifier class carries its product type."""
        assert cls("sku_1").product_type == product_type

    def test_empty_sku_rejected(self):
        with pytest.raises(ValueError, match="SKU required"):
            IapConsumableId("")

    def test_base_class_not_constructible(self):
        """The untyped base would defeat product type dispatch."""
        with pytest.raises(TypeError):
            IapProductId("sku_1")

    def test_immutable(self):
        product_id = IapSubscriptionId("pro_monthly")
        with pytest.raises(AttributeError):
            product_id.sku = "other"  # type: ignore[misc]

    def test_types_distinguish_equal_skus(self):
        """Same SKU under a different product type is a different identifier."""
        assert IapConsumableId("x") != IapNonConsumableId("x")


class TestPurchaseIds:
    """Tests for purchase identifiers."""

    def test_apple_vendor(self):
        purchase_id = AppStoreTransactionId("2000000123456789")
        assert purchase_id.vendor == Vendor.APPLE
        assert str(purchase_id) == "2000000123456789"

    def test_google_vendor(self):
        purchase_id = GooglePlayPurchaseToken("token-abc")
        assert purchase_id.vendor == Vendor.GOOGLE
        assert str(purchase_id) == "token-abc"

    def test_empty_values_rejected(self):
        with pytest.raises(ValueError, match="Transaction ID required"):
            AppStoreTransactionId("")
        with pytest.raises(ValueError, match="Purchase token required"):
            GooglePlayPurchaseToken("")


class TestPriceInfo:
    """Tests for PriceInfo validation."""

    def test_valid(self):
        price = PriceInfo(currency="USD", amount=Decimal("4.99"))
        assert price.amount == Decimal("4.99")

    def test_invalid_currency(self):
        with pytest.raises(ValueError, match="Invalid currency code"):
            PriceInfo(currency="US", amount=Decimal("1"))

    def test_negative_amount(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            PriceInfo(currency="USD", amount=Decimal("-0.01"))


class TestIapDetails:
    """Tests for the IapDetails product type tag check."""

    def test_matching_details(self):
        details = IapDetails(
            product_id=IapConsumableId("coins_100"),
            purchase_id=GooglePlayPurchaseToken("token-abc"),
            is_active=True,
            purchase_time=PURCHASE_TIME,
            type_specific_details=ConsumableDetails(is_consumed=False),
        )
        assert details.vendor == Vendor.GOOGLE
        assert details.product_type == ProductType.CONSUMABLE
        assert details.price_info is None

    def test_subscription_details(self):
        details = IapDetails(
            product_id=IapSubscriptionId("pro_monthly"),
            purchase_id=AppStoreTransactionId("2000000111111111"),
            is_active=False,
            purchase_time=PURCHASE_TIME,
            type_specific_details=SubscriptionDetails(
                expiration_time=PURCHASE_TIME, is_auto_renewing=False
            ),
        )
        assert details.vendor == Vendor.APPLE
        assert details.type_specific_details.grace_period_expiration_time is None

    @pytest.mark.parametrize(
        "product_id,details",
        [
            (IapConsumableId("a"), NonConsumableDetails()),
            (IapNonConsumableId("a"), ConsumableDetails(is_consumed=True)),
            (
                IapConsumableId("a"),
                SubscriptionDetails(expiration_time=PURCHASE_TIME, is_auto_renewing=True),
            ),
            (IapSubscriptionId("a"), NonConsumableDetails()),
        ],
    )
    def test_mismatched_details_rejected(self, product_id, details):
        """A details payload of the wrong type is a programming error."""
        with pytest.raises(ValueError, match="does not match product type"):
            IapDetails(
                product_id=product_id,
                purchase_id=GooglePlayPurchaseToken("token-abc"),
                is_active=True,
                purchase_time=PURCHASE_TIME,
                type_specific_details=details,
            )


class TestIapUpdateNotification:
    """Tests for the notification envelope."""

    def test_supported(self):
        notification = n.IapUpdateNotification(
            vendor=Vendor.GOOGLE,
            notification_id="1",
            time=PURCHASE_TIME,
            details=n.SubscriptionEnded(
                application_id="com.example.app",
                product_id=None,
                purchase_id=GooglePlayPurchaseToken("token-abc"),
                reason=n.SubscriptionEndReason.VOIDED,
            ),
        )
        assert notification.is_supported

    def test_unsupported(self):
        notification = n.IapUpdateNotification(
            vendor=Vendor.APPLE,
            notification_id="1",
            time=PURCHASE_TIME,
            details=n.Unsupported("PRICE_INCREASE"),
        )
        assert not notification.is_supported
        assert notification.details.raw_type_tag == "PRICE_INCREASE"

    def test_test_variant_is_supported(self):
        notification = n.IapUpdateNotification(
            vendor=Vendor.APPLE, notification_id="1", time=PURCHASE_TIME, details=n.Test()
        )
        assert notification.is_supported
