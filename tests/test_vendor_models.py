"""
Tests for Apple StoreKit and Google Play vendor models.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from iap_util.models.apple_storekit import (
    PRODUCTION_API_BASE_URL,
    SANDBOX_API_BASE_URL,
    ApplePrice,
    AppleNotificationPayload,
    AppleRenewalInfo,
    AppleStoreKitConfig,
    AppleTransactionInfo,
)
from iap_util.models.fields import InvalidFieldError
from iap_util.models.google_play import (
    GooglePlayConfig,
    GooglePlayDeveloperNotification,
    GooglePlayInAppProduct,
    GooglePlayMoney,
    GooglePlayProductPurchase,
    GooglePlaySubscriptionPurchase,
)
from payloads import (
    NOW,
    apple_notification,
    apple_renewal_info,
    apple_subscription_transaction,
    apple_transaction,
    google_in_app_product,
    google_product_purchase,
    google_subscription_purchase,
)


class TestAppleTransactionInfo:
    """Tests for AppleTransactionInfo parsing."""

    def test_parse(self):
        info = AppleTransactionInfo.from_payload(apple_subscription_transaction())
        assert info.transaction_id == "2000000987654321"
        assert info.original_transaction_id == "2000000111111111"
        assert info.type == "Auto-Renewable Subscription"
        assert info.expires_date == NOW + timedelta(days=20)
        assert not info.is_revoked()
        assert not info.is_sandbox()

    def test_missing_required(self):
        claims = apple_transaction()
        del claims["bundleId"]
        with pytest.raises(InvalidFieldError) as exc_info:
            AppleTransactionInfo.from_payload(claims)
        assert exc_info.value.field == "bundleId"

    def test_environment_defaults_to_production(self):
        claims = apple_transaction()
        del claims["environment"]
        assert AppleTransactionInfo.from_payload(claims).environment == "Production"

    def test_revocation(self):
        info = AppleTransactionInfo.from_payload(
            apple_transaction(revocationDate=1717243200000, revocationReason=1)
        )
        assert info.is_revoked()
        assert info.revocation_reason_name() == "APP_ISSUE"

    def test_unknown_revocation_reason(self):
        info = AppleTransactionInfo.from_payload(
            apple_transaction(revocationDate=1717243200000, revocationReason=7)
        )
        assert info.revocation_reason_name() == "7"


class TestApplePrice:
    """Tests for ApplePrice."""

    def test_parse(self):
        price = ApplePrice.from_payload(apple_transaction())
        assert price is not None
        assert price.currency == "USD"
        assert price.price_milliunits == 4990

    def test_missing(self):
        claims = apple_transaction()
        del claims["price"]
        assert ApplePrice.from_payload(claims) is None


class TestAppleRenewalInfo:
    """Tests for AppleRenewalInfo."""

    def test_will_renew(self):
        assert AppleRenewalInfo.from_payload(apple_renewal_info()).will_renew()
        assert not AppleRenewalInfo.from_payload(apple_renewal_info(autoRenewStatus=0)).will_renew()

    def test_grace_period(self):
        grace = NOW + timedelta(days=3)
        info = AppleRenewalInfo.from_payload(
            apple_renewal_info(gracePeriodExpiresDate=int(grace.timestamp() * 1000))
        )
        assert info.grace_period_expires_date == grace


class TestAppleNotificationPayload:
    """Tests for AppleNotificationPayload."""

    def test_type_tag(self):
        payload = AppleNotificationPayload.from_payload(
            apple_notification("DID_CHANGE_RENEWAL_PREF", "UPGRADE")
        )
        assert payload.type_tag == "DID_CHANGE_RENEWAL_PREF/UPGRADE"
        assert payload.bundle_id == "com.example.app"

    def test_empty_subtype_is_none(self):
        claims = apple_notification("PRICE_INCREASE")
        claims["subtype"] = ""
        payload = AppleNotificationPayload.from_payload(claims)
        assert payload.subtype is None
        assert payload.type_tag == "PRICE_INCREASE"

    def test_summary_bundle_id(self):
        claims = apple_notification("RENEWAL_EXTENSION", "SUMMARY")
        del claims["data"]
        claims["summary"] = {"bundleId": "com.example.app", "requestIdentifier": "r1"}
        payload = AppleNotificationPayload.from_payload(claims)
        assert payload.data is None
        assert payload.bundle_id == "com.example.app"

    def test_is_test(self):
        assert AppleNotificationPayload.from_payload(apple_notification("TEST")).is_test()


class TestAppleStoreKitConfig:
    """Tests for AppleStoreKitConfig."""

    def test_base_url(self):
        config = AppleStoreKitConfig(key_id="K", issuer_id="I", private_key="P", bundle_id="B")
        assert config.api_base_url == PRODUCTION_API_BASE_URL
        sandbox = AppleStoreKitConfig(
            key_id="K", issuer_id="I", private_key="P", bundle_id="B", environment="sandbox"
        )
        assert sandbox.api_base_url == SANDBOX_API_BASE_URL

    def test_validation(self):
        with pytest.raises(ValueError, match="key_id"):
            AppleStoreKitConfig(key_id="", issuer_id="I", private_key="P", bundle_id="B")
        with pytest.raises(ValueError, match="Environment"):
            AppleStoreKitConfig(
                key_id="K", issuer_id="I", private_key="P", bundle_id="B", environment="staging"
            )


class TestGooglePlayProductPurchase:
    """Tests for GooglePlayProductPurchase."""

    def test_parse(self):
        purchase = GooglePlayProductPurchase.from_payload(google_product_purchase())
        assert purchase.purchase_time == NOW - timedelta(hours=1)
        assert purchase.is_valid()
        assert not purchase.is_consumed()
        assert not purchase.is_test_purchase()
        assert purchase.quantity == 1

    @pytest.mark.parametrize("state,valid", [(0, True), (1, False), (2, False)])
    def test_is_valid(self, state, valid):
        purchase = GooglePlayProductPurchase.from_payload(
            google_product_purchase(purchaseState=state)
        )
        assert purchase.is_valid() is valid

    def test_test_purchase(self):
        purchase = GooglePlayProductPurchase.from_payload(google_product_purchase(purchaseType=0))
        assert purchase.is_test_purchase()


class TestGooglePlaySubscriptionPurchase:
    """Tests for GooglePlaySubscriptionPurchase."""

    def test_parse(self):
        purchase = GooglePlaySubscriptionPurchase.from_payload(google_subscription_purchase())
        assert purchase.subscription_state == "SUBSCRIPTION_STATE_ACTIVE"
        assert purchase.start_time == datetime(2024, 5, 1, 10, 0, 0, 123000, tzinfo=UTC)
        item = purchase.line_item_for("pro_monthly")
        assert item is not None
        assert item.auto_renew_enabled
        assert item.expiry_time == NOW + timedelta(days=20)
        assert purchase.line_item_for("other") is None

    def test_test_purchase(self):
        purchase = GooglePlaySubscriptionPurchase.from_payload(
            google_subscription_purchase(testPurchase={})
        )
        assert purchase.is_test_purchase


class TestGooglePlayMoney:
    """Tests for GooglePlayMoney."""

    def test_amount(self):
        money = GooglePlayMoney.from_payload({"currencyCode": "EUR", "units": "9", "nanos": 990000000})
        assert money.amount == Decimal("9.99")

    def test_nanos_only(self):
        money = GooglePlayMoney.from_payload({"currencyCode": "USD", "nanos": 500000000})
        assert money.amount == Decimal("0.5")


class TestGooglePlayInAppProduct:
    """Tests for GooglePlayInAppProduct."""

    def test_amount(self):
        product = GooglePlayInAppProduct.from_payload(google_in_app_product())
        assert product.currency == "USD"
        assert product.amount == Decimal("4.99")

    def test_missing_default_price(self):
        payload = google_in_app_product()
        del payload["defaultPrice"]
        with pytest.raises(InvalidFieldError) as exc_info:
            GooglePlayInAppProduct.from_payload(payload)
        assert exc_info.value.field == "defaultPrice"


class TestGooglePlayDeveloperNotification:
    """Tests for GooglePlayDeveloperNotification."""

    def test_parse(self):
        notification = GooglePlayDeveloperNotification.from_payload(
            {
                "version": "1.0",
                "packageName": "com.example.app",
                "eventTimeMillis": "1717243200000",
                "testNotification": {"version": "1.0"},
            }
        )
        assert notification.event_time == NOW
        assert notification.test_notification == {"version": "1.0"}
        assert notification.subscription_notification is None


class TestGooglePlayConfig:
    """Tests for GooglePlayConfig."""

    def test_validation(self):
        with pytest.raises(ValueError, match="service account"):
            GooglePlayConfig(service_account_json="", package_name="com.example.app")
        with pytest.raises(ValueError, match="Package name required"):
            GooglePlayConfig(service_account_json="{}", package_name="")
