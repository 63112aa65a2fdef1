"""
IAP Service - single entry point for purchase verification and notifications.

Routes a purchase to the vendor client selected by its purchase ID, runs the
vendor record through the purchase normalizer, and delegates webhook bodies
to the notification normalizer. Vendor client errors propagate unchanged;
there is no retry, caching or rate limiting here.
"""

from typing import Any

from structlog import get_logger

from iap_util.config import ConfigurationError, Settings, get_settings
from iap_util.exceptions import IapError, MalformedVendorResponseError
from iap_util.models.apple_storekit import AppleTransactionType
from iap_util.models.domain import (
    AppStoreTransactionId,
    GooglePlayPurchaseToken,
    IapDetails,
    IapProductId,
    IapPurchaseId,
    ProductType,
    Vendor,
)
from iap_util.models.notifications import IapUpdateNotification
from iap_util.observability.metrics import metrics
from iap_util.observability.tracing import add_span_attributes, trace_operation
from iap_util.services.apple_storekit_client import AppStoreServerApiClient
from iap_util.services.google_play_client import GooglePlayDeveloperApiClient
from iap_util.services.notification_normalizer import NotificationNormalizer
from iap_util.services.purchase_normalizer import (
    normalize_apple_transaction,
    normalize_google_product_purchase,
    normalize_google_subscription_purchase,
)

logger = get_logger(__name__)


class IapService:
    """In-app purchase verification for Apple App Store and Google Play."""

    def __init__(
        self,
        application_id: str,
        apple_client: AppStoreServerApiClient | None = None,
        google_client: GooglePlayDeveloperApiClient | None = None,
        notification_normalizer: NotificationNormalizer | None = None,
    ) -> None:
        """
        Initialize service.

        Args:
            application_id: Bundle ID / package name purchases must belong to
            apple_client: App Store Server API client (None if Apple is not configured)
            google_client: Play Developer API client (None if Google is not configured)
            notification_normalizer: Webhook parser (built without a Google secret if omitted)
        """
        self.application_id = application_id
        self.apple_client = apple_client
        self.google_client = google_client
        self.notification_normalizer = notification_normalizer or NotificationNormalizer(
            application_id
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "IapService":
        """Build the service and whichever vendor clients are configured."""
        settings = settings or get_settings()
        metrics.configure(settings)

        apple_config = settings.apple_storekit_config()
        google_config = settings.google_play_config()

        logger.info(
            "iap_service_configured",
            application_id=settings.application_id,
            apple_enabled=apple_config is not None,
            google_enabled=google_config is not None,
        )

        return cls(
            application_id=settings.application_id,
            apple_client=AppStoreServerApiClient(apple_config) if apple_config else None,
            google_client=GooglePlayDeveloperApiClient(google_config) if google_config else None,
            notification_normalizer=NotificationNormalizer(
                settings.application_id,
                settings.google_notification_secret,
            ),
        )

    async def verify_and_get_details(
        self,
        product_id: IapProductId,
        purchase_id: IapPurchaseId,
        *,
        include_price_info: bool = False,
        error_if_not_active: bool = True,
    ) -> IapDetails[Any]:
        """
        Verify a purchase with its vendor and return normalized details.

        Args:
            product_id: Declared product; its type selects the details type
            purchase_id: AppStoreTransactionId (original ID for subscriptions) or
                GooglePlayPurchaseToken; selects the vendor
            include_price_info: Also return the price (costs an extra call for Google one-time)
            error_if_not_active: Raise PurchaseNotActiveError for inactive purchases

        Returns:
            IapDetails whose type_specific_details matches product_id's type

        Raises:
            ConfigurationError: Vendor for this purchase ID is not configured
            VendorApiError: Vendor call failed (passed through unchanged)
            MalformedVendorResponseError, ProductTypeMismatchError,
            ProductIdMismatchError, AudienceMismatchError, PurchaseNotActiveError
        """
        vendor = purchase_id.vendor
        with trace_operation(
            "iap_verify_purchase",
            vendor=vendor,
            sku=product_id.sku,
            product_type=product_id.product_type,
            include_price_info=include_price_info,
        ) as span:
            try:
                if isinstance(purchase_id, AppStoreTransactionId):
                    details = await self._verify_apple(
                        product_id, purchase_id, include_price_info, error_if_not_active
                    )
                else:
                    details = await self._verify_google(
                        product_id, purchase_id, include_price_info, error_if_not_active
                    )
            except IapError as exc:
                metrics.record_verification(vendor, product_id.product_type, type(exc).__name__)
                logger.warning(
                    "iap_purchase_verification_failed",
                    vendor=vendor,
                    sku=product_id.sku,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                raise

            outcome = "active" if details.is_active else "inactive"
            metrics.record_verification(vendor, product_id.product_type, outcome)
            add_span_attributes(span, is_active=details.is_active, environment=details.environment)

            logger.info(
                "iap_purchase_verified",
                vendor=vendor,
                sku=product_id.sku,
                product_type=product_id.product_type,
                is_active=details.is_active,
                environment=details.environment,
            )
            return details

    async def _verify_apple(
        self,
        product_id: IapProductId,
        purchase_id: AppStoreTransactionId,
        include_price_info: bool,
        error_if_not_active: bool,
    ) -> IapDetails[Any]:
        if self.apple_client is None:
            raise ConfigurationError("Apple App Store Server API is not configured")

        transaction = await self.apple_client.get_transaction_info(purchase_id.transaction_id)

        renewal_info = None
        if (
            product_id.product_type is ProductType.SUBSCRIPTION
            and transaction.get("type") == AppleTransactionType.AUTO_RENEWABLE_SUBSCRIPTION
        ):
            # Any transaction in the chain resolves to the subscription's latest state
            original_transaction_id = transaction.get("originalTransactionId")
            if not isinstance(original_transaction_id, str) or not original_transaction_id:
                raise MalformedVendorResponseError(
                    Vendor.APPLE,
                    "subscription transaction has no original transaction ID",
                    "originalTransactionId",
                )
            transaction, renewal_info, _status = (
                await self.apple_client.get_latest_subscription_transaction(
                    original_transaction_id
                )
            )

        return normalize_apple_transaction(
            transaction,
            product_id,
            purchase_id,
            application_id=self.application_id,
            include_price_info=include_price_info,
            error_if_not_active=error_if_not_active,
            renewal_info=renewal_info,
        )

    async def _verify_google(
        self,
        product_id: IapProductId,
        purchase_id: GooglePlayPurchaseToken,
        include_price_info: bool,
        error_if_not_active: bool,
    ) -> IapDetails[Any]:
        if self.google_client is None:
            raise ConfigurationError("Google Play Developer API is not configured")

        if product_id.product_type is ProductType.SUBSCRIPTION:
            purchase = await self.google_client.get_subscription_purchase_v2(
                self.application_id, purchase_id.token
            )
            return normalize_google_subscription_purchase(
                purchase,
                product_id,
                purchase_id,
                include_price_info=include_price_info,
                error_if_not_active=error_if_not_active,
            )

        purchase = await self.google_client.get_product_purchase(
            self.application_id, product_id.sku, purchase_id.token
        )
        in_app_product = None
        if include_price_info:
            in_app_product = await self.google_client.get_in_app_product(
                self.application_id, product_id.sku
            )
        return normalize_google_product_purchase(
            purchase,
            product_id,
            purchase_id,
            include_price_info=include_price_info,
            error_if_not_active=error_if_not_active,
            in_app_product=in_app_product,
        )

    def parse_apple_notification(self, body: str | bytes) -> IapUpdateNotification:
        """Parse an App Store Server Notification v2 body."""
        with trace_operation("iap_parse_notification", vendor=Vendor.APPLE):
            return self.notification_normalizer.parse_apple_notification(body)

    def parse_google_notification(
        self,
        body: str | bytes,
        authorization: str | None,
    ) -> IapUpdateNotification:
        """Parse a Google Play RTDN push body after checking its Authorization header."""
        with trace_operation("iap_parse_notification", vendor=Vendor.GOOGLE):
            return self.notification_normalizer.parse_google_notification(body, authorization)
