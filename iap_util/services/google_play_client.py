"""
Google Play Developer API client.

Returns raw vendor JSON; mapping to domain models happens in the purchase
normalizer.
"""

import asyncio
import json
from typing import Any

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from structlog import get_logger

from iap_util.exceptions import VendorApiError, VendorAuthError
from iap_util.models.domain import Vendor
from iap_util.models.google_play import GooglePlayConfig
from iap_util.observability.metrics import metrics

logger = get_logger(__name__)

ANDROID_PUBLISHER_SCOPE = "https://www.googleapis.com/auth/androidpublisher"


class GooglePlayDeveloperApiClient:
    """
    Google Play Developer API client.

    Handles one-time product lookup, subscription lookup and catalog price lookup.
    """

    def __init__(self, config: GooglePlayConfig) -> None:
        """
        Initialize Google Play client.

        Args:
            config: Service account credential (file path or raw JSON) and package name
        """
        self.config = config

        try:
            raw = config.service_account_json.strip()
            if raw.startswith("{"):
                self.credentials = service_account.Credentials.from_service_account_info(  # type: ignore[no-untyped-call]
                    json.loads(raw),
                    scopes=[ANDROID_PUBLISHER_SCOPE],
                )
            else:
                self.credentials = service_account.Credentials.from_service_account_file(  # type: ignore[no-untyped-call]
                    raw,
                    scopes=[ANDROID_PUBLISHER_SCOPE],
                )
        except (ValueError, OSError, GoogleAuthError) as exc:
            raise VendorAuthError(Vendor.GOOGLE, f"Service account key invalid: {exc}") from exc

        # Build API client
        self.service = build(
            "androidpublisher", "v3", credentials=self.credentials, cache_discovery=False
        )

        logger.info("google_play_client_initialized", package_name=config.package_name)

    @property
    def package_name(self) -> str:
        return self.config.package_name

    async def _execute(self, request: Any, operation: str) -> dict[str, Any]:
        """Run a discovery-client request off the event loop and map HTTP errors."""
        try:
            with metrics.time_vendor_call(Vendor.GOOGLE, operation):
                result: dict[str, Any] = await asyncio.to_thread(request.execute)
            return result

        except HttpError as exc:
            error_content = exc.content.decode("utf-8") if exc.content else str(exc)
            status = exc.resp.status
            logger.error(
                "google_play_api_error",
                operation=operation,
                status=status,
                error=error_content,
            )

            if status in (401, 403):
                raise VendorAuthError(Vendor.GOOGLE, error_content, status) from exc
            elif status == 404:
                raise VendorApiError(Vendor.GOOGLE, "Purchase not found or invalid token", 404) from exc
            elif status == 410:
                raise VendorApiError(Vendor.GOOGLE, "Purchase token expired", 410) from exc
            else:
                raise VendorApiError(
                    Vendor.GOOGLE, f"{operation} failed: {error_content}", status
                ) from exc

        except GoogleAuthError as exc:
            logger.error("google_play_auth_error", operation=operation, error=str(exc))
            raise VendorAuthError(Vendor.GOOGLE, str(exc)) from exc

    async def get_product_purchase(
        self,
        package_name: str,
        product_id: str,
        token: str,
    ) -> dict[str, Any]:
        """
        purchases.products.get

        Args:
            package_name: Package the in-app product was sold in
            product_id: In-app product SKU
            token: Token provided to the device when the product was purchased

        Returns:
            Raw ProductPurchase resource
        """
        logger.info(
            "getting_google_play_product_purchase",
            product_id=product_id,
            package_name=package_name,
        )

        request = (
            self.service.purchases()
            .products()
            .get(packageName=package_name, productId=product_id, token=token)
        )
        result = await self._execute(request, "purchases.products.get")

        logger.info(
            "google_play_product_purchase_retrieved",
            order_id=result.get("orderId"),
            product_id=product_id,
            purchase_state=result.get("purchaseState"),
            is_test=result.get("purchaseType") == 0,
        )
        return result

    async def get_subscription_purchase_v2(
        self,
        package_name: str,
        token: str,
    ) -> dict[str, Any]:
        """
        purchases.subscriptionsv2.get

        Args:
            package_name: Package the subscription was purchased in
            token: Token provided to the device when the subscription was purchased

        Returns:
            Raw SubscriptionPurchaseV2 resource
        """
        logger.info("getting_google_play_subscription_purchase", package_name=package_name)

        request = (
            self.service.purchases()
            .subscriptionsv2()
            .get(packageName=package_name, token=token)
        )
        result = await self._execute(request, "purchases.subscriptionsv2.get")

        logger.info(
            "google_play_subscription_purchase_retrieved",
            latest_order_id=result.get("latestOrderId"),
            subscription_state=result.get("subscriptionState"),
        )
        return result

    async def get_in_app_product(self, package_name: str, sku: str) -> dict[str, Any]:
        """
        inappproducts.get

        Args:
            package_name: Package name of the app
            sku: Unique identifier for the in-app product

        Returns:
            Raw InAppProduct resource (used for its default price)
        """
        logger.info("getting_google_play_in_app_product", sku=sku)

        request = self.service.inappproducts().get(packageName=package_name, sku=sku)
        return await self._execute(request, "inappproducts.get")
