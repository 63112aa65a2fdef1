"""
Apple App Store Server API client.

Uses Apple App Store Server API v2 for transaction lookup.
https://developer.apple.com/documentation/appstoreserverapi

Returns decoded vendor JSON; mapping to domain models happens in the
purchase normalizer. Signed fields are decoded WITHOUT signature
verification (see iap_util.services.jws).
"""

import base64
import binascii
import time
from typing import Any

import httpx
import jwt
from structlog import get_logger

from iap_util.exceptions import MalformedVendorResponseError, VendorApiError, VendorAuthError
from iap_util.models.apple_storekit import SANDBOX_API_BASE_URL, AppleStoreKitConfig
from iap_util.models.domain import Vendor
from iap_util.observability.metrics import metrics
from iap_util.services.jws import JwsDecodeError, decode_jws_payload

logger = get_logger(__name__)

_JWT_LIFETIME_SECONDS = 3600  # Apple accepts at most 60 minutes
_JWT_REFRESH_BUFFER_SECONDS = 300


class AppStoreServerApiClient:
    """
    Apple App Store Server API client.

    Handles transaction lookup, transaction history, subscription status
    lookup and test notification requests.
    """

    def __init__(
        self,
        config: AppleStoreKitConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize App Store Server API client.

        Args:
            config: StoreKit configuration with API credentials
            http_client: Optional shared HTTP client (a new one is opened per call otherwise)
        """
        self.config = config
        self._http_client = http_client
        self._jwt_token: str | None = None
        self._jwt_expires_at: float = 0

        logger.info(
            "apple_storekit_client_initialized",
            bundle_id=config.bundle_id,
            environment=config.environment,
            sandbox_fallback=config.sandbox_fallback,
        )

    def _load_private_key(self) -> str:
        """Return the PEM private key, decoding it first if it was stored as base64."""
        private_key = self.config.private_key
        if "-----BEGIN" in private_key:
            return private_key
        try:
            return base64.b64decode(private_key, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return private_key

    def _generate_jwt(self) -> str:
        """
        Generate JWT for App Store Server API authentication.

        The JWT is valid for up to 60 minutes.
        """
        now = time.time()

        # Reuse cached token if still valid (with 5 min buffer)
        if self._jwt_token and now < (self._jwt_expires_at - _JWT_REFRESH_BUFFER_SECONDS):
            return self._jwt_token

        expires_at = now + _JWT_LIFETIME_SECONDS
        payload = {
            "iss": self.config.issuer_id,
            "iat": int(now),
            "exp": int(expires_at),
            "aud": "appstoreconnect-v1",
            "bid": self.config.bundle_id,
        }

        try:
            # Apple requires ES256
            token = jwt.encode(
                payload,
                self._load_private_key(),
                algorithm="ES256",
                headers={"kid": self.config.key_id},
            )
        except (jwt.exceptions.PyJWTError, ValueError, TypeError) as exc:
            raise VendorAuthError(Vendor.APPLE, f"Failed to sign API token: {exc}") from exc

        self._jwt_token = token
        self._jwt_expires_at = expires_at

        return token

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._generate_jwt()}",
            "Content-Type": "application/json",
        }
        try:
            if self._http_client is not None:
                return await self._http_client.request(
                    method, url, headers=headers, timeout=30.0, **kwargs
                )
            async with httpx.AsyncClient() as client:
                return await client.request(method, url, headers=headers, timeout=30.0, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("apple_storekit_transport_error", url=url, error=str(exc))
            raise VendorApiError(Vendor.APPLE, f"Request failed: {exc}") from exc

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        operation: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Make authenticated request to App Store Server API.

        Production is tried first. A 404 from production is retried against
        the sandbox when sandbox fallback is enabled, as Apple recommends for
        apps whose reviewers purchase in the sandbox.
        """
        with metrics.time_vendor_call(Vendor.APPLE, operation):
            response = await self._send(method, f"{self.config.api_base_url}{endpoint}", **kwargs)

            if (
                response.status_code == 404
                and self.config.sandbox_fallback
                and self.config.api_base_url != SANDBOX_API_BASE_URL
            ):
                logger.info("apple_storekit_sandbox_fallback", operation=operation)
                response = await self._send(method, f"{SANDBOX_API_BASE_URL}{endpoint}", **kwargs)

        if response.status_code == 401:
            raise VendorAuthError(Vendor.APPLE, "Invalid API credentials", 401)
        elif response.status_code == 404:
            raise VendorApiError(Vendor.APPLE, "Transaction not found", 404)
        elif response.status_code >= 400:
            logger.error(
                "apple_storekit_api_error",
                operation=operation,
                status=response.status_code,
                error=response.text,
            )
            raise VendorApiError(
                Vendor.APPLE,
                f"{operation} returned {response.status_code}",
                response.status_code,
            )

        try:
            result: dict[str, Any] = response.json()
        except ValueError as exc:
            raise MalformedVendorResponseError(
                Vendor.APPLE, f"{operation} response is not JSON"
            ) from exc
        return result

    def _decode_signed(self, signed_data: object, field: str) -> dict[str, Any]:
        if not isinstance(signed_data, str) or not signed_data:
            raise MalformedVendorResponseError(Vendor.APPLE, "missing signed data", field)
        try:
            return decode_jws_payload(signed_data)
        except JwsDecodeError as exc:
            raise MalformedVendorResponseError(Vendor.APPLE, str(exc), field) from exc

    async def get_transaction_info(self, transaction_id: str) -> dict[str, Any]:
        """
        Get transaction information from App Store Server API.

        Args:
            transaction_id: The transaction ID to look up (may be an original transaction ID)

        Returns:
            Decoded JWSTransactionDecodedPayload claims

        Raises:
            VendorApiError: If lookup fails
            MalformedVendorResponseError: If the signed transaction cannot be decoded
        """
        logger.info("getting_apple_transaction_info", transaction_id=transaction_id)

        result = await self._make_request(
            "GET",
            f"/inApps/v1/transactions/{transaction_id}",
            "get_transaction_info",
        )
        transaction = self._decode_signed(
            result.get("signedTransactionInfo"), "signedTransactionInfo"
        )

        logger.info(
            "apple_transaction_info_retrieved",
            transaction_id=transaction.get("transactionId"),
            product_id=transaction.get("productId"),
            environment=transaction.get("environment"),
        )
        return transaction

    async def get_transaction_history(self, original_transaction_id: str) -> list[dict[str, Any]]:
        """
        Get all transactions for an original transaction ID.

        Follows `revision` pagination until Apple reports no more pages.

        Args:
            original_transaction_id: The original transaction ID

        Returns:
            Decoded transaction claim sets, oldest page first
        """
        logger.info(
            "getting_apple_transaction_history",
            original_transaction_id=original_transaction_id,
        )

        transactions: list[dict[str, Any]] = []
        revision: str | None = None

        while True:
            params = {"revision": revision} if revision else None
            result = await self._make_request(
                "GET",
                f"/inApps/v1/history/{original_transaction_id}",
                "get_transaction_history",
                params=params,
            )

            for signed_data in result.get("signedTransactions") or []:
                transactions.append(self._decode_signed(signed_data, "signedTransactions"))

            if not result.get("hasMore", False):
                break
            revision = result.get("revision")
            if not revision:
                raise MalformedVendorResponseError(
                    Vendor.APPLE, "hasMore without revision", "revision"
                )

        logger.info(
            "apple_transaction_history_retrieved",
            original_transaction_id=original_transaction_id,
            count=len(transactions),
        )
        return transactions

    async def get_all_subscription_statuses(self, transaction_id: str) -> dict[str, Any]:
        """
        Get the status of every subscription in the transaction's subscription group.

        Args:
            transaction_id: Any transaction ID of the subscription (original preferred)

        Returns:
            Raw StatusResponse JSON (signed fields left encoded)
        """
        logger.info("getting_apple_subscription_statuses", transaction_id=transaction_id)

        result = await self._make_request(
            "GET",
            f"/inApps/v1/subscriptions/{transaction_id}",
            "get_all_subscription_statuses",
        )

        logger.info(
            "apple_subscription_statuses_retrieved",
            transaction_id=transaction_id,
            environment=result.get("environment"),
            groups=len(result.get("data") or []),
        )
        return result

    async def get_latest_subscription_transaction(
        self,
        original_transaction_id: str,
    ) -> tuple[dict[str, Any], dict[str, Any] | None, int | None]:
        """
        Find the latest transaction and renewal info for a subscription.

        Returns:
            (decoded transaction, decoded renewal info or None, Apple status code or None)

        Raises:
            MalformedVendorResponseError: If Apple's answer has no matching subscription
        """
        result = await self.get_all_subscription_statuses(original_transaction_id)

        for group in result.get("data") or []:
            for last in group.get("lastTransactions") or []:
                if last.get("originalTransactionId") != original_transaction_id:
                    continue
                transaction = self._decode_signed(
                    last.get("signedTransactionInfo"), "signedTransactionInfo"
                )
                renewal_info = None
                if last.get("signedRenewalInfo"):
                    renewal_info = self._decode_signed(
                        last["signedRenewalInfo"], "signedRenewalInfo"
                    )
                return transaction, renewal_info, last.get("status")

        raise MalformedVendorResponseError(
            Vendor.APPLE,
            f"no subscription with original transaction {original_transaction_id}",
            "lastTransactions",
        )

    async def request_test_notification(self) -> str:
        """
        Request a test notification from Apple.

        Returns:
            Test notification token
        """
        logger.info("requesting_apple_test_notification")

        result = await self._make_request(
            "POST",
            "/inApps/v1/notifications/test",
            "request_test_notification",
        )

        token = str(result.get("testNotificationToken", ""))
        logger.info(
            "apple_test_notification_requested",
            token=token[:20] + "..." if token else "",
        )
        return token
