"""
Notification normalization - vendor webhooks to IapUpdateNotification.

Apple App Store Server Notifications v2 and Google Play real-time developer
notifications are mapped through finite tables onto the NotificationDetails
union. A vendor event with no table entry becomes Unsupported(raw_type_tag)
rather than an error; adding support for a new event is one table entry.

Apple payloads are JWS-decoded WITHOUT signature verification (see
iap_util.services.jws). Google pushes are authenticated only by comparing
the Authorization header with a pre-shared secret.
"""

import base64
import binascii
import hmac
import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from structlog import get_logger

from iap_util.exceptions import AudienceMismatchError, MalformedPayloadError, UnauthorizedError
from iap_util.models.apple_storekit import (
    AppleNotificationPayload,
    AppleRenewalInfo,
    AppleTransactionInfo,
    AppleTransactionType,
)
from iap_util.models.domain import (
    AppStoreTransactionId,
    GooglePlayPurchaseToken,
    IapConsumableId,
    IapNonConsumableId,
    IapPurchaseId,
    IapSubscriptionId,
    Vendor,
)
from iap_util.models.fields import (
    InvalidFieldError,
    optional_str,
    require_int,
    require_obj,
    require_str,
)
from iap_util.models.google_play import GooglePlayDeveloperNotification
from iap_util.models.notifications import (
    ConsumableVoided,
    IapUpdateNotification,
    NonConsumableVoided,
    NotificationDetails,
    SubscriptionAutoRenewToggled,
    SubscriptionEnded,
    SubscriptionEndReason,
    SubscriptionExpiryChanged,
    SubscriptionGracePeriodStarted,
    SubscriptionRenewed,
    Test,
    UnknownOneTimePurchaseVoided,
    Unsupported,
)
from iap_util.observability.metrics import metrics
from iap_util.services.jws import JwsDecodeError, decode_jws_payload

logger = get_logger(__name__)


class NotificationKind(StrEnum):
    """Shape of the normalized event a table entry produces."""

    TEST = "test"
    VOIDED = "voided"
    RENEWED = "renewed"
    EXPIRY_CHANGED = "expiry_changed"
    GRACE_PERIOD_STARTED = "grace_period_started"
    ENDED = "ended"
    AUTO_RENEW_TOGGLED = "auto_renew_toggled"


@dataclass(frozen=True)
class NotificationMapping:
    """One mapping table entry."""

    kind: NotificationKind
    end_reason: SubscriptionEndReason | None = None  # ENDED only
    is_refunded: bool = False  # VOIDED only
    auto_renew_enabled: bool | None = None  # AUTO_RENEW_TOGGLED only


# ============================================================================
# Mapping tables
# ============================================================================

# (notificationType, subtype) -> mapping. None means Apple sent no subtype.
APPLE_NOTIFICATION_TABLE: dict[tuple[str, str | None], NotificationMapping] = {
    ("TEST", None): NotificationMapping(NotificationKind.TEST),
    ("REFUND", None): NotificationMapping(NotificationKind.VOIDED, is_refunded=True),
    ("REVOKE", None): NotificationMapping(NotificationKind.VOIDED, is_refunded=False),
    ("DID_RENEW", None): NotificationMapping(NotificationKind.RENEWED),
    ("DID_RENEW", "BILLING_RECOVERY"): NotificationMapping(NotificationKind.RENEWED),
    ("SUBSCRIBED", "INITIAL_BUY"): NotificationMapping(NotificationKind.EXPIRY_CHANGED),
    ("SUBSCRIBED", "RESUBSCRIBE"): NotificationMapping(NotificationKind.EXPIRY_CHANGED),
    ("RENEWAL_EXTENDED", None): NotificationMapping(NotificationKind.EXPIRY_CHANGED),
    ("DID_FAIL_TO_RENEW", "GRACE_PERIOD"): NotificationMapping(
        NotificationKind.GRACE_PERIOD_STARTED
    ),
    ("DID_FAIL_TO_RENEW", None): NotificationMapping(
        NotificationKind.ENDED, end_reason=SubscriptionEndReason.FAILED_TO_RENEW
    ),
    ("GRACE_PERIOD_EXPIRED", None): NotificationMapping(
        NotificationKind.ENDED, end_reason=SubscriptionEndReason.FAILED_TO_RENEW
    ),
    ("EXPIRED", "VOLUNTARY"): NotificationMapping(
        NotificationKind.ENDED, end_reason=SubscriptionEndReason.CANCELLED
    ),
    ("EXPIRED", "BILLING_RETRY"): NotificationMapping(
        NotificationKind.ENDED, end_reason=SubscriptionEndReason.FAILED_TO_RENEW
    ),
    ("EXPIRED", "PRICE_INCREASE"): NotificationMapping(
        NotificationKind.ENDED, end_reason=SubscriptionEndReason.DECLINED_PRICE_INCREASE
    ),
    ("EXPIRED", "PRODUCT_NOT_FOR_SALE"): NotificationMapping(
        NotificationKind.ENDED, end_reason=SubscriptionEndReason.UNKNOWN
    ),
    ("DID_CHANGE_RENEWAL_STATUS", "AUTO_RENEW_ENABLED"): NotificationMapping(
        NotificationKind.AUTO_RENEW_TOGGLED, auto_renew_enabled=True
    ),
    ("DID_CHANGE_RENEWAL_STATUS", "AUTO_RENEW_DISABLED"): NotificationMapping(
        NotificationKind.AUTO_RENEW_TOGGLED, auto_renew_enabled=False
    ),
}

# subscriptionNotification.notificationType -> mapping.
# None marks a known event with no normalized form.
GOOGLE_SUBSCRIPTION_NOTIFICATION_TABLE: dict[int, NotificationMapping | None] = {
    1: NotificationMapping(NotificationKind.EXPIRY_CHANGED),  # RECOVERED
    2: NotificationMapping(NotificationKind.RENEWED),  # RENEWED
    3: NotificationMapping(NotificationKind.AUTO_RENEW_TOGGLED, auto_renew_enabled=False),  # CANCELED
    4: NotificationMapping(NotificationKind.EXPIRY_CHANGED),  # PURCHASED
    5: NotificationMapping(  # ON_HOLD
        NotificationKind.ENDED, end_reason=SubscriptionEndReason.FAILED_TO_RENEW
    ),
    6: NotificationMapping(NotificationKind.GRACE_PERIOD_STARTED),  # IN_GRACE_PERIOD
    7: NotificationMapping(NotificationKind.AUTO_RENEW_TOGGLED, auto_renew_enabled=True),  # RESTARTED
    8: None,  # PRICE_CHANGE_CONFIRMED
    9: NotificationMapping(NotificationKind.EXPIRY_CHANGED),  # DEFERRED
    10: NotificationMapping(NotificationKind.ENDED, end_reason=SubscriptionEndReason.PAUSED),
    11: None,  # PAUSE_SCHEDULE_CHANGED
    12: NotificationMapping(NotificationKind.ENDED, end_reason=SubscriptionEndReason.VOIDED),
    13: NotificationMapping(NotificationKind.ENDED, end_reason=SubscriptionEndReason.UNKNOWN),
    20: None,  # PENDING_PURCHASE_CANCELED
}

# oneTimeProductNotification.notificationType -> mapping.
# PURCHASED and CANCELED carry nothing verification doesn't already report.
GOOGLE_ONE_TIME_PRODUCT_NOTIFICATION_TABLE: dict[int, NotificationMapping | None] = {
    1: None,  # ONE_TIME_PRODUCT_PURCHASED
    2: None,  # ONE_TIME_PRODUCT_CANCELED
}

GOOGLE_VOIDED_PRODUCT_TYPE_SUBSCRIPTION = 1
GOOGLE_VOIDED_PRODUCT_TYPE_ONE_TIME = 2
GOOGLE_REFUND_TYPE_FULL_REFUND = 1
GOOGLE_REFUND_TYPE_NAMES = {1: "FULL_REFUND", 2: "QUANTITY_BASED_PARTIAL_REFUND"}


class NotificationNormalizer:
    """
    Parse vendor webhook bodies into IapUpdateNotification.

    Stateless apart from configuration; safe to share between requests.
    """

    def __init__(self, application_id: str, google_notification_secret: str = "") -> None:
        """
        Initialize normalizer.

        Args:
            application_id: Expected bundle ID / package name
            google_notification_secret: Pre-shared secret Google pushes send as Authorization
        """
        if not application_id:
            raise ValueError("Application ID required")
        self.application_id = application_id
        self._google_notification_secret = google_notification_secret

    # ========================================================================
    # Apple
    # ========================================================================

    def parse_apple_notification(self, body: str | bytes) -> IapUpdateNotification:
        """
        Parse an App Store Server Notification v2.

        Args:
            body: Raw POST body, either {"signedPayload": "<jws>"} or the bare JWS

        Raises:
            MalformedPayloadError: Body, JWS or required claims invalid
            AudienceMismatchError: Notification addressed to another bundle ID
        """
        signed_payload = self._apple_signed_payload(body)

        try:
            claims = decode_jws_payload(signed_payload)
        except JwsDecodeError as exc:
            raise MalformedPayloadError(Vendor.APPLE, str(exc), "signedPayload") from exc

        try:
            payload = AppleNotificationPayload.from_payload(claims)
        except InvalidFieldError as exc:
            raise MalformedPayloadError(Vendor.APPLE, exc.message, exc.field) from exc

        if payload.bundle_id is None:
            raise MalformedPayloadError(Vendor.APPLE, "no bundle ID in notification", "bundleId")
        self._check_audience(Vendor.APPLE, payload.bundle_id)

        mapping = APPLE_NOTIFICATION_TABLE.get((payload.notification_type, payload.subtype))
        if mapping is None:
            details: NotificationDetails = Unsupported(payload.type_tag)
        else:
            details = self._apple_details(payload, mapping)

        return self._emit(
            IapUpdateNotification(
                vendor=Vendor.APPLE,
                notification_id=payload.notification_uuid,
                time=payload.signed_date,
                details=details,
            ),
            raw_type_tag=payload.type_tag,
        )

    def _apple_signed_payload(self, body: str | bytes) -> str:
        try:
            text = body.decode("utf-8") if isinstance(body, bytes) else body
        except UnicodeDecodeError as exc:
            raise MalformedPayloadError(Vendor.APPLE, f"body is not UTF-8: {exc}", "body") from exc
        text = text.strip()
        if not text.startswith("{"):
            return text
        try:
            wrapper = require_obj(json.loads(text), "body")
            return require_str(wrapper, "signedPayload")
        except json.JSONDecodeError as exc:
            raise MalformedPayloadError(Vendor.APPLE, f"body is not JSON: {exc}") from exc
        except InvalidFieldError as exc:
            raise MalformedPayloadError(Vendor.APPLE, exc.message, exc.field) from exc

    def _apple_decode(self, signed_data: str, field: str) -> Mapping[str, Any]:
        try:
            return decode_jws_payload(signed_data)
        except JwsDecodeError as exc:
            raise MalformedPayloadError(Vendor.APPLE, str(exc), field) from exc

    def _apple_details(
        self,
        payload: AppleNotificationPayload,
        mapping: NotificationMapping,
    ) -> NotificationDetails:
        if mapping.kind is NotificationKind.TEST:
            return Test()

        data = payload.data
        if data is None or not data.signed_transaction_info:
            raise MalformedPayloadError(
                Vendor.APPLE,
                f"{payload.type_tag} notification has no transaction",
                "data.signedTransactionInfo",
            )

        try:
            transaction = AppleTransactionInfo.from_payload(
                self._apple_decode(data.signed_transaction_info, "data.signedTransactionInfo")
            )
            renewal = (
                AppleRenewalInfo.from_payload(
                    self._apple_decode(data.signed_renewal_info, "data.signedRenewalInfo")
                )
                if data.signed_renewal_info
                else None
            )
        except InvalidFieldError as exc:
            raise MalformedPayloadError(Vendor.APPLE, exc.message, exc.field) from exc

        if mapping.kind is NotificationKind.VOIDED:
            return self._apple_voided(transaction, mapping.is_refunded)

        purchase_id = AppStoreTransactionId(transaction.original_transaction_id)
        product_id = IapSubscriptionId(transaction.product_id)

        if mapping.kind is NotificationKind.RENEWED:
            return SubscriptionRenewed(
                application_id=self.application_id,
                product_id=product_id,
                purchase_id=purchase_id,
                renewal_id=transaction.transaction_id,
                expiration_time=transaction.expires_date,
            )
        elif mapping.kind is NotificationKind.EXPIRY_CHANGED:
            return SubscriptionExpiryChanged(
                application_id=self.application_id,
                product_id=product_id,
                purchase_id=purchase_id,
                expiration_time=transaction.expires_date,
            )
        elif mapping.kind is NotificationKind.GRACE_PERIOD_STARTED:
            return SubscriptionGracePeriodStarted(
                application_id=self.application_id,
                product_id=product_id,
                purchase_id=purchase_id,
                grace_period_expiration_time=renewal.grace_period_expires_date if renewal else None,
            )
        elif mapping.kind is NotificationKind.AUTO_RENEW_TOGGLED:
            return SubscriptionAutoRenewToggled(
                application_id=self.application_id,
                product_id=product_id,
                purchase_id=purchase_id,
                auto_renew_enabled=bool(mapping.auto_renew_enabled),
            )
        else:
            return SubscriptionEnded(
                application_id=self.application_id,
                product_id=product_id,
                purchase_id=purchase_id,
                reason=mapping.end_reason or SubscriptionEndReason.UNKNOWN,
            )

    def _apple_voided(
        self,
        transaction: AppleTransactionInfo,
        is_refunded: bool,
    ) -> NotificationDetails:
        reason = transaction.revocation_reason_name()
        purchase_id = AppStoreTransactionId(transaction.transaction_id)

        if transaction.type == AppleTransactionType.CONSUMABLE:
            return ConsumableVoided(
                application_id=self.application_id,
                product_id=IapConsumableId(transaction.product_id),
                purchase_id=purchase_id,
                is_refunded=is_refunded,
                reason=reason,
            )
        elif transaction.type == AppleTransactionType.NON_CONSUMABLE:
            return NonConsumableVoided(
                application_id=self.application_id,
                product_id=IapNonConsumableId(transaction.product_id),
                purchase_id=purchase_id,
                is_refunded=is_refunded,
                reason=reason,
            )
        elif transaction.type == AppleTransactionType.AUTO_RENEWABLE_SUBSCRIPTION:
            return SubscriptionEnded(
                application_id=self.application_id,
                product_id=IapSubscriptionId(transaction.product_id),
                purchase_id=AppStoreTransactionId(transaction.original_transaction_id),
                reason=SubscriptionEndReason.VOIDED,
            )
        return UnknownOneTimePurchaseVoided(
            application_id=self.application_id,
            purchase_id=purchase_id,
            is_refunded=is_refunded,
            reason=reason,
        )

    # ========================================================================
    # Google
    # ========================================================================

    def parse_google_notification(
        self,
        body: str | bytes,
        authorization: str | None,
    ) -> IapUpdateNotification:
        """
        Parse a Google Play real-time developer notification.

        The Authorization header is checked before the body is looked at.

        Args:
            body: Pub/Sub push envelope, or the bare developer notification JSON
            authorization: Value of the request's Authorization header

        Raises:
            UnauthorizedError: Secret not configured, header missing or wrong
            MalformedPayloadError: Envelope, base64, JSON or required fields invalid
            AudienceMismatchError: Notification addressed to another package
        """
        self._check_google_authorization(authorization)

        notification_json, message_id = self._google_unwrap(body)

        try:
            notification = GooglePlayDeveloperNotification.from_payload(notification_json)
        except InvalidFieldError as exc:
            raise MalformedPayloadError(Vendor.GOOGLE, exc.message, exc.field) from exc

        self._check_audience(Vendor.GOOGLE, notification.package_name)

        try:
            details, raw_type_tag = self._google_details(notification)
        except InvalidFieldError as exc:
            raise MalformedPayloadError(Vendor.GOOGLE, exc.message, exc.field) from exc

        notification_id = message_id or (
            f"{notification.package_name}:{int(notification.event_time.timestamp() * 1000)}"
        )
        return self._emit(
            IapUpdateNotification(
                vendor=Vendor.GOOGLE,
                notification_id=notification_id,
                time=notification.event_time,
                details=details,
            ),
            raw_type_tag=raw_type_tag,
        )

    def _check_google_authorization(self, authorization: str | None) -> None:
        if not self._google_notification_secret:
            logger.warning("google_notification_secret_not_configured")
            raise UnauthorizedError(Vendor.GOOGLE, "notification secret not configured")
        if not authorization:
            raise UnauthorizedError(Vendor.GOOGLE, "missing Authorization header")
        if not hmac.compare_digest(
            authorization.encode("utf-8"), self._google_notification_secret.encode("utf-8")
        ):
            logger.warning("google_notification_unauthorized")
            raise UnauthorizedError(Vendor.GOOGLE, "invalid Authorization header")

    def _google_unwrap(self, body: str | bytes) -> tuple[Mapping[str, Any], str | None]:
        """Return (developer notification JSON, Pub/Sub message ID if any)."""
        try:
            envelope = require_obj(json.loads(body), "body")
            if "message" not in envelope:
                return envelope, None

            message = require_obj(envelope["message"], "message")
            data = require_str(message, "data")
            message_id = optional_str(message, "messageId") or optional_str(message, "message_id")
            decoded = base64.b64decode(data, validate=True)
            return require_obj(json.loads(decoded), "message.data"), message_id
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedPayloadError(Vendor.GOOGLE, f"invalid JSON: {exc}") from exc
        except binascii.Error as exc:
            raise MalformedPayloadError(
                Vendor.GOOGLE, f"invalid base64: {exc}", "message.data"
            ) from exc
        except InvalidFieldError as exc:
            raise MalformedPayloadError(Vendor.GOOGLE, exc.message, exc.field) from exc

    def _google_details(
        self,
        notification: GooglePlayDeveloperNotification,
    ) -> tuple[NotificationDetails, str]:
        if notification.subscription_notification is not None:
            return self._google_subscription(notification.subscription_notification)

        if notification.one_time_product_notification is not None:
            return self._google_one_time(notification.one_time_product_notification)

        if notification.voided_purchase_notification is not None:
            return self._google_voided(notification.voided_purchase_notification)

        if notification.test_notification is not None:
            return Test(), "TEST"

        raise MalformedPayloadError(
            Vendor.GOOGLE,
            "no subscription, one-time product, voided purchase or test notification",
        )

    def _google_subscription(
        self,
        subscription: Mapping[str, Any],
    ) -> tuple[NotificationDetails, str]:
        notification_type = require_int(subscription, "notificationType")
        raw_type_tag = f"SUBSCRIPTION_{notification_type}"
        mapping = GOOGLE_SUBSCRIPTION_NOTIFICATION_TABLE.get(notification_type)
        if mapping is None:
            return Unsupported(raw_type_tag), raw_type_tag

        purchase_id: IapPurchaseId = GooglePlayPurchaseToken(
            require_str(subscription, "purchaseToken")
        )
        sku = optional_str(subscription, "subscriptionId")
        product_id = IapSubscriptionId(sku) if sku else None

        details: NotificationDetails
        if mapping.kind is NotificationKind.RENEWED:
            details = SubscriptionRenewed(
                application_id=self.application_id,
                product_id=product_id,
                purchase_id=purchase_id,
            )
        elif mapping.kind is NotificationKind.EXPIRY_CHANGED:
            details = SubscriptionExpiryChanged(
                application_id=self.application_id,
                product_id=product_id,
                purchase_id=purchase_id,
            )
        elif mapping.kind is NotificationKind.GRACE_PERIOD_STARTED:
            details = SubscriptionGracePeriodStarted(
                application_id=self.application_id,
                product_id=product_id,
                purchase_id=purchase_id,
            )
        elif mapping.kind is NotificationKind.AUTO_RENEW_TOGGLED:
            details = SubscriptionAutoRenewToggled(
                application_id=self.application_id,
                product_id=product_id,
                purchase_id=purchase_id,
                auto_renew_enabled=bool(mapping.auto_renew_enabled),
            )
        else:
            details = SubscriptionEnded(
                application_id=self.application_id,
                product_id=product_id,
                purchase_id=purchase_id,
                reason=mapping.end_reason or SubscriptionEndReason.UNKNOWN,
            )
        return details, raw_type_tag

    def _google_one_time(self, one_time: Mapping[str, Any]) -> tuple[NotificationDetails, str]:
        notification_type = require_int(one_time, "notificationType")
        raw_type_tag = f"ONE_TIME_PRODUCT_{notification_type}"
        mapping = GOOGLE_ONE_TIME_PRODUCT_NOTIFICATION_TABLE.get(notification_type)
        # The SKU is known here but not whether the product is consumable
        if mapping is None or mapping.kind is not NotificationKind.VOIDED:
            return Unsupported(raw_type_tag), raw_type_tag
        return (
            UnknownOneTimePurchaseVoided(
                application_id=self.application_id,
                purchase_id=GooglePlayPurchaseToken(require_str(one_time, "purchaseToken")),
                is_refunded=mapping.is_refunded,
            ),
            raw_type_tag,
        )

    def _google_voided(self, voided: Mapping[str, Any]) -> tuple[NotificationDetails, str]:
        product_type = require_int(voided, "productType")
        refund_type = require_int(voided, "refundType")
        purchase_id = GooglePlayPurchaseToken(require_str(voided, "purchaseToken"))
        raw_type_tag = f"VOIDED_PURCHASE_{product_type}"

        if product_type == GOOGLE_VOIDED_PRODUCT_TYPE_SUBSCRIPTION:
            return (
                SubscriptionEnded(
                    application_id=self.application_id,
                    product_id=None,
                    purchase_id=purchase_id,
                    reason=SubscriptionEndReason.VOIDED,
                ),
                raw_type_tag,
            )
        elif product_type == GOOGLE_VOIDED_PRODUCT_TYPE_ONE_TIME:
            return (
                UnknownOneTimePurchaseVoided(
                    application_id=self.application_id,
                    purchase_id=purchase_id,
                    is_refunded=refund_type == GOOGLE_REFUND_TYPE_FULL_REFUND,
                    reason=GOOGLE_REFUND_TYPE_NAMES.get(refund_type),
                ),
                raw_type_tag,
            )
        return Unsupported(raw_type_tag), raw_type_tag

    # ========================================================================
    # Shared
    # ========================================================================

    def _check_audience(self, vendor: Vendor, actual: str) -> None:
        if actual != self.application_id:
            logger.warning(
                "notification_audience_mismatch",
                vendor=vendor,
                expected=self.application_id,
                actual=actual,
            )
            raise AudienceMismatchError(vendor, self.application_id, actual)

    def _emit(
        self,
        notification: IapUpdateNotification,
        raw_type_tag: str,
    ) -> IapUpdateNotification:
        variant = type(notification.details).__name__
        metrics.record_notification(notification.vendor, variant)
        if notification.is_supported:
            logger.info(
                "notification_normalized",
                vendor=notification.vendor,
                notification_id=notification.notification_id,
                raw_type_tag=raw_type_tag,
                variant=variant,
            )
        else:
            logger.info(
                "notification_unsupported",
                vendor=notification.vendor,
                notification_id=notification.notification_id,
                raw_type_tag=raw_type_tag,
            )
        return notification
