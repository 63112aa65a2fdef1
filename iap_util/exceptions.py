"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Every error carries the vendor it came from plus enough field context to
triage without re-parsing the raw payload. There is no
signature-verification error: Apple JWS payloads are decoded, not verified.
"""


class IapError(Exception):
    """Base exception for all in-app purchase errors."""

    pass


class MalformedVendorResponseError(IapError):
    """Raised when a vendor purchase record is missing fields or has the wrong shape."""

    def __init__(self, vendor: str, message: str, field: str | None = None) -> None:
        self.vendor = vendor
        self.message = message
        self.field = field
        suffix = f" (field: {field})" if field else ""
        super().__init__(f"Malformed {vendor} response: {message}{suffix}")


class ProductTypeMismatchError(IapError):
    """Raised when the vendor's purchase type disagrees with the declared product type."""

    def __init__(self, vendor: str, expected: str, actual: str) -> None:
        self.vendor = vendor
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Product type mismatch for {vendor}: expected {expected}, vendor reports {actual}"
        )


class ProductIdMismatchError(IapError):
    """Raised when the vendor record belongs to a different SKU than the one supplied."""

    def __init__(self, vendor: str, expected: str, actual: str) -> None:
        self.vendor = vendor
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Product ID mismatch for {vendor}: expected {expected}, vendor reports {actual}"
        )


class PurchaseNotActiveError(IapError):
    """Raised when a purchase is inactive or expired and the caller asked for an error."""

    def __init__(self, vendor: str, sku: str, purchase_id: str) -> None:
        self.vendor = vendor
        self.sku = sku
        self.purchase_id = purchase_id
        super().__init__(f"Purchase {purchase_id} of {sku} is not active ({vendor})")


class MalformedPayloadError(IapError):
    """Raised when a notification payload cannot be decoded or lacks required claims."""

    def __init__(self, vendor: str, message: str, field: str | None = None) -> None:
        self.vendor = vendor
        self.message = message
        self.field = field
        suffix = f" (field: {field})" if field else ""
        super().__init__(f"Malformed {vendor} notification: {message}{suffix}")


class UnauthorizedError(IapError):
    """Raised when a webhook authorization credential does not match."""

    def __init__(self, vendor: str, message: str) -> None:
        self.vendor = vendor
        self.message = message
        super().__init__(f"Unauthorized {vendor} notification: {message}")


class AudienceMismatchError(IapError):
    """Raised when a vendor record or notification targets a different application."""

    def __init__(self, vendor: str, expected: str, actual: str | None) -> None:
        self.vendor = vendor
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Audience mismatch for {vendor}: expected {expected}, got {actual}"
        )


class VendorApiError(IapError):
    """Raised when a vendor API call fails (transport or non-2xx response)."""

    def __init__(self, vendor: str, message: str, status_code: int | None = None) -> None:
        self.vendor = vendor
        self.message = message
        self.status_code = status_code
        super().__init__(f"{vendor} API error: {message}")


class VendorAuthError(VendorApiError):
    """Raised when vendor API credentials are rejected or cannot be built."""

    def __init__(self, vendor: str, message: str, status_code: int | None = None) -> None:
        super().__init__(vendor, f"authentication failed: {message}", status_code)
