"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- Notification normalizer for the test application
- Mocked vendor clients and an IapService wired to them
- Settings cache isolation
"""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set required environment variables BEFORE importing package modules
os.environ.setdefault("APPLICATION_ID", "com.example.app")
os.environ.setdefault("GOOGLE_NOTIFICATION_SECRET", "test-push-secret")
os.environ.setdefault("TRACING_ENABLED", "false")

from iap_util.config import get_settings
from iap_util.services.apple_storekit_client import AppStoreServerApiClient
from iap_util.services.google_play_client import GooglePlayDeveloperApiClient
from iap_util.services.iap_service import IapService
from iap_util.services.notification_normalizer import NotificationNormalizer
from payloads import APPLICATION_ID, GOOGLE_SECRET

# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Each test sees settings built from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def normalizer() -> NotificationNormalizer:
    """Notification normalizer for the test application."""
    return NotificationNormalizer(APPLICATION_ID, GOOGLE_SECRET)


@pytest.fixture
def apple_client() -> MagicMock:
    """Mock App Store Server API client."""
    client = MagicMock(spec=AppStoreServerApiClient)
    client.get_transaction_info = AsyncMock()
    client.get_latest_subscription_transaction = AsyncMock()
    return client


@pytest.fixture
def google_client() -> MagicMock:
    """Mock Play Developer API client."""
    client = MagicMock(spec=GooglePlayDeveloperApiClient)
    client.get_product_purchase = AsyncMock()
    client.get_subscription_purchase_v2 = AsyncMock()
    client.get_in_app_product = AsyncMock()
    return client


@pytest.fixture
def iap_service(
    apple_client: MagicMock,
    google_client: MagicMock,
    normalizer: NotificationNormalizer,
) -> IapService:
    """IapService with mocked vendor clients."""
    return IapService(
        application_id=APPLICATION_ID,
        apple_client=apple_client,
        google_client=google_client,
        notification_normalizer=normalizer,
    )
