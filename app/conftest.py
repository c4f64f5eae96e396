"""
Project-wide pytest configuration.

This module configures pytest-django and provides project-wide fixtures.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

import django
import pytest

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # The test client speaks plain HTTP; do not redirect it to HTTPS
    settings.SECURE_SSL_REDIRECT = False

    # Celery tasks queued from on_commit callbacks run in-process
    settings.CELERY_TASK_ALWAYS_EAGER = True

    # Use fast password hasher for tests
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full message lifecycle)
    - test_views.py, test_settlement.py, test_tasks.py, etc. → integration
    - test_models.py, test_addresses.py, test_helpers.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_webhooks.py",
        "test_handlers.py",
        "test_settlement.py",
        "test_detection.py",
        "test_ledger.py",
        "test_deadline_sweeper.py",
        "test_reconciliation.py",
        "test_dispatcher.py",
        "test_admin.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_addresses.py",
        "test_helpers.py",
        "test_decorators.py",
        "test_services.py",
        "test_stripe_adapter.py",
        "test_state_transitions.py",
        "test_timeliness.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        # Check patterns in priority order
        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            # Default: integration (most tests hit the database)
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def escrow_test_settings(settings):
    """Deterministic escrow configuration for every test."""
    settings.ESCROW_REPLY_DOMAIN = "reply.example.com"
    settings.ESCROW_RESPONSE_DEADLINE_HOURS = 48
    settings.ESCROW_GRACE_PERIOD_MINUTES = 15
    settings.ESCROW_RECIPIENT_SHARE_PERCENT = 75
    settings.ESCROW_SPLIT_RESOLVER = ""
    settings.ESCROW_CURRENCY = "eur"
    settings.ESCROW_MAX_REFUNDS_PER_RUN = 50
    settings.ESCROW_MAX_REFUND_AMOUNT_PER_RUN = "10000.00"
    settings.ESCROW_SWEEP_BATCH_SIZE = 100
    settings.ESCROW_MAX_TRANSFER_RETRIES_PER_RUN = 10
    settings.ESCROW_INTERNAL_API_TOKEN = "internal-test-token"
    settings.INBOUND_EMAIL_WEBHOOK_USERNAME = "inbound"
    settings.INBOUND_EMAIL_WEBHOOK_PASSWORD = "inbound-secret"
    settings.INBOUND_EMAIL_WEBHOOK_SECRET = "inbound-hmac-secret"
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test_123"
    settings.EMAIL_WEBHOOK_SECRET = "email-webhook-secret"
    settings.EMAIL_PROVIDER = "smtp"
    settings.EMAIL_MESSAGE_ID_DOMAIN = "mail.example.com"
    settings.DEFAULT_FROM_EMAIL = "noreply@example.com"
    return settings
