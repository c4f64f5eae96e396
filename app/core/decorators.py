"""
Custom decorators for views.

Usage:
    from core.decorators import requires_settings

    @requires_settings("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")
    def stripe_webhook(request):
        ...

    class InboundEmailWebhookView(APIView):
        @method_decorator(requires_settings("ESCROW_REPLY_DOMAIN"))
        def post(self, request):
            ...
"""

from __future__ import annotations

import functools
import logging
from typing import Callable

from django.conf import settings
from django.http import JsonResponse

from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def missing_settings(*names: str) -> list[str]:
    """Return the names of settings that are unset or blank."""
    return [name for name in names if not getattr(settings, name, None)]


def ensure_settings(*names: str) -> None:
    """
    Raise ConfigurationError if any of the named settings is blank.

    Raises:
        ConfigurationError: Listing every missing setting
    """
    missing = missing_settings(*names)
    if missing:
        raise ConfigurationError(
            f"Required settings are not configured: {', '.join(missing)}",
            details={"missing": missing},
        )


def requires_settings(*names: str):
    """
    Refuse to serve a request when a required setting is blank.

    The check runs before the view touches the request body, so a
    misconfigured deployment answers HTTP 500 and processes nothing.

    Args:
        *names: Django setting names that must be non-empty

    Returns:
        Decorator function
    """

    def decorator(view_func: Callable) -> Callable:
        @functools.wraps(view_func)
        def wrapper(request, *args, **kwargs):
            try:
                ensure_settings(*names)
            except ConfigurationError as e:
                logger.critical(
                    "Refusing request: handler is misconfigured",
                    extra={"view": view_func.__name__, "missing": e.details["missing"]},
                )
                return JsonResponse(e.to_dict(), status=500)
            return view_func(request, *args, **kwargs)

        return wrapper

    return decorator
