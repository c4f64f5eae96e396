"""
Utility helper functions.

Functions:
    verify_hmac_signature: Constant-time HMAC-SHA256 check of a payload
    verify_basic_auth: Constant-time check of an HTTP Basic Authorization header
    get_client_ip: Client address, honouring X-Forwarded-For
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from django.http import HttpRequest

logger = logging.getLogger(__name__)


def verify_hmac_signature(payload: bytes, signature: str, secret: str) -> bool:
    """
    Verify a hex-encoded HMAC-SHA256 signature.

    Args:
        payload: Raw request body
        signature: Signature from request header
        secret: Shared secret for HMAC

    Returns:
        True if signature is valid
    """
    if not secret or not signature:
        return False

    expected = hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(expected, signature)


def verify_basic_auth(header: str, username: str, password: str) -> bool:
    """
    Verify an ``Authorization: Basic ...`` header against expected credentials.

    Args:
        header: Raw Authorization header value
        username: Expected user name
        password: Expected password

    Returns:
        True if the header carries exactly these credentials
    """
    if not header or not username or not password:
        return False

    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return False

    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        logger.warning("Malformed Basic Authorization header")
        return False

    given_user, sep, given_password = decoded.partition(":")
    if not sep:
        return False

    user_ok = hmac.compare_digest(given_user.encode(), username.encode())
    password_ok = hmac.compare_digest(given_password.encode(), password.encode())
    return user_ok and password_ok


def get_client_ip(request: HttpRequest) -> str:
    """
    Extract client IP from request, handling proxies.

    Args:
        request: Django HTTP request

    Returns:
        Client IP address string
    """
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        # First address in the chain is the original client
        return x_forwarded_for.split(",")[0].strip()
    return request.META.get("REMOTE_ADDR", "")
