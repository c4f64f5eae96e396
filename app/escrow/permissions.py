"""
Authentication and permission classes for the internal escrow endpoints.

The settlement trigger, sweep and health endpoints are called by the
scheduler and by operators' tooling, not by end users. They authenticate
with a shared bearer token (ESCROW_INTERNAL_API_TOKEN).

Usage:
    class DeadlineSweepView(APIView):
        authentication_classes = [InternalTokenAuthentication]
        permission_classes = [HasInternalApiToken]
"""

from __future__ import annotations

import hmac
import logging

from django.conf import settings
from django.contrib.auth.models import AnonymousUser
from rest_framework import authentication, exceptions, permissions
from rest_framework.request import Request
from rest_framework.views import APIView

logger = logging.getLogger(__name__)


class InternalTokenAuthentication(authentication.BaseAuthentication):
    """
    ``Authorization: Bearer <ESCROW_INTERNAL_API_TOKEN>``.

    Returns None without a bearer header so the permission check answers
    401; a wrong token fails immediately.
    """

    keyword = "Bearer"

    def authenticate(self, request: Request):
        header = authentication.get_authorization_header(request).split()
        if not header or header[0].lower() != self.keyword.lower().encode():
            return None
        if len(header) != 2:
            raise exceptions.AuthenticationFailed("Invalid bearer header.")

        try:
            token = header[1].decode()
        except UnicodeError:
            raise exceptions.AuthenticationFailed("Invalid bearer header.")

        expected = settings.ESCROW_INTERNAL_API_TOKEN
        if not expected or not hmac.compare_digest(token.encode(), expected.encode()):
            logger.warning("Internal API token rejected")
            raise exceptions.AuthenticationFailed("Invalid token.")

        return AnonymousUser(), token

    def authenticate_header(self, request: Request) -> str:
        return self.keyword


class HasInternalApiToken(permissions.BasePermission):
    """Allows access only to requests authenticated with the internal token."""

    message = "Internal API token required."

    def has_permission(self, request: Request, view: APIView) -> bool:
        return bool(request.auth)
