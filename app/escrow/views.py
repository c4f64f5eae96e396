"""
Internal HTTP endpoints for escrow settlement.

Endpoints:
    POST /api/v1/escrow/settlements/     - Settle an escrow by message id
    POST /api/v1/escrow/sweeps/deadline/ - Run the deadline sweep now
    GET  /api/v1/escrow/health/          - Escrow pipeline health snapshot

All three require ``Authorization: Bearer <ESCROW_INTERNAL_API_TOKEN>``.
"""

from __future__ import annotations

import logging

from django.utils.decorators import method_decorator

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import extend_schema, OpenApiResponse

from core.decorators import requires_settings
from escrow.exceptions import (
    EscrowNotFoundError,
    EscrowValidationError,
    PaymentProviderError,
    SettlementConflictError,
)
from escrow.permissions import HasInternalApiToken, InternalTokenAuthentication
from escrow.serializers import (
    DeadlineSweepResponseSerializer,
    ErrorResponseSerializer,
    SettlementResponseSerializer,
    SettlementTriggerSerializer,
)
from escrow.settlement import SettlementEngine
from escrow.workers import escrow_health, run_deadline_sweep

logger = logging.getLogger(__name__)


@method_decorator(requires_settings("ESCROW_INTERNAL_API_TOKEN"), name="dispatch")
class InternalAPIView(APIView):
    authentication_classes = [InternalTokenAuthentication]
    permission_classes = [HasInternalApiToken]


class SettlementTriggerView(InternalAPIView):
    """
    Ask the Settlement Engine to settle the escrow of a message.

    A conflict means the escrow was already resolved another way and is
    answered 409 with the observed status.
    """

    @extend_schema(
        operation_id="escrow_settlement_trigger",
        summary="Trigger settlement",
        request=SettlementTriggerSerializer,
        responses={
            200: SettlementResponseSerializer,
            400: OpenApiResponse(response=ErrorResponseSerializer, description="Invalid request"),
            401: OpenApiResponse(response=ErrorResponseSerializer, description="Bad token"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Unknown message"),
            409: OpenApiResponse(
                response=ErrorResponseSerializer,
                description="Escrow already resolved differently",
            ),
            502: OpenApiResponse(
                response=ErrorResponseSerializer,
                description="Payment provider failure",
            ),
        },
        tags=["Escrow - Internal"],
    )
    def post(self, request):
        serializer = SettlementTriggerSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {"error": "Invalid payload", "details": serializer.errors},
                status=status.HTTP_400_BAD_REQUEST,
            )

        message_id = serializer.validated_data["messageId"]
        cause = serializer.validated_data["cause"]

        try:
            escrow = SettlementEngine.settle(message_id, cause)
        except EscrowNotFoundError as e:
            return Response(e.to_dict(), status=status.HTTP_404_NOT_FOUND)
        except EscrowValidationError as e:
            return Response(e.to_dict(), status=status.HTTP_400_BAD_REQUEST)
        except SettlementConflictError as e:
            response = e.to_dict()
            response["status"] = e.current_status
            return Response(response, status=status.HTTP_409_CONFLICT)
        except PaymentProviderError as e:
            return Response(e.to_dict(), status=status.HTTP_502_BAD_GATEWAY)

        logger.info(
            "Settlement triggered",
            extra={"message_id": str(message_id), "cause": cause, "escrow_status": escrow.status},
        )
        return Response(
            {
                "status": escrow.status,
                "escrow_id": str(escrow.id),
                "message_id": str(escrow.message_id),
            }
        )


class DeadlineSweepView(InternalAPIView):
    """Run the refund and reminder sweeps synchronously."""

    @extend_schema(
        operation_id="escrow_deadline_sweep",
        summary="Run deadline sweep",
        request=None,
        responses={200: DeadlineSweepResponseSerializer},
        tags=["Escrow - Internal"],
    )
    def post(self, request):
        return Response(run_deadline_sweep())


class EscrowHealthView(InternalAPIView):
    @extend_schema(
        operation_id="escrow_health",
        summary="Escrow health",
        responses={200: OpenApiResponse(description="Health snapshot")},
        tags=["Escrow - Internal"],
    )
    def get(self, request):
        return Response(escrow_health())
