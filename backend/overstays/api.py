"""REST endpoints for location managers and renters."""

from __future__ import annotations

import logging

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import permissions, viewsets
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter
from rest_framework.response import Response

from operator_core.api_base import service_response
from operator_core.permissions import IsLocationManager
from overstays.exceptions import OverstayValidationError, ServiceResult
from overstays.filters import OverstayRecordFilter
from overstays.serializers import (
    DecisionSerializer,
    OverstayHistoryEntrySerializer,
    OverstayRecordDetailSerializer,
    OverstayRecordSerializer,
    RefundSerializer,
    RenterOverstaySerializer,
    ResolveSerializer,
    WaiveSerializer,
)
from overstays.services import queries
from overstays.services.charging import charge_penalty
from overstays.services.decisions import apply_decision, decision_from_payload
from overstays.services.escalation import create_renter_payment_checkout
from overstays.services.refunds import refund_penalty
from overstays.services.resolution import resolve_overstay
from payments.gateway import get_payment_gateway

logger = logging.getLogger(__name__)


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


class ManagerOverstayViewSet(viewsets.ReadOnlyModelViewSet):
    """Review queue and actions for the manager of the booking's location."""

    lookup_value_regex = r"\d+"
    permission_classes = (permissions.IsAuthenticated, IsLocationManager)
    filter_backends = (DjangoFilterBackend, OrderingFilter)
    filterset_class = OverstayRecordFilter
    ordering_fields = ("detected_at", "days_overdue", "calculated_penalty_cents")

    def get_serializer_class(self):
        if self.action == "retrieve":
            return OverstayRecordDetailSerializer
        return OverstayRecordSerializer

    def get_queryset(self):
        include_all = self.action != "list" or _truthy(self.request.query_params.get("include_all"))
        queryset = queries.managed_records(self.request.user, include_all=include_all)
        if self.action == "retrieve":
            queryset = queryset.prefetch_related("history__created_by")
        return queryset

    def list(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())
        stats = queries.overstay_stats(
            queries.managed_records(request.user, include_all=True)
        )
        return Response(
            {
                "results": self.get_serializer(queryset, many=True).data,
                "stats": stats,
            }
        )

    @action(detail=True, methods=["get"], url_path="history")
    def history(self, request, pk=None):
        record = self.get_object()
        entries = record.history.select_related("created_by").order_by("-created_at", "-id")
        return Response(OverstayHistoryEntrySerializer(entries, many=True).data)

    def _decide(self, request, decision_action: str):
        record = self.get_object()
        payload = dict(request.data.items()) if hasattr(request.data, "items") else {}
        payload["action"] = decision_action
        try:
            decision = decision_from_payload(record.pk, request.user.pk, payload)
        except OverstayValidationError as exc:
            return service_response(ServiceResult.from_exception(exc))

        result = apply_decision(decision)
        if not result.success or decision_action == "waive":
            return service_response(result)

        # Approval hands straight over to collection; no penalty is charged without it.
        charge = charge_penalty(record.pk, gateway=get_payment_gateway())
        return service_response(result, charge=charge.as_payload())

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, pk=None):
        serializer = DecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._decide(request, "approve")

    @action(detail=True, methods=["post"], url_path="adjust")
    def adjust(self, request, pk=None):
        serializer = DecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._decide(request, "adjust")

    @action(detail=True, methods=["post"], url_path="waive")
    def waive(self, request, pk=None):
        serializer = WaiveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._decide(request, "waive")

    @action(detail=True, methods=["post"], url_path="charge")
    def charge(self, request, pk=None):
        record = self.get_object()
        return service_response(charge_penalty(record.pk, gateway=get_payment_gateway()))

    @action(detail=True, methods=["post"], url_path="resolve")
    def resolve(self, request, pk=None):
        record = self.get_object()
        serializer = ResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = resolve_overstay(
            record.pk,
            resolution_type=serializer.validated_data["resolution_type"],
            notes=serializer.validated_data["notes"],
            resolved_by=request.user,
        )
        return service_response(result)

    @action(detail=True, methods=["post"], url_path="refund")
    def refund(self, request, pk=None):
        record = self.get_object()
        serializer = RefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = refund_penalty(
            record.pk,
            reason=serializer.validated_data["reason"],
            refunded_by=request.user,
            partial_amount_cents=serializer.validated_data.get("amount_cents"),
            gateway=get_payment_gateway(),
        )
        return service_response(result)


class RenterOverstayViewSet(viewsets.ReadOnlyModelViewSet):
    """A renter's own overstay penalties."""

    lookup_value_regex = r"\d+"
    permission_classes = (permissions.IsAuthenticated,)
    serializer_class = RenterOverstaySerializer

    def get_queryset(self):
        return queries.renter_penalties(self.request.user)

    @action(detail=False, methods=["get"], url_path="unpaid")
    def unpaid(self, request):
        records = queries.renter_unpaid_penalties(request.user)
        return Response(
            {
                "has_unpaid": records.exists(),
                "results": self.get_serializer(records, many=True).data,
            }
        )

    @action(detail=True, methods=["post"], url_path="pay")
    def pay(self, request, pk=None):
        result = create_renter_payment_checkout(int(pk), request.user, gateway=get_payment_gateway())
        return service_response(result)
