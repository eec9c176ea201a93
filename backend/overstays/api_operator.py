"""Operator console endpoints for escalated and disputed overstay penalties."""

from __future__ import annotations

from django.shortcuts import get_object_or_404
from rest_framework import serializers
from rest_framework.response import Response

from operator_core.api_base import OperatorAPIView, service_response
from operator_core.audit import audit
from operator_core.models import OperatorAuditEvent
from operator_core.permissions import (
    OPERATOR_FINANCE_ROLES,
    OPERATOR_READ_ROLES,
    HasOperatorRole,
    IsOperator,
)
from overstays.models import OverstayRecord
from overstays.serializers import OverstayRecordDetailSerializer, OverstayRecordSerializer, RefundSerializer
from overstays.services import queries
from overstays.services.charging import charge_penalty
from overstays.services.refunds import refund_penalty
from overstays.services.resolution import resolve_overstay
from payments.gateway import get_payment_gateway


class OperatorReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(allow_blank=False, trim_whitespace=True)


class OperatorResolveSerializer(OperatorReasonSerializer):
    resolution_type = serializers.ChoiceField(choices=["extended", "removed", "escalated"])


def _snapshot(record: OverstayRecord) -> dict:
    return {
        "status": record.status,
        "final_penalty_cents": record.final_penalty_cents,
        "charged_amount_cents": record.charged_amount_cents,
        "refunded_amount_cents": record.refunded_amount_cents,
        "resolution_type": record.resolution_type,
    }


class _OperatorOverstayView(OperatorAPIView):
    read_roles = OPERATOR_READ_ROLES
    write_roles = OPERATOR_FINANCE_ROLES

    def get_permissions(self):
        roles = self.read_roles if self.request.method == "GET" else self.write_roles
        return [IsOperator(), HasOperatorRole.with_roles(roles)()]

    def _record(self, pk) -> OverstayRecord:
        return get_object_or_404(queries.all_records(), pk=pk)

    def _audited(self, request, record: OverstayRecord, before: dict, action: str, reason: str, result):
        record.refresh_from_db()
        audit(
            actor=request.user,
            action=action,
            entity_type=OperatorAuditEvent.EntityType.OVERSTAY_RECORD,
            entity_id=record.pk,
            reason=reason,
            before=before,
            after=_snapshot(record),
            meta={"success": result.success, "error": result.error, "result": result.data},
            request=request,
        )
        return service_response(result)


class OperatorOverstayListView(_OperatorOverstayView):
    def get(self, request):
        status_filter = request.query_params.get("status") or OverstayRecord.Status.ESCALATED
        records = queries.all_records().filter(status=status_filter).order_by("detected_at", "id")
        return Response(
            {
                "results": OverstayRecordSerializer(records, many=True).data,
                "stats": queries.overstay_stats(),
            }
        )


class OperatorOverstayDetailView(_OperatorOverstayView):
    def get(self, request, pk: int):
        record = self._record(pk)
        return Response(OverstayRecordDetailSerializer(record).data)


class OperatorOverstayChargeView(_OperatorOverstayView):
    """Force a fresh off-session attempt, e.g. after the renter updated their card."""

    def post(self, request, pk: int):
        serializer = OperatorReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        record = self._record(pk)
        before = _snapshot(record)
        result = charge_penalty(record.pk, gateway=get_payment_gateway())
        return self._audited(
            request, record, before, "operator.overstay.charge", serializer.validated_data["reason"], result
        )


class OperatorOverstayRefundView(_OperatorOverstayView):
    def post(self, request, pk: int):
        serializer = RefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        record = self._record(pk)
        before = _snapshot(record)
        result = refund_penalty(
            record.pk,
            reason=serializer.validated_data["reason"],
            refunded_by=request.user,
            partial_amount_cents=serializer.validated_data.get("amount_cents"),
            gateway=get_payment_gateway(),
        )
        return self._audited(
            request, record, before, "operator.overstay.refund", serializer.validated_data["reason"], result
        )


class OperatorOverstayResolveView(_OperatorOverstayView):
    def post(self, request, pk: int):
        serializer = OperatorResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        record = self._record(pk)
        before = _snapshot(record)
        result = resolve_overstay(
            record.pk,
            resolution_type=serializer.validated_data["resolution_type"],
            notes=serializer.validated_data["reason"],
            resolved_by=request.user,
        )
        return self._audited(
            request, record, before, "operator.overstay.resolve", serializer.validated_data["reason"], result
        )
