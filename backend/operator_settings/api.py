from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal

from django.db import transaction
from rest_framework import status
from rest_framework.response import Response

from core.settings_resolver import clear_settings_cache
from operator_core.api_base import OperatorAPIView
from operator_core.audit import audit
from operator_core.models import OperatorAuditEvent
from operator_core.permissions import HasOperatorRole, IsOperator, OPERATOR_READ_ROLES
from operator_settings.models import DbSetting
from operator_settings.serializers import (
    DbSettingPutSerializer,
    DbSettingSerializer,
    OverstayDefaultsPutSerializer,
)

logger = logging.getLogger(__name__)

OVERSTAY_SETTING_KEYS = {
    "grace_period_days": ("OVERSTAY_GRACE_PERIOD_DAYS", DbSetting.ValueType.INT),
    "penalty_rate": ("OVERSTAY_PENALTY_RATE", DbSetting.ValueType.DECIMAL),
    "max_penalty_days": ("OVERSTAY_MAX_PENALTY_DAYS", DbSetting.ValueType.INT),
}


def _safe_json_value(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _safe_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_safe_json_value(v) for v in value]
    return value


def _db_setting_dict(setting: DbSetting | None) -> dict | None:
    if not setting:
        return None
    return {
        "id": setting.id,
        "key": setting.key,
        "value_type": setting.value_type,
        "value_json": setting.value_json,
        "effective_at": setting.effective_at,
        "updated_by_id": setting.updated_by_id,
    }


class OperatorSettingsView(OperatorAPIView):
    http_method_names = ["get", "put"]

    def get_permissions(self):
        if self.request.method == "PUT":
            return [IsOperator(), HasOperatorRole.with_roles(["operator_admin"])()]
        return [IsOperator(), HasOperatorRole.with_roles(OPERATOR_READ_ROLES)()]

    def get(self, request):
        selected: list[DbSetting] = []
        seen: set[str] = set()
        for row in DbSetting.objects.effective().select_related("updated_by"):
            if row.key not in seen:
                seen.add(row.key)
                selected.append(row)
        return Response(DbSettingSerializer(selected, many=True).data)

    def put(self, request):
        payload = request.data if isinstance(request.data, dict) else {}
        serializer = DbSettingPutSerializer(data=payload)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        with transaction.atomic():
            before = _db_setting_dict(DbSetting.objects.current(data["key"]))
            setting = DbSetting.objects.create(
                key=data["key"],
                value_type=data["value_type"],
                value_json=data["value"],
                description=data.get("description") or "",
                effective_at=data.get("effective_at"),
                updated_by=request.user,
            )
            audit(
                actor=request.user,
                action="operator.settings.put",
                entity_type=OperatorAuditEvent.EntityType.DB_SETTING,
                entity_id=data["key"],
                reason=data["reason"],
                before=_safe_json_value(before),
                after=_safe_json_value(_db_setting_dict(setting)),
                request=request,
            )
        clear_settings_cache()
        return Response(DbSettingSerializer(setting).data, status=status.HTTP_201_CREATED)


class OperatorOverstayDefaultsView(OperatorAPIView):
    """Platform tier of the overstay policy; listings and locations override it."""

    http_method_names = ["get", "put"]

    def get_permissions(self):
        if self.request.method == "PUT":
            return [IsOperator(), HasOperatorRole.with_roles(["operator_admin"])()]
        return [IsOperator(), HasOperatorRole.with_roles(OPERATOR_READ_ROLES)()]

    def get(self, request):
        from overstays.config import platform_defaults

        return Response(platform_defaults().as_dict())

    def put(self, request):
        from overstays.config import platform_defaults

        payload = request.data if isinstance(request.data, dict) else {}
        serializer = OverstayDefaultsPutSerializer(data=payload)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        before = platform_defaults().as_dict()
        with transaction.atomic():
            for field, (key, value_type) in OVERSTAY_SETTING_KEYS.items():
                if field not in data:
                    continue
                value = data[field]
                DbSetting.objects.create(
                    key=key,
                    value_type=value_type,
                    value_json=str(value) if value_type == DbSetting.ValueType.DECIMAL else value,
                    description="Overstay platform default",
                    effective_at=data.get("effective_at"),
                    updated_by=request.user,
                )
            clear_settings_cache()
            after = platform_defaults().as_dict()
            audit(
                actor=request.user,
                action="operator.overstay_defaults.put",
                entity_type=OperatorAuditEvent.EntityType.DB_SETTING,
                entity_id="overstay_defaults",
                reason=data["reason"],
                before=before,
                after=after,
                request=request,
            )
        logger.info("operator: overstay defaults updated", extra={"actor_id": request.user.pk})
        return Response(after, status=status.HTTP_200_OK)
