from __future__ import annotations

from decimal import Decimal, InvalidOperation

from rest_framework import serializers

from operator_settings.models import DbSetting

# Keys the platform reads, with their type and accepted range.
KNOWN_SETTINGS = {
    "OVERSTAY_GRACE_PERIOD_DAYS": (DbSetting.ValueType.INT, 0, 60),
    "OVERSTAY_PENALTY_RATE": (DbSetting.ValueType.DECIMAL, Decimal("0"), Decimal("1")),
    "OVERSTAY_MAX_PENALTY_DAYS": (DbSetting.ValueType.INT, 1, 365),
}


class DbSettingSerializer(serializers.ModelSerializer):
    updated_by_id = serializers.IntegerField(read_only=True)
    updated_by_name = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = DbSetting
        fields = [
            "id",
            "key",
            "value_type",
            "value_json",
            "description",
            "effective_at",
            "updated_at",
            "updated_by_id",
            "updated_by_name",
        ]

    def get_updated_by_name(self, obj: DbSetting) -> str | None:
        user = getattr(obj, "updated_by", None)
        if not user:
            return None
        full_name = (user.get_full_name() or "").strip()
        if full_name:
            return full_name
        if getattr(user, "username", ""):
            return user.username
        return f"user-{user.pk}"


class DbSettingPutSerializer(serializers.Serializer):
    key = serializers.CharField(max_length=128)
    value_type = serializers.ChoiceField(choices=DbSetting.ValueType.choices)
    value = serializers.JSONField()
    description = serializers.CharField(required=False, allow_blank=True, default="")
    effective_at = serializers.DateTimeField(required=False, allow_null=True)
    reason = serializers.CharField(allow_blank=False, trim_whitespace=True)

    def validate_key(self, value: str) -> str:
        key = (value or "").strip()
        if not key:
            raise serializers.ValidationError("key is required")
        if key not in KNOWN_SETTINGS:
            raise serializers.ValidationError(f"Unknown setting key: {key}")
        return key

    def validate(self, attrs: dict) -> dict:
        value_type = attrs.get("value_type")
        value = attrs.get("value")

        if value_type == DbSetting.ValueType.BOOL and type(value) is not bool:
            raise serializers.ValidationError({"value": "value must be a boolean"})
        if value_type == DbSetting.ValueType.INT and type(value) is not int:
            raise serializers.ValidationError({"value": "value must be an integer"})
        if value_type == DbSetting.ValueType.DECIMAL and not isinstance(value, str):
            raise serializers.ValidationError({"value": "value must be a decimal string"})
        if value_type == DbSetting.ValueType.STR and not isinstance(value, str):
            raise serializers.ValidationError({"value": "value must be a string"})

        expected_type, minimum, maximum = KNOWN_SETTINGS[attrs["key"]]
        if value_type != expected_type:
            raise serializers.ValidationError({"value_type": f"{attrs['key']} is a {expected_type} setting"})
        if value_type == DbSetting.ValueType.DECIMAL:
            try:
                value = Decimal(value)
            except InvalidOperation:
                value = None
            if value is None or not value.is_finite():
                raise serializers.ValidationError({"value": "value must be a decimal string"})
        if not minimum <= value <= maximum:
            raise serializers.ValidationError({"value": f"value must be between {minimum} and {maximum}"})
        return attrs


class OverstayDefaultsPutSerializer(serializers.Serializer):
    """Platform-wide overstay policy; omitted fields keep their current value."""

    grace_period_days = serializers.IntegerField(
        required=False,
        min_value=KNOWN_SETTINGS["OVERSTAY_GRACE_PERIOD_DAYS"][1],
        max_value=KNOWN_SETTINGS["OVERSTAY_GRACE_PERIOD_DAYS"][2],
    )
    penalty_rate = serializers.DecimalField(
        required=False,
        max_digits=5,
        decimal_places=4,
        min_value=KNOWN_SETTINGS["OVERSTAY_PENALTY_RATE"][1],
        max_value=KNOWN_SETTINGS["OVERSTAY_PENALTY_RATE"][2],
    )
    max_penalty_days = serializers.IntegerField(
        required=False,
        min_value=KNOWN_SETTINGS["OVERSTAY_MAX_PENALTY_DAYS"][1],
        max_value=KNOWN_SETTINGS["OVERSTAY_MAX_PENALTY_DAYS"][2],
    )
    effective_at = serializers.DateTimeField(required=False, allow_null=True)
    reason = serializers.CharField(allow_blank=False, trim_whitespace=True)

    def validate(self, attrs: dict) -> dict:
        if not any(
            field in attrs for field in ("grace_period_days", "penalty_rate", "max_penalty_days")
        ):
            raise serializers.ValidationError("Provide at least one overstay setting to change.")
        return attrs
