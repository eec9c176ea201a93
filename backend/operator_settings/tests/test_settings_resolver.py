from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from core.settings_resolver import clear_settings_cache, get_decimal, get_int, get_setting, get_str
from operator_settings.models import DbSetting

pytestmark = pytest.mark.django_db


def test_missing_key_returns_default():
    assert get_setting("NOT_THERE", "fallback") == "fallback"
    assert get_int("NOT_THERE", 4) == 4


def test_future_effective_rows_are_ignored(db_setting_factory):
    db_setting_factory(key="FUTURE_KEY", value_json=9, effective_at=timezone.now() + timedelta(hours=1))

    assert get_int("FUTURE_KEY", 7) == 7


def test_latest_effective_row_wins(db_setting_factory):
    now = timezone.now()
    db_setting_factory(key="EFFECTIVE_KEY", value_json=1, effective_at=now - timedelta(days=2))
    db_setting_factory(key="EFFECTIVE_KEY", value_json=2, effective_at=now - timedelta(hours=1))

    assert get_int("EFFECTIVE_KEY", 0) == 2


def test_latest_updated_wins_without_effective_at(db_setting_factory):
    older = db_setting_factory(key="NULL_EFF", value_json=1)
    DbSetting.objects.filter(pk=older.pk).update(updated_at=timezone.now() - timedelta(hours=1))
    db_setting_factory(key="NULL_EFF", value_json=2)

    assert get_int("NULL_EFF", 0) == 2


def test_typed_helpers_fall_back_on_wrong_types(db_setting_factory):
    db_setting_factory(key="INT_KEY", value_json="not-an-int")
    db_setting_factory(key="DEC_BAD", value_json="not-a-decimal", value_type="decimal")
    db_setting_factory(key="DEC_OK", value_json="0.125", value_type="decimal")
    db_setting_factory(key="STR_KEY", value_json=5, value_type="str")

    assert get_int("INT_KEY", 9) == 9
    assert get_decimal("DEC_BAD", Decimal("0.10")) == Decimal("0.10")
    assert get_decimal("DEC_OK", Decimal("0")) == Decimal("0.125")
    assert get_str("STR_KEY", "x") == "x"


def test_lookups_are_cached_until_cleared(db_setting_factory):
    assert get_int("CACHED_KEY", 1) == 1
    db_setting_factory(key="CACHED_KEY", value_json=5)

    assert get_int("CACHED_KEY", 1) == 1
    clear_settings_cache()
    assert get_int("CACHED_KEY", 1) == 5


def test_saving_a_changed_row_inserts_a_new_version(db_setting_factory):
    setting = db_setting_factory(key="VERSIONED", value_json=1)

    setting.value_json = 2
    setting.save()

    assert DbSetting.objects.filter(key="VERSIONED").count() == 2


def test_saving_an_unchanged_row_is_a_no_op(db_setting_factory):
    setting = db_setting_factory(key="STABLE", value_json=3)

    setting.save()

    assert DbSetting.objects.filter(key="STABLE").count() == 1


def test_effective_queryset_skips_scheduled_rows(db_setting_factory):
    now = timezone.now()
    live = db_setting_factory(key="OVERSTAY_GRACE_PERIOD_DAYS", value_json=2, effective_at=now - timedelta(days=1))
    db_setting_factory(key="OVERSTAY_GRACE_PERIOD_DAYS", value_json=5, effective_at=now + timedelta(days=1))

    assert DbSetting.objects.current("OVERSTAY_GRACE_PERIOD_DAYS") == live
    assert DbSetting.objects.current("OVERSTAY_GRACE_PERIOD_DAYS", now + timedelta(days=2)).value_json == 5
