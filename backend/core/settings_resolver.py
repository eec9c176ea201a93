"""Runtime-tunable business settings backed by operator_settings.DbSetting."""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from threading import Lock
from typing import Any


_CACHE_TTL_SECONDS = 5.0
_MISSING = object()


@dataclass(frozen=True)
class _CacheEntry:
    expires_at: float
    value: object


_cache: dict[str, _CacheEntry] = {}
_cache_lock = Lock()


def clear_settings_cache() -> None:
    with _cache_lock:
        _cache.clear()


def _cache_get(key: str, now: float) -> object | None:
    with _cache_lock:
        entry = _cache.get(key)
        if entry is None:
            return None
        if now >= entry.expires_at:
            _cache.pop(key, None)
            return None
        return entry.value


def _cache_set(key: str, now: float, value: object) -> None:
    with _cache_lock:
        _cache[key] = _CacheEntry(expires_at=now + _CACHE_TTL_SECONDS, value=value)


def _load(key: str) -> object:
    from django.apps import apps as django_apps

    if not django_apps.ready or not django_apps.is_installed("operator_settings"):
        return _MISSING
    DbSetting = django_apps.get_model("operator_settings", "DbSetting")
    row = DbSetting.objects.current(key)
    return _MISSING if row is None else row.value_json


def get_setting(key: str, default: Any) -> Any:
    """
    Resolve a setting value from operator_settings.DbSetting with effective_at support.

    The newest row whose effective_at is NULL or already passed wins. Any
    failure (app missing, table not migrated, DB down) yields ``default``.
    Lookups, misses included, are cached in-process for 5 seconds.
    """

    now_mono = time.monotonic()
    cached = _cache_get(key, now_mono)
    if cached is not None:
        return default if cached is _MISSING else copy.deepcopy(cached)

    try:
        value = _load(key)
    except Exception:
        value = _MISSING

    _cache_set(key, now_mono, value)
    return default if value is _MISSING else copy.deepcopy(value)


def get_int(key: str, default: int = 0) -> int:
    value = get_setting(key, default)
    return value if type(value) is int else default


def get_decimal(key: str, default: Decimal = Decimal("0")) -> Decimal:
    """Decimal settings may be stored as JSON strings or numbers."""
    value = get_setting(key, default)
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return default
    if isinstance(value, (str, int, float)):
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            return default
    return default


def get_str(key: str, default: str = "") -> str:
    value = get_setting(key, default)
    return value if isinstance(value, str) else default
