"""Three-tier overstay policy resolution: listing over location over platform."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from django.conf import settings

from core.settings_resolver import get_decimal, get_int

GRACE_PERIOD_SETTING = "OVERSTAY_GRACE_PERIOD_DAYS"
PENALTY_RATE_SETTING = "OVERSTAY_PENALTY_RATE"
MAX_PENALTY_DAYS_SETTING = "OVERSTAY_MAX_PENALTY_DAYS"

DEFAULT_GRACE_PERIOD_DAYS = 3
DEFAULT_PENALTY_RATE = Decimal("0.10")
DEFAULT_MAX_PENALTY_DAYS = 30


@dataclass(frozen=True)
class EffectivePenaltyConfig:
    grace_period_days: int
    penalty_rate: Decimal
    max_penalty_days: int
    policy_text: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "grace_period_days": self.grace_period_days,
            "penalty_rate": str(self.penalty_rate),
            "max_penalty_days": self.max_penalty_days,
            "policy_text": self.policy_text,
        }


def platform_defaults() -> EffectivePenaltyConfig:
    """Operator-tunable defaults, falling back to Django settings."""
    return EffectivePenaltyConfig(
        grace_period_days=get_int(
            GRACE_PERIOD_SETTING,
            getattr(settings, GRACE_PERIOD_SETTING, DEFAULT_GRACE_PERIOD_DAYS),
        ),
        penalty_rate=get_decimal(
            PENALTY_RATE_SETTING,
            Decimal(str(getattr(settings, PENALTY_RATE_SETTING, DEFAULT_PENALTY_RATE))),
        ),
        max_penalty_days=get_int(
            MAX_PENALTY_DAYS_SETTING,
            getattr(settings, MAX_PENALTY_DAYS_SETTING, DEFAULT_MAX_PENALTY_DAYS),
        ),
    )


def _first_set(*values):
    for value in values:
        if value is not None:
            return value
    return None


def merge_penalty_config(platform: EffectivePenaltyConfig, location=None, listing=None) -> EffectivePenaltyConfig:
    """
    Resolve each field independently; a NULL at one tier falls through to the next.

    ``location`` and ``listing`` are anything carrying the ``overstay_*``
    attributes, usually the models themselves.
    """

    def pick(field: str):
        return _first_set(
            getattr(listing, field, None) if listing is not None else None,
            getattr(location, field, None) if location is not None else None,
        )

    grace = pick("overstay_grace_period_days")
    rate = pick("overstay_penalty_rate")
    max_days = pick("overstay_max_penalty_days")
    policy_text = ""
    for source in (listing, location):
        text = (getattr(source, "overstay_policy_text", "") or "").strip() if source is not None else ""
        if text:
            policy_text = text
            break

    return EffectivePenaltyConfig(
        grace_period_days=platform.grace_period_days if grace is None else int(grace),
        penalty_rate=platform.penalty_rate if rate is None else Decimal(str(rate)),
        max_penalty_days=platform.max_penalty_days if max_days is None else int(max_days),
        policy_text=policy_text,
    )


def resolve_penalty_config(listing, platform: Optional[EffectivePenaltyConfig] = None) -> EffectivePenaltyConfig:
    """Effective policy for a listing, taking its location into account."""
    location = getattr(listing, "location", None) if listing is not None else None
    return merge_penalty_config(platform or platform_defaults(), location=location, listing=listing)
