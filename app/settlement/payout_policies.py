"""
Payout split policies.

A policy is a pure function

    policy(pricing_breakdown: dict, context: dict) -> dict

returning at least ``driver_share`` and ``operator_share`` as strings with
two decimals (rupees). It is evaluated once, when the shipment is
materialized, and the result is stored on the shipment as its payout
breakdown. Later policy changes never touch booked shipments.

``context`` may carry ``driver_rating`` and ``is_extra_shift``.

The active policy is the dotted path in SETTLEMENT_PAYOUT_POLICY.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings
from django.utils.module_loading import import_string

PAISE = Decimal("0.01")
GST_RATE = Decimal("0.18")

REVENUE_SHARE_BASE = Decimal("0.70")
PERFORMANCE_BONUS_EXCELLENT = Decimal("0.10")  # rating >= 4.5
PERFORMANCE_BONUS_GOOD = Decimal("0.05")  # rating >= 4.0
LONG_HAUL_THRESHOLD_KM = Decimal("300")
LONG_HAUL_BONUS = Decimal("750")
EXTRA_SHIFT_UPLIFT = Decimal("0.15")
PLATFORM_FEE_RATE = Decimal("0.10")


def _money(value: Decimal) -> Decimal:
    return value.quantize(PAISE, rounding=ROUND_HALF_UP)


def _result(total: Decimal, driver_share: Decimal, policy: str, **components) -> dict:
    driver_share = min(max(_money(driver_share), Decimal("0")), total)
    return {
        "policy": policy,
        "total": str(_money(total)),
        "driver_share": str(driver_share),
        "operator_share": str(_money(total - driver_share)),
        **{name: str(_money(value)) for name, value in components.items()},
    }


def proportional_split(pricing_breakdown: dict, context: dict | None = None) -> dict:
    """Driver gets SETTLEMENT_DRIVER_SHARE_RATIO of the grand total."""
    total = Decimal(str(pricing_breakdown["grand_total"]))
    ratio = Decimal(str(settings.SETTLEMENT_DRIVER_SHARE_RATIO))
    split = _result(total, total * ratio, "proportional_split")
    split["driver_share_ratio"] = str(ratio)
    return split


def factor_based_split(pricing_breakdown: dict, context: dict | None = None) -> dict:
    """
    Revenue share with performance, long-haul and extra-shift components.

    taxable revenue = total / 1.18
    payout = 70% of taxable revenue
           + performance bonus (10% at rating >= 4.5, 5% at >= 4.0)
           + 750 for trips of 300 km or more
           + 15% uplift on the above for extra shifts
    net    = max(0, payout - 10% platform fee of taxable revenue)
    """
    context = context or {}
    total = Decimal(str(pricing_breakdown["grand_total"]))
    distance = Decimal(str(pricing_breakdown.get("distance_km", "0")))
    rating = Decimal(str(context.get("driver_rating", "5")))

    taxable = total / (1 + GST_RATE)
    base_share = taxable * REVENUE_SHARE_BASE

    if rating >= Decimal("4.5"):
        bonus = taxable * PERFORMANCE_BONUS_EXCELLENT
    elif rating >= Decimal("4.0"):
        bonus = taxable * PERFORMANCE_BONUS_GOOD
    else:
        bonus = Decimal("0")

    long_haul = LONG_HAUL_BONUS if distance >= LONG_HAUL_THRESHOLD_KM else Decimal("0")
    payout = base_share + bonus + long_haul

    shift_uplift = payout * EXTRA_SHIFT_UPLIFT if context.get("is_extra_shift") else Decimal("0")
    payout += shift_uplift

    platform_fee = taxable * PLATFORM_FEE_RATE
    net = max(Decimal("0"), (payout - platform_fee).quantize(Decimal("1"), ROUND_HALF_UP))

    return _result(
        total,
        net,
        "factor_based_split",
        base_share=base_share,
        performance_bonus=bonus,
        long_haul_incentive=long_haul,
        shift_incentive=shift_uplift,
        platform_fee=platform_fee,
    )


def get_payout_policy():
    return import_string(settings.SETTLEMENT_PAYOUT_POLICY)


def compute_payout_breakdown(pricing_breakdown: dict, context: dict | None = None) -> dict:
    """Evaluate the configured policy once for a booking."""
    return get_payout_policy()(pricing_breakdown, context or {})


def share_to_paise(share: str) -> int:
    return int((Decimal(share) * 100).quantize(Decimal("1"), ROUND_HALF_UP))
