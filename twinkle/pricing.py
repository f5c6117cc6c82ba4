"""
Pricing rules.

Everything here is pure: configuration (men-power tiers, surcharge rules,
holiday calendar, add-on catalog) is passed in by the caller. Amounts are
floats at the edges and rounded half-up to cents internally.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from .errors import InvalidMenPower, InvalidRentalPeriod
from .schemas import DeliveryAddOn, TimingSurcharge

CENT = Decimal("0.01")

RENTAL_SURCHARGES: dict[int, float] = {45: 0.0, 60: 100.0, 90: 200.0}


def money(value) -> float:
    """Round to cents, half-up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class MenPowerTier:
    min_workers: int
    fee: float
    label: str = ""


# 1-2 workers included, 3-4 and 5+ are paid tiers
DEFAULT_MEN_POWER_TIERS: tuple[MenPowerTier, ...] = (
    MenPowerTier(1, 0.0, "1-2 Workers"),
    MenPowerTier(3, 120.0, "3-4 Workers"),
    MenPowerTier(5, 250.0, "5+ Workers"),
)


def rental_surcharge(days: int) -> float:
    try:
        return RENTAL_SURCHARGES[days]
    except (KeyError, TypeError):
        raise InvalidRentalPeriod(days) from None


def men_power_surcharge(count: int, tiers: Sequence[MenPowerTier] = DEFAULT_MEN_POWER_TIERS) -> float:
    if count < 1:
        raise InvalidMenPower(count)
    fee = 0.0
    for tier in sorted(tiers, key=lambda t: t.min_workers):
        if count >= tier.min_workers:
            fee = tier.fee
    return fee


def classify_day(day: date, holidays: Iterable[date] = ()) -> set[str]:
    kinds = set()
    if day.weekday() >= 5:
        kinds.add("weekend")
    if day in set(holidays):
        kinds.add("public_holiday")
    return kinds


def day_type_surcharge(day: date, rules: Iterable[TimingSurcharge], holidays: Iterable[date] = ()) -> float:
    """
    Surcharge for a service date.

    Active rules matching the date's day types are ordered by ascending
    amount, then name, and the first one applies.
    """
    kinds = classify_day(day, holidays)
    if not kinds:
        return 0.0
    matching = [r for r in rules if r.is_active and kinds.intersection(r.day_types)]
    if not matching:
        return 0.0
    matching.sort(key=lambda r: (r.surcharge_amount, r.name))
    return matching[0].surcharge_amount


def delivery_addon_total(selected_ids: Iterable[str], catalog: Iterable[DeliveryAddOn]) -> float:
    """Sum of enabled add-ons; stale or disabled ids are ignored."""
    return money(sum(Decimal(str(a.fee)) for a in selected_addons(selected_ids, catalog)))


def selected_addons(selected_ids: Iterable[str], catalog: Iterable[DeliveryAddOn]) -> list[DeliveryAddOn]:
    wanted = set(selected_ids)
    return [a for a in catalog if a.id in wanted and a.enabled]


@dataclass
class PriceBreakdown:
    base: float
    rental: float = 0.0
    men_power: float = 0.0
    installation_surcharge: float = 0.0
    teardown_surcharge: float = 0.0
    delivery_fee: float = 0.0
    addons: float = 0.0
    discount: float = 0.0
    subtotal: float = 0.0
    total: float = 0.0
    lines: list[tuple[str, float]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "base": self.base,
            "rental": self.rental,
            "men_power": self.men_power,
            "installation_surcharge": self.installation_surcharge,
            "teardown_surcharge": self.teardown_surcharge,
            "delivery_fee": self.delivery_fee,
            "addons": self.addons,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "total": self.total,
            "lines": [{"name": n, "amount": a} for n, a in self.lines],
        }


def compute_order_total(
    base: float,
    *,
    rental_days: Optional[int] = None,
    men_power: Optional[int] = None,
    installation_date: Optional[date] = None,
    teardown_date: Optional[date] = None,
    installation_service: bool = False,
    teardown_service: bool = False,
    delivery_fee: float = 0.0,
    addon_ids: Iterable[str] = (),
    addon_catalog: Iterable[DeliveryAddOn] = (),
    discount: float = 0.0,
    surcharge_rules: Iterable[TimingSurcharge] = (),
    holidays: Iterable[date] = (),
    men_power_tiers: Sequence[MenPowerTier] = DEFAULT_MEN_POWER_TIERS,
    gift_card: bool = False,
) -> PriceBreakdown:
    """
    Combine every price component into a breakdown.

    ``discount`` is the amount already computed by the discount validator; it
    is clamped so the total never goes below zero. Gift cards are charged
    their face value only.
    """
    base = money(base)
    if gift_card:
        return PriceBreakdown(base=base, subtotal=base, total=base, lines=[("Gift card", base)])

    rules = list(surcharge_rules)
    holidays = list(holidays)
    b = PriceBreakdown(base=base, lines=[("Base price", base)])
    if rental_days is not None:
        b.rental = rental_surcharge(rental_days)
        b.lines.append((f"{rental_days}-day rental", b.rental))
    if men_power is not None:
        b.men_power = men_power_surcharge(men_power, men_power_tiers)
        b.lines.append((f"{men_power} workers", b.men_power))
    if installation_service and installation_date is not None:
        b.installation_surcharge = day_type_surcharge(installation_date, rules, holidays)
        b.lines.append(("Installation day surcharge", b.installation_surcharge))
    if teardown_service and teardown_date is not None:
        b.teardown_surcharge = day_type_surcharge(teardown_date, rules, holidays)
        b.lines.append(("Teardown day surcharge", b.teardown_surcharge))
    b.delivery_fee = money(delivery_fee)
    if b.delivery_fee:
        b.lines.append(("Delivery", b.delivery_fee))
    b.addons = delivery_addon_total(addon_ids, addon_catalog)
    if b.addons:
        b.lines.append(("Delivery add-ons", b.addons))

    subtotal = sum(
        Decimal(str(x))
        for x in (b.base, b.rental, b.men_power, b.installation_surcharge,
                  b.teardown_surcharge, b.delivery_fee, b.addons)
    )
    b.subtotal = money(subtotal)
    b.discount = money(min(max(Decimal(str(discount)), Decimal(0)), subtotal))
    if b.discount:
        b.lines.append(("Discount", -b.discount))
    b.total = money(max(subtotal - Decimal(str(b.discount)), Decimal(0)))
    return b
