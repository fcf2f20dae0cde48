"""
Pricing engine: (rate, window, promotion) -> amounts. Pure, no I/O.

All arithmetic is done on integer minor units (paise). Decimal is used only to
apply percentages and to convert to/from major units at the edges, with
ROUND_HALF_UP to the nearest minor unit.

Example: a 3h10m window at 5000/h bills 4 units, original = 20000.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from rentals.models.promotion import DiscountType

BILLABLE_UNIT = timedelta(hours=1)
MINOR_PER_MAJOR = 100

Number = Union[int, float, str, Decimal]


def to_minor(amount: Number) -> int:
    """Major units (e.g. rupees) -> integer minor units, half-up."""
    value = Decimal(str(amount)) * MINOR_PER_MAJOR
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major(amount_minor: int) -> Decimal:
    return (Decimal(amount_minor) / MINOR_PER_MAJOR).quantize(Decimal("0.01"))


def _round_minor(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PromotionTerms:
    """The parts of a promotion that affect the price."""

    discount_type: str
    discount_value: Decimal
    max_discount_minor: Optional[int] = None

    @classmethod
    def from_promotion(cls, promotion) -> "PromotionTerms":
        return cls(
            discount_type=promotion.discount_type,
            discount_value=Decimal(str(promotion.discount_value)),
            max_discount_minor=promotion.max_discount_minor,
        )


@dataclass(frozen=True)
class Quote:
    duration_units: int
    hourly_rate_minor: int
    original_minor: int
    discount_minor: int
    taxes_minor: int

    @property
    def final_minor(self) -> int:
        return self.original_minor - self.discount_minor + self.taxes_minor


def duration_units(start: datetime, end: datetime) -> int:
    """Billable hours, rounded up. A window of 3h10m bills 4 units."""
    if end <= start:
        raise ValueError("end must be after start")
    return -((start - end) // BILLABLE_UNIT)


def original_amount(hourly_rate_minor: int, start: datetime, end: datetime) -> tuple[int, int]:
    units = duration_units(start, end)
    return units, units * hourly_rate_minor


def discount_amount(terms: PromotionTerms, original_minor: int) -> int:
    if terms.discount_type == DiscountType.PERCENTAGE.value:
        discount = _round_minor(Decimal(original_minor) * terms.discount_value / 100)
        if terms.max_discount_minor is not None:
            discount = min(discount, terms.max_discount_minor)
    elif terms.discount_type == DiscountType.FIXED_AMOUNT.value:
        discount = to_minor(terms.discount_value)
    else:
        raise ValueError(f"unknown discount type: {terms.discount_type}")
    return max(0, min(discount, original_minor))


def tax_amount(taxable_minor: int, tax_rate_percent: Number) -> int:
    rate = Decimal(str(tax_rate_percent))
    if rate <= 0 or taxable_minor <= 0:
        return 0
    return _round_minor(Decimal(taxable_minor) * rate / 100)


def quote_amounts(
    hourly_rate_minor: int,
    start: datetime,
    end: datetime,
    terms: Optional[PromotionTerms] = None,
    tax_rate_percent: Number = 0,
) -> Quote:
    units, original = original_amount(hourly_rate_minor, start, end)
    discount = discount_amount(terms, original) if terms else 0
    taxes = tax_amount(original - discount, tax_rate_percent)
    return Quote(
        duration_units=units,
        hourly_rate_minor=hourly_rate_minor,
        original_minor=original,
        discount_minor=discount,
        taxes_minor=taxes,
    )


def overtime_charge(
    booked_end: datetime,
    actual_end: datetime,
    overtime_hourly_rate_minor: int,
) -> tuple[int, int]:
    """
    Returns (overtime_minutes, charge_minor).

    Minutes past the booked end are rounded up; the charge is
    minutes / 60 * rate, rounded half-up to the minor unit.
    """
    if actual_end <= booked_end:
        return 0, 0
    minutes = -((booked_end - actual_end) // timedelta(minutes=1))
    if overtime_hourly_rate_minor <= 0:
        return minutes, 0
    charge = _round_minor(Decimal(minutes) * overtime_hourly_rate_minor / 60)
    return minutes, charge
