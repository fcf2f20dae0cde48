"""
Tests for the pricing engine (pure functions, no database).
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from rentals.services.pricing import (
    PromotionTerms,
    discount_amount,
    duration_units,
    overtime_charge,
    quote_amounts,
    tax_amount,
    to_major,
    to_minor,
)

START = datetime(2026, 11, 1, 9, 0, tzinfo=timezone.utc)


def test_duration_rounds_up_to_whole_hours():
    """3h10m bills 4 hours; exact hours bill exactly."""
    assert duration_units(START, START + timedelta(hours=3, minutes=10)) == 4
    assert duration_units(START, START + timedelta(hours=3)) == 3
    assert duration_units(START, START + timedelta(seconds=1)) == 1


def test_duration_rejects_empty_window():
    with pytest.raises(ValueError):
        duration_units(START, START)


def test_rs50_per_hour_for_3h10m_is_rs200():
    quote = quote_amounts(5000, START, START + timedelta(hours=3, minutes=10))
    assert quote.duration_units == 4
    assert quote.original_minor == 20000
    assert quote.discount_minor == 0
    assert quote.final_minor == 20000


def test_percentage_discount_capped():
    """20% of Rs 200 is Rs 40, capped at Rs 30: final Rs 170."""
    terms = PromotionTerms("percentage", Decimal("20"), max_discount_minor=3000)
    quote = quote_amounts(5000, START, START + timedelta(hours=3, minutes=10), terms=terms)
    assert quote.discount_minor == 3000
    assert to_major(quote.final_minor) == Decimal("170.00")


def test_percentage_discount_rounds_half_up():
    terms = PromotionTerms("percentage", Decimal("12.5"))
    # 12.5% of 1001 = 125.125 -> 125; of 1005 = 125.625 -> 126
    assert discount_amount(terms, 1001) == 125
    assert discount_amount(terms, 1005) == 126


def test_fixed_discount_never_exceeds_original():
    terms = PromotionTerms("fixedAmount", Decimal("500"))
    assert discount_amount(terms, 20000) == 20000
    assert discount_amount(terms, 70000) == 50000


def test_amount_identity_holds_with_taxes():
    terms = PromotionTerms("fixedAmount", Decimal("25.50"))
    quote = quote_amounts(4999, START, START + timedelta(hours=2), terms=terms, tax_rate_percent=18)
    assert quote.taxes_minor == tax_amount(quote.original_minor - quote.discount_minor, 18)
    assert quote.final_minor == quote.original_minor - quote.discount_minor + quote.taxes_minor


def test_quote_is_deterministic():
    terms = PromotionTerms("percentage", Decimal("15"), max_discount_minor=None)
    end = START + timedelta(hours=5, minutes=1)
    assert quote_amounts(3333, START, end, terms=terms) == quote_amounts(3333, START, end, terms=terms)


def test_overtime_45_minutes_at_rs20_is_rs15():
    booked_end = START + timedelta(hours=3)
    minutes, charge = overtime_charge(booked_end, booked_end + timedelta(minutes=45), 2000)
    assert minutes == 45
    assert to_major(charge) == Decimal("15.00")


def test_overtime_partial_minute_rounds_up():
    booked_end = START + timedelta(hours=1)
    minutes, _ = overtime_charge(booked_end, booked_end + timedelta(minutes=10, seconds=1), 2000)
    assert minutes == 11


def test_no_overtime_when_returned_early():
    booked_end = START + timedelta(hours=1)
    assert overtime_charge(booked_end, booked_end - timedelta(minutes=5), 2000) == (0, 0)


def test_minor_unit_conversion():
    assert to_minor(Decimal("170.00")) == 17000
    assert to_minor("0.005") == 1
    assert to_major(17250) == Decimal("172.50")
