"""
Tests for stay pricing.
"""

from datetime import date
from decimal import Decimal

import pytest

from app.models.villa import Villa
from app.services.pricing import quote_stay


def test_quote_adds_fees_once_per_stay():
    villa = Villa(price_per_night=Decimal("180.50"), cleaning_fee=Decimal("60"), service_fee=Decimal("19.99"))

    quote = quote_stay(villa, date(2024, 12, 28), date(2025, 1, 2))

    assert quote.nights == 5
    assert quote.subtotal == Decimal("902.50")
    assert quote.total_price == Decimal("982.49")


def test_missing_fees_count_as_zero():
    villa = Villa(price_per_night=Decimal("99"))

    quote = quote_stay(villa, date(2024, 3, 1), date(2024, 3, 3))

    assert quote.cleaning_fee == Decimal("0.00")
    assert quote.service_fee == Decimal("0.00")
    assert quote.total_price == Decimal("198.00")


def test_quote_is_deterministic():
    villa = Villa(price_per_night=Decimal("200"), cleaning_fee=Decimal("50"), service_fee=Decimal("25"))

    first = quote_stay(villa, date(2024, 7, 1), date(2024, 7, 5))
    second = quote_stay(villa, date(2024, 7, 1), date(2024, 7, 5))

    assert first == second
    assert first.total_price == Decimal("875.00")


def test_quote_spans_leap_day():
    villa = Villa(price_per_night=Decimal("100"), cleaning_fee=Decimal("0"), service_fee=Decimal("0"))

    assert quote_stay(villa, date(2024, 2, 28), date(2024, 3, 1)).nights == 2


def test_empty_range_cannot_be_priced():
    villa = Villa(price_per_night=Decimal("100"))

    with pytest.raises(ValueError):
        quote_stay(villa, date(2024, 3, 1), date(2024, 3, 1))
