"""
Stay pricing. Pure function of the villa and the range; whatever totals a
client sends are never consulted.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from app.models.villa import Villa

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceQuote:
    nights: int
    price_per_night: Decimal
    subtotal: Decimal
    cleaning_fee: Decimal
    service_fee: Decimal
    total_price: Decimal


def quote_stay(villa: Villa, start_date: date, end_date: date) -> PriceQuote:
    """nights * price_per_night + cleaning_fee + service_fee."""
    nights = (end_date - start_date).days
    if nights <= 0:
        raise ValueError(f"end_date {end_date} must be after start_date {start_date}")

    price_per_night = _money(villa.price_per_night)
    cleaning_fee = _money(villa.cleaning_fee or 0)
    service_fee = _money(villa.service_fee or 0)
    subtotal = price_per_night * nights
    return PriceQuote(
        nights=nights,
        price_per_night=price_per_night,
        subtotal=subtotal,
        cleaning_fee=cleaning_fee,
        service_fee=service_fee,
        total_price=subtotal + cleaning_fee + service_fee,
    )
