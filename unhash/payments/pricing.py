# unhash/payments/pricing.py
"""
Price calculation for uploads.

This module turns an object size into the amount a client must pay:
1. Add the fixed per-object overhead to the object size
2. Convert the USD/GB-month storage rate into settlement units per byte
3. Multiply and round half-up to a whole settlement unit

All arithmetic uses Decimal; the result is enforced exactly by the payment
gate, so float drift is not acceptable.

Configuration is loaded from unhash/core/config.py:
- UNHASH_USD_PER_GB_MONTH: Storage rate in USD per gigabyte-month
- UNHASH_CURRENCY_USD_RATE: USD value of one unit of the settlement currency
- UNHASH_UNITS_PER_CURRENCY: Settlement units per currency unit
- UNHASH_OBJECT_OVERHEAD_BYTES: Fixed per-object overhead
- UNHASH_DEFAULT_QUOTE_SIZE: Size priced when the real size is unknown
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from unhash.core.config import Settings

logger = logging.getLogger(__name__)

BYTES_PER_GB = 10 ** 9
OBJECT_OVERHEAD_BYTES = 1024
DEFAULT_QUOTE_SIZE = BYTES_PER_GB

Number = Union[Decimal, int, str]


def cost_per_byte(
    usd_per_gb_month: Number,
    currency_usd_rate: Number,
    units_per_currency: Number,
) -> Decimal:
    """
    Convert a USD/GB-month rate into settlement units per byte-month.

    Args:
        usd_per_gb_month: Storage rate in USD
        currency_usd_rate: USD per unit of the settlement currency
        units_per_currency: Smallest settlement units per currency unit

    Returns:
        Cost of one byte for one month, in settlement units
    """
    rate = Decimal(currency_usd_rate)
    if rate <= 0:
        raise ValueError("Currency exchange rate must be positive")
    return (Decimal(usd_per_gb_month) / rate) * Decimal(units_per_currency) / BYTES_PER_GB


def round_units(amount: Decimal) -> int:
    """Round to the nearest whole settlement unit, ties away from zero."""
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def calculate_price(
    size_bytes: int,
    per_byte: Decimal,
    overhead_bytes: int = OBJECT_OVERHEAD_BYTES,
) -> int:
    """
    Calculate the price of storing an object.

    Formula: round_half_up((overhead_bytes + size_bytes) * per_byte)

    Raises:
        ValueError: If size_bytes is negative
    """
    if size_bytes < 0:
        raise ValueError(f"Object size must be non-negative, got {size_bytes}")
    return round_units((overhead_bytes + size_bytes) * per_byte)


@dataclass(frozen=True)
class PriceQuote:
    """A price for a (possibly defaulted) object size."""
    size_bytes: int
    price: int
    size_defaulted: bool


@dataclass(frozen=True)
class PriceSchedule:
    """Immutable pricing parameters, built once at startup."""
    per_byte: Decimal
    overhead_bytes: int = OBJECT_OVERHEAD_BYTES
    default_size: int = DEFAULT_QUOTE_SIZE

    @classmethod
    def from_settings(cls, settings: Settings) -> "PriceSchedule":
        schedule = cls(
            per_byte=cost_per_byte(
                settings.UNHASH_USD_PER_GB_MONTH,
                settings.UNHASH_CURRENCY_USD_RATE,
                settings.UNHASH_UNITS_PER_CURRENCY,
            ),
            overhead_bytes=settings.UNHASH_OBJECT_OVERHEAD_BYTES,
            default_size=settings.UNHASH_DEFAULT_QUOTE_SIZE,
        )
        logger.info(
            f"Pricing: ${settings.UNHASH_USD_PER_GB_MONTH}/GB-month at "
            f"{settings.UNHASH_CURRENCY_USD_RATE} USD/currency -> "
            f"{schedule.per_byte} units/byte (+{schedule.overhead_bytes} bytes overhead)"
        )
        return schedule

    def price(self, size_bytes: int) -> int:
        return calculate_price(size_bytes, self.per_byte, self.overhead_bytes)

    def quote(self, declared_size: Optional[int] = None) -> PriceQuote:
        """
        Price a declared size, or the default worst-case size if none is given.

        The returned quote carries the size actually priced so the client
        can send the real size with the upload.
        """
        if declared_size is None:
            return PriceQuote(
                size_bytes=self.default_size,
                price=self.price(self.default_size),
                size_defaulted=True,
            )
        return PriceQuote(
            size_bytes=declared_size,
            price=self.price(declared_size),
            size_defaulted=False,
        )
