"""Utilidades de importes: coerción tolerante y redondeo a 2 decimales."""
import math
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP

CENT = Decimal('0.01')


def as_number(value):
    """
    Devuelve `value` como float si es un número real (int/float finito),
    o None si está ausente o corrupto (None, NaN, inf, str, bool...).
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, InvalidOperation):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def number_or(value, default=0.0):
    number = as_number(value)
    return default if number is None else number


def round_currency(value) -> float:
    """Redondeo a 2 decimales, mitades lejos de cero (0.005 → 0.01)."""
    number = as_number(value)
    if number is None:
        return 0.0
    quantized = Decimal(repr(number)).quantize(CENT, rounding=ROUND_HALF_UP)
    return float(quantized)


def to_cents(value) -> int:
    """Importe en unidades mínimas (öre/céntimos) para la pasarela."""
    number = as_number(value)
    if number is None:
        return 0
    return int(Decimal(repr(number)).scaleb(2).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_cents(cents) -> float:
    number = as_number(cents)
    if number is None:
        return 0.0
    return round_currency(number / 100)


def floor_currency(value) -> float:
    """Trunca a céntimos (nunca redondea hacia arriba)."""
    number = as_number(value)
    if number is None:
        return 0.0
    return float(Decimal(repr(number)).quantize(CENT, rounding=ROUND_DOWN))
