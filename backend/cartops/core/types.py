"""
CARTOPS - Canonical Numeric Types
=================================

RULE: No floats inside the engine.

Weight:     Decimal grams (scale readings, bottle reference weights)
Density:    Decimal g/ml, strictly positive
Price:      Decimal currency units
Percentage: int 0-100 (liquid level, match confidence)

Floats only exist at the collaborator boundary (Gemini JSON, Firestore
documents). Adapters convert them with ``to_decimal`` before building models.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated, Any, Optional

from pydantic import BeforeValidator, PlainSerializer, WithJsonSchema


def to_decimal(v: Any) -> Optional[Decimal]:
    """
    Convert a boundary value (JSON number, string, Decimal) to Decimal.

    Floats go through ``str`` so 950.5 becomes Decimal("950.5"), not its
    binary expansion. Returns None for None, empty strings and garbage.
    """
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, Decimal):
        return v
    if isinstance(v, (int, float)):
        return Decimal(str(v))
    if isinstance(v, str):
        cleaned = v.strip().lower().removesuffix("grams").removesuffix("gr").removesuffix("g").strip()
        if not cleaned:
            return None
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None
    return None


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# =============================================================================
# WEIGHT / DENSITY (Decimal)
# =============================================================================

def _validate_decimal(v: Any) -> Decimal:
    """
    Validate and convert to Decimal.

    Accepts:
        - Decimal: Pass through
        - str / int: Parse as Decimal
        - float: REJECTED (raises ValueError)
    """
    if isinstance(v, float):
        raise ValueError(
            "Float not allowed. Use Decimal or string. "
            f"Got: {v}"
        )

    if isinstance(v, Decimal):
        return v

    if isinstance(v, (str, int)):
        try:
            return Decimal(str(v))
        except InvalidOperation:
            raise ValueError(f"Invalid decimal: {v}")

    raise ValueError(f"Invalid decimal type: {type(v)}")


def _validate_weight(v: Any) -> Decimal:
    dec = _validate_decimal(v)
    if dec < 0:
        raise ValueError(f"Weight must be >= 0, got: {dec}")
    return dec


def _validate_density(v: Any) -> Decimal:
    dec = _validate_decimal(v)
    if dec <= 0:
        raise ValueError(f"Density must be > 0, got: {dec}")
    return dec


def _serialize_decimal(v: Decimal) -> str:
    """Serialize as string (prevents JSON float issues)."""
    return str(v)


Grams = Annotated[
    Decimal,
    BeforeValidator(_validate_weight),
    PlainSerializer(_serialize_decimal, when_used="json"),
    WithJsonSchema({"type": "string", "description": "Weight in grams as decimal string"}),
]

Density = Annotated[
    Decimal,
    BeforeValidator(_validate_density),
    PlainSerializer(_serialize_decimal, when_used="json"),
    WithJsonSchema({"type": "string", "description": "Liquid density in g/ml"}),
]

Price = Annotated[
    Decimal,
    BeforeValidator(_validate_decimal),
    PlainSerializer(_serialize_decimal, when_used="json"),
    WithJsonSchema({"type": "string", "description": "Unit price as decimal string"}),
]


# =============================================================================
# PERCENTAGE (whole units 0-100)
# =============================================================================

def _validate_percentage(v: Any) -> int:
    """Validate whole-number percentage 0-100."""
    if isinstance(v, float):
        raise ValueError(f"Float not allowed for percentage. Got: {v}")

    if isinstance(v, Decimal):
        if v % 1 != 0:
            raise ValueError(f"Percentage must be whole number, got: {v}")
        v = int(v)

    if isinstance(v, str):
        try:
            v = int(v)
        except ValueError:
            raise ValueError(f"Invalid percentage: {v}")

    if not isinstance(v, int) or isinstance(v, bool):
        raise ValueError(f"Invalid percentage type: {type(v)}")

    if v < 0 or v > 100:
        raise ValueError(f"Percentage must be 0-100, got: {v}")

    return v


Percentage = Annotated[
    int,
    BeforeValidator(_validate_percentage),
    WithJsonSchema({"type": "integer", "minimum": 0, "maximum": 100}),
]


__all__ = [
    "Grams",
    "Density",
    "Price",
    "Percentage",
    "to_decimal",
    "round_half_up",
]
