"""Decimal money helpers.

Amounts are carried as unrounded ``Decimal`` values through every netting step
and rounded to two places only when presented or stored.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENTS = Decimal("0.01")
ZERO = Decimal("0")

# Half a currency subunit. Repeated division leaves non-terminating residue.
ZERO_EPSILON = Decimal("0.005")


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """
    Convert a number or numeric string to Decimal.

    Floats go through ``str`` so 0.1 becomes Decimal("0.1") rather than its
    binary expansion.

    Raises:
        ValueError: If the value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a money amount: {value!r}")
    try:
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a money amount: {value!r}") from e


def round_money(amount: Decimal) -> Decimal:
    """Round to two decimal places (ROUND_HALF_UP), normalizing -0.00 to 0.00."""
    rounded = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    if rounded == ZERO:
        return Decimal("0.00")
    return rounded


def is_zero(amount: Decimal, epsilon: Decimal = ZERO_EPSILON) -> bool:
    """True when the amount is within half a subunit of zero."""
    return abs(amount) < epsilon


def _group_indian(digits: str) -> str:
    # Last three digits, then groups of two: 12,34,567
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups) + "," + tail


def format_inr(amount: Decimal | int | float | str) -> str:
    """
    Format an amount as Indian rupees with lakh/crore digit grouping.

    Examples:
        format_inr(Decimal("123456.78")) -> "₹1,23,456.78"
        format_inr(250) -> "₹250"
        format_inr(Decimal("-42.5")) -> "-₹42.50"
    """
    value = round_money(to_decimal(amount))
    sign = "-" if value < 0 else ""
    whole, _, fraction = f"{abs(value):.2f}".partition(".")
    formatted = f"{sign}₹{_group_indian(whole)}"
    if fraction != "00":
        formatted += f".{fraction}"
    return formatted


def parse_inr(text: str) -> Decimal:
    """
    Parse a rupee string such as "₹1,23,456.78" back to Decimal.

    Raises:
        ValueError: If nothing numeric remains after stripping symbols
    """
    cleaned = re.sub(r"[₹,\s]", "", text)
    if not cleaned:
        raise ValueError(f"Not a rupee amount: {text!r}")
    return to_decimal(cleaned)
