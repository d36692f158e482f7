"""
Conversion between human token amounts and on-chain base units.
"""

from decimal import Decimal, InvalidOperation
from typing import Union

from settlement.core.exceptions import ValidationError

Number = Union[int, str, Decimal]


def parse_amount(human_amount: Number, decimals: int) -> int:
    """
    Scale a human amount to base units.

    Args:
        human_amount: Amount such as ``100`` or ``"1.5"``
        decimals: Token decimals read from the contract

    Returns:
        Integer amount in base units

    Raises:
        ValidationError: If the amount is not a number or has more
            fractional digits than the token supports
    """
    try:
        value = Decimal(str(human_amount))
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {human_amount!r}")

    if not value.is_finite():
        raise ValidationError(f"Invalid amount: {human_amount!r}")

    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValidationError(
            f"Amount {human_amount} has more than {decimals} decimal places"
        )
    return int(scaled)


def format_amount(wei_amount: int, decimals: int) -> str:
    """Render base units as a human amount string (``"1.5"``, ``"100.0"``)."""
    value = Decimal(int(wei_amount)).scaleb(-decimals)
    text = format(value.normalize(), "f") if value else "0"
    return text if "." in text else f"{text}.0"
