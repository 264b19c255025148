"""Token amount conversions.

Convert between the decimal strings a user types and raw ``uint256`` token amounts.

- All conversions are done with integer arithmetic on the digit groups of the string.
  ``float`` never touches an amount, as IEEE 754 doubles only carry ~15.9 significant
  digits and an 18 decimal token amount easily has more.

- Display formatting truncates, never rounds, so we never show more than the account holds.

Example:

.. code-block:: python

    raw = parse_amount("1.5")
    assert raw == 1_500_000_000_000_000_000
    assert format_amount(raw) == "1.50"

    # Max button: full precision, no grouping, re-parses to the exact balance
    assert parse_amount(format_max_amount(raw)) == raw

"""

import re
from decimal import Decimal

from eth_typing import HexAddress

#: Decimals of both the deposit asset (USDe) and the vault share token
DEFAULT_DECIMALS = 18

#: How many fractional digits we show in balances by default
DEFAULT_DISPLAY_DECIMALS = 2

#: Thousands separator used in display formatting.
#:
#: Presentation only, must be stripped before the value is parsed again.
THOUSANDS_SEPARATOR = ","

#: What the input field accepts, checked on every keystroke
AMOUNT_INPUT_PATTERN = re.compile(r"^[0-9]*\.?[0-9]*$")


def is_valid_amount_input(value: str) -> bool:
    """Check a typed amount before it is accepted as the new input value.

    Partial inputs like ``""``, ``"."`` and ``"12."`` are valid,
    they parse to zero or to the integer part.
    """
    return AMOUNT_INPUT_PATTERN.fullmatch(value) is not None


def parse_amount(value: str, decimals: int = DEFAULT_DECIMALS) -> int:
    """Convert a typed decimal string to a raw token amount.

    - Empty string and a lone decimal point are zero
    - Fractional digits beyond ``decimals`` are truncated, not rounded

    :param value:
        Decimal string like ``"1.5"``, ``".25"`` or ``"100"``

    :param decimals:
        Token decimals

    :return:
        Raw amount, e.g. ``1_500_000_000_000_000_000`` for ``"1.5"`` with 18 decimals

    :raise ValueError:
        If the string contains anything else than digits and a decimal point
    """
    assert type(decimals) == int and decimals >= 0, f"Bad decimals: {decimals}"

    # int() alone would take signs, underscores and whitespace
    if not is_valid_amount_input(value):
        raise ValueError(f"Not a decimal amount: {value!r}")

    if not value or value == ".":
        return 0

    whole, _, fraction = value.partition(".")
    whole = whole or "0"
    padded_fraction = fraction.ljust(decimals, "0")[:decimals]
    raw_fraction = int(padded_fraction) if padded_fraction else 0
    return int(whole) * 10**decimals + raw_fraction


def format_amount(
    value: int,
    decimals: int = DEFAULT_DECIMALS,
    display_decimals: int = DEFAULT_DISPLAY_DECIMALS,
) -> str:
    """Format a raw token amount for display.

    - The integer part is grouped with thousands separators
    - The fraction is truncated to ``display_decimals``

    With ``display_decimals == decimals`` the output carries full precision
    and :py:func:`parse_amount` on the ungrouped string gives back the same value.
    With fewer display decimals the round trip loses the truncated digits.

    :param value:
        Raw amount

    :return:
        E.g. ``"1,234.50"``
    """
    assert type(value) == int, f"Raw amounts must be int, got {type(value)}: {value}"
    assert value >= 0, f"Negative token amount: {value}"
    assert 0 <= display_decimals <= decimals, f"Cannot display {display_decimals} decimals of a {decimals} decimal token"

    divisor = 10**decimals
    whole = value // divisor
    remainder = value % divisor

    whole_str = f"{whole:,}".replace(",", THOUSANDS_SEPARATOR)
    if display_decimals == 0:
        return whole_str

    fraction_str = str(remainder).rjust(decimals, "0")[:display_decimals]
    return f"{whole_str}.{fraction_str}"


def strip_grouping(value: str) -> str:
    """Remove thousands separators from a formatted amount."""
    return value.replace(THOUSANDS_SEPARATOR, "")


def format_max_amount(value: int, decimals: int = DEFAULT_DECIMALS) -> str:
    """Format a balance for the max button.

    Full precision, no grouping, trailing zeros and decimal point removed,
    so the input field shows ``"1.5"`` instead of ``"1.500000000000000000"``
    and parses back to exactly ``value``.
    """
    formatted = strip_grouping(format_amount(value, decimals, decimals))
    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")
    return formatted


def convert_to_decimals(value: int, decimals: int = DEFAULT_DECIMALS) -> Decimal:
    """Convert a raw amount to human readable :py:class:`Decimal`.

    Exact for any size, as the :py:class:`Decimal` string constructor does not round
    to the context precision.
    """
    return Decimal(f"{value}E-{decimals}")


def shorten_address(address: HexAddress | str) -> str:
    """Shorten an address for display, e.g. ``0x324d...116E``."""
    return f"{address[:6]}...{address[-4:]}"
