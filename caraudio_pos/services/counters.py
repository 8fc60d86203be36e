"""Human-readable identifiers minted from atomic counters.

Unit labels are a two-letter brand code plus a per-brand sequence
("JL Audio" -> "JO0001"); order numbers are "SD-" plus six digits. The
counters themselves live in the inventory repository, which increments them
atomically so concurrent check-ins never mint the same label.
"""

from typing import Any

UNIT_LABEL_DIGITS = 4
ORDER_NUMBER_PREFIX = "SD-"
ORDER_NUMBER_DIGITS = 6
ORDER_COUNTER = "orders"


def make_brand_code(brand: str | None) -> str:
    """First and last alphanumeric character of the brand, upper-cased.

    Examples:
        >>> make_brand_code("JL Audio")
        'JO'
        >>> make_brand_code("Q")
        'QQ'
        >>> make_brand_code("")
        'XX'
    """
    chars = [ch for ch in (brand or "").upper() if ch.isalnum()]
    if not chars:
        return "XX"
    return chars[0] + chars[-1]


def unit_counter_name(brand_code: str) -> str:
    return f"products_{brand_code}"


def format_unit_label(brand_code: str, number: int) -> str:
    return f"{brand_code}{number:0{UNIT_LABEL_DIGITS}d}"


def format_order_number(number: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}{number:0{ORDER_NUMBER_DIGITS}d}"


async def next_unit_label(repo: Any, brand: str | None) -> str:
    code = make_brand_code(brand)
    return format_unit_label(code, await repo.next_counter(unit_counter_name(code)))


async def next_order_number(repo: Any) -> str:
    return format_order_number(await repo.next_counter(ORDER_COUNTER))
