"""
Derives the set of express delivery fee amounts from timeslot configuration.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, List, Optional, Union

from app.models.timeslot import Timeslot

CENT = Decimal("0.01")


def to_fee_amount(value: Union[Decimal, float, int, str, None]) -> Optional[Decimal]:
    """
    Convert a fee value to a two-decimal Decimal.

    Floats go through str() first so 12.1 becomes Decimal("12.10"), not
    Decimal("12.0999999..."). Returns None for values that are not numbers
    or are too large to represent in cents.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip().lstrip("$"))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # More digits than the decimal context can hold at cent precision
        return None


def extract_fee_amounts(timeslots: Iterable[Timeslot]) -> List[Decimal]:
    """
    Return the distinct fee amounts of express timeslots with a fee above zero, ascending.

    Args:
        timeslots: The tenant's full timeslot configuration

    Returns:
        Sorted list of distinct two-decimal amounts
    """
    amounts = set()
    for slot in timeslots:
        if slot.type != "express":
            continue
        amount = to_fee_amount(slot.fee)
        if amount is not None and amount > 0:
            amounts.add(amount)
    return sorted(amounts)
