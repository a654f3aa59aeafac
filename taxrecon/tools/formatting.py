"""
Display formatting for reconciliation data.

Plain functions turning codes and amounts into the text and semantic states
shown next to them. Labels come from the reference data cache, so codes
display as raw codes until (or unless) their maps are loaded.
"""
import math
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple

from taxrecon.core.aggregation import parse_measure
from taxrecon.core.reconciliation import split_codes


class ValueState(Enum):
    """Semantic state of a displayed value."""
    NONE = "None"
    SUCCESS = "Success"
    WARNING = "Warning"
    ERROR = "Error"
    INFORMATION = "Information"


# Reconciliation status: S reconciled, RF / E failed, P extraction in progress
RECONCILIATION_STATUS_STATES = {
    "S": ValueState.SUCCESS,
    "RF": ValueState.ERROR,
    "E": ValueState.ERROR,
    "P": ValueState.INFORMATION,
}

# Document status: S reconciled, NV not in VAT returns, NE not in EC sales list,
# E other differences
DOCUMENT_STATUS_STATES = {
    "S": ValueState.SUCCESS,
    "NV": ValueState.WARNING,
    "NE": ValueState.WARNING,
    "E": ValueState.INFORMATION,
}

SCALES = (
    (1_000_000_000, "B"),
    (1_000_000, "M"),
    (1_000, "K"),
)


def format_code_list_tokens(code_list: Optional[str], cache, domain: str = "country") -> List[Tuple[str, str]]:
    """
    Turn a stored code list into (code, text) tokens.

    "RO,PL" -> [("RO", "Romania (RO)"), ("PL", "Poland (PL)")]

    A code without a label is shown as the bare code.
    """
    tokens = []
    for code in split_codes(code_list):
        label = cache.resolve(domain, code) if cache is not None else code
        text = code if label == code else f"{label} ({code})"
        tokens.append((code, text))
    return tokens


def format_number_with_scale(value: Any) -> str:
    """
    Compact number: 1234 -> "1.2K", 2000000 -> "2M", 950 -> "950".

    One decimal place; whole results drop it.
    """
    number = _as_number(value)
    if number is None:
        return "0"

    for threshold, suffix in SCALES:
        if abs(number) >= threshold:
            scaled = round(number / threshold, 1)
            if scaled == int(scaled):
                return f"{int(scaled)}{suffix}"
            return f"{scaled:.1f}{suffix}"

    if number == int(number):
        return str(int(number))
    return str(number)


def format_currency(value: Any, currency: str = "EUR") -> str:
    """"EUR 1250.50", "EUR -12.00"; missing values show as "EUR 0.00"."""
    number = _as_number(value)
    if number is None:
        return f"{currency} 0.00"
    sign = "-" if number < 0 else ""
    return f"{currency} {sign}{abs(number):.2f}"


def format_doc_count(count: Optional[int]) -> str:
    return f"{count or 0} docs"


def format_diff_amount_state(amount: Any) -> ValueState:
    """Zero difference is a match, anything else a mismatch."""
    number = _as_number(amount)
    if number is None:
        return ValueState.NONE
    if number == 0:
        return ValueState.SUCCESS
    return ValueState.ERROR


def format_reconciliation_status(status: Optional[str]) -> ValueState:
    if not status:
        return ValueState.NONE
    return RECONCILIATION_STATUS_STATES.get(status, ValueState.NONE)


def format_document_status(status: Optional[str]) -> ValueState:
    if not status:
        return ValueState.NONE
    return DOCUMENT_STATUS_STATES.get(status, ValueState.NONE)


def format_group_subtotal(
    group_totals: Mapping[str, Mapping[str, Any]],
    group_key: str,
    measure_field: str = "DiffGrossAmount",
    currency_field: str = "Currencycode",
) -> str:
    """
    Subtotal text for a group header, e.g. "Diff: 1250.50 EUR".

    Empty when the group is unknown or has no difference.
    """
    if not group_totals or not group_key:
        return ""
    totals = group_totals.get(group_key)
    if not totals:
        return ""

    difference = abs(parse_measure(totals.get(measure_field)))
    if difference <= 0:
        return ""
    currency = totals.get(currency_field) or ""
    return f"Diff: {difference:.2f} {currency}".rstrip()


def _as_number(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number
