"""
OData v2 Query Encoding

Serializes filter trees and sort specs into OData v2 system query options
($filter, $orderby) as the reconciliation service expects them.

    AND(Country contains RO, CompanyCode = 1000)
    -> "substringof('RO',Country) and CompanyCode eq '1000'"

String values are always quoted, so codes like "1000" keep their leading
zeros and type. Numbers, booleans and datetimes use their OData literal forms.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Sequence

from taxrecon.core.dates import format_odata_datetime
from taxrecon.core.filter_tree import Combinator, Composite, FilterNode, FilterOperator, Leaf


def format_literal(value: Any) -> str:
    """Format a Python value as an OData v2 literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return f"datetime'{format_odata_datetime(value)}'"
    if isinstance(value, date):
        return f"datetime'{value.isoformat()}T00:00:00'"
    text = str(value).replace("'", "''")
    return f"'{text}'"


def _leaf_to_filter(leaf: Leaf) -> str:
    if leaf.operator is FilterOperator.EQ:
        return f"{leaf.field} eq {format_literal(leaf.value)}"
    if leaf.operator is FilterOperator.NE:
        return f"{leaf.field} ne {format_literal(leaf.value)}"
    if leaf.operator is FilterOperator.CONTAINS:
        return f"substringof({format_literal(str(leaf.value))},{leaf.field})"
    if leaf.operator is FilterOperator.BETWEEN:
        return (
            f"({leaf.field} ge {format_literal(leaf.value)} "
            f"and {leaf.field} le {format_literal(leaf.value_high)})"
        )
    raise ValueError(f"Unsupported operator: {leaf.operator}")


def to_odata_filter(node: Optional[FilterNode]) -> Optional[str]:
    """
    Render a filter tree as a $filter expression.

    Returns None for "no constraint" (None or an empty composite).
    """
    if node is None:
        return None
    if isinstance(node, Leaf):
        return _leaf_to_filter(node)
    if not isinstance(node, Composite):
        raise TypeError(f"Not a filter node: {node!r}")

    parts = []
    for child in node.children:
        rendered = to_odata_filter(child)
        if rendered is None:
            continue
        if isinstance(child, Composite) and len(child.children) > 1:
            rendered = f"({rendered})"
        parts.append(rendered)

    if not parts:
        return None
    joiner = " and " if node.combinator is Combinator.AND else " or "
    return joiner.join(parts)


def to_odata_orderby(sort: Sequence[Any]) -> Optional[str]:
    """Render (field, descending) sort specs as an $orderby expression."""
    if not sort:
        return None
    return ",".join(
        f"{spec.field} desc" if spec.descending else f"{spec.field} asc"
        for spec in sort
    )
