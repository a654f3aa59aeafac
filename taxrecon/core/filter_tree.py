"""
Filter Tree

Plain value types for query predicates and the pure functions that build,
walk and evaluate them.

A predicate is either a Leaf (one field compared with one value, or with a
low/high pair for ranges) or a Composite that joins an ordered sequence of
children with a single combinator. Trees are immutable; every transformation
returns a new tree.

A Composite with no children places no constraint and is dropped from its
parent by prune().
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional, Sequence, Tuple, Union

from taxrecon.core.dates import to_instant

logger = logging.getLogger(__name__)


class FilterOperator(Enum):
    """Comparison operators understood by the reconciliation service."""
    EQ = "eq"
    NE = "ne"
    # substring match, used against comma-joined code lists like "RO,PL,DK"
    CONTAINS = "contains"
    # inclusive range
    BETWEEN = "between"


class Combinator(Enum):
    AND = "and"
    OR = "or"


@dataclass(frozen=True)
class Leaf:
    """A single field comparison."""
    field: str
    operator: FilterOperator
    value: Any = None
    value_high: Any = None

    @property
    def is_range(self) -> bool:
        return self.operator is FilterOperator.BETWEEN


@dataclass(frozen=True)
class Composite:
    """Children joined by one combinator."""
    combinator: Combinator
    children: Tuple["FilterNode", ...] = ()

    @property
    def is_empty(self) -> bool:
        return len(self.children) == 0


FilterNode = Union[Leaf, Composite]


def _composite(combinator: Combinator, children: Sequence[Optional[FilterNode]]) -> Composite:
    kept = []
    for child in children:
        if child is None:
            continue
        if isinstance(child, Composite) and child.is_empty:
            continue
        kept.append(child)
    return Composite(combinator, tuple(kept))


def and_(*children: Optional[FilterNode]) -> Composite:
    """AND-join the given nodes, skipping None and empty composites."""
    return _composite(Combinator.AND, children)


def or_(*children: Optional[FilterNode]) -> Composite:
    """OR-join the given nodes, skipping None and empty composites."""
    return _composite(Combinator.OR, children)


def prune(node: Optional[FilterNode], collapse_singletons: bool = False) -> Optional[FilterNode]:
    """
    Drop empty composites at every depth.

    Args:
        node: Tree to prune
        collapse_singletons: Also replace one-child composites by their child

    Returns:
        The pruned tree, or None if nothing constrains the query
    """
    if node is None:
        return None
    if isinstance(node, Leaf):
        return node

    children = []
    for child in node.children:
        pruned = prune(child, collapse_singletons)
        if pruned is not None:
            children.append(pruned)

    if not children:
        return None
    if collapse_singletons and len(children) == 1:
        return children[0]
    return Composite(node.combinator, tuple(children))


def iter_leaves(node: Optional[FilterNode]) -> Iterator[Leaf]:
    """Yield every leaf depth-first, left to right."""
    if node is None:
        return
    if isinstance(node, Leaf):
        yield node
        return
    for child in node.children:
        yield from iter_leaves(child)


def map_leaves(node: Optional[FilterNode], fn: Callable[[Leaf], Leaf]) -> Optional[FilterNode]:
    """Return a copy of the tree with fn applied to every leaf."""
    if node is None:
        return None
    if isinstance(node, Leaf):
        return fn(node)
    return Composite(node.combinator, tuple(map_leaves(child, fn) for child in node.children))


def has_uniform_combinators(node: Optional[FilterNode]) -> bool:
    """
    Check that no composite mixes AND and OR sub-composites among its children.
    """
    if node is None or isinstance(node, Leaf):
        return True
    child_combinators = {
        child.combinator for child in node.children if isinstance(child, Composite)
    }
    if len(child_combinators) > 1:
        return False
    return all(has_uniform_combinators(child) for child in node.children)


def fields_of(node: Optional[FilterNode]) -> set:
    """Set of field names referenced anywhere in the tree."""
    return {leaf.field for leaf in iter_leaves(node)}


# ==================== EVALUATION ====================

def _comparable(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, date):
        return to_instant(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
        instant = to_instant(value)
        return instant if instant is not None else value
    return value


def _equal(left: Any, right: Any) -> bool:
    if left == right:
        return True
    a, b = _comparable(left), _comparable(right)
    if type(a) is type(b):
        return a == b
    return str(left) == str(right)


def _leaf_matches(leaf: Leaf, record: Dict[str, Any]) -> bool:
    actual = record.get(leaf.field)

    if leaf.operator is FilterOperator.EQ:
        return _equal(actual, leaf.value)
    if leaf.operator is FilterOperator.NE:
        return not _equal(actual, leaf.value)
    if leaf.operator is FilterOperator.CONTAINS:
        if actual is None:
            return False
        return str(leaf.value) in str(actual)
    if leaf.operator is FilterOperator.BETWEEN:
        value = _comparable(actual)
        low, high = _comparable(leaf.value), _comparable(leaf.value_high)
        if value is None:
            return False
        try:
            return low <= value <= high
        except TypeError:
            logger.debug(f"Cannot compare {actual!r} with range on {leaf.field}")
            return False
    raise ValueError(f"Unsupported operator: {leaf.operator}")


def matches(node: Optional[FilterNode], record: Dict[str, Any]) -> bool:
    """
    Evaluate the predicate against one record.

    None and empty composites match everything.
    """
    if node is None:
        return True
    if isinstance(node, Leaf):
        return _leaf_matches(node, record)
    if node.is_empty:
        return True
    if node.combinator is Combinator.AND:
        return all(matches(child, record) for child in node.children)
    return any(matches(child, record) for child in node.children)


# ==================== RENDERING ====================

def _render_value(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def to_dict(node: Optional[FilterNode]) -> Optional[Dict[str, Any]]:
    """Serialize the tree into plain dicts (JSON-safe)."""
    if node is None:
        return None
    if isinstance(node, Leaf):
        result = {
            "field": node.field,
            "operator": node.operator.value,
            "value": _render_value(node.value),
        }
        if node.is_range:
            result["valueHigh"] = _render_value(node.value_high)
        return result
    return {
        "combinator": node.combinator.value,
        "filters": [to_dict(child) for child in node.children],
    }


_SYMBOLS = {
    FilterOperator.EQ: "=",
    FilterOperator.NE: "!=",
    FilterOperator.CONTAINS: "contains",
}


def describe(node: Optional[FilterNode]) -> str:
    """Human-readable rendering, e.g. "(Country = RO OR Country = PL) AND CompanyCode = 1000"."""
    if node is None:
        return "No filters"
    if isinstance(node, Leaf):
        if node.is_range:
            return f"{node.field} between {_render_value(node.value)} and {_render_value(node.value_high)}"
        return f"{node.field} {_SYMBOLS[node.operator]} {_render_value(node.value)}"
    if node.is_empty:
        return "No filters"
    parts = []
    for child in node.children:
        text = describe(child)
        if isinstance(child, Composite) and len(child.children) > 1:
            text = f"({text})"
        parts.append(text)
    return f" {node.combinator.value.upper()} ".join(parts)
