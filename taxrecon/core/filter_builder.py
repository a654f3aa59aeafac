"""
Filter Tree Builder

Converts per-facet selections into a single predicate tree for the
reconciliation service.

Tree shape, regardless of how many facets are active:

    AND( <external predicates>, <facet A>, OR(<facet B value 1>, <facet B value 2>), ... )

Each facet contributes one leaf, or an OR of leaves when several values are
selected for it, so a facet never mixes AND and OR at one level. Multiple
not-equals values are a conjunction and are placed straight into the top-level
AND as individual leaves.

Range leaves on date fields are normalized in a final pass: the low bound
becomes 00:00:00.000 UTC and the high bound 23:59:59.999 UTC of the calendar
days the user picked.

Usage:
    builder = FilterTreeBuilder()
    tree = builder.build(
        [FacetSpec.values_of("Country", ["RO", "PL"]),
         FacetSpec.values_of("CompanyCode", ["1000"])],
        external=FacetSpec.date_range("PostingDate", start, end),
    )
"""
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Union

from config.settings import get_config
from taxrecon.core.dates import calendar_day, day_bounds_utc
from taxrecon.core.errors import FilterBuildError
from taxrecon.core.filter_tree import (
    Combinator,
    Composite,
    FilterNode,
    FilterOperator,
    Leaf,
    describe,
    fields_of,
    iter_leaves,
    map_leaves,
    or_,
    prune,
)

logger = logging.getLogger(__name__)


def _unique_values(values: Iterable[Any]) -> tuple:
    """
    Deduplicate, keeping first-seen order; unordered inputs are sorted for stable output.

    A string or any other scalar is a single value.
    """
    if values is None:
        return ()
    if isinstance(values, (str, bytes)):
        return (values,)
    try:
        iter(values)
    except TypeError:
        return (values,)
    if isinstance(values, (set, frozenset)):
        return tuple(sorted(values, key=str))
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return tuple(seen)


@dataclass(frozen=True)
class FacetSpec:
    """
    One facet's selection.

    A facet carries either a set of values (equals / contains / not-equals)
    or a low/high pair (between). A facet with no values and no bounds is
    inactive and contributes nothing.
    """
    field: str
    operator: Any = FilterOperator.EQ
    values: tuple = ()
    low: Any = None
    high: Any = None

    def __post_init__(self):
        object.__setattr__(self, "values", _unique_values(self.values))

    @property
    def is_active(self) -> bool:
        return bool(self.values) or self.low is not None or self.high is not None

    @classmethod
    def values_of(
        cls,
        field: str,
        values: Iterable[Any],
        operator: FilterOperator = FilterOperator.EQ,
    ) -> "FacetSpec":
        return cls(field=field, operator=operator, values=values)

    @classmethod
    def date_range(cls, field: str, low: Any, high: Any) -> "FacetSpec":
        return cls(field=field, operator=FilterOperator.BETWEEN, low=low, high=high)

    @classmethod
    def only_differences(cls, field: str = None) -> "FacetSpec":
        """Restrict to rows whose difference amount is not zero."""
        field = field or get_config().filters.difference_field
        return cls(field=field, operator=FilterOperator.NE, values=(0,))


Predicate = Union[FacetSpec, FilterNode]


class FilterTreeBuilder:
    """
    Builds predicate trees from facet selections.

    Stateless: one instance can be shared by any number of views.
    """

    def __init__(self, date_fields: Iterable[str] = ()):
        """
        Initialize the filter builder.

        Args:
            date_fields: Fields whose range bounds are normalized to whole
                         calendar days.
        """
        self.date_fields = frozenset(date_fields)

    # ==================== BUILD ====================

    def build(
        self,
        facets: Sequence[FacetSpec],
        external: Union[Predicate, Sequence[Predicate], None] = None,
    ) -> Optional[FilterNode]:
        """
        Build one composite predicate from all active facets.

        Args:
            facets: Facet selections, in the order they should appear
            external: Predicates supplied from outside the facets (e.g. the
                      date range of a filter bar); they come first in the tree

        Returns:
            The AND-rooted tree, or None when nothing constrains the query
            (callers treat None as "match all")

        Raises:
            FilterBuildError: on an unsupported operator or malformed facet
        """
        nodes: List[FilterNode] = []

        for predicate in self._as_list(external):
            node = self._build_predicate(predicate)
            if node is not None:
                nodes.append(node)

        for facet in facets:
            node = self.build_facet(facet)
            if node is not None:
                nodes.append(node)

        if not nodes:
            logger.debug("No active facets; query is unfiltered")
            return None

        tree = self.normalize_dates(self._join(nodes))
        logger.info(f"Built filter: {describe(tree)}")
        return tree

    def build_facet(self, facet: FacetSpec) -> Optional[FilterNode]:
        """
        Build the sub-tree for one facet, or None if the facet is inactive.
        """
        if not isinstance(facet, FacetSpec):
            raise FilterBuildError(f"Expected a FacetSpec, got {type(facet).__name__}")
        if not isinstance(facet.field, str) or not facet.field.strip():
            raise FilterBuildError("Facet has no field name", context={"facet": repr(facet)})

        operator = self._coerce_operator(facet)

        if operator is FilterOperator.BETWEEN:
            return self._build_range(facet)

        if facet.low is not None or facet.high is not None:
            raise FilterBuildError(
                f"Facet '{facet.field}' has range bounds but operator '{operator.value}'",
                context={"field": facet.field},
            )

        if not facet.values:
            return None

        leaves = [Leaf(facet.field, operator, value) for value in facet.values]
        if len(leaves) == 1:
            node = leaves[0]
        elif operator is FilterOperator.NE:
            node = Composite(Combinator.AND, tuple(leaves))
        else:
            node = or_(*leaves)

        logger.debug(f"Facet {facet.field}: {describe(node)}")
        return node

    # ==================== INCREMENTAL REPLACEMENT ====================

    def replace_facet(self, tree: Optional[FilterNode], facet: FacetSpec) -> Optional[FilterNode]:
        """
        Swap one facet's sub-tree without rebuilding the rest.

        Every top-level child that constrains only facet.field is removed; the
        facet's new sub-tree takes the position of the first removed child, or
        is appended when the field was not constrained before. An inactive
        facet simply removes the field's constraint.
        """
        replacement = self.build_facet(facet)
        children = self._top_level_children(tree)

        result: List[FilterNode] = []
        inserted = False
        for child in children:
            if fields_of(child) == {facet.field}:
                if not inserted and replacement is not None:
                    result.append(replacement)
                inserted = True
                continue
            result.append(child)

        if not inserted and replacement is not None:
            result.append(replacement)

        if not result:
            return None
        return self.normalize_dates(self._join(result))

    def remove_facet(self, tree: Optional[FilterNode], field: str) -> Optional[FilterNode]:
        """Drop every top-level constraint on one field."""
        return self.replace_facet(tree, FacetSpec(field=field))

    # ==================== DATE NORMALIZATION ====================

    def normalize_dates(self, tree: Optional[FilterNode]) -> Optional[FilterNode]:
        """
        Snap every date range leaf, at any depth, to whole calendar days in UTC.
        """
        def normalize(leaf: Leaf) -> Leaf:
            if not leaf.is_range or leaf.field not in self.date_fields:
                return leaf
            try:
                low, high = day_bounds_utc(leaf.value, leaf.value_high)
            except ValueError as e:
                raise FilterBuildError(
                    f"Invalid date bound on '{leaf.field}': {e}",
                    context={"field": leaf.field},
                ) from e
            return Leaf(leaf.field, FilterOperator.BETWEEN, low, high)

        return map_leaves(tree, normalize)

    # ==================== HELPERS ====================

    @staticmethod
    def _as_list(external: Union[Predicate, Sequence[Predicate], None]) -> List[Predicate]:
        if external is None:
            return []
        if isinstance(external, (FacetSpec, Leaf, Composite)):
            return [external]
        return list(external)

    def _build_predicate(self, predicate: Predicate) -> Optional[FilterNode]:
        if isinstance(predicate, FacetSpec):
            return self.build_facet(predicate)
        if isinstance(predicate, (Leaf, Composite)):
            for leaf in iter_leaves(predicate):
                if not isinstance(leaf.operator, FilterOperator):
                    raise FilterBuildError(
                        f"Unsupported operator {leaf.operator!r} for field '{leaf.field}'",
                        context={"field": leaf.field},
                    )
                if leaf.is_range:
                    self._check_bounds(leaf.field, leaf.value, leaf.value_high)
            return prune(predicate)
        raise FilterBuildError(f"Unsupported predicate type {type(predicate).__name__}")

    @staticmethod
    def _coerce_operator(facet: FacetSpec) -> FilterOperator:
        operator = facet.operator
        if isinstance(operator, FilterOperator):
            return operator
        try:
            return FilterOperator(str(operator).lower())
        except ValueError:
            raise FilterBuildError(
                f"Unsupported operator {operator!r} for field '{facet.field}'",
                context={"field": facet.field, "operator": str(operator)},
            ) from None

    def _build_range(self, facet: FacetSpec) -> Optional[Leaf]:
        if facet.values:
            raise FilterBuildError(
                f"Range facet '{facet.field}' takes low/high bounds, not values",
                context={"field": facet.field},
            )
        if facet.low is None and facet.high is None:
            return None
        self._check_bounds(facet.field, facet.low, facet.high)
        return Leaf(facet.field, FilterOperator.BETWEEN, facet.low, facet.high)

    def _check_bounds(self, field: str, low: Any, high: Any) -> None:
        """Reject a range with a missing, unparseable or inverted bound."""
        if low is None or high is None:
            raise FilterBuildError(
                f"Range on '{field}' needs both a low and a high bound",
                context={"field": field},
            )

        if field in self.date_fields:
            try:
                first, last = calendar_day(low), calendar_day(high)
            except ValueError as e:
                raise FilterBuildError(
                    f"Invalid date bound on '{field}': {e}",
                    context={"field": field},
                ) from e
        else:
            first, last = low, high

        try:
            inverted = first > last
        except TypeError:
            raise FilterBuildError(
                f"Range bounds on '{field}' are not comparable",
                context={"field": field},
            ) from None
        if inverted:
            raise FilterBuildError(
                f"Range on '{field}' has low bound after high bound",
                context={"field": field, "low": str(low), "high": str(high)},
            )

    @staticmethod
    def _top_level_children(tree: Optional[FilterNode]) -> List[FilterNode]:
        if tree is None:
            return []
        if isinstance(tree, Composite) and tree.combinator is Combinator.AND:
            return list(tree.children)
        return [tree]

    @staticmethod
    def _join(nodes: Sequence[FilterNode]) -> Composite:
        """AND-join, lifting the children of nested ANDs into the top level."""
        children: List[FilterNode] = []
        for node in nodes:
            if isinstance(node, Composite) and node.combinator is Combinator.AND:
                children.extend(node.children)
            else:
                children.append(node)
        return Composite(Combinator.AND, tuple(children))


# Factory function
def get_filter_builder(date_fields: Optional[Iterable[str]] = None) -> FilterTreeBuilder:
    """
    Get a configured filter builder.

    Args:
        date_fields: Optional override of the calendar-day normalized fields.
                     If not provided, reads FILTER_DATE_FIELDS via the app config.
    """
    if date_fields is None:
        date_fields = get_config().filters.date_fields
    return FilterTreeBuilder(date_fields=date_fields)
