"""
Cross-Filter Selection

Keeps the multi-value selections a user makes by clicking visualized
segments (e.g. company codes in one treemap, tax codes in another) and turns
them into facets for the filter builder.

Selections are held in an immutable SelectionState snapshot. The module-level
select() / deselect() / clear() functions are pure: they return a new
snapshot and never touch the old one. CrossFilterSelector is the thin holder a
detail view owns; it swaps snapshots in and tells listeners about them.

Dimensions can be linked into exclusive groups. Selecting values in one
dimension of a group empties every other dimension of that group, so at most
one of them is non-empty at any time.
"""
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from taxrecon.core.filter_builder import FacetSpec
from taxrecon.core.filter_tree import FilterOperator

logger = logging.getLogger(__name__)

EMPTY: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class SelectionState:
    """Immutable snapshot of every dimension's selected values."""
    dimensions: Tuple[str, ...]
    selections: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    exclusive_groups: Tuple[FrozenSet[str], ...] = ()

    def __post_init__(self):
        unknown = set(self.selections) - set(self.dimensions)
        if unknown:
            raise ValueError(f"Selections for unknown dimensions: {sorted(unknown)}")
        for group in self.exclusive_groups:
            missing = set(group) - set(self.dimensions)
            if missing:
                raise ValueError(f"Exclusive group references unknown dimensions: {sorted(missing)}")
        object.__setattr__(self, "selections", MappingProxyType({
            name: frozenset(self.selections.get(name, EMPTY)) for name in self.dimensions
        }))
        for group in self.exclusive_groups:
            active = sorted(name for name in group if self.selections[name])
            if len(active) > 1:
                raise ValueError(f"Exclusive dimensions selected together: {active}")

    @classmethod
    def empty(
        cls,
        dimensions: Iterable[str],
        exclusive_groups: Iterable[Iterable[str]] = (),
    ) -> "SelectionState":
        return cls(
            dimensions=tuple(dimensions),
            exclusive_groups=tuple(frozenset(group) for group in exclusive_groups),
        )

    def current(self, dimension: str) -> FrozenSet[str]:
        self._check(dimension)
        return self.selections[dimension]

    def linked(self, dimension: str) -> FrozenSet[str]:
        """Dimensions that are emptied when this one gets a selection."""
        others = set()
        for group in self.exclusive_groups:
            if dimension in group:
                others.update(group)
        others.discard(dimension)
        return frozenset(others)

    @property
    def active_dimensions(self) -> List[str]:
        return [name for name in self.dimensions if self.selections[name]]

    def _check(self, dimension: str):
        if dimension not in self.dimensions:
            raise ValueError(f"Unknown dimension: {dimension}. Available: {list(self.dimensions)}")

    def _with(self, updates: Dict[str, FrozenSet[str]]) -> "SelectionState":
        merged = dict(self.selections)
        merged.update(updates)
        return SelectionState(
            dimensions=self.dimensions,
            selections=merged,
            exclusive_groups=self.exclusive_groups,
        )


# ==================== STATE UPDATES ====================

def _as_value_set(values: Union[str, Iterable[str]]) -> FrozenSet[str]:
    # a bare string is one value, not a sequence of characters
    if isinstance(values, str):
        return frozenset((values,))
    return frozenset(values)


def select(state: SelectionState, dimension: str, values: Iterable[str]) -> SelectionState:
    """
    Add values to a dimension's selection.

    A non-empty selection empties the linked dimensions. Values already
    selected are ignored; an empty values set changes nothing.
    """
    state._check(dimension)
    values = _as_value_set(values)
    if not values:
        return state

    updates = {dimension: state.selections[dimension] | values}
    for other in state.linked(dimension):
        if state.selections[other]:
            logger.debug(f"Selecting {dimension} clears linked dimension {other}")
        updates[other] = EMPTY
    return state._with(updates)


def deselect(state: SelectionState, dimension: str, values: Iterable[str]) -> SelectionState:
    """Remove values from a dimension's selection; absent values are ignored."""
    state._check(dimension)
    values = _as_value_set(values)
    remaining = state.selections[dimension] - values
    if remaining == state.selections[dimension]:
        return state
    return state._with({dimension: remaining})


def clear(state: SelectionState, dimension: Optional[str] = None) -> SelectionState:
    """Empty one dimension, or all of them."""
    if dimension is None:
        return state._with({name: EMPTY for name in state.dimensions})
    state._check(dimension)
    return state._with({dimension: EMPTY})


# ==================== SESSION HOLDER ====================

Listener = Callable[[SelectionState], None]


class CrossFilterSelector:
    """
    Owns the selection snapshot for one detail view.

    Usage:
        selector = CrossFilterSelector(
            {"company_code": "CompanyCode", "tax_code": "TaxCode"},
            exclusive_groups=[("company_code", "tax_code")],
        )
        selector.select("company_code", {"1000"})
        facets = selector.to_facets()
    """

    def __init__(
        self,
        dimension_fields: Mapping[str, str],
        exclusive_groups: Iterable[Iterable[str]] = (),
    ):
        """
        Args:
            dimension_fields: Dimension name -> field name it filters on
            exclusive_groups: Groups of dimensions of which at most one may
                              hold a selection
        """
        self.dimension_fields = dict(dimension_fields)
        self._state = SelectionState.empty(self.dimension_fields, exclusive_groups)
        self._listeners: List[Listener] = []

    def snapshot(self) -> SelectionState:
        return self._state

    def current(self, dimension: str) -> FrozenSet[str]:
        return self._state.current(dimension)

    def select(self, dimension: str, values: Iterable[str]) -> SelectionState:
        return self._apply(select(self._state, dimension, values))

    def deselect(self, dimension: str, values: Iterable[str]) -> SelectionState:
        return self._apply(deselect(self._state, dimension, values))

    def clear(self, dimension: Optional[str] = None) -> SelectionState:
        """Empty one dimension, or everything (e.g. when navigating away)."""
        return self._apply(clear(self._state, dimension))

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener with every new snapshot. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def to_facets(self, operator: FilterOperator = FilterOperator.EQ) -> List[FacetSpec]:
        """One facet per dimension with a selection, in declaration order."""
        return [
            FacetSpec.values_of(self.dimension_fields[name], self._state.selections[name], operator)
            for name in self._state.active_dimensions
        ]

    def _apply(self, new_state: SelectionState) -> SelectionState:
        if new_state == self._state:
            return self._state
        self._state = new_state
        logger.debug(
            "Selection changed: "
            + ", ".join(f"{name}={sorted(values)}" for name, values in new_state.selections.items())
        )
        for listener in list(self._listeners):
            listener(new_state)
        return new_state


def create_detail_selector() -> CrossFilterSelector:
    """Company-code and tax-code selections of the reconciliation detail view."""
    return CrossFilterSelector(
        {"company_code": "CompanyCode", "tax_code": "TaxCode"},
        exclusive_groups=[("company_code", "tax_code")],
    )
