"""
Unit tests for cross-filter selection state.
"""
import pytest
from taxrecon.core.cross_filter import (
    SelectionState,
    clear,
    create_detail_selector,
    deselect,
    select,
)
from taxrecon.core.filter_builder import FacetSpec
from taxrecon.core.filter_tree import FilterOperator


@pytest.fixture
def state():
    return SelectionState.empty(
        ["company_code", "tax_code", "country"],
        exclusive_groups=[("company_code", "tax_code")],
    )


@pytest.fixture
def selector():
    return create_detail_selector()


class TestSelectionState:
    """Tests for the pure update functions."""

    def test_empty(self, state):
        """A fresh state has nothing selected."""
        assert state.current("company_code") == frozenset()
        assert state.active_dimensions == []

    def test_select_is_union(self, state):
        """Selecting adds to the values already selected."""
        state = select(state, "company_code", {"1000"})
        state = select(state, "company_code", {"2000"})
        assert state.current("company_code") == {"1000", "2000"}

    def test_select_idempotent(self, state):
        """Selecting the same value twice gives an equal state."""
        once = select(state, "company_code", {"1000"})
        twice = select(once, "company_code", {"1000"})
        assert once == twice

    def test_select_does_not_touch_old_snapshot(self, state):
        """Updates return a new snapshot and leave the old one unchanged."""
        new = select(state, "country", {"RO"})
        assert state.current("country") == frozenset()
        assert new.current("country") == {"RO"}

    def test_select_clears_linked_dimension(self, state):
        """Selecting in one exclusive dimension empties the other."""
        state = select(state, "company_code", {"1000"})
        state = select(state, "tax_code", {"A1"})
        assert state.current("company_code") == frozenset()
        assert state.current("tax_code") == {"A1"}

    def test_select_leaves_unlinked_dimension(self, state):
        """Dimensions outside the exclusive group are kept."""
        state = select(state, "country", {"RO"})
        state = select(state, "company_code", {"1000"})
        assert state.current("country") == {"RO"}

    def test_empty_select_is_noop(self, state):
        """An empty selection returns the same state object."""
        state = select(state, "company_code", {"1000"})
        after = select(state, "tax_code", set())
        assert after is state
        assert after.current("company_code") == {"1000"}

    def test_deselect_is_difference(self, state):
        """Deselect removes values and ignores unknown ones."""
        state = select(state, "company_code", {"1000", "2000"})
        state = deselect(state, "company_code", {"1000", "9999"})
        assert state.current("company_code") == {"2000"}

    def test_deselect_absent_is_noop(self, state):
        """Deselecting values that are not selected returns the same state."""
        assert deselect(state, "company_code", {"1000"}) is state

    def test_bare_string_is_one_value(self, state):
        """A plain string is treated as a single value."""
        state = select(state, "company_code", "1000")
        assert state.current("company_code") == {"1000"}

        state = deselect(state, "company_code", "1000")
        assert state.current("company_code") == frozenset()

    def test_linked_never_both_non_empty(self, state):
        """Linked dimensions are never both non-empty."""
        steps = [
            ("company_code", {"1000"}),
            ("tax_code", {"A1", "A2"}),
            ("company_code", {"2000"}),
            ("tax_code", {"V0"}),
        ]
        for dimension, values in steps:
            state = select(state, dimension, values)
            assert not (state.current("company_code") and state.current("tax_code"))

    def test_clear_one(self, state):
        """Clearing one dimension keeps the others."""
        state = select(state, "country", {"RO"})
        state = select(state, "company_code", {"1000"})
        state = clear(state, "country")
        assert state.active_dimensions == ["company_code"]

    def test_clear_all(self, state):
        """Clearing without a dimension empties everything."""
        state = select(state, "country", {"RO"})
        state = select(state, "company_code", {"1000"})
        assert clear(state).active_dimensions == []

    def test_unknown_dimension(self, state):
        """Selecting an unknown dimension should raise ValueError."""
        with pytest.raises(ValueError):
            select(state, "region", {"EMEA"})

    def test_both_exclusive_rejected_on_construction(self):
        """A state with both exclusive dimensions filled cannot be built."""
        with pytest.raises(ValueError):
            SelectionState(
                dimensions=("a", "b"),
                selections={"a": {"1"}, "b": {"2"}},
                exclusive_groups=(frozenset({"a", "b"}),),
            )


class TestCrossFilterSelector:
    """Tests for the session holder."""

    def test_select_and_current(self, selector):
        """Selected values are visible through current()."""
        selector.select("company_code", ["1000"])
        assert selector.current("company_code") == {"1000"}

    def test_select_bare_string(self, selector):
        """A plain string selects one value and becomes one facet value."""
        selector.select("company_code", "1000")
        assert selector.current("company_code") == {"1000"}
        assert selector.to_facets() == [
            FacetSpec("CompanyCode", FilterOperator.EQ, ("1000",)),
        ]

    def test_exclusive_pair(self, selector):
        """Company code and tax code are exclusive."""
        selector.select("company_code", ["1000"])
        selector.select("tax_code", ["A1"])
        assert selector.current("company_code") == frozenset()
        assert selector.current("tax_code") == {"A1"}

    def test_listeners_notified_on_change_only(self, selector):
        """Listeners are called only when the snapshot changes."""
        seen = []
        selector.subscribe(seen.append)

        selector.select("company_code", ["1000"])
        selector.select("company_code", ["1000"])
        selector.deselect("tax_code", ["A1"])

        assert len(seen) == 1
        assert seen[0].current("company_code") == {"1000"}

    def test_unsubscribe(self, selector):
        """An unsubscribed listener is no longer called."""
        seen = []
        unsubscribe = selector.subscribe(seen.append)
        unsubscribe()
        selector.select("company_code", ["1000"])
        assert seen == []

    def test_clear_on_navigation(self, selector):
        """clear() empties every dimension."""
        selector.select("tax_code", ["A1"])
        selector.clear()
        assert selector.snapshot().active_dimensions == []

    def test_to_facets(self, selector):
        """Selections become EQ facets on the mapped field."""
        selector.select("company_code", ["2000", "1000"])
        assert selector.to_facets() == [
            FacetSpec("CompanyCode", FilterOperator.EQ, ("1000", "2000")),
        ]

    def test_to_facets_empty(self, selector):
        """No selection gives no facets."""
        assert selector.to_facets() == []
