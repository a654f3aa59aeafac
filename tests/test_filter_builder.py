"""
Unit tests for the Filter Tree Builder.

Tests the conversion of facet selections into one predicate tree.
"""
import pytest
from datetime import date, datetime, timedelta, timezone
from taxrecon.core.errors import FilterBuildError
from taxrecon.core.filter_builder import (
    FacetSpec,
    FilterTreeBuilder,
    get_filter_builder,
)
from taxrecon.core.filter_tree import (
    Combinator,
    Composite,
    FilterOperator,
    Leaf,
    has_uniform_combinators,
    iter_leaves,
    or_,
)

UTC = timezone.utc


@pytest.fixture
def builder():
    return FilterTreeBuilder(date_fields=["PostingDate", "FromDate", "ToDate"])


class TestFacetSpec:
    """Tests for FacetSpec."""

    def test_values_deduplicated_in_order(self):
        """Values are deduplicated in first-seen order."""
        facet = FacetSpec.values_of("Country", ["RO", "PL", "RO"])
        assert facet.values == ("RO", "PL")

    def test_set_values_sorted(self):
        """Set values are sorted."""
        facet = FacetSpec.values_of("Country", {"RO", "DE", "PL"})
        assert facet.values == ("DE", "PL", "RO")

    def test_single_string_value(self):
        """A plain string is one value."""
        assert FacetSpec.values_of("Country", "RO").values == ("RO",)

    def test_is_active(self):
        """A facet is active when it has values or bounds."""
        assert not FacetSpec("Country").is_active
        assert FacetSpec.values_of("Country", ["RO"]).is_active
        assert FacetSpec.date_range("PostingDate", date(2024, 1, 1), date(2024, 1, 2)).is_active

    def test_only_differences(self):
        """only_differences is a not-equals-zero facet."""
        facet = FacetSpec.only_differences("DiffGrossAmount")
        assert facet.operator is FilterOperator.NE
        assert facet.values == (0,)


class TestBuild:
    """Tests for FilterTreeBuilder.build."""

    def test_nothing_active_returns_none(self, builder):
        """Without active facets there is no filter."""
        assert builder.build([]) is None
        assert builder.build([FacetSpec("Country"), FacetSpec.values_of("CompanyCode", [])]) is None

    def test_single_value_is_leaf(self, builder):
        """A single value becomes a leaf under the AND."""
        tree = builder.build([FacetSpec.values_of("CompanyCode", ["1000"])])
        assert tree == Composite(Combinator.AND, (Leaf("CompanyCode", FilterOperator.EQ, "1000"),))

    def test_multiple_values_are_or(self, builder):
        """Several values become an OR group."""
        tree = builder.build([FacetSpec.values_of("Country", ["RO", "PL"])])
        assert tree.children == (
            or_(Leaf("Country", FilterOperator.EQ, "RO"), Leaf("Country", FilterOperator.EQ, "PL")),
        )

    def test_contains_facet(self, builder):
        """CONTAINS facets keep their operator."""
        tree = builder.build([FacetSpec.values_of("CountryList", ["RO", "PL"], FilterOperator.CONTAINS)])
        assert [leaf.operator for leaf in iter_leaves(tree)] == [FilterOperator.CONTAINS] * 2
        assert tree.children[0].combinator is Combinator.OR

    def test_operator_given_as_string(self, builder):
        """Operators may be given as strings."""
        tree = builder.build([FacetSpec("CountryList", operator="contains", values=("RO",))])
        assert tree.children[0] == Leaf("CountryList", FilterOperator.CONTAINS, "RO")

    def test_date_range_country_and_company_scenario(self, builder):
        """AND(dateRange, OR(country=RO, country=PL), companyCode=1000)."""
        tree = builder.build(
            [
                FacetSpec.values_of("Country", ["RO", "PL"]),
                FacetSpec.values_of("CompanyCode", ["1000"]),
            ],
            external=FacetSpec.date_range("PostingDate", date(2024, 1, 1), date(2024, 3, 31)),
        )

        assert tree == Composite(Combinator.AND, (
            Leaf(
                "PostingDate",
                FilterOperator.BETWEEN,
                datetime(2024, 1, 1, tzinfo=UTC),
                datetime(2024, 3, 31, 23, 59, 59, 999000, tzinfo=UTC),
            ),
            Composite(Combinator.OR, (
                Leaf("Country", FilterOperator.EQ, "RO"),
                Leaf("Country", FilterOperator.EQ, "PL"),
            )),
            Leaf("CompanyCode", FilterOperator.EQ, "1000"),
        ))

    def test_external_predicate_tree(self, builder):
        """External predicates come first."""
        external = Leaf("Status", FilterOperator.EQ, "S")
        tree = builder.build([FacetSpec.values_of("Country", ["RO"])], external=[external])
        assert tree.children[0] == external

    def test_multiple_not_equals_flattened_into_top_and(self, builder):
        """Several NE values join the top-level AND."""
        tree = builder.build([
            FacetSpec.values_of("Status", ["E", "NV"], FilterOperator.NE),
            FacetSpec.values_of("Country", ["RO", "PL"]),
        ])
        assert tree.children[:2] == (
            Leaf("Status", FilterOperator.NE, "E"),
            Leaf("Status", FilterOperator.NE, "NV"),
        )
        assert has_uniform_combinators(tree)

    def test_never_mixes_combinators(self, builder):
        """Every composite uses a single combinator."""
        tree = builder.build(
            [
                FacetSpec.values_of("Country", ["RO", "PL", "DE"]),
                FacetSpec.values_of("CompanyCode", ["1000", "2000"]),
                FacetSpec.values_of("TaxCode", ["A1"]),
                FacetSpec.values_of("Status", ["E", "NE"], FilterOperator.NE),
                FacetSpec.only_differences("DiffGrossAmount"),
            ],
            external=FacetSpec.date_range("PostingDate", date(2024, 1, 1), date(2024, 1, 31)),
        )
        assert tree.combinator is Combinator.AND
        assert has_uniform_combinators(tree)

    def test_build_logs_tree(self, builder, caplog):
        """The built tree is logged."""
        import logging
        with caplog.at_level(logging.INFO):
            builder.build([FacetSpec.values_of("CompanyCode", ["1000"])])
        assert "CompanyCode = 1000" in caplog.text


class TestBuildErrors:
    """Malformed facets raise FilterBuildError."""

    def test_unsupported_operator(self, builder):
        """An unknown operator should raise FilterBuildError."""
        with pytest.raises(FilterBuildError):
            builder.build([FacetSpec("Country", operator="like", values=("RO",))])

    def test_empty_field(self, builder):
        """A facet without a field should raise FilterBuildError."""
        with pytest.raises(FilterBuildError):
            builder.build([FacetSpec.values_of("", ["RO"])])

    def test_range_missing_bound(self, builder):
        """A range with one bound should raise FilterBuildError."""
        with pytest.raises(FilterBuildError):
            builder.build([FacetSpec.date_range("PostingDate", date(2024, 1, 1), None)])

    def test_range_inverted(self, builder):
        """A range with low after high should raise FilterBuildError."""
        with pytest.raises(FilterBuildError):
            builder.build([FacetSpec.date_range("PostingDate", date(2024, 2, 1), date(2024, 1, 1))])

    def test_bounds_on_non_range_facet(self, builder):
        """Bounds on a value facet should raise FilterBuildError."""
        with pytest.raises(FilterBuildError):
            builder.build([FacetSpec("Country", values=("RO",), low="A")])

    def test_values_on_range_facet(self, builder):
        """Values on a range facet should raise FilterBuildError."""
        with pytest.raises(FilterBuildError):
            builder.build([FacetSpec("PostingDate", FilterOperator.BETWEEN, values=("x",), low=1, high=2)])

    def test_not_a_date(self, builder):
        """A date field with a non-date bound should raise FilterBuildError."""
        with pytest.raises(FilterBuildError):
            builder.build([FacetSpec.date_range("PostingDate", "yesterday", date(2024, 1, 1))])

    def test_not_a_facet(self, builder):
        """A non-facet input should raise FilterBuildError."""
        with pytest.raises(FilterBuildError):
            builder.build(["Country=RO"])

    def test_error_is_classified(self, builder):
        """Build errors classify as FILTER_BUILD_FAILED."""
        with pytest.raises(FilterBuildError) as exc_info:
            builder.build([FacetSpec("Country", operator="like", values=("RO",))])
        assert exc_info.value.classify().category.name == "FILTER_BUILD_FAILED"

    def test_scalar_value_is_single_value(self, builder):
        """A scalar value set is treated as one value."""
        facet = FacetSpec("DiffGrossAmount", FilterOperator.NE, values=0)
        assert facet.values == (0,)

        tree = builder.build([facet])

        assert tree.children == (Leaf("DiffGrossAmount", FilterOperator.NE, 0),)

    def test_external_range_inverted(self, builder):
        """An inverted external range should raise FilterBuildError."""
        external = Leaf("PostingDate", FilterOperator.BETWEEN, date(2024, 3, 7), date(2024, 3, 5))
        with pytest.raises(FilterBuildError):
            builder.build([], external=external)

    def test_external_range_missing_bound(self, builder):
        """An external range with one bound should raise FilterBuildError."""
        external = Leaf("DiffGrossAmount", FilterOperator.BETWEEN, 10, None)
        with pytest.raises(FilterBuildError):
            builder.build([], external=external)

    def test_external_range_nested_in_composite(self, builder):
        """Ranges nested in an external composite are checked too."""
        external = or_(
            Leaf("Country", FilterOperator.EQ, "RO"),
            Leaf("DiffGrossAmount", FilterOperator.BETWEEN, 500, 100),
        )
        with pytest.raises(FilterBuildError):
            builder.build([], external=external)

    def test_external_range_valid(self, builder):
        """A valid external range is normalized to whole days."""
        external = Leaf("PostingDate", FilterOperator.BETWEEN, date(2024, 3, 5), date(2024, 3, 7))

        tree = builder.build([], external=external)

        leaf = tree.children[0]
        assert leaf.value == datetime(2024, 3, 5, tzinfo=UTC)
        assert leaf.value_high == datetime(2024, 3, 7, 23, 59, 59, 999000, tzinfo=UTC)


class TestDateNormalization:
    """Date bounds become whole calendar days in UTC."""

    @pytest.mark.parametrize("offset_hours", [-11, -5, 0, 2, 9, 14])
    def test_calendar_day_survives_any_offset(self, builder, offset_hours):
        """The calendar day is kept for any UTC offset."""
        tz = timezone(timedelta(hours=offset_hours))
        low = datetime(2024, 3, 5, 0, 0, tzinfo=tz)
        high = datetime(2024, 3, 7, 0, 0, tzinfo=tz)

        tree = builder.build([FacetSpec.date_range("PostingDate", low, high)])
        leaf = tree.children[0]

        assert leaf.value == datetime(2024, 3, 5, tzinfo=UTC)
        assert leaf.value_high == datetime(2024, 3, 7, 23, 59, 59, 999000, tzinfo=UTC)
        assert leaf.value.date() == date(2024, 3, 5)
        assert leaf.value_high.date() == date(2024, 3, 7)

    def test_naive_datetimes_use_their_date(self, builder):
        """Naive datetimes use their own date."""
        tree = builder.build([FacetSpec.date_range("FromDate", datetime(2024, 1, 1, 22, 30), datetime(2024, 1, 2, 1, 0))])
        leaf = tree.children[0]
        assert leaf.value == datetime(2024, 1, 1, tzinfo=UTC)
        assert leaf.value_high == datetime(2024, 1, 2, 23, 59, 59, 999000, tzinfo=UTC)

    def test_same_day_range(self, builder):
        """A one-day range spans the whole day."""
        day = date(2024, 6, 30)
        leaf = builder.build([FacetSpec.date_range("ToDate", day, day)]).children[0]
        assert leaf.value < leaf.value_high

    def test_non_date_fields_untouched(self, builder):
        """Ranges on other fields are left as they are."""
        leaf = builder.build([FacetSpec.date_range("DiffGrossAmount", 10, 20)]).children[0]
        assert (leaf.value, leaf.value_high) == (10, 20)

    def test_nested_external_ranges_normalized(self, builder):
        """Nested date ranges are normalized without changing the input."""
        external = or_(
            Leaf("PostingDate", FilterOperator.BETWEEN, date(2024, 1, 1), date(2024, 1, 31)),
            Leaf("Country", FilterOperator.EQ, "RO"),
        )
        tree = builder.build([], external=external)
        nested = tree.children[0].children[0]
        assert nested.value == datetime(2024, 1, 1, tzinfo=UTC)
        assert nested.value_high == datetime(2024, 1, 31, 23, 59, 59, 999000, tzinfo=UTC)
        # the input tree is not modified
        assert external.children[0].value == date(2024, 1, 1)


class TestReplaceFacet:
    """Tests for incremental facet replacement."""

    def test_replace_keeps_position(self, builder):
        """A replaced facet keeps its position."""
        tree = builder.build([
            FacetSpec.values_of("Country", ["RO"]),
            FacetSpec.values_of("CompanyCode", ["1000"]),
        ])
        updated = builder.replace_facet(tree, FacetSpec.values_of("Country", ["DE", "DK"]))
        assert updated.children[0].combinator is Combinator.OR
        assert [leaf.value for leaf in iter_leaves(updated)] == ["DE", "DK", "1000"]

    def test_replace_appends_new_field(self, builder):
        """A new field is appended."""
        tree = builder.build([FacetSpec.values_of("Country", ["RO"])])
        updated = builder.replace_facet(tree, FacetSpec.values_of("TaxCode", ["A1"]))
        assert updated.children[-1] == Leaf("TaxCode", FilterOperator.EQ, "A1")

    def test_inactive_facet_removes(self, builder):
        """An inactive facet removes the field's constraint."""
        tree = builder.build([
            FacetSpec.values_of("Country", ["RO"]),
            FacetSpec.values_of("CompanyCode", ["1000"]),
        ])
        updated = builder.replace_facet(tree, FacetSpec.values_of("Country", []))
        assert updated.children == (Leaf("CompanyCode", FilterOperator.EQ, "1000"),)

    def test_remove_last_facet_returns_none(self, builder):
        """Removing the only facet leaves no filter."""
        tree = builder.build([FacetSpec.values_of("Country", ["RO"])])
        assert builder.remove_facet(tree, "Country") is None

    def test_replace_on_empty_tree(self, builder):
        """Replacing in no tree builds a new one."""
        updated = builder.replace_facet(None, FacetSpec.values_of("Country", ["RO"]))
        assert updated == Composite(Combinator.AND, (Leaf("Country", FilterOperator.EQ, "RO"),))


class TestFactory:
    """Tests for get_filter_builder."""

    def test_reads_date_fields_from_env(self, monkeypatch):
        """Date fields come from FILTER_DATE_FIELDS."""
        monkeypatch.setenv("FILTER_DATE_FIELDS", "BookingDate, ValueDate")
        builder = get_filter_builder()
        assert builder.date_fields == frozenset({"BookingDate", "ValueDate"})

    def test_override(self):
        """Passed date fields override the config."""
        assert get_filter_builder(["X"]).date_fields == frozenset({"X"})
