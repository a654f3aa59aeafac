"""
Ready-made reads against the reconciliation service.

- reconciliation list: country / company-code "contains" facets over the
  comma-separated list fields, newest first
- documents of one reconciliation, via its to_Document navigation path
- the narrow read behind a chart: dimension fields plus measure and currency
"""
from typing import Iterable, Optional, Sequence

from config.settings import get_config
from taxrecon.core.filter_builder import FacetSpec, FilterTreeBuilder, Predicate, get_filter_builder
from taxrecon.core.filter_tree import FilterOperator
from taxrecon.tools.data_fetcher import QueryRequest, SortSpec

RECONCILIATION_SET = "/Reconciliation"
DOCUMENT_NAVIGATION = "to_Document"

RECONCILIATION_FIELDS = (
    "ReconId",
    "CountryList",
    "CompanyCodeList",
    "FromDate",
    "ToDate",
    "ConvCreatedAt",
    "Status",
)

DOCUMENT_FIELDS = (
    "DocumentId",
    "CompanyCode",
    "Country",
    "TaxCode",
    "PostingDate",
    "DiffGrossAmount",
    "Currencycode",
    "Status",
)

# Newest reconciliations first
DEFAULT_LIST_SORT = (SortSpec("ConvCreatedAt", descending=True),)


def reconciliation_path(recon_id: str) -> str:
    """Entity path of one reconciliation, e.g. /Reconciliation('R-0001')."""
    if not recon_id:
        raise ValueError("Reconciliation id is required")
    key = str(recon_id).replace("'", "''")
    return f"{RECONCILIATION_SET}('{key}')"


def documents_path(recon_id: str) -> str:
    return f"{reconciliation_path(recon_id)}/{DOCUMENT_NAVIGATION}"


def reconciliation_list_request(
    countries: Iterable[str] = (),
    company_codes: Iterable[str] = (),
    external: Optional[Sequence[Predicate]] = None,
    builder: Optional[FilterTreeBuilder] = None,
) -> QueryRequest:
    """
    Read the reconciliation list.

    CountryList and CompanyCodeList hold comma-separated codes ("RO,PL"), so
    each selected code becomes a "contains" test, OR-ed per field.
    """
    builder = builder or get_filter_builder()
    facets = [
        FacetSpec.values_of("CountryList", countries, FilterOperator.CONTAINS),
        FacetSpec.values_of("CompanyCodeList", company_codes, FilterOperator.CONTAINS),
    ]
    return QueryRequest(
        path=RECONCILIATION_SET,
        select=RECONCILIATION_FIELDS,
        filter=builder.build(facets, external=external),
        sort=DEFAULT_LIST_SORT,
    )


def documents_request(
    recon_id: str,
    facets: Sequence[FacetSpec] = (),
    external: Optional[Sequence[Predicate]] = None,
    only_differences: bool = False,
    select: Sequence[str] = DOCUMENT_FIELDS,
    builder: Optional[FilterTreeBuilder] = None,
) -> QueryRequest:
    """Read the documents of one reconciliation."""
    builder = builder or get_filter_builder()
    facets = list(facets)
    if only_differences:
        facets.append(FacetSpec.only_differences())
    return QueryRequest(
        path=documents_path(recon_id),
        select=tuple(select),
        filter=builder.build(facets, external=external),
    )


def aggregation_request(
    recon_id: str,
    dimensions: Sequence[str],
    facets: Sequence[FacetSpec] = (),
    external: Optional[Sequence[Predicate]] = None,
    only_differences: bool = False,
    builder: Optional[FilterTreeBuilder] = None,
) -> QueryRequest:
    """
    Read only what a chart needs: the dimension fields, the measure and the
    currency of each document.
    """
    if isinstance(dimensions, str):
        dimensions = (dimensions,)
    aggregation = get_config().aggregation
    select = []
    for name in (*dimensions, aggregation.measure_field, aggregation.currency_field):
        if name not in select:
            select.append(name)
    return documents_request(
        recon_id,
        facets=facets,
        external=external,
        only_differences=only_differences,
        select=select,
        builder=builder,
    )
