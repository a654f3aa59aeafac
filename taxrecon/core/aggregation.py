"""
Client-Side Aggregation

Groups a flat result set by one or more dimensions and sums the absolute
value of a measure per group, feeding the chart widgets.

When there is nothing to aggregate (empty input, or the read failed) a fixed
sample dataset is returned instead, so charts always have something to show.
The result says so via is_fallback.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from config.settings import AggregationConfig, get_config
from taxrecon.tools.data_fetcher import DataFetcher, QueryRequest

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
KEY_SEPARATOR = " | "

Dimension = Union[str, Sequence[str]]


@dataclass(frozen=True)
class AggregationBucket:
    """Sum of absolute measure values for one dimension value."""
    dimension_value: str
    sum: float
    currency: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimensionValue": self.dimension_value,
            "sum": self.sum,
            "currency": self.currency,
        }


# Returned whenever there is nothing to aggregate. Do not change the values:
# charts and their tests depend on them.
FALLBACK_BUCKETS: Tuple[AggregationBucket, ...] = (
    AggregationBucket("1000", 45000.0, "EUR"),
    AggregationBucket("2000", 32000.0, "EUR"),
    AggregationBucket("3000", 18500.0, "EUR"),
    AggregationBucket("4000", 9500.0, "EUR"),
)


@dataclass
class AggregationResult:
    """Buckets in first-seen order plus the grand total."""
    buckets: List[AggregationBucket] = field(default_factory=list)
    total: float = 0.0
    is_fallback: bool = False
    row_count: int = 0

    @classmethod
    def fallback(cls) -> "AggregationResult":
        buckets = list(FALLBACK_BUCKETS)
        return cls(buckets=buckets, total=sum(b.sum for b in buckets), is_fallback=True)

    def top(self, n: int) -> List[AggregationBucket]:
        """Largest n buckets; ties keep insertion order."""
        return sorted(self.buckets, key=lambda b: b.sum, reverse=True)[:n]

    def as_dict(self) -> Dict[str, float]:
        return {b.dimension_value: b.sum for b in self.buckets}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "buckets": [b.to_dict() for b in self.buckets],
            "total": self.total,
            "is_fallback": self.is_fallback,
            "row_count": self.row_count,
        }


def parse_measure(value: Any) -> float:
    """
    Numeric value of a measure; missing or unparseable values count as 0.

    The service sends decimals as strings ("-1250.50").
    """
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError):
        logger.warning(f"Non-numeric measure value {value!r} counted as 0")
        return 0.0


class AggregationEngine:
    """
    Groups records and sums a measure.

    Pure: holds configuration only, no state between calls.
    """

    def __init__(
        self,
        measure_field: str = None,
        currency_field: str = None,
        default_currency: str = None,
        config: Optional[AggregationConfig] = None,
    ):
        config = config or get_config().aggregation
        self.measure_field = measure_field or config.measure_field
        self.currency_field = currency_field or config.currency_field
        self.default_currency = default_currency or config.default_currency

    def aggregate(self, records: Iterable[Mapping[str, Any]], dimension: Dimension) -> AggregationResult:
        """
        Aggregate records by dimension.

        Args:
            records: Flat result rows
            dimension: Field name, or a sequence of field names whose values
                       are joined with " | " to form the bucket key

        Returns:
            AggregationResult; the fixed fallback dataset when records is empty
        """
        dimensions = self._dimensions(dimension)
        sums: Dict[str, float] = {}
        currencies: Dict[str, str] = {}
        total = 0.0
        row_count = 0

        for record in records:
            row_count += 1
            key = self._key(record, dimensions)
            amount = abs(parse_measure(record.get(self.measure_field)))

            if key not in sums:
                sums[key] = 0.0
            sums[key] += amount
            total += amount

            if key not in currencies and record.get(self.currency_field):
                currencies[key] = str(record[self.currency_field])

        if row_count == 0:
            logger.warning("No records to aggregate; using fallback dataset")
            return AggregationResult.fallback()

        buckets = [
            AggregationBucket(key, value, currencies.get(key, self.default_currency))
            for key, value in sums.items()
        ]
        logger.debug(
            f"Aggregated {row_count} rows by {KEY_SEPARATOR.join(dimensions)} "
            f"into {len(buckets)} buckets"
        )
        return AggregationResult(buckets=buckets, total=total, row_count=row_count)

    async def aggregate_query(
        self,
        fetcher: DataFetcher,
        request: QueryRequest,
        dimension: Dimension,
    ) -> AggregationResult:
        """
        Fetch rows and aggregate them.

        A failed read is logged and answered with the fallback dataset.
        """
        result = await fetcher.read(request)
        if not result.ok:
            logger.warning(f"Aggregation read failed for {request.path}: {result.error}; using fallback dataset")
            return AggregationResult.fallback()
        return self.aggregate(result.results, dimension)

    @staticmethod
    def _dimensions(dimension: Dimension) -> Tuple[str, ...]:
        if isinstance(dimension, str):
            dimensions = (dimension,)
        else:
            dimensions = tuple(dimension)
        if not dimensions or not all(isinstance(d, str) and d for d in dimensions):
            raise ValueError(f"Invalid aggregation dimension: {dimension!r}")
        return dimensions

    @staticmethod
    def _key(record: Mapping[str, Any], dimensions: Tuple[str, ...]) -> str:
        parts = []
        for name in dimensions:
            value = record.get(name)
            parts.append(UNKNOWN if value is None or value == "" else str(value))
        return KEY_SEPARATOR.join(parts)


# Factory function
def get_aggregation_engine() -> AggregationEngine:
    """Get an aggregation engine configured from the environment."""
    return AggregationEngine(config=get_config().aggregation)
