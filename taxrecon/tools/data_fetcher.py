"""
Reconciliation Data Retrieval

Thin adapter between the data layer and the remote tabular data service.

Every read goes through DataFetcher.read(), which always returns a
FetchResult: either the flat list of result rows or a FetchError describing
what went wrong. Exceptions raised by a transport never cross this boundary,
so code above it is written against the result-or-error contract only.

Implementations:
1. ODataFetcher - OData v2 service over HTTP (requests)
2. InMemoryFetcher - in-process tables, for mock mode and tests
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests

from config.settings import ServiceConfig, get_config
from taxrecon.core.errors import DataRetrievalError, classify_error
from taxrecon.core.filter_tree import FilterNode, describe, matches
from taxrecon.tools.odata import to_odata_filter, to_odata_orderby

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SortSpec:
    """One $orderby entry."""
    field: str
    descending: bool = False


@dataclass(frozen=True)
class QueryRequest:
    """
    A read against one entity path.

    Attributes:
        path: Entity set or navigation path, e.g. "/Country" or
              "/Reconciliation('42')/to_Document"
        select: Fields to return, in order (empty returns all fields)
        filter: Predicate tree; None matches all rows
        sort: Ordered sort specs
        top / skip: Optional paging hints
    """
    path: str
    select: Sequence[str] = ()
    filter: Optional[FilterNode] = None
    sort: Sequence[SortSpec] = ()
    top: Optional[int] = None
    skip: Optional[int] = None

    def to_query_params(self) -> Dict[str, str]:
        """
        Convert to OData system query options.

        Returns:
            Dict of parameter name to value, ready for URL encoding
        """
        params = {"$format": "json"}

        if self.select:
            params["$select"] = ",".join(self.select)

        filter_expression = to_odata_filter(self.filter)
        if filter_expression:
            params["$filter"] = filter_expression

        orderby = to_odata_orderby(self.sort)
        if orderby:
            params["$orderby"] = orderby

        if self.top is not None:
            params["$top"] = str(self.top)

        if self.skip:
            params["$skip"] = str(self.skip)

        return params

    def page(self, top: int, skip: int) -> "QueryRequest":
        return QueryRequest(self.path, self.select, self.filter, self.sort, top, skip)

    def describe(self) -> str:
        return f"{self.path} [{describe(self.filter)}]"


@dataclass
class FetchError:
    """Why a read failed. Carries at least a human-readable message."""
    message: str
    status_code: Optional[int] = None
    category: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exception: Exception, request: QueryRequest = None) -> "FetchError":
        classified = classify_error(
            exception,
            component="data_fetcher",
            context={"path": request.path} if request else None,
        )
        return cls(
            message=str(exception) or type(exception).__name__,
            status_code=getattr(exception, "status_code", None),
            category=classified.category.name,
            details=classified.context,
        )

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


@dataclass
class FetchResult:
    """Rows of a successful read, or the error of a failed one."""
    results: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[FetchError] = None
    execution_time_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def row_count(self) -> int:
        return len(self.results)

    @classmethod
    def success(cls, results: List[Dict[str, Any]], execution_time_ms: float = 0.0) -> "FetchResult":
        return cls(results=list(results), execution_time_ms=execution_time_ms)

    @classmethod
    def failure(cls, error: FetchError, execution_time_ms: float = 0.0) -> "FetchResult":
        return cls(results=[], error=error, execution_time_ms=execution_time_ms)


class DataFetcher(ABC):
    """
    Result-or-error read contract over the reconciliation service.
    """

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying query engine can take requests yet."""

    @abstractmethod
    async def _read(self, request: QueryRequest) -> List[Dict[str, Any]]:
        """Perform the read; may raise anything."""

    async def read(self, request: QueryRequest) -> FetchResult:
        """
        Execute a read.

        Never raises: transport and decoding failures come back as a
        FetchResult carrying a FetchError.
        """
        start = time.perf_counter()
        try:
            rows = await self._read(request)
        except Exception as e:
            elapsed = (time.perf_counter() - start) * 1000
            error = FetchError.from_exception(e, request)
            logger.warning(f"Read failed for {request.path}: {error}")
            return FetchResult.failure(error, elapsed)

        elapsed = (time.perf_counter() - start) * 1000
        logger.debug(f"Read {len(rows)} rows from {request.describe()} in {elapsed:.0f}ms")
        return FetchResult.success(rows, elapsed)

    async def read_all(self, request: QueryRequest, page_size: int = 1000) -> FetchResult:
        """
        Read every page of a request, page_size rows at a time.

        Stops at the first short page. A failure on any page fails the whole read.
        """
        rows: List[Dict[str, Any]] = []
        total_ms = 0.0
        skip = request.skip or 0
        while True:
            result = await self.read(request.page(page_size, skip))
            total_ms += result.execution_time_ms
            if not result.ok:
                return FetchResult.failure(result.error, total_ms)
            rows.extend(result.results)
            if result.row_count < page_size:
                return FetchResult.success(rows, total_ms)
            skip += page_size


class ODataFetcher(DataFetcher):
    """
    OData v2 client for the reconciliation service.

    Blocking HTTP calls run in a worker thread so concurrent reads interleave
    on the event loop.
    """

    def __init__(self, config: Optional[ServiceConfig] = None):
        self.config = config or get_config().service
        self._session: Optional[requests.Session] = None

    def is_available(self) -> bool:
        return self.config.is_configured

    def _get_session(self) -> requests.Session:
        """Get or create authenticated session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({
                "Accept": "application/json",
            })
            if self.config.user:
                self._session.auth = (self.config.user, self.config.password)
        return self._session

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def _read(self, request: QueryRequest) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._read_sync, request)

    def _read_sync(self, request: QueryRequest) -> List[Dict[str, Any]]:
        if not self.is_available():
            raise DataRetrievalError("Reconciliation service URL is not configured")

        url = self._url(request.path)
        params = request.to_query_params()
        logger.debug(f"GET {url} {params}")

        try:
            response = self._get_session().get(url, params=params, timeout=self.config.timeout_seconds)
        except requests.RequestException as e:
            raise DataRetrievalError(f"Request to {request.path} failed: {e}") from e

        if response.status_code >= 400:
            raise DataRetrievalError(
                f"Service returned {response.status_code} for {request.path}: {self._error_message(response)}",
                status_code=response.status_code,
                context={"path": request.path},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise DataRetrievalError(f"Response from {request.path} is not JSON: {e}") from e

        return self._unwrap(payload)

    @staticmethod
    def _unwrap(payload: Any) -> List[Dict[str, Any]]:
        """Extract rows from the OData v2 ("d") or v4 ("value") envelope."""
        if isinstance(payload, list):
            return payload
        if not isinstance(payload, dict):
            raise DataRetrievalError(f"Unexpected response payload: {type(payload).__name__}")

        body = payload.get("d", payload)
        if isinstance(body, list):
            return body
        if isinstance(body, dict):
            if "results" in body:
                return list(body["results"] or [])
            if "value" in body:
                return list(body["value"] or [])
            # single entity read
            return [body]
        raise DataRetrievalError("Response has no result rows")

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
            return body["error"]["message"]["value"]
        except (ValueError, KeyError, TypeError):
            return response.text[:200] or response.reason or "no details"


class InMemoryFetcher(DataFetcher):
    """
    Serves reads from in-process tables, applying filter, sort, select and
    paging client-side.

    Args:
        tables: Entity path -> rows
        available: Whether the "query engine" is ready
        failures: Entity path -> error message to fail reads of that path with
        latency_seconds: Simulated per-read delay
    """

    def __init__(
        self,
        tables: Mapping[str, List[Dict[str, Any]]] = None,
        available: bool = True,
        failures: Mapping[str, str] = None,
        latency_seconds: float = 0.0,
    ):
        self.tables = {path: list(rows) for path, rows in (tables or {}).items()}
        self.available = available
        self.failures = dict(failures or {})
        self.latency_seconds = latency_seconds
        self.requests: List[QueryRequest] = []

    def is_available(self) -> bool:
        return self.available

    async def _read(self, request: QueryRequest) -> List[Dict[str, Any]]:
        self.requests.append(request)
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

        if request.path in self.failures:
            raise DataRetrievalError(self.failures[request.path], context={"path": request.path})
        if request.path not in self.tables:
            raise DataRetrievalError(
                f"Resource not found for segment '{request.path}'", status_code=404
            )

        rows = [row for row in self.tables[request.path] if matches(request.filter, row)]

        # stable sorts applied last key first
        for spec in reversed(list(request.sort)):
            rows.sort(key=lambda row: _sort_key(row.get(spec.field)), reverse=spec.descending)

        if request.skip:
            rows = rows[request.skip:]
        if request.top is not None:
            rows = rows[:request.top]

        if request.select:
            rows = [{name: row.get(name) for name in request.select} for row in rows]
        else:
            rows = [dict(row) for row in rows]
        return rows


def _sort_key(value: Any):
    # None sorts first; mixed types fall back to string comparison
    if value is None:
        return (0, "")
    if isinstance(value, (int, float)):
        return (1, value)
    return (2, str(value))


# Factory function
def get_data_fetcher(use_mock: Optional[bool] = None) -> DataFetcher:
    """
    Get a configured data fetcher.

    Args:
        use_mock: Serve the deterministic mock tables instead of the live
                  service. Defaults to the USE_MOCK_DATA setting.
    """
    config = get_config()
    if use_mock is None:
        use_mock = config.use_mock_data
    if use_mock:
        from taxrecon.tools.mock_data import mock_tables
        logger.info("Using mock reconciliation data")
        return InMemoryFetcher(mock_tables())
    return ODataFetcher(config.service)
