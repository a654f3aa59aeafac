"""
Reference Data Cache

Loads the code -> label lookup tables (countries, company codes, statuses)
once per session and resolves codes to display labels.

Loading is asynchronous and never blocks the caller:

    cache = get_reference_cache()
    signal = cache.load()          # returns immediately
    ...
    await cache.get_maps_ready_signal()
    cache.resolve("country", "RO")  # -> "Romania"

Bootstrap sequence:
1. Wait a short startup delay.
2. If the query engine is not ready, wait the retry backoff and check again
   (REFDATA_MAX_RETRIES times).
3. Load every domain concurrently. A failing domain ends up with an empty map
   and a logged error; its siblings are unaffected.
4. Settle the readiness signal, in every case.
"""
import asyncio
import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from config.settings import ReferenceDataConfig, get_config
from taxrecon.core.errors import DataRetrievalError, ErrorCategory, QueryEngineUnavailableError
from taxrecon.data.reference_domains import DomainDescriptor, ReferenceRecord, load_domain_descriptors
from taxrecon.tools.data_fetcher import DataFetcher, get_data_fetcher

logger = logging.getLogger(__name__)

EMPTY_MAP: Mapping[str, ReferenceRecord] = MappingProxyType({})


class ReadinessSignal:
    """
    One-shot completion signal for a load cycle.

    Awaiting it suspends until the cycle finished (successfully or not); it
    never raises. Settling a second time has no effect.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @classmethod
    def settled(cls) -> "ReadinessSignal":
        signal = cls()
        signal.settle()
        return signal

    def settle(self) -> bool:
        """Mark the cycle finished. Returns False if it already was."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    def is_settled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def __await__(self):
        return self.wait().__await__()


class ReferenceDataCache:
    """
    Session-wide lookup maps, one per reference domain.

    Each map is replaced wholesale with a read-only mapping, so readers see
    either the previous map or the complete new one.
    """

    def __init__(
        self,
        fetcher: DataFetcher,
        descriptors: Optional[Iterable[DomainDescriptor]] = None,
        config: Optional[ReferenceDataConfig] = None,
    ):
        self.fetcher = fetcher
        self.config = config or get_config().reference_data
        descriptors = list(descriptors) if descriptors is not None else load_domain_descriptors()
        self._descriptors: Dict[str, DomainDescriptor] = {d.name: d for d in descriptors}
        self._maps: Dict[str, Mapping[str, ReferenceRecord]] = {name: EMPTY_MAP for name in self._descriptors}
        self._signal: Optional[ReadinessSignal] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def domains(self) -> List[str]:
        return list(self._descriptors)

    # ==================== LOADING ====================

    def load(self) -> ReadinessSignal:
        """
        Start loading every domain in the background.

        Must be called from a running event loop. Calling it again while a
        load is in flight, or after it settled, returns the existing signal;
        use reload() to refresh.
        """
        if self._signal is not None:
            return self._signal
        return self._start()

    def reload(self) -> ReadinessSignal:
        """Start a fresh load cycle with a new signal."""
        if self._signal is not None and not self._signal.is_settled():
            logger.info("Reference data load already in progress")
            return self._signal
        return self._start()

    def get_maps_ready_signal(self) -> ReadinessSignal:
        """
        Signal of the current load cycle.

        If no load has been started, an already-settled signal is returned,
        so awaiting it never hangs.
        """
        if self._signal is None:
            return ReadinessSignal.settled()
        return self._signal

    def _start(self) -> ReadinessSignal:
        loop = asyncio.get_running_loop()
        signal = ReadinessSignal()
        self._signal = signal
        self._task = loop.create_task(self._run(signal))
        return signal

    async def _run(self, signal: ReadinessSignal) -> None:
        try:
            await asyncio.sleep(self.config.startup_delay_seconds)

            if not await self._wait_for_engine():
                logger.error(
                    "Query engine never became available; reference maps stay empty "
                    f"({', '.join(self.domains)})"
                )
                return

            await asyncio.gather(*(self._load_domain(d) for d in self._descriptors.values()))
            sizes = ", ".join(f"{name}={len(m)}" for name, m in self._maps.items())
            logger.info(f"Reference data loaded: {sizes}")
        except Exception as e:
            logger.error(f"Reference data load aborted: {e}", exc_info=True)
        finally:
            signal.settle()

    async def _wait_for_engine(self) -> bool:
        attempts = 0
        while not self.fetcher.is_available():
            if attempts >= self.config.max_retries:
                return False
            attempts += 1
            error = QueryEngineUnavailableError(
                "Query engine not ready",
                context={"attempt": attempts, "backoff": self.config.retry_backoff_seconds},
            )
            logger.warning(
                f"{error}; retrying in {self.config.retry_backoff_seconds}s "
                f"(attempt {attempts}/{self.config.max_retries})"
            )
            await asyncio.sleep(self.config.retry_backoff_seconds)
        return True

    async def _load_domain(self, descriptor: DomainDescriptor) -> None:
        result = await self.fetcher.read(descriptor.query())

        if not result.ok:
            self._maps[descriptor.name] = EMPTY_MAP
            error = DataRetrievalError(
                f"Failed to load {descriptor.name} map: {result.error}",
                status_code=result.error.status_code,
                category=ErrorCategory.DOMAIN_LOAD_FAILED,
                context={"domain": descriptor.name, "path": descriptor.entity_path},
            )
            logger.error(str(error))
            return

        try:
            new_map = descriptor.build_map(result.results)
        except (AttributeError, TypeError, ValueError) as e:
            self._maps[descriptor.name] = EMPTY_MAP
            logger.error(f"Failed to load {descriptor.name} map: malformed rows ({e})")
            return

        self._maps[descriptor.name] = MappingProxyType(new_map)
        logger.info(f"{descriptor.name} map loaded: {len(new_map)} entries")

    # ==================== LOOKUP ====================

    def resolve(self, domain: str, code: Optional[str]) -> str:
        """
        Display label for a code.

        Unknown codes, unknown domains and not-yet-loaded maps all resolve to
        the code itself.
        """
        if code is None:
            return ""
        record = self.record(domain, code)
        return record.label if record else str(code)

    def record(self, domain: str, code: str) -> Optional[ReferenceRecord]:
        return self.get_map(domain).get(str(code))

    def get_map(self, domain: str) -> Mapping[str, ReferenceRecord]:
        """Read-only map of one domain; empty for an unknown domain."""
        return self._maps.get(domain, EMPTY_MAP)

    def labels(self, domain: str) -> Dict[str, str]:
        """Plain code -> label dict of one domain."""
        return {code: record.label for code, record in self.get_map(domain).items()}


# Singleton instance
_cache: Optional[ReferenceDataCache] = None


def get_reference_cache(fetcher: Optional[DataFetcher] = None) -> ReferenceDataCache:
    """
    Get the session's reference data cache.

    Args:
        fetcher: Used only when the cache is created; defaults to
                 get_data_fetcher()
    """
    global _cache
    if _cache is None:
        _cache = ReferenceDataCache(fetcher or get_data_fetcher())
    return _cache


def reset_reference_cache() -> None:
    """Forget the session cache (end of session, tests)."""
    global _cache
    _cache = None
