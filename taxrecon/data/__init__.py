"""
Data layer module for session-wide reference data (code -> label lookups).
"""
from taxrecon.data.reference_domains import (
    BUILTIN_DOMAINS,
    DomainDescriptor,
    ReferenceRecord,
    load_domain_descriptors,
)
from taxrecon.data.reference_cache import (
    ReadinessSignal,
    ReferenceDataCache,
    get_reference_cache,
    reset_reference_cache,
)

__all__ = [
    # Domain descriptors
    "BUILTIN_DOMAINS",
    "DomainDescriptor",
    "ReferenceRecord",
    "load_domain_descriptors",
    # Cache
    "ReadinessSignal",
    "ReferenceDataCache",
    "get_reference_cache",
    "reset_reference_cache",
]
