"""
Reference Domain Descriptors

Describes each lookup domain (country, company, status, ...) as data, so one
generic loader serves all of them. Descriptors are read from
config/reference_domains.yaml; the built-in set below is used when that file
is absent.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from taxrecon.core.errors import ConfigurationError
from taxrecon.tools.data_fetcher import QueryRequest, SortSpec

logger = logging.getLogger(__name__)

DEFAULT_DOMAINS_FILE = Path(__file__).resolve().parent.parent.parent / "config" / "reference_domains.yaml"


@dataclass(frozen=True)
class ReferenceRecord:
    """Display record for one code."""
    label: str
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DomainDescriptor:
    """
    How to load one lookup domain.

    Attributes:
        name: Domain name used by resolve(), e.g. "country"
        entity_path: Entity set to read, e.g. "/Country"
        select_fields: $select list
        key_field: Field holding the code
        label_fields: Candidate label fields; the first non-empty one wins,
                      and the code itself is the last resort
        sort_field: $orderby field
        sort_descending: Sort direction
        extra_fields: Fields copied into ReferenceRecord.extra
    """
    name: str
    entity_path: str
    select_fields: Tuple[str, ...]
    key_field: str
    label_fields: Tuple[str, ...] = ()
    sort_field: Optional[str] = None
    sort_descending: bool = False
    extra_fields: Tuple[str, ...] = ()

    def query(self) -> QueryRequest:
        sort = (SortSpec(self.sort_field, self.sort_descending),) if self.sort_field else ()
        return QueryRequest(path=self.entity_path, select=self.select_fields, sort=sort)

    def to_record(self, row: Dict[str, Any]) -> Optional[Tuple[str, ReferenceRecord]]:
        """Turn one result row into (code, record); rows without a code are skipped."""
        code = row.get(self.key_field)
        if code is None or code == "":
            return None
        code = str(code)
        label = next((str(row[name]) for name in self.label_fields if row.get(name)), code)
        extra = {name: row.get(name) for name in self.extra_fields}
        return code, ReferenceRecord(label=label, extra=extra)

    def build_map(self, rows: Sequence[Dict[str, Any]]) -> Dict[str, ReferenceRecord]:
        """Build a fresh code -> record map. Later duplicates of a code win."""
        result: Dict[str, ReferenceRecord] = {}
        for row in rows:
            entry = self.to_record(row)
            if entry is None:
                logger.debug(f"{self.name}: skipping row without {self.key_field}")
                continue
            code, record = entry
            result[code] = record
        return result

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DomainDescriptor":
        try:
            return cls(
                name=d["name"],
                entity_path=d["entity_path"],
                select_fields=tuple(d.get("select_fields") or ()),
                key_field=d["key_field"],
                label_fields=tuple(d.get("label_fields") or ()),
                sort_field=d.get("sort_field"),
                sort_descending=bool(d.get("sort_descending", False)),
                extra_fields=tuple(d.get("extra_fields") or ()),
            )
        except KeyError as e:
            raise ConfigurationError(f"Reference domain is missing {e}", context={"domain": d}) from e


# Built-in descriptors, identical to the shipped YAML file
BUILTIN_DOMAINS: List[DomainDescriptor] = [
    DomainDescriptor(
        name="country",
        entity_path="/Country",
        select_fields=("Country", "Country_Text", "CountryName"),
        key_field="Country",
        label_fields=("Country_Text", "CountryName"),
        sort_field="Country",
    ),
    DomainDescriptor(
        name="company",
        entity_path="/CompanyVH",
        select_fields=("CompanyCode", "Name", "Country", "CountryName"),
        key_field="CompanyCode",
        label_fields=("Name",),
        sort_field="CompanyCode",
        extra_fields=("Country", "CountryName"),
    ),
    DomainDescriptor(
        name="status",
        entity_path="/xTAXERAxI_SF_STATUS_VH",
        select_fields=("Status", "Description", "value_position"),
        key_field="Status",
        label_fields=("Description",),
        sort_field="value_position",
        extra_fields=("value_position",),
    ),
]


def load_domain_descriptors(path: Optional[Path] = None) -> List[DomainDescriptor]:
    """
    Load domain descriptors from YAML.

    Args:
        path: YAML file (defaults to config/reference_domains.yaml)

    Returns:
        Descriptors in file order, or the built-in set if the file does not exist

    Raises:
        ConfigurationError: if the file exists but is malformed
    """
    path = Path(path) if path else DEFAULT_DOMAINS_FILE
    if not path.exists():
        logger.warning(f"Reference domains not found at {path}. Using built-in domains.")
        return list(BUILTIN_DOMAINS)

    try:
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid reference domains file {path}: {e}") from e

    entries = config.get("domains")
    if not isinstance(entries, list) or not entries:
        raise ConfigurationError(f"No domains declared in {path}")

    descriptors = [DomainDescriptor.from_dict(entry) for entry in entries]
    names = [d.name for d in descriptors]
    if len(set(names)) != len(names):
        raise ConfigurationError(f"Duplicate domain names in {path}: {names}")

    logger.info(f"Loaded {len(descriptors)} reference domains from {path}")
    return descriptors
