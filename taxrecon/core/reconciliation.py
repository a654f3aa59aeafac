"""
New Reconciliation Requests

Validates what a user entered for a new reconciliation and turns it into the
entity payload the service stores. Countries and company codes are stored as
comma-separated code lists ("RO,PL").
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from taxrecon.core.dates import calendar_day, to_odata_json_date
from taxrecon.core.errors import ReconciliationValidationError

logger = logging.getLogger(__name__)

INITIAL_STATUS = "C"

FIELD_MESSAGES = {
    "CountryList": "Select at least one country.",
    "CompanyCodeList": "Select at least one company code.",
    "DateRange": "Enter a start and an end date.",
}


def split_codes(code_list: Optional[str]) -> List[str]:
    """"RO, PL,,DK" -> ["RO", "PL", "DK"]"""
    if not code_list:
        return []
    return [code.strip() for code in str(code_list).split(",") if code.strip()]


def join_codes(codes: Iterable[str]) -> str:
    """Join codes into a stored code list, dropping blanks and duplicates."""
    seen: List[str] = []
    for code in codes or ():
        code = str(code).strip()
        if code and code not in seen:
            seen.append(code)
    return ",".join(seen)


@dataclass
class ReconciliationDraft:
    """Values entered for a new reconciliation, not yet validated."""
    countries: Iterable[str] = ()
    company_codes: Iterable[str] = ()
    from_date: Any = None
    to_date: Any = None


@dataclass(frozen=True)
class NewReconciliation:
    """A validated reconciliation request."""
    country_list: str
    company_code_list: str
    from_date: date
    to_date: date
    status: str = INITIAL_STATUS

    def to_payload(self) -> Dict[str, Any]:
        return {
            "CountryList": self.country_list,
            "CompanyCodeList": self.company_code_list,
            "FromDate": to_odata_json_date(self.from_date),
            "ToDate": to_odata_json_date(self.to_date),
            "Status": self.status,
        }


def validate_draft(draft: ReconciliationDraft) -> NewReconciliation:
    """
    Check a draft and build the request.

    All fields are checked before failing, so the caller can flag every
    invalid input at once.

    Raises:
        ReconciliationValidationError: with field_errors keyed by
            CountryList, CompanyCodeList and DateRange
    """
    field_errors: Dict[str, str] = {}

    country_list = join_codes(draft.countries)
    if not country_list:
        field_errors["CountryList"] = FIELD_MESSAGES["CountryList"]

    company_code_list = join_codes(draft.company_codes)
    if not company_code_list:
        field_errors["CompanyCodeList"] = FIELD_MESSAGES["CompanyCodeList"]

    from_day = to_day = None
    if draft.from_date is None or draft.to_date is None:
        field_errors["DateRange"] = FIELD_MESSAGES["DateRange"]
    else:
        try:
            from_day = calendar_day(draft.from_date)
            to_day = calendar_day(draft.to_date)
        except ValueError as e:
            field_errors["DateRange"] = f"Invalid date: {e}"
        else:
            if from_day > to_day:
                field_errors["DateRange"] = "The start date must not be after the end date."

    if field_errors:
        logger.info(f"New reconciliation rejected: {', '.join(sorted(field_errors))}")
        raise ReconciliationValidationError(
            "The reconciliation request is incomplete or invalid",
            field_errors=field_errors,
        )

    return NewReconciliation(
        country_list=country_list,
        company_code_list=company_code_list,
        from_date=from_day,
        to_date=to_day,
    )
