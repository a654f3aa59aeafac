"""
Mock Reconciliation Data Generator

Generates fake reference tables and reconciliation documents that mirror the
structure of the reconciliation service's entity sets. This allows running the
CLI and the test suite without a live service.

Output is seeded, so the same call always returns the same rows.

Usage:
    Set USE_MOCK_DATA=true in .env to enable mock data mode.
"""
import random
import logging
from datetime import date, timedelta
from typing import List, Dict, Any

from taxrecon.core.dates import to_odata_json_date

logger = logging.getLogger(__name__)

MOCK_COUNTRIES = [
    ("DE", "Germany"),
    ("DK", "Denmark"),
    ("FR", "France"),
    ("PL", "Poland"),
    ("RO", "Romania"),
]

# (code, name, country)
MOCK_COMPANIES = [
    ("1000", "Taxera GmbH", "DE"),
    ("2000", "Taxera Polska Sp. z o.o.", "PL"),
    ("3000", "Taxera Romania SRL", "RO"),
    ("4000", "Taxera Danmark ApS", "DK"),
]

# Document statuses: (status, description, position)
MOCK_STATUSES = [
    ("S", "Reconciled", 1),
    ("NV", "Not in VAT Returns", 2),
    ("NE", "Not in EC Sales List", 3),
    ("E", "Other Differences", 4),
]

MOCK_TAX_CODES = ["A1", "A2", "V0", "V1", "R7"]

MOCK_RECONCILIATIONS = [
    ("R-0001", "RO,PL", "2000,3000", date(2024, 1, 1), date(2024, 3, 31)),
    ("R-0002", "DE,DK", "1000,4000", date(2024, 4, 1), date(2024, 6, 30)),
]


def generate_documents(
    company_codes: List[str],
    start: date,
    end: date,
    rows: int = 40,
    seed: int = 7,
) -> List[Dict[str, Any]]:
    """
    Generate reconciliation document rows.

    Roughly a third of the rows carry no difference; the rest carry signed
    differences so absolute-value aggregation is exercised.
    """
    rng = random.Random(seed)
    country_of = {code: country for code, _, country in MOCK_COMPANIES}
    span = (end - start).days

    documents = []
    for i in range(rows):
        company = rng.choice(company_codes)
        posting = start + timedelta(days=rng.randint(0, span))
        diff = 0.0 if rng.random() < 0.33 else round(rng.uniform(-2500, 2500), 2)
        documents.append({
            "DocumentId": f"{company}-{i + 1:05d}",
            "CompanyCode": company,
            "Country": country_of.get(company, ""),
            "TaxCode": rng.choice(MOCK_TAX_CODES),
            "PostingDate": to_odata_json_date(posting),
            "DiffGrossAmount": f"{diff:.2f}",
            "Currencycode": "EUR",
            "Status": rng.choice(MOCK_STATUSES)[0],
        })
    return documents


def mock_tables() -> Dict[str, List[Dict[str, Any]]]:
    """All mock entity sets keyed by entity path."""
    tables: Dict[str, List[Dict[str, Any]]] = {
        "/Country": [
            {"Country": code, "Country_Text": name, "CountryName": name}
            for code, name in MOCK_COUNTRIES
        ],
        "/CompanyVH": [
            {
                "CompanyCode": code,
                "Name": name,
                "Country": country,
                "CountryName": dict(MOCK_COUNTRIES)[country],
            }
            for code, name, country in MOCK_COMPANIES
        ],
        "/xTAXERAxI_SF_STATUS_VH": [
            {"Status": status, "Description": description, "value_position": position}
            for status, description, position in MOCK_STATUSES
        ],
        "/Reconciliation": [],
        "/Document": [],
    }

    for index, (recon_id, countries, companies, start, end) in enumerate(MOCK_RECONCILIATIONS):
        documents = generate_documents(companies.split(","), start, end, seed=index + 1)
        for document in documents:
            document["ReconId"] = recon_id
        tables[f"/Reconciliation('{recon_id}')/to_Document"] = documents
        tables["/Document"].extend(documents)
        tables["/Reconciliation"].append({
            "ReconId": recon_id,
            "CountryList": countries,
            "CompanyCodeList": companies,
            "FromDate": to_odata_json_date(start),
            "ToDate": to_odata_json_date(end),
            "ConvCreatedAt": to_odata_json_date(end + timedelta(days=1)),
            "Status": "S" if index == 0 else "P",
        })

    logger.debug(f"Generated {len(tables)} mock tables, {len(tables['/Document'])} documents")
    return tables
