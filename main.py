#!/usr/bin/env python3
"""
Tax Reconciliation Data Layer - Main Entry Point

Usage:
    python main.py setup                          # Validate configuration
    python main.py refdata                        # Load and print reference data
    python main.py filter --country RO PL         # Show the query a filter produces
    python main.py aggregate R-0001 --by CompanyCode   # Aggregate differences
"""
import os
import sys
import argparse
import asyncio
import logging
from datetime import date
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

logger = logging.getLogger(__name__)


def setup_environment():
    """Load environment variables from .env file if present."""
    env_file = PROJECT_ROOT / '.env'
    if env_file.exists():
        with open(env_file) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ.setdefault(key.strip(), value.strip())


def setup_logging():
    """Configure logging from LOG_LEVEL."""
    from config.settings import get_config

    level = getattr(logging, get_config().log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()],
    )


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not an ISO date (YYYY-MM-DD): {value}")


def _use_mock(args) -> bool:
    from config.settings import get_config
    return args.mock or get_config().use_mock_data


async def _load_reference_data(fetcher):
    from taxrecon.data import ReferenceDataCache

    cache = ReferenceDataCache(fetcher)
    cache.load()
    await cache.get_maps_ready_signal()
    return cache


def _date_facets(args):
    from taxrecon.core.filter_builder import FacetSpec

    if args.date_from is None and args.date_to is None:
        return []
    return [FacetSpec.date_range(args.date_field, args.date_from, args.date_to)]


def cmd_setup(args):
    """Validate configuration and setup."""
    from config.settings import get_config
    from taxrecon.data import load_domain_descriptors

    print("\n" + "="*60)
    print("CONFIGURATION VALIDATION")
    print("="*60)

    config = get_config()

    print(f"\n📦 Reconciliation Service:")
    checks = [
        ("Service URL", config.service.base_url),
        ("User", config.service.user),
        ("Password", config.service.password),
    ]
    for name, value in checks:
        status = "✅" if value else "❌"
        print(f"   {status} {name}: {'Set' if value else 'MISSING'}")
    timeout = config.service.timeout_seconds
    print(f"   Timeout: {f'{timeout}s' if timeout else 'none'}")
    print(f"   Mock data: {'ON' if config.use_mock_data else 'OFF'}")

    print(f"\n⏱️  Reference Data Bootstrap:")
    rd = config.reference_data
    print(f"   Startup delay: {rd.startup_delay_seconds}s")
    print(f"   Retry backoff: {rd.retry_backoff_seconds}s x {rd.max_retries}")

    print(f"\n📚 Reference Domains:")
    for descriptor in load_domain_descriptors():
        print(f"   {descriptor.name:<10} {descriptor.entity_path}")

    print(f"\n🔎 Filters:")
    print(f"   Date fields: {', '.join(config.filters.date_fields)}")
    print(f"   Difference field: {config.filters.difference_field}")

    print("\n" + "="*60)
    print("Set RECON_SERVICE_URL or USE_MOCK_DATA=true to run queries")
    print("="*60)


def cmd_refdata(args):
    """Load reference data and print the label maps."""
    from taxrecon.tools.data_fetcher import get_data_fetcher

    fetcher = get_data_fetcher(use_mock=_use_mock(args))
    cache = asyncio.run(_load_reference_data(fetcher))

    domains = args.domain or cache.domains
    for domain in domains:
        labels = cache.labels(domain)
        print("\n" + "-"*60)
        print(f"{domain.upper()} ({len(labels)} entries)")
        print("-"*60)
        for code, label in labels.items():
            print(f"  {code:<12} {label}")


def cmd_filter(args):
    """Build a filter and show the query it produces."""
    from taxrecon.core.filter_builder import FacetSpec
    from taxrecon.core.filter_tree import describe
    from taxrecon.core.queries import documents_request, reconciliation_list_request
    from taxrecon.tools.data_fetcher import get_data_fetcher

    if args.recon:
        facets = [
            FacetSpec.values_of("Country", args.country or ()),
            FacetSpec.values_of("CompanyCode", args.company or ()),
            FacetSpec.values_of("TaxCode", args.tax_code or ()),
        ]
        request = documents_request(
            args.recon,
            facets=facets,
            external=_date_facets(args),
            only_differences=args.only_differences,
        )
    else:
        request = reconciliation_list_request(
            countries=args.country or (),
            company_codes=args.company or (),
            external=_date_facets(args),
        )

    print("\n" + "="*60)
    print("QUERY")
    print("="*60)
    print(f"  Path:   {request.path}")
    print(f"  Filter: {describe(request.filter)}")
    for name, value in request.to_query_params().items():
        print(f"  {name:<9} {value}")

    if args.run:
        fetcher = get_data_fetcher(use_mock=_use_mock(args))
        result = asyncio.run(fetcher.read(request))
        print("\n" + "-"*60)
        if not result.ok:
            print(f"❌ Read failed: {result.error}")
            sys.exit(1)
        print(f"RESULTS ({result.row_count} rows, {result.execution_time_ms:.0f}ms)")
        print("-"*60)
        for row in result.results[:args.limit]:
            print("  " + ", ".join(f"{k}={v}" for k, v in row.items()))


def cmd_aggregate(args):
    """Aggregate a reconciliation's differences by one or more dimensions."""
    from taxrecon.core.aggregation import get_aggregation_engine
    from taxrecon.core.filter_builder import FacetSpec
    from taxrecon.core.queries import aggregation_request
    from taxrecon.tools.data_fetcher import get_data_fetcher
    from taxrecon.tools.formatting import format_currency, format_number_with_scale

    dimensions = args.by or ["CompanyCode"]
    facets = [
        FacetSpec.values_of("Country", args.country or ()),
        FacetSpec.values_of("CompanyCode", args.company or ()),
    ]
    request = aggregation_request(
        args.recon,
        dimensions,
        facets=facets,
        external=_date_facets(args),
        only_differences=args.only_differences,
    )

    fetcher = get_data_fetcher(use_mock=_use_mock(args))

    async def run():
        cache = await _load_reference_data(fetcher)
        result = await get_aggregation_engine().aggregate_query(fetcher, request, dimensions)
        return cache, result

    cache, result = asyncio.run(run())

    print("\n" + "="*60)
    print(f"DIFFERENCES BY {' / '.join(dimensions).upper()}")
    if result.is_fallback:
        print("(sample data: no documents were available)")
    print("="*60)
    buckets = result.top(args.top) if args.top else result.buckets
    for bucket in buckets:
        label = bucket.dimension_value
        if dimensions == ["CompanyCode"]:
            name = cache.resolve("company", label)
            label = label if name == label else f"{name} ({label})"
        print(f"  {label:<40} {format_currency(bucket.sum, bucket.currency):>16}  "
              f"{format_number_with_scale(bucket.sum):>6}")
    print("-"*60)
    print(f"  {'Total':<40} {format_currency(result.total):>16}")


def main():
    setup_environment()
    setup_logging()

    parser = argparse.ArgumentParser(
        description="Tax Reconciliation Data Layer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py setup                                Check configuration
  python main.py refdata --mock                       Print reference data
  python main.py filter --country RO PL --run --mock  List reconciliations
  python main.py aggregate R-0001 --by TaxCode --mock Aggregate differences

Environment Variables:
  RECON_SERVICE_URL     OData service root URL
  RECON_SERVICE_USER    Basic auth user
  USE_MOCK_DATA         Serve built-in sample data instead of the service
  LOG_LEVEL             Logging level (default: INFO)
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    def add_common(sub):
        sub.add_argument('--mock', action='store_true', help='Use built-in sample data')
        sub.add_argument('--country', nargs='+', help='Country codes')
        sub.add_argument('--company', nargs='+', help='Company codes')
        sub.add_argument('--from', dest='date_from', type=_parse_date, help='Start date (YYYY-MM-DD)')
        sub.add_argument('--to', dest='date_to', type=_parse_date, help='End date (YYYY-MM-DD)')
        sub.add_argument('--date-field', default='PostingDate', help='Field the date range applies to')
        sub.add_argument('--only-differences', action='store_true',
                         help='Only documents with a non-zero difference')

    # Setup command
    setup_parser = subparsers.add_parser('setup', help='Validate setup')
    setup_parser.set_defaults(func=cmd_setup)

    # Reference data command
    refdata_parser = subparsers.add_parser('refdata', help='Load and print reference data')
    refdata_parser.add_argument('--mock', action='store_true', help='Use built-in sample data')
    refdata_parser.add_argument('--domain', nargs='+', help='Domains to print (default: all)')
    refdata_parser.set_defaults(func=cmd_refdata)

    # Filter command
    filter_parser = subparsers.add_parser('filter', help='Build a filter and show the query')
    add_common(filter_parser)
    filter_parser.add_argument('--recon', help='Query documents of this reconciliation instead of the list')
    filter_parser.add_argument('--tax-code', nargs='+', help='Tax codes (documents only)')
    filter_parser.add_argument('--run', action='store_true', help='Execute the query')
    filter_parser.add_argument('--limit', type=int, default=20, help='Rows to print')
    filter_parser.set_defaults(func=cmd_filter)

    # Aggregate command
    aggregate_parser = subparsers.add_parser('aggregate', help='Aggregate differences')
    aggregate_parser.add_argument('recon', help='Reconciliation id')
    add_common(aggregate_parser)
    aggregate_parser.add_argument('--by', nargs='+', help='Dimension fields (default: CompanyCode)')
    aggregate_parser.add_argument('--top', type=int, default=0, help='Only the N largest buckets')
    aggregate_parser.set_defaults(func=cmd_aggregate)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
