"""N-central patch status report CLI."""

import argparse
import signal
import sys
import threading
from dataclasses import replace
from typing import List, Optional

from common.config import Config, load_config
from common.logging import setup_logging, get_logger

from .api import NCentralAPI, NCentralAPIError, ScanCancelled, UnauthorizedError
from .export import format_rows, format_summary, result_to_json, write_csv
from .patch_status import PatchStatusAggregator, ScanResult, StatusFilter, filter_rows
from .scope import ScanScope, ScopeResolver

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_UNAUTHORIZED = 2
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    """Command line options for the patch report."""
    parser = argparse.ArgumentParser(description='N-central Windows patch status report')
    parser.add_argument('--customer', help='Customer name substring (case-insensitive)')
    parser.add_argument('--customer-id', type=int, help='Customer id (overrides --customer)')
    parser.add_argument('--site', help='Site name substring (case-insensitive)')
    parser.add_argument('--site-id', type=int, help='Site id (overrides --site)')
    parser.add_argument('--device', help='Device name substring (case-insensitive)')
    parser.add_argument(
        '--status',
        choices=[mode.value for mode in StatusFilter],
        default=StatusFilter.ALL.value,
        help='Only report rows in this patch state (default: All)'
    )
    parser.add_argument(
        '--include-healthy',
        action='store_true',
        help='Add one "Normal" row for every device without patch issues'
    )
    parser.add_argument('--csv', metavar='PATH', help='Write rows to a CSV file')
    parser.add_argument('--json', action='store_true', help='Print the result as JSON instead of tables')
    parser.add_argument('--page-size', type=int, help='Items per API page')
    parser.add_argument('--max-retries', type=int, help='Attempts per request on 429/5xx responses')
    parser.add_argument('--env-file', help='Path to a .env file with N-central settings')
    return parser


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Return a config with command line overrides applied."""
    overrides = {}
    if args.page_size is not None:
        overrides['page_size'] = args.page_size
    if args.max_retries is not None:
        overrides['max_retries'] = args.max_retries
    if overrides:
        return Config(ncentral=replace(config.ncentral, **overrides), app=config.app)
    return config


def run_report(
    api: NCentralAPI,
    scope: ScanScope,
    status: StatusFilter = StatusFilter.ALL,
    include_healthy: bool = False,
) -> ScanResult:
    """
    Resolve the scope, scan every device and apply the status filter.

    Args:
        api: Configured API client
        scope: Customer/site/device filters
        status: Patch state to keep
        include_healthy: Emit rows for devices without issues

    Returns:
        ScanResult: Filtered rows with the number of devices scanned
    """
    devices = ScopeResolver(api).resolve(scope)
    result = PatchStatusAggregator(api, include_healthy=include_healthy).scan(devices)
    result.rows = list(filter_rows(result.rows, status))
    return result


def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = apply_overrides(load_config(args.env_file), args)
    except ValueError as e:
        setup_logging()
        get_logger(__name__).error(f"Invalid configuration: {e}")
        sys.exit(EXIT_FAILED)

    setup_logging(config.app.log_level)
    logger = get_logger(__name__)

    cancel_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: cancel_event.set())

    scope = ScanScope(
        org_name=args.customer,
        org_id=args.customer_id,
        sub_unit_name=args.site,
        sub_unit_id=args.site_id,
        device_name=args.device,
    )

    api = None
    try:
        config.validate()
        api = NCentralAPI(config.ncentral, cancel_event=cancel_event)

        logger.info(f"Starting patch status report against {config.ncentral.base_url}")
        result = run_report(
            api,
            scope,
            status=StatusFilter(args.status),
            include_healthy=args.include_healthy,
        )

        if args.csv:
            written = write_csv(result.rows, args.csv)
            logger.info(f"Wrote {written} rows to {args.csv}")

        if args.json:
            print(result_to_json(result))
        else:
            print(format_rows(result.rows))
            print()
            print(format_summary(result))

        for warning in result.warnings:
            logger.warning(f"Report warning: {warning}")

        logger.info("Patch status report completed successfully")

    except UnauthorizedError as e:
        logger.error(str(e))
        sys.exit(EXIT_UNAUTHORIZED)
    except (ScanCancelled, KeyboardInterrupt):
        logger.warning("Patch status report cancelled")
        sys.exit(EXIT_CANCELLED)
    except (NCentralAPIError, ValueError, OSError) as e:
        logger.error(f"Patch status report failed: {e}")
        sys.exit(EXIT_FAILED)
    finally:
        if api is not None:
            api.close()

    sys.exit(EXIT_OK)


if __name__ == '__main__':
    main()
