"""Command line entry point.

Examples:
  # Match competitors against a catalog, print JSON
  python -m crosswalk match --catalog catalog.json --competitors competitors.json

  # Flat CSV rows, 5 concurrent resolutions, written to a file
  python -m crosswalk match --catalog catalog.json --competitors competitors.json \\
    --format csv --concurrency 5 --output results.csv
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

import structlog
from pydantic import ValidationError

from crosswalk.config import batch_settings, configure_logging, settings
from crosswalk.errors.exceptions import CatalogError, CrosswalkError
from crosswalk.models.batch import BatchOptions
from crosswalk.models.products import CatalogProduct
from crosswalk.services.batch_scheduler import BatchScheduler
from crosswalk.services.export import export_csv, export_json
from crosswalk.services.orchestrator import create_orchestrator

logger = structlog.get_logger(__name__)


def _load_records(path: Path, key: str) -> List[Any]:
    """Read a JSON list, or an object wrapping one under ``key``."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get(key, [])
    if not isinstance(data, list):
        raise CrosswalkError(f"{path} must contain a JSON list of records")
    return data


def load_catalog(path: Path) -> List[CatalogProduct]:
    """Load catalog products from a JSON file.

    Raises:
        CatalogError: If the file holds no valid products
    """
    try:
        products = [CatalogProduct.model_validate(record) for record in _load_records(path, "products")]
    except ValidationError as e:
        raise CatalogError(f"Invalid catalog record in {path}", details={"errors": e.errors()}) from e
    if not products:
        raise CatalogError(f"Catalog {path} is empty")
    return products


async def run_match(args: argparse.Namespace) -> str:
    catalog = load_catalog(Path(args.catalog))
    competitors = _load_records(Path(args.competitors), "competitors")

    orchestrator = create_orchestrator()
    scheduler = BatchScheduler(orchestrator, batch_settings)
    options = BatchOptions.from_settings(
        batch_settings,
        concurrency=args.concurrency,
        timeout_ms=args.timeout_ms,
    )
    try:
        job = await scheduler.submit(competitors, catalog, options)
        job = await scheduler.wait_for(job.id)
    finally:
        await scheduler.shutdown()
        await orchestrator.close()

    logger.info(
        "cli_match_finished",
        job_id=job.id,
        status=job.status.value,
        succeeded=job.progress.succeeded,
        failed=job.progress.failed,
    )
    return export_csv(job) if args.format == "csv" else export_json(job)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crosswalk",
        description="Match competitor products to our catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    match = subparsers.add_parser("match", help="Run a batch match and print the export")
    match.add_argument("--catalog", required=True, help="JSON file with catalog products")
    match.add_argument("--competitors", required=True, help="JSON file with competitor records")
    match.add_argument("--format", choices=["json", "csv"], default="json", help="Output format")
    match.add_argument("--concurrency", type=int, help="Concurrent resolutions")
    match.add_argument("--timeout-ms", type=int, help="Per-item timeout in milliseconds")
    match.add_argument("--output", help="Write the export here instead of stdout")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # stdout carries only the export
    configure_logging(settings.log_level, stream=sys.stderr)

    try:
        output = asyncio.run(run_match(args))
    except CrosswalkError as e:
        logger.error("cli_failed", error_code=e.code, error=e.message)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except (OSError, json.JSONDecodeError) as e:
        logger.error("cli_input_unreadable", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Wrote {args.output}", file=sys.stderr)
    else:
        sys.stdout.write(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
