"""
Import legacy balances, deposits and taxes from a spreadsheet export.

    CSV_PATH=./legacy_financials.csv IMPORT_CURRENCY=EUR python scripts/import_legacy_financials.py

Flags (set to "1"): DRY_RUN resolves users and counts without writing, QUIET
drops per-row detail. LOG_EVERY=N prints per-row detail every N rows.
Rows that could not be imported are written to SKIP_LOG_PATH.
"""
import sys
import os
import logging

import structlog

# Add backend to path
current_dir = os.path.dirname(os.path.abspath(__file__))
backend_dir = os.path.join(current_dir, '..', 'backend')
sys.path.append(backend_dir)

from database import get_service_client
from services.legacy_import import (
    ImportSettings,
    LegacyFinancialsImporter,
    SkipLog,
    load_auth_directory,
    read_rows,
)

logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stdout)
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
)
logger = structlog.get_logger("import_legacy_financials")


def main() -> int:
    try:
        settings = ImportSettings.from_env()
    except ValueError as e:
        logger.error("invalid_settings", error=str(e))
        return 1

    if not os.path.exists(settings.csv_path):
        logger.error("csv_not_found", path=settings.csv_path)
        return 1

    try:
        client = get_service_client()
    except RuntimeError as e:
        logger.error("missing_credentials", error=str(e))
        return 1

    try:
        directory = load_auth_directory(client)
    except Exception as e:
        logger.error("auth_listing_failed", error=str(e))
        return 1

    rows = read_rows(settings.csv_path)
    with SkipLog(settings.skip_log_path) as skip_log:
        importer = LegacyFinancialsImporter(client, settings, directory, skip_log)
        stats = importer.run(rows)

    if stats.skipped:
        logger.warning("rows_skipped", count=stats.skipped, skip_log=settings.skip_log_path)
    if stats.row_errors:
        logger.warning("row_writes_failed", count=stats.row_errors, skip_log=settings.skip_log_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
