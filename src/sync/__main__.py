"""
Command line entry point

Usage:
    python -m src.sync [--force]          run one sync pass
    python -m src.sync backfill [limit]   reprocess stored transcripts
"""

import logging
import sys

from src.ingestion.config import SyncConfig
from src.ingestion.database import create_session_factory
from src.ingestion.metrics import start_metrics_server

from .backfill import DEFAULT_LIMIT, reprocess_stored_transcripts
from .orchestrator import perform_sync

logger = logging.getLogger(__name__)

USAGE = "Usage: python -m src.sync [--force] | python -m src.sync backfill [limit]"


def main(argv=None) -> int:
    """Run the requested command; returns the process exit code"""
    argv = sys.argv[1:] if argv is None else argv
    config = SyncConfig()

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if config.metrics_port:
        start_metrics_server(config.metrics_port)

    if argv and argv[0] == "backfill":
        try:
            limit = int(argv[1]) if len(argv) > 1 else DEFAULT_LIMIT
        except ValueError:
            print(USAGE)
            return 2
        result = reprocess_stored_transcripts(create_session_factory(config), limit=limit)
        print(f"attempted={result.attempted} updated={result.updated} "
              f"unchanged={result.unchanged} failed={result.failed}")
        return 1 if result.failed else 0

    if any(arg != "--force" for arg in argv):
        print(USAGE)
        return 2

    result = perform_sync(force="--force" in argv, config=config)
    print(f"synced={result.synced} failed={result.failed}")
    for error in result.errors:
        print(f"error: {error}")
    for warning in result.warnings:
        print(f"warning: {warning}")
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main())
