"""Run one wallet scheduler tick from the command line and print the summary."""
from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Optional, Sequence

from walletsync.database import Base, engine
from walletsync.jobs.factory import create_wallet_services
from walletsync.utils import get_logger, setup_logging

logger = get_logger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Process due wallet sync jobs (one scheduler tick).")
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of jobs to process (default: batch size).")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level for this run.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    if args.limit is not None and args.limit < 1:
        print("--limit must be a positive integer", file=sys.stderr)
        return 2
    setup_logging(log_level=args.log_level.upper(), log_file=os.getenv("LOG_FILE"))
    Base.metadata.create_all(bind=engine)

    services = create_wallet_services()
    try:
        summary = services.scheduler.tick(limit=args.limit)
    except Exception as e:
        logger.error("Wallet job run failed", error=str(e), exc_info=True)
        print(json.dumps({"error": str(e)}), file=sys.stderr)
        return 1
    finally:
        services.close()

    print(json.dumps(summary.model_dump(), indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
