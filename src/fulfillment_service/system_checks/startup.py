"""Command line entrypoint for startup checks."""

from __future__ import annotations

import argparse
import asyncio

from fulfillment_service.config import get_settings
from fulfillment_service.db import init_db
from fulfillment_service.logging import configure_logging, logger
from fulfillment_service.system_checks import run_checks


async def main(create_schema: bool) -> int:
    configure_logging(get_settings().log_level)
    if create_schema:
        init_db()
        logger.info("Database schema ensured")
    results = await run_checks()
    if all(result.ok for result in results):
        logger.info("Startup checks passed")
        return 0
    for result in results:
        if not result.ok:
            logger.error("{}: FAILED ({})", result.name, result.details)
    logger.error("Startup checks failed")
    return 1


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run fulfillment service startup checks")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before checking (development databases only)",
    )
    return parser.parse_args(argv)


def entrypoint() -> None:
    args = parse_args()
    raise SystemExit(asyncio.run(main(args.create_schema)))


if __name__ == "__main__":  # pragma: no cover
    entrypoint()
