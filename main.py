"""ListingHarvester Entry Point.

This module serves as the bootstrap and orchestration layer.
It contains NO business logic - all functional code resides in
/listing_harvester.

Responsibilities:
    1. Parse the command line
    2. Load and validate configuration
    3. Initialize logging infrastructure (fail-fast on error)
    4. Run the listing pipeline and map its outcome to an exit code

Usage:
    python main.py https://www.airbnb.com/rooms/30397973
    python main.py https://www.airbnb.com/rooms/30397973 --refine
"""

import argparse
import asyncio
import sys
from collections.abc import Sequence

from loguru import logger

from config.settings import GlobalConfig, get_config
from listing_harvester.exceptions import HarvesterError, LoggingInitializationError
from listing_harvester.logger import configure_logging


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="listing-harvester",
        description="Extract a short-term-rental listing and persist it.",
    )
    parser.add_argument("url", help="Canonical listing URL")
    parser.add_argument(
        "--refine",
        action="store_true",
        help="Also generate and persist the refined branding record",
    )
    return parser.parse_args(argv)


def _validate_startup_requirements(config: GlobalConfig) -> None:
    """Ensure the artifact directory exists or can be created.

    Raises:
        SystemExit: If the directory cannot be created.
    """
    try:
        config.data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.critical(
            "Failed to create data directory",
            data_dir=str(config.data_dir),
            error=str(exc),
        )
        sys.exit(1)

    logger.debug(
        "Startup validation complete",
        data_dir=str(config.data_dir),
        persistence_enabled=config.persistence_enabled,
    )


async def _run_pipeline(config: GlobalConfig, url: str, refine: bool) -> int:
    """Execute extraction, persistence and optional refinement.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    from listing_harvester.pipeline import run

    logger.info(
        "Pipeline execution started",
        app_name=config.app_name,
        environment=config.environment,
        url=url,
        refine=refine,
    )

    succeeded = await run(url, refine=refine, config=config)
    if not succeeded:
        logger.error("Pipeline execution failed", url=url)
        return 1

    logger.info("Pipeline execution completed successfully", url=url)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Application entry point.

    Returns:
        Exit code (0 for success, 1 for failure, 130 when interrupted).
    """
    args = _parse_args(argv)

    # Step 1: Load configuration (validates via Pydantic)
    try:
        config = get_config()
    except Exception as exc:
        # Cannot log yet - print to stderr
        print(f"FATAL: Configuration loading failed: {exc}", file=sys.stderr)
        return 1

    # Step 2: Initialize logging (fail-fast)
    try:
        configure_logging(config)
    except LoggingInitializationError as exc:
        print(f"FATAL: {exc}", file=sys.stderr)
        return 1

    # Step 3: Validate startup requirements
    try:
        _validate_startup_requirements(config)
    except SystemExit:
        raise
    except Exception as exc:
        logger.exception("Startup validation failed", error=str(exc))
        return 1

    # Step 4: Execute async pipeline
    try:
        return asyncio.run(_run_pipeline(config, args.url, args.refine))
    except KeyboardInterrupt:
        logger.warning("Pipeline interrupted by user (Ctrl+C)")
        return 130  # Standard Unix SIGINT exit code
    except HarvesterError as exc:
        logger.critical(
            "Fatal application error",
            error_type=exc.label,
            message=exc.message,
            context=exc.context,
        )
        return 1
    except Exception as exc:
        logger.exception("Unexpected fatal error", error=str(exc))
        return 1


if __name__ == "__main__":
    sys.exit(main())
