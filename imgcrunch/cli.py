"""Command-line entry point for the image optimization survey."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
import time
from pathlib import Path
from typing import Optional, Sequence

from .cleanup import CLEAN_ALL, CLEAN_LEVELS, clean
from .config import (
    DEFAULT_FETCH_WORKERS,
    DEFAULT_OPTIMIZE_WORKERS,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SEED_URL,
    HOSTS_DEFAULT_COUNT,
    HOSTS_MAX_COUNT,
    HOSTS_MIN_COUNT,
    PipelineContext,
)
from .models import PipelineError
from .pipeline import STAGE_ORDER, build_pipeline

logger = logging.getLogger("imgcrunch.cli")


def parse_host_count(value: str) -> int:
    try:
        count = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not a number")
    if count < HOSTS_MIN_COUNT or count > HOSTS_MAX_COUNT:
        raise argparse.ArgumentTypeError(
            f"The given value {count} is out of range. Valid values range from "
            f"{HOSTS_MIN_COUNT} to {HOSTS_MAX_COUNT}"
        )
    return count


def parse_positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not a number")
    if number < 1:
        raise argparse.ArgumentTypeError("Value must be at least 1")
    return number


def _clean_help() -> str:
    levels = ", ".join(f"{level}: {label}" for level, label in CLEAN_LEVELS.items())
    return (
        f"Clean up the data folder before running ({levels}). Each level includes "
        f"all lower levels; without a value, level {CLEAN_ALL} is used."
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fetch the homepage images of top websites, optimize them, and report the savings.",
    )
    parser.add_argument(
        "--data-dir",
        default="data",
        type=Path,
        help="Directory holding the host list, images, markers and statistics",
    )
    parser.add_argument(
        "-a",
        "--alexa",
        type=parse_host_count,
        default=HOSTS_DEFAULT_COUNT,
        help=(
            "How many hosts to take from the seed list. Valid values range from "
            f"{HOSTS_MIN_COUNT} to {HOSTS_MAX_COUNT}."
        ),
    )
    parser.add_argument(
        "-c",
        "--clean",
        type=int,
        nargs="?",
        const=CLEAN_ALL,
        choices=sorted(CLEAN_LEVELS),
        default=None,
        help=_clean_help(),
    )
    parser.add_argument(
        "--until",
        choices=STAGE_ORDER,
        default=STAGE_ORDER[-1],
        help="Last stage to run; earlier stages run as needed",
    )
    parser.add_argument(
        "--seed-url",
        default=DEFAULT_SEED_URL,
        help="URL of the zipped rank,host CSV used as the seed list",
    )
    parser.add_argument(
        "--fetch-workers",
        type=parse_positive_int,
        default=DEFAULT_FETCH_WORKERS,
        help="Hosts crawled in parallel",
    )
    parser.add_argument(
        "--optimize-workers",
        type=parse_positive_int,
        default=DEFAULT_OPTIMIZE_WORKERS,
        help="Images optimized in parallel",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_REQUEST_TIMEOUT,
        help="HTTP request timeout in seconds",
    )
    parser.add_argument(
        "--max-runtime",
        type=float,
        default=None,
        help="Stop scheduling new hosts/images after this many seconds",
    )
    parser.add_argument(
        "--no-stylesheets",
        action="store_true",
        help="Only collect <img> references, do not scan linked stylesheets",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


def build_context(args: argparse.Namespace) -> PipelineContext:
    return PipelineContext(
        data_root=Path(args.data_dir).resolve(),
        host_count=args.alexa,
        seed_url=args.seed_url,
        fetch_workers=args.fetch_workers,
        optimize_workers=args.optimize_workers,
        request_timeout=args.timeout,
        follow_stylesheets=not args.no_stylesheets,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    context = build_context(args)
    if args.clean is not None:
        clean(context, args.clean)

    timer = None
    if args.max_runtime:
        timer = threading.Timer(args.max_runtime, context.cancel_event.set)
        timer.daemon = True
        timer.start()

    overall_start = time.perf_counter()
    runner = build_pipeline()
    try:
        results = runner.run([args.until], context)
    except PipelineError as exc:
        logger.error("%s. Exiting!", exc)
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted. Completed stages keep their markers.")
        return 130
    finally:
        if timer is not None:
            timer.cancel()

    total_elapsed = time.perf_counter() - overall_start
    completed = [result.name for result in results if not result.skipped]
    skipped = [result.name for result in results if result.skipped]
    logger.info(
        "Finished in %.2fs (ran: %s | skipped: %s)",
        total_elapsed,
        ", ".join(completed) or "-",
        ", ".join(skipped) or "-",
    )
    if args.verbose:
        for result in results:
            logger.debug("Stage %s -> %s in %.2fs", result.name, result.status, result.seconds)
    return 0


if __name__ == "__main__":
    sys.exit(main())
