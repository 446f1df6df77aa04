"""Per-image optimization: pick the smallest output among competing tools."""

from __future__ import annotations

import concurrent.futures as cf
import logging
import os
import re
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple

from .config import PipelineContext
from .images import detect_image_format
from .models import (
    AssetOutcome,
    AssetState,
    OptimizationCandidate,
    PipelineCancelled,
    PipelineError,
)
from .optimizers import OptimizerSuite, default_suite
from .utils import remove_path, touch_atomic

logger = logging.getLogger("imgcrunch")

# Graphic control extension followed by an image descriptor or another extension.
ANIMATION_BOUNDARY = re.compile(rb"\x00\x21\xF9\x04.{4}\x00[\x2C\x21]", re.DOTALL)
ANIMATION_MIN_BOUNDARIES = 3
SCAN_WINDOW = 100 * 1024
_BOUNDARY_LENGTH = 10


def count_animation_boundaries(
    handle: BinaryIO,
    limit: int = ANIMATION_MIN_BOUNDARIES,
    window: int = SCAN_WINDOW,
) -> int:
    """Count frame boundaries, stopping once ``limit`` have been seen."""
    count = 0
    carry = b""
    while count < limit:
        chunk = handle.read(window)
        if not chunk:
            break
        buffer = carry + chunk
        end = 0
        for match in ANIMATION_BOUNDARY.finditer(buffer):
            count += 1
            end = match.end()
        # Keep a tail so a marker split across two reads is still found.
        carry = buffer[max(end, len(buffer) - (_BOUNDARY_LENGTH - 1)):]
    return count


def is_animated_gif(path: Path) -> bool:
    with open(path, "rb") as handle:
        return count_animation_boundaries(handle) >= ANIMATION_MIN_BOUNDARIES


@dataclass(frozen=True)
class HostDirs:
    """Output directories for one host."""

    optimized: Path
    webp: Path
    tmp: Path

    @classmethod
    def for_host(cls, context: PipelineContext, host: str) -> "HostDirs":
        return cls(
            optimized=context.imgmin_root / host,
            webp=context.webp_root / host,
            tmp=context.tmp_root / host,
        )

    def create(self) -> None:
        for directory in (self.optimized, self.webp, self.tmp):
            directory.mkdir(parents=True, exist_ok=True)


def _copy(source: Path, target: Path) -> OptimizationCandidate:
    shutil.copyfile(source, target)
    return OptimizationCandidate("copy", target, target.stat().st_size)


def optimize_asset(
    source: Path,
    dirs: HostDirs,
    suite: OptimizerSuite,
    webp_options: Optional[str] = None,
    webp_alpha_options: Optional[str] = None,
) -> Optional[AssetOutcome]:
    """Run one fetched image through the optimizer chain.

    Animated GIFs are copied verbatim. Static GIFs are rasterized to PNG
    first. The imgmin output competes with the pngquant output for PNGs and
    the smaller one is kept; ties keep imgmin. The kept file is then encoded
    to WebP. Failed passes fall back to the previous candidate or to the
    unoptimized image so both output trees always receive a file.
    """
    image_format = detect_image_format(source)
    if image_format is None:
        logger.warning("Skipping %s: unrecognized image signature", source)
        return None

    outcome = AssetOutcome(source=source, format=image_format)
    outcome.states.append(AssetState.CLASSIFIED)

    working = source
    name = source.name
    is_png = image_format == "png"

    if image_format == "gif":
        outcome.states.append(AssetState.ANIMATION_CHECKED)
        if is_animated_gif(source):
            logger.debug("%s is an animated GIF, copying verbatim", source.name)
            outcome.animated = True
            outcome.retained = _copy(source, dirs.optimized / name)
            outcome.webp = _copy(source, dirs.webp / name)
            outcome.states.append(AssetState.DONE)
            return outcome

        raster_path = dirs.tmp / f"{source.stem}.png"
        raster = suite.rasterizer.run(source, raster_path)
        if raster.success:
            outcome.states.append(AssetState.RASTERIZED)
            working = raster_path
            name = raster_path.name
            is_png = True
        else:
            logger.warning("Continuing with the original GIF for %s", source.name)

    optimized_path = dirs.optimized / name

    outcome.states.append(AssetState.IMGMIN_PASS)
    imgmin = suite.imgmin.run(working, optimized_path)
    best: Optional[OptimizationCandidate] = None
    if imgmin.success:
        best = OptimizationCandidate(suite.imgmin.name, optimized_path, imgmin.size)
        outcome.candidates.append(best)

    if is_png:
        outcome.states.append(AssetState.QUANTIZE_PASS)
        quant_path = dirs.optimized / f"{name}.quant"
        quant = suite.quantizer.run(working, quant_path)
        if quant.success:
            outcome.candidates.append(
                OptimizationCandidate(suite.quantizer.name, quant_path, quant.size)
            )
            if best is None or quant.size < best.byte_size:
                os.replace(quant_path, optimized_path)
                best = OptimizationCandidate(suite.quantizer.name, optimized_path, quant.size)
            else:
                quant_path.unlink(missing_ok=True)

    if best is None:
        logger.warning("No optimizer succeeded for %s, keeping the original", source.name)
        best = _copy(working, optimized_path)
        outcome.fallback = True
    outcome.retained = best

    outcome.states.append(AssetState.WEBP_PASS)
    webp_path = dirs.webp / f"{Path(name).stem}.webp"
    options = webp_alpha_options if is_png else webp_options
    webp = suite.webp.run(best.output_path, webp_path, options)
    if webp.success:
        outcome.webp = OptimizationCandidate(suite.webp.name, webp_path, webp.size)
    else:
        logger.warning("WebP conversion failed for %s, copying optimized file", source.name)
        outcome.webp = _copy(best.output_path, dirs.webp / best.output_path.name)
        outcome.fallback = True

    outcome.states.append(AssetState.DONE)
    logger.debug(
        "%s: %d -> %d bytes (%s), webp %d bytes",
        source.name,
        source.stat().st_size,
        best.byte_size,
        best.strategy_name,
        outcome.webp.byte_size,
    )
    return outcome


def list_hosts(context: PipelineContext) -> List[str]:
    if not context.images_root.is_dir():
        return []
    return sorted(p.name for p in context.images_root.iterdir() if p.is_dir())


def collect_work(context: PipelineContext) -> List[Tuple[str, Path]]:
    """List ``(host, image)`` pairs found under the originals tree."""
    work: List[Tuple[str, Path]] = []
    for host in list_hosts(context):
        for image in sorted((context.images_root / host).iterdir()):
            if image.is_file() and not image.name.startswith("."):
                work.append((host, image))
    return work


def _optimize_worker(
    host: str,
    image: Path,
    context: PipelineContext,
    suite: OptimizerSuite,
) -> Optional[AssetOutcome]:
    if context.cancelled():
        return None
    return optimize_asset(
        image,
        HostDirs.for_host(context, host),
        suite,
        webp_options=context.webp_options,
        webp_alpha_options=context.webp_alpha_profile,
    )


def run_optimize(
    context: PipelineContext,
    suite: Optional[OptimizerSuite] = None,
) -> List[AssetOutcome]:
    """Optimize stage: process every fetched image, then write ``.optimized``."""
    suite = suite or default_suite(context)
    work = collect_work(context)
    hosts = list_hosts(context)
    try:
        for host in hosts:
            HostDirs.for_host(context, host).create()
        context.imgmin_root.mkdir(parents=True, exist_ok=True)
        context.webp_root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PipelineError(f"Could not create output directories: {exc}") from exc

    logger.info("Optimizing %d image(s) from %d host(s)", len(work), len(hosts))
    start = time.perf_counter()
    outcomes: List[AssetOutcome] = []
    workers = max(1, context.optimize_workers)
    with cf.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="optimize") as ex:
        futures = {
            ex.submit(_optimize_worker, host, image, context, suite): image
            for host, image in work
        }
        try:
            for fut in cf.as_completed(futures):
                image = futures[fut]
                try:
                    outcome = fut.result()
                except Exception:  # pylint: disable=broad-except
                    logger.exception("Unexpected error while optimizing %s", image)
                    continue
                if outcome is not None:
                    outcomes.append(outcome)
        except KeyboardInterrupt:
            context.cancel_event.set()
            raise

    if context.cancelled():
        raise PipelineCancelled("Optimize stage cancelled before all images finished")

    remove_path(context.tmp_root)
    try:
        touch_atomic(context.optimized_marker)
    except OSError as exc:
        raise PipelineError(f"Could not write {context.optimized_marker}: {exc}") from exc
    animated = sum(1 for item in outcomes if item.animated)
    logger.info(
        "Optimized %d image(s) (%d animated GIF(s) copied) in %.2fs",
        len(outcomes),
        animated,
        time.perf_counter() - start,
    )
    return outcomes
