"""Leveled removal of pipeline outputs and their stage markers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Tuple

from .config import PipelineContext
from .utils import remove_path

logger = logging.getLogger("imgcrunch")

CLEAN_STATS = 1
CLEAN_OPTIMIZED_IMAGES = 2
CLEAN_ALL_IMAGES = 3
CLEAN_HOSTLIST = 4
CLEAN_ALL = 5

CLEAN_LEVELS = {
    CLEAN_STATS: "stats",
    CLEAN_OPTIMIZED_IMAGES: "optimized images",
    CLEAN_ALL_IMAGES: "all images",
    CLEAN_HOSTLIST: "host list",
    CLEAN_ALL: "everything",
}


@dataclass(frozen=True)
class CleanupAction:
    level: int
    description: str
    targets: Callable[[PipelineContext], Tuple[Path, ...]]


CLEANUP_ACTIONS: Tuple[CleanupAction, ...] = (
    CleanupAction(CLEAN_ALL, "Cleaning complete data", lambda ctx: (ctx.data_root,)),
    CleanupAction(CLEAN_HOSTLIST, "Cleaning host list", lambda ctx: (ctx.hosts_path,)),
    CleanupAction(
        CLEAN_ALL_IMAGES,
        "Cleaning all source images",
        lambda ctx: (ctx.images_root, ctx.fetched_marker),
    ),
    CleanupAction(
        CLEAN_OPTIMIZED_IMAGES,
        "Cleaning all optimized images",
        lambda ctx: (ctx.imgmin_root, ctx.webp_root, ctx.tmp_root, ctx.optimized_marker),
    ),
    CleanupAction(CLEAN_STATS, "Cleaning statistics", lambda ctx: (ctx.stats_path,)),
)


def clean(context: PipelineContext, level: int) -> List[Path]:
    """Run every cleanup action whose level is at most ``level``."""
    if level not in CLEAN_LEVELS:
        raise ValueError(f"Invalid clean level {level}; expected one of {sorted(CLEAN_LEVELS)}")
    removed: List[Path] = []
    for action in CLEANUP_ACTIONS:
        if action.level > level:
            continue
        logger.info("%s", action.description)
        for target in action.targets(context):
            if remove_path(target):
                logger.debug("Removed %s", target)
                removed.append(target)
    return removed
