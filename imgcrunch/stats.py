"""Size statistics across the original, optimized, and WebP trees."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping

from .config import PipelineContext
from .models import FileStats, PipelineError, StatsRecord, TreeStats
from .seed import load_hosts
from .utils import write_text_atomic

logger = logging.getLogger("imgcrunch")

TREE_NAMES = ("images", "imgmin", "webp")


def stage_trees(context: PipelineContext) -> Dict[str, Path]:
    return {
        "images": context.images_root,
        "imgmin": context.imgmin_root,
        "webp": context.webp_root,
    }


def tree_stats(directory: Path) -> TreeStats:
    """Summarize the regular files directly inside ``directory``."""
    stats = TreeStats()
    if not directory.is_dir():
        return stats
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.name.startswith("."):
            continue
        size = path.stat().st_size
        stats.files.append(FileStats(path.name, size, path.suffix.lstrip(".").lower()))
        stats.total_bytes += size
    stats.image_count = len(stats.files)
    return stats


def aggregate_host(host: str, trees: Mapping[str, Path]) -> StatsRecord:
    return StatsRecord(
        host=host,
        trees={name: tree_stats(root / host) for name, root in trees.items()},
    )


def run_aggregate(context: PipelineContext) -> List[StatsRecord]:
    """Aggregate stage: write one record per host to ``stats.json``."""
    trees = stage_trees(context)
    records = [aggregate_host(host, trees) for host in load_hosts(context)]
    payload = {record.host: record.to_dict() for record in records}
    try:
        write_text_atomic(context.stats_path, json.dumps(payload, indent=2))
    except OSError as exc:
        raise PipelineError(f"Could not write {context.stats_path}: {exc}") from exc
    logger.info("Wrote statistics for %d host(s) to %s", len(records), context.stats_path)
    return records


def load_stats(context: PipelineContext) -> Dict[str, Any]:
    try:
        return json.loads(context.stats_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise PipelineError(f"Could not read {context.stats_path}: {exc}") from exc


def _savings(original: int, reduced: int) -> str:
    if not original:
        return "n/a"
    percent = 100 - round(100 * reduced / original, 2)
    return f"{percent:.2f} % ({(original - reduced) / 1024:.2f} KB)"


def format_report(stats: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> str:
    """Render per-host byte totals and the overall savings as plain text."""
    lines = [
        "Statistics for each website",
        "",
        f"{'Website':>30} {'images':>12} {'imgmin':>12} {'webp':>12}",
    ]
    totals = dict.fromkeys(TREE_NAMES, 0)
    for host, record in stats.items():
        sizes = [int(record.get(name, {}).get("sizeBytes", 0)) for name in TREE_NAMES]
        for name, size in zip(TREE_NAMES, sizes):
            totals[name] += size
        lines.append(f"{host[:30]:>30} {sizes[0]:>12} {sizes[1]:>12} {sizes[2]:>12}")
    lines.append("")
    lines.append(f"Optimization saved {_savings(totals['images'], totals['imgmin'])} in total.")
    lines.append(f"WebP conversion saved {_savings(totals['images'], totals['webp'])} in total.")
    return "\n".join(lines) + "\n"
