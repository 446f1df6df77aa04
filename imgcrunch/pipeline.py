"""Checkpointed stage runner and the default stage graph."""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, TextIO

from .config import PipelineContext
from .crawler import SessionFactory, build_session, run_fetch
from .models import PipelineError, StageResult
from .optimization import run_optimize
from .optimizers import OptimizerSuite
from .seed import run_hostlist, run_seed
from .stats import format_report, load_stats, run_aggregate

logger = logging.getLogger("imgcrunch")

STAGE_ORDER = ("seed", "hostlist", "fetch", "optimize", "aggregate", "report")

Action = Callable[[PipelineContext], Any]
MarkerPath = Callable[[PipelineContext], Path]


@dataclass(frozen=True)
class Stage:
    """A unit of the pipeline, gated by the presence of its marker path."""

    name: str
    action: Action
    marker: Optional[MarkerPath] = None
    depends_on: Optional[str] = None

    def is_complete(self, context: PipelineContext) -> bool:
        return self.marker is not None and self.marker(context).exists()


class StageRunner:
    """Runs stages, skipping completed ones and pulling in missing dependencies."""

    def __init__(self, stages: Sequence[Stage]) -> None:
        self._stages: Dict[str, Stage] = {}
        for stage in stages:
            if stage.name in self._stages:
                raise ValueError(f"Duplicate stage name: {stage.name}")
            self._stages[stage.name] = stage
        for stage in stages:
            if stage.depends_on and stage.depends_on not in self._stages:
                raise ValueError(f"Stage {stage.name} depends on unknown stage {stage.depends_on}")

    @property
    def names(self) -> List[str]:
        return list(self._stages)

    def run(self, names: Sequence[str], context: PipelineContext) -> List[StageResult]:
        results: List[StageResult] = []
        done: Set[str] = set()
        for name in names:
            if name not in self._stages:
                raise ValueError(f"Unknown stage: {name}")
            self._run_stage(self._stages[name], context, results, done, ())
        return results

    def _run_stage(
        self,
        stage: Stage,
        context: PipelineContext,
        results: List[StageResult],
        done: Set[str],
        chain: tuple,
    ) -> None:
        if stage.name in done:
            return
        if stage.name in chain:
            raise PipelineError(f"Stage dependency cycle at {stage.name}")

        if stage.is_complete(context):
            logger.info("Skipping stage %s (already complete)", stage.name)
            results.append(StageResult(stage.name, "skipped"))
            done.add(stage.name)
            return

        if stage.depends_on:
            dependency = self._stages[stage.depends_on]
            if not dependency.is_complete(context):
                self._run_stage(dependency, context, results, done, chain + (stage.name,))

        logger.info("Starting stage %s", stage.name)
        start = time.perf_counter()
        detail = stage.action(context)
        elapsed = time.perf_counter() - start
        if stage.marker is not None and not stage.marker(context).exists():
            raise PipelineError(f"Stage {stage.name} finished without writing its marker")
        logger.info("Finished stage %s in %.2fs", stage.name, elapsed)
        results.append(StageResult(stage.name, "completed", elapsed, detail))
        done.add(stage.name)


def print_report(context: PipelineContext, stream: Optional[TextIO] = None) -> str:
    """Report stage: write the statistics table to ``stream`` (stdout by default)."""
    report = format_report(load_stats(context))
    out = stream or sys.stdout
    out.write(report)
    out.flush()
    return report


def build_pipeline(
    suite: Optional[OptimizerSuite] = None,
    session_factory: SessionFactory = build_session,
    report_stream: Optional[TextIO] = None,
) -> StageRunner:
    """Wire the default seed → hostlist → fetch → optimize → aggregate → report graph."""
    return StageRunner(
        [
            Stage("seed", run_seed, marker=lambda ctx: ctx.csv_path),
            Stage("hostlist", run_hostlist, marker=lambda ctx: ctx.hosts_path, depends_on="seed"),
            Stage(
                "fetch",
                lambda ctx: run_fetch(ctx, session_factory),
                marker=lambda ctx: ctx.fetched_marker,
                depends_on="hostlist",
            ),
            Stage(
                "optimize",
                lambda ctx: run_optimize(ctx, suite),
                marker=lambda ctx: ctx.optimized_marker,
                depends_on="fetch",
            ),
            Stage(
                "aggregate",
                run_aggregate,
                marker=lambda ctx: ctx.stats_path,
                depends_on="optimize",
            ),
            Stage(
                "report",
                lambda ctx: print_report(ctx, report_stream),
                depends_on="aggregate",
            ),
        ]
    )
