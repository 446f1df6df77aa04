"""Adapters for the external image optimizers and the GIF rasterizer."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, NamedTuple, Optional

from PIL import Image

from .config import PipelineContext

logger = logging.getLogger("imgcrunch")


class OptimizerResult(NamedTuple):
    size: int
    success: bool


def _output_size(path: Path) -> int:
    """Size of a readable, non-empty output file, else 0."""
    try:
        if not path.is_file() or not os.access(path, os.R_OK):
            return 0
        return path.stat().st_size
    except OSError:
        return 0


class Optimizer:
    """Capability interface: turn ``input_path`` into ``output_path``."""

    name = "optimizer"

    def run(
        self,
        input_path: Path,
        output_path: Path,
        options: Optional[str] = None,
    ) -> OptimizerResult:
        raise NotImplementedError


class ExternalOptimizer(Optimizer):
    """Runs a command-line tool with an argv list; the shell is never involved."""

    binary = ""

    def __init__(self, options: str = "", binary: Optional[str] = None) -> None:
        self.options = options
        if binary:
            self.binary = binary

    def build_command(self, input_path: Path, output_path: Path, options: List[str]) -> List[str]:
        raise NotImplementedError

    def run(
        self,
        input_path: Path,
        output_path: Path,
        options: Optional[str] = None,
    ) -> OptimizerResult:
        input_path = Path(input_path)
        output_path = Path(output_path)
        opts = shlex.split(self.options if options is None else options)
        cmd = self.build_command(input_path, output_path, opts)
        logger.debug("Running %s", shlex.join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                check=False,
            )
        except OSError as exc:
            logger.warning("%s could not be started for %s: %s", self.name, input_path.name, exc)
            output_path.unlink(missing_ok=True)
            return OptimizerResult(0, False)

        size = _output_size(output_path)
        if proc.returncode != 0 or size == 0:
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            logger.warning(
                "%s failed for %s (exit %s): %s",
                self.name,
                input_path.name,
                proc.returncode,
                stderr or "no output written",
            )
            output_path.unlink(missing_ok=True)
            return OptimizerResult(0, False)
        return OptimizerResult(size, True)


class ImgminOptimizer(ExternalOptimizer):
    """General purpose lossy optimizer (https://github.com/rflynn/imgmin)."""

    name = "imgmin"
    binary = "imgmin"

    def build_command(self, input_path: Path, output_path: Path, options: List[str]) -> List[str]:
        return [self.binary, *options, str(input_path), str(output_path)]


class PngquantOptimizer(ExternalOptimizer):
    """Palette quantizer for PNG images (https://pngquant.org)."""

    name = "pngquant"
    binary = "pngquant"

    def build_command(self, input_path: Path, output_path: Path, options: List[str]) -> List[str]:
        return [
            self.binary,
            *options,
            "--force",
            "--output",
            str(output_path),
            "--",
            str(input_path),
        ]


class CwebpOptimizer(ExternalOptimizer):
    """WebP encoder (https://developers.google.com/speed/webp/docs/cwebp)."""

    name = "cwebp"
    binary = "cwebp"

    def build_command(self, input_path: Path, output_path: Path, options: List[str]) -> List[str]:
        return [self.binary, str(input_path), *options, "-o", str(output_path)]


class PillowRasterizer(Optimizer):
    """Writes the first frame of an image as a single still PNG."""

    name = "rasterize"

    def run(
        self,
        input_path: Path,
        output_path: Path,
        options: Optional[str] = None,
    ) -> OptimizerResult:
        output_path = Path(output_path)
        try:
            with Image.open(input_path) as image:
                image.seek(0)
                frame = image.copy()
            frame.save(output_path, format="PNG")
        except (OSError, ValueError, EOFError) as exc:
            logger.warning("Could not rasterize %s: %s", Path(input_path).name, exc)
            output_path.unlink(missing_ok=True)
            return OptimizerResult(0, False)
        size = _output_size(output_path)
        return OptimizerResult(size, size > 0)


@dataclass(frozen=True)
class OptimizerSuite:
    """The competing optimizers applied to every image."""

    imgmin: Optimizer
    quantizer: Optimizer
    webp: Optimizer
    rasterizer: Optimizer


def default_suite(context: PipelineContext) -> OptimizerSuite:
    return OptimizerSuite(
        imgmin=ImgminOptimizer(context.imgmin_options),
        quantizer=PngquantOptimizer(context.pngquant_options),
        webp=CwebpOptimizer(context.webp_options),
        rasterizer=PillowRasterizer(),
    )
