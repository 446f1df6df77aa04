"""Data models used throughout the image pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class PipelineError(RuntimeError):
    """Fatal condition that halts the whole run."""


class PipelineCancelled(PipelineError):
    """Raised when a stage stops early because cancellation was requested."""


@dataclass(frozen=True)
class ImageAsset:
    """Downloaded and validated image stored under its host directory."""

    source_url: str
    content_hash: str
    local_name: str
    byte_size: int
    format: str


@dataclass(frozen=True)
class FetchRejected:
    """A reference that could not be turned into an image asset."""

    url: str
    reason: str


@dataclass
class HostFetchResult:
    """Outcome of crawling one host's homepage."""

    host: str
    assets: List[ImageAsset] = field(default_factory=list)
    rejected: List[FetchRejected] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class OptimizationCandidate:
    """One optimizer's output for an image, competing with others on size."""

    strategy_name: str
    output_path: Path
    byte_size: int


class AssetState(Enum):
    CLASSIFIED = "classified"
    ANIMATION_CHECKED = "animation-checked"
    RASTERIZED = "rasterized"
    IMGMIN_PASS = "imgmin-pass"
    QUANTIZE_PASS = "quantize-pass"
    WEBP_PASS = "webp-pass"
    DONE = "done"


@dataclass
class AssetOutcome:
    """Trace of one image through the optimization state machine."""

    source: Path
    format: str
    states: List[AssetState] = field(default_factory=list)
    animated: bool = False
    candidates: List[OptimizationCandidate] = field(default_factory=list)
    retained: Optional[OptimizationCandidate] = None
    webp: Optional[OptimizationCandidate] = None
    fallback: bool = False


@dataclass(frozen=True)
class FileStats:
    name: str
    size: int
    format: str


@dataclass
class TreeStats:
    """Image count and byte totals for one host inside one output tree."""

    image_count: int = 0
    total_bytes: int = 0
    files: List[FileStats] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "imageCount": self.image_count,
            "sizeBytes": self.total_bytes,
            "files": [
                {"name": item.name, "size": item.size, "format": item.format}
                for item in self.files
            ],
        }


@dataclass
class StatsRecord:
    """Per-host statistics keyed by tree name (images, imgmin, webp)."""

    host: str
    trees: Dict[str, TreeStats] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {name: tree.to_dict() for name, tree in self.trees.items()}


@dataclass
class StageResult:
    """Timing and status details for a pipeline stage."""

    name: str
    status: str
    seconds: float = 0.0
    detail: Any = None

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"
