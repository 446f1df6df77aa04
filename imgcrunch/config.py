"""Configuration objects and constants for the image pipeline."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_SEED_URL = "http://s3.amazonaws.com/alexa-static/top-1m.csv.zip"

HOSTS_MIN_COUNT = 1
HOSTS_MAX_COUNT = 1_000_000
HOSTS_DEFAULT_COUNT = 10

DEFAULT_FETCH_WORKERS = 4
DEFAULT_OPTIMIZE_WORKERS = os.cpu_count() or 4
DEFAULT_REQUEST_TIMEOUT = 15.0
MAX_REDIRECTS = 20

REQUEST_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "User-Agent": "Mozilla/5.0 (Windows NT 6.1; WOW64; rv:21.0) Gecko/20100101 Firefox/21.0",
}

IMGMIN_OPTIONS = ""
PNGQUANT_OPTIONS = ""
WEBP_OPTIONS = "-quiet -af -mt -m 6 -f 40 -q 80"
WEBP_ALPHA_OPTIONS = "-alpha_q 80 -alpha_cleanup -alpha_method 1 -alpha_filter best"


@dataclass(frozen=True)
class PipelineContext:
    """Resolved paths and run parameters shared by every pipeline stage."""

    data_root: Path
    host_count: int = HOSTS_DEFAULT_COUNT
    seed_url: str = DEFAULT_SEED_URL
    fetch_workers: int = DEFAULT_FETCH_WORKERS
    optimize_workers: int = DEFAULT_OPTIMIZE_WORKERS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    follow_stylesheets: bool = True
    imgmin_options: str = IMGMIN_OPTIONS
    pngquant_options: str = PNGQUANT_OPTIONS
    webp_options: str = WEBP_OPTIONS
    webp_alpha_options: str = WEBP_ALPHA_OPTIONS
    cancel_event: threading.Event = field(
        default_factory=threading.Event, compare=False, repr=False
    )

    @property
    def archive_path(self) -> Path:
        return self.data_root / "top-1m.csv.zip"

    @property
    def csv_path(self) -> Path:
        return self.data_root / "top-1m.csv"

    @property
    def hosts_path(self) -> Path:
        return self.data_root / "hosts.json"

    @property
    def images_root(self) -> Path:
        return self.data_root / "images"

    @property
    def imgmin_root(self) -> Path:
        return self.data_root / "images-imgmin"

    @property
    def webp_root(self) -> Path:
        return self.data_root / "images-webp"

    @property
    def tmp_root(self) -> Path:
        return self.data_root / "images-tmp"

    @property
    def fetched_marker(self) -> Path:
        return self.data_root / ".fetched"

    @property
    def optimized_marker(self) -> Path:
        return self.data_root / ".optimized"

    @property
    def stats_path(self) -> Path:
        return self.data_root / "stats.json"

    @property
    def webp_alpha_profile(self) -> str:
        """cwebp options for PNG-sourced images (base profile plus alpha tuning)."""
        return f"{self.webp_options} {self.webp_alpha_options}".strip()

    def cancelled(self) -> bool:
        return self.cancel_event.is_set()
