"""Seed archive download, extraction, and host list generation."""

from __future__ import annotations

import csv
import json
import logging
import zipfile
from pathlib import Path
from typing import List, Set, Tuple

import requests

from .config import REQUEST_HEADERS, PipelineContext
from .models import PipelineError
from .utils import write_text_atomic

logger = logging.getLogger("imgcrunch")

_CHUNK_SIZE = 64 * 1024


def download_archive(context: PipelineContext) -> Path:
    """Stream the seed archive to disk unless it is already present."""
    target = context.archive_path
    if target.exists():
        return target
    try:
        context.data_root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PipelineError(f"Could not create directory {context.data_root}: {exc}") from exc

    logger.info("Downloading seed archive from %s", context.seed_url)
    partial = target.with_suffix(target.suffix + ".part")
    try:
        with requests.get(
            context.seed_url,
            headers=REQUEST_HEADERS,
            stream=True,
            timeout=context.request_timeout,
        ) as resp:
            if resp.status_code != 200:
                raise PipelineError(
                    f"Download server did not reply with OK (status {resp.status_code})"
                )
            with open(partial, "wb") as handle:
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    if chunk:
                        handle.write(chunk)
    except requests.RequestException as exc:
        partial.unlink(missing_ok=True)
        raise PipelineError(f"Could not download seed archive: {exc}") from exc
    except OSError as exc:
        partial.unlink(missing_ok=True)
        raise PipelineError(f"Could not write seed archive {target}: {exc}") from exc
    except PipelineError:
        partial.unlink(missing_ok=True)
        raise
    partial.replace(target)
    logger.info("Saved seed archive to %s", target)
    return target


def extract_archive(context: PipelineContext) -> Path:
    """Extract the first member of the seed archive as ``top-1m.csv``."""
    target = context.csv_path
    try:
        with zipfile.ZipFile(context.archive_path) as archive:
            members = [info for info in archive.infolist() if not info.is_dir()]
            if not members:
                raise PipelineError(f"Seed archive {context.archive_path} is empty")
            data = archive.read(members[0])
    except (OSError, zipfile.BadZipFile) as exc:
        raise PipelineError(f"Could not open archive {context.archive_path}: {exc}") from exc
    try:
        write_text_atomic(target, data.decode("utf-8", errors="replace"))
    except OSError as exc:
        raise PipelineError(f"Could not write {target}: {exc}") from exc
    logger.info("Extracted %s to %s", members[0].filename, target)
    return target


def run_seed(context: PipelineContext) -> Path:
    """Seed stage: make sure the ranked host CSV exists."""
    download_archive(context)
    return extract_archive(context)


def parse_hosts(csv_path: Path, count: int) -> List[str]:
    """Read the host column of the first ``count`` ``rank,host`` rows."""
    hosts: List[str] = []
    seen: Set[str] = set()
    try:
        with open(csv_path, newline="", encoding="utf-8", errors="replace") as handle:
            for row in csv.reader(handle):
                if len(hosts) >= count:
                    break
                if len(row) < 2 or not row[1].strip():
                    continue
                host = row[1].strip()
                if host not in seen:
                    seen.add(host)
                    hosts.append(host)
    except OSError as exc:
        raise PipelineError(f"Could not open CSV file {csv_path}: {exc}") from exc
    return hosts


def run_hostlist(context: PipelineContext) -> List[str]:
    """Host list stage: write the first N hosts of the seed CSV to ``hosts.json``."""
    hosts = parse_hosts(context.csv_path, context.host_count)
    if not hosts:
        raise PipelineError(
            f"Could not parse CSV file [ hostCount: {context.host_count} ]"
        )
    try:
        write_text_atomic(context.hosts_path, json.dumps(hosts))
    except OSError as exc:
        raise PipelineError(f"Could not write {context.hosts_path}: {exc}") from exc
    logger.info("Wrote %d host(s) to %s", len(hosts), context.hosts_path)
    return hosts


def load_hosts(context: PipelineContext) -> Tuple[str, ...]:
    """Load the immutable host list for this run."""
    try:
        data = json.loads(context.hosts_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise PipelineError(f"Could not read host list {context.hosts_path}: {exc}") from exc
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise PipelineError(f"Host list {context.hosts_path} is not a list of names")
    return tuple(data)
