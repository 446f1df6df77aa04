"""Image downloading and signature classification utilities."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import requests
from filetype import guess

from .models import FetchRejected, ImageAsset
from .utils import url_hash, write_bytes_atomic

logger = logging.getLogger("imgcrunch")

# Signature extension (as reported by filetype) -> (format, stored extension)
ACCEPTED_FORMATS = {
    "gif": ("gif", "gif"),
    "jpg": ("jpeg", "jpg"),
    "png": ("png", "png"),
    # filetype reports animated PNGs separately; they still carry the PNG signature.
    "apng": ("png", "png"),
}
STORED_EXTENSIONS = tuple(dict.fromkeys(ext for _, ext in ACCEPTED_FORMATS.values()))
_FORMAT_BY_EXTENSION = {ext: fmt for fmt, ext in ACCEPTED_FORMATS.values()}


def detect_image_format(data: Union[bytes, bytearray, str, Path]) -> Optional[str]:
    """Classify bytes (or a file) by signature; returns gif, jpeg, png or None."""
    if isinstance(data, Path):
        data = str(data)
    try:
        kind = guess(data)
    except (OSError, TypeError):
        return None
    if kind is None:
        return None
    accepted = ACCEPTED_FORMATS.get(kind.extension.lower())
    return accepted[0] if accepted else None


def extension_for(image_format: str) -> str:
    for fmt, ext in ACCEPTED_FORMATS.values():
        if fmt == image_format:
            return ext
    raise ValueError(f"Unsupported image format: {image_format}")


def find_existing(dest_dir: Path, content_hash: str) -> Optional[Path]:
    """Return the stored copy for a hash, whatever extension it was saved with."""
    for ext in STORED_EXTENSIONS:
        candidate = dest_dir / f"{content_hash}.{ext}"
        if candidate.is_file():
            return candidate
    return None


def _asset_from_path(url: str, content_hash: str, path: Path) -> ImageAsset:
    ext = path.suffix.lstrip(".").lower()
    return ImageAsset(
        source_url=url,
        content_hash=content_hash,
        local_name=path.name,
        byte_size=path.stat().st_size,
        format=_FORMAT_BY_EXTENSION.get(ext, ext),
    )


def fetch_image(
    session: requests.Session,
    url: str,
    dest_dir: Path,
    timeout: float = 15.0,
) -> Union[ImageAsset, FetchRejected]:
    """Download one image and store it as ``{md5(url)}.{ext}`` under ``dest_dir``."""
    content_hash = url_hash(url)
    existing = find_existing(dest_dir, content_hash)
    if existing is not None:
        logger.debug("Already fetched %s as %s", url, existing.name)
        return _asset_from_path(url, content_hash, existing)

    try:
        resp = session.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Failed to fetch image %s: %s", url, exc)
        return FetchRejected(url, f"request failed: {exc}")

    data = resp.content
    image_format = detect_image_format(data) if data else None
    if image_format is None:
        logger.warning(
            "Skipping %s: unsupported image type (Content-Type=%s)",
            url,
            resp.headers.get("Content-Type", ""),
        )
        return FetchRejected(url, "unsupported image signature")

    local_name = f"{content_hash}.{extension_for(image_format)}"
    destination = dest_dir / local_name
    try:
        write_bytes_atomic(destination, data)
    except OSError as exc:
        logger.warning("Failed to write image %s: %s", destination, exc)
        return FetchRejected(url, f"write failed: {exc}")

    logger.debug("Saved %s to %s", url, destination)
    return ImageAsset(
        source_url=url,
        content_hash=content_hash,
        local_name=local_name,
        byte_size=len(data),
        format=image_format,
    )
