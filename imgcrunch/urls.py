"""Resolve raw image and stylesheet references into fetchable URLs."""

from __future__ import annotations

import posixpath
import re
from typing import List, Optional, Union
from urllib.parse import urlsplit, urlunsplit

_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")

NormalizedURL = Union[str, None, bool]


def _is_fully_qualified(url: str) -> bool:
    if not _SCHEME_PATTERN.match(url):
        return False
    try:
        return bool(urlsplit(url).netloc)
    except ValueError:
        return False


def _base_from_url(url: str) -> str:
    parsed = urlsplit(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def _collapse_dot_segments(path: str) -> str:
    if not path:
        return path
    collapsed = posixpath.normpath(path)
    if path.endswith("/") and not collapsed.endswith("/"):
        collapsed += "/"
    return collapsed


def _resolve_parent_refs(stylesheet_path: str, ref: str) -> str:
    """Resolve a ``../`` reference against the stylesheet's directory."""
    parsed = urlsplit(stylesheet_path)
    directory = posixpath.dirname(parsed.path)
    segments: List[str] = [part for part in directory.split("/") if part]
    for part in ref.split("/"):
        if part == "..":
            if segments:
                segments.pop()
        elif part and part != ".":
            segments.append(part)
    if ref.endswith("/"):
        segments.append("")
    return f"{parsed.scheme}://{parsed.netloc}/" + "/".join(segments)


def normalize_url(
    raw: Optional[str],
    base_host: str,
    *,
    stylesheet_path: Optional[str] = None,
    keep_query_string: bool = False,
) -> NormalizedURL:
    """Turn a raw reference into an absolute URL.

    ``base_host`` may be a bare domain or a ``scheme://host`` prefix. When
    ``stylesheet_path`` is given its scheme and host replace ``base_host``.

    Returns ``None`` when the reference is empty or cannot be resolved or
    parsed, and ``False`` when it parses but lacks a scheme or host. Both
    mean the reference should be skipped.
    """
    if raw is None:
        return None
    url = raw.strip()
    if not url or url.lower().startswith("data:"):
        return None

    if stylesheet_path:
        try:
            base_host = _base_from_url(stylesheet_path)
        except ValueError:
            return None
    base_host = base_host.rstrip("/")

    resolved = not _is_fully_qualified(url)
    if resolved:
        if url.startswith(".."):
            if not stylesheet_path:
                return None
            try:
                url = _resolve_parent_refs(stylesheet_path, url)
            except ValueError:
                return None
        elif url.startswith("//"):
            url = "http:" + url
        elif url.startswith("/"):
            url = base_host + url
        else:
            url = base_host + "/" + url

        if not _SCHEME_PATTERN.match(url):
            url = "http://" + url

    try:
        parsed = urlsplit(url)
        hostname = parsed.hostname
    except ValueError:
        return None
    if not parsed.scheme or not hostname:
        return False

    path = _collapse_dot_segments(parsed.path) if resolved else parsed.path
    if keep_query_string:
        return urlunsplit((parsed.scheme, parsed.netloc, path, parsed.query, parsed.fragment))
    return f"{parsed.scheme}://{parsed.netloc}{path}"


def page_base(url: str) -> str:
    """Return the ``scheme://host`` prefix references on a page resolve against."""
    return _base_from_url(url)
