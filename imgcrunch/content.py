"""HTML and CSS reference extraction utilities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from bs4 import BeautifulSoup

IMPORT_QUOTED = "import_quoted"
IMPORT_FN = "import_fn"
BARE_FN = "bare_fn"

_IMPORT_KINDS = (IMPORT_QUOTED, IMPORT_FN)
_KINDS = (IMPORT_QUOTED, IMPORT_FN, BARE_FN)

# A URL body stops at quotes, commas, whitespace and parentheses unless they
# are backslash-escaped.
_URL_BODY = r"(?:[^\\'\",\s()]|\\.)+"
_URL_FN = r"url\(\s*['\"]?(?P<{name}>" + _URL_BODY + r")['\"]?\s*\)"

_CSS_REFERENCE_PATTERN = re.compile(
    r"@import\s*['\"](?P<import_quoted>" + _URL_BODY + r")['\"]"
    r"|@import\s*" + _URL_FN.format(name=IMPORT_FN)
    + r"|" + _URL_FN.format(name=BARE_FN),
    re.IGNORECASE | re.DOTALL,
)
_ESCAPE_PATTERN = re.compile(r"\\(.)", re.DOTALL)
_REFRESH_PREFIX = re.compile(r"^\s*\d*\s*;\s*url\s*=\s*", re.IGNORECASE)


@dataclass(frozen=True)
class CssReference:
    """A URL found in a stylesheet together with the construct it came from."""

    kind: str
    url: str

    @property
    def is_import(self) -> bool:
        return self.kind in _IMPORT_KINDS


def _unescape(value: str) -> str:
    return _ESCAPE_PATTERN.sub(r"\1", value)


def parse_css_references(css: str) -> List[CssReference]:
    """Scan stylesheet text for ``@import`` and ``url()`` references."""
    references: List[CssReference] = []
    for match in _CSS_REFERENCE_PATTERN.finditer(css or ""):
        for kind in _KINDS:
            value = match.group(kind)
            if value:
                references.append(CssReference(kind, _unescape(value)))
                break
    return references


def extract_css_urls(css: str, at_import: bool = False) -> List[str]:
    """Return either the ``@import`` targets or the plain ``url()`` targets."""
    return [
        ref.url for ref in parse_css_references(css) if ref.is_import == at_import
    ]


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def extract_image_refs(html: str) -> List[str]:
    """Collect the ``src`` of every ``<img>`` in document order."""
    refs: List[str] = []
    for img in _soup(html).find_all("img"):
        src = img.get("src")
        if src is not None:
            refs.append(src)
    return refs


def extract_stylesheet_links(html: str) -> List[str]:
    """Collect ``href`` values of ``<link rel="stylesheet">`` elements."""
    hrefs: List[str] = []
    for link in _soup(html).find_all("link"):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "stylesheet" not in (value.lower() for value in rel):
            continue
        href = link.get("href")
        if href:
            hrefs.append(href)
    return hrefs


def extract_meta_refresh(html: str) -> Optional[str]:
    """Return the redirect target of a ``<meta http-equiv="refresh">`` tag."""
    meta = _soup(html).find(
        "meta", attrs={"http-equiv": re.compile(r"^\s*refresh\s*$", re.IGNORECASE)}
    )
    if meta is None:
        return None
    content = meta.get("content") or ""
    if not _REFRESH_PREFIX.match(content):
        return None
    target = _REFRESH_PREFIX.sub("", content, count=1).strip().strip("'\"").strip()
    return target or None
