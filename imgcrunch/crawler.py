"""High-level orchestration for crawling homepages and collecting images."""

from __future__ import annotations

import concurrent.futures as cf
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Set, Tuple

import requests

from .config import MAX_REDIRECTS, REQUEST_HEADERS, PipelineContext
from .content import (
    extract_css_urls,
    extract_image_refs,
    extract_meta_refresh,
    extract_stylesheet_links,
)
from .images import fetch_image
from .models import FetchRejected, HostFetchResult, PipelineCancelled, PipelineError
from .seed import load_hosts
from .urls import normalize_url, page_base
from .utils import touch_atomic

logger = logging.getLogger("imgcrunch")

SessionFactory = Callable[[], requests.Session]


def build_session() -> requests.Session:
    """Create a session that looks like a desktop browser to the crawled hosts."""
    session = requests.Session()
    session.headers.update(REQUEST_HEADERS)
    session.max_redirects = MAX_REDIRECTS
    return session


def render_homepage(
    session: requests.Session,
    url: str,
    timeout: float,
) -> Tuple[str, str]:
    """GET a page and return its HTML and final URL after HTTP redirects."""
    resp = session.get(url, timeout=timeout)
    resp.raise_for_status()
    return resp.text, resp.url or url


def load_homepage(
    session: requests.Session,
    host: str,
    timeout: float,
) -> Tuple[str, str]:
    """Fetch a host's homepage, following at most one meta refresh."""
    html, final_url = render_homepage(session, f"http://{host}", timeout)
    refresh = extract_meta_refresh(html)
    if not refresh:
        return html, final_url

    target = normalize_url(refresh, page_base(final_url), keep_query_string=True)
    if not target:
        logger.warning("Ignoring malformed meta refresh on %s: %s", host, refresh)
        return html, final_url
    logger.debug("Following meta refresh on %s to %s", host, target)
    try:
        return render_homepage(session, target, timeout)
    except requests.RequestException as exc:
        logger.warning("Meta refresh target %s for %s failed: %s", target, host, exc)
        return html, final_url


class _HostCollector:
    """Deduplicates references and records per-host fetch outcomes."""

    def __init__(
        self,
        session: requests.Session,
        context: PipelineContext,
        result: HostFetchResult,
        host_dir: Path,
    ) -> None:
        self.session = session
        self.context = context
        self.result = result
        self.host_dir = host_dir
        self._seen: Set[str] = set()

    def collect(self, raw: str, base: str, stylesheet_path: Optional[str] = None) -> None:
        url = normalize_url(raw, base, stylesheet_path=stylesheet_path)
        if not url:
            logger.debug("Skipping unresolvable reference %r on %s", raw, self.result.host)
            self.result.rejected.append(FetchRejected(raw, "unresolvable reference"))
            return
        if url in self._seen:
            return
        self._seen.add(url)
        outcome = fetch_image(self.session, url, self.host_dir, self.context.request_timeout)
        if isinstance(outcome, FetchRejected):
            self.result.rejected.append(outcome)
        else:
            self.result.assets.append(outcome)

    def fetch_text(self, url: str) -> Optional[str]:
        try:
            resp = self.session.get(url, timeout=self.context.request_timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to fetch stylesheet %s: %s", url, exc)
            return None
        return resp.text

    def collect_stylesheet(self, href: str, base: str, follow_imports: bool = True) -> None:
        stylesheet_url = normalize_url(href, base, keep_query_string=True)
        if not stylesheet_url:
            logger.debug("Skipping unresolvable stylesheet %r", href)
            return
        css = self.fetch_text(stylesheet_url)
        if css is None:
            return
        for raw in extract_css_urls(css):
            if self.context.cancelled():
                return
            self.collect(raw, base, stylesheet_path=stylesheet_url)
        if not follow_imports:
            return
        for raw in extract_css_urls(css, at_import=True):
            imported = normalize_url(
                raw, base, stylesheet_path=stylesheet_url, keep_query_string=True
            )
            if imported:
                self.collect_stylesheet(imported, base, follow_imports=False)


def fetch_host(
    host: str,
    context: PipelineContext,
    session: requests.Session,
) -> HostFetchResult:
    """Download every image referenced by a host's homepage and its stylesheets."""
    result = HostFetchResult(host=host)
    host_dir = context.images_root / host
    try:
        host_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PipelineError(f"Could not create directory {host_dir}: {exc}") from exc

    logger.info("Fetching images from %s", host)
    try:
        html, final_url = load_homepage(session, host, context.request_timeout)
    except requests.RequestException as exc:
        logger.warning("Could not load homepage of %s: %s", host, exc)
        result.error = str(exc)
        return result

    base = page_base(final_url)
    collector = _HostCollector(session, context, result, host_dir)
    for raw in extract_image_refs(html):
        if context.cancelled():
            return result
        collector.collect(raw, base)

    if context.follow_stylesheets:
        for href in extract_stylesheet_links(html):
            if context.cancelled():
                return result
            collector.collect_stylesheet(href, base)

    logger.info(
        "%s: %d image(s) saved, %d reference(s) skipped",
        host,
        len(result.assets),
        len(result.rejected),
    )
    return result


def _fetch_host_worker(
    host: str,
    context: PipelineContext,
    session_factory: SessionFactory,
) -> Optional[HostFetchResult]:
    if context.cancelled():
        return None
    session = session_factory()
    try:
        return fetch_host(host, context, session)
    finally:
        session.close()


def run_fetch(
    context: PipelineContext,
    session_factory: SessionFactory = build_session,
    hosts: Optional[Sequence[str]] = None,
) -> List[HostFetchResult]:
    """Fetch stage: crawl all hosts in parallel, then write the ``.fetched`` marker."""
    hosts = tuple(hosts) if hosts is not None else load_hosts(context)
    try:
        context.images_root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PipelineError(f"Could not create directory {context.images_root}: {exc}") from exc

    start = time.perf_counter()
    results: List[HostFetchResult] = []
    workers = max(1, min(context.fetch_workers, len(hosts) or 1))
    with cf.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as ex:
        futures = {
            ex.submit(_fetch_host_worker, host, context, session_factory): host
            for host in hosts
        }
        try:
            for fut in cf.as_completed(futures):
                host = futures[fut]
                try:
                    outcome = fut.result()
                except PipelineError:
                    context.cancel_event.set()
                    raise
                except Exception:  # pylint: disable=broad-except
                    logger.exception("Unexpected error while fetching %s", host)
                    continue
                if outcome is not None:
                    results.append(outcome)
        except KeyboardInterrupt:
            context.cancel_event.set()
            raise

    if context.cancelled():
        raise PipelineCancelled("Fetch stage cancelled before all hosts finished")

    try:
        touch_atomic(context.fetched_marker)
    except OSError as exc:
        raise PipelineError(f"Could not write {context.fetched_marker}: {exc}") from exc
    total = sum(len(item.assets) for item in results)
    logger.info(
        "Fetched %d image(s) from %d host(s) in %.2fs",
        total,
        len(results),
        time.perf_counter() - start,
    )
    return results
