"""Business-registry portal client.

Two halves:
- a Playwright browser session that renders an entity's company page and lists
  its published documents (the page is built client-side)
- plain `requests` downloads for the document bytes, throttled and retried

The browser session is one expensive shared resource; callers use it serially.
"""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Callable
from urllib.parse import unquote, urlparse

import requests
from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from logging_utils import get_logger
from settings import SETTINGS
from utils.document_names import RECOGNIZED_EXTENSIONS, strip_recognized_extension
from utils.errors import AcquisitionError

logger = get_logger(__name__)


DOWNLOAD_LINK_SELECTOR = 'a[href^="/api/download/"]'
HISTORY_SELECTOR = "div#ModificationHistory"

_DMY_RE = re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b")
_CD_FILENAME_RE = re.compile(r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.IGNORECASE)


class PortalDownloadError(RuntimeError):
    pass


@dataclass(frozen=True)
class RemoteDocument:
    remote_ref: str
    name: str
    date_hint: str | None = None


@dataclass(frozen=True)
class DownloadedFile:
    content: bytes
    extension: str


@dataclass(frozen=True)
class PortalResponse:
    url: str
    status_code: int
    content: bytes
    headers: dict[str, str]


def _safe_preview_bytes(data: bytes | None, *, limit: int = 500) -> str:
    """Log-safe preview of a response body."""

    if not data:
        return ""
    return data[:limit].decode("utf-8", errors="replace")


class DownloadThrottle:
    """Spaces portal requests at least `min_interval` seconds apart.

    Shared by every worker of a sync run, so blob downloads for different
    entities never burst against the portal.
    """

    def __init__(
        self,
        min_interval: float = 0.25,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = float(min_interval)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def acquire(self) -> None:
        # Reserve a slot under the lock, wait outside it.
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.min_interval
        if slot > now:
            self._sleep(slot - now)


_default_throttle = DownloadThrottle()


def _portal_user_agent() -> str:
    ua = SETTINGS.get("PORTAL_USER_AGENT")
    if isinstance(ua, str) and ua.strip():
        return ua.strip()
    return "Mozilla/5.0"


def _parse_retry_after_seconds(value: str | None) -> float | None:
    if not value or not value.strip():
        return None
    try:
        return float(int(value.strip()))
    except ValueError:
        return None


def _sleep_backoff(
    attempt_index: int, *, base_seconds: float = 1.0, cap_seconds: float = 16.0
) -> None:
    # 1, 2, 4 ... capped
    time.sleep(min(base_seconds * (2**attempt_index), cap_seconds))


def _request(
    *,
    url: str,
    session: requests.Session | None = None,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 120.0,
    rate_limiter: DownloadThrottle | None = None,
    max_attempts: int = 3,
) -> PortalResponse:
    """HTTP GET with throttling and retry/backoff on 429/5xx and network errors."""

    if max_attempts <= 0:
        raise ValueError("max_attempts must be >= 1")

    s = session or requests.Session()
    rl = rate_limiter or _default_throttle

    merged_headers = {"User-Agent": _portal_user_agent()}
    if headers:
        merged_headers.update(headers)

    for attempt in range(max_attempts):
        rl.acquire()
        try:
            resp = s.get(url, headers=merged_headers, timeout=timeout_seconds)
        except requests.RequestException as e:
            logger.warning(
                "Portal request failed | url=%s attempt=%s/%s err=%s",
                url,
                attempt + 1,
                max_attempts,
                e,
            )
            if attempt < max_attempts - 1:
                _sleep_backoff(attempt)
                continue
            raise PortalDownloadError(f"Portal request failed url={url}: {e}") from e

        if 200 <= resp.status_code < 300:
            return PortalResponse(
                url=url,
                status_code=resp.status_code,
                content=resp.content,
                headers={str(k).lower(): str(v) for k, v in (resp.headers or {}).items()},
            )

        retry_after_raw = resp.headers.get("Retry-After")
        logger.warning(
            "Portal non-2xx response | status=%s url=%s attempt=%s/%s retry_after=%s body_preview=%s",
            resp.status_code,
            url,
            attempt + 1,
            max_attempts,
            retry_after_raw,
            _safe_preview_bytes(getattr(resp, "content", b"")),
        )

        if resp.status_code in (429, 500, 502, 503, 504) and attempt < max_attempts - 1:
            retry_after = _parse_retry_after_seconds(retry_after_raw)
            if retry_after is not None:
                time.sleep(retry_after)
            else:
                _sleep_backoff(attempt)
            continue

        raise PortalDownloadError(f"Portal request failed status={resp.status_code} url={url}")

    raise PortalDownloadError(f"Portal request failed url={url}")


def extension_from_headers(headers: dict[str, str]) -> str:
    """Best-effort file extension from Content-Disposition / Content-Type."""

    cd = headers.get("content-disposition")
    if cd:
        m = _CD_FILENAME_RE.search(cd)
        if m:
            suffix = PurePosixPath(unquote(m.group(1))).suffix.lower()
            if suffix:
                return suffix

    ctype = (headers.get("content-type") or "").lower()
    if "pdf" in ctype:
        return ".pdf"
    if "msword" in ctype:
        return ".doc"
    if "openxmlformats" in ctype or "wordprocessingml" in ctype:
        return ".docx"
    return ""


def parse_document_links(html: str, base_url: str) -> list[RemoteDocument]:
    """Extract downloadable documents from a rendered company page.

    The date hint is the first DD/MM/YYYY found in the link's table row (or
    list item), which is where the portal prints the publication date.
    """

    soup = BeautifulSoup(html or "", "html.parser")
    seen: set[str] = set()
    documents: list[RemoteDocument] = []

    for link in soup.select(DOWNLOAD_LINK_SELECTOR):
        href = (link.get("href") or "").strip()
        if not href or href in seen:
            continue
        seen.add(href)

        raw_name = unquote(urlparse(href).path.rstrip("/").split("/")[-1])
        name = strip_recognized_extension(raw_name) or f"document_{len(seen)}"

        container = link.find_parent(["tr", "li"]) or link.parent
        text = container.get_text(" ", strip=True) if container is not None else ""
        m = _DMY_RE.search(text)

        documents.append(
            RemoteDocument(
                remote_ref=base_url.rstrip("/") + href,
                name=name,
                date_hint=m.group(0) if m else None,
            )
        )

    return documents


class PortalSession:
    """Browser-backed acquisition session (use as a context manager)."""

    def __init__(
        self,
        *,
        base_url: str,
        user_agent: str | None = None,
        headless: bool = True,
        page_timeout_seconds: float = 60.0,
        download_timeout_seconds: float = 120.0,
        http_session: requests.Session | None = None,
        rate_limiter: DownloadThrottle | None = None,
        playwright_factory: Callable[[], Any] = sync_playwright,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent or _portal_user_agent()
        self.headless = headless
        self.page_timeout_seconds = page_timeout_seconds
        self.download_timeout_seconds = download_timeout_seconds
        self._http = http_session or requests.Session()
        self._rate_limiter = rate_limiter
        self._playwright_factory = playwright_factory

        self._pw: Any = None
        self._browser: Any = None
        self._page: Any = None

    def open(self) -> "PortalSession":
        try:
            self._pw = self._playwright_factory().start()
            self._browser = self._pw.chromium.launch(headless=self.headless)
            context = self._browser.new_context(user_agent=self.user_agent)
            self._page = context.new_page()
        except PlaywrightError as e:
            logger.error("Browser session init failed | err=%s", e)
            self.close()
            raise AcquisitionError(
                f"Could not start browser session: {e}",
                code=AcquisitionError.SESSION_INIT_FAILED,
            ) from e
        logger.info("Browser session opened | base_url=%s headless=%s", self.base_url, self.headless)
        return self

    def close(self) -> None:
        if self._browser is not None:
            try:
                self._browser.close()
            except PlaywrightError:
                logger.debug("Browser close failed", exc_info=True)
        if self._pw is not None:
            try:
                self._pw.stop()
            except PlaywrightError:
                logger.debug("Playwright stop failed", exc_info=True)
        self._pw = self._browser = self._page = None

    def __enter__(self) -> "PortalSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def company_url(self, entity_id: str) -> str:
        return f"{self.base_url}/company/{entity_id}"

    def fetch_document_list(self, entity_id: str) -> list[RemoteDocument]:
        if self._page is None:
            raise AcquisitionError(
                "Browser session is not open", code=AcquisitionError.SESSION_INIT_FAILED
            )

        url = self.company_url(entity_id)
        timeout_ms = int(self.page_timeout_seconds * 1000)
        try:
            response = self._page.goto(url, wait_until="networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise AcquisitionError(
                f"Timed out loading {url}",
                code=AcquisitionError.NAVIGATION_TIMEOUT,
                details={"entity_id": entity_id},
            ) from e
        except PlaywrightError as e:
            raise AcquisitionError(
                f"Failed to load {url}: {e}",
                code=AcquisitionError.CRAWL_ERROR,
                details={"entity_id": entity_id},
            ) from e

        if response is not None and response.status == 404:
            raise AcquisitionError(
                f"Entity {entity_id} not found",
                code=AcquisitionError.NOT_FOUND,
                details={"entity_id": entity_id},
            )

        try:
            self._page.wait_for_selector(HISTORY_SELECTOR, timeout=2000)
        except PlaywrightTimeoutError:
            # Some companies have no modification history block; links may still exist.
            logger.debug("No history section | entity=%s", entity_id)

        documents = parse_document_links(self._page.content(), self.base_url)
        logger.info("Listed documents | entity=%s count=%s", entity_id, len(documents))
        return documents

    def fetch_bytes(self, remote_ref: str) -> DownloadedFile:
        resp = _request(
            url=remote_ref,
            session=self._http,
            headers={"User-Agent": self.user_agent, "Referer": self.base_url + "/"},
            timeout_seconds=self.download_timeout_seconds,
            rate_limiter=self._rate_limiter,
        )
        ext = extension_from_headers(resp.headers)
        if ext not in RECOGNIZED_EXTENSIONS:
            url_ext = PurePosixPath(urlparse(remote_ref).path).suffix.lower()
            ext = url_ext if url_ext in RECOGNIZED_EXTENSIONS else ".pdf"
        return DownloadedFile(content=resp.content, extension=ext)
