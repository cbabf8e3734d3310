from __future__ import annotations

from types import SimpleNamespace

import pytest
import requests
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

import utils.portal_client as api
from utils.errors import AcquisitionError


class _FakeResponse:
    def __init__(
        self, *, status_code: int, content: bytes = b"ok", headers: dict | None = None
    ):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}


class _FakeSession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append({"url": url, "headers": headers or {}, "timeout": timeout})
        if not self._responses:
            raise RuntimeError("No more fake responses")
        r = self._responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


class _FakeLimiter:
    def __init__(self):
        self.acquires = 0

    def acquire(self):
        self.acquires += 1


def test_user_agent_is_always_present(monkeypatch):
    monkeypatch.setitem(api.SETTINGS, "PORTAL_USER_AGENT", "UnitTest UA")

    s = _FakeSession([_FakeResponse(status_code=200, headers={"Content-Type": "application/pdf"})])
    limiter = _FakeLimiter()

    r = api._request(url="https://example.test/", session=s, rate_limiter=limiter)

    assert s.calls[0]["headers"]["User-Agent"] == "UnitTest UA"
    assert limiter.acquires == 1
    # Header names are normalized to lower case.
    assert r.headers == {"content-type": "application/pdf"}


@pytest.mark.parametrize("status_code", [429, 500, 502, 503, 504])
def test_retry_on_retryable_status_codes(monkeypatch, status_code):
    s = _FakeSession(
        [
            _FakeResponse(status_code=status_code, content=b"nope", headers={"Retry-After": "0"}),
            _FakeResponse(status_code=200, content=b"ok"),
        ]
    )
    limiter = _FakeLimiter()

    # Avoid real sleeping
    monkeypatch.setattr(api.time, "sleep", lambda _x: None)

    r = api._request(url="https://example.test/", session=s, rate_limiter=limiter, max_attempts=3)
    assert r.status_code == 200
    assert len(s.calls) == 2
    assert limiter.acquires == 2


def test_network_errors_are_retried_then_raised(monkeypatch):
    sleeps = []
    monkeypatch.setattr(api.time, "sleep", sleeps.append)
    s = _FakeSession([requests.ConnectionError("reset")] * 3)

    with pytest.raises(api.PortalDownloadError):
        api._request(url="https://example.test/", session=s, rate_limiter=_FakeLimiter(), max_attempts=3)

    assert len(s.calls) == 3
    assert sleeps == [1.0, 2.0]


def test_non_retryable_status_raises():
    s = _FakeSession([_FakeResponse(status_code=403, content=b"no")])

    with pytest.raises(api.PortalDownloadError):
        api._request(url="https://example.test/", session=s, rate_limiter=_FakeLimiter(), max_attempts=3)
    assert len(s.calls) == 1


@pytest.mark.parametrize(
    "headers,expected",
    [
        ({"content-disposition": 'attachment; filename="Σύσταση.DOCX"'}, ".docx"),
        ({"content-disposition": "attachment; filename*=UTF-8''%CE%91.doc"}, ".doc"),
        ({"content-type": "application/pdf"}, ".pdf"),
        ({"content-type": "application/msword"}, ".doc"),
        (
            {"content-type": "application/vnd.openxmlformats-officedocument.wordprocessingml.document"},
            ".docx",
        ),
        ({"content-type": "application/octet-stream"}, ""),
        ({}, ""),
    ],
)
def test_extension_from_headers(headers, expected):
    assert api.extension_from_headers(headers) == expected


PAGE = """
<html><body>
<div id="ModificationHistory">
<table>
  <tr><td>01/02/2020</td><td><a href="/api/download/111/Σύσταση.pdf">Λήψη</a></td></tr>
  <tr><td>Καταχώριση 15/06/2021</td><td><a href="/api/download/222">Λήψη</a></td></tr>
  <tr><td>χωρίς ημερομηνία</td><td><a href="/api/download/333/Ανακοίνωση.docx">Λήψη</a></td></tr>
  <tr><td>01/02/2020</td><td><a href="/api/download/111/Σύσταση.pdf">Διπλό</a></td></tr>
</table>
<a href="/company/123">not a document</a>
</div>
</body></html>
"""


def test_parse_document_links():
    docs = api.parse_document_links(PAGE, "https://portal.test/")

    assert [d.remote_ref for d in docs] == [
        "https://portal.test/api/download/111/Σύσταση.pdf",
        "https://portal.test/api/download/222",
        "https://portal.test/api/download/333/Ανακοίνωση.docx",
    ]
    assert [d.name for d in docs] == ["Σύσταση", "222", "Ανακοίνωση"]
    assert [d.date_hint for d in docs] == ["01/02/2020", "15/06/2021", None]


def test_parse_document_links_empty_page():
    assert api.parse_document_links("", "https://portal.test") == []


class _FakePage:
    def __init__(self, *, html=PAGE, status=200, goto_error=None, selector_error=None):
        self.html = html
        self.status = status
        self.goto_error = goto_error
        self.selector_error = selector_error
        self.visited = []

    def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        if self.goto_error is not None:
            raise self.goto_error
        return SimpleNamespace(status=self.status)

    def wait_for_selector(self, selector, timeout=None):
        if self.selector_error is not None:
            raise self.selector_error

    def content(self):
        return self.html


class _FakeBrowser:
    def __init__(self, page):
        self.page = page
        self.closed = False

    def new_context(self, user_agent=None):
        return SimpleNamespace(new_page=lambda: self.page)

    def close(self):
        self.closed = True


class _FakePlaywright:
    def __init__(self, page, *, launch_error=None):
        self.browser = _FakeBrowser(page)
        self.launch_error = launch_error
        self.stopped = False
        self.chromium = SimpleNamespace(launch=self._launch)

    def _launch(self, headless=True):
        if self.launch_error is not None:
            raise self.launch_error
        return self.browser

    def start(self):
        return self

    def stop(self):
        self.stopped = True


def _session(pw, **kwargs):
    return api.PortalSession(base_url="https://portal.test", playwright_factory=lambda: pw, **kwargs)


def test_session_lists_documents_and_closes():
    page = _FakePage(selector_error=PlaywrightTimeoutError("no history"))
    pw = _FakePlaywright(page)

    with _session(pw) as session:
        docs = session.fetch_document_list("123")

    assert page.visited == ["https://portal.test/company/123"]
    assert len(docs) == 3
    assert pw.browser.closed and pw.stopped


@pytest.mark.parametrize(
    "page,code",
    [
        (_FakePage(status=404), "not_found"),
        (_FakePage(goto_error=PlaywrightTimeoutError("Timeout 60000ms exceeded")), "navigation_timeout"),
        (_FakePage(goto_error=PlaywrightError("net::ERR_NAME_NOT_RESOLVED")), "crawl_error"),
    ],
)
def test_listing_failures_are_classified(page, code):
    with _session(_FakePlaywright(page)) as session:
        with pytest.raises(AcquisitionError) as ei:
            session.fetch_document_list("123")
    assert ei.value.code == code


def test_browser_launch_failure_is_session_init_failed():
    pw = _FakePlaywright(_FakePage(), launch_error=PlaywrightError("Executable doesn't exist"))

    with pytest.raises(AcquisitionError) as ei:
        _session(pw).open()

    assert ei.value.code == "session_init_failed"
    assert pw.stopped


def test_fetch_bytes_uses_headers_then_url_suffix():
    http = _FakeSession(
        [
            _FakeResponse(status_code=200, content=b"W", headers={"Content-Type": "application/msword"}),
            _FakeResponse(status_code=200, content=b"X", headers={}),
            _FakeResponse(status_code=200, content=b"P", headers={}),
        ]
    )
    session = _session(_FakePlaywright(_FakePage()), http_session=http, rate_limiter=_FakeLimiter())

    first = session.fetch_bytes("https://portal.test/api/download/1")
    second = session.fetch_bytes("https://portal.test/api/download/2/file.DOCX")
    third = session.fetch_bytes("https://portal.test/api/download/3")

    assert (first.content, first.extension) == (b"W", ".doc")
    assert second.extension == ".docx"
    assert third.extension == ".pdf"
    assert http.calls[0]["headers"]["Referer"] == "https://portal.test/"


def test_download_throttle_spaces_requests():
    now = [10.0]
    waits = []

    def _sleep(seconds):
        waits.append(seconds)
        now[0] += seconds

    throttle = api.DownloadThrottle(0.5, clock=lambda: now[0], sleep=_sleep)
    throttle.acquire()
    throttle.acquire()
    now[0] += 2.0
    throttle.acquire()

    assert waits == [0.5]

    with pytest.raises(ValueError):
        api.DownloadThrottle(-1)
