"""Shared helpers for tests.

Intended usage:
- spin up a temporary SQLite database
- scripted fakes for the extraction service and the portal session

These utilities keep tests small and consistent.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from db import make_engine
from models import Base
from utils.content_extractor import DocumentContent
from utils.errors import AcquisitionError
from utils.portal_client import DownloadedFile, PortalDownloadError, RemoteDocument

__all__ = [
    "make_sqlite_engine",
    "create_empty_sqlite_db",
    "FakeServiceError",
    "ScriptedTransport",
    "ScriptedExtractionClient",
    "FakePortalSession",
    "fake_content",
]


def make_sqlite_engine(db_path: Path | str) -> Engine:
    """SQLite engine with the same pragmas the app uses."""

    return make_engine(f"sqlite:///{db_path}")


def create_empty_sqlite_db(db_path: Path) -> tuple[Session, Engine]:
    """Create an empty SQLite DB file and initialize all models.

    Returns (session, engine).
    """

    engine = make_sqlite_engine(db_path)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    return SessionLocal(), engine


def fake_content(path: Path) -> DocumentContent:
    """Content extractor stand-in: never touches the file."""

    return DocumentContent(data=Path(path).name.encode("utf-8"), mime_type="application/pdf")


class FakeServiceError(Exception):
    """Looks like a google.genai APIError: `.code` plus a JSON `.details` body."""

    def __init__(self, code: int, message: str = "", details: Any = None):
        super().__init__(f"{code} {message}".strip())
        self.code = code
        self.details = details


class ScriptedTransport:
    """Returns / raises the scripted items in order and records every call."""

    def __init__(self, items):
        self._items = list(items)
        self.calls: list[dict] = []

    def generate(self, prompt, content, schema):
        self.calls.append({"prompt": prompt, "content": content, "schema": schema})
        if not self._items:
            raise RuntimeError("No more scripted responses")
        item = self._items.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class ScriptedExtractionClient:
    """Extraction client keyed by document name.

    `responses[name]` is raw text, an exception to raise, or a list consumed in
    order when the same document is extracted more than once.
    """

    def __init__(self, responses: dict[str, Any]):
        self._responses = {k: (list(v) if isinstance(v, list) else v) for k, v in responses.items()}
        self.calls: list[dict] = []

    @property
    def identifiers(self) -> list[str]:
        return [c["identifier"] for c in self.calls]

    def extract(self, prompt, content, *, identifier, schema, max_attempts=None, initial_delay=None):
        self.calls.append({"identifier": identifier, "prompt": prompt, "schema": schema})
        item = self._responses[identifier]
        if isinstance(item, list):
            item = item.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class FakePortalSession:
    """In-memory acquisition session.

    `listings[entity_id]` is a list of RemoteDocument or an AcquisitionError to
    raise; `blobs[remote_ref]` is the document body (bytes) or an exception.
    """

    def __init__(
        self,
        listings: dict[str, Any] | None = None,
        blobs: dict[str, Any] | None = None,
        *,
        extension: str = ".pdf",
        open_error: Exception | None = None,
    ):
        self.listings = dict(listings or {})
        self.blobs = dict(blobs or {})
        self.extension = extension
        self.open_error = open_error
        self.listed: list[str] = []
        self.fetched: list[str] = []
        self.opened = False
        self.closed = False

    def __enter__(self):
        if self.open_error is not None:
            raise self.open_error
        self.opened = True
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True

    def fetch_document_list(self, entity_id: str) -> list[RemoteDocument]:
        self.listed.append(entity_id)
        item = self.listings.get(entity_id)
        if item is None:
            raise AcquisitionError(f"Entity {entity_id} not found", code=AcquisitionError.NOT_FOUND)
        if isinstance(item, BaseException):
            raise item
        return list(item)

    def fetch_bytes(self, remote_ref: str) -> DownloadedFile:
        self.fetched.append(remote_ref)
        item = self.blobs.get(remote_ref)
        if item is None:
            raise PortalDownloadError(f"404 {remote_ref}")
        if isinstance(item, BaseException):
            raise item
        return DownloadedFile(content=item, extension=self.extension)
