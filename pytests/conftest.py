from __future__ import annotations

import os
import tempfile

import pytest
from sqlalchemy.orm import sessionmaker

# Keep test runs from writing into the project's ./logs directory.
os.environ.setdefault("REGISTRY_SYNC_LOG_DIR", tempfile.mkdtemp(prefix="registry_sync_logs_"))

from pytests.common import create_empty_sqlite_db  # noqa: E402


@pytest.fixture()
def sqlite_session_factory(tmp_path):
    """sessionmaker bound to a fresh temp SQLite DB with all tables created."""

    session, engine = create_empty_sqlite_db(tmp_path / "registry.sqlite")
    session.close()
    try:
        yield sessionmaker(bind=engine)
    finally:
        engine.dispose()


@pytest.fixture()
def no_sleep():
    """Injected sleep that records requested waits instead of sleeping."""

    waits: list[float] = []

    def _sleep(seconds: float) -> None:
        waits.append(seconds)

    _sleep.waits = waits  # type: ignore[attr-defined]
    return _sleep
