from __future__ import annotations

import abc
import threading
from collections import Counter
from dataclasses import dataclass

from logging_utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProgressSnapshot:
    documents_acquired: int
    documents_merged: int
    documents_failed: int
    entities_completed: int
    statuses: dict[str, int]


class SyncObserver(abc.ABC):
    """Callback interface invoked at pipeline checkpoints.

    Checkpoints:
    - `document_acquired`: after the download gate decided (and any write finished)
    - `document_merged`: after one merge step, successful or not
    - `entity_completed`: once the entity reaches its final status for the run

    Merge callbacks arrive from worker threads; implementations must be
    thread-safe. The defaults do nothing, so subclasses override only what they
    need.
    """

    def document_acquired(self, entity_id: str, document: str, action: str) -> None:
        return None

    def document_merged(self, entity_id: str, document: str, ok: bool) -> None:
        return None

    def entity_completed(self, entity_id: str, status: str) -> None:
        return None


class NullObserver(SyncObserver):
    pass


class LoggingObserver(SyncObserver):
    def document_acquired(self, entity_id: str, document: str, action: str) -> None:
        logger.info("Document acquired | entity=%s document=%s action=%s", entity_id, document, action)

    def document_merged(self, entity_id: str, document: str, ok: bool) -> None:
        if ok:
            logger.info("Document merged | entity=%s document=%s", entity_id, document)
        else:
            logger.warning("Document merge failed | entity=%s document=%s", entity_id, document)

    def entity_completed(self, entity_id: str, status: str) -> None:
        logger.info("Entity completed | entity=%s status=%s", entity_id, status)


class CountingObserver(SyncObserver):
    """Thread-safe tallies, optionally forwarding to another observer."""

    def __init__(self, forward_to: SyncObserver | None = None) -> None:
        self._lock = threading.Lock()
        self._forward = forward_to or NullObserver()
        self._acquired = 0
        self._merged = 0
        self._failed = 0
        self._statuses: Counter[str] = Counter()

    def document_acquired(self, entity_id: str, document: str, action: str) -> None:
        with self._lock:
            self._acquired += 1
        self._forward.document_acquired(entity_id, document, action)

    def document_merged(self, entity_id: str, document: str, ok: bool) -> None:
        with self._lock:
            if ok:
                self._merged += 1
            else:
                self._failed += 1
        self._forward.document_merged(entity_id, document, ok)

    def entity_completed(self, entity_id: str, status: str) -> None:
        with self._lock:
            self._statuses[status] += 1
        self._forward.entity_completed(entity_id, status)

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(
                documents_acquired=self._acquired,
                documents_merged=self._merged,
                documents_failed=self._failed,
                entities_completed=sum(self._statuses.values()),
                statuses=dict(self._statuses),
            )
