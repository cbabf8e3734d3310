"""Chronological, document-by-document merge into one cumulative snapshot.

For each entity the merger walks its new documents oldest first. The first
document of an entity that has never been merged goes through the initial
extraction prompt; every later document is merged into the current snapshot by
the extraction service. Each processed document gets exactly one ledger entry:

- "initial registration" for the initial document
- the {structural_changes, economic_changes} delta reported by the service
- "no significant change" when the service reports no delta

A failing document is recorded as a failure and skipped; it is not written to
the ledger. A later run retries it only when the work planner schedules work
for the entity again: once a newer document is tracked and no newer input
arrives, the planner reports the entity up to date and the failed document
stays unprocessed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Union

from logging_utils import get_logger
from support.progress import NullObserver, SyncObserver
from utils.content_extractor import DocumentContent, extract_content
from utils.document_names import chronological, parse_date_prefix
from utils.errors import (
    ContentExtractionError,
    ExtractionError,
    MergeError,
    ParseError,
    UnsupportedContentError,
)
from utils.extraction_schema import DELTA_KEYS, MERGE_SCHEMA, SNAPSHOT_SCHEMA
from utils.prompts import initial_extraction_prompt, merge_metadata_prompt
from utils.response_parser import parse_model_json
from utils.snapshot_store import EntityIdentity, EntityRecord, SnapshotStore
from utils.time_utils import parse_ymd_date, utcnow

logger = get_logger(__name__)

INITIAL_REGISTRATION = "initial registration"
NO_SIGNIFICANT_CHANGE = "no significant change"

# Failures that only abort the current document.
_DOCUMENT_ERRORS = (
    ExtractionError,
    ParseError,
    UnsupportedContentError,
    ContentExtractionError,
    OSError,
)


@dataclass(frozen=True)
class Uninitialized:
    """No snapshot has ever been persisted for the entity.

    A ledger may still exist (e.g. written by an older run that stored no
    snapshot); it is carried forward, never dropped.
    """

    ledger: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WithSnapshot:
    snapshot: dict[str, Any]
    ledger: dict[str, Any]


MergeState = Union[Uninitialized, WithSnapshot]


class MergeStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class DocumentFailure:
    document: str
    code: str
    message: str
    is_retry_exhaustion: bool = False


@dataclass(frozen=True)
class MergeOutcome:
    status: MergeStatus
    processed_count: int
    snapshot: dict[str, Any] | None
    ledger: dict[str, Any]
    identity: EntityIdentity
    failures: list[DocumentFailure] = field(default_factory=list)
    error: MergeError | None = None


def split_delta(merged: dict[str, Any]) -> tuple[dict[str, Any] | None, dict[str, Any]]:
    """Pop the per-document delta keys out of a merged snapshot.

    Returns (delta or None, snapshot without delta keys).
    """

    snapshot = dict(merged)
    delta: dict[str, Any] = {}
    for key in DELTA_KEYS:
        value = snapshot.pop(key, None)
        if value not in (None, "", [], {}):
            delta[key] = value
    return (delta or None), snapshot


def _iso_or_none(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    try:
        return parse_ymd_date(value.strip()[:10]).isoformat()
    except ValueError:
        return None


class CumulativeMetadataMerger:
    def __init__(
        self,
        client: Any,
        store: SnapshotStore,
        *,
        content_extractor: Callable[[Path], DocumentContent] = extract_content,
        observer: SyncObserver | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._extract_content = content_extractor
        self._observer = observer or NullObserver()

    def _load_state(self, entity_id: str) -> tuple[MergeState, EntityIdentity]:
        record = self._store.load(entity_id)
        if record is None:
            return Uninitialized(), EntityIdentity()
        # An empty snapshot is still a snapshot; only a missing one means "never merged".
        if record.snapshot is None:
            return Uninitialized(dict(record.ledger)), record.identity
        return WithSnapshot(dict(record.snapshot), dict(record.ledger)), record.identity

    def _extract(
        self,
        *,
        prompt: str,
        schema: dict,
        document: str,
        path: Path,
    ) -> dict[str, Any]:
        content = self._extract_content(path)
        raw = self._client.extract(prompt, content, identifier=document, schema=schema)
        return parse_model_json(raw, label=document)

    def run(self, entity_id: str, documents: list[str], input_dir: Path | str) -> MergeOutcome:
        input_dir = Path(input_dir)
        state, identity = self._load_state(entity_id)
        ordered = chronological(documents)

        processed = 0
        failures: list[DocumentFailure] = []

        logger.info(
            "Merge start | entity=%s documents=%s state=%s",
            entity_id,
            len(ordered),
            type(state).__name__,
        )

        for index, document in enumerate(ordered):
            doc_date = parse_date_prefix(document)
            doc_date_str = doc_date.isoformat() if doc_date else None
            initial = isinstance(state, Uninitialized) and index == 0

            try:
                if initial:
                    result = self._extract(
                        prompt=initial_extraction_prompt(doc_date_str),
                        schema=SNAPSHOT_SCHEMA,
                        document=document,
                        path=input_dir / document,
                    )
                    _, snapshot = split_delta(result)
                    ledger: dict[str, Any] = dict(state.ledger)
                    ledger[document] = INITIAL_REGISTRATION
                else:
                    base = state.snapshot if isinstance(state, WithSnapshot) else None
                    result = self._extract(
                        prompt=merge_metadata_prompt(doc_date_str, base),
                        schema=MERGE_SCHEMA,
                        document=document,
                        path=input_dir / document,
                    )
                    delta, snapshot = split_delta(result)
                    ledger = dict(state.ledger)
                    # Reprocessing overwrites the single entry for this document.
                    ledger[document] = delta if delta is not None else NO_SIGNIFICANT_CHANGE
            except _DOCUMENT_ERRORS as e:
                failure = DocumentFailure(
                    document=document,
                    code=getattr(e, "code", None) or "io_error",
                    message=str(e),
                    is_retry_exhaustion=bool(getattr(e, "is_retry_exhaustion", False)),
                )
                failures.append(failure)
                logger.warning(
                    "Document step failed | entity=%s document=%s code=%s retry_exhausted=%s err=%s",
                    entity_id,
                    document,
                    failure.code,
                    failure.is_retry_exhaustion,
                    e,
                )
                self._observer.document_merged(entity_id, document, False)
                continue

            state = WithSnapshot(snapshot, ledger)
            identity = identity.fill_missing(
                name=snapshot.get("company_name"),
                tax_id=snapshot.get("company_tax_id"),
                creation_date=_iso_or_none(snapshot.get("document_date")) or doc_date_str,
            )
            processed += 1
            self._observer.document_merged(entity_id, document, True)

        if isinstance(state, Uninitialized):
            error = MergeError(
                "no valid metadata extracted",
                details={"entity_id": entity_id, "failed_documents": len(failures)},
            )
            logger.error(
                "Merge produced no snapshot | entity=%s failed_documents=%s",
                entity_id,
                len(failures),
            )
            return MergeOutcome(
                status=MergeStatus.ERROR,
                processed_count=processed,
                snapshot=None,
                ledger={},
                identity=identity,
                failures=failures,
                error=error,
            )

        self._store.save(
            entity_id,
            EntityRecord(
                identity=identity,
                snapshot=state.snapshot,
                ledger=state.ledger,
                scan_date=utcnow(),
            ),
        )
        logger.info(
            "Merge done | entity=%s processed=%s failed=%s tracked=%s",
            entity_id,
            processed,
            len(failures),
            len(state.ledger),
        )
        return MergeOutcome(
            status=MergeStatus.SUCCESS,
            processed_count=processed,
            snapshot=state.snapshot,
            ledger=state.ledger,
            identity=identity,
            failures=failures,
        )
