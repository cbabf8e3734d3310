from __future__ import annotations

import argparse
import os
import signal
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable

# Allow running this file directly (e.g. `python jobs/entity_sync.py`) by
# ensuring the project root is importable.
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

import logging_utils
from config import Config
from logging_utils import get_logger
from support.progress import CountingObserver, LoggingObserver, SyncObserver
from utils.acquisition import DocumentAcquirer
from utils.entity_ids import clean_entity_ids, load_entity_ids
from utils.errors import AcquisitionError, MergeError
from utils.metadata_merger import CumulativeMetadataMerger, MergeStatus
from utils.snapshot_store import EntityRecord, SnapshotStore, write_json_atomic
from utils.time_utils import to_iso_z
from utils.work_planner import WorkPlan, plan_work

logger = get_logger(__name__)


class ProcessingStatus(str, Enum):
    UNKNOWN = "unknown"
    CRAWL_FAILED = "crawl_failed"
    NO_DOCUMENTS = "no_documents"
    SUCCESSFUL = "successful"
    SCAN_FAILED = "scan_failed"


FAILURE_STATUSES = (ProcessingStatus.CRAWL_FAILED, ProcessingStatus.SCAN_FAILED)


@dataclass(frozen=True)
class EntitySyncResult:
    entity_id: str
    status: ProcessingStatus
    code: str | None = None
    message: str | None = None
    processed_documents: int = 0
    failed_documents: int = 0


@dataclass
class SyncRunSummary:
    results: dict[str, EntitySyncResult] = field(default_factory=dict)

    @property
    def counts(self) -> dict[str, int]:
        out = {s.value: 0 for s in ProcessingStatus}
        for r in self.results.values():
            out[r.status.value] += 1
        return out

    @property
    def failures(self) -> list[EntitySyncResult]:
        return [r for r in self.results.values() if r.status in FAILURE_STATUSES]

    @property
    def ok(self) -> bool:
        return not self.failures


class EntitySyncOrchestrator:
    """Acquire serially, merge concurrently.

    The acquisition session is opened once and used for one entity at a time.
    As soon as an entity's documents are local, its merge is handed to a thread
    pool and the loop moves on to the next entity's acquisition. All merges are
    awaited at the end; a failing merge only affects its own entity.

    Setting `stop_event` stops new acquisitions; merges already scheduled still
    run to completion. Entities never reached keep status `unknown`.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Any],
        acquirer: DocumentAcquirer,
        merger: CumulativeMetadataMerger,
        store: SnapshotStore,
        observer: SyncObserver | None = None,
        max_concurrent_entities: int = 4,
        stop_event: threading.Event | None = None,
        planner: Callable[..., WorkPlan] = plan_work,
    ) -> None:
        self._session_factory = session_factory
        self._acquirer = acquirer
        self._merger = merger
        self._store = store
        self._observer = observer or LoggingObserver()
        self._max_workers = max(1, int(max_concurrent_entities))
        self._stop_event = stop_event or threading.Event()
        self._planner = planner

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    @property
    def store(self) -> SnapshotStore:
        return self._store

    def _complete(self, summary: SyncRunSummary, result: EntitySyncResult) -> None:
        summary.results[result.entity_id] = result
        self._observer.entity_completed(result.entity_id, result.status.value)

    def _acquire_and_plan(self, session: Any, entity_id: str) -> EntitySyncResult | tuple[Path, WorkPlan]:
        try:
            acquisition = self._acquirer.acquire(session, entity_id)
        except AcquisitionError as e:
            logger.warning("Acquisition failed | entity=%s code=%s err=%s", entity_id, e.code, e)
            return EntitySyncResult(entity_id, ProcessingStatus.CRAWL_FAILED, e.code, str(e))
        except Exception as e:
            logger.exception("Unexpected acquisition error | entity=%s", entity_id)
            return EntitySyncResult(
                entity_id,
                ProcessingStatus.CRAWL_FAILED,
                AcquisitionError.CRAWL_ERROR,
                f"{type(e).__name__}: {e}",
            )

        if not acquisition.files:
            return EntitySyncResult(
                entity_id, ProcessingStatus.NO_DOCUMENTS, message="No documents found"
            )

        try:
            existing = self._store.load(entity_id)
        except Exception as e:
            logger.exception("Could not load stored metadata | entity=%s", entity_id)
            return EntitySyncResult(
                entity_id, ProcessingStatus.SCAN_FAILED, "store_error", f"{type(e).__name__}: {e}"
            )

        plan = self._planner(
            entity_id, existing.ledger if existing is not None else None, acquisition.files
        )
        if not plan.should_process:
            return EntitySyncResult(entity_id, ProcessingStatus.SUCCESSFUL, message=plan.reason)

        return acquisition.download_dir, plan

    def _merge_entity(self, entity_id: str, files: list[str], download_dir: Path) -> EntitySyncResult:
        outcome = self._merger.run(entity_id, files, download_dir)
        if outcome.status is MergeStatus.SUCCESS:
            return EntitySyncResult(
                entity_id,
                ProcessingStatus.SUCCESSFUL,
                processed_documents=outcome.processed_count,
                failed_documents=len(outcome.failures),
            )
        error = outcome.error or MergeError("no valid metadata extracted")
        return EntitySyncResult(
            entity_id,
            ProcessingStatus.SCAN_FAILED,
            error.code,
            str(error),
            processed_documents=outcome.processed_count,
            failed_documents=len(outcome.failures),
        )

    def run(self, entity_ids: Iterable[str]) -> SyncRunSummary:
        ids = list(entity_ids)
        summary = SyncRunSummary(
            results={eid: EntitySyncResult(eid, ProcessingStatus.UNKNOWN) for eid in ids}
        )
        scheduled: dict[Future, str] = {}

        logger.info("Sync run starting | entities=%s workers=%s", len(ids), self._max_workers)

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="merge") as pool:
            try:
                with self._session_factory() as session:
                    for entity_id in ids:
                        if self._stop_event.is_set():
                            logger.warning(
                                "Abort requested; not starting further acquisitions | next=%s",
                                entity_id,
                            )
                            break

                        outcome = self._acquire_and_plan(session, entity_id)
                        if isinstance(outcome, EntitySyncResult):
                            self._complete(summary, outcome)
                            continue

                        download_dir, plan = outcome
                        fut = pool.submit(
                            self._merge_entity, entity_id, plan.files_to_process, download_dir
                        )
                        scheduled[fut] = entity_id
            except AcquisitionError as e:
                # Session could not be opened: nothing can be acquired this run.
                logger.error("Acquisition session unavailable | code=%s err=%s", e.code, e)
                for eid in ids:
                    if summary.results[eid].status is ProcessingStatus.UNKNOWN and eid not in scheduled.values():
                        self._complete(
                            summary,
                            EntitySyncResult(eid, ProcessingStatus.CRAWL_FAILED, e.code, str(e)),
                        )

            for fut in as_completed(scheduled):
                entity_id = scheduled[fut]
                try:
                    result = fut.result()
                except Exception as e:
                    logger.exception("Merge task crashed | entity=%s", entity_id)
                    result = EntitySyncResult(
                        entity_id,
                        ProcessingStatus.SCAN_FAILED,
                        "merge_error",
                        f"{type(e).__name__}: {e}",
                    )
                self._complete(summary, result)

        logger.info(
            "Sync run complete | %s",
            " ".join(f"{k}={v}" for k, v in summary.counts.items()),
        )
        return summary


OUTPUT_FILE_NAME = "registry-sync-output.json"


def company_entry(entity_id: str, record: EntityRecord) -> dict[str, Any]:
    return {
        "registry-id": entity_id,
        "company-name": record.identity.name,
        "company-tax-id": record.identity.tax_id,
        "creation-date": record.identity.creation_date,
        "scan-date": to_iso_z(record.scan_date) if record.scan_date else None,
        "current-snapshot": record.snapshot,
        "tracked-changes": record.ledger,
    }


def collect_run_output(summary: SyncRunSummary, store: SnapshotStore) -> dict[str, Any]:
    """Consolidated `{"companies": [...]}` for every successful entity.

    Records are reloaded from the store, so entities the planner found up to
    date are included with their existing snapshot.
    """

    companies: list[dict[str, Any]] = []
    for entity_id, result in summary.results.items():
        if result.status is not ProcessingStatus.SUCCESSFUL:
            continue
        try:
            record = store.load(entity_id)
        except Exception:
            logger.exception("Could not load record for run output | entity=%s", entity_id)
            continue
        if record is None or record.snapshot is None:
            logger.warning("No stored snapshot for successful entity | entity=%s", entity_id)
            continue
        companies.append(company_entry(entity_id, record))
    return {"companies": companies}


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Sync registry documents and merge them into per-entity metadata"
    )
    p.add_argument(
        "--id",
        dest="ids",
        action="append",
        default=[],
        help="Registry id to sync (repeatable)",
    )
    p.add_argument(
        "--file",
        default=None,
        help="JSON file with registry ids (list, {'companies': [...]} or {'gemi_ids': [...]})",
    )
    p.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Concurrent merge workers (default: SYNC_MAX_CONCURRENT_ENTITIES)",
    )
    p.add_argument(
        "--store",
        choices=("json", "sqlite"),
        default="json",
        help="Where snapshots and change ledgers are kept (default: json)",
    )
    p.add_argument(
        "--working-dir",
        default=None,
        help="Override WORKING_DIR (downloads/ and metadata/ live underneath)",
    )
    p.add_argument(
        "--show-browser",
        action="store_true",
        help="Run the browser with a visible window",
    )
    p.add_argument(
        "--output",
        default=None,
        help=f"Consolidated run output path (default: <WORKING_DIR>/{OUTPUT_FILE_NAME})",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL for this run (e.g. DEBUG, INFO, WARNING)",
    )
    return p.parse_args(argv)


def _build_store(kind: str, config: Config) -> SnapshotStore:
    from utils.snapshot_store import JsonFileSnapshotStore, SqlSnapshotStore

    if kind == "sqlite":
        import db
        from models import Base

        os.makedirs(os.path.dirname(os.path.abspath(db.DB_PATH)), exist_ok=True)
        Base.metadata.create_all(bind=db.engine)
        return SqlSnapshotStore(db.SessionLocal)
    return JsonFileSnapshotStore(config.metadata_dir)


def build_orchestrator(
    config: Config,
    *,
    store_kind: str = "json",
    observer: SyncObserver | None = None,
    stop_event: threading.Event | None = None,
    headless: bool | None = None,
) -> EntitySyncOrchestrator:
    """Wire the production pipeline from configuration."""

    from utils.gemini_client import build_extraction_client
    from utils.portal_client import PortalSession

    observer = observer or LoggingObserver()
    store = _build_store(store_kind, config)

    def session_factory() -> PortalSession:
        return PortalSession(
            base_url=config.PORTAL_BASE_URL,
            user_agent=config.PORTAL_USER_AGENT,
            headless=config.CRAWLER_HEADLESS if headless is None else headless,
            page_timeout_seconds=config.PAGE_LOAD_TIMEOUT_SECONDS,
            download_timeout_seconds=config.DOWNLOAD_TIMEOUT_SECONDS,
        )

    return EntitySyncOrchestrator(
        session_factory=session_factory,
        acquirer=DocumentAcquirer(config.downloads_dir, observer=observer),
        merger=CumulativeMetadataMerger(
            build_extraction_client(config), store, observer=observer
        ),
        store=store,
        observer=observer,
        max_concurrent_entities=config.SYNC_MAX_CONCURRENT_ENTITIES,
        stop_event=stop_event,
    )


def _install_abort_handler(stop_event: threading.Event) -> None:
    def _handler(signum, frame):
        if stop_event.is_set():
            raise KeyboardInterrupt
        logger.warning("Abort requested; finishing in-flight merges (Ctrl-C again to force)")
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)


def _print_summary(summary: SyncRunSummary) -> None:
    counts = summary.counts
    print(
        "\nentity_sync: complete | "
        + " ".join(f"{k}={v}" for k, v in counts.items())
    )
    for r in summary.failures:
        print(f"  {r.entity_id}: {r.status.value} ({r.code}) {r.message or ''}".rstrip())


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Allow per-run log override without needing env vars.
    if args.log_level:
        os.environ["LOG_LEVEL"] = str(args.log_level)
        logging_utils.set_log_level(str(args.log_level))
    if args.working_dir:
        os.environ["WORKING_DIR"] = str(args.working_dir)

    config = Config()
    if args.workers is not None:
        config.SYNC_MAX_CONCURRENT_ENTITIES = max(1, int(args.workers))

    ids = clean_entity_ids(args.ids)
    if args.file:
        ids = clean_entity_ids([*ids, *load_entity_ids(args.file)])
    if not ids:
        print("entity_sync: no valid registry ids given (use --id or --file).")
        return 2

    logger.info("entity_sync starting | entities=%s store=%s %s", len(ids), args.store, config.summary())

    stop_event = threading.Event()
    _install_abort_handler(stop_event)

    counter = CountingObserver(forward_to=LoggingObserver())
    try:
        orchestrator = build_orchestrator(
            config,
            store_kind=args.store,
            observer=counter,
            stop_event=stop_event,
            headless=False if args.show_browser else None,
        )
        summary = orchestrator.run(ids)
    except Exception:
        # Always emit a traceback to both console and file.
        logger.exception("entity_sync crashed")
        raise

    output_path = Path(args.output) if args.output else config.WORKING_DIR / OUTPUT_FILE_NAME
    output = collect_run_output(summary, orchestrator.store)
    write_json_atomic(output_path, output)
    logger.info("Run output written | path=%s companies=%s", output_path, len(output["companies"]))

    progress = counter.snapshot()
    logger.info(
        "entity_sync documents | acquired=%s merged=%s failed=%s",
        progress.documents_acquired,
        progress.documents_merged,
        progress.documents_failed,
    )
    for r in summary.failures:
        logger.warning("Entity failed | entity=%s status=%s code=%s message=%s", r.entity_id, r.status.value, r.code, r.message)
    _print_summary(summary)
    return 0 if summary.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
