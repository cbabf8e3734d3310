from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from logging_utils import get_logger
from support.progress import NullObserver, SyncObserver
from utils.document_names import (
    dmy_to_prefix,
    list_recognized_files,
    sanitize_filename,
    unique_base_names,
)
from utils.fingerprint import ContentFingerprintGate, FetchAction
from utils.portal_client import PortalDownloadError

logger = get_logger(__name__)


@dataclass(frozen=True)
class AcquisitionResult:
    download_dir: Path
    files: list[str] = field(default_factory=list)
    fetched: int = 0
    replaced: int = 0
    skipped: int = 0
    failed: int = 0


def _write_file(path: Path, data: bytes) -> None:
    tmp = path.with_name(f".{path.name}.part")
    tmp.write_bytes(data)
    os.replace(tmp, path)


class DocumentAcquirer:
    """Bring an entity's local document folder in line with the portal.

    Local names are ``<YYYY-MM-DD_><sanitized name><ext>``; a name repeated in
    one listing gets a ``_(n)`` suffix so each remote reference owns exactly one
    local file. Unchanged documents are not downloaded again.
    """

    def __init__(self, download_root: Path | str, *, observer: SyncObserver | None = None) -> None:
        self.download_root = Path(download_root)
        self._observer = observer or NullObserver()

    def download_dir_for(self, entity_id: str) -> Path:
        return self.download_root / entity_id

    def acquire(self, session: Any, entity_id: str) -> AcquisitionResult:
        """Sync documents for one entity.

        Raises:
            AcquisitionError: listing the entity's documents failed (not found,
                timeout, ...). Per-document download failures are only counted.
        """

        download_dir = self.download_dir_for(entity_id)
        download_dir.mkdir(parents=True, exist_ok=True)

        remote_docs = session.fetch_document_list(entity_id)
        bases = unique_base_names(
            dmy_to_prefix(d.date_hint) + sanitize_filename(d.name) for d in remote_docs
        )

        gate = ContentFingerprintGate(session.fetch_bytes)
        fetched = replaced = skipped = failed = 0

        for doc, base in zip(remote_docs, bases):
            local_base = download_dir / base
            try:
                decision = gate.should_fetch(doc.remote_ref, local_base)
                if decision.action is FetchAction.SKIP:
                    skipped += 1
                    self._observer.document_acquired(entity_id, base, decision.action.value)
                    continue

                payload = decision.remote or session.fetch_bytes(doc.remote_ref)
                target = local_base.with_name(base + payload.extension)
                _write_file(target, payload.content)
            except (PortalDownloadError, OSError) as e:
                failed += 1
                logger.warning(
                    "Document download failed | entity=%s ref=%s err=%s",
                    entity_id,
                    doc.remote_ref,
                    e,
                )
                continue

            if decision.action is FetchAction.REPLACE:
                replaced += 1
            else:
                fetched += 1
            self._observer.document_acquired(entity_id, target.name, decision.action.value)

        files = list_recognized_files(download_dir)
        logger.info(
            "Acquisition done | entity=%s listed=%s fetched=%s replaced=%s skipped=%s failed=%s local=%s",
            entity_id,
            len(remote_docs),
            fetched,
            replaced,
            skipped,
            failed,
            len(files),
        )
        return AcquisitionResult(
            download_dir=download_dir,
            files=files,
            fetched=fetched,
            replaced=replaced,
            skipped=skipped,
            failed=failed,
        )
