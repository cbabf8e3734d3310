"""Persistence for per-entity snapshot + change ledger.

Two interchangeable stores:

- `JsonFileSnapshotStore`: one ``<id>_final_metadata.json`` per entity under
  ``<root>/<id>/``, shaped as::

      {"<id>": {"company-name": ..., "company-tax-id": ..., "creation-date": ...,
                "scan-date": ..., "metadata": {"current-snapshot": {...}},
                "tracked-changes": {...}}}

- `SqlSnapshotStore`: the `entities`, `entity_snapshots` and `tracked_changes`
  tables.

Both are last-writer-wins; a sync run never has two writers for one entity.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from logging_utils import get_logger
from models.entities import Entity
from models.entity_snapshots import EntitySnapshot
from models.tracked_changes import TrackedChange
from utils.time_utils import ensure_utc, parse_iso_datetime, parse_ymd_date, to_iso_z, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class EntityIdentity:
    name: str | None = None
    tax_id: str | None = None
    creation_date: str | None = None  # YYYY-MM-DD

    def fill_missing(
        self,
        *,
        name: str | None = None,
        tax_id: str | None = None,
        creation_date: str | None = None,
    ) -> "EntityIdentity":
        """Return a copy where only still-empty fields take the given values."""

        return EntityIdentity(
            name=self.name or (name or None),
            tax_id=self.tax_id or (tax_id or None),
            creation_date=self.creation_date or (creation_date or None),
        )


@dataclass(frozen=True)
class EntityRecord:
    identity: EntityIdentity
    # None: no snapshot persisted yet. An empty dict is a real (empty) snapshot.
    snapshot: dict[str, Any] | None
    ledger: dict[str, Any] = field(default_factory=dict)
    scan_date: datetime | None = None


class SnapshotStore(Protocol):
    def load(self, entity_id: str) -> EntityRecord | None: ...

    def save(self, entity_id: str, record: EntityRecord) -> None: ...


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write JSON via a temp file + `os.replace`; readers never see a partial file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp_", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class JsonFileSnapshotStore:
    """File-per-entity JSON store."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def path_for(self, entity_id: str) -> Path:
        return self.root / entity_id / f"{entity_id}_final_metadata.json"

    def load(self, entity_id: str) -> EntityRecord | None:
        path = self.path_for(entity_id)
        if not path.is_file():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, ValueError) as e:
            # Treat as absent: the planner will then reprocess everything.
            logger.warning("Unreadable metadata file | entity=%s path=%s err=%s", entity_id, path, e)
            return None

        body = payload.get(entity_id) if isinstance(payload, dict) else None
        if not isinstance(body, dict):
            logger.warning("Metadata file has no entry for entity | entity=%s path=%s", entity_id, path)
            return None

        metadata = body.get("metadata") or {}
        snapshot = metadata.get("current-snapshot") if isinstance(metadata, dict) else None
        ledger = body.get("tracked-changes")

        return EntityRecord(
            identity=EntityIdentity(
                name=body.get("company-name"),
                tax_id=body.get("company-tax-id"),
                creation_date=body.get("creation-date"),
            ),
            snapshot=snapshot if isinstance(snapshot, dict) else None,
            ledger=dict(ledger) if isinstance(ledger, dict) else {},
            scan_date=parse_iso_datetime(body.get("scan-date")),
        )

    def save(self, entity_id: str, record: EntityRecord) -> None:
        path = self.path_for(entity_id)
        payload = {
            entity_id: {
                "company-name": record.identity.name,
                "company-tax-id": record.identity.tax_id,
                "creation-date": record.identity.creation_date,
                "scan-date": to_iso_z(record.scan_date or utcnow()),
                "metadata": {"current-snapshot": record.snapshot},
                "tracked-changes": record.ledger,
            }
        }
        write_json_atomic(path, payload)

        logger.info(
            "Saved metadata | entity=%s path=%s tracked=%s", entity_id, path, len(record.ledger)
        )


def _to_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return parse_ymd_date(value[:10])
    except ValueError:
        return None


class SqlSnapshotStore:
    """SQLAlchemy-backed store; one session per call so workers can share it."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def load(self, entity_id: str) -> EntityRecord | None:
        session = self.session_factory()
        try:
            entity = session.execute(
                select(Entity).where(Entity.registry_id == entity_id)
            ).scalar_one_or_none()
            if entity is None:
                return None

            snapshot: Any = None
            snap_row = session.get(EntitySnapshot, entity.id)
            if snap_row is not None:
                try:
                    snapshot = json.loads(snap_row.snapshot_json)
                except ValueError as e:
                    # Ledger rows stay authoritative; the next merge rebuilds the snapshot.
                    logger.warning("Corrupt stored snapshot | entity=%s err=%s", entity_id, e)

            ledger: dict[str, Any] = {}
            rows = session.execute(
                select(TrackedChange)
                .where(TrackedChange.entity_id == entity.id)
                .order_by(TrackedChange.id)
            ).scalars()
            for row in rows:
                ledger[row.document_name] = json.loads(row.change_json)

            return EntityRecord(
                identity=EntityIdentity(
                    name=entity.name,
                    tax_id=entity.tax_id,
                    creation_date=entity.creation_date.isoformat() if entity.creation_date else None,
                ),
                snapshot=snapshot if isinstance(snapshot, dict) else None,
                ledger=ledger,
                scan_date=ensure_utc(snap_row.scan_date) if snap_row is not None and snap_row.scan_date else None,
            )
        finally:
            session.close()

    def save(self, entity_id: str, record: EntityRecord) -> None:
        session = self.session_factory()
        try:
            entity = session.execute(
                select(Entity).where(Entity.registry_id == entity_id)
            ).scalar_one_or_none()
            if entity is None:
                entity = Entity(registry_id=entity_id)
                session.add(entity)
                session.flush()

            entity.name = record.identity.name
            entity.tax_id = record.identity.tax_id
            entity.creation_date = _to_date(record.identity.creation_date)

            scan_date = record.scan_date or utcnow()
            snap_row = session.get(EntitySnapshot, entity.id)
            if snap_row is None:
                snap_row = EntitySnapshot(entity_id=entity.id, snapshot_json="{}")
                session.add(snap_row)
            snap_row.snapshot_json = json.dumps(record.snapshot, ensure_ascii=False)
            snap_row.scan_date = scan_date

            existing = {
                row.document_name: row
                for row in session.execute(
                    select(TrackedChange).where(TrackedChange.entity_id == entity.id)
                ).scalars()
            }
            for document_name, change in record.ledger.items():
                change_json = json.dumps(change, ensure_ascii=False)
                row = existing.get(document_name)
                if row is None:
                    session.add(
                        TrackedChange(
                            entity_id=entity.id,
                            document_name=document_name,
                            change_json=change_json,
                            processed_at=scan_date,
                        )
                    )
                elif row.change_json != change_json:
                    row.change_json = change_json
                    row.processed_at = scan_date

            session.commit()
            logger.info(
                "Saved metadata | entity=%s store=sqlite tracked=%s", entity_id, len(record.ledger)
            )
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

