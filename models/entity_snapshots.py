from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text

from models import Base
from utils.time_utils import utcnow_sa_default


class EntitySnapshot(Base):
    """Current merged snapshot for an entity (1:1 with entities).

    The snapshot is whatever the extraction service returned for the latest
    merge step, stored as a JSON document. It is replaced wholesale on each
    save; history lives in `tracked_changes`.
    """

    __tablename__ = "entity_snapshots"

    entity_id = Column(
        Integer,
        ForeignKey("entities.id", ondelete="CASCADE"),
        primary_key=True,
        nullable=False,
    )

    snapshot_json = Column(Text, nullable=False)

    # When the snapshot was last produced by a sync run.
    scan_date = Column(DateTime, nullable=True)

    updated_at = Column(
        DateTime,
        nullable=False,
        default=utcnow_sa_default,
        onupdate=utcnow_sa_default,
    )
