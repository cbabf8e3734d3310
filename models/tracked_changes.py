from models import Base
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from utils.time_utils import utcnow_sa_default


class TrackedChange(Base):
    """Per-document change ledger entry for incremental runs.

    Uniqueness is enforced by (entity_id, document_name): reprocessing a
    document overwrites its row instead of adding a second one.

    - entity_id: links to entities.id
    - document_name: local file name (date-prefixed when the date is known)
    - change_json: JSON-encoded ledger value, either a sentinel string
      ("initial registration", "no significant change") or a delta object
    - processed_at: UTC timestamp of the latest successful merge step
    """

    __tablename__ = "tracked_changes"
    __table_args__ = (
        UniqueConstraint(
            "entity_id",
            "document_name",
            name="uq_tracked_changes_entity_document",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_id = Column(
        Integer, ForeignKey("entities.id", ondelete="CASCADE"), nullable=False
    )
    document_name = Column(String, nullable=False)

    change_json = Column(Text, nullable=False)

    processed_at = Column(DateTime, nullable=False, default=utcnow_sa_default)
