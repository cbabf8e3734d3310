from models import Base
from sqlalchemy import Column, Date, DateTime, Integer, String

from utils.time_utils import utcnow_sa_default


class Entity(Base):
    """One tracked business registration.

    - registry_id: the registry's own identifier (numeric string, immutable)
    - name / tax_id / creation_date: identity fields, set once from the first
      processed document that provides them
    """

    __tablename__ = "entities"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Stored as string: registry ids may carry leading zeros.
    registry_id = Column(String, unique=True, nullable=False, index=True)

    name = Column(String, nullable=True)
    tax_id = Column(String, nullable=True)
    creation_date = Column(Date, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow_sa_default)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=utcnow_sa_default,
        onupdate=utcnow_sa_default,
    )
