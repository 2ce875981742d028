import uuid
from datetime import date

from sqlalchemy import String, Date, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment.database import Base
from fulfillment.db_types import UUIDType


class DocumentSequence(Base):
    """
    Daily counter behind ORD/CON document numbers.

    One row per (prefix, calendar day). last_value is the highest number
    handed out so far; the next document gets last_value + 1.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint("prefix", "sequence_date", name="uq_document_sequence_prefix_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    prefix: Mapped[str] = mapped_column(String(10), nullable=False)
    sequence_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
