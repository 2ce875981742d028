"""
Document Sequence Service for Atomic Number Generation

Format: {PREFIX}{YYMMDD}{NNNN}, with the counter restarting every calendar
day. The day is taken in Settings.SEQUENCE_TIMEZONE (UTC by default).

USAGE:
    service = DocumentSequenceService(db)
    order_number = await service.get_next_number("ORD")
    # Returns: ORD2610190001

SUPPORTED DOCUMENT TYPES:
    ORD - Order
    CON - Consignment
"""

from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo
import logging
import uuid

from sqlalchemy import insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.config import settings
from fulfillment.core.exceptions import ValidationError
from fulfillment.models.document_sequence import DocumentSequence


logger = logging.getLogger(__name__)


DOCUMENT_METADATA = {
    "ORD": {"name": "Order", "padding": 4},
    "CON": {"name": "Consignment", "padding": 4},
}


def sequence_today() -> date:
    return datetime.now(ZoneInfo(settings.SEQUENCE_TIMEZONE)).date()


def format_document_number(prefix: str, on_date: date, value: int) -> str:
    padding = DOCUMENT_METADATA[prefix]["padding"]
    return f"{prefix}{on_date:%y%m%d}{value:0{padding}d}"


class DocumentSequenceService:
    """
    Service for generating atomic document numbers.

    The counter row is bumped with a single UPDATE ... RETURNING, so two
    concurrent requests can never read the same value. The first request of
    the day inserts the row; if another request wins that insert, the unique
    constraint fires and the bump is retried.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _increment(self, prefix: str, on_date: date) -> Optional[int]:
        stmt = (
            update(DocumentSequence)
            .where(
                DocumentSequence.prefix == prefix,
                DocumentSequence.sequence_date == on_date,
            )
            .values(last_value=DocumentSequence.last_value + 1)
            .returning(DocumentSequence.last_value)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def next_value(self, prefix: str, on_date: Optional[date] = None) -> int:
        """Allocate the next counter value for a prefix on a day."""
        if prefix not in DOCUMENT_METADATA:
            raise ValidationError(f"Unknown document type: {prefix}")
        on_date = on_date or sequence_today()

        value = await self._increment(prefix, on_date)
        if value is not None:
            return value

        try:
            async with self.db.begin_nested():
                await self.db.execute(
                    insert(DocumentSequence).values(
                        id=uuid.uuid4(),
                        prefix=prefix,
                        sequence_date=on_date,
                        last_value=1,
                    )
                )
            return 1
        except IntegrityError:
            logger.info(f"Sequence row for {prefix} {on_date} created concurrently, retrying increment")
            value = await self._increment(prefix, on_date)
            if value is None:
                raise
            return value

    async def get_next_number(self, prefix: str, on_date: Optional[date] = None) -> str:
        """Get next document number, e.g. CON2610190002."""
        on_date = on_date or sequence_today()
        value = await self.next_value(prefix, on_date)
        return format_document_number(prefix, on_date, value)
