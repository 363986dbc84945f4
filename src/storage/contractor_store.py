import logging
import uuid
from typing import List, Optional

from renovation_advisor.models import Contractor
from storage.db import Database, record_to_dict

logger = logging.getLogger(__name__)


def _contractor(record) -> Contractor:
    return Contractor.model_validate(record_to_dict(record))


class ContractorStore:
    """Read-only view of the contractor directory used by the pipeline."""

    def __init__(self, database: Database):
        self.database = database

    async def list_active(self) -> List[Contractor]:
        records = await self.database.fetch(
            "SELECT * FROM contractors WHERE is_active ORDER BY created_at"
        )
        return [_contractor(r) for r in records]

    async def get_contractor(self, contractor_id: str) -> Optional[Contractor]:
        record = await self.database.fetchrow(
            "SELECT * FROM contractors WHERE id = $1", uuid.UUID(contractor_id)
        )
        return _contractor(record) if record else None

    async def find_by_phone(self, phone: str) -> Optional[Contractor]:
        """Match on the last ten digits so '+1 (555) 010-2000' and '5550102000' agree."""
        digits = "".join(ch for ch in phone if ch.isdigit())
        if len(digits) < 10:
            return None
        record = await self.database.fetchrow(
            """
            SELECT * FROM contractors
            WHERE right(regexp_replace(phone, '\\D', '', 'g'), 10) = $1
            ORDER BY is_active DESC, created_at
            LIMIT 1
            """,
            digits[-10:],
        )
        return _contractor(record) if record else None
