import logging
import uuid
from typing import Optional

from renovation_advisor.models import Profile, Project
from storage.db import Database, record_to_dict

logger = logging.getLogger(__name__)

# Projects in these statuses still accept punch list voice notes
ACTIVE_PROJECT_STATUSES = ("planning", "contractor_selection", "in_progress")


class ProjectStore:
    def __init__(self, database: Database):
        self.database = database

    async def get_project(self, project_id: str) -> Optional[Project]:
        record = await self.database.fetchrow(
            "SELECT * FROM projects WHERE id = $1", uuid.UUID(project_id)
        )
        return Project.model_validate(record_to_dict(record)) if record else None

    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        record = await self.database.fetchrow(
            "SELECT * FROM profiles WHERE id = $1", uuid.UUID(profile_id)
        )
        return Profile.model_validate(record_to_dict(record)) if record else None

    async def find_profile_by_phone(self, phone: str) -> Optional[Profile]:
        digits = "".join(ch for ch in phone if ch.isdigit())
        if len(digits) < 10:
            return None
        record = await self.database.fetchrow(
            """
            SELECT * FROM profiles
            WHERE right(regexp_replace(phone, '\\D', '', 'g'), 10) = $1
            ORDER BY created_at
            LIMIT 1
            """,
            digits[-10:],
        )
        return Profile.model_validate(record_to_dict(record)) if record else None

    async def find_active_project(self, homeowner_id: str) -> Optional[Project]:
        """Most recently created open project of a homeowner."""
        record = await self.database.fetchrow(
            """
            SELECT * FROM projects
            WHERE homeowner_id = $1 AND status = ANY($2::text[])
            ORDER BY created_at DESC
            LIMIT 1
            """,
            uuid.UUID(homeowner_id),
            list(ACTIVE_PROJECT_STATUSES),
        )
        return Project.model_validate(record_to_dict(record)) if record else None
