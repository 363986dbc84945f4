"""
Voice message persistence.

Voice messages move through ``received -> transcribing -> transcribed | failed``.
Every transition is a conditional UPDATE on the expected prior status, so a
sibling pipeline run that loses the race gets ``None`` back and skips the row.
"""

import json
import logging
import uuid
from typing import List, Optional

from renovation_advisor.models import PendingExtraction, VoiceMessage, VoiceTranscription
from storage.db import Database, affected_rows, record_to_dict

logger = logging.getLogger(__name__)


class VoiceStore:
    def __init__(self, database: Database):
        self.database = database

    async def create_voice_message(
        self,
        project_id: str,
        sender_id: str,
        audio_url: str,
        duration_seconds: Optional[float] = None,
        whatsapp_message_id: Optional[str] = None,
    ) -> Optional[VoiceMessage]:
        """Insert a received voice message. Returns None for a redelivered webhook message id."""
        record = await self.database.fetchrow(
            """
            INSERT INTO voice_messages
                (project_id, sender_id, audio_url, duration_seconds, whatsapp_message_id)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (whatsapp_message_id) DO NOTHING
            RETURNING *
            """,
            uuid.UUID(project_id),
            uuid.UUID(sender_id),
            audio_url,
            duration_seconds,
            whatsapp_message_id,
        )
        if record is None:
            logger.info(f"Voice message {whatsapp_message_id} already stored, skipping")
            return None
        return VoiceMessage.model_validate(record_to_dict(record))

    async def get_voice_message(self, voice_message_id: str) -> Optional[VoiceMessage]:
        record = await self.database.fetchrow(
            "SELECT * FROM voice_messages WHERE id = $1", uuid.UUID(voice_message_id)
        )
        return VoiceMessage.model_validate(record_to_dict(record)) if record else None

    async def list_received(self, limit: int, stale_after_minutes: int = 10) -> List[VoiceMessage]:
        """Received messages plus ones whose transcription claim went stale."""
        records = await self.database.fetch(
            """
            SELECT * FROM voice_messages
            WHERE status = 'received'
               OR (status = 'transcribing'
                   AND updated_at < NOW() - make_interval(mins => $2))
            ORDER BY created_at
            LIMIT $1
            """,
            limit,
            stale_after_minutes,
        )
        return [VoiceMessage.model_validate(record_to_dict(r)) for r in records]

    async def claim_for_transcription(
        self, voice_message_id: str, stale_after_minutes: int = 10
    ) -> Optional[VoiceMessage]:
        record = await self.database.fetchrow(
            """
            UPDATE voice_messages
            SET status = 'transcribing', updated_at = NOW()
            WHERE id = $1
              AND (status = 'received'
                   OR (status = 'transcribing'
                       AND updated_at < NOW() - make_interval(mins => $2)))
            RETURNING *
            """,
            uuid.UUID(voice_message_id),
            stale_after_minutes,
        )
        return VoiceMessage.model_validate(record_to_dict(record)) if record else None

    async def release_transcription(self, voice_message_id: str, error_message: str) -> bool:
        """Put a claimed message back to 'received' so a later run tries again."""
        status = await self.database.execute(
            """
            UPDATE voice_messages
            SET status = 'received', error_message = $2, updated_at = NOW()
            WHERE id = $1 AND status = 'transcribing'
            """,
            uuid.UUID(voice_message_id),
            error_message[:1000],
        )
        return affected_rows(status) == 1

    async def save_transcription(self, transcription: VoiceTranscription) -> bool:
        """Store the transcription and advance the message to 'transcribed' atomically."""
        async with self.database.transaction() as conn:
            status = await conn.execute(
                """
                UPDATE voice_messages
                SET status = 'transcribed', error_message = NULL, updated_at = NOW()
                WHERE id = $1 AND status = 'transcribing'
                """,
                uuid.UUID(transcription.voice_message_id),
            )
            if affected_rows(status) != 1:
                return False
            await conn.execute(
                """
                INSERT INTO voice_transcriptions
                    (voice_message_id, transcription_text, confidence_score,
                     language, processing_time_ms, service_name)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (voice_message_id) DO NOTHING
                """,
                uuid.UUID(transcription.voice_message_id),
                transcription.transcription_text,
                transcription.confidence_score,
                transcription.language,
                transcription.processing_time_ms,
                transcription.service_name,
            )
        return True

    async def mark_failed(self, voice_message_id: str, error_message: str) -> bool:
        status = await self.database.execute(
            """
            UPDATE voice_messages
            SET status = 'failed', error_message = $2, updated_at = NOW()
            WHERE id = $1 AND status = 'transcribing'
            """,
            uuid.UUID(voice_message_id),
            error_message[:1000],
        )
        return affected_rows(status) == 1

    async def get_transcription(self, voice_message_id: str) -> Optional[VoiceTranscription]:
        record = await self.database.fetchrow(
            "SELECT * FROM voice_transcriptions WHERE voice_message_id = $1",
            uuid.UUID(voice_message_id),
        )
        return VoiceTranscription.model_validate(record_to_dict(record)) if record else None

    # Extraction bookkeeping

    async def list_pending_extractions(self, limit: int, stale_after_minutes: int = 10) -> List[PendingExtraction]:
        """Transcribed messages never extracted, or whose extraction claim went stale."""
        records = await self.database.fetch(
            """
            SELECT vm.id AS voice_message_id, vm.project_id, vt.transcription_text
            FROM voice_messages vm
            JOIN voice_transcriptions vt ON vt.voice_message_id = vm.id
            LEFT JOIN voice_extractions ve ON ve.voice_message_id = vm.id
            WHERE vm.status = 'transcribed'
              AND (ve.voice_message_id IS NULL
                   OR (ve.status = 'extracting'
                       AND ve.updated_at < NOW() - make_interval(mins => $2)))
            ORDER BY vm.created_at
            LIMIT $1
            """,
            limit,
            stale_after_minutes,
        )
        return [PendingExtraction.model_validate(record_to_dict(r)) for r in records]

    async def get_pending_extraction(self, voice_message_id: str) -> Optional[PendingExtraction]:
        record = await self.database.fetchrow(
            """
            SELECT vm.id AS voice_message_id, vm.project_id, vt.transcription_text
            FROM voice_messages vm
            JOIN voice_transcriptions vt ON vt.voice_message_id = vm.id
            WHERE vm.id = $1 AND vm.status = 'transcribed'
            """,
            uuid.UUID(voice_message_id),
        )
        return PendingExtraction.model_validate(record_to_dict(record)) if record else None

    async def claim_extraction(self, voice_message_id: str, stale_after_minutes: int = 10) -> bool:
        """Insert the extraction row, or take over an 'extracting' row whose claim went stale."""
        claimed = await self.database.fetchval(
            """
            INSERT INTO voice_extractions (voice_message_id)
            VALUES ($1)
            ON CONFLICT (voice_message_id) DO UPDATE
                SET updated_at = NOW()
                WHERE voice_extractions.status = 'extracting'
                  AND voice_extractions.updated_at < NOW() - make_interval(mins => $2)
            RETURNING voice_message_id
            """,
            uuid.UUID(voice_message_id),
            stale_after_minutes,
        )
        return claimed is not None

    async def release_extraction(self, voice_message_id: str) -> None:
        """Drop an in-flight claim so the next run retries the message."""
        await self.database.execute(
            "DELETE FROM voice_extractions WHERE voice_message_id = $1 AND status = 'extracting'",
            uuid.UUID(voice_message_id),
        )

    async def fail_extraction(self, voice_message_id: str, error_message: str) -> None:
        await self.database.execute(
            """
            UPDATE voice_extractions
            SET status = 'failed', error_message = $2, updated_at = NOW()
            WHERE voice_message_id = $1
            """,
            uuid.UUID(voice_message_id),
            error_message[:1000],
        )

    async def status_counts(self) -> dict:
        records = await self.database.fetch(
            "SELECT status, COUNT(*) AS count FROM voice_messages GROUP BY status"
        )
        return {r["status"]: r["count"] for r in records}

    async def record_webhook_event(
        self,
        source: str,
        event_type: str,
        payload: dict,
        phone_number: Optional[str] = None,
    ) -> None:
        await self.database.execute(
            """
            INSERT INTO webhook_events (source, event_type, phone_number, raw_payload)
            VALUES ($1, $2, $3, $4::jsonb)
            """,
            source,
            event_type,
            phone_number,
            json.dumps(payload, default=str),
        )
