import asyncio
import logging
import time

from pipeline.stage import PROCESSED, SKIPPED, StageResult, run_items
from renovation_advisor.errors import TranscriptionError, is_transient
from renovation_advisor.models import VoiceMessage, VoiceTranscription
from storage.voice_store import VoiceStore
from transcription.audio_fetcher import AudioFetcher
from transcription.providers.base import TranscriptionProvider

logger = logging.getLogger(__name__)


class VoiceTranscriber:
    """
    Transcription stage: ``received`` voice messages become ``transcribed`` (or ``failed``).

    Network errors and upstream 5xx/429 answers put the message back to
    ``received`` instead of failing it. A claim left ``transcribing`` for longer
    than ``claim_timeout_minutes`` is treated as abandoned and claimed again.
    """

    stage = "transcribe"

    def __init__(
        self,
        voice_store: VoiceStore,
        provider: TranscriptionProvider,
        fetcher: AudioFetcher,
        claim_timeout_minutes: int = 10,
    ):
        self.voice_store = voice_store
        self.provider = provider
        self.fetcher = fetcher
        self.claim_timeout_minutes = claim_timeout_minutes

    async def process_pending(self, limit: int) -> StageResult:
        messages = await self.voice_store.list_received(limit, self.claim_timeout_minutes)
        return await run_items(self.stage, messages, self._transcribe)

    async def process_one(self, voice_message_id: str) -> StageResult:
        message = await self.voice_store.get_voice_message(voice_message_id)
        if message is None:
            logger.warning(f"Voice message {voice_message_id} not found")
            return StageResult(stage=self.stage)
        return await run_items(self.stage, [message], self._transcribe)

    async def _transcribe(self, message: VoiceMessage):
        claimed = await self.voice_store.claim_for_transcription(message.id, self.claim_timeout_minutes)
        if claimed is None:
            logger.warning(f"Voice message {message.id} already claimed, skipping")
            return SKIPPED

        start = time.time()
        try:
            audio = await asyncio.to_thread(self.fetcher.fetch, claimed.audio_url)
            output = await asyncio.to_thread(
                self.provider.transcribe,
                audio.content,
                filename=audio.filename,
                content_type=audio.content_type,
            )
            if not output.text:
                raise TranscriptionError("Transcription returned no text")
        except Exception as e:
            transient = is_transient(e)
            if transient:
                logger.warning(f"Transcription of {claimed.id} deferred: {e}")
                await self.voice_store.release_transcription(claimed.id, str(e))
            else:
                await self.voice_store.mark_failed(claimed.id, str(e))
            if isinstance(e, TranscriptionError):
                raise
            raise TranscriptionError(f"Transcription failed: {e}", retryable=transient) from e

        transcription = VoiceTranscription(
            voice_message_id=claimed.id,
            transcription_text=output.text,
            confidence_score=output.confidence,
            language=output.language,
            processing_time_ms=int((time.time() - start) * 1000),
            service_name=output.service or self.provider.name,
        )
        try:
            saved = await self.voice_store.save_transcription(transcription)
        except Exception as e:
            await self._release_after_error(claimed.id, e)
            raise TranscriptionError(f"Could not store transcription: {e}", retryable=True) from e
        if not saved:
            logger.warning(f"Voice message {claimed.id} left 'transcribing' before save, skipping")
            return SKIPPED

        logger.info(
            f"Transcribed voice message {claimed.id} ({len(output.text)} chars, "
            f"{transcription.processing_time_ms}ms via {transcription.service_name})"
        )
        return PROCESSED, {"characters": len(output.text), "service": transcription.service_name}

    async def _release_after_error(self, voice_message_id: str, error: Exception) -> None:
        # The claim expires on its own if this fails too
        try:
            await self.voice_store.release_transcription(voice_message_id, str(error))
        except Exception as release_error:
            logger.error(f"Could not release transcription claim for {voice_message_id}: {release_error}")
