import asyncio
import logging
from typing import Any, List

from pydantic import ValidationError

from extraction.prompts import SYSTEM_PROMPT, build_user_prompt
from llm.llm_client import LLMClient
from llm.schemas import ExtractedPunchListItem, PunchListExtractionResult
from pipeline.stage import PROCESSED, SKIPPED, StageResult, run_items
from renovation_advisor.errors import ExtractionError
from renovation_advisor.models import PendingExtraction
from storage.punch_list_store import PunchListStore
from storage.voice_store import VoiceStore

logger = logging.getLogger(__name__)


class PunchListExtractor:
    """Turns a transcript into validated punch list items via the LLM."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    def extract(self, transcription: str) -> PunchListExtractionResult:
        """
        Raises ExtractionError when the model response is not an ``{"items": [...]}``
        envelope. Individual malformed items are dropped with a warning.
        """
        if not transcription or not transcription.strip():
            return PunchListExtractionResult()

        try:
            data = self.llm.complete_json(system=SYSTEM_PROMPT, user=build_user_prompt(transcription))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            # Provider answered but the body did not have the expected shape
            raise ExtractionError(f"Malformed LLM response: {e!r}") from e
        raw_items = data.get("items")
        if not isinstance(raw_items, list):
            raise ExtractionError("LLM response has no 'items' list")

        items: List[ExtractedPunchListItem] = []
        for raw in raw_items:
            item = _validate_item(raw)
            if item is not None:
                items.append(item)

        summary = data.get("summary")
        return PunchListExtractionResult(items=items, summary=summary if isinstance(summary, str) else "")


def _validate_item(raw: Any):
    if not isinstance(raw, dict):
        logger.warning(f"Dropping non-object extraction item: {raw!r}")
        return None
    # Older prompt versions used "description" instead of "item"
    if "item" not in raw and "description" in raw:
        raw = {**raw, "item": raw["description"]}
    try:
        return ExtractedPunchListItem.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Dropping invalid extraction item: {e.errors()[0].get('msg')}")
        return None


class ExtractionStage:
    """Extraction stage: transcribed voice messages become ``extracted`` punch list items."""

    stage = "extract"

    def __init__(
        self,
        voice_store: VoiceStore,
        punch_list_store: PunchListStore,
        extractor: PunchListExtractor,
        claim_timeout_minutes: int = 10,
    ):
        self.voice_store = voice_store
        self.punch_list_store = punch_list_store
        self.extractor = extractor
        self.claim_timeout_minutes = claim_timeout_minutes

    async def process_transcribed(self, limit: int) -> StageResult:
        pending = await self.voice_store.list_pending_extractions(limit, self.claim_timeout_minutes)
        return await run_items(self.stage, pending, self._extract, item_id=lambda p: p.voice_message_id)

    async def process_one(self, voice_message_id: str) -> StageResult:
        pending = await self.voice_store.get_pending_extraction(voice_message_id)
        if pending is None:
            logger.warning(f"Voice message {voice_message_id} has no transcription to extract")
            return StageResult(stage=self.stage)
        return await run_items(self.stage, [pending], self._extract, item_id=lambda p: p.voice_message_id)

    async def _extract(self, pending: PendingExtraction):
        voice_message_id = pending.voice_message_id
        if not await self.voice_store.claim_extraction(voice_message_id, self.claim_timeout_minutes):
            logger.warning(f"Extraction for {voice_message_id} already claimed, skipping")
            return SKIPPED

        try:
            result = await asyncio.to_thread(self.extractor.extract, pending.transcription_text)
            created = await self.punch_list_store.save_extraction(
                pending.project_id, voice_message_id, result.items, result.summary
            )
        except ExtractionError as e:
            if e.retryable:
                await self._release_after_error(voice_message_id)
            else:
                await self.voice_store.fail_extraction(voice_message_id, str(e))
            raise
        except Exception as e:
            await self._release_after_error(voice_message_id)
            raise ExtractionError(f"Extraction of {voice_message_id} interrupted: {e}", retryable=True) from e

        if created is None:
            logger.warning(f"Extraction claim for {voice_message_id} was taken over, discarding result")
            return SKIPPED

        logger.info(f"Extracted {len(created)} punch list items from voice message {voice_message_id}")
        return PROCESSED, {"items": len(created)}

    async def _release_after_error(self, voice_message_id: str) -> None:
        try:
            await self.voice_store.release_extraction(voice_message_id)
        except Exception as e:
            logger.error(f"Could not release extraction claim for {voice_message_id}: {e}")
        else:
            logger.warning(f"Released extraction claim for {voice_message_id}, next run retries it")
