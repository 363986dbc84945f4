import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from assignment.assignment_selector import AssignmentSelector
from extraction.punch_list_extractor import ExtractionStage
from messaging.dispatcher import MessagingDispatcher
from pipeline.stage import StageResult
from transcription.voice_transcriber import VoiceTranscriber

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineLimits:
    transcriptions: int = 5
    extractions: int = 5
    assignments: int = 10
    sms: int = 10
    reminders: int = 20

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "PipelineLimits":
        if not data:
            return cls()
        known = {k: int(v) for k, v in data.items() if k in cls.__dataclass_fields__ and v is not None}
        return cls(**known)


# Fixed sweep used by the scheduler entry point
CRON_LIMITS = PipelineLimits(transcriptions=10, extractions=10, assignments=20, sms=20, reminders=20)

# Small follow-through after a single inbound voice message
VOICE_MESSAGE_LIMITS = PipelineLimits(transcriptions=1, extractions=1, assignments=5, sms=5, reminders=0)


class PipelineOrchestrator:
    """
    Runs the punch list stages in order:
    transcribe -> extract -> assign -> dispatch -> remind.

    Each stage is bounded by its limit and wrapped on its own, so a stage that
    raises is reported with an error count and the next stage still runs. No
    state is kept between runs; every stage re-queries its rows.
    """

    def __init__(
        self,
        transcriber: VoiceTranscriber,
        extraction: ExtractionStage,
        selector: AssignmentSelector,
        dispatcher: MessagingDispatcher,
        reminder_after_minutes: int = 60,
    ):
        self.transcriber = transcriber
        self.extraction = extraction
        self.selector = selector
        self.dispatcher = dispatcher
        self.reminder_after_minutes = reminder_after_minutes

    # Single stages

    async def process_transcriptions(self, limit: int) -> StageResult:
        return await self.transcriber.process_pending(limit)

    async def process_extractions(self, limit: int) -> StageResult:
        return await self.extraction.process_transcribed(limit)

    async def process_assignments(self, limit: int) -> StageResult:
        return await self.selector.process_pending(limit)

    async def process_sms(self, limit: int) -> StageResult:
        return await self.dispatcher.process_pending(limit)

    async def send_reminders(self, limit: int) -> StageResult:
        return await self.dispatcher.send_reminders(limit, self.reminder_after_minutes)

    # Batch runs

    async def run_pipeline(self, limits: PipelineLimits = PipelineLimits()) -> dict:
        start = time.time()
        stages = [
            ("transcriptions", lambda: self.process_transcriptions(limits.transcriptions)),
            ("extractions", lambda: self.process_extractions(limits.extractions)),
            ("assignments", lambda: self.process_assignments(limits.assignments)),
            ("sms", lambda: self.process_sms(limits.sms)),
            ("reminders", lambda: self.send_reminders(limits.reminders)),
        ]
        logger.info(f"Pipeline run started with limits {limits}")

        results = {}
        for name, run in stages:
            results[name] = (await _guarded(name, run)).to_dict()

        summary = _summarize(results, start)
        logger.info(
            f"Pipeline run finished: processed={summary['total_processed']} "
            f"errors={summary['total_errors']} ({summary['duration_ms']}ms)"
        )
        return summary

    async def process_voice_message(self, voice_message_id: str) -> dict:
        """
        Walk one voice message through transcription and extraction, then sweep its items onward.

        When transcription or extraction fails in a way worth another attempt, the
        later stages are skipped and ``retry_reason`` in the summary carries the
        error; callers holding a queue job fail it with that reason.
        """
        start = time.time()
        limits = VOICE_MESSAGE_LIMITS
        logger.info(f"Processing voice message {voice_message_id}")

        results = {}
        retry_reason = None
        for name, run in (
            ("transcriptions", lambda: self.transcriber.process_one(voice_message_id)),
            ("extractions", lambda: self.extraction.process_one(voice_message_id)),
        ):
            result = await _guarded(name, run)
            results[name] = result.to_dict()
            retry_reason = result.retry_reason()
            if retry_reason:
                logger.warning(f"Voice message {voice_message_id} needs another attempt after {name}: {retry_reason}")
                break

        if retry_reason is None:
            results["assignments"] = (await _guarded(
                "assignments", lambda: self.process_assignments(limits.assignments)
            )).to_dict()
            results["sms"] = (await _guarded("sms", lambda: self.process_sms(limits.sms))).to_dict()

        summary = _summarize(results, start)
        summary["voice_message_id"] = voice_message_id
        summary["retry_reason"] = retry_reason
        return summary


async def _guarded(name: str, run: Callable[[], Awaitable[StageResult]]) -> StageResult:
    try:
        return await run()
    except Exception as e:
        logger.exception(f"Pipeline stage {name} failed: {e}")
        return StageResult(stage=name, error=str(e))


def _summarize(results: dict, start: float) -> dict:
    return {
        "stages": results,
        "total_processed": sum(r["processed"] for r in results.values()),
        "total_errors": sum(r["errors"] for r in results.values()),
        "duration_ms": int((time.time() - start) * 1000),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
