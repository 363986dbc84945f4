import logging
from dataclasses import dataclass
from typing import Any, Optional

from api.config import Settings
from assignment.assignment_selector import AssignmentSelector
from extraction.punch_list_extractor import ExtractionStage, PunchListExtractor
from llm.llm_client import LLMClient
from llm.providers.base import LLMProvider
from llm.providers.mock_provider import MockProvider
from llm.providers.openai_provider import OpenAIProvider
from messaging.dispatcher import MessagingDispatcher
from messaging.reply_parser import ReplyHandler, ReplyParser
from messaging.sms_gateway import SMSGateway, TwilioGateway
from pipeline.orchestrator import PipelineOrchestrator
from storage.contractor_store import ContractorStore
from storage.db import Database
from storage.durable_queue import DurableQueue
from storage.project_store import ProjectStore
from storage.punch_list_store import PunchListStore
from storage.voice_store import VoiceStore
from transcription.audio_fetcher import AudioFetcher
from transcription.providers.base import TranscriptionProvider, UnconfiguredProvider
from transcription.providers.local_whisper import LocalWhisperProvider
from transcription.providers.openai_whisper import OpenAIWhisperProvider
from transcription.voice_transcriber import VoiceTranscriber

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request or worker needs, built once per application."""

    settings: Settings
    database: Any
    voice_store: Any
    punch_list_store: Any
    contractor_store: Any
    project_store: Any
    queue: Optional[DurableQueue]
    llm: LLMClient
    transcription_provider: TranscriptionProvider
    gateway: SMSGateway
    transcriber: VoiceTranscriber
    extraction: ExtractionStage
    selector: AssignmentSelector
    dispatcher: MessagingDispatcher
    reply_handler: ReplyHandler
    orchestrator: PipelineOrchestrator

    async def health(self) -> dict:
        db_health = await self.database.health_check()
        return {
            "status": "healthy" if db_health.get("status") == "healthy" else "degraded",
            "database": db_health,
            "llm_provider": self.llm.provider_name,
            "transcription_provider": self.transcription_provider.name,
            "sms_configured": bool(getattr(self.gateway, "configured", True)),
        }


def build_llm_provider(settings: Settings) -> LLMProvider:
    if settings.llm_provider == "mock" or not settings.openai_api_key:
        if settings.llm_provider != "mock":
            logger.warning("OPENAI_API_KEY missing, using mock LLM provider")
        return MockProvider()
    return OpenAIProvider(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
    )


def build_transcription_provider(settings: Settings) -> TranscriptionProvider:
    hosted = None
    if settings.openai_api_key:
        hosted = OpenAIWhisperProvider(
            api_key=settings.openai_api_key,
            model=settings.whisper_model,
            base_url=settings.openai_base_url,
        )
    if settings.use_local_whisper:
        return LocalWhisperProvider(base_url=settings.whisper_local_url, fallback=hosted)
    if hosted is None:
        logger.warning("OPENAI_API_KEY missing and USE_LOCAL_WHISPER off, transcription disabled")
        return UnconfiguredProvider()
    return hosted


def assemble_services(
    settings: Settings,
    *,
    database,
    voice_store,
    punch_list_store,
    contractor_store,
    project_store,
    queue: Optional[DurableQueue],
    llm_provider: LLMProvider,
    transcription_provider: TranscriptionProvider,
    gateway: SMSGateway,
    fetcher: AudioFetcher,
) -> Services:
    """Wire stages around already constructed stores and clients."""
    llm = LLMClient(llm_provider)
    claim_timeout = settings.dispatch_claim_timeout_minutes
    transcriber = VoiceTranscriber(voice_store, transcription_provider, fetcher, claim_timeout_minutes=claim_timeout)
    extraction = ExtractionStage(
        voice_store, punch_list_store, PunchListExtractor(llm), claim_timeout_minutes=claim_timeout
    )
    selector = AssignmentSelector(punch_list_store, contractor_store, project_store)
    dispatcher = MessagingDispatcher(
        punch_list_store,
        contractor_store,
        project_store,
        gateway,
        admin_phone=settings.admin_phone or None,
        claim_timeout_minutes=settings.dispatch_claim_timeout_minutes,
    )
    reply_handler = ReplyHandler(
        ReplyParser(contractor_store, punch_list_store),
        dispatcher,
        admin_phone=settings.admin_phone or None,
    )
    orchestrator = PipelineOrchestrator(
        transcriber,
        extraction,
        selector,
        dispatcher,
        reminder_after_minutes=settings.reminder_after_minutes,
    )
    return Services(
        settings=settings,
        database=database,
        voice_store=voice_store,
        punch_list_store=punch_list_store,
        contractor_store=contractor_store,
        project_store=project_store,
        queue=queue,
        llm=llm,
        transcription_provider=transcription_provider,
        gateway=gateway,
        transcriber=transcriber,
        extraction=extraction,
        selector=selector,
        dispatcher=dispatcher,
        reply_handler=reply_handler,
        orchestrator=orchestrator,
    )


def build_services(settings: Settings) -> Services:
    """Production wiring: asyncpg-backed stores and hosted API clients."""
    database = Database(settings.database_url)
    return assemble_services(
        settings,
        database=database,
        voice_store=VoiceStore(database),
        punch_list_store=PunchListStore(database),
        contractor_store=ContractorStore(database),
        project_store=ProjectStore(database),
        queue=DurableQueue(database),
        llm_provider=build_llm_provider(settings),
        transcription_provider=build_transcription_provider(settings),
        gateway=TwilioGateway(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_phone_number,
        ),
        fetcher=AudioFetcher(
            whatsapp_access_token=settings.whatsapp_access_token,
            whatsapp_graph_url=settings.whatsapp_graph_url,
            twilio_account_sid=settings.twilio_account_sid,
            twilio_auth_token=settings.twilio_auth_token,
        ),
    )
