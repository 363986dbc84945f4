import itertools
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from api.config import Settings
from api.main import create_app
from api.services import assemble_services
from llm.providers.mock_provider import MockProvider
from messaging.sms_gateway import DeliveryResult, SMSGateway
from renovation_advisor.models import (
    Contractor,
    PendingExtraction,
    Profile,
    Project,
    PunchListAssignment,
    PunchListItem,
    VoiceMessage,
)
from storage.project_store import ACTIVE_PROJECT_STATUSES
from storage.punch_list_store import ASSIGNABLE_STATUSES, summarize_assignments
from transcription.audio_fetcher import FetchedAudio
from transcription.providers.base import TranscriptionProvider, TranscriptOutput

ADMIN_KEY = "admin-key"
CRON_SECRET = "cron-secret"


class FakeProvider:
    def __init__(self, response_text: str):
        self._response_text = response_text

    def generate(self, *, system: str, user: str) -> str:
        return self._response_text


@pytest.fixture
def fake_provider_factory():
    def _make(response_text: str):
        return FakeProvider(response_text)
    return _make


def new_id() -> str:
    return str(uuid.uuid4())


def _digits(phone: Optional[str]) -> str:
    return "".join(ch for ch in (phone or "") if ch.isdigit())


class InMemoryData:
    """Rows shared by the fake stores; ``writes`` counts every mutation."""

    def __init__(self):
        self.profiles = {}
        self.projects = {}
        self.contractors = {}
        self.voice_messages = {}
        self.transcriptions = {}
        self.extractions = {}
        self.items = {}
        self.assignments = {}
        self.dispatch_claims = set()
        self.webhook_events = []
        self.writes = 0
        self._clock = itertools.count()

    def now(self) -> datetime:
        # strictly increasing so "most recent first" is deterministic
        return datetime.now(timezone.utc) + timedelta(microseconds=next(self._clock))


class FakeDatabase:
    def __init__(self, healthy: bool = True):
        self.healthy = healthy

    async def connect(self):
        pass

    async def close(self):
        pass

    async def init_schema(self):
        pass

    async def health_check(self) -> dict:
        return {"status": "healthy" if self.healthy else "unhealthy"}


class FakeVoiceStore:
    def __init__(self, data: InMemoryData):
        self.data = data

    async def create_voice_message(self, project_id, sender_id, audio_url, duration_seconds=None, whatsapp_message_id=None):
        if whatsapp_message_id and any(
            m.whatsapp_message_id == whatsapp_message_id for m in self.data.voice_messages.values()
        ):
            return None
        now = self.data.now()
        message = VoiceMessage(
            id=new_id(),
            project_id=project_id,
            sender_id=sender_id,
            audio_url=audio_url,
            duration_seconds=duration_seconds,
            whatsapp_message_id=whatsapp_message_id,
            created_at=now,
            updated_at=now,
        )
        self.data.voice_messages[message.id] = message
        self.data.writes += 1
        return message

    async def get_voice_message(self, voice_message_id):
        return self.data.voice_messages.get(voice_message_id)

    def _claimable(self, message, stale_after_minutes):
        if message.status == "received":
            return True
        stale_before = self.data.now() - timedelta(minutes=stale_after_minutes)
        return message.status == "transcribing" and message.updated_at < stale_before

    async def list_received(self, limit, stale_after_minutes=10):
        received = [m for m in self.data.voice_messages.values() if self._claimable(m, stale_after_minutes)]
        return sorted(received, key=lambda m: m.created_at)[:limit]

    def _set_status(self, voice_message_id, status, error_message=None):
        message = self.data.voice_messages[voice_message_id]
        updated = message.model_copy(
            update={"status": status, "error_message": error_message, "updated_at": self.data.now()}
        )
        self.data.voice_messages[voice_message_id] = updated
        self.data.writes += 1
        return updated

    async def claim_for_transcription(self, voice_message_id, stale_after_minutes=10):
        message = self.data.voice_messages.get(voice_message_id)
        if message is None or not self._claimable(message, stale_after_minutes):
            return None
        return self._set_status(voice_message_id, "transcribing")

    async def release_transcription(self, voice_message_id, error_message):
        message = self.data.voice_messages.get(voice_message_id)
        if message is None or message.status != "transcribing":
            return False
        self._set_status(voice_message_id, "received", error_message)
        return True

    async def save_transcription(self, transcription):
        message = self.data.voice_messages.get(transcription.voice_message_id)
        if message is None or message.status != "transcribing":
            return False
        self._set_status(message.id, "transcribed")
        self.data.transcriptions[message.id] = transcription
        return True

    async def mark_failed(self, voice_message_id, error_message):
        message = self.data.voice_messages.get(voice_message_id)
        if message is None or message.status in ("transcribed", "failed"):
            return False
        self._set_status(voice_message_id, "failed", error_message)
        return True

    async def get_transcription(self, voice_message_id):
        return self.data.transcriptions.get(voice_message_id)

    def _extraction_claimable(self, voice_message_id, stale_after_minutes=10):
        row = self.data.extractions.get(voice_message_id)
        if row is None:
            return True
        stale_before = self.data.now() - timedelta(minutes=stale_after_minutes)
        return row["status"] == "extracting" and row["updated_at"] < stale_before

    def _pending(self, voice_message_id, stale_after_minutes=10) -> Optional[PendingExtraction]:
        message = self.data.voice_messages.get(voice_message_id)
        transcription = self.data.transcriptions.get(voice_message_id)
        if message is None or transcription is None or message.status != "transcribed":
            return None
        if not self._extraction_claimable(voice_message_id, stale_after_minutes):
            return None
        return PendingExtraction(
            voice_message_id=voice_message_id,
            project_id=message.project_id,
            transcription_text=transcription.transcription_text,
        )

    async def list_pending_extractions(self, limit, stale_after_minutes=10):
        pending = [self._pending(vid, stale_after_minutes) for vid in self.data.voice_messages]
        return [p for p in pending if p is not None][:limit]

    async def get_pending_extraction(self, voice_message_id):
        return self._pending(voice_message_id)

    async def claim_extraction(self, voice_message_id, stale_after_minutes=10):
        if not self._extraction_claimable(voice_message_id, stale_after_minutes):
            return False
        self.data.extractions[voice_message_id] = {
            "status": "extracting",
            "item_count": 0,
            "summary": None,
            "updated_at": self.data.now(),
        }
        self.data.writes += 1
        return True

    async def release_extraction(self, voice_message_id):
        row = self.data.extractions.get(voice_message_id)
        if row is not None and row["status"] == "extracting":
            del self.data.extractions[voice_message_id]
            self.data.writes += 1

    async def fail_extraction(self, voice_message_id, error_message):
        self.data.extractions[voice_message_id].update(
            status="failed", error_message=error_message, updated_at=self.data.now()
        )
        self.data.writes += 1

    async def status_counts(self):
        counts = {}
        for m in self.data.voice_messages.values():
            counts[m.status] = counts.get(m.status, 0) + 1
        return counts

    async def record_webhook_event(self, source, event_type, payload, phone_number=None):
        self.data.webhook_events.append(
            {"source": source, "event_type": event_type, "payload": payload, "phone_number": phone_number}
        )
        self.data.writes += 1


class FakePunchListStore:
    def __init__(self, data: InMemoryData):
        self.data = data

    def _update_item(self, item_id, **changes):
        item = self.data.items[item_id]
        self.data.items[item_id] = item.model_copy(update=changes)
        self.data.writes += 1

    def _update_assignment(self, assignment_id, **changes):
        assignment = self.data.assignments[assignment_id]
        updated = assignment.model_copy(update=changes)
        self.data.assignments[assignment_id] = updated
        self.data.writes += 1
        return updated

    async def save_extraction(self, project_id, voice_message_id, items, summary=""):
        row = self.data.extractions.get(voice_message_id)
        if row is None or row["status"] != "extracting":
            return None
        created = []
        for extracted in items:
            now = self.data.now()
            item = PunchListItem(
                id=new_id(),
                project_id=project_id,
                voice_message_id=voice_message_id,
                description=extracted.item,
                room=extracted.room,
                trade_category=extracted.trade,
                priority=extracted.priority,
                estimated_hours=extracted.estimated_hours,
                notes=extracted.notes,
                materials_needed=extracted.materials_needed,
                confidence_score=extracted.confidence_score,
                created_at=now,
                updated_at=now,
            )
            self.data.items[item.id] = item
            self.data.writes += 1
            created.append(item)
        row.update(status="extracted", item_count=len(created), summary=summary or None, updated_at=self.data.now())
        return created

    async def get_item(self, item_id):
        return self.data.items.get(item_id)

    async def list_assignable(self, limit):
        from renovation_advisor.models import PRIORITY_RANK

        items = [i for i in self.data.items.values() if i.status in ASSIGNABLE_STATUSES]
        items.sort(key=lambda i: (PRIORITY_RANK[i.priority], i.created_at))
        return items[:limit]

    async def list_items(self, project_id=None, status=None, limit=50):
        items = [
            i for i in self.data.items.values()
            if (project_id is None or i.project_id == project_id) and (status is None or i.status == status)
        ]
        return items[:limit]

    async def mark_pending(self, item_id):
        item = self.data.items.get(item_id)
        if item is None or item.status != "extracted":
            return False
        self._update_item(item_id, status="pending")
        return True

    async def create_assignment(self, item, contractor_id, method, reason):
        current = self.data.items.get(item.id)
        if current is None or current.status not in ASSIGNABLE_STATUSES:
            return None
        if any(
            a.punch_list_item_id == item.id and a.is_active for a in self.data.assignments.values()
        ):
            return None
        self._update_item(item.id, status="assigned")
        assignment = PunchListAssignment(
            id=new_id(),
            punch_list_item_id=item.id,
            contractor_id=contractor_id,
            project_id=item.project_id,
            assignment_method=method,
            assignment_reason=reason,
            created_at=self.data.now(),
        )
        self.data.assignments[assignment.id] = assignment
        self.data.writes += 1
        return assignment

    async def declined_contractor_ids(self, item_id):
        return {
            a.contractor_id for a in self.data.assignments.values()
            if a.punch_list_item_id == item_id and a.contractor_response == "declined"
        }

    async def get_assignment(self, assignment_id):
        return self.data.assignments.get(assignment_id)

    async def list_assignments(self, project_id=None, response=None, limit=50):
        rows = [
            a for a in self.data.assignments.values()
            if (project_id is None or a.project_id == project_id)
            and (response is None or a.contractor_response == response)
        ]
        return sorted(rows, key=lambda a: a.created_at, reverse=True)[:limit]

    async def list_undispatched(self, limit, claim_timeout_minutes):
        rows = [
            a for a in self.data.assignments.values()
            if a.sent_at is None and a.contractor_response == "pending" and a.id not in self.data.dispatch_claims
        ]
        return sorted(rows, key=lambda a: a.created_at)[:limit]

    async def claim_dispatch(self, assignment_id, claim_timeout_minutes):
        assignment = self.data.assignments.get(assignment_id)
        if assignment is None or assignment.sent_at is not None or assignment_id in self.data.dispatch_claims:
            return False
        self.data.dispatch_claims.add(assignment_id)
        self.data.writes += 1
        return True

    async def mark_sent(self, assignment_id, sms_message_id, sms_status):
        self._update_assignment(
            assignment_id, sent_at=self.data.now(), sms_message_id=sms_message_id, sms_status=sms_status
        )

    async def release_dispatch(self, assignment_id, sms_status):
        self.data.dispatch_claims.discard(assignment_id)
        self._update_assignment(assignment_id, sms_status=sms_status)

    async def list_reminder_due(self, limit, older_than_minutes):
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        rows = [
            a for a in self.data.assignments.values()
            if a.contractor_response == "pending"
            and a.sent_at is not None
            and a.sent_at <= cutoff
            and a.reminder_sent_at is None
        ]
        return sorted(rows, key=lambda a: a.sent_at)[:limit]

    async def claim_reminder(self, assignment_id):
        assignment = self.data.assignments.get(assignment_id)
        if assignment is None or assignment.reminder_sent_at is not None:
            return False
        self._update_assignment(assignment_id, reminder_sent_at=self.data.now())
        return True

    async def release_reminder(self, assignment_id):
        self._update_assignment(assignment_id, reminder_sent_at=None)

    async def open_assignments_for_contractor(self, contractor_id, responses):
        rows = [
            a for a in self.data.assignments.values()
            if a.contractor_id == contractor_id and a.contractor_response in responses
        ]
        return sorted(rows, key=lambda a: a.created_at, reverse=True)

    async def update_response(self, assignment_id, expected, new_response, notes=None):
        assignment = self.data.assignments.get(assignment_id)
        if assignment is None or assignment.contractor_response != expected:
            return None
        updated = self._update_assignment(
            assignment_id,
            contractor_response=new_response,
            contractor_notes=notes or assignment.contractor_notes,
            responded_at=self.data.now(),
        )
        item = self.data.items[assignment.punch_list_item_id]
        if new_response == "declined" and item.status == "assigned":
            self._update_item(item.id, status="pending")
        elif new_response == "completed" and item.status != "completed":
            self._update_item(item.id, status="completed", completed_at=self.data.now())
        return updated

    async def append_note(self, assignment_id, expected, note):
        assignment = self.data.assignments.get(assignment_id)
        if assignment is None or assignment.contractor_response != expected:
            return None
        notes = "\n".join(n for n in (assignment.contractor_notes, note) if n)
        return self._update_assignment(assignment_id, contractor_notes=notes)

    async def item_status_counts(self):
        counts = {}
        for i in self.data.items.values():
            counts[i.status] = counts.get(i.status, 0) + 1
        return counts

    async def extraction_stats(self):
        by_status, by_trade, by_priority = {}, {}, {}
        for e in self.data.extractions.values():
            by_status[e["status"]] = by_status.get(e["status"], 0) + 1
        scores = []
        for i in self.data.items.values():
            by_trade[i.trade_category] = by_trade.get(i.trade_category, 0) + 1
            by_priority[i.priority] = by_priority.get(i.priority, 0) + 1
            if i.confidence_score is not None:
                scores.append(i.confidence_score)
        return {
            "extractions_by_status": by_status,
            "items_by_trade": by_trade,
            "items_by_priority": by_priority,
            "average_confidence": sum(scores) / len(scores) if scores else None,
        }

    async def assignment_stats(self):
        by_response, by_method = {}, {}
        for a in self.data.assignments.values():
            by_response[a.contractor_response] = by_response.get(a.contractor_response, 0) + 1
            by_method[a.assignment_method] = by_method.get(a.assignment_method, 0) + 1
        return summarize_assignments(by_response, by_method)


class FakeContractorStore:
    def __init__(self, data: InMemoryData):
        self.data = data

    async def list_active(self):
        return [c for c in self.data.contractors.values() if c.is_active]

    async def get_contractor(self, contractor_id):
        return self.data.contractors.get(contractor_id)

    async def find_by_phone(self, phone):
        digits = _digits(phone)
        if len(digits) < 10:
            return None
        for c in self.data.contractors.values():
            if c.is_active and _digits(c.phone)[-10:] == digits[-10:]:
                return c
        return None


class FakeProjectStore:
    def __init__(self, data: InMemoryData):
        self.data = data

    async def get_project(self, project_id):
        return self.data.projects.get(project_id)

    async def get_profile(self, profile_id):
        return self.data.profiles.get(profile_id)

    async def find_profile_by_phone(self, phone):
        digits = _digits(phone)
        if len(digits) < 10:
            return None
        for p in self.data.profiles.values():
            if _digits(p.phone)[-10:] == digits[-10:]:
                return p
        return None

    async def find_active_project(self, homeowner_id):
        for p in reversed(list(self.data.projects.values())):
            if p.homeowner_id == homeowner_id and p.status in ACTIVE_PROJECT_STATUSES:
                return p
        return None


class FakeQueue:
    def __init__(self, data: InMemoryData):
        self.data = data
        self.jobs = {}

    async def enqueue(self, voice_message_id, source="webhook", max_attempts=3):
        job_id = new_id()
        self.jobs[job_id] = {
            "voice_message_id": voice_message_id,
            "source": source,
            "status": "pending",
            "attempts": 0,
            "max_attempts": max_attempts,
            "result": None,
            "last_error": None,
        }
        self.data.writes += 1
        return job_id

    async def dequeue(self):
        from storage.durable_queue import DequeueResult

        for job_id, job in self.jobs.items():
            if job["status"] == "pending":
                job["status"] = "processing"
                job["attempts"] += 1
                return DequeueResult(id=job_id, voice_message_id=job["voice_message_id"], attempts=job["attempts"])
        return None

    async def complete(self, job_id, result):
        self.jobs[job_id].update(status="completed", result=result)
        return True

    async def fail(self, job_id, error, retry_delay_s=30):
        job = self.jobs[job_id]
        job["last_error"] = error
        job["retry_delay_s"] = retry_delay_s
        job["status"] = "dead" if job["attempts"] >= job["max_attempts"] else "pending"
        return job["status"]

    async def get_pending_count(self):
        return sum(1 for j in self.jobs.values() if j["status"] == "pending")

    async def get_stats(self):
        by_status = {}
        for j in self.jobs.values():
            by_status.setdefault(j["status"], {"count": 0})["count"] += 1
        return {"by_status": by_status, "total": len(self.jobs)}

    async def recover_stale(self, timeout_minutes=5):
        return 0

    def _job(self, job_id):
        from storage.durable_queue import PipelineJob

        job = self.jobs[job_id]
        now = self.data.now()
        return PipelineJob(
            id=job_id,
            voice_message_id=job["voice_message_id"],
            source=job["source"],
            status=job["status"],
            attempts=job["attempts"],
            max_attempts=job["max_attempts"],
            last_error=job["last_error"],
            created_at=now,
            updated_at=now,
            processing_started_at=None,
            completed_at=now if job["status"] == "completed" else None,
            worker_id=None,
            result=job["result"],
        )

    async def get_job(self, job_id):
        return self._job(job_id) if job_id in self.jobs else None

    async def get_recent_jobs(self, limit=20, status=None):
        ids = [i for i, j in self.jobs.items() if status is None or j["status"] == status]
        return [self._job(i) for i in ids[:limit]]

    async def get_dead_letter_jobs(self, limit=50):
        return await self.get_recent_jobs(limit=limit, status="dead")

    async def retry_dead_job(self, job_id):
        job = self.jobs.get(job_id)
        if job is None or job["status"] != "dead":
            return False
        job.update(status="pending", attempts=0, last_error=None)
        return True

    async def purge_completed(self, older_than_hours=24):
        done = [i for i, j in self.jobs.items() if j["status"] == "completed"]
        for job_id in done:
            del self.jobs[job_id]
        return len(done)

    async def delete_job(self, job_id):
        return self.jobs.pop(job_id, None) is not None


class FakeGateway(SMSGateway):
    name = "fake-sms"
    configured = True

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: List[tuple] = []

    def send(self, to: str, body: str) -> DeliveryResult:
        if not self.succeed:
            return DeliveryResult(success=False, status="failed", error="gateway down")
        self.sent.append((to, body))
        return DeliveryResult(success=True, message_id=f"SM{len(self.sent)}", status="queued")


class FakeTranscriptionProvider(TranscriptionProvider):
    name = "fake-whisper"

    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls = 0

    def transcribe(self, audio: bytes, *, filename: str = "audio.ogg", content_type: str = "audio/ogg") -> TranscriptOutput:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return TranscriptOutput(text=self.text, language="en", confidence=0.95, service=self.name)


class FakeFetcher:
    def __init__(self):
        self.urls = []

    def fetch(self, audio_url: str) -> FetchedAudio:
        self.urls.append(audio_url)
        return FetchedAudio(content=b"OggS fake audio", content_type="audio/ogg", filename="audio.ogg")


# Row builders


def add_profile(data: InMemoryData, phone: str = "+15125550100", **kw) -> Profile:
    profile = Profile(id=new_id(), full_name=kw.pop("full_name", "Dana Homeowner"), phone=phone, **kw)
    data.profiles[profile.id] = profile
    return profile


def add_project(data: InMemoryData, homeowner: Profile, **kw) -> Project:
    fields = {"title": "Bathroom remodel", "city": "Austin", "budget_range": "25-50k", "timeline": "1-3 months"}
    fields.update(kw)
    project = Project(id=new_id(), homeowner_id=homeowner.id, **fields)
    data.projects[project.id] = project
    return project


def add_contractor(data: InMemoryData, **kw) -> Contractor:
    fields = {
        "business_name": "Reliable Plumbing",
        "phone": "+15125550199",
        "specialties": ["plumber"],
        "service_areas": ["Austin"],
        "price_range": "budget",
        "availability_status": "available",
        "rating": 4.5,
    }
    fields.update(kw)
    contractor = Contractor(id=new_id(), **fields)
    data.contractors[contractor.id] = contractor
    return contractor


def add_item(data: InMemoryData, project: Project, **kw) -> PunchListItem:
    fields = {"description": "Replace toilet wax ring", "trade_category": "plumber", "priority": "high", "room": "bathroom"}
    fields.update(kw)
    item = PunchListItem(id=new_id(), project_id=project.id, created_at=data.now(), **fields)
    data.items[item.id] = item
    return item


# Fixtures


@pytest.fixture
def data():
    return InMemoryData()


@pytest.fixture
def settings():
    return Settings(
        llm_provider="mock",
        admin_api_key=ADMIN_KEY,
        cron_secret_key=CRON_SECRET,
        whatsapp_verify_token="verify-me",
        admin_phone="+15125550000",
        pipeline_worker_enabled=False,
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def transcription_provider():
    return FakeTranscriptionProvider("toilet is leaking, needs new wax ring, high priority, bathroom")


@pytest.fixture
def services(data, settings, gateway, transcription_provider):
    return assemble_services(
        settings,
        database=FakeDatabase(),
        voice_store=FakeVoiceStore(data),
        punch_list_store=FakePunchListStore(data),
        contractor_store=FakeContractorStore(data),
        project_store=FakeProjectStore(data),
        queue=FakeQueue(data),
        llm_provider=MockProvider(),
        transcription_provider=transcription_provider,
        gateway=gateway,
        fetcher=FakeFetcher(),
    )


@pytest.fixture
def client(services):
    return TestClient(create_app(services=services))


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_KEY}"}


@pytest.fixture
def cron_headers():
    return {"Authorization": f"Bearer {CRON_SECRET}"}
