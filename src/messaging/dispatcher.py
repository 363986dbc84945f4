import asyncio
import logging
from typing import Optional, Tuple

from api.metrics import SMS_TOTAL
from messaging import templates
from messaging.phone import format_phone_number, is_valid_phone_number
from messaging.sms_gateway import DeliveryResult, SMSGateway
from pipeline.stage import FAILED, PROCESSED, SKIPPED, ItemOutcome, StageResult, run_items
from renovation_advisor.errors import NotFoundError
from renovation_advisor.models import Contractor, PunchListAssignment
from storage.contractor_store import ContractorStore
from storage.project_store import ProjectStore
from storage.punch_list_store import PunchListStore

logger = logging.getLogger(__name__)

ALREADY_CLAIMED = "already dispatched or in flight"


class MessagingDispatcher:
    """
    Sends assignment notices and reminders to contractors.

    Each send is claimed on the assignment row first (``dispatch_claimed_at`` or
    ``reminder_sent_at``) and the claim is released when the gateway fails, so
    the next run retries it.
    """

    stage = "dispatch"
    reminder_stage = "remind"

    def __init__(
        self,
        punch_list_store: PunchListStore,
        contractor_store: ContractorStore,
        project_store: ProjectStore,
        gateway: SMSGateway,
        admin_phone: Optional[str] = None,
        claim_timeout_minutes: int = 10,
    ):
        self.punch_list_store = punch_list_store
        self.contractor_store = contractor_store
        self.project_store = project_store
        self.gateway = gateway
        self.admin_phone = admin_phone
        self.claim_timeout_minutes = claim_timeout_minutes

    async def message_context(self, assignment: PunchListAssignment) -> Tuple[Contractor, templates.MessageContext]:
        item = await self.punch_list_store.get_item(assignment.punch_list_item_id)
        if item is None:
            raise NotFoundError(f"Punch list item {assignment.punch_list_item_id} not found")
        contractor = await self.contractor_store.get_contractor(assignment.contractor_id)
        if contractor is None:
            raise NotFoundError(f"Contractor {assignment.contractor_id} not found")

        project = await self.project_store.get_project(assignment.project_id)
        homeowner = await self.project_store.get_profile(project.homeowner_id) if project else None

        ctx = templates.MessageContext(
            contractor_name=contractor.business_name,
            project_title=project.title if project else "Renovation project",
            homeowner_name=(homeowner.full_name if homeowner and homeowner.full_name else "Homeowner"),
            description=item.description,
            priority=item.priority,
            room=item.room,
            estimated_hours=item.estimated_hours,
            materials_needed=list(item.materials_needed),
            admin_phone=self.admin_phone,
        )
        return contractor, ctx

    async def send_text(self, to: str, body: str, kind: str = "reply") -> DeliveryResult:
        """Send an arbitrary body; invalid numbers fail without touching the gateway."""
        phone = format_phone_number(to or "")
        if not is_valid_phone_number(phone):
            result = DeliveryResult(success=False, status="invalid_phone", error=f"Invalid phone number: {to}")
        else:
            result = await asyncio.to_thread(self.gateway.send, phone, body)
        try:
            SMS_TOTAL.labels(kind=kind, status="sent" if result.success else "failed").inc()
        except Exception:
            pass
        return result

    async def send(self, assignment: PunchListAssignment) -> DeliveryResult:
        """Render the priority template and deliver the assignment notice once."""
        if not await self.punch_list_store.claim_dispatch(assignment.id, self.claim_timeout_minutes):
            return DeliveryResult(success=False, status="skipped", error=ALREADY_CLAIMED)

        try:
            contractor, ctx = await self.message_context(assignment)
            result = await self.send_text(contractor.phone or "", templates.assignment_message(ctx), kind="assignment")
        except Exception:
            await self.punch_list_store.release_dispatch(assignment.id, "error")
            raise

        if result.success:
            await self.punch_list_store.mark_sent(assignment.id, result.message_id, result.status or "sent")
            logger.info(f"Sent {ctx.priority} assignment {assignment.id} to {contractor.business_name}")
        else:
            await self.punch_list_store.release_dispatch(assignment.id, result.status or "failed")
            logger.warning(f"Assignment {assignment.id} not delivered: {result.error}")
        return result

    async def process_pending(self, limit: int) -> StageResult:
        assignments = await self.punch_list_store.list_undispatched(limit, self.claim_timeout_minutes)
        return await run_items(self.stage, assignments, self._dispatch)

    async def _dispatch(self, assignment: PunchListAssignment):
        result = await self.send(assignment)
        if result.success:
            return PROCESSED, {"sms_message_id": result.message_id}
        if result.status == "skipped":
            return SKIPPED
        return ItemOutcome(item_id=assignment.id, outcome=FAILED, error=result.error)

    async def send_reminders(self, limit: int, older_than_minutes: int) -> StageResult:
        due = await self.punch_list_store.list_reminder_due(limit, older_than_minutes)
        return await run_items(self.reminder_stage, due, self._remind)

    async def _remind(self, assignment: PunchListAssignment):
        if not await self.punch_list_store.claim_reminder(assignment.id):
            return SKIPPED

        try:
            contractor, ctx = await self.message_context(assignment)
            result = await self.send_text(contractor.phone or "", templates.reminder(ctx), kind="reminder")
        except Exception:
            await self.punch_list_store.release_reminder(assignment.id)
            raise

        if not result.success:
            await self.punch_list_store.release_reminder(assignment.id)
            return ItemOutcome(item_id=assignment.id, outcome=FAILED, error=result.error)
        logger.info(f"Sent reminder for assignment {assignment.id} to {contractor.business_name}")
        return PROCESSED
