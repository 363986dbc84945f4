"""
Inbound contractor replies.

``ReplyParser.parse`` maps a text to ``(assignment, new response)`` without
side effects. ``ReplyHandler.handle`` applies the change with a compare-and-swap
on ``contractor_response`` and picks the acknowledgement text.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from api.metrics import REPLIES_TOTAL
from messaging import templates
from messaging.phone import strip_channel
from renovation_advisor.models import Contractor, PunchListAssignment
from storage.contractor_store import ContractorStore
from storage.punch_list_store import PunchListStore

logger = logging.getLogger(__name__)

ACCEPT_WORDS = frozenset({"accept", "accepted", "yes", "y", "ok", "okay"})
DECLINE_WORDS = frozenset({"decline", "declined", "no", "pass", "n"})
COMPLETE_WORDS = frozenset({"complete", "completed", "done", "finished"})
START_WORDS = frozenset({"start", "started", "starting", "begin", "began"})
INFO_WORDS = frozenset({"info", "details", "materials"})

INFO = "info"
# Work started: noted on the assignment, contractor_response unchanged
STARTED = "started"

# new response -> prior responses it may replace, in lookup order
EXPECTED_PRIOR = {
    "accepted": ("pending",),
    "declined": ("pending",),
    "completed": ("accepted", "pending"),
    STARTED: ("accepted", "pending"),
}

_WORD = re.compile(r"[a-z]+")


def classify(text: Optional[str]) -> Optional[str]:
    """First keyword in the message decides: 'accepted', 'declined', 'completed', 'started', 'info' or None."""
    for word in _WORD.findall((text or "").lower()):
        if word in ACCEPT_WORDS:
            return "accepted"
        if word in DECLINE_WORDS:
            return "declined"
        if word in COMPLETE_WORDS:
            return "completed"
        if word in START_WORDS:
            return STARTED
        if word in INFO_WORDS:
            return INFO
    return None


@dataclass(frozen=True)
class InboundMessage:
    from_phone: str
    body: str
    message_id: Optional[str] = None
    channel: str = "sms"


@dataclass(frozen=True)
class ParsedReply:
    assignment_id: str
    new_status: str
    expected_status: str
    contractor_id: str


class ReplyParser:
    def __init__(self, contractor_store: ContractorStore, punch_list_store: PunchListStore):
        self.contractor_store = contractor_store
        self.punch_list_store = punch_list_store

    async def find_sender(self, inbound: InboundMessage) -> Optional[Contractor]:
        return await self.contractor_store.find_by_phone(strip_channel(inbound.from_phone))

    async def resolve(self, contractor: Contractor, new_status: str) -> Optional[ParsedReply]:
        """Most recent open assignment of ``contractor`` that may move to ``new_status``."""
        for expected in EXPECTED_PRIOR[new_status]:
            open_assignments = await self.punch_list_store.open_assignments_for_contractor(
                contractor.id, (expected,)
            )
            if not open_assignments:
                continue
            if len(open_assignments) > 1:
                logger.warning(
                    f"Contractor {contractor.id} has {len(open_assignments)} {expected} assignments; "
                    f"applying reply to the most recent ({open_assignments[0].id})"
                )
            return ParsedReply(
                assignment_id=open_assignments[0].id,
                new_status=new_status,
                expected_status=expected,
                contractor_id=contractor.id,
            )
        return None

    async def parse(self, inbound: InboundMessage) -> Optional[ParsedReply]:
        action = classify(inbound.body)
        if action is None or action == INFO:
            logger.info(f"No status keyword in reply from {inbound.from_phone}")
            return None
        contractor = await self.find_sender(inbound)
        if contractor is None:
            logger.info(f"Reply from unknown number {inbound.from_phone}")
            return None
        return await self.resolve(contractor, action)


@dataclass
class ReplyResult:
    outcome: str
    reply_text: Optional[str] = None
    assignment: Optional[PunchListAssignment] = None


class ReplyHandler:
    """Applies parsed replies and builds the acknowledgement sent back to the contractor."""

    def __init__(self, parser: ReplyParser, dispatcher, admin_phone: Optional[str] = None):
        self.parser = parser
        self.dispatcher = dispatcher
        self.admin_phone = admin_phone

    async def handle(self, inbound: InboundMessage) -> ReplyResult:
        result = await self._handle(inbound)
        try:
            REPLIES_TOTAL.labels(outcome=result.outcome).inc()
        except Exception:
            pass
        return result

    async def _handle(self, inbound: InboundMessage) -> ReplyResult:
        contractor = await self.parser.find_sender(inbound)
        if contractor is None:
            logger.info(f"Reply from unknown number {inbound.from_phone}, ignoring")
            return ReplyResult(outcome="unknown_sender")

        action = classify(inbound.body)
        if action == INFO:
            return await self._info(contractor)

        if action is None:
            latest = await self._latest_open(contractor)
            if latest is None:
                return ReplyResult(outcome="no_pending", reply_text=templates.no_pending(self.admin_phone))
            _, ctx = await self.dispatcher.message_context(latest)
            return ReplyResult(outcome="unrecognized", reply_text=templates.help_text(ctx.description))

        parsed = await self.parser.resolve(contractor, action)
        if parsed is None:
            return ReplyResult(outcome="no_pending", reply_text=templates.no_pending(self.admin_phone))

        if parsed.new_status == STARTED:
            return await self._started(contractor, parsed, inbound)

        updated = await self.parser.punch_list_store.update_response(
            parsed.assignment_id, parsed.expected_status, parsed.new_status, notes=inbound.body
        )
        if updated is None:
            logger.warning(f"Assignment {parsed.assignment_id} changed before reply could be applied")
            return ReplyResult(outcome="conflict")

        logger.info(f"Assignment {updated.id} {parsed.expected_status} -> {parsed.new_status} by {contractor.business_name}")
        _, ctx = await self.dispatcher.message_context(updated)
        ack = {
            "accepted": templates.accepted_follow_up,
            "declined": templates.decline_ack,
            "completed": templates.completion_confirmation,
        }[parsed.new_status](ctx)
        return ReplyResult(outcome=parsed.new_status, reply_text=ack, assignment=updated)

    async def _started(self, contractor: Contractor, parsed: ParsedReply, inbound: InboundMessage) -> ReplyResult:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        updated = await self.parser.punch_list_store.append_note(
            parsed.assignment_id, parsed.expected_status, f"[Started: {stamp}] {inbound.body}"
        )
        if updated is None:
            logger.warning(f"Assignment {parsed.assignment_id} changed before start could be noted")
            return ReplyResult(outcome="conflict")

        logger.info(f"Assignment {updated.id} started by {contractor.business_name}")
        _, ctx = await self.dispatcher.message_context(updated)
        return ReplyResult(outcome=STARTED, reply_text=templates.started_ack(ctx), assignment=updated)

    async def _latest_open(self, contractor: Contractor) -> Optional[PunchListAssignment]:
        open_assignments = await self.parser.punch_list_store.open_assignments_for_contractor(
            contractor.id, ("pending", "accepted")
        )
        return open_assignments[0] if open_assignments else None

    async def _info(self, contractor: Contractor) -> ReplyResult:
        latest = await self._latest_open(contractor)
        if latest is None:
            return ReplyResult(outcome="no_pending", reply_text=templates.no_pending(self.admin_phone))
        _, ctx = await self.dispatcher.message_context(latest)
        return ReplyResult(outcome=INFO, reply_text=templates.materials_info(ctx), assignment=latest)
