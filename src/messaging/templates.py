"""
SMS bodies sent to contractors.

Assignment notices have one template per priority with its own header and
emoji so a contractor can triage from the lock screen.
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class MessageContext:
    contractor_name: str
    project_title: str
    description: str
    priority: str = "medium"
    homeowner_name: str = "Homeowner"
    room: Optional[str] = None
    estimated_hours: Optional[float] = None
    materials_needed: List[str] = field(default_factory=list)
    admin_phone: Optional[str] = None


def _details(ctx: MessageContext) -> str:
    lines = [
        f"Project: {ctx.project_title}",
        f"Homeowner: {ctx.homeowner_name}",
        f"Task: {ctx.description}",
    ]
    if ctx.room:
        lines.append(f"Location: {ctx.room}")
    if ctx.estimated_hours:
        lines.append(f"Est. Time: {ctx.estimated_hours:g}h")
    return "\n".join(lines)


def urgent_assignment(ctx: MessageContext) -> str:
    msg = "🚨 URGENT PUNCH LIST ITEM\n\nIMMEDIATE ATTENTION NEEDED\n"
    msg += _details(ctx)
    msg += '\n\nPlease respond ASAP:\n• "ACCEPT" + ETA\n• "DECLINE" if unavailable'
    if ctx.admin_phone:
        msg += f"\n\nCall {ctx.admin_phone} for emergency contact."
    return msg


def high_assignment(ctx: MessageContext) -> str:
    msg = "⚠️ HIGH PRIORITY PUNCH LIST ITEM\n\n"
    msg += _details(ctx)
    msg += '\n\nPlease respond today:\n• "ACCEPT" to take this task\n• "DECLINE" to pass\n• "INFO" for materials'
    return msg


def medium_assignment(ctx: MessageContext) -> str:
    msg = "🔨 NEW PUNCH LIST ITEM\n\n"
    msg += _details(ctx)
    msg += f"\nPriority: {ctx.priority.upper()}"
    msg += '\n\nRespond:\n• "ACCEPT" to take this task\n• "DECLINE" to pass\n• "INFO" for more details\n\n'
    msg += "Reply with questions or ETA if accepting."
    return msg


def low_assignment(ctx: MessageContext) -> str:
    msg = "📝 Punch list item (low priority, schedule when convenient)\n\n"
    msg += _details(ctx)
    msg += '\n\nReply "ACCEPT" or "DECLINE".'
    return msg


ASSIGNMENT_TEMPLATES = {
    "urgent": urgent_assignment,
    "high": high_assignment,
    "medium": medium_assignment,
    "low": low_assignment,
}


def assignment_message(ctx: MessageContext) -> str:
    return ASSIGNMENT_TEMPLATES.get(ctx.priority, medium_assignment)(ctx)


def reminder(ctx: MessageContext) -> str:
    return (
        f"Hi {ctx.contractor_name},\n\nReminder: you have an unanswered punch list item:\n\n"
        f'"{ctx.description}"\n\nPriority: {ctx.priority.upper()}\n\n'
        "Please respond with ACCEPT or DECLINE. The item may be reassigned if we don't hear back."
    )


def accepted_follow_up(ctx: MessageContext) -> str:
    return (
        f"Thanks {ctx.contractor_name}! ✅\n\nYou've accepted: \"{ctx.description}\"\n\n"
        'Text "STARTED" when you begin and "COMPLETED" when the work is done.\n\n'
        "The homeowner will be notified of your acceptance."
    )


def started_ack(ctx: MessageContext) -> str:
    return (
        f'Great! Work started on "{ctx.description}". '
        'Text "COMPLETED" when finished.'
    )


def decline_ack(ctx: MessageContext) -> str:
    return f'Thanks for letting us know. The task "{ctx.description}" will be assigned to another contractor.'


def completion_confirmation(ctx: MessageContext) -> str:
    return (
        f"Great work {ctx.contractor_name}! 🎉\n\nTask marked complete: \"{ctx.description}\"\n\n"
        f"Project: {ctx.project_title}\n\nThe homeowner has been notified."
    )


def materials_info(ctx: MessageContext) -> str:
    if not ctx.materials_needed:
        return "No specific materials listed for this task."
    lines = [f"{i}. {m}" for i, m in enumerate(ctx.materials_needed, start=1)]
    return "📋 MATERIALS NEEDED:\n\n" + "\n".join(lines) + "\n\nConfirm material availability when accepting the task."


def help_text(description: Optional[str] = None) -> str:
    msg = (
        "I didn't understand your response. Please reply with:\n"
        '• "ACCEPT" - to take the task\n'
        '• "DECLINE" - to pass\n'
        '• "INFO" - for materials and details\n'
        '• "STARTED" - when you begin work\n'
        '• "COMPLETED" - when finished'
    )
    if description:
        msg += f'\n\nCurrent task: "{description}"'
    return msg


def no_pending(admin_phone: Optional[str] = None) -> str:
    msg = "Hi! You don't have any pending punch list items."
    if admin_phone:
        msg += f" If you need help, call {admin_phone}."
    return msg
