"""
Inbound messaging webhooks.

Voice notes are stored as ``received`` voice messages and a pipeline job is
enqueued; text messages go through the reply handler. Every POST answers 200
so the upstream gateway never retries on our internal failures.
"""

import logging
import xml.etree.ElementTree as ET
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from api.dependencies import get_services
from api.schemas import TwilioInbound, WhatsAppMessage, WhatsAppWebhook
from api.services import Services
from messaging.phone import format_phone_number, strip_channel
from messaging.reply_parser import InboundMessage
from transcription.audio_fetcher import whatsapp_media_ref

router = APIRouter()
logger = logging.getLogger(__name__)

VOICE_RECEIVED_TEXT = "Got your voice note. We'll turn it into punch list items and notify your contractors."
NO_PROJECT_TEXT = "We couldn't find an active project for this number. Please contact your project administrator."


def twiml(message: Optional[str] = None) -> Response:
    root = ET.Element("Response")
    if message:
        ET.SubElement(root, "Message").text = message
    body = ET.tostring(root, encoding="unicode")
    return Response(content=f'<?xml version="1.0" encoding="UTF-8"?>{body}', media_type="application/xml")


async def intake_voice_message(
    services: Services,
    from_phone: str,
    audio_url: str,
    external_id: Optional[str],
    duration_seconds: Optional[float] = None,
    source: str = "webhook",
) -> str:
    """Store a homeowner voice note and enqueue it. Returns an outcome label."""
    phone = format_phone_number(strip_channel(from_phone))
    profile = await services.project_store.find_profile_by_phone(phone)
    if profile is None:
        logger.warning(f"Voice note from unknown number {phone}, ignoring")
        return "unknown_sender"

    project = await services.project_store.find_active_project(profile.id)
    if project is None:
        logger.warning(f"No active project for {profile.id}, voice note {external_id} dropped")
        return "no_project"

    message = await services.voice_store.create_voice_message(
        project_id=project.id,
        sender_id=profile.id,
        audio_url=audio_url,
        duration_seconds=duration_seconds,
        whatsapp_message_id=external_id,
    )
    if message is None:
        return "duplicate"

    if services.queue is not None:
        job_id = await services.queue.enqueue(message.id, source=source)
        logger.info(f"Voice message {message.id} stored, pipeline job {job_id} enqueued")
    else:
        logger.warning(f"No job queue; voice message {message.id} waits for the next cron sweep")
    return "queued"


async def _reply(services: Services, from_phone: str, body: str, message_id: Optional[str], channel: str):
    inbound = InboundMessage(from_phone=from_phone, body=body, message_id=message_id, channel=channel)
    return await services.reply_handler.handle(inbound)


# WhatsApp Cloud API


@router.get("/whatsapp")
async def verify_whatsapp(request: Request, services: Services = Depends(get_services)):
    params = request.query_params
    mode = params.get("hub.mode")
    token = params.get("hub.verify_token")
    challenge = params.get("hub.challenge", "")

    expected = services.settings.whatsapp_verify_token
    if mode == "subscribe" and expected and token == expected:
        logger.info("WhatsApp webhook verified")
        return PlainTextResponse(challenge)
    logger.warning("WhatsApp webhook verification failed")
    return PlainTextResponse("Forbidden", status_code=403)


async def _handle_whatsapp_message(services: Services, message: WhatsAppMessage) -> str:
    if message.is_voice:
        media = message.media
        return await intake_voice_message(
            services,
            message.from_,
            whatsapp_media_ref(media.id),
            external_id=message.id,
            duration_seconds=media.duration,
            source="whatsapp",
        )

    if message.type == "text" and message.text is not None:
        result = await _reply(services, message.from_, message.text.body, message.id, "whatsapp")
        if result.reply_text:
            await services.dispatcher.send_text(message.from_, result.reply_text, kind="reply")
        return result.outcome

    logger.info(f"Ignoring WhatsApp message {message.id} of type {message.type}")
    return "ignored"


@router.post("/whatsapp")
async def whatsapp_webhook(request: Request, services: Services = Depends(get_services)) -> dict:
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("WhatsApp webhook with a non-JSON body")
        return {"status": "ok"}

    try:
        await services.voice_store.record_webhook_event("whatsapp", "message", payload)
    except Exception as e:
        logger.error(f"Could not store WhatsApp webhook event: {e}")

    try:
        envelope = WhatsAppWebhook.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Malformed WhatsApp webhook payload: {e.error_count()} error(s)")
        return {"status": "ok"}

    for message in envelope.messages():
        try:
            outcome = await _handle_whatsapp_message(services, message)
            logger.info(f"WhatsApp message {message.id}: {outcome}")
        except Exception as e:
            logger.exception(f"Failed to handle WhatsApp message {message.id}: {e}")

    return {"status": "ok"}


# Twilio (SMS and Twilio WhatsApp)


async def _handle_twilio(request: Request, services: Services) -> Response:
    form = dict(await request.form())
    try:
        await services.voice_store.record_webhook_event(
            "twilio", "message", form, phone_number=form.get("From")
        )
    except Exception as e:
        logger.error(f"Could not store Twilio webhook event: {e}")

    try:
        inbound = TwilioInbound.model_validate(form)
    except ValidationError as e:
        logger.warning(f"Malformed Twilio webhook payload: {e.error_count()} error(s)")
        return twiml()

    try:
        if inbound.has_audio:
            outcome = await intake_voice_message(
                services,
                inbound.from_,
                inbound.media_url,
                external_id=inbound.message_sid,
                source="twilio",
            )
            if outcome == "queued":
                return twiml(VOICE_RECEIVED_TEXT)
            if outcome == "no_project":
                return twiml(NO_PROJECT_TEXT)
            return twiml()

        result = await _reply(services, inbound.from_, inbound.body, inbound.message_sid, inbound.channel)
        logger.info(f"Twilio reply {inbound.message_sid}: {result.outcome}")
        return twiml(result.reply_text)
    except Exception as e:
        logger.exception(f"Failed to handle Twilio message {inbound.message_sid}: {e}")
        return twiml()


@router.post("/twilio")
async def twilio_webhook(request: Request, services: Services = Depends(get_services)) -> Response:
    return await _handle_twilio(request, services)


@router.post("/twilio-test")
async def twilio_test_webhook(request: Request, services: Services = Depends(get_services)) -> Response:
    """Same handling as /twilio; kept as the sandbox number's configured URL."""
    return await _handle_twilio(request, services)
