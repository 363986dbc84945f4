import xml.etree.ElementTree as ET

from transcription.audio_fetcher import whatsapp_media_ref

from conftest import FakeQueue, add_contractor, add_item, add_profile, add_project

HOMEOWNER_PHONE = "+15125550100"
CONTRACTOR_PHONE = "+15125550199"


def _whatsapp_payload(message: dict) -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"phone_number_id": "PN1"},
                            "messages": [message],
                        },
                    }
                ],
            }
        ],
    }


def _voice(message_id="wamid.1", sender="15125550100"):
    return {"id": message_id, "from": sender, "type": "voice", "voice": {"id": "MEDIA1", "duration": 12}}


def test_verify_token(client):
    ok = client.get(
        "/api/webhooks/whatsapp",
        params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345"},
    )
    assert ok.status_code == 200
    assert ok.text == "12345"

    bad = client.get(
        "/api/webhooks/whatsapp",
        params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "12345"},
    )
    assert bad.status_code == 403


def test_whatsapp_voice_note_is_stored_and_enqueued(client, data, services):
    homeowner = add_profile(data, phone=HOMEOWNER_PHONE)
    project = add_project(data, homeowner)

    r = client.post("/api/webhooks/whatsapp", json=_whatsapp_payload(_voice()))

    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert len(data.webhook_events) == 1
    (message,) = data.voice_messages.values()
    assert message.project_id == project.id
    assert message.sender_id == homeowner.id
    assert message.audio_url == whatsapp_media_ref("MEDIA1")
    assert message.duration_seconds == 12
    assert message.status == "received"

    queue: FakeQueue = services.queue
    (job,) = queue.jobs.values()
    assert job["voice_message_id"] == message.id
    assert job["source"] == "whatsapp"


def test_whatsapp_redelivery_is_deduplicated(client, data, services):
    homeowner = add_profile(data, phone=HOMEOWNER_PHONE)
    add_project(data, homeowner)

    client.post("/api/webhooks/whatsapp", json=_whatsapp_payload(_voice()))
    client.post("/api/webhooks/whatsapp", json=_whatsapp_payload(_voice()))

    assert len(data.voice_messages) == 1
    assert len(services.queue.jobs) == 1
    assert len(data.webhook_events) == 2


def test_whatsapp_unknown_sender_is_acknowledged(client, data):
    r = client.post("/api/webhooks/whatsapp", json=_whatsapp_payload(_voice(sender="19995550000")))
    assert r.status_code == 200
    assert data.voice_messages == {}


def test_malformed_whatsapp_payload_is_logged_and_acknowledged(client, data):
    r = client.post("/api/webhooks/whatsapp", json={"entry": "not a list"})
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert len(data.webhook_events) == 1
    assert data.voice_messages == {}

    r = client.post("/api/webhooks/whatsapp", content=b"not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 200


def test_whatsapp_text_reply_updates_assignment(client, data, gateway):
    homeowner = add_profile(data, phone=HOMEOWNER_PHONE)
    project = add_project(data, homeowner)
    contractor = add_contractor(data, phone=CONTRACTOR_PHONE)
    item = add_item(data, project)
    assignment = _assign(data, item, contractor)

    message = {"id": "wamid.2", "from": "15125550199", "type": "text", "text": {"body": "ACCEPT"}}
    r = client.post("/api/webhooks/whatsapp", json=_whatsapp_payload(message))

    assert r.status_code == 200
    assert data.assignments[assignment.id].contractor_response == "accepted"
    assert gateway.sent and "You've accepted" in gateway.sent[-1][1]


def _assign(data, item, contractor):
    from renovation_advisor.models import PunchListAssignment

    assignment = PunchListAssignment(
        id="a-" + item.id,
        punch_list_item_id=item.id,
        contractor_id=contractor.id,
        project_id=item.project_id,
        created_at=data.now(),
    )
    data.assignments[assignment.id] = assignment
    data.items[item.id] = item.model_copy(update={"status": "assigned"})
    return assignment


def _twiml_message(response) -> str:
    assert response.headers["content-type"].startswith("application/xml")
    root = ET.fromstring(response.content)
    assert root.tag == "Response"
    node = root.find("Message")
    return node.text if node is not None else None


def test_twilio_text_reply_answers_with_twiml(client, data):
    homeowner = add_profile(data, phone=HOMEOWNER_PHONE)
    project = add_project(data, homeowner)
    contractor = add_contractor(data, phone=CONTRACTOR_PHONE)
    item = add_item(data, project)
    assignment = _assign(data, item, contractor)

    r = client.post(
        "/api/webhooks/twilio-test",
        data={"From": CONTRACTOR_PHONE, "Body": "decline", "MessageSid": "SM9", "NumMedia": "0"},
    )

    assert r.status_code == 200
    assert "assigned to another contractor" in _twiml_message(r)
    assert data.assignments[assignment.id].contractor_response == "declined"
    assert data.items[item.id].status == "pending"


def test_twilio_unrecognized_reply_gets_help(client, data):
    homeowner = add_profile(data, phone=HOMEOWNER_PHONE)
    project = add_project(data, homeowner)
    contractor = add_contractor(data, phone=CONTRACTOR_PHONE)
    _assign(data, add_item(data, project), contractor)

    r = client.post("/api/webhooks/twilio", data={"From": f"whatsapp:{CONTRACTOR_PHONE}", "Body": "banana"})

    assert "I didn't understand" in _twiml_message(r)


def test_twilio_unknown_sender_gets_empty_twiml(client):
    r = client.post("/api/webhooks/twilio", data={"From": "+19995550000", "Body": "ACCEPT"})
    assert r.status_code == 200
    assert _twiml_message(r) is None


def test_twilio_voice_note_is_enqueued(client, data, services):
    homeowner = add_profile(data, phone=HOMEOWNER_PHONE)
    add_project(data, homeowner)

    r = client.post(
        "/api/webhooks/twilio",
        data={
            "From": f"whatsapp:{HOMEOWNER_PHONE}",
            "Body": "",
            "MessageSid": "MM1",
            "NumMedia": "1",
            "MediaUrl0": "https://api.twilio.com/2010-04-01/Accounts/AC1/Messages/MM1/Media/ME1",
            "MediaContentType0": "audio/ogg",
        },
    )

    assert r.status_code == 200
    assert "voice note" in _twiml_message(r)
    (message,) = data.voice_messages.values()
    assert message.audio_url.endswith("/Media/ME1")
    assert len(services.queue.jobs) == 1


def test_twilio_malformed_form_is_acknowledged(client):
    r = client.post("/api/webhooks/twilio", data={"Body": "no sender"})
    assert r.status_code == 200
    assert _twiml_message(r) is None
