from conftest import add_contractor, add_profile, add_project

TRANSCRIPT = "toilet is leaking, needs new wax ring, high priority, bathroom"


async def test_voice_note_to_pending_assignment(services, data, gateway):
    homeowner = add_profile(data)
    project = add_project(data, homeowner, city="Austin")
    plumber = add_contractor(
        data, specialties=["plumber"], availability_status="available", service_areas=["Austin", "Round Rock"]
    )
    message = await services.voice_store.create_voice_message(
        project.id, homeowner.id, "https://cdn.example.com/note.ogg"
    )

    summary = await services.orchestrator.process_voice_message(message.id)

    assert summary["total_errors"] == 0
    assert data.transcriptions[message.id].transcription_text == TRANSCRIPT

    items = [i for i in data.items.values() if i.voice_message_id == message.id]
    assert len(items) >= 1
    item = items[0]
    assert item.trade_category == "plumber"
    assert item.priority == "high"
    assert item.room == "bathroom"

    assignments = list(data.assignments.values())
    assert len(assignments) == 1
    assert assignments[0].contractor_id == plumber.id
    assert assignments[0].contractor_response == "pending"
    assert assignments[0].punch_list_item_id == item.id

    # the notice went out through the gateway
    assert len(gateway.sent) == 1
    assert gateway.sent[0][1].startswith("⚠️ HIGH PRIORITY")


async def test_reprocessing_is_idempotent(services, data, gateway):
    homeowner = add_profile(data)
    project = add_project(data, homeowner)
    add_contractor(data)
    message = await services.voice_store.create_voice_message(project.id, homeowner.id, "https://cdn.example.com/a.ogg")

    await services.orchestrator.process_voice_message(message.id)
    second = await services.orchestrator.process_voice_message(message.id)

    assert second["total_processed"] == 0
    assert len(data.assignments) == 1
    assert len(gateway.sent) == 1
