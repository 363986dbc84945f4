import pytest
from pydantic import ValidationError

from renovation_advisor.models import PunchListAssignment, PunchListItem, VoiceMessage


def test_item_invalid_priority():
    with pytest.raises(ValidationError):
        PunchListItem(id="i1", project_id="p1", description="Leak", priority="critical")


def test_item_empty_description():
    with pytest.raises(ValidationError):
        PunchListItem(id="i1", project_id="p1", description="")


def test_item_unknown_status():
    with pytest.raises(ValidationError):
        PunchListItem(id="i1", project_id="p1", description="Leak", status="done")


def test_assignment_unknown_response():
    with pytest.raises(ValidationError):
        PunchListAssignment(
            id="a1", punch_list_item_id="i1", contractor_id="c1", project_id="p1", contractor_response="maybe"
        )


def test_voice_message_requires_audio_url():
    with pytest.raises(ValidationError):
        VoiceMessage(id="v1", project_id="p1", sender_id="u1")
