"""
Tests for the meeting extraction stage.

Run with: pytest tests/test_extraction.py -v
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from labsync.agents.schemas import ExtractionStatus, InboundMessage
from labsync.errors import NotFoundError, ResponseParseError, ValidationError
from labsync.services.extraction import (
    coerce_budget,
    normalize_meeting_details,
    parse_json_response,
    parse_meeting_date,
)
from labsync.services.notifications import SocketEvents

from conftest import EXTRACTION_RESPONSE


class TestParseJsonResponse:
    """Pulling one JSON object out of model chatter."""

    def test_plain_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_markdown_fence_and_chatter(self):
        text = 'Sure! Here it is:\n```json\n{"project_name": "X"}\n```\nAnything else?'
        assert parse_json_response(text) == {"project_name": "X"}

    def test_not_json(self):
        with pytest.raises(ResponseParseError):
            parse_json_response("no structured data here")

    def test_array_is_rejected(self):
        with pytest.raises(ResponseParseError):
            parse_json_response("[1, 2, 3]")


class TestNormalizeMeetingDetails:
    """Every field defaulted and typed."""

    def test_empty_extraction_gets_defaults(self):
        details = normalize_meeting_details({})
        assert details.project_name == "Unnamed Project"
        assert details.client_details.name == "Unknown Client"
        assert details.client_details.email is None
        assert details.participants == []
        assert details.estimated_budget == 0
        assert details.timeline == "Not specified"
        assert details.requirements == "No requirements specified"

    def test_full_extraction(self):
        details = normalize_meeting_details(EXTRACTION_RESPONSE)
        assert details.project_name == "Aerial Survey Platform"
        assert details.client_details.company == "SkyView"
        assert details.participants == ["Dana", "Lee"]
        assert details.estimated_budget == 90000
        assert details.meeting_date == datetime(2024, 3, 12, 10, 0, tzinfo=timezone.utc)

    def test_wrong_types_fall_back(self):
        details = normalize_meeting_details({
            "project_name": "   ",
            "client_details": "Acme",
            "participants": "Dana, Lee",
            "estimated_budget": "lots",
        })
        assert details.project_name == "Unnamed Project"
        assert details.client_details.name == "Unknown Client"
        assert details.participants == []
        assert details.estimated_budget == 0

    def test_blank_participants_are_dropped(self):
        details = normalize_meeting_details({"participants": ["Dana", "", None, " Lee "]})
        assert details.participants == ["Dana", "Lee"]

    @pytest.mark.parametrize("value,expected", [
        (150000, 150000),
        (12.7, 12),
        ("$150,000", 150000),
        ("80000 USD", 80000),
        (-5, 0),
        ("abc", 0),
        (True, 0),
        (None, 0),
        (float("nan"), 0),
    ])
    def test_coerce_budget(self, value, expected):
        assert coerce_budget(value) == expected

    def test_date_only(self):
        assert parse_meeting_date("2024-03-12") == datetime(2024, 3, 12, tzinfo=timezone.utc)

    def test_unparseable_date_is_now(self):
        before = datetime.now(timezone.utc)
        assert parse_meeting_date("next Tuesday") >= before


class TestMeetingExtractionService:
    """extract_and_save against the in-memory repository."""

    @pytest.mark.asyncio
    async def test_extract_and_save(self, container, repository, llm, notifier, stored_message):
        message = await stored_message("Met Dana from SkyView, 90k, 3 months, drone pilots")
        llm.responses = [EXTRACTION_RESPONSE]

        meeting = await container.extraction.extract_and_save(message.id)

        assert meeting.message_id == message.id
        assert meeting.project_name == "Aerial Survey Platform"
        assert "Met Dana from SkyView" in llm.prompts[0]

        stored = await repository.get_message(message.id)
        assert stored.extraction_status == ExtractionStatus.EXTRACTED
        assert stored.meeting_details.estimated_budget == 90000

        assert notifier.names() == [SocketEvents.MESSAGE_STATUS_UPDATED, SocketEvents.MEETING_EXTRACTED]
        assert container.task_queue.pending() == 1

    @pytest.mark.asyncio
    async def test_second_call_is_idempotent(self, container, repository, llm, stored_message):
        message = await stored_message()
        llm.responses = [EXTRACTION_RESPONSE]

        first = await container.extraction.extract_and_save(message.id)
        second = await container.extraction.extract_and_save(message.id)

        assert first.id == second.id
        assert llm.calls == 1
        assert len(await repository.list_meetings()) == 1

    @pytest.mark.asyncio
    async def test_redelivered_message_updates_the_same_meeting(self, container, repository, llm, stored_message):
        message = await stored_message("Budget 50k")
        llm.responses = [
            {**EXTRACTION_RESPONSE, "estimated_budget": 50000},
            {**EXTRACTION_RESPONSE, "estimated_budget": 60000},
        ]
        first = await container.extraction.extract_and_save(message.id)

        edited = await stored_message("Budget 60k")
        assert edited.id == message.id
        assert edited.extraction_status == ExtractionStatus.PENDING

        second = await container.extraction.extract_and_save(message.id)

        assert second.id == first.id
        assert second.estimated_budget == 60000
        assert len(await repository.list_meetings()) == 1

    @pytest.mark.asyncio
    async def test_malformed_json_marks_failed(self, container, repository, llm, notifier, stored_message):
        message = await stored_message()
        llm.responses = ["this is not json"]

        with pytest.raises(ResponseParseError):
            await container.extraction.extract_and_save(message.id)

        stored = await repository.get_message(message.id)
        assert stored.extraction_status == ExtractionStatus.FAILED
        assert await repository.get_meeting_by_message(message.id) is None
        assert notifier.events == []
        assert container.task_queue.pending() == 0

    @pytest.mark.asyncio
    async def test_meeting_write_failure_keeps_message_rescannable(
        self, container, repository, llm, stored_message
    ):
        """A message is never left extracted without a meeting, even if marking it failed also errors."""
        message = await stored_message()
        llm.responses = [EXTRACTION_RESPONSE]
        repository.upsert_meeting = AsyncMock(side_effect=RuntimeError("database unavailable"))
        update_message = repository.update_message

        async def failing_mark(message_id, **fields):
            if fields.get("extraction_status") == ExtractionStatus.FAILED:
                raise RuntimeError("database unavailable")
            return await update_message(message_id, **fields)

        repository.update_message = failing_mark

        with pytest.raises(RuntimeError):
            await container.extraction.extract_and_save(message.id)

        stored = await repository.get_message(message.id)
        assert stored.extraction_status == ExtractionStatus.PENDING
        assert stored.meeting_details is None
        pending = await repository.find_messages(extraction_statuses=[ExtractionStatus.PENDING], require_text=True)
        assert [m.id for m in pending] == [message.id]

    @pytest.mark.asyncio
    async def test_message_without_text(self, container, repository):
        message = await repository.upsert_message(InboundMessage(message_id="2002", text="   "))

        with pytest.raises(ValidationError):
            await container.extraction.extract_and_save(message.id)

    @pytest.mark.asyncio
    async def test_unknown_message(self, container):
        with pytest.raises(NotFoundError):
            await container.extraction.extract_and_save("missing")

    @pytest.mark.asyncio
    async def test_process_pending_messages(self, container, repository, llm, stored_message):
        await stored_message("first", message_id="1")
        await stored_message("second", message_id="2")
        llm.responses = [EXTRACTION_RESPONSE, "garbage"]

        done = await container.extraction.process_pending_messages()

        assert done == 1
        statuses = sorted(m.extraction_status.value for m in await repository.find_messages())
        assert statuses == ["extracted", "failed"]
