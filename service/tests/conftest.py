"""Pytest configuration and shared fixtures."""

import json
from typing import Any

import pytest

from labsync.agents.schemas import InboundMessage
from labsync.config import Settings
from labsync.container import Container, wire
from labsync.services.repository import InMemoryRepository


async def no_sleep(_seconds: float) -> None:
    return None


class FakeLLM:
    """Scripted LLM. Each call pops the next response; exceptions are raised."""

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError("FakeLLM ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response

    @property
    def calls(self) -> int:
        return len(self.prompts)


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def emit(self, event: str, payload: dict) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


EXTRACTION_RESPONSE = {
    "project_name": "Aerial Survey Platform",
    "client_details": {"name": "Dana Wright", "email": "dana@skyview.io", "company": "SkyView"},
    "meeting_date": "2024-03-12T10:00:00Z",
    "participants": ["Dana", "Lee"],
    "estimated_budget": 90000,
    "timeline": "3 months",
    "requirements": "Drone pilots for weekly aerial surveys and a photo processing pipeline",
}

DESIGN_RESPONSE = {
    "total_budget": 88000,
    "people_costs": {
        "drone_pilot": {"count": 2, "rate": 60, "hours": 480, "total": 1},
        "gis_analyst": {"count": 1, "rate": 70, "hours": 480},
    },
    "resource_costs": {"drone_rental": 6000, "software_licenses": 1500, "insurance": 0},
    "breakdown": [],
}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        supabase_url="",
        supabase_service_role_key="",
        telegram_webhook_secret="",
        orchestrator_enabled=False,
        orchestrator_batch_size=5,
    )


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def container(settings, repository, llm, notifier) -> Container:
    return wire(settings, repository, llm, notifier=notifier, retry_sleep=no_sleep)


@pytest.fixture
def stored_message(repository):
    """Factory: persist an InboundMessage and return it."""

    async def _store(text: str = "Kickoff call notes", message_id: str = "1001", **fields) -> InboundMessage:
        return await repository.upsert_message(
            InboundMessage(message_id=message_id, sender_id="42", text=text, **fields)
        )

    return _store
