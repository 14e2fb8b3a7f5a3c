"""
Meeting extraction stage.

Turns the raw text of an inbound Telegram message into a MeetingRecord:
prompt the LLM, parse its JSON, normalize every field to a typed default,
persist onto the message and as a meeting, then hand the meeting to the
budget design stage through the task queue.
"""

import json
import re
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from labsync.agents.prompts import MEETING_EXTRACTION_PROMPT
from labsync.agents.schemas import (
    ClientDetails,
    ExtractionStatus,
    InboundMessage,
    MeetingDetails,
    MeetingRecord,
    utcnow,
)
from labsync.errors import NotFoundError, ResponseParseError, ValidationError
from labsync.logging_config import get_logger
from labsync.services.llm import LLMClient
from labsync.services.notifications import EventEmitter, SocketEvents
from labsync.services.repository import Repository
from labsync.services.retry import retry_with_backoff
from labsync.services.task_queue import StageTaskQueue

logger = get_logger("extraction")

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_LEADING_INT_RE = re.compile(r"^[+-]?\d+")


def parse_json_response(text: str) -> dict[str, Any]:
    """
    Parse a model response as one JSON object.

    Tries the span from the first '{' to the last '}' (strips markdown
    fences and chatter), then the whole text.

    Raises:
        ResponseParseError: neither attempt yields a JSON object
    """
    candidates = []
    match = _JSON_OBJECT_RE.search(text or "")
    if match:
        candidates.append(match.group(0))
    candidates.append(text or "")

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, TypeError):
            continue
        if isinstance(parsed, dict):
            return parsed

    raise ResponseParseError("Failed to parse AI response as JSON")


def parse_meeting_date(value: Any) -> datetime:
    """ISO-ish string or date object -> aware datetime; now() when unparseable."""
    parsed: Optional[datetime] = None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            parsed = None

    if parsed is None:
        return utcnow()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def coerce_budget(value: Any) -> int:
    """Non-negative integer budget. "$150,000" -> 150000, junk -> 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        if value != value or value in (float("inf"), float("-inf")):  # NaN / inf
            return 0
        return max(0, int(value))
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("$", "").replace(" ", "")
        match = _LEADING_INT_RE.match(cleaned)
        if match:
            return max(0, int(match.group(0)))
    return 0


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_meeting_details(extracted: dict[str, Any]) -> MeetingDetails:
    """Validate and default every field of the model's extraction."""
    client = extracted.get("client_details")
    if not isinstance(client, dict):
        client = {}

    participants = extracted.get("participants")
    if not isinstance(participants, list):
        participants = []

    return MeetingDetails(
        project_name=_text(extracted.get("project_name"), "Unnamed Project"),
        client_details=ClientDetails(
            name=_text(client.get("name"), "Unknown Client"),
            email=_optional_text(client.get("email")),
            company=_optional_text(client.get("company")),
        ),
        meeting_date=parse_meeting_date(extracted.get("meeting_date")),
        participants=[str(p).strip() for p in participants if p is not None and str(p).strip()],
        estimated_budget=coerce_budget(extracted.get("estimated_budget")),
        timeline=_text(extracted.get("timeline"), "Not specified"),
        requirements=_text(extracted.get("requirements"), "No requirements specified"),
    )


class MeetingExtractionService:
    """Extraction stage: InboundMessage -> MeetingRecord."""

    RETRIES = 3
    INITIAL_DELAY = 2.0
    MAX_DELAY = 10.0

    def __init__(
        self,
        repository: Repository,
        llm: LLMClient,
        notifier: EventEmitter,
        task_queue: Optional[StageTaskQueue] = None,
        retry_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.repository = repository
        self.llm = llm
        self.notifier = notifier
        self.task_queue = task_queue
        self._retry_kwargs = {"sleep": retry_sleep} if retry_sleep else {}

    async def extract_meeting_details(self, message_text: str) -> MeetingDetails:
        prompt = MEETING_EXTRACTION_PROMPT.format(message_text=message_text)
        response = await retry_with_backoff(
            lambda: self.llm.generate(prompt),
            self.RETRIES,
            self.INITIAL_DELAY,
            self.MAX_DELAY,
            **self._retry_kwargs,
        )
        return normalize_meeting_details(parse_json_response(response))

    async def extract_and_save(self, message_id: str) -> MeetingRecord:
        """
        Extract meeting details from a message and save them.

        Safe to call repeatedly: once the message is extracted and its
        meeting exists, that meeting is returned without another LLM call.

        Raises:
            NotFoundError: message does not exist
            ValidationError: message has no text
            Any LLM / parse / persistence error, after marking the message failed
        """
        message = await self.repository.get_message(message_id)
        if not message:
            raise NotFoundError("Message", message_id)
        if not message.text.strip():
            raise ValidationError(f"Message {message_id} has no text to extract from")

        if message.extraction_status == ExtractionStatus.EXTRACTED:
            existing = await self.repository.get_meeting_by_message(message.id)
            if existing:
                return existing

        try:
            await self.repository.update_message(message.id, extraction_status=ExtractionStatus.PENDING)

            details = await self.extract_meeting_details(message.text)

            meeting = await self.repository.upsert_meeting(
                MeetingRecord(message_id=message.id, extracted_at=utcnow(), **details.model_dump())
            )
            message = await self.repository.update_message(
                message.id,
                meeting_details=details,
                extraction_status=ExtractionStatus.EXTRACTED,
            )
        except Exception:
            await self._mark_failed(message_id)
            raise

        logger.info(f"Extracted meeting '{meeting.project_name}' from message {message.id}")
        self._emit(message, meeting)

        if self.task_queue is not None:
            self.task_queue.enqueue("design", meeting.id)

        return meeting

    async def process_pending_messages(self, limit: int = 10) -> int:
        """Extract every pending message (up to limit). Returns the number extracted."""
        pending = await self.repository.find_messages(
            extraction_statuses=[ExtractionStatus.PENDING], require_text=True, limit=limit
        )
        done = 0
        for message in pending:
            try:
                await self.extract_and_save(message.id)
                done += 1
            except Exception as e:
                logger.error(f"Failed to process message {message.id}: {e}")
        return done

    def _emit(self, message: InboundMessage, meeting: MeetingRecord) -> None:
        self.notifier.emit(SocketEvents.MESSAGE_STATUS_UPDATED, {
            "messageId": message.id,
            "extraction_status": ExtractionStatus.EXTRACTED.value,
            "message": message.model_dump(mode="json"),
        })
        self.notifier.emit(SocketEvents.MEETING_EXTRACTED, {
            "meeting": meeting.model_dump(mode="json"),
            "messageId": message.id,
        })

    async def _mark_failed(self, message_id: str) -> None:
        try:
            await self.repository.update_message(message_id, extraction_status=ExtractionStatus.FAILED)
        except Exception as e:
            logger.error(f"Could not mark message {message_id} as failed: {e}")
