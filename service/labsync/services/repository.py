"""
Persistence collaborator.

The pipeline only needs CRUD, "find by status, newest first, limited" and
"upsert by natural key" over the four record types. `Repository` is that
contract; `InMemoryRepository` backs tests and local runs without Supabase,
`SupabaseRepository` (supabase_repository.py) backs production.
"""

from typing import Any, Iterable, Optional, Protocol

from labsync.agents.schemas import (
    AllocationRecord,
    BudgetRecord,
    DesignStatus,
    ExtractionStatus,
    InboundMessage,
    MeetingRecord,
    utcnow,
)

# Fields a redelivered webhook message may overwrite. Stage statuses other than
# extraction, and the extracted details, survive an upsert.
INBOUND_FIELDS = {"sender_id", "text", "date_received", "raw_payload"}


class Repository(Protocol):
    # Messages
    async def upsert_message(self, message: InboundMessage) -> InboundMessage:
        """Insert by external message_id, or refresh inbound fields and reset extraction to pending."""
        ...

    async def get_message(self, message_id: str) -> Optional[InboundMessage]: ...
    async def update_message(self, message_id: str, **fields: Any) -> Optional[InboundMessage]: ...
    async def find_messages(
        self,
        *,
        extraction_statuses: Optional[Iterable[str]] = None,
        design_statuses: Optional[Iterable[str]] = None,
        allocation_statuses: Optional[Iterable[str]] = None,
        require_text: bool = False,
        limit: Optional[int] = None,
    ) -> list[InboundMessage]: ...

    # Meetings
    async def get_meeting(self, meeting_id: str) -> Optional[MeetingRecord]: ...
    async def get_meeting_by_message(self, message_id: str) -> Optional[MeetingRecord]: ...
    async def upsert_meeting(self, meeting: MeetingRecord) -> MeetingRecord: ...
    async def list_meetings(self, limit: Optional[int] = None) -> list[MeetingRecord]: ...
    async def find_meetings_awaiting_design(self, limit: Optional[int] = None) -> list[MeetingRecord]:
        """Meetings with no budget whose message is extracted and not designed, newest first."""
        ...

    # Budgets
    async def get_budget(self, budget_id: str) -> Optional[BudgetRecord]: ...
    async def get_budget_by_meeting(self, meeting_id: str) -> Optional[BudgetRecord]: ...
    async def upsert_budget(self, budget: BudgetRecord) -> BudgetRecord: ...
    async def list_budgets(self, limit: Optional[int] = None) -> list[BudgetRecord]: ...

    # Allocations
    async def get_allocation(self, allocation_id: str) -> Optional[AllocationRecord]: ...
    async def list_allocations(self, budget_id: Optional[str] = None) -> list[AllocationRecord]: ...
    async def insert_allocations(self, allocations: list[AllocationRecord]) -> list[AllocationRecord]: ...
    async def update_allocation(self, allocation_id: str, **fields: Any) -> Optional[AllocationRecord]: ...


def _value(status: Any) -> str:
    return getattr(status, "value", status)


def _status_values(statuses: Optional[Iterable[Any]]) -> Optional[set[str]]:
    if statuses is None:
        return None
    return {_value(s) for s in statuses}


def _newest_first(records: list, key: str, limit: Optional[int]) -> list:
    ordered = sorted(records, key=lambda r: getattr(r, key), reverse=True)
    return ordered[:limit] if limit is not None else ordered


class InMemoryRepository:
    """Dict-backed repository. Returns copies so callers cannot mutate stored state."""

    def __init__(self):
        self.messages: dict[str, InboundMessage] = {}
        self.meetings: dict[str, MeetingRecord] = {}
        self.budgets: dict[str, BudgetRecord] = {}
        self.allocations: dict[str, AllocationRecord] = {}

    # Messages

    async def upsert_message(self, message: InboundMessage) -> InboundMessage:
        existing = next(
            (m for m in self.messages.values() if m.message_id == message.message_id), None
        )
        if existing:
            message = existing.model_copy(update={
                **message.model_dump(include=INBOUND_FIELDS),
                "extraction_status": ExtractionStatus.PENDING,
            })
        message = message.model_copy(update={"updated_at": utcnow()}, deep=True)
        self.messages[message.id] = message
        return message.model_copy(deep=True)

    async def get_message(self, message_id: str) -> Optional[InboundMessage]:
        message = self.messages.get(message_id)
        return message.model_copy(deep=True) if message else None

    async def update_message(self, message_id: str, **fields: Any) -> Optional[InboundMessage]:
        message = self.messages.get(message_id)
        if not message:
            return None
        updated = message.model_copy(update={**fields, "updated_at": utcnow()}, deep=True)
        self.messages[message_id] = updated
        return updated.model_copy(deep=True)

    async def find_messages(
        self,
        *,
        extraction_statuses: Optional[Iterable[str]] = None,
        design_statuses: Optional[Iterable[str]] = None,
        allocation_statuses: Optional[Iterable[str]] = None,
        require_text: bool = False,
        limit: Optional[int] = None,
    ) -> list[InboundMessage]:
        extraction = _status_values(extraction_statuses)
        design = _status_values(design_statuses)
        allocation = _status_values(allocation_statuses)

        matches = []
        for message in self.messages.values():
            if extraction is not None and _value(message.extraction_status) not in extraction:
                continue
            if design is not None and _value(message.design_status) not in design:
                continue
            if allocation is not None and _value(message.allocation_status) not in allocation:
                continue
            if require_text and not message.text.strip():
                continue
            matches.append(message.model_copy(deep=True))
        return _newest_first(matches, "created_at", limit)

    # Meetings

    async def get_meeting(self, meeting_id: str) -> Optional[MeetingRecord]:
        meeting = self.meetings.get(meeting_id)
        return meeting.model_copy(deep=True) if meeting else None

    async def get_meeting_by_message(self, message_id: str) -> Optional[MeetingRecord]:
        for meeting in self.meetings.values():
            if meeting.message_id == message_id:
                return meeting.model_copy(deep=True)
        return None

    async def upsert_meeting(self, meeting: MeetingRecord) -> MeetingRecord:
        existing = await self.get_meeting_by_message(meeting.message_id)
        if existing:
            meeting = meeting.model_copy(update={"id": existing.id})
        self.meetings[meeting.id] = meeting.model_copy(deep=True)
        return meeting.model_copy(deep=True)

    async def list_meetings(self, limit: Optional[int] = None) -> list[MeetingRecord]:
        return _newest_first([m.model_copy(deep=True) for m in self.meetings.values()], "extracted_at", limit)

    async def find_meetings_awaiting_design(self, limit: Optional[int] = None) -> list[MeetingRecord]:
        budgeted = {b.meeting_id for b in self.budgets.values()}
        pending = []
        for meeting in self.meetings.values():
            message = self.messages.get(meeting.message_id)
            if meeting.id in budgeted or message is None:
                continue
            if _value(message.extraction_status) != ExtractionStatus.EXTRACTED.value:
                continue
            if _value(message.design_status) == DesignStatus.DESIGNED.value:
                continue
            pending.append(meeting.model_copy(deep=True))
        return _newest_first(pending, "extracted_at", limit)

    # Budgets

    async def get_budget(self, budget_id: str) -> Optional[BudgetRecord]:
        budget = self.budgets.get(budget_id)
        return budget.model_copy(deep=True) if budget else None

    async def get_budget_by_meeting(self, meeting_id: str) -> Optional[BudgetRecord]:
        for budget in self.budgets.values():
            if budget.meeting_id == meeting_id:
                return budget.model_copy(deep=True)
        return None

    async def upsert_budget(self, budget: BudgetRecord) -> BudgetRecord:
        existing = await self.get_budget_by_meeting(budget.meeting_id)
        if existing:
            budget = budget.model_copy(update={"id": existing.id})
        self.budgets[budget.id] = budget.model_copy(deep=True)
        return budget.model_copy(deep=True)

    async def list_budgets(self, limit: Optional[int] = None) -> list[BudgetRecord]:
        return _newest_first([b.model_copy(deep=True) for b in self.budgets.values()], "designed_at", limit)

    # Allocations

    async def get_allocation(self, allocation_id: str) -> Optional[AllocationRecord]:
        allocation = self.allocations.get(allocation_id)
        return allocation.model_copy(deep=True) if allocation else None

    async def list_allocations(self, budget_id: Optional[str] = None) -> list[AllocationRecord]:
        return [
            a.model_copy(deep=True) for a in self.allocations.values()
            if budget_id is None or a.budget_id == budget_id
        ]

    async def insert_allocations(self, allocations: list[AllocationRecord]) -> list[AllocationRecord]:
        for allocation in allocations:
            self.allocations[allocation.id] = allocation.model_copy(deep=True)
        return [a.model_copy(deep=True) for a in allocations]

    async def update_allocation(self, allocation_id: str, **fields: Any) -> Optional[AllocationRecord]:
        allocation = self.allocations.get(allocation_id)
        if not allocation:
            return None
        updated = allocation.model_copy(update=fields, deep=True)
        self.allocations[allocation_id] = updated
        return updated.model_copy(deep=True)
