"""
Supabase-backed repository.

Tables: message, meeting, budget, budget_allocation (see service/supabase/schema.sql).
Rows are the JSON dump of the pydantic records; upserts look up the row by
its natural key first so the record keeps its primary key.
"""

from typing import Any, Iterable, Optional

from supabase import AsyncClient

from labsync.agents.schemas import (
    AllocationRecord,
    BudgetRecord,
    DesignStatus,
    ExtractionStatus,
    InboundMessage,
    MeetingRecord,
    utcnow,
)
from labsync.logging_config import get_logger
from labsync.services.repository import INBOUND_FIELDS

logger = get_logger("supabase")


def _row(record, **overrides: Any) -> dict:
    data = record.model_dump(mode="json")
    data.update(overrides)
    return data


def _json_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Make update kwargs JSON-safe (enums, datetimes, nested models)."""
    out = {}
    for key, value in fields.items():
        if hasattr(value, "model_dump"):
            out[key] = value.model_dump(mode="json")
        elif hasattr(value, "isoformat"):
            out[key] = value.isoformat()
        else:
            out[key] = getattr(value, "value", value)
    return out


def _values(statuses: Iterable[Any]) -> list[str]:
    return [getattr(s, "value", s) for s in statuses]


class SupabaseRepository:
    def __init__(self, client: AsyncClient):
        self.supabase = client

    # Messages

    async def upsert_message(self, message: InboundMessage) -> InboundMessage:
        existing = await self.supabase.table("message").select("id").eq(
            "message_id", message.message_id
        ).execute()

        if existing.data:
            updates = _json_fields(message.model_dump(include=INBOUND_FIELDS))
            updates["extraction_status"] = ExtractionStatus.PENDING.value
            updates["updated_at"] = utcnow().isoformat()
            result = await self.supabase.table("message").update(updates).eq(
                "id", existing.data[0]["id"]
            ).execute()
        else:
            result = await self.supabase.table("message").insert(_row(message)).execute()
        return InboundMessage.model_validate(result.data[0])

    async def get_message(self, message_id: str) -> Optional[InboundMessage]:
        result = await self.supabase.table("message").select("*").eq("id", message_id).execute()
        return InboundMessage.model_validate(result.data[0]) if result.data else None

    async def update_message(self, message_id: str, **fields: Any) -> Optional[InboundMessage]:
        updates = _json_fields(fields)
        updates["updated_at"] = utcnow().isoformat()
        result = await self.supabase.table("message").update(updates).eq("id", message_id).execute()
        return InboundMessage.model_validate(result.data[0]) if result.data else None

    async def find_messages(
        self,
        *,
        extraction_statuses: Optional[Iterable[str]] = None,
        design_statuses: Optional[Iterable[str]] = None,
        allocation_statuses: Optional[Iterable[str]] = None,
        require_text: bool = False,
        limit: Optional[int] = None,
    ) -> list[InboundMessage]:
        query = self.supabase.table("message").select("*")
        if extraction_statuses is not None:
            query = query.in_("extraction_status", _values(extraction_statuses))
        if design_statuses is not None:
            query = query.in_("design_status", _values(design_statuses))
        if allocation_statuses is not None:
            query = query.in_("allocation_status", _values(allocation_statuses))
        if require_text:
            query = query.neq("text", "")
        query = query.order("created_at", desc=True)
        if limit is not None:
            query = query.limit(limit)

        result = await query.execute()
        return [InboundMessage.model_validate(row) for row in result.data or []]

    # Meetings

    async def get_meeting(self, meeting_id: str) -> Optional[MeetingRecord]:
        result = await self.supabase.table("meeting").select("*").eq("id", meeting_id).execute()
        return MeetingRecord.model_validate(result.data[0]) if result.data else None

    async def get_meeting_by_message(self, message_id: str) -> Optional[MeetingRecord]:
        result = await self.supabase.table("meeting").select("*").eq("message_id", message_id).execute()
        return MeetingRecord.model_validate(result.data[0]) if result.data else None

    async def upsert_meeting(self, meeting: MeetingRecord) -> MeetingRecord:
        existing = await self.get_meeting_by_message(meeting.message_id)
        row = _row(meeting, id=existing.id) if existing else _row(meeting)
        result = await self.supabase.table("meeting").upsert(row, on_conflict="message_id").execute()
        return MeetingRecord.model_validate(result.data[0])

    async def list_meetings(self, limit: Optional[int] = None) -> list[MeetingRecord]:
        query = self.supabase.table("meeting").select("*").order("extracted_at", desc=True)
        if limit is not None:
            query = query.limit(limit)
        result = await query.execute()
        return [MeetingRecord.model_validate(row) for row in result.data or []]

    async def find_meetings_awaiting_design(self, limit: Optional[int] = None) -> list[MeetingRecord]:
        # Inner join on the owning message, anti-join on budget; filters run before the limit.
        query = (
            self.supabase.table("meeting")
            .select("*, message!inner(extraction_status, design_status), budget(id)")
            .eq("message.extraction_status", ExtractionStatus.EXTRACTED.value)
            .neq("message.design_status", DesignStatus.DESIGNED.value)
            .is_("budget", "null")
            .order("extracted_at", desc=True)
        )
        if limit is not None:
            query = query.limit(limit)

        result = await query.execute()
        return [
            MeetingRecord.model_validate({k: v for k, v in row.items() if k not in ("message", "budget")})
            for row in result.data or []
        ]

    # Budgets

    async def get_budget(self, budget_id: str) -> Optional[BudgetRecord]:
        result = await self.supabase.table("budget").select("*").eq("id", budget_id).execute()
        return BudgetRecord.model_validate(result.data[0]) if result.data else None

    async def get_budget_by_meeting(self, meeting_id: str) -> Optional[BudgetRecord]:
        result = await self.supabase.table("budget").select("*").eq("meeting_id", meeting_id).execute()
        return BudgetRecord.model_validate(result.data[0]) if result.data else None

    async def upsert_budget(self, budget: BudgetRecord) -> BudgetRecord:
        existing = await self.get_budget_by_meeting(budget.meeting_id)
        row = _row(budget, id=existing.id) if existing else _row(budget)
        result = await self.supabase.table("budget").upsert(row, on_conflict="meeting_id").execute()
        return BudgetRecord.model_validate(result.data[0])

    async def list_budgets(self, limit: Optional[int] = None) -> list[BudgetRecord]:
        query = self.supabase.table("budget").select("*").order("designed_at", desc=True)
        if limit is not None:
            query = query.limit(limit)
        result = await query.execute()
        return [BudgetRecord.model_validate(row) for row in result.data or []]

    # Allocations

    async def get_allocation(self, allocation_id: str) -> Optional[AllocationRecord]:
        result = await self.supabase.table("budget_allocation").select("*").eq("id", allocation_id).execute()
        return AllocationRecord.model_validate(result.data[0]) if result.data else None

    async def list_allocations(self, budget_id: Optional[str] = None) -> list[AllocationRecord]:
        query = self.supabase.table("budget_allocation").select("*")
        if budget_id is not None:
            query = query.eq("budget_id", budget_id)
        result = await query.order("allocated_at", desc=True).execute()
        return [AllocationRecord.model_validate(row) for row in result.data or []]

    async def insert_allocations(self, allocations: list[AllocationRecord]) -> list[AllocationRecord]:
        if not allocations:
            return []
        result = await self.supabase.table("budget_allocation").insert(
            [_row(a) for a in allocations]
        ).execute()
        logger.info(f"Inserted {len(result.data)} allocation rows")
        return [AllocationRecord.model_validate(row) for row in result.data]

    async def update_allocation(self, allocation_id: str, **fields: Any) -> Optional[AllocationRecord]:
        result = await self.supabase.table("budget_allocation").update(
            _json_fields(fields)
        ).eq("id", allocation_id).execute()
        return AllocationRecord.model_validate(result.data[0]) if result.data else None
