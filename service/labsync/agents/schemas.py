from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class ExtractionStatus(str, Enum):
    PENDING = "pending"
    EXTRACTED = "extracted"
    FAILED = "failed"


class DesignStatus(str, Enum):
    PENDING = "pending"
    DESIGNED = "designed"
    FAILED = "failed"


class AllocationStatus(str, Enum):
    PENDING = "pending"
    ALLOCATED = "allocated"
    FAILED = "failed"


class AllocationCategory(str, Enum):
    PEOPLE = "People"
    RESOURCES = "Resources"


# Extraction output

class ClientDetails(BaseModel):
    name: str = "Unknown Client"
    email: Optional[str] = None
    company: Optional[str] = None


class MeetingDetails(BaseModel):
    project_name: str = "Unnamed Project"
    client_details: ClientDetails = Field(default_factory=ClientDetails)
    meeting_date: datetime = Field(default_factory=utcnow)
    participants: list[str] = Field(default_factory=list)
    estimated_budget: int = 0
    timeline: str = "Not specified"
    requirements: str = "No requirements specified"


# Design output

class PeopleCostItem(BaseModel):
    count: float = 1
    rate: float = 50
    hours: float = 160
    total: float = 0


class BreakdownItem(BaseModel):
    category: str = "Other"
    item: str = "Unspecified"
    quantity: float = 1
    unit_cost: float = 0
    total: float = 0


class BudgetDesign(BaseModel):
    total_budget: int = 0
    people_costs: dict[str, PeopleCostItem] = Field(default_factory=dict)  # role -> cost, model's order
    resource_costs: dict[str, float] = Field(default_factory=dict)
    breakdown: list[BreakdownItem] = Field(default_factory=list)


# Persisted records

class InboundMessage(BaseModel):
    id: str = Field(default_factory=new_id)
    message_id: str  # external (Telegram) id, unique
    sender_id: str = "unknown"
    text: str = ""
    date_received: datetime = Field(default_factory=utcnow)
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    extraction_status: ExtractionStatus = ExtractionStatus.PENDING
    design_status: DesignStatus = DesignStatus.PENDING
    allocation_status: AllocationStatus = AllocationStatus.PENDING
    meeting_details: Optional[MeetingDetails] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class MeetingRecord(MeetingDetails):
    id: str = Field(default_factory=new_id)
    message_id: str  # InboundMessage.id
    extracted_at: datetime = Field(default_factory=utcnow)


class BudgetRecord(BudgetDesign):
    id: str = Field(default_factory=new_id)
    meeting_id: str
    project_name: str = "Unnamed Project"
    designed_at: datetime = Field(default_factory=utcnow)
    designed_by: str = "BudgetDesignService"


class AllocationRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    budget_id: str
    allocated_to: str
    category: AllocationCategory
    allocated_amount: float
    actual_spent: float = 0
    notes: str = ""
    allocated_by: str = "BudgetAllocationService"
    allocated_at: datetime = Field(default_factory=utcnow)


# API Request/Response models

class TelegramUser(BaseModel):
    id: int


class TelegramMessage(BaseModel):
    message_id: Optional[int] = None
    date: Optional[int] = None
    text: Optional[str] = None
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")


class TelegramUpdate(BaseModel):
    update_id: Optional[int] = None
    message: Optional[TelegramMessage] = None
    edited_message: Optional[TelegramMessage] = None


class UpdateSpentRequest(BaseModel):
    actual_spent: float = Field(..., description="Total amount spent so far")
    notes: Optional[str] = None


class RecordExpenseRequest(BaseModel):
    amount: float = Field(..., description="Expense amount to add to actual_spent")
    description: Optional[str] = None


class AllocationSpendResponse(BaseModel):
    data: AllocationRecord
    utilization: str
    message: str
