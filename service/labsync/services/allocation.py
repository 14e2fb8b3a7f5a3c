"""
Budget allocation stage.

Deterministic: expands a designed budget into one allocation per paid role
and one per paid resource. No LLM involved. Also owns spend tracking on
existing allocations.
"""

from typing import Optional

from labsync.agents.schemas import (
    AllocationCategory,
    AllocationRecord,
    AllocationStatus,
    BudgetRecord,
    InboundMessage,
    utcnow,
)
from labsync.errors import NotFoundError, ValidationError
from labsync.logging_config import get_logger
from labsync.services.notifications import EventEmitter, SocketEvents
from labsync.services.repository import Repository

logger = get_logger("allocation")

ALLOCATED_BY = "BudgetAllocationService"


def format_label(key: str) -> str:
    """'ux_researcher' -> 'Ux Researcher'. Only the first letter of each word changes."""
    return " ".join(word[:1].upper() + word[1:] for word in key.split("_"))


def _num(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def utilization(allocation: AllocationRecord) -> int:
    """Spent as a whole percentage of the allocated amount."""
    if allocation.allocated_amount <= 0:
        return 0
    return round(allocation.actual_spent / allocation.allocated_amount * 100)


def build_allocations(budget: BudgetRecord) -> list[AllocationRecord]:
    allocations: list[AllocationRecord] = []
    now = utcnow()

    for role, cost in budget.people_costs.items():
        if cost.total > 0:
            label = format_label(role)
            allocations.append(AllocationRecord(
                budget_id=budget.id,
                allocated_to=label,
                category=AllocationCategory.PEOPLE,
                allocated_amount=cost.total,
                actual_spent=0,
                allocated_by=ALLOCATED_BY,
                allocated_at=now,
                notes=f"{_num(cost.count)} {label}(s) x {_num(cost.hours)}hrs @ ${_num(cost.rate)}/hr",
            ))

    for resource, amount in budget.resource_costs.items():
        if isinstance(amount, (int, float)) and amount > 0:
            label = format_label(resource)
            allocations.append(AllocationRecord(
                budget_id=budget.id,
                allocated_to=label,
                category=AllocationCategory.RESOURCES,
                allocated_amount=amount,
                actual_spent=0,
                allocated_by=ALLOCATED_BY,
                allocated_at=now,
                notes=f"{label} Cost",
            ))

    return allocations


class BudgetAllocationService:
    """Allocation stage: BudgetRecord -> [AllocationRecord]."""

    def __init__(self, repository: Repository, notifier: EventEmitter):
        self.repository = repository
        self.notifier = notifier

    async def _owning_message(self, budget: BudgetRecord) -> Optional[InboundMessage]:
        meeting = await self.repository.get_meeting(budget.meeting_id)
        if not meeting:
            return None
        return await self.repository.get_message(meeting.message_id)

    async def allocate_and_save(self, budget_id: str) -> list[AllocationRecord]:
        """
        Allocate a designed budget. Runs at most once per budget: if
        allocations already exist they are returned as they are.

        Raises:
            NotFoundError: budget does not exist
            Any persistence error, after marking the owning message failed
        """
        budget = await self.repository.get_budget(budget_id)
        if not budget:
            raise NotFoundError("Budget", budget_id)

        message = await self._owning_message(budget)

        existing = await self.repository.list_allocations(budget_id=budget.id)
        if existing:
            logger.info(f"Budget {budget.id} already allocated")
            if message and message.allocation_status != AllocationStatus.ALLOCATED:
                await self.repository.update_message(message.id, allocation_status=AllocationStatus.ALLOCATED)
            return existing

        logger.info(f"Allocating budget for {budget.project_name}")

        try:
            saved = await self.repository.insert_allocations(build_allocations(budget))
            if message:
                message = await self.repository.update_message(
                    message.id, allocation_status=AllocationStatus.ALLOCATED
                )
        except Exception:
            if message:
                await self._mark_failed(message.id)
            raise

        total_allocated = sum(a.allocated_amount for a in saved)
        logger.info(f"Created {len(saved)} allocations for budget {budget.id} (total {total_allocated})")

        if message:
            self.notifier.emit(SocketEvents.MESSAGE_STATUS_UPDATED, {
                "messageId": message.id,
                "allocation_status": AllocationStatus.ALLOCATED.value,
                "message": message.model_dump(mode="json"),
            })
        self.notifier.emit(SocketEvents.ALLOCATION_CREATED, {
            "allocations": [a.model_dump(mode="json") for a in saved],
            "budgetId": budget.id,
            "projectName": budget.project_name,
            "totalAllocated": total_allocated,
        })

        return saved

    async def update_spent(self, allocation_id: str, actual_spent: float, notes: Optional[str] = None) -> AllocationRecord:
        """Set the total spent on an allocation."""
        if isinstance(actual_spent, bool) or not isinstance(actual_spent, (int, float)):
            raise ValidationError("actual_spent must be a number")
        if actual_spent < 0:
            raise ValidationError("actual_spent cannot be negative")

        allocation = await self.repository.get_allocation(allocation_id)
        if not allocation:
            raise NotFoundError("Allocation", allocation_id)

        fields = {"actual_spent": actual_spent}
        if notes:
            fields["notes"] = notes
        allocation = await self.repository.update_allocation(allocation_id, **fields)

        self.notifier.emit(SocketEvents.ALLOCATION_UPDATED, {
            "allocation": allocation.model_dump(mode="json"),
            "utilization": f"{utilization(allocation)}%",
            "isOverBudget": allocation.actual_spent > allocation.allocated_amount,
        })
        return allocation

    async def record_expense(self, allocation_id: str, amount: float, description: Optional[str] = None) -> AllocationRecord:
        """Add an expense to an allocation's spent amount."""
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount <= 0:
            raise ValidationError("amount must be a positive number")

        allocation = await self.repository.get_allocation(allocation_id)
        if not allocation:
            raise NotFoundError("Allocation", allocation_id)

        fields = {"actual_spent": allocation.actual_spent + amount}
        if description:
            fields["notes"] = f"{allocation.notes} | Expense: {description} (${amount:.2f})"
        allocation = await self.repository.update_allocation(allocation_id, **fields)

        self.notifier.emit(SocketEvents.ALLOCATION_EXPENSE, {
            "allocation": allocation.model_dump(mode="json"),
            "expenseAmount": amount,
            "description": description,
            "utilization": f"{utilization(allocation)}%",
            "isOverBudget": allocation.actual_spent > allocation.allocated_amount,
        })
        return allocation

    async def _mark_failed(self, message_id: str) -> None:
        try:
            await self.repository.update_message(message_id, allocation_status=AllocationStatus.FAILED)
        except Exception as e:
            logger.error(f"Could not mark allocation failed for message {message_id}: {e}")
