"""
Tests for budget allocation and spend tracking.

Run with: pytest tests/test_allocation.py -v
"""

from unittest.mock import AsyncMock

import pytest

from labsync.agents.schemas import (
    AllocationCategory,
    AllocationRecord,
    AllocationStatus,
    BudgetRecord,
    DesignStatus,
    ExtractionStatus,
    MeetingRecord,
)
from labsync.errors import NotFoundError, ValidationError
from labsync.services.allocation import build_allocations, format_label, utilization
from labsync.services.budget_design import validate_and_normalize
from labsync.services.notifications import SocketEvents

from conftest import DESIGN_RESPONSE


async def seed_budget(repository, stored_message) -> BudgetRecord:
    message = await stored_message("SkyView drone survey")
    await repository.update_message(
        message.id,
        extraction_status=ExtractionStatus.EXTRACTED,
        design_status=DesignStatus.DESIGNED,
    )
    meeting = await repository.upsert_meeting(
        MeetingRecord(message_id=message.id, project_name="Aerial Survey Platform")
    )
    design = validate_and_normalize(DESIGN_RESPONSE, estimated_budget=0)
    return await repository.upsert_budget(
        BudgetRecord(meeting_id=meeting.id, project_name=meeting.project_name, **design.model_dump())
    )


class TestFormatLabel:
    """snake_case keys to display labels."""

    def test_words_are_capitalized(self):
        assert format_label("ux_researcher") == "Ux Researcher"

    def test_rest_of_word_is_untouched(self):
        assert format_label("iOS_developer") == "IOS Developer"

    def test_single_word(self):
        assert format_label("hardware") == "Hardware"


class TestBuildAllocations:
    """Pure expansion of a budget into allocation rows."""

    def test_people_then_resources(self):
        budget = BudgetRecord(meeting_id="m1", **validate_and_normalize(DESIGN_RESPONSE, 0).model_dump())

        allocations = build_allocations(budget)

        assert [a.allocated_to for a in allocations] == [
            "Drone Pilot", "Gis Analyst", "Drone Rental", "Software Licenses",
        ]
        assert [a.category for a in allocations] == [
            AllocationCategory.PEOPLE, AllocationCategory.PEOPLE,
            AllocationCategory.RESOURCES, AllocationCategory.RESOURCES,
        ]
        assert allocations[0].allocated_amount == 57600
        assert allocations[0].notes == "2 Drone Pilot(s) x 480hrs @ $60/hr"
        assert allocations[2].notes == "Drone Rental Cost"
        assert all(a.actual_spent == 0 for a in allocations)

    def test_zero_amounts_are_skipped(self):
        budget = BudgetRecord(
            meeting_id="m1",
            people_costs={"intern": {"count": 0, "rate": 20, "hours": 100, "total": 0}},
            resource_costs={"insurance": 0},
        )
        assert build_allocations(budget) == []

    def test_utilization(self):
        allocation = AllocationRecord(
            budget_id="b1", allocated_to="Pilot", category=AllocationCategory.PEOPLE,
            allocated_amount=400, actual_spent=100,
        )
        assert utilization(allocation) == 25
        assert utilization(allocation.model_copy(update={"allocated_amount": 0})) == 0


class TestBudgetAllocationService:
    """allocate_and_save, update_spent and record_expense."""

    @pytest.mark.asyncio
    async def test_allocate_and_save(self, container, repository, notifier, stored_message):
        budget = await seed_budget(repository, stored_message)

        allocations = await container.allocation.allocate_and_save(budget.id)

        assert len(allocations) == 4
        assert sum(a.allocated_amount for a in allocations) == 98700
        assert len(await repository.list_allocations(budget_id=budget.id)) == 4

        messages = await repository.find_messages()
        assert messages[0].allocation_status == AllocationStatus.ALLOCATED

        event, payload = notifier.events[-1]
        assert event == SocketEvents.ALLOCATION_CREATED
        assert payload["totalAllocated"] == 98700
        assert payload["budgetId"] == budget.id

    @pytest.mark.asyncio
    async def test_second_call_is_idempotent(self, container, repository, stored_message):
        budget = await seed_budget(repository, stored_message)

        first = await container.allocation.allocate_and_save(budget.id)
        second = await container.allocation.allocate_and_save(budget.id)

        assert {a.id for a in first} == {a.id for a in second}
        assert len(await repository.list_allocations()) == 4

    @pytest.mark.asyncio
    async def test_persistence_failure_marks_failed(self, container, repository, stored_message):
        budget = await seed_budget(repository, stored_message)
        repository.insert_allocations = AsyncMock(side_effect=RuntimeError("database unavailable"))

        with pytest.raises(RuntimeError):
            await container.allocation.allocate_and_save(budget.id)

        messages = await repository.find_messages()
        assert messages[0].allocation_status == AllocationStatus.FAILED

    @pytest.mark.asyncio
    async def test_unknown_budget(self, container):
        with pytest.raises(NotFoundError):
            await container.allocation.allocate_and_save("missing")

    @pytest.mark.asyncio
    async def test_update_spent(self, container, repository, notifier, stored_message):
        budget = await seed_budget(repository, stored_message)
        allocation = (await container.allocation.allocate_and_save(budget.id))[0]

        updated = await container.allocation.update_spent(allocation.id, 28800, notes="Half way")

        assert updated.actual_spent == 28800
        assert updated.notes == "Half way"
        event, payload = notifier.events[-1]
        assert event == SocketEvents.ALLOCATION_UPDATED
        assert payload["utilization"] == "50%"
        assert payload["isOverBudget"] is False

    @pytest.mark.asyncio
    async def test_update_spent_rejects_negative(self, container, repository, stored_message):
        budget = await seed_budget(repository, stored_message)
        allocation = (await container.allocation.allocate_and_save(budget.id))[0]

        with pytest.raises(ValidationError):
            await container.allocation.update_spent(allocation.id, -1)

    @pytest.mark.asyncio
    async def test_record_expense(self, container, repository, notifier, stored_message):
        budget = await seed_budget(repository, stored_message)
        rental = next(
            a for a in await container.allocation.allocate_and_save(budget.id)
            if a.allocated_to == "Drone Rental"
        )

        await container.allocation.record_expense(rental.id, 250, "Batteries")
        updated = await container.allocation.record_expense(rental.id, 5900, "Second drone")

        assert updated.actual_spent == 6150
        assert updated.notes == (
            "Drone Rental Cost | Expense: Batteries ($250.00) | Expense: Second drone ($5900.00)"
        )
        event, payload = notifier.events[-1]
        assert event == SocketEvents.ALLOCATION_EXPENSE
        assert payload["isOverBudget"] is True

    @pytest.mark.asyncio
    async def test_record_expense_rejects_non_positive(self, container, repository, stored_message):
        budget = await seed_budget(repository, stored_message)
        allocation = (await container.allocation.allocate_and_save(budget.id))[0]

        with pytest.raises(ValidationError):
            await container.allocation.record_expense(allocation.id, 0)

    @pytest.mark.asyncio
    async def test_expense_on_unknown_allocation(self, container):
        with pytest.raises(NotFoundError):
            await container.allocation.record_expense("missing", 10)
