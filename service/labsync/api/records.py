"""
Read endpoints for the dashboard.

Lists are newest first. A budget is returned together with its
allocations.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from labsync.agents.schemas import (
    AllocationRecord,
    BudgetRecord,
    InboundMessage,
    MeetingRecord,
)
from labsync.api.deps import get_container
from labsync.container import Container

router = APIRouter(tags=["records"])


@router.get("/messages", response_model=list[InboundMessage])
async def list_messages(
    limit: int = Query(50, ge=1, le=500),
    container: Container = Depends(get_container),
):
    return await container.repository.find_messages(limit=limit)


@router.get("/messages/{message_id}", response_model=InboundMessage)
async def get_message(message_id: str, container: Container = Depends(get_container)):
    message = await container.repository.get_message(message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    return message


@router.get("/meetings", response_model=list[MeetingRecord])
async def list_meetings(
    limit: int = Query(50, ge=1, le=500),
    container: Container = Depends(get_container),
):
    return await container.repository.list_meetings(limit=limit)


@router.get("/budgets", response_model=list[BudgetRecord])
async def list_budgets(
    limit: int = Query(50, ge=1, le=500),
    container: Container = Depends(get_container),
):
    return await container.repository.list_budgets(limit=limit)


@router.get("/budgets/{budget_id}")
async def get_budget(budget_id: str, container: Container = Depends(get_container)):
    """Budget with its allocations."""
    budget = await container.repository.get_budget(budget_id)
    if not budget:
        raise HTTPException(status_code=404, detail="Budget not found")

    allocations = await container.repository.list_allocations(budget_id=budget.id)
    return {
        "budget": budget.model_dump(mode="json"),
        "allocations": [a.model_dump(mode="json") for a in allocations],
        "total_allocated": sum(a.allocated_amount for a in allocations),
        "total_spent": sum(a.actual_spent for a in allocations),
    }


@router.get("/allocations", response_model=list[AllocationRecord])
async def list_allocations(
    budget_id: Optional[str] = None,
    container: Container = Depends(get_container),
):
    return await container.repository.list_allocations(budget_id=budget_id)


@router.get("/allocations/{allocation_id}", response_model=AllocationRecord)
async def get_allocation(allocation_id: str, container: Container = Depends(get_container)):
    allocation = await container.repository.get_allocation(allocation_id)
    if not allocation:
        raise HTTPException(status_code=404, detail="Allocation not found")
    return allocation
