"""
Manual pipeline triggers and spend tracking.

The /agents endpoints run one stage synchronously and return its result.
They are idempotent the same way the background path is: a stage that
already completed returns the stored record.
"""

from fastapi import APIRouter, Depends

from labsync.agents.schemas import (
    AllocationSpendResponse,
    RecordExpenseRequest,
    UpdateSpentRequest,
)
from labsync.api.deps import get_container, http_errors
from labsync.container import Container
from labsync.services.allocation import utilization

router = APIRouter(tags=["agents"])


@router.post("/agents/extract/{message_id}")
async def extract_meeting(message_id: str, container: Container = Depends(get_container)):
    """Extract meeting details from a stored message."""
    with http_errors():
        meeting = await container.extraction.extract_and_save(message_id)
    return {"success": True, "data": meeting.model_dump(mode="json")}


@router.post("/agents/design/{meeting_id}")
async def design_budget(meeting_id: str, container: Container = Depends(get_container)):
    """Design the budget for an extracted meeting."""
    with http_errors():
        budget = await container.design.design_and_save(meeting_id)
    return {"success": True, "data": budget.model_dump(mode="json")}


@router.post("/agents/allocate/{budget_id}")
async def allocate_budget(budget_id: str, container: Container = Depends(get_container)):
    """Split a designed budget into allocations."""
    with http_errors():
        allocations = await container.allocation.allocate_and_save(budget_id)
    return {
        "success": True,
        "data": [a.model_dump(mode="json") for a in allocations],
        "total_allocated": sum(a.allocated_amount for a in allocations),
    }


@router.patch("/allocations/{allocation_id}/spend", response_model=AllocationSpendResponse)
async def update_spent(
    allocation_id: str,
    request: UpdateSpentRequest,
    container: Container = Depends(get_container),
):
    with http_errors():
        allocation = await container.allocation.update_spent(
            allocation_id, request.actual_spent, request.notes
        )
    return AllocationSpendResponse(
        data=allocation,
        utilization=f"{utilization(allocation)}%",
        message="Allocation updated",
    )


@router.post("/allocations/{allocation_id}/expense", response_model=AllocationSpendResponse)
async def record_expense(
    allocation_id: str,
    request: RecordExpenseRequest,
    container: Container = Depends(get_container),
):
    with http_errors():
        allocation = await container.allocation.record_expense(
            allocation_id, request.amount, request.description
        )
    return AllocationSpendResponse(
        data=allocation,
        utilization=f"{utilization(allocation)}%",
        message="Expense recorded",
    )


@router.get("/processor/stats")
async def processor_stats(container: Container = Depends(get_container)):
    """Background processor and stage queue counters."""
    processor = container.processor
    queue = container.task_queue
    return {
        "running": processor.running,
        "processing": processor.processing,
        **processor.stats.as_dict(),
        "queue": {
            "running": queue.running,
            "pending": queue.pending(),
            "processed": queue.processed,
            "failed": queue.failed,
        },
        "api_keys": container.key_pool.stats() if container.key_pool else None,
    }
