"""
Background processor.

Periodically scans persisted state for items stuck at a stage boundary and
drives them forward:

1. messages with extraction pending/failed          -> extraction
2. extracted meetings with no budget yet           -> budget design
3. extracted messages whose design failed          -> budget design (retry)
4. designed messages with allocation pending       -> allocation

Scans run one after another and each handles a small batch per cycle.
Scans 2 and 3 can select the same meeting, so running them in order keeps
a meeting from being designed twice in one cycle. Item failures are
classified for logs and stats and never stop the batch; the failed item is
picked up again on a later cycle. A cycle that starts while the previous
one is still running is skipped.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from labsync.agents.schemas import DesignStatus, ExtractionStatus, AllocationStatus
from labsync.logging_config import get_logger
from labsync.services.allocation import BudgetAllocationService
from labsync.services.budget_design import BudgetDesignService
from labsync.services.extraction import MeetingExtractionService
from labsync.services.failure_classifier import FailureClass, classify_failure
from labsync.services.repository import Repository

logger = get_logger("orchestrator")


@dataclass
class ProcessorStats:
    cycles_run: int = 0
    cycles_skipped: int = 0
    extracted: int = 0
    designed: int = 0
    allocated: int = 0
    failures: dict[str, int] = field(default_factory=lambda: {c.value: 0 for c in FailureClass})

    def as_dict(self) -> dict:
        return {
            "cycles_run": self.cycles_run,
            "cycles_skipped": self.cycles_skipped,
            "extracted": self.extracted,
            "designed": self.designed,
            "allocated": self.allocated,
            "failures": dict(self.failures),
        }


class BackgroundProcessor:
    def __init__(
        self,
        repository: Repository,
        extraction: MeetingExtractionService,
        design: BudgetDesignService,
        allocation: BudgetAllocationService,
        batch_size: int = 5,
    ):
        self.repository = repository
        self.extraction = extraction
        self.design = design
        self.allocation = allocation
        self.batch_size = batch_size
        self.stats = ProcessorStats()

        self._processing = False
        self._timer: Optional[asyncio.Task] = None
        self._cycles: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def processing(self) -> bool:
        return self._processing

    def start(self, interval_seconds: float = 30.0) -> None:
        """Run a cycle now, then one every interval. No-op if already running."""
        if self.running:
            logger.info("Already running")
            return

        logger.info(f"Starting with {interval_seconds}s interval")
        self._timer = asyncio.create_task(self._tick(interval_seconds), name="background-processor")

    def stop(self) -> None:
        """Cancel the schedule. An in-flight cycle is left to finish on its own."""
        if self._timer:
            self._timer.cancel()
            self._timer = None
            logger.info("Stopped")

    async def _tick(self, interval_seconds: float) -> None:
        while True:
            cycle = asyncio.create_task(self.run_cycle())
            self._cycles.add(cycle)
            cycle.add_done_callback(self._cycles.discard)
            await asyncio.sleep(interval_seconds)

    async def run_cycle(self) -> bool:
        """One pass over all four scans. Returns False if skipped (previous cycle still running)."""
        if self._processing:
            self.stats.cycles_skipped += 1
            logger.debug("Previous cycle still running, skipping")
            return False

        self._processing = True
        try:
            scans = (
                self.process_failed_extractions,
                self.process_pending_meetings,
                self.process_failed_budget_designs,
                self.process_pending_allocations,
            )
            for scan in scans:
                try:
                    await scan()
                except Exception as e:
                    logger.error(f"Error in {scan.__name__}: {e}", exc_info=True)
            self.stats.cycles_run += 1
        finally:
            self._processing = False
        return True

    async def process_failed_extractions(self) -> None:
        messages = await self.repository.find_messages(
            extraction_statuses=[ExtractionStatus.PENDING, ExtractionStatus.FAILED],
            require_text=True,
            limit=self.batch_size,
        )
        for message in messages:
            try:
                logger.info(f"Retrying extraction for message {message.id}")
                await self.extraction.extract_and_save(message.id)
                self.stats.extracted += 1
            except Exception as e:
                self._handle_item_error("extraction", f"message {message.id}", e)

    async def process_pending_meetings(self) -> None:
        meetings = await self.repository.find_meetings_awaiting_design(limit=self.batch_size)
        for meeting in meetings:
            try:
                message = await self.repository.get_message(meeting.message_id)
                if (
                    message
                    and message.extraction_status == ExtractionStatus.EXTRACTED
                    and message.design_status != DesignStatus.DESIGNED
                ):
                    logger.info(f"Designing budget for meeting {meeting.id}")
                    await self.design.design_and_save(meeting.id)
                    self.stats.designed += 1
            except Exception as e:
                self._handle_item_error("budget design", f"meeting {meeting.id}", e)

    async def process_failed_budget_designs(self) -> None:
        messages = await self.repository.find_messages(
            extraction_statuses=[ExtractionStatus.EXTRACTED],
            design_statuses=[DesignStatus.FAILED],
            limit=self.batch_size,
        )
        for message in messages:
            try:
                meeting = await self.repository.get_meeting_by_message(message.id)
                if meeting:
                    logger.info(f"Retrying budget design for meeting {meeting.id}")
                    await self.design.design_and_save(meeting.id)
                    self.stats.designed += 1
            except Exception as e:
                self._handle_item_error("budget design", f"message {message.id}", e)

    async def process_pending_allocations(self) -> None:
        messages = await self.repository.find_messages(
            design_statuses=[DesignStatus.DESIGNED],
            allocation_statuses=[AllocationStatus.PENDING],
            limit=self.batch_size,
        )
        for message in messages:
            try:
                meeting = await self.repository.get_meeting_by_message(message.id)
                budget = await self.repository.get_budget_by_meeting(meeting.id) if meeting else None
                if budget:
                    logger.info(f"Allocating budget {budget.id}")
                    await self.allocation.allocate_and_save(budget.id)
                    self.stats.allocated += 1
            except Exception as e:
                self._handle_item_error("allocation", f"message {message.id}", e)

    def _handle_item_error(self, stage: str, item: str, error: Exception) -> None:
        classification = classify_failure(error)
        self.stats.failures[classification.failure_class.value] += 1

        if classification.failure_class == FailureClass.QUOTA:
            logger.warning(f"Skipping {stage} for {item} - API quota exceeded. Will retry later.")
        elif classification.failure_class == FailureClass.OVERLOAD:
            logger.debug(f"{stage} for {item} hit provider overload, retrying next cycle: {error}")
        elif classification.failure_class == FailureClass.AUTH:
            logger.error(f"Auth failure during {stage} for {item}: {error}")
        else:
            logger.error(f"Failed {stage} for {item}: {error}")
