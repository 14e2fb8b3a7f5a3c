"""
Explicit wiring of the pipeline collaborators.

Everything the HTTP layer and the background processor need is built once
here and stored on `app.state.container`. Tests build their own container
with an in-memory repository and a fake LLM.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from labsync.config import Settings
from labsync.logging_config import get_logger
from labsync.services.allocation import BudgetAllocationService
from labsync.services.budget_design import BudgetDesignService
from labsync.services.extraction import MeetingExtractionService
from labsync.services.key_pool import ApiKeyPool
from labsync.services.llm import LLMClient, build_llm_client
from labsync.services.notifications import ConnectionManager, EventEmitter, Notifier
from labsync.services.orchestrator import BackgroundProcessor
from labsync.services.repository import InMemoryRepository, Repository
from labsync.services.supabase_repository import SupabaseRepository
from labsync.services.task_queue import StageTaskQueue
from labsync.supabase_client import get_supabase_admin

logger = get_logger("container")


@dataclass
class Container:
    settings: Settings
    repository: Repository
    llm: LLMClient
    key_pool: Optional[ApiKeyPool]
    connections: ConnectionManager
    notifier: EventEmitter
    task_queue: StageTaskQueue
    extraction: MeetingExtractionService
    design: BudgetDesignService
    allocation: BudgetAllocationService
    processor: BackgroundProcessor

    def start(self) -> None:
        """Start the stage queue worker and, if enabled, the periodic processor."""
        self.task_queue.start()
        if self.settings.orchestrator_enabled:
            self.processor.start(self.settings.orchestrator_interval_seconds)

    async def stop(self) -> None:
        self.processor.stop()
        await self.task_queue.stop()


def wire(
    settings: Settings,
    repository: Repository,
    llm: LLMClient,
    key_pool: Optional[ApiKeyPool] = None,
    notifier: Optional[EventEmitter] = None,
    retry_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> Container:
    """Assemble a container from already-built repository and LLM."""
    connections = ConnectionManager()
    if notifier is None:
        notifier = Notifier(connections)
    task_queue = StageTaskQueue()

    extraction = MeetingExtractionService(repository, llm, notifier, task_queue, retry_sleep=retry_sleep)
    design = BudgetDesignService(repository, llm, notifier, task_queue, retry_sleep=retry_sleep)
    allocation = BudgetAllocationService(repository, notifier)

    task_queue.register("extract", extraction.extract_and_save)
    task_queue.register("design", design.design_and_save)
    task_queue.register("allocate", allocation.allocate_and_save)

    processor = BackgroundProcessor(
        repository, extraction, design, allocation, batch_size=settings.orchestrator_batch_size
    )

    return Container(
        settings=settings,
        repository=repository,
        llm=llm,
        key_pool=key_pool,
        connections=connections,
        notifier=notifier,
        task_queue=task_queue,
        extraction=extraction,
        design=design,
        allocation=allocation,
        processor=processor,
    )


async def build_container(settings: Settings) -> Container:
    """Production wiring: Supabase when configured, provider LLM with key rotation."""
    if settings.uses_supabase:
        repository: Repository = SupabaseRepository(await get_supabase_admin(settings))
        logger.info("Using Supabase repository")
    else:
        repository = InMemoryRepository()
        logger.warning("SUPABASE_URL not set, using in-memory repository")

    key_pool = ApiKeyPool(settings.llm_api_keys())
    llm = build_llm_client(settings, key_pool)
    return wire(settings, repository, llm, key_pool=key_pool)
