"""
Budget design stage.

Turns a MeetingRecord into a BudgetRecord. The LLM proposes roles,
resources and line items; everything it returns is normalized here:
people-cost totals are always recomputed as count x rate x hours, and the
final total is reconciled against the client's estimate.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from labsync.agents.prompts import BUDGET_DESIGN_PROMPT
from labsync.agents.schemas import (
    BreakdownItem,
    BudgetDesign,
    BudgetRecord,
    DesignStatus,
    InboundMessage,
    MeetingRecord,
    PeopleCostItem,
    utcnow,
)
from labsync.errors import NotFoundError, ResponseParseError
from labsync.logging_config import get_logger
from labsync.services.extraction import parse_json_response
from labsync.services.llm import LLMClient
from labsync.services.notifications import EventEmitter, SocketEvents
from labsync.services.repository import Repository
from labsync.services.retry import retry_with_backoff
from labsync.services.task_queue import StageTaskQueue

logger = get_logger("budget_design")

HOURS_PER_MONTH = 160
WEEKS_PER_MONTH = 4.33
DAYS_PER_MONTH = 30
MIN_MONTHS = 0.5

DEFAULT_RATE = 50
DEFAULT_HOURS = 160
RECONCILE_TOLERANCE = 0.5

HIGH_COMPLEXITY_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("enterprise", "scalable", "microservices"), "enterprise-scale"),
    (("ai", "machine learning", "ml"), "AI/ML integration"),
    (("real-time", "websocket", "socket"), "real-time features"),
    (("payment", "e-commerce", "transaction"), "payment processing"),
)
LOW_COMPLEXITY_KEYWORDS = ("simple", "basic", "landing page")

_WEEKS_RE = re.compile(r"(\d+)\s*week")
_MONTHS_RE = re.compile(r"(\d+)\s*month")
_DAYS_RE = re.compile(r"(\d+)\s*day")
_LEADING_FLOAT_RE = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")

# Used when the model's response is not parseable JSON.
FALLBACK_BUDGET_DESIGN: dict[str, Any] = {
    "total_budget": 0,
    "people_costs": {
        "lead": {"count": 1, "rate": 100, "hours": 160},
        "manager": {"count": 1, "rate": 80, "hours": 160},
        "developer": {"count": 2, "rate": 65, "hours": 160},
        "designer": {"count": 1, "rate": 55, "hours": 80},
        "qa": {"count": 1, "rate": 45, "hours": 80},
    },
    "resource_costs": {
        "electricity": 200,
        "rent": 2000,
        "software_licenses": 1000,
        "hardware": 2000,
        "other": 1000,
    },
    "breakdown": [],
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_timeline_to_months(timeline: Optional[str], minimum: float = MIN_MONTHS) -> float:
    """
    Timeline text -> months. Weeks win over months, months over days.

    "6 weeks" -> 1.39, "3 months" -> 3, "10 days" -> 0.5 (floor), unparseable -> 1.
    """
    lower = (timeline or "").lower()

    weeks = _WEEKS_RE.search(lower)
    if weeks:
        return max(minimum, int(weeks.group(1)) / WEEKS_PER_MONTH)

    months = _MONTHS_RE.search(lower)
    if months:
        return max(minimum, float(int(months.group(1))))

    days = _DAYS_RE.search(lower)
    if days:
        return max(minimum, int(days.group(1)) / DAYS_PER_MONTH)

    return 1.0


def parse_timeline_to_hours(timeline: Optional[str]) -> int:
    """Working hours for one full-time person over the timeline (160 per month)."""
    return round_half_up(parse_timeline_to_months(timeline) * HOURS_PER_MONTH)


@dataclass
class ComplexityAssessment:
    level: str
    indicators: list[str] = field(default_factory=list)
    timeline_months: float = 1.0
    assessment: str = ""


def analyze_project_complexity(requirements: Optional[str], timeline: Optional[str]) -> ComplexityAssessment:
    """
    Keyword classification of the requirements into low / medium / high.

    Keywords are plain substring matches. Low indicators are applied last
    and override high ones. Only steers the prompt text.
    """
    lower = (requirements or "").lower()
    months = parse_timeline_to_months(timeline)

    level = "medium"
    indicators: list[str] = []

    for keywords, indicator in HIGH_COMPLEXITY_KEYWORDS:
        if any(k in lower for k in keywords):
            level = "high"
            indicators.append(indicator)

    if any(k in lower for k in LOW_COMPLEXITY_KEYWORDS):
        level = "low"
        indicators.append("simple scope")
    if parse_timeline_to_months(timeline, minimum=0) < MIN_MONTHS:
        level = "low"
        indicators.append("short timeline")

    if not indicators:
        indicators.append("standard project")

    suggestion = {
        "high": "larger team and more resources",
        "low": "smaller team and minimal resources",
    }.get(level, "moderate team and standard resources")

    return ComplexityAssessment(
        level=level,
        indicators=indicators,
        timeline_months=months,
        assessment=(
            f"Project complexity: {level}. Indicators: {', '.join(indicators)}. "
            f"Timeline: {months:.1f} months. This suggests {suggestion}."
        ),
    )


def build_budget_design_prompt(meeting: MeetingRecord) -> str:
    client = meeting.client_details.name
    if meeting.client_details.company:
        client += f" ({meeting.client_details.company})"

    complexity = analyze_project_complexity(meeting.requirements, meeting.timeline)

    return BUDGET_DESIGN_PROMPT.format(
        estimated_budget=meeting.estimated_budget,
        project_name=meeting.project_name,
        client=client,
        timeline=meeting.timeline,
        timeline_months=complexity.timeline_months,
        estimated_hours=parse_timeline_to_hours(meeting.timeline),
        requirements=meeting.requirements,
        complexity_assessment=complexity.assessment,
    )


def normalize_number(value: Any, default: float) -> float:
    """Non-negative number from a number or numeric string, else default."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        if math.isfinite(value) and value >= 0:
            return value
        return default
    if isinstance(value, str):
        match = _LEADING_FLOAT_RE.match(value)
        if match:
            parsed = float(match.group(0))
            if math.isfinite(parsed) and parsed >= 0:
                return parsed
    return default


def normalize_people_cost(cost: Any, default_rate: float = DEFAULT_RATE, default_hours: float = DEFAULT_HOURS) -> PeopleCostItem:
    if not isinstance(cost, dict):
        cost = {}
    count = normalize_number(cost.get("count"), 1)
    rate = normalize_number(cost.get("rate"), default_rate)
    hours = normalize_number(cost.get("hours"), default_hours)
    return PeopleCostItem(count=count, rate=rate, hours=hours, total=count * rate * hours)


def normalize_breakdown_item(item: Any) -> BreakdownItem:
    if not isinstance(item, dict):
        item = {}
    category = item.get("category")
    name = item.get("item")
    return BreakdownItem(
        category=category if isinstance(category, str) and category else "Other",
        item=name if isinstance(name, str) and name else "Unspecified",
        quantity=normalize_number(item.get("quantity"), 1),
        unit_cost=normalize_number(item.get("unit_cost"), 0),
        total=normalize_number(item.get("total"), 0),
    )


def reconcile_total(computed: float, estimated_budget: float) -> int:
    """Keep the client's estimate when the computed sum is within 50% of it."""
    if estimated_budget > 0 and abs(computed - estimated_budget) / estimated_budget < RECONCILE_TOLERANCE:
        return round_half_up(estimated_budget)
    return round_half_up(computed)


def validate_and_normalize(designed: dict[str, Any], estimated_budget: float) -> BudgetDesign:
    people_costs: dict[str, PeopleCostItem] = {}
    raw_people = designed.get("people_costs")
    if isinstance(raw_people, dict):
        for role, cost in raw_people.items():
            people_costs[str(role)] = normalize_people_cost(cost)
    else:
        people_costs["general_staff"] = normalize_people_cost({})

    resource_costs: dict[str, float] = {}
    raw_resources = designed.get("resource_costs")
    if isinstance(raw_resources, dict):
        for resource, amount in raw_resources.items():
            resource_costs[str(resource)] = normalize_number(amount, 0)
    else:
        resource_costs["miscellaneous"] = 500

    raw_breakdown = designed.get("breakdown")
    breakdown = [normalize_breakdown_item(i) for i in raw_breakdown] if isinstance(raw_breakdown, list) else []

    computed = (
        sum(c.total for c in people_costs.values())
        + sum(resource_costs.values())
        + sum(b.total for b in breakdown)
    )

    return BudgetDesign(
        total_budget=reconcile_total(computed, estimated_budget),
        people_costs=people_costs,
        resource_costs=resource_costs,
        breakdown=breakdown,
    )


class BudgetDesignService:
    """Design stage: MeetingRecord -> BudgetRecord."""

    RETRIES = 3
    INITIAL_DELAY = 2.0
    MAX_DELAY = 10.0
    DESIGNED_BY = "BudgetDesignService"

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

    async def design_budget(self, meeting: MeetingRecord) -> BudgetDesign:
        prompt = build_budget_design_prompt(meeting)
        response = await retry_with_backoff(
            lambda: self.llm.generate(prompt),
            self.RETRIES,
            self.INITIAL_DELAY,
            self.MAX_DELAY,
            **self._retry_kwargs,
        )

        try:
            designed = parse_json_response(response)
        except ResponseParseError:
            logger.warning(f"Failed to parse budget JSON for meeting {meeting.id}, using fallback design")
            designed = FALLBACK_BUDGET_DESIGN

        return validate_and_normalize(designed, meeting.estimated_budget)

    async def design_and_save(self, meeting_id: str) -> BudgetRecord:
        """
        Design a budget for a meeting and save it (one budget per meeting).

        Raises:
            NotFoundError: meeting does not exist
            Any LLM / persistence error, after marking the owning message failed
        """
        meeting = await self.repository.get_meeting(meeting_id)
        if not meeting:
            raise NotFoundError("Meeting", meeting_id)

        message = await self.repository.get_message(meeting.message_id)

        if message and message.design_status == DesignStatus.DESIGNED:
            existing = await self.repository.get_budget_by_meeting(meeting.id)
            if existing:
                return existing

        try:
            if message:
                await self.repository.update_message(message.id, design_status=DesignStatus.PENDING)

            design = await self.design_budget(meeting)

            budget = await self.repository.upsert_budget(BudgetRecord(
                meeting_id=meeting.id,
                project_name=meeting.project_name,
                designed_at=utcnow(),
                designed_by=self.DESIGNED_BY,
                **design.model_dump(),
            ))

            if message:
                message = await self.repository.update_message(message.id, design_status=DesignStatus.DESIGNED)
        except Exception:
            await self._mark_failed(meeting.message_id)
            raise

        logger.info(
            f"Designed budget {budget.id} for '{meeting.project_name}': "
            f"total {budget.total_budget}, {len(budget.people_costs)} roles, {len(budget.resource_costs)} resources"
        )
        self._emit(message, meeting, budget)

        if self.task_queue is not None:
            self.task_queue.enqueue("allocate", budget.id)

        return budget

    def _emit(self, message: Optional[InboundMessage], meeting: MeetingRecord, budget: BudgetRecord) -> None:
        if message:
            self.notifier.emit(SocketEvents.MESSAGE_STATUS_UPDATED, {
                "messageId": message.id,
                "design_status": DesignStatus.DESIGNED.value,
                "message": message.model_dump(mode="json"),
            })
        self.notifier.emit(SocketEvents.BUDGET_DESIGNED, {
            "budget": budget.model_dump(mode="json"),
            "meetingId": meeting.id,
            "messageId": meeting.message_id,
        })

    async def _mark_failed(self, message_id: str) -> None:
        try:
            await self.repository.update_message(message_id, design_status=DesignStatus.FAILED)
        except Exception as e:
            logger.error(f"Could not mark design failed for message {message_id}: {e}")
