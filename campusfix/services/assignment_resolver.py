"""
Best-worker selection for a single ticket.

1. Keep available workers whose skill matches the ticket category.
2. If none, fall back to any available worker (degraded mode); if still
   none, fail with NoWorkerAvailable.
3. Prefer workers whose coverage area matches the ticket's area exactly,
   ignoring case and surrounding whitespace.
4. Order by open-task count, ties kept in directory order (worker id).

The resolver holds no state between calls.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from campusfix.exceptions import NoWorkerAvailable
from campusfix.repositories.worker_directory import WorkerDirectory, WorkerSnapshot
from campusfix.services.priority_service import skill_for_category

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssignmentDecision:
    worker: WorkerSnapshot
    skill: str
    degraded: bool  # no skill match, picked from the general pool
    local: bool  # coverage area matched the ticket's area

    def describe(self) -> str:
        text = f"Assigned to {self.worker.name}"
        if self.degraded:
            text += f" (no available {self.skill} worker, general pool)"
        if self.local:
            text += " (local)"
        return text


def select_worker(
    candidates: Sequence[WorkerSnapshot],
    skill: str,
    area: Optional[str] = None,
) -> AssignmentDecision:
    """Pick one worker from ``candidates`` for a ticket needing ``skill`` in ``area``."""
    available = [w for w in candidates if w.is_available]
    if not available:
        raise NoWorkerAvailable("No worker is currently available")

    wanted_skill = skill.strip().lower()
    pool = [w for w in available if (w.skill or "").strip().lower() == wanted_skill]
    degraded = not pool
    if degraded:
        pool = available

    local = False
    wanted_area = (area or "").strip().lower()
    if wanted_area:
        # Workers with no coverage area never count as local
        nearby = [w for w in pool if (w.coverage_area or "").strip().lower() == wanted_area]
        if nearby:
            pool = nearby
            local = True

    # sorted() is stable, so equal loads keep directory order
    ranked = sorted(pool, key=lambda w: w.open_task_count)
    return AssignmentDecision(worker=ranked[0], skill=wanted_skill, degraded=degraded, local=local)


class AssignmentResolver:
    def __init__(self, directory: WorkerDirectory):
        self.directory = directory

    async def resolve(self, category: str, area: Optional[str] = None) -> AssignmentDecision:
        skill = skill_for_category(category)
        # One snapshot read: a worker seen as unavailable here is never chosen
        candidates = await self.directory.list_eligible_workers()
        decision = select_worker(candidates, skill, area)
        if decision.degraded:
            logger.warning(
                f"No available '{skill}' worker for category '{category}'; "
                f"falling back to {decision.worker.name}"
            )
        logger.info(
            f"Resolved {category}@{area or '-'} -> {decision.worker.id} "
            f"(load={decision.worker.open_task_count}, local={decision.local})"
        )
        return decision
