"""Mutable, ordered plan of tool steps."""

import logging
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Optional,
)

from scoutchat.core.schema import (
    PlanStep,
    StepStatus,
)

logger = logging.getLogger(__name__)


class PlanModel:
    """
    Ordered list of :class:`PlanStep`.

    Indices are always contiguous from 1: every insertion or removal renumbers the steps.  Steps
    are addressed by position (0-based) or held by reference; the executor re-reads ``len(plan)``
    on every iteration because the plan can grow or shrink while it runs.
    """

    def __init__(self, steps: Optional[List[PlanStep]] = None) -> None:
        self._steps: List[PlanStep] = list(steps or [])
        self._renumber()

    # --- Sequence protocol ---
    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[PlanStep]:
        return iter(self._steps)

    def __getitem__(self, position: int) -> PlanStep:
        return self._steps[position]

    def _renumber(self) -> None:
        for number, step in enumerate(self._steps, start=1):
            step.index = number

    # --- Mutation ---
    def add(
        self, description: str, tool: Optional[str] = None, arguments: Optional[Dict[str, Any]] = None
    ) -> PlanStep:
        """Append a new pending step and return it."""
        step = PlanStep(
            index=len(self._steps) + 1,
            description=description,
            tool=tool,
            arguments=dict(arguments or {}),
        )
        self._steps.append(step)
        return step

    def insert_after(self, anchor: PlanStep, step: PlanStep) -> PlanStep:
        """Insert *step* right after *anchor*."""
        position = self.position(anchor) + 1
        self._steps.insert(position, step)
        self._renumber()
        logger.debug("Inserted step %d: %s", step.index, step.description)
        return step

    def remove(self, step: PlanStep) -> None:
        """Remove *step* from the plan."""
        self._steps.pop(self.position(step))
        self._renumber()
        logger.debug("Removed step: %s", step.description)

    def set_status(self, step: PlanStep, status: StepStatus, details: str = "") -> None:
        """Move *step* to *status*; at most one step is in progress at a time."""
        if status is StepStatus.IN_PROGRESS:
            for other in self._steps:
                if other is not step and other.status is StepStatus.IN_PROGRESS:
                    raise ValueError(f"Step {other.index} is already in progress")
        step.status = status
        if details:
            step.details = details

    # --- Queries ---
    def position(self, step: PlanStep) -> int:
        """0-based position of *step* (by identity)."""
        for i, candidate in enumerate(self._steps):
            if candidate is step:
                return i
        raise ValueError(f"Step {step.index} is not part of this plan")

    def search_group(self, search_step: PlanStep) -> List[PlanStep]:
        """``read_url`` steps owned by *search_step*: those up to the next ``web_search``."""
        group: List[PlanStep] = []
        for step in self._steps[self.position(search_step) + 1 :]:
            if step.tool == "web_search":
                break
            if step.tool == "read_url":
                group.append(step)
        return group

    def preceding_search(self, step: PlanStep) -> Optional[PlanStep]:
        """Closest ``web_search`` step before *step*, if any."""
        for candidate in reversed(self._steps[: self.position(step)]):
            if candidate.tool == "web_search":
                return candidate
        return None

    def has_step(self, tool: str, **arguments: Any) -> bool:
        """True if some step calls *tool* with (at least) *arguments*."""
        return any(
            step.tool == tool
            and all(step.arguments.get(key) == value for key, value in arguments.items())
            for step in self._steps
        )

    def snapshot(self) -> List[PlanStep]:
        """Copies of the steps, safe to hand to a renderer."""
        return [step.model_copy(deep=True) for step in self._steps]

    def __repr__(self) -> str:
        return f"PlanModel({[s.description for s in self._steps]!r})"
