"""
Output sinks.

The agent never prints or renders anything itself; it pushes user-visible text to a sink.  All sink
methods are fire-and-forget: nothing they return is used.
"""

import logging
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from scoutchat.common import (
    AnsiColors,
    colored_print,
)
from scoutchat.core.schema import (
    PlanStep,
    StepStatus,
)

logger = logging.getLogger(__name__)


class UISink:
    """Base sink: every hook is a no-op."""

    def narrate(self, message: str) -> None:
        """A chat message for the user."""

    def show_progress(self, message: str) -> None:
        """Transient status text (spinner line)."""

    def render_plan(self, steps: Sequence[PlanStep]) -> None:
        """A snapshot of the current plan."""

    def stream_text(self, chunk: str) -> None:
        """An incremental piece of a streamed model reply."""


_STATUS_MARKS = {
    StepStatus.PENDING: "[ ]",
    StepStatus.IN_PROGRESS: "[~]",
    StepStatus.DONE: "[x]",
    StepStatus.ERROR: "[!]",
}


class ConsoleSink(UISink):
    """Coloured terminal output."""

    def __init__(self, show_plan: bool = True) -> None:
        self.show_plan = show_plan
        self._streaming = False

    def _end_stream(self) -> None:
        if self._streaming:
            print()
            self._streaming = False

    def narrate(self, message: str) -> None:
        self._end_stream()
        colored_print(f"🤖 {message}", AnsiColors.YELLOW)

    def show_progress(self, message: str) -> None:
        self._end_stream()
        colored_print(f"… {message}", AnsiColors.GREY)

    def render_plan(self, steps: Sequence[PlanStep]) -> None:
        if not self.show_plan:
            return
        self._end_stream()
        for step in steps:
            line = f"  {_STATUS_MARKS[step.status]} {step.index}. {step.description}"
            color = AnsiColors.RED if step.status is StepStatus.ERROR else AnsiColors.BLUE
            colored_print(line, color)

    def stream_text(self, chunk: str) -> None:
        self._streaming = True
        colored_print(chunk, AnsiColors.GREEN, end="", flush=True)


class RecordingSink(UISink):
    """Collects everything it is sent (HTTP API responses, tests)."""

    def __init__(self) -> None:
        self.narration: List[str] = []
        self.progress: List[str] = []
        self.plans: List[List[Dict[str, Any]]] = []
        self.streamed: List[str] = []

    def narrate(self, message: str) -> None:
        logger.debug("narrate: %s", message)
        self.narration.append(message)

    def show_progress(self, message: str) -> None:
        self.progress.append(message)

    def render_plan(self, steps: Sequence[PlanStep]) -> None:
        self.plans.append([step.model_dump(mode="json") for step in steps])

    def stream_text(self, chunk: str) -> None:
        self.streamed.append(chunk)

    @property
    def last_plan(self) -> List[Dict[str, Any]]:
        return self.plans[-1] if self.plans else []

    def reset(self) -> None:
        """Forget everything recorded so far."""
        self.narration.clear()
        self.progress.clear()
        self.plans.clear()
        self.streamed.clear()
