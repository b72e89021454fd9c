"""
Schema definitions for model <-> agent <-> tool messages.

These data models serve as the contract between the chat model, the orchestration loop, the plan
executor and individual tools.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

import json
from datetime import (
    datetime,
    timezone,
)
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

PENDING_RESOLUTION = "<<PENDING_RESOLUTION>>"
"""Placeholder argument value filled in by the executor from an earlier step's output."""


class ToolCall(BaseModel):
    """A call that the model (or a plan step) wants the agent to execute."""

    tool: str = Field(..., description="Registered tool name")
    arguments: Dict[str, Any] = Field(
        default_factory=dict, description="Keyword arguments for the tool"
    )

    def signature(self) -> str:
        """Stable serialisation used for loop detection."""
        return json.dumps({"tool": self.tool, "arguments": self.arguments}, sort_keys=True)

    def to_wire(self) -> str:
        """Serialise to the tool-call wire format."""
        return json.dumps({"tool": self.tool, "arguments": self.arguments})


class StepStatus(str, Enum):
    """Lifecycle of a single plan step."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    ERROR = "error"


class PlanStep(BaseModel):
    """One step of a plan.  ``tool`` may be *None* for free-text steps resolved at run time."""

    index: int
    description: str
    tool: Optional[str] = None
    arguments: Dict[str, Any] = Field(default_factory=dict)
    status: StepStatus = StepStatus.PENDING
    details: str = ""

    @property
    def unresolved(self) -> bool:
        """True if any argument still holds the resolution sentinel."""
        return any(value == PENDING_RESOLUTION for value in self.arguments.values())


class StepResult(BaseModel):
    """Outcome of one executed (or skipped) plan step."""

    step: int
    tool: Optional[str] = None
    result: Any = None
    error: Optional[str] = None
    skipped: bool = False


class SearchResult(BaseModel):
    """A single web search hit."""

    title: str
    url: str
    snippet: str = ""


class ReadResult(BaseModel):
    """A windowed slice of a page's extracted text."""

    url: str
    content: str
    has_more: bool = False


class ChatMessage(BaseModel):
    """One entry of the conversation history."""

    role: str
    content: str


class ToolCallRecord(BaseModel):
    """Audit entry for a dispatched tool call."""

    tool: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConversationState(BaseModel):
    """Mutable per-conversation state owned by the conversation loop."""

    history: List[ChatMessage] = Field(default_factory=list)
    last_tool_call_signature: str = ""
    repeat_count: int = 0
    accumulated_snippets: List[str] = Field(default_factory=list)
    original_question: str = ""
    workflow_active: bool = True
    last_search_results: List[SearchResult] = Field(default_factory=list)
    tool_call_log: List[ToolCallRecord] = Field(default_factory=list)

    def append(self, role: str, content: str) -> None:
        """Append a message to the history."""
        self.history.append(ChatMessage(role=role, content=content))

    def push_snippet(self, snippet: str) -> None:
        """Collect page text for later summarisation."""
        if snippet:
            self.accumulated_snippets.append(snippet)

    def take_snippets(self) -> List[str]:
        """Return and clear the collected snippets."""
        snippets, self.accumulated_snippets = self.accumulated_snippets, []
        return snippets

    def record_call(self, signature: str) -> int:
        """Update loop-protection counters for *signature* and return the repeat count."""
        if signature == self.last_tool_call_signature:
            self.repeat_count += 1
        else:
            self.last_tool_call_signature = signature
            self.repeat_count = 1
        return self.repeat_count

    def reset_loop_protection(self) -> None:
        """Forget the last seen call."""
        self.last_tool_call_signature = ""
        self.repeat_count = 0

    def clear(self) -> None:
        """Drop everything, as on an explicit chat clear."""
        self.history.clear()
        self.accumulated_snippets.clear()
        self.last_search_results.clear()
        self.tool_call_log.clear()
        self.original_question = ""
        self.workflow_active = True
        self.reset_loop_protection()


class AgentTurn(BaseModel):
    """A finished user turn (for logging / memory)."""

    user_message: str
    tool_calls: List[ToolCall] = Field(default_factory=list)
    reply: Optional[str] = None  # Final user-facing answer
