"""Main conversation loop for scoutchat."""

import logging
from typing import (
    List,
    Optional,
    Tuple,
)

from scoutchat.agent.executor import Executor
from scoutchat.agent.model_interface import (
    ModelError,
    build_system_prompt,
)
from scoutchat.agent.planner import (
    FreeTextPlanner,
    TemplatePlanner,
    looks_like_plan,
)
from scoutchat.agent.session import Session
from scoutchat.agent.summarizer import (
    Summarizer,
    SynthesisFailure,
)
from scoutchat.agent.tool_executor import ToolExecutionError
from scoutchat.common import truncate
from scoutchat.core.schema import (
    AgentTurn,
    ReadResult,
    StepResult,
    ToolCall,
    ToolCallRecord,
)
from scoutchat.memory.memory_store import save_turn
from scoutchat.tools.tool_call_parser import (
    ToolCallParser,
    is_serialized_tool_call,
    looks_like_tool_call,
)

logger = logging.getLogger(__name__)

LOOP_MESSAGE = (
    "Error: Tool call loop detected. The same tool call has been made more than {limit} times in "
    "a row. Stopping to prevent infinite loop."
)
CHAINED_CALL_WARNING = (
    "Warning: AI outputted another tool call without reasoning. Stopping to prevent infinite loop."
)
PARSE_ERROR_MESSAGE = (
    "Sorry, I could not parse the tool call in the model's reply. Please try again or rephrase "
    "your question."
)
FINAL_ANSWER_MARKER = "Final Answer:"


class LoopDetected(RuntimeError):
    """Raised when the same tool call is repeated more than ``MAX_TOOL_CALL_REPEAT`` times."""


def split_cot(reply: str) -> Tuple[str, str]:
    """Split a chain-of-thought reply into (thinking, answer) on ``Final Answer:``."""
    head, marker, tail = reply.partition(FINAL_ANSWER_MARKER)
    if not marker:
        return "", reply.strip()
    return head.strip(), tail.strip()


# ---------------------------------------------------------------------------
# Conversation Loop
# ---------------------------------------------------------------------------
class ConversationLoop:
    """
    Outer driver for one session.

    ``WORKFLOW="plan"`` runs every message through the template planner and executor.
    ``WORKFLOW="chat"`` lets the model answer, call single tools or write its own plan.
    """

    def __init__(self, session: Session, parser: Optional[ToolCallParser] = None) -> None:
        self.session = session
        self.parser = parser or ToolCallParser()
        self.executor = Executor(session)
        self._rounds = 0
        self._reply = ""
        self._turn_calls: List[ToolCall] = []

    @property
    def system_prompt(self) -> str:
        return build_system_prompt(
            self.session.registry.schemas(), enable_cot=self.session.settings.ENABLE_COT
        )

    def _answer(self, text: str) -> str:
        self.session.sink.narrate(text)
        self._reply = text
        return text

    # --- Turn entry point ---
    async def run_turn(self, message: str) -> str:
        """Handle one user message and return the final user-facing reply."""
        state = self.session.state
        state.original_question = message
        state.workflow_active = True
        state.append("user", message)
        state.reset_loop_protection()
        state.accumulated_snippets.clear()
        self._rounds = 0
        self._reply = ""
        self._turn_calls = []

        if self.session.settings.WORKFLOW == "plan":
            await self._run_plan_workflow(message)
        else:
            await self._request_model()

        self.session.memory.add_turn(message, self._reply)
        save_turn(
            AgentTurn(user_message=message, tool_calls=self._turn_calls, reply=self._reply),
            self._reply,
            self.session.settings.TRANSCRIPT_PATH,
        )
        return self._reply

    async def _run_plan_workflow(self, message: str) -> None:
        plan = await TemplatePlanner(self.session).create_plan(message)
        self.session.sink.narrate(
            "Plan:\n" + "\n".join(f"{step.index}. {step.description}" for step in plan)
        )
        results = await self.executor.run(plan)
        self._reply = self._reply_from_results(results)

    @staticmethod
    def _reply_from_results(results: List[StepResult]) -> str:
        for result in reversed(results):
            if result.tool == "summarize" and isinstance(result.result, str):
                return result.result
        for result in reversed(results):
            if result.error:
                return result.error
        return ""

    # --- Model round trips ---
    async def _complete(self) -> str:
        model = self.session.model
        history = self.session.state.history
        if not self.session.settings.STREAMING:
            return await model.send(self.system_prompt, history)
        chunks = []
        async for chunk in model.stream(self.system_prompt, history):
            self.session.sink.stream_text(chunk)
            chunks.append(chunk)
        return "".join(chunks)

    async def _request_model(self) -> None:
        state = self.session.state
        if not state.workflow_active:
            return
        self._rounds += 1
        if self._rounds > self.session.settings.MAX_TOOL_ROUNDS:
            logger.warning("Tool round limit reached (%d)", self.session.settings.MAX_TOOL_ROUNDS)
            self._answer("Stopping: too many tool calls in a single turn.")
            state.workflow_active = False
            return
        try:
            reply = await self._complete()
        except ModelError as exc:
            logger.warning("Model request failed: %s", exc)
            self._answer(f"Error: {exc}")
            state.workflow_active = False
            return
        await self.handle_reply(reply)

    async def handle_reply(self, reply: str) -> None:
        """Act on one model reply: tool call, unparseable tool call, plan or plain answer."""
        state = self.session.state
        thinking, answer = split_cot(reply) if self.session.settings.ENABLE_COT else ("", reply)
        if thinking:
            logger.debug("Model thinking: %s", thinking)
            self.session.sink.show_progress(thinking)

        call = self.parser.extract(reply)
        if call is not None:
            state.append("assistant", reply)
            try:
                await self.process_tool_call(call)
            except LoopDetected as exc:
                self._reply = str(exc)
            return

        state.append("assistant", reply)
        if looks_like_tool_call(reply):
            logger.warning("Unparseable tool call in reply: %s", truncate(reply, 200))
            self._answer(PARSE_ERROR_MESSAGE)
            return

        if looks_like_plan(answer):
            await self._run_model_plan(answer)
            return

        self._answer(answer)
        state.workflow_active = False

    async def _run_model_plan(self, text: str) -> None:
        self.session.sink.narrate(text)
        plan = FreeTextPlanner(self.session).plan_from_text(text)
        results = await self.executor.run(plan)
        if any(result.tool == "summarize" for result in results):
            self._reply = self._reply_from_results(results)
            return
        try:
            self._reply = await Summarizer(self.session).run(
                self.session.state.take_snippets(), self.session.state.original_question
            )
        except SynthesisFailure as exc:
            self._answer(str(exc))

    # --- Tool calls ---
    async def process_tool_call(self, call: ToolCall, continue_reasoning: bool = True) -> None:
        """
        Run one ad-hoc tool call and, unless told otherwise, let the model reason over the result.

        Raises
        ------
        LoopDetected
            If this exact call was already made ``MAX_TOOL_CALL_REPEAT`` times in a row; the
            handler is not run.
        """
        state = self.session.state
        if not state.workflow_active:
            logger.debug("Workflow inactive, ignoring %s", call.tool)
            return

        limit = self.session.settings.MAX_TOOL_CALL_REPEAT
        if state.record_call(call.signature()) > limit:
            message = LOOP_MESSAGE.format(limit=limit)
            self._answer(message)
            state.workflow_active = False
            raise LoopDetected(message)

        state.tool_call_log.append(ToolCallRecord(tool=call.tool, arguments=call.arguments))
        self._turn_calls.append(call)
        try:
            result = await self.session.registry.invoke(call.tool, call.arguments, self.session)
        except ToolExecutionError as exc:
            logger.warning("Tool call %s failed: %s", call.tool, exc)
            self._answer(str(exc))
            state.workflow_active = False
            return

        if isinstance(result, ReadResult):
            state.push_snippet(result.content)
        if state.history:
            self.session.sink.narrate(truncate(state.history[-1].content, 500))

        if not continue_reasoning:
            return
        if state.history and is_serialized_tool_call(state.history[-1].content):
            self._answer(CHAINED_CALL_WARNING)
            return
        await self._request_model()

    def clear(self) -> None:
        """Forget the whole conversation."""
        self.session.clear()
        self._reply = ""
        self._turn_calls = []
