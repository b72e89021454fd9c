"""
Plan executor.

Walks a :class:`PlanModel` step by step (``pending -> in-progress -> done | error``), resolving
placeholder ``read_url`` URLs from earlier searches, picking which results to read, inserting
fallback steps and finally running the summarisation protocol.  The plan may grow or shrink while
it is walked, so its length is re-read on every iteration.
"""

import json
import logging
import re
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
)
from urllib.parse import urlparse

from scoutchat.agent.model_interface import ModelError
from scoutchat.agent.plan import PlanModel
from scoutchat.agent.reader import deep_read
from scoutchat.agent.summarizer import (
    Summarizer,
    SynthesisFailure,
)
from scoutchat.agent.tool_executor import ToolExecutionError
from scoutchat.common import truncate
from scoutchat.core.schema import (
    PlanStep,
    ReadResult,
    SearchResult,
    StepResult,
    StepStatus,
)
from scoutchat.tools.tool_call_parser import extract_tool_call
from scoutchat.tools.web_tools import dedupe_results

if TYPE_CHECKING:
    from scoutchat.agent.session import Session

logger = logging.getLogger(__name__)

Narrate = Callable[[str], None]

FALLBACK_READS = 3
STEP_RETRIES = 2
NO_TOOL_NEEDED = "NO_TOOL_NEEDED"

_SELECTION_RE = re.compile(r"[\d, ]+")

SELECT_SYSTEM_PROMPT = "You are an assistant helping to select the most relevant search results."
SELECT_PROMPT = (
    'Given these search results for the query: "{query}", which results (by number) are most '
    "relevant to read in detail?\n\n{listing}\n\nReply with a comma-separated list of result "
    "numbers."
)
STEP_SYSTEM_PROMPT = (
    "You are a tool-using agent. You must always output ONLY a tool call JSON or the string "
    "NO_TOOL_NEEDED, as described in the user instructions. Never output explanations, markdown, "
    "or extra text."
)
STEP_PROMPT = """\
You are an AI agent that must follow these instructions exactly:

- If the step requires a tool, output ONLY a tool call JSON object, e.g.:
  {{"tool":"web_search","arguments":{{"query":"example query"}}}}
- Available tools: {tools}
- Do NOT output any explanation, markdown, or extra text.
- If no tool is needed, output ONLY: NO_TOOL_NEEDED (in all caps, no quotes, no explanation).
- If you are unsure, always call a tool.

User question: "{question}"
Step: "{step}"

REMEMBER: Output ONLY a tool call JSON or NO_TOOL_NEEDED. Do not explain your answer.
"""


class StepUnresolved(Exception):
    """A free-text step could not be turned into a tool call; nothing was executed."""


def parse_selection(reply: str, count: int) -> List[int]:
    """
    0-based indices of the results named in *reply*.

    Takes the first run of digits, commas and spaces that holds a number, keeps the numbers in
    ``1..count`` and drops repeats.
    """
    for match in _SELECTION_RE.finditer(reply or ""):
        run = match.group(0)
        if not any(ch.isdigit() for ch in run):
            continue
        indices: List[int] = []
        for part in run.split(","):
            digits = re.match(r"\s*(\d+)", part)
            if not digits:
                continue
            index = int(digits.group(1)) - 1
            if 0 <= index < count and index not in indices:
                indices.append(index)
        return indices
    return []


class Executor:
    """Runs plans for one session."""

    def __init__(self, session: "Session") -> None:
        self.session = session
        self._search_results: Dict[int, List[SearchResult]] = {}

    # --- Helpers ---
    def _set_status(
        self, plan: PlanModel, step: PlanStep, status: StepStatus, details: str = ""
    ) -> None:
        plan.set_status(step, status, details)
        self.session.sink.render_plan(plan.snapshot())

    def filter_sources(self, results: Sequence[SearchResult]) -> List[SearchResult]:
        """Drop non-HTTP results, blocked hosts and duplicate URLs."""
        blocked = [d.lower().lstrip(".") for d in self.session.settings.BLOCKED_DOMAINS]
        kept = []
        for result in results:
            parsed = urlparse(result.url)
            if parsed.scheme not in ("http", "https") or not parsed.hostname:
                continue
            host = parsed.hostname.lower()
            if any(host == d or host.endswith("." + d) for d in blocked):
                logger.debug("Dropping blocked result %s", result.url)
                continue
            kept.append(result)
        return dedupe_results(kept)

    async def select_results(self, query: str, results: Sequence[SearchResult]) -> List[int]:
        """Ask the model which results to read; the first three on any failure."""
        fallback = list(range(min(FALLBACK_READS, len(results))))
        listing = "\n".join(f"{i}. {r.title} - {r.snippet}" for i, r in enumerate(results, start=1))
        try:
            reply = await self.session.model.ask(
                SELECT_SYSTEM_PROMPT, SELECT_PROMPT.format(query=query, listing=listing)
            )
        except ModelError as exc:
            logger.warning("Result selection failed: %s", exc)
            return fallback
        selected = parse_selection(reply, len(results))
        logger.debug("Selection reply %r -> %s", reply, selected)
        return selected or fallback

    def _bind_read_step(self, plan: PlanModel, step: PlanStep, narrate: Narrate) -> bool:
        """Fill a placeholder ``read_url`` from its search group.  False means skip the step."""
        search = plan.preceding_search(step)
        results = self._search_results.get(id(search)) if search is not None else None
        if not results:
            narrate("Skipping read_url step: No web search results available.")
            return False
        group = plan.search_group(search)
        rank = next(i for i, candidate in enumerate(group) if candidate is step)
        if rank >= len(results):
            narrate(f"Skipping read_url step #{rank + 1}: No corresponding web search result.")
            return False
        step.arguments["url"] = results[rank].url
        logger.debug("Bound step %d to %s", step.index, step.arguments["url"])
        return True

    # --- Step kinds ---
    async def _run_search(self, plan: PlanModel, step: PlanStep, narrate: Narrate) -> Any:
        query = str(step.arguments.get("query", ""))
        results = await self.session.registry.invoke("web_search", step.arguments, self.session)
        usable = self.filter_sources(results)
        self._search_results[id(step)] = usable
        narrate(f'Found {len(usable)} results for "{query}".')

        if not usable:
            if not plan.has_step("instant_answer", query=query):
                fallback = PlanStep(
                    index=step.index + 1,
                    description=f'Fallback: Get instant answer for "{query}"',
                    tool="instant_answer",
                    arguments={"query": query},
                )
                plan.insert_after(step, fallback)
                self.session.sink.render_plan(plan.snapshot())
            return results

        group = plan.search_group(step)
        if group:
            selected = await self.select_results(query, usable)
            narrate(f"Selected results to read: {', '.join(str(i + 1) for i in selected)}")
            for rank, read_step in enumerate(group):
                if rank < len(selected):
                    read_step.arguments["url"] = usable[selected[rank]].url
                else:
                    plan.remove(read_step)
            self.session.sink.render_plan(plan.snapshot())
        return results

    async def _run_read(self, step: PlanStep, narrate: Narrate) -> ReadResult:
        url = str(step.arguments.get("url", ""))
        content = await deep_read(self.session, url)
        self.session.state.push_snippet(content)
        narrate(f"Deep reading complete for {url}, snippet length: {len(content)}")
        if content:
            narrate(truncate(content, 300))
        return ReadResult(url=url, content=content)

    async def _run_summarize(self, step: PlanStep) -> str:
        snippets = self.session.state.take_snippets()
        step.arguments["snippets"] = snippets
        return await Summarizer(self.session).run(snippets, self.session.state.original_question)

    async def _resolve_free_step(self, step: PlanStep) -> Optional[str]:
        """
        Turn a free-text step into a tool call via a nested model request.

        Returns the model's reasoning when it says no tool is needed, *None* once ``step`` has
        been given a tool.
        """
        registry = self.session.registry
        prompt = STEP_PROMPT.format(
            tools=", ".join(registry.names()),
            question=self.session.state.original_question,
            step=step.description,
        )
        last_reply = ""
        for attempt in range(1 + STEP_RETRIES):
            try:
                reply = (await self.session.model.ask(STEP_SYSTEM_PROMPT, prompt)).strip()
            except ModelError as exc:
                logger.warning("Step resolution attempt %d failed: %s", attempt + 1, exc)
                continue
            last_reply = reply
            if reply.startswith(NO_TOOL_NEEDED):
                return reply[len(NO_TOOL_NEEDED) :].strip(" :-\n") or NO_TOOL_NEEDED
            call = extract_tool_call(reply)
            canonical = registry.resolve(call.tool) if call else None
            if call and canonical:
                step.tool = canonical
                step.arguments = dict(call.arguments)
                logger.debug("Resolved step %d to %s", step.index, call)
                return None
            logger.debug("Unusable step reply (attempt %d): %r", attempt + 1, reply)
        raise StepUnresolved(
            f"No valid tool call or {NO_TOOL_NEEDED} detected after retries "
            f"(last reply: {truncate(last_reply, 120)!r})"
        )

    async def _execute(self, plan: PlanModel, step: PlanStep, narrate: Narrate) -> Any:
        if step.tool is None:
            reasoning = await self._resolve_free_step(step)
            if reasoning is not None:
                step.details = reasoning
                return reasoning
            if step.tool == "read_url" and step.unresolved:
                raise StepUnresolved("read_url step has no URL")

        if step.tool == "summarize":
            return await self._run_summarize(step)
        if step.tool == "read_url":
            return await self._run_read(step, narrate)
        if step.tool == "web_search":
            return await self._run_search(plan, step, narrate)

        result = await self.session.registry.invoke(step.tool or "", step.arguments, self.session)
        preview = result if isinstance(result, str) else json.dumps(result, default=str)
        narrate(f"Result: {truncate(preview, 300)}")
        return result

    # --- Main loop ---
    async def run(self, plan: PlanModel, narrate: Optional[Narrate] = None) -> List[StepResult]:
        """
        Execute *plan* in order and return one :class:`StepResult` per visited step.

        A step that raises marks itself ``error`` and stops the plan; a free-text step the model
        could not turn into a tool call is marked ``error`` and the plan goes on.
        """
        narrate = narrate or self.session.sink.narrate
        self._search_results = {}
        results: List[StepResult] = []
        self.session.sink.render_plan(plan.snapshot())

        position = 0
        while position < len(plan):
            step = plan[position]

            if step.tool == "read_url" and step.unresolved:
                if not self._bind_read_step(plan, step, narrate):
                    results.append(StepResult(step=step.index, tool=step.tool, skipped=True))
                    self._set_status(plan, step, StepStatus.DONE, "skipped")
                    position = plan.position(step) + 1
                    continue

            narrate(f"Step {step.index}: {step.description}")
            self._set_status(plan, step, StepStatus.IN_PROGRESS)
            try:
                result = await self._execute(plan, step, narrate)
            except StepUnresolved as exc:
                message = f"Error in step {step.index}: {exc}"
                narrate(message)
                self._set_status(plan, step, StepStatus.ERROR, str(exc))
                results.append(StepResult(step=step.index, tool=step.tool, error=message))
                position = plan.position(step) + 1
                continue
            except (ToolExecutionError, SynthesisFailure) as exc:
                logger.warning("Step %d (%s) failed: %s", step.index, step.tool, exc)
                message = f"Error in step {step.index}: {exc}"
                narrate(message)
                self._set_status(plan, step, StepStatus.ERROR, str(exc))
                results.append(StepResult(step=step.index, tool=step.tool, error=message))
                break

            self._set_status(plan, step, StepStatus.DONE)
            results.append(StepResult(step=step.index, tool=step.tool, result=result))
            position = plan.position(step) + 1

        logger.debug("Plan finished with %d step results", len(results))
        return results
