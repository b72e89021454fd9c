"""
Planners: turn a user query into an initial :class:`PlanModel`.

* :class:`TemplatePlanner` expands search terms into ``web_search`` / ``read_url`` steps and a
  trailing ``summarize`` step.
* :class:`FreeTextPlanner` asks the model for a numbered plan and parses its lines.

Neither planner lets a failure escape: the worst case is a single-term template plan.
"""

import logging
import re
from typing import (
    TYPE_CHECKING,
    List,
    Sequence,
)

from scoutchat.agent.model_interface import ModelError
from scoutchat.agent.plan import PlanModel
from scoutchat.core.schema import PENDING_RESOLUTION
from scoutchat.memory.memory_store import ConversationMemory
from scoutchat.tools.tool_call_parser import extract_tool_call

if TYPE_CHECKING:
    from scoutchat.agent.model_interface import BaseChatModel
    from scoutchat.agent.session import Session

logger = logging.getLogger(__name__)

_PLAN_LINE_RES = (
    re.compile(r"^\d+\.\s+"),
    re.compile(r"^Step\s*\d+[:.]\s*", re.IGNORECASE),
    re.compile(r"^-+\s+"),
)
_BROAD_QUERY_RE = re.compile(r"all|list|every", re.IGNORECASE)

TERMS_SYSTEM_PROMPT = "You are an assistant that writes effective web search queries."
PLAN_PROMPT = (
    'Given the user question: "{query}", output a numbered list of actionable steps to answer '
    "it. Each step should be specific and, if possible, correspond to a tool call or reasoning "
    "action."
)
PLAN_SYSTEM_PROMPT = "You are a planning assistant. Reply with a numbered list of steps only."


# --- Plan text ---
def parse_plan_text(text: str) -> List[str]:
    """Return the step texts of ``1. ...``, ``Step N: ...`` and ``- ...`` lines, markers stripped."""
    steps = []
    for raw in text.splitlines():
        line = raw.strip()
        for pattern in _PLAN_LINE_RES:
            if pattern.match(line):
                stripped = pattern.sub("", line, count=1).strip()
                if stripped:
                    steps.append(stripped)
                break
    return steps


def looks_like_plan(text: str) -> bool:
    """At least two plan-like lines."""
    return len(parse_plan_text(text)) >= 2


def build_template_plan(terms: Sequence[str], reads_per_term: int) -> PlanModel:
    """``web_search`` + *reads_per_term* ``read_url`` steps per term, then ``summarize``."""
    plan = PlanModel()
    for term in terms:
        plan.add(f'Search for information about: "{term}"', "web_search", {"query": term})
        for rank in range(1, reads_per_term + 1):
            plan.add(f"Read content from top result #{rank}", "read_url", {"url": PENDING_RESOLUTION})
    plan.add("Summarize the findings from all read results", "summarize", {"snippets": []})
    logger.debug("Template plan: %r", plan)
    return plan


# --- Search terms ---
class SearchTermGenerator:
    """Model-assisted search terms with a memory-aware heuristic fallback."""

    def __init__(
        self, model: "BaseChatModel", memory: ConversationMemory, max_terms: int = 3
    ) -> None:
        self.model = model
        self.memory = memory
        self.max_terms = max_terms

    def heuristic_terms(self, query: str) -> List[str]:
        """The query itself, prefixed with the last topic when very short."""
        topic = self.memory.last_topic()
        base = query.strip()
        if len(base) < 5 and topic:
            base = f"{topic} {base}"
        return [base]

    def broad_terms(self, query: str) -> List[str]:
        """Extra sub-queries for "all / list / every" questions about the remembered topic."""
        topic = self.memory.last_topic()
        if topic and _BROAD_QUERY_RE.search(query):
            return [f"{topic} specs", f"{topic} review", f"{topic} price"]
        return []

    async def _model_terms(self, query: str) -> List[str]:
        context = self.memory.summary()
        prompt = (
            f"Write up to {self.max_terms} concise web search queries that together answer the "
            "user question below. Reply with one query per line and nothing else.\n\n"
            + (f"Previous conversation:\n{context}\n\n" if context else "")
            + f"User question: {query}"
        )
        reply = await self.model.ask(TERMS_SYSTEM_PROMPT, prompt)
        terms = []
        for line in reply.splitlines():
            term = line.strip()
            for pattern in _PLAN_LINE_RES:
                term = pattern.sub("", term, count=1)
            term = term.strip().strip('"').strip()
            if term and term not in terms:
                terms.append(term)
        return terms[: self.max_terms]

    async def generate(self, query: str) -> List[str]:
        try:
            terms = await self._model_terms(query)
        except ModelError as exc:
            logger.warning("Search term generation failed, using the query: %s", exc)
            terms = []
        if not terms:
            terms = self.heuristic_terms(query)
        for extra in self.broad_terms(query):
            if extra not in terms:
                terms.append(extra)
        logger.debug("Search terms for %r: %s", query, terms)
        return terms


# --- Planners ---
class TemplatePlanner:
    """Search/read/summarize plan from generated search terms."""

    def __init__(self, session: "Session", use_model_terms: bool = True) -> None:
        self.session = session
        self.use_model_terms = use_model_terms
        self.terms = SearchTermGenerator(session.model, session.memory)

    async def create_plan(self, query: str) -> PlanModel:
        try:
            if self.use_model_terms:
                terms = await self.terms.generate(query)
            else:
                terms = self.terms.heuristic_terms(query) + self.terms.broad_terms(query)
        except Exception:  # noqa: BLE001
            logger.exception("Search term generation raised; planning with the raw query")
            terms = [query]
        return build_template_plan(terms or [query], self.session.settings.READS_PER_TERM)


class FreeTextPlanner:
    """Plan from the model's own numbered list; tool steps are resolved by the executor."""

    def __init__(self, session: "Session") -> None:
        self.session = session

    def plan_from_text(self, text: str) -> PlanModel:
        """Build a plan from already-generated plan text."""
        plan = PlanModel()
        for line in parse_plan_text(text):
            call = extract_tool_call(line)
            canonical = self.session.registry.resolve(call.tool) if call else None
            if call and canonical:
                plan.add(line, canonical, call.arguments)
            else:
                plan.add(line)
        return plan

    async def create_plan(self, query: str) -> PlanModel:
        try:
            text = await self.session.model.ask(PLAN_SYSTEM_PROMPT, PLAN_PROMPT.format(query=query))
        except ModelError as exc:
            logger.warning("Plan generation failed: %s", exc)
            text = ""
        plan = self.plan_from_text(text)
        if not len(plan):
            logger.info("No usable plan in model reply; using a single-term template plan")
            return build_template_plan([query], self.session.settings.READS_PER_TERM)
        return plan
