"""
Recursive batched summarisation and final-answer synthesis.

Collected page snippets are summarised in batches that fit one model request; if the joined batch
summaries are still too long they are summarised again, round after round.  The resulting summary
and the user's original question then go into one final-answer request.
"""

import asyncio
import logging
from typing import (
    TYPE_CHECKING,
    List,
    Optional,
    Sequence,
)

from scoutchat.agent.model_interface import ModelError

if TYPE_CHECKING:
    from scoutchat.agent.session import Session

logger = logging.getLogger(__name__)

SEPARATOR = "\n---\n"
MAX_ROUNDS = 5

SUMMARY_SYSTEM_PROMPT = "You are an assistant that synthesizes information from multiple sources."
SUMMARY_PROMPT = (
    "Summarize the following information extracted from web pages (be as concise as possible):"
    "\n\n{text}"
)
FINAL_SYSTEM_PROMPT = (
    "You are an assistant that synthesizes information from multiple sources and provides a "
    "final answer."
)
FINAL_PROMPT = (
    "Based on the following summaries, provide a final, concise answer to the original question."
    "\n\nSummaries:\n{summaries}\n\nOriginal question: {question}"
)
NO_INFORMATION_MESSAGE = (
    "Sorry, I could not generate a final answer. No relevant information was found during the "
    "research steps. Please try rephrasing your question or providing more details."
)


class SynthesisFailure(RuntimeError):
    """Raised when a summarisation or final-answer request fails or times out."""


def split_into_batches(snippets: Sequence[str], max_len: int) -> List[List[str]]:
    """
    Group consecutive snippets so each batch's total length stays within *max_len*.

    A snippet is never split; one longer than *max_len* gets a batch of its own.
    """
    batches: List[List[str]] = []
    current: List[str] = []
    current_len = 0
    for snippet in snippets:
        if current and current_len + len(snippet) > max_len:
            batches.append(current)
            current, current_len = [], 0
        current.append(snippet)
        current_len += len(snippet)
    if current:
        batches.append(current)
    return batches


class Summarizer:
    """Runs the summarisation protocol for one session."""

    def __init__(self, session: "Session", budget: Optional[int] = None) -> None:
        self.session = session
        self.budget = budget or session.settings.SUMMARY_BUDGET
        self.timeout = session.settings.SUMMARIZATION_TIMEOUT

    async def _request(self, system_prompt: str, prompt: str, what: str) -> str:
        try:
            reply = await asyncio.wait_for(
                self.session.model.ask(system_prompt, prompt), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            raise SynthesisFailure(f"{what} failed. Error: timed out after {self.timeout:g}s") from exc
        except ModelError as exc:
            raise SynthesisFailure(f"{what} failed. Error: {exc}") from exc
        return reply.strip()

    async def summarize_batch(self, snippets: Sequence[str]) -> str:
        return await self._request(
            SUMMARY_SYSTEM_PROMPT,
            SUMMARY_PROMPT.format(text=SEPARATOR.join(snippets)),
            "Summarization",
        )

    async def summarize(self, snippets: Sequence[str], round_no: int = 1) -> str:
        """Reduce *snippets* to one combined summary."""
        sink = self.session.sink
        if len(snippets) == 1:
            sink.show_progress(f"Round {round_no}: Summarizing information...")
            return await self.summarize_batch(snippets)

        batches = split_into_batches(snippets, self.budget)
        summaries = []
        for number, batch in enumerate(batches, start=1):
            sink.show_progress(f"Round {round_no}: Summarizing batch {number} of {len(batches)}...")
            summaries.append(await self.summarize_batch(batch))
        combined = SEPARATOR.join(summaries)
        logger.debug("Round %d: %d batches -> %d chars", round_no, len(batches), len(combined))

        if len(combined) > self.budget and round_no < MAX_ROUNDS:
            sink.show_progress(f"Round {round_no + 1}: Combining summaries...")
            return await self.summarize(summaries, round_no + 1)
        return combined

    async def synthesize(self, summary: str, question: str) -> str:
        """Final answer to *question* from *summary*."""
        return await self._request(
            FINAL_SYSTEM_PROMPT,
            FINAL_PROMPT.format(summaries=summary, question=question),
            "Final answer synthesis",
        )

    async def run(self, snippets: Sequence[str], question: str) -> str:
        """
        Summarise *snippets* and answer *question*.

        Returns the final answer, or the "no relevant information" message when there is nothing
        to summarise.  Either way the session's workflow is marked inactive afterwards.

        Raises
        ------
        SynthesisFailure
            If a model request fails or times out.
        """
        state = self.session.state
        snippets = [s for s in snippets if s]
        try:
            if not snippets:
                self.session.sink.narrate(NO_INFORMATION_MESSAGE)
                return NO_INFORMATION_MESSAGE

            summary = await self.summarize(snippets)
            self.session.sink.narrate(f"Summary:\n{summary}")
            if not summary or not question:
                self.session.sink.narrate(NO_INFORMATION_MESSAGE)
                return NO_INFORMATION_MESSAGE

            answer = await self.synthesize(summary, question)
            self.session.sink.narrate(f"Final Answer:\n{answer}")
            state.append("assistant", answer)
            return answer
        finally:
            state.workflow_active = False
