import asyncio
from typing import (
    Any,
    Mapping,
    Sequence,
)

import pytest

from fakes import (
    ScriptedModel,
    make_session,
)
from scoutchat.agent.model_interface import ModelError
from scoutchat.agent.summarizer import (
    FINAL_SYSTEM_PROMPT,
    MAX_ROUNDS,
    NO_INFORMATION_MESSAGE,
    SUMMARY_SYSTEM_PROMPT,
    Summarizer,
    SynthesisFailure,
    split_into_batches,
)
from scoutchat.core.schema import ChatMessage


def test_batches_preserve_order_and_respect_budget() -> None:
    snippets = ["a" * 40, "b" * 40, "c" * 30, "d" * 90, "e" * 10]
    batches = split_into_batches(snippets, 100)
    assert [s for batch in batches for s in batch] == snippets
    assert batches == [["a" * 40, "b" * 40], ["c" * 30], ["d" * 90, "e" * 10]]
    assert all(sum(map(len, b)) <= 100 for b in batches)


def test_oversized_snippet_gets_its_own_batch() -> None:
    assert split_into_batches(["x" * 500, "y"], 100) == [["x" * 500], ["y"]]
    assert split_into_batches([], 100) == []


def _router(summary: str, answer: str = "Paris."):
    def route(system_prompt: str, prompt: str) -> str:
        if system_prompt == SUMMARY_SYSTEM_PROMPT:
            return summary
        if system_prompt == FINAL_SYSTEM_PROMPT:
            return answer
        raise AssertionError(f"unexpected request: {system_prompt}")

    return route


@pytest.mark.asyncio
async def test_single_snippet_takes_two_requests() -> None:
    model = ScriptedModel(router=_router("Paris is the capital."))
    session = make_session(model=model)
    answer = await Summarizer(session).run(["p" * 100], "What is the capital of France?")

    assert answer == "Paris."
    assert len(model.calls) == 2
    assert "Original question: What is the capital of France?" in model.prompts[1]
    assert session.state.history[-1].content == "Paris."
    assert session.sink.narration == ["Summary:\nParis is the capital.", "Final Answer:\nParis."]
    assert not session.state.workflow_active


@pytest.mark.asyncio
async def test_batches_are_summarised_then_combined() -> None:
    model = ScriptedModel(router=_router("S"))
    session = make_session(model=model)
    summary = await Summarizer(session, budget=10).summarize(["aaaa", "bbbb", "cccc", "dddd"])

    assert summary == "S\n---\nS"
    assert len(model.calls) == 2
    assert "aaaa\n---\nbbbb" in model.prompts[0]


@pytest.mark.asyncio
async def test_recursion_stops_after_max_rounds() -> None:
    model = ScriptedModel(router=_router("a summary that never gets shorter"))
    session = make_session(model=model)
    await Summarizer(session, budget=10).summarize(["aaaa", "bbbb", "cccc", "dddd"])

    assert len(model.calls) == 2 * MAX_ROUNDS
    assert any(p.startswith(f"Round {MAX_ROUNDS}:") for p in session.sink.progress)


@pytest.mark.asyncio
async def test_no_snippets_means_no_requests() -> None:
    model = ScriptedModel()
    session = make_session(model=model)
    answer = await Summarizer(session).run(["", ""], "anything")

    assert answer == NO_INFORMATION_MESSAGE
    assert model.calls == []
    assert session.sink.narration == [NO_INFORMATION_MESSAGE]
    assert not session.state.workflow_active


@pytest.mark.asyncio
async def test_model_error_becomes_synthesis_failure() -> None:
    session = make_session(model=ScriptedModel(script=[ModelError("quota exceeded")]))
    with pytest.raises(SynthesisFailure) as exc:
        await Summarizer(session).run(["text"], "q")
    assert str(exc.value) == "Summarization failed. Error: quota exceeded"
    assert not session.state.workflow_active


class SlowModel(ScriptedModel):
    async def send(self, system_prompt: str, history: Sequence[ChatMessage | Mapping[str, Any]]) -> str:
        await asyncio.sleep(1)
        return "late"


@pytest.mark.asyncio
async def test_timeout_becomes_synthesis_failure() -> None:
    session = make_session(model=SlowModel(), SUMMARIZATION_TIMEOUT=0.01)
    with pytest.raises(SynthesisFailure) as exc:
        await Summarizer(session).run(["text"], "q")
    assert "timed out" in str(exc.value)
