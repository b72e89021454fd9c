import pytest

from fakes import (
    ScriptedModel,
    make_session,
)
from scoutchat.agent.model_interface import ModelError
from scoutchat.agent.planner import (
    FreeTextPlanner,
    SearchTermGenerator,
    TemplatePlanner,
    build_template_plan,
    looks_like_plan,
    parse_plan_text,
)
from scoutchat.core.schema import (
    PENDING_RESOLUTION,
    StepStatus,
)
from scoutchat.memory.memory_store import ConversationMemory


def test_template_plan_layout() -> None:
    plan = build_template_plan(["capital of France"], 3)
    assert [s.index for s in plan] == [1, 2, 3, 4, 5]
    assert [s.tool for s in plan] == ["web_search", "read_url", "read_url", "read_url", "summarize"]
    assert plan[0].description == 'Search for information about: "capital of France"'
    assert plan[0].arguments == {"query": "capital of France"}
    assert plan[3].description == "Read content from top result #3"
    assert all(s.arguments == {"url": PENDING_RESOLUTION} for s in plan[1:4])
    assert all(s.status is StepStatus.PENDING for s in plan)
    assert plan[4].description == "Summarize the findings from all read results"


def test_template_plan_interleaves_terms() -> None:
    plan = build_template_plan(["a", "b"], 2)
    assert [s.tool for s in plan] == [
        "web_search", "read_url", "read_url", "web_search", "read_url", "read_url", "summarize",
    ]
    assert plan[4].description == "Read content from top result #1"


def test_parse_plan_text() -> None:
    text = "Here is my plan:\n1. Search the web\nStep 2: Read the page\n- Summarize\nThanks"
    assert parse_plan_text(text) == ["Search the web", "Read the page", "Summarize"]
    assert looks_like_plan(text)
    assert not looks_like_plan("1. Only one step")
    assert not looks_like_plan("Paris is the capital of France.")


def test_short_query_uses_remembered_topic() -> None:
    memory = ConversationMemory()
    memory.add_turn("tell me about the Pixel", "It is a phone.")
    terms = SearchTermGenerator(ScriptedModel(), memory)
    assert terms.heuristic_terms("cost") == ["Pixel cost"]
    assert terms.heuristic_terms("battery life") == ["battery life"]


def test_broad_query_adds_topic_subqueries() -> None:
    memory = ConversationMemory()
    memory.add_turn("what about the thinkpad", "", facts={"topic": "ThinkPad X1"})
    terms = SearchTermGenerator(ScriptedModel(), memory)
    assert terms.broad_terms("list all models") == [
        "ThinkPad X1 specs", "ThinkPad X1 review", "ThinkPad X1 price",
    ]
    assert terms.broad_terms("how heavy is it") == []


@pytest.mark.asyncio
async def test_model_terms_are_cleaned_and_capped() -> None:
    model = ScriptedModel(script=['1. "rust memory safety"\n2. rust borrow checker\n\n- rust gc\n- extra'])
    terms = SearchTermGenerator(model, ConversationMemory())
    assert await terms.generate("is rust memory safe?") == [
        "rust memory safety", "rust borrow checker", "rust gc",
    ]


@pytest.mark.asyncio
async def test_model_failure_falls_back_to_query() -> None:
    terms = SearchTermGenerator(ScriptedModel(script=[ModelError("down")]), ConversationMemory())
    assert await terms.generate("capital of France") == ["capital of France"]


@pytest.mark.asyncio
async def test_template_planner_builds_plan_from_model_terms() -> None:
    session = make_session(model=ScriptedModel(script=["capital of France"]), READS_PER_TERM=2)
    plan = await TemplatePlanner(session).create_plan("What is the capital of France?")
    assert [s.tool for s in plan] == ["web_search", "read_url", "read_url", "summarize"]
    assert plan[0].arguments == {"query": "capital of France"}


@pytest.mark.asyncio
async def test_template_planner_without_model_terms() -> None:
    model = ScriptedModel()
    session = make_session(model=model)
    plan = await TemplatePlanner(session, use_model_terms=False).create_plan("weather in Oslo")
    assert plan[0].arguments == {"query": "weather in Oslo"}
    assert model.calls == []


def test_free_text_plan_resolves_tool_lines() -> None:
    session = make_session()
    plan = FreeTextPlanner(session).plan_from_text(
        '1. {"tool": "search", "arguments": {"query": "llamas"}}\n2. Think about the answer'
    )
    assert len(plan) == 2
    assert plan[0].tool == "web_search"
    assert plan[0].arguments == {"query": "llamas"}
    assert plan[1].tool is None
    assert plan[1].description == "Think about the answer"


@pytest.mark.asyncio
async def test_free_text_planner_falls_back_to_template() -> None:
    session = make_session(model=ScriptedModel(script=["I would just answer directly."]))
    plan = await FreeTextPlanner(session).create_plan("llamas")
    assert plan[0].tool == "web_search"
    assert plan[-1].tool == "summarize"
