from typing import (
    Dict,
    List,
    Tuple,
)

import httpx
import pytest
import respx
from httpx import Response

from fakes import (
    ScriptedModel,
    make_session,
)
from scoutchat.agent.tool_executor import (
    ToolArgumentInvalid,
    ToolExecutionError,
)
from scoutchat.core.schema import (
    ReadResult,
    SearchResult,
)
from scoutchat.tools.web_tools import dedupe_results

SEARCH_ENDPOINT = "https://html.duckduckgo.com/html/"


def search_page(results: List[Tuple[str, str]]) -> str:
    items = "".join(
        f'<div class="result"><a class="result__a" href="{url}">{title}</a>'
        f'<a class="result__snippet">About {title}</a></div>'
        for title, url in results
    )
    return f"<html><body>{items}</body></html>"


def test_dedupe_keeps_first_seen_order() -> None:
    results = [
        SearchResult(title="a", url="https://a.com"),
        SearchResult(title="b", url="https://b.com"),
        SearchResult(title="a again", url="https://a.com"),
    ]
    assert [r.title for r in dedupe_results(results)] == ["a", "b"]


@pytest.mark.asyncio
async def test_web_search_records_history_and_results() -> None:
    session = make_session()
    page = search_page([("A", "https://a.com"), ("B", "https://b.com"), ("C", "https://c.com")])
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.get(url__startswith=SEARCH_ENDPOINT).mock(return_value=Response(200, text=page))
            results = await session.registry.invoke("search", {"query": "letters"}, session)
        assert [r.url for r in results] == ["https://a.com", "https://b.com", "https://c.com"]
        assert session.state.last_search_results == results
        entry = session.state.history[-1]
        assert entry.content.startswith('Search results for "letters" (total 3):\n1. A (https://a.com)')
        assert session.model.calls == []
    finally:
        await session.aclose()
        await session.relays.client.aclose()


@pytest.mark.asyncio
async def test_web_search_refines_query_when_results_are_few() -> None:
    model = ScriptedModel(script=["better letters"])
    session = make_session(model=model)
    pages: Dict[str, str] = {
        "letters": search_page([("A", "https://a.com")]),
        "better letters": search_page(
            [("A", "https://a.com"), ("B", "https://b.com"), ("C", "https://c.com")]
        ),
    }
    seen: List[str] = []

    def handler(request: httpx.Request) -> Response:
        query = request.url.params["q"]
        seen.append(query)
        return Response(200, text=pages[query])

    try:
        with respx.mock() as respx_mock:
            respx_mock.get(url__startswith=SEARCH_ENDPOINT).mock(side_effect=handler)
            results = await session.registry.invoke("web_search", {"query": "letters"}, session)
        assert seen == ["letters", "better letters"]
        assert [r.url for r in results] == ["https://a.com", "https://b.com", "https://c.com"]
        assert "Initial query: letters" in model.prompts[0]
    finally:
        await session.relays.client.aclose()


@pytest.mark.asyncio
async def test_web_search_stops_when_model_repeats_the_query() -> None:
    session = make_session(model=ScriptedModel(script=["nothing here"]))
    try:
        with respx.mock() as respx_mock:
            route = respx_mock.get(url__startswith=SEARCH_ENDPOINT).mock(
                return_value=Response(200, text="<html><body>No results.</body></html>")
            )
            results = await session.registry.invoke("web_search", {"query": "nothing here"}, session)
        assert results == []
        assert route.call_count == 1
        assert session.state.history[-1].content.startswith('Search results for "nothing here" (total 0)')
        assert any("No search results found" in m for m in session.sink.narration)
    finally:
        await session.relays.client.aclose()


@pytest.mark.asyncio
async def test_web_search_gives_up_after_max_attempts() -> None:
    model = ScriptedModel(script=["q2", "q3", "q4"])
    session = make_session(model=model)
    try:
        with respx.mock() as respx_mock:
            route = respx_mock.get(url__startswith=SEARCH_ENDPOINT).mock(
                return_value=Response(200, text="<html></html>")
            )
            results = await session.registry.invoke("web_search", {"query": "q1"}, session)
        assert results == []
        assert route.call_count == 3
        assert len(model.calls) == 2
    finally:
        await session.relays.client.aclose()


@pytest.mark.asyncio
async def test_web_search_transport_failure_is_a_tool_error() -> None:
    session = make_session()
    try:
        with respx.mock() as respx_mock:
            respx_mock.get(url__startswith=SEARCH_ENDPOINT).mock(
                side_effect=httpx.ConnectError("offline")
            )
            with pytest.raises(ToolExecutionError):
                await session.registry.invoke("web_search", {"query": "x"}, session)
        assert session.state.history[-1].content.startswith("Web search failed")
    finally:
        await session.relays.client.aclose()


@pytest.mark.asyncio
async def test_read_url_windows_and_caches() -> None:
    session = make_session(READ_DEFAULT_LENGTH=10)
    body = "<html><body><p>" + "abcdefghij" * 3 + "</p></body></html>"
    try:
        with respx.mock() as respx_mock:
            route = respx_mock.get("https://a.com/page").mock(return_value=Response(200, text=body))
            first = await session.registry.invoke("read_url", {"url": "https://a.com/page"}, session)
            last = await session.registry.invoke(
                "read_url", {"url": "https://a.com/page", "start": "25", "length": 10}, session
            )
        assert first == ReadResult(url="https://a.com/page", content="abcdefghij", has_more=True)
        assert last == ReadResult(url="https://a.com/page", content="fghij", has_more=False)
        assert route.call_count == 1
        assert session.state.history[-2].content == (
            "Read content from https://a.com/page:\nabcdefghij..."
        )
        assert session.state.history[-1].content == "Read content from https://a.com/page:\nfghij"
    finally:
        await session.relays.client.aclose()


@pytest.mark.asyncio
async def test_read_url_fails_soft() -> None:
    session = make_session()
    try:
        with respx.mock() as respx_mock:
            respx_mock.get("https://down.example/").mock(side_effect=httpx.ConnectError("down"))
            result = await session.registry.invoke("read_url", {"url": "https://down.example/"}, session)
        assert result.content == ""
        assert not result.has_more
    finally:
        await session.relays.client.aclose()


@pytest.mark.asyncio
async def test_read_url_rejects_non_http_urls() -> None:
    session = make_session()
    try:
        with pytest.raises(ToolArgumentInvalid):
            await session.registry.invoke("read_url", {"url": "file:///etc/passwd"}, session)
        with pytest.raises(ToolArgumentInvalid):
            await session.registry.invoke("read_url", {"url": ""}, session)
    finally:
        await session.relays.client.aclose()


@pytest.mark.asyncio
async def test_instant_answer_returns_payload() -> None:
    session = make_session()
    payload = {"Heading": "Paris", "AbstractText": "Capital of France"}
    try:
        with respx.mock() as respx_mock:
            respx_mock.get(url__startswith="https://api.duckduckgo.com/").mock(
                return_value=Response(200, json=payload)
            )
            result = await session.registry.invoke("instant_answer", {"query": "Paris"}, session)
        assert result == payload
        assert '"Heading": "Paris"' in session.state.history[-1].content
    finally:
        await session.relays.client.aclose()


@pytest.mark.asyncio
async def test_duplicate_anchors_do_not_count_towards_enough_results() -> None:
    model = ScriptedModel(script=["letters elsewhere"])
    session = make_session(model=model)
    pages: Dict[str, str] = {
        "letters": search_page(
            [("A", "https://a.com"), ("A again", "https://a.com"), ("A3", "https://a.com")]
        ),
        "letters elsewhere": search_page(
            [("B", "https://b.com"), ("C", "https://c.com"), ("D", "https://d.com")]
        ),
    }
    seen: List[str] = []

    def handler(request: httpx.Request) -> Response:
        query = request.url.params["q"]
        seen.append(query)
        return Response(200, text=pages[query])

    try:
        with respx.mock() as respx_mock:
            respx_mock.get(url__startswith=SEARCH_ENDPOINT).mock(side_effect=handler)
            results = await session.registry.invoke("web_search", {"query": "letters"}, session)
        assert seen == ["letters", "letters elsewhere"]
        assert [r.url for r in results] == [
            "https://a.com", "https://b.com", "https://c.com", "https://d.com",
        ]
        assert "1. A - About A" in model.prompts[0]
        assert "2. A again" not in model.prompts[0]
    finally:
        await session.relays.client.aclose()
