"""
Tool-call extraction from free-form model output.

Run with:
$ pytest -q
"""

import pytest

from scoutchat.core.schema import ToolCall
from scoutchat.tools.tool_call_parser import (
    ToolCallParseError,
    ToolCallParser,
    extract_tool_call,
    is_serialized_tool_call,
    looks_like_tool_call,
    normalise,
    parse_delimited,
    parse_json_objects,
    parse_key_values,
    strip_comments,
)


def test_fenced_json_block() -> None:
    text = '```json\n{"tool":"web_search","arguments":{"query":"capital of France"}}\n```'
    call = extract_tool_call(text)
    assert call == ToolCall(tool="web_search", arguments={"query": "capital of France"})


def test_single_quotes_and_bare_keys() -> None:
    call = extract_tool_call("{tool: 'read_url', arguments: {url: 'https://x.com'}}")
    assert call == ToolCall(tool="read_url", arguments={"url": "https://x.com"})


def test_wire_format_is_parsed_back() -> None:
    original = ToolCall(tool="read_url", arguments={"url": "https://a.com", "start": 0, "length": 10})
    assert extract_tool_call(original.to_wire()) == original


def test_delimited_block_wins_over_other_json() -> None:
    text = (
        'Earlier I used {"tool": "instant_answer", "arguments": {"query": "old"}}.\n'
        '[[TOOLCALL]]{"tool": "web_search", "arguments": {"query": "new"}}[[/TOOLCALL]]'
    )
    assert extract_tool_call(text) == ToolCall(tool="web_search", arguments={"query": "new"})


def test_comments_and_trailing_commas() -> None:
    text = """```
    {
      // search first
      "tool": "web_search", /* engine omitted */
      "arguments": {"query": "rust vs go",},
    }
    ```"""
    assert extract_tool_call(text) == ToolCall(tool="web_search", arguments={"query": "rust vs go"})


def test_comment_markers_inside_strings_survive() -> None:
    text = '{"tool": "read_url", "arguments": {"url": "https://example.com/a//b"}}'
    assert strip_comments(text) == text


def test_newline_inside_string_value() -> None:
    text = '{"tool": "read_url", "arguments": {"url": "https://example.com/\nlong/path", }}'
    call = extract_tool_call(text)
    assert call is not None
    assert call.arguments["url"] == "https://example.com/long/path"


def test_unbalanced_braces_are_closed() -> None:
    call = extract_tool_call('Sure: {"tool": "web_search", "arguments": {"query": "llamas"')
    assert call == ToolCall(tool="web_search", arguments={"query": "llamas"})


@pytest.mark.parametrize(
    "text,expected",
    [
        (
            '{"tool_call": {"tool": "web_search", "arguments": {"query": "x"}}}',
            ToolCall(tool="web_search", arguments={"query": "x"}),
        ),
        (
            '{"tool_code": "read_url", "url": "https://x.com"}',
            ToolCall(tool="read_url", arguments={"url": "https://x.com"}),
        ),
        (
            '{"tool": "web_search", "query": "weather in Oslo"}',
            ToolCall(tool="web_search", arguments={"query": "weather in Oslo"}),
        ),
        (
            '{"action": "instant_answer", "query": "pi"}',
            ToolCall(tool="instant_answer", arguments={"query": "pi"}),
        ),
        (
            '{"tool": "web_search", "args": {"query": "x"}}',
            ToolCall(tool="web_search", arguments={"query": "x"}),
        ),
    ],
)
def test_legacy_shapes(text: str, expected: ToolCall) -> None:
    assert extract_tool_call(text) == expected


def test_arguments_given_as_json_string() -> None:
    call = extract_tool_call('{"tool": "web_search", "arguments": "{\\"query\\": \\"x\\"}"}')
    assert call == ToolCall(tool="web_search", arguments={"query": "x"})


def test_ordinary_json_is_not_a_tool_call() -> None:
    assert extract_tool_call('Here is data: {"name": "Ada", "born": 1815}') is None
    assert extract_tool_call("Paris is the capital of France.") is None
    assert extract_tool_call("") is None


def test_key_value_fallback() -> None:
    text = "tool = web_search, query = 'best hiking boots'"
    assert parse_key_values(text) == ToolCall(
        tool="web_search", arguments={"query": "best hiking boots"}
    )
    assert extract_tool_call(text) == ToolCall(
        tool="web_search", arguments={"query": "best hiking boots"}
    )


def test_strategies_are_independent() -> None:
    text = '[[TOOLCALL]]{"tool": "read_url", "arguments": {"url": "https://x.com"}}[[/TOOLCALL]]'
    assert parse_delimited(text) == ToolCall(tool="read_url", arguments={"url": "https://x.com"})
    assert parse_delimited("no block here") is None
    with pytest.raises(ToolCallParseError):
        parse_delimited("[[TOOLCALL]] not json at all [[/TOOLCALL]]")
    with pytest.raises(ToolCallParseError):
        parse_json_objects('{"tool": "x", "arguments": 5}')


def test_parser_never_raises() -> None:
    parser = ToolCallParser()
    assert parser.extract("[[TOOLCALL]] {{{ [[/TOOLCALL]]") is None
    assert parser.extract('{"tool": "x", "arguments": 5}') is None


def test_custom_strategy_list() -> None:
    parser = ToolCallParser(strategies=[parse_json_objects])
    assert parser.extract("tool = web_search, query = 'x'") is None
    assert ToolCallParser().extract("tool = web_search, query = 'x'") == ToolCall(
        tool="web_search", arguments={"query": "x"}
    )


def test_normalise_keeps_apostrophes_in_double_quoted_strings() -> None:
    assert normalise('{"q": "don\'t stop", }') == '{"q": "don\'t stop"}'


def test_tool_call_hints() -> None:
    assert looks_like_tool_call('oops {"tool": web_search')
    assert not looks_like_tool_call("plain text")
    assert is_serialized_tool_call('{"tool": "web_search", "arguments": {"query": "x"}}')
    assert not is_serialized_tool_call('Calling {"tool": "web_search", "arguments": {}}')
