"""
A tolerant parser for tool calls embedded in free-form model output.

The canonical wire format is:
    {"tool": "<name>", "arguments": { ... }}
optionally wrapped in ``[[TOOLCALL]] ... [[/TOOLCALL]]``.  Models rarely stick to it, so parsing is
a layered list of strategies tried in order (delimited block, embedded JSON objects, key/value
regex).  Each candidate object is tried as strict JSON first and then through the normalisation
pipeline (code fences, comments, trailing commas, broken strings, single quotes, bare keys).
"""

import json
import logging
import re
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from scoutchat.core.schema import ToolCall

logger = logging.getLogger(__name__)


class ToolCallParseError(RuntimeError):
    """Raised when a string cannot be turned into {"tool": ..., "arguments": {...}}"""


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------
_WS = " \t\r\n"
_QUOTE_SET = {"'", '"'}

_DELIMITED_RE = re.compile(r"\[\[TOOLCALL\]\](.*?)(?:\[\[/TOOLCALL\]\]|$)", re.DOTALL)
_FENCE_RE = re.compile(r"```(?:json|tool_code)?", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_DOUBLE_QUOTED_RE = re.compile(r'"([^"\\]*(?:\\.[^"\\]*)*)"', re.DOTALL)
_KEY_VALUE_RE = re.compile(
    r"(tool|action)['\"]?\s*[:=]\s*['\"]?(\w+)['\"]?[,\s]+"
    r"(arguments|query|url|queries)['\"]?\s*[:=]\s*([\{\[].*[\}\]]|['\"].*?['\"])",
    re.DOTALL,
)
_TOOL_CALL_HINT_RE = re.compile(r"\{\s*['\"]?(tool|action|tool_call|tool_code)['\"]?\s*:")

_SHORTHAND_KEYS = ("query", "queries", "url")


def _read_quoted(s: str, i: int) -> Tuple[str, int]:
    """Read a quoted string starting at ``s[i]``, honouring back-slash escapes."""
    quote = s[i]
    if quote not in _QUOTE_SET:
        raise ToolCallParseError(f"expected quote at pos {i}")
    i += 1
    out: List[str] = []
    esc = False
    while i < len(s):
        ch = s[i]
        if esc:
            out.append(ch)
            esc = False
        elif ch == "\\":
            esc = True
        elif ch == quote:
            return "".join(out), i + 1
        else:
            out.append(ch)
        i += 1
    raise ToolCallParseError("unterminated string literal")


def _find_matching_brace(s: str, i: int) -> int:
    """Given s[i] == '{', return index just past its matching '}'."""
    depth = 0
    while i < len(s):
        ch = s[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        elif ch in _QUOTE_SET:
            _, i = _read_quoted(s, i)  # skip over quoted section
            continue  # i already advanced
        i += 1
    raise ToolCallParseError("unbalanced braces")


def _close_unbalanced(fragment: str) -> str:
    """Append whatever quote and closing braces *fragment* is missing."""
    depth = 0
    quote: Optional[str] = None
    esc = False
    for ch in fragment:
        if quote:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == quote:
                quote = None
        elif ch in _QUOTE_SET:
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
    if quote:
        fragment += quote
    return fragment + "}" * max(depth, 0)


def _outside_strings(s: str) -> Iterator[Tuple[int, Optional[str]]]:
    """Yield ``(index, open_quote)`` for every position, tracking string state."""
    quote: Optional[str] = None
    esc = False
    for i, ch in enumerate(s):
        yield i, quote
        if quote:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == quote:
                quote = None
        elif ch in _QUOTE_SET:
            quote = ch


# ---------------------------------------------------------------------------
# Normalisation pipeline
# ---------------------------------------------------------------------------
def strip_code_fences(text: str) -> str:
    """Remove markdown code fence markers (```json, ```tool_code, ```)."""
    return _FENCE_RE.sub("", text).replace("```", "").strip()


def strip_comments(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments that sit outside string literals."""
    out: List[str] = []
    skip_until = -1
    for i, quote in _outside_strings(text):
        if i < skip_until:
            continue
        if quote is None and text.startswith("//", i):
            end = text.find("\n", i)
            skip_until = len(text) if end < 0 else end
            continue
        if quote is None and text.startswith("/*", i):
            end = text.find("*/", i + 2)
            skip_until = len(text) if end < 0 else end + 2
            continue
        out.append(text[i])
    return "".join(out)


def strip_trailing_commas(text: str) -> str:
    """Remove commas directly before ``}`` or ``]``."""
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def collapse_string_newlines(text: str) -> str:
    """Drop raw newlines inside double-quoted values (e.g. URLs wrapped by the model)."""
    return _DOUBLE_QUOTED_RE.sub(lambda m: m.group(0).replace("\r", "").replace("\n", ""), text)


def _requote(body: str) -> str:
    """Re-emit the body of a single-quoted literal as a double-quoted one."""
    out = ['"']
    esc = False
    for ch in body:
        if esc:
            out.append(ch if ch == "'" else "\\" + ch)
            esc = False
        elif ch == "\\":
            esc = True
        elif ch == '"':
            out.append('\\"')
        else:
            out.append(ch)
    out.append('"')
    return "".join(out)


def normalise_quotes(text: str) -> str:
    """Turn single-quoted strings into double-quoted ones and quote bare object keys."""
    out: List[str] = []
    i = 0
    last_token = ""
    while i < len(text):
        ch = text[i]
        if ch == '"':
            _, end = _read_quoted(text, i)
            out.append(text[i:end])
            i = end
            last_token = '"'
            continue
        if ch == "'":
            _, end = _read_quoted(text, i)
            out.append(_requote(text[i + 1 : end - 1]))
            i = end
            last_token = '"'
            continue
        if (ch.isalpha() or ch == "_") and last_token in {"{", ","}:
            j = i
            while j < len(text) and (text[j].isalnum() or text[j] in "_-"):
                j += 1
            k = j
            while k < len(text) and text[k] in _WS:
                k += 1
            if k < len(text) and text[k] == ":":
                out.append(json.dumps(text[i:j]))
                i = j
                last_token = '"'
                continue
        out.append(ch)
        if ch not in _WS:
            last_token = ch
        i += 1
    return "".join(out)


NORMALISERS: Sequence[Callable[[str], str]] = (
    strip_code_fences,
    strip_comments,
    strip_trailing_commas,
    collapse_string_newlines,
    normalise_quotes,
)


def normalise(text: str) -> str:
    """Run the full normalisation pipeline over *text*."""
    for step in NORMALISERS:
        text = step(text)
    return strip_trailing_commas(text)


# ---------------------------------------------------------------------------
# Shape normalisation
# ---------------------------------------------------------------------------
def _coerce_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ToolCallParseError("'arguments' is a string but not JSON") from exc
        if isinstance(decoded, Mapping):
            return dict(decoded)
    raise ToolCallParseError("'arguments' must be a mapping")


def _shorthand_arguments(obj: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: obj[key] for key in _SHORTHAND_KEYS if obj.get(key)}


def normalise_shape(obj: Any) -> Optional[ToolCall]:
    """
    Map the call shapes models actually emit onto the canonical ``{tool, arguments}``.

    Accepted shapes:
        {"tool": ..., "arguments": {...}}        canonical
        {"tool": ..., "args": {...}}
        {"tool_call": {"tool"|"action": ..., ...}}
        {"tool_code": ..., "url": ...}
        {"tool"|"action": ..., "query"|"queries"|"url": ...}
    Returns *None* for objects that do not look like a tool call at all.
    """
    if not isinstance(obj, Mapping):
        return None

    nested = obj.get("tool_call")
    if isinstance(nested, Mapping):
        name = nested.get("tool") or nested.get("action")
        if isinstance(name, str) and name.strip():
            args = _coerce_arguments(nested["arguments"]) if nested.get("arguments") else {}
            args.update(_shorthand_arguments(nested))
            return ToolCall(tool=name.strip(), arguments=args)
        return None

    if isinstance(obj.get("tool_code"), str) and obj.get("url"):
        return ToolCall(tool=obj["tool_code"].strip(), arguments={"url": obj["url"]})

    name = obj.get("tool") or obj.get("action")
    if not isinstance(name, str) or not name.strip():
        return None
    for key in ("arguments", "args"):
        if key in obj:
            return ToolCall(tool=name.strip(), arguments=_coerce_arguments(obj[key]))
    shorthand = _shorthand_arguments(obj)
    if shorthand:
        return ToolCall(tool=name.strip(), arguments=shorthand)
    return None


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------
def _candidate_objects(text: str) -> Iterator[str]:
    """Yield each top-level ``{...}`` block in *text*, auto-closing a truncated last one."""
    i = text.find("{")
    while i >= 0:
        try:
            end = _find_matching_brace(text, i)
        except ToolCallParseError:
            yield _close_unbalanced(text[i:])
            return
        yield text[i:end]
        i = text.find("{", end)


def _load_object(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass
    cleaned = normalise(candidate)
    logger.debug("Normalised tool-call candidate: %s", cleaned)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ToolCallParseError(f"not valid JSON after normalisation: {exc}") from exc


def parse_json_objects(text: str) -> Optional[ToolCall]:
    """Return the first embedded JSON object that has a tool-call shape."""
    errors: List[str] = []
    for candidate in _candidate_objects(strip_code_fences(text)):
        try:
            call = normalise_shape(_load_object(candidate))
        except ToolCallParseError as exc:
            errors.append(str(exc))
            continue
        if call is not None:
            return call
    if errors:
        raise ToolCallParseError("; ".join(errors))
    return None


def parse_delimited(text: str) -> Optional[ToolCall]:
    """Parse the body of a ``[[TOOLCALL]] ... [[/TOOLCALL]]`` block."""
    match = _DELIMITED_RE.search(text)
    if not match:
        return None
    call = parse_json_objects(match.group(1))
    if call is None:
        raise ToolCallParseError("delimited block does not contain a tool call")
    return call


def parse_key_values(text: str) -> Optional[ToolCall]:
    """Last resort: pull ``tool``/``action`` plus one argument out with a regex."""
    match = _KEY_VALUE_RE.search(strip_comments(strip_code_fences(text)))
    if not match:
        return None
    name, key, raw = match.group(2), match.group(3), match.group(4).strip()
    args: Dict[str, Any] = {}
    if key == "arguments" or raw[:1] in "{[":
        try:
            value = json.loads(normalise(raw))
        except json.JSONDecodeError:
            value = None
        if key == "arguments" and isinstance(value, Mapping):
            args = dict(value)
        elif key != "arguments" and value is not None:
            args[key] = value
    else:
        args[key] = raw.strip("'\"")
    return ToolCall(tool=name, arguments=args)


Strategy = Callable[[str], Optional[ToolCall]]

DEFAULT_STRATEGIES: Sequence[Strategy] = (parse_delimited, parse_json_objects, parse_key_values)


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------
class ToolCallParser:
    """Runs an ordered list of parse strategies; the first to produce a call wins."""

    def __init__(self, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES) -> None:
        self.strategies = list(strategies)

    def extract(self, text: str) -> Optional[ToolCall]:
        """Return the tool call found in *text*, or *None*.  Never raises."""
        if not isinstance(text, str) or not text.strip():
            return None
        for strategy in self.strategies:
            try:
                call = strategy(text)
            except ToolCallParseError as exc:
                logger.debug("Strategy %s rejected input: %s", strategy.__name__, exc)
                continue
            if call is not None:
                logger.debug("Strategy %s extracted %s", strategy.__name__, call)
                return call
        return None


_default_parser = ToolCallParser()


def extract_tool_call(text: str) -> Optional[ToolCall]:
    """Extract a tool call from *text* with the default strategy list."""
    return _default_parser.extract(text)


def looks_like_tool_call(text: str) -> bool:
    """Cheap check for text that *tries* to be a tool call (used for error reporting)."""
    return bool(text) and bool(_TOOL_CALL_HINT_RE.search(text))


def is_serialized_tool_call(text: str) -> bool:
    """True if *text* is nothing but a JSON tool-call object."""
    try:
        obj = json.loads(text)
    except (TypeError, json.JSONDecodeError):
        return False
    return isinstance(obj, Mapping) and bool(obj.get("tool")) and "arguments" in obj
