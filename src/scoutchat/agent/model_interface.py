"""
Chat-model interface for scoutchat.

This module is the only place that *directly* calls an LLM.  Everything else (conversation loop,
planner, executor, tools) talks to a :class:`BaseChatModel` and stays provider-agnostic.

We support three back-ends out of the box:

1. **OpenAI** via the official async SDK.
2. **Gemini** through Google's OpenAI-compatible endpoint (same SDK, different base URL).
3. **Anthropic** via the official async SDK.

Additional providers can be added by subclassing :class:`BaseChatModel` and registering via
:func:`register_model`.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Callable,
    ClassVar,
    Dict,
    List,
    Mapping,
    Sequence,
    Type,
)

from scoutchat.config import (
    Settings,
    settings,
)
from scoutchat.core.schema import ChatMessage

if TYPE_CHECKING:
    from scoutchat.tools import ToolSchema

logger = logging.getLogger(__name__)


class ModelError(RuntimeError):
    """Raised when the chat model cannot be reached or returns nothing usable."""


# ---------------------------------------------------------------------------
# Prompt helpers
# ---------------------------------------------------------------------------
SYSTEM_PROMPT = """\
You are an AI assistant with access to external tools. You MUST use these tools to answer any \
question that requires up-to-date facts, statistics, or detailed content.

When you need a tool, output EXACTLY one JSON object and nothing else, in this format:
{"tool": "<name>", "arguments": { ... }}
Examples:
{"tool": "web_search", "arguments": {"query": "latest news about OpenAI"}}
{"tool": "read_url", "arguments": {"url": "https://example.com", "start": 0, "length": 1122}}
{"tool": "instant_answer", "arguments": {"query": "capital of France"}}

After receiving a tool result, reason step by step and decide whether you need another tool. \
If a read_url snippet ends with "...", request more with the same url and a larger start. \
Only give your final answer once all necessary tool calls are complete.
"""

COT_PREAMBLE = """
Chain of Thought Instructions:
1. Understand: briefly rephrase the core question.
2. Plan: outline your plan step by step.
3. Narrate: before each tool call, say what you are about to do.
4. Execute & Explain: after each tool result, explain what you learned and the next step.
5. Synthesize: combine the findings into a conclusion.
6. Final Answer: state the answer clearly, prefixed exactly with "Final Answer:".
Do NOT output multiple tool calls in a row without narration.
"""


def build_system_prompt(
    tool_schemas: Mapping[str, "ToolSchema"] | None = None, enable_cot: bool = False
) -> str:
    """Build the system prompt, listing the available tools when schemas are given."""
    prompt = SYSTEM_PROMPT

    if tool_schemas:
        tools_info = []
        for tool_name, schema in tool_schemas.items():
            param_desc = ", ".join(
                f"{p}{'' if info['required'] else '?'}: {info['type']}"
                for p, info in schema["parameters"].items()
            )
            summary = schema["description"].splitlines()[0] if schema["description"] else ""
            tools_info.append(f"- {tool_name}({param_desc}): {summary}")
        prompt += "\nAvailable tools:\n" + "\n".join(tools_info) + "\n"

    if enable_cot:
        prompt += COT_PREAMBLE
    return prompt


def to_messages(history: Sequence[ChatMessage | Mapping[str, Any]]) -> List[Dict[str, str]]:
    """Normalise history entries to ``{"role", "content"}`` dicts."""
    messages = []
    for entry in history:
        if isinstance(entry, ChatMessage):
            messages.append({"role": entry.role, "content": entry.content})
        else:
            messages.append({"role": str(entry["role"]), "content": str(entry["content"])})
    return messages


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_MODEL_REGISTRY: dict[str, Type["BaseChatModel"]] = {}


def register_model(name: str) -> Callable:
    """Decorator to register a chat model class under *name*."""

    def wrapper(cls: Type["BaseChatModel"]) -> Type["BaseChatModel"]:
        _MODEL_REGISTRY[name] = cls
        return cls

    return wrapper


def load_model(name: str | None = None, cfg: Settings | None = None) -> "BaseChatModel":
    """
    Factory that returns an instantiated chat model.

    Fallback order:
    1. *name* arg
    2. ``MODEL_PROVIDER`` setting
    3. default: ``"openai"``
    """
    cfg = cfg or settings
    target = name or getattr(cfg, "MODEL_PROVIDER", "openai")
    cls = _MODEL_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Chat model '{target}' is not registered.")
    return cls(cfg)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseChatModel(ABC):
    """Abstract chat transport: system prompt + history in, reply text out."""

    temperature: ClassVar[float] = 0.2

    def __init__(self, cfg: Settings | None = None) -> None:
        self.settings = cfg or settings
        self.model_name = self.settings.MODEL_NAME

    @abstractmethod
    async def send(
        self, system_prompt: str, history: Sequence[ChatMessage | Mapping[str, Any]]
    ) -> str:
        """Return the full reply for *history*."""

    async def stream(
        self, system_prompt: str, history: Sequence[ChatMessage | Mapping[str, Any]]
    ) -> AsyncIterator[str]:
        """Yield reply text incrementally.  The default yields the whole reply at once."""
        yield await self.send(system_prompt, history)

    async def ask(self, system_prompt: str, prompt: str) -> str:
        """One-shot helper: a single user message, stripped reply."""
        reply = await self.send(system_prompt, [ChatMessage(role="user", content=prompt)])
        return reply.strip()


# ---------------------------------------------------------------------------
# Concrete models
# ---------------------------------------------------------------------------
@register_model("openai")
class OpenAIChatModel(BaseChatModel):
    """OpenAI chat completions."""

    def __init__(self, cfg: Settings | None = None) -> None:
        super().__init__(cfg)
        import openai  # pylint: disable=import-outside-toplevel

        self.client = openai.AsyncOpenAI(**self._client_kwargs())

    def _client_kwargs(self) -> Dict[str, Any]:
        return {"api_key": self.settings.OPENAI_API_KEY}

    def _messages(
        self, system_prompt: str, history: Sequence[ChatMessage | Mapping[str, Any]]
    ) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": system_prompt}]
        for message in to_messages(history):
            if message["role"] == "tool":
                message = {"role": "user", "content": message["content"]}
            messages.append(message)
        return messages

    async def send(
        self, system_prompt: str, history: Sequence[ChatMessage | Mapping[str, Any]]
    ) -> str:
        try:
            resp = await self.client.chat.completions.create(
                model=self.model_name,
                messages=self._messages(system_prompt, history),  # type: ignore[arg-type]
                temperature=self.temperature,
            )
        except Exception as e:  # pylint: disable=broad-except
            logger.error("%s request error: %s", type(self).__name__, str(e))
            raise ModelError(f"Error calling {self.model_name}: {e}") from e

        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            logger.error("%s returned empty response", type(self).__name__)
            raise ModelError(f"Empty response from {self.model_name}")
        logger.debug("%s response: %s", type(self).__name__, content)
        return content

    async def stream(
        self, system_prompt: str, history: Sequence[ChatMessage | Mapping[str, Any]]
    ) -> AsyncIterator[str]:
        try:
            resp = await self.client.chat.completions.create(
                model=self.model_name,
                messages=self._messages(system_prompt, history),  # type: ignore[arg-type]
                temperature=self.temperature,
                stream=True,
            )
            async for chunk in resp:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except Exception as e:  # pylint: disable=broad-except
            logger.error("%s stream error: %s", type(self).__name__, str(e))
            raise ModelError(f"Error streaming from {self.model_name}: {e}") from e


@register_model("gemini")
class GeminiChatModel(OpenAIChatModel):
    """Gemini / Gemma models through the OpenAI-compatible endpoint."""

    def _client_kwargs(self) -> Dict[str, Any]:
        return {"api_key": self.settings.GEMINI_API_KEY, "base_url": self.settings.GEMINI_BASE_URL}


@register_model("anthropic")
class AnthropicChatModel(BaseChatModel):
    """Anthropic Claude messages API."""

    def __init__(self, cfg: Settings | None = None) -> None:
        super().__init__(cfg)
        import anthropic  # pylint: disable=import-outside-toplevel

        self.client = anthropic.AsyncAnthropic(api_key=self.settings.ANTHROPIC_API_KEY)

    @staticmethod
    def _messages(history: Sequence[ChatMessage | Mapping[str, Any]]) -> List[Dict[str, str]]:
        """Anthropic wants strictly alternating user/assistant turns starting with user."""
        merged: List[Dict[str, str]] = []
        for message in to_messages(history):
            role = "assistant" if message["role"] == "assistant" else "user"
            if merged and merged[-1]["role"] == role:
                merged[-1]["content"] += "\n\n" + message["content"]
            else:
                merged.append({"role": role, "content": message["content"]})
        if not merged or merged[0]["role"] != "user":
            merged.insert(0, {"role": "user", "content": "(conversation start)"})
        return merged

    async def send(
        self, system_prompt: str, history: Sequence[ChatMessage | Mapping[str, Any]]
    ) -> str:
        try:
            response = await self.client.messages.create(
                model=self.model_name,
                max_tokens=4096,
                system=system_prompt,
                messages=self._messages(history),  # type: ignore[arg-type]
                temperature=self.temperature,
            )
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Anthropic request error: %s", str(e))
            raise ModelError(f"Error calling Anthropic: {e}") from e

        # Handle different content block types from Anthropic API
        content = "".join(block.text for block in response.content if block.type == "text")
        if not content:
            raise ModelError("Empty response from Anthropic")
        logger.debug("Anthropic response: %s", content)
        return content

    async def stream(
        self, system_prompt: str, history: Sequence[ChatMessage | Mapping[str, Any]]
    ) -> AsyncIterator[str]:
        try:
            async with self.client.messages.stream(
                model=self.model_name,
                max_tokens=4096,
                system=system_prompt,
                messages=self._messages(history),  # type: ignore[arg-type]
                temperature=self.temperature,
            ) as stream:
                async for text in stream.text_stream:
                    yield text
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Anthropic stream error: %s", str(e))
            raise ModelError(f"Error streaming from Anthropic: {e}") from e
