"""Shared test doubles: a scripted chat model and a session factory."""

from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

import httpx

from scoutchat.agent.model_interface import (
    BaseChatModel,
    ModelError,
    to_messages,
)
from scoutchat.agent.session import Session
from scoutchat.agent.sinks import RecordingSink
from scoutchat.config import (
    RelaySpec,
    Settings,
)
from scoutchat.core.schema import ChatMessage
from scoutchat.tools import ToolRegistry
from scoutchat.tools.relay import RelayPool

Router = Callable[[str, str], str]


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from the environment, with a single direct relay."""
    values: Dict[str, Any] = {
        "MODEL_PROVIDER": "openai",
        "RELAYS": [RelaySpec(name="Direct", template="{url}")],
        "FETCH_TIMEOUT": 5.0,
        "WORKFLOW": "plan",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class ScriptedModel(BaseChatModel):
    """
    Chat model replaying canned replies.

    Either pops replies from *script* in order (an ``Exception`` entry is raised instead of
    returned), or asks *router* with ``(system_prompt, last_message)``.
    """

    def __init__(
        self,
        script: Optional[Sequence[Any]] = None,
        router: Optional[Router] = None,
        default: str = "NO",
        cfg: Optional[Settings] = None,
    ) -> None:
        super().__init__(cfg or make_settings())
        self.script = list(script or [])
        self.router = router
        self.default = default
        self.calls: List[Tuple[str, List[Dict[str, str]]]] = []

    @property
    def prompts(self) -> List[str]:
        """Last message of every request."""
        return [messages[-1]["content"] if messages else "" for _, messages in self.calls]

    async def send(
        self, system_prompt: str, history: Sequence[ChatMessage | Mapping[str, Any]]
    ) -> str:
        messages = to_messages(history)
        self.calls.append((system_prompt, messages))
        last = messages[-1]["content"] if messages else ""
        if self.router is not None:
            reply = self.router(system_prompt, last)
        elif self.script:
            reply = self.script.pop(0)
        else:
            reply = self.default
        if isinstance(reply, Exception):
            raise reply
        if not reply:
            raise ModelError("Empty response from scripted model")
        return reply


def make_session(
    model: Optional[BaseChatModel] = None,
    registry: Optional[ToolRegistry] = None,
    settings: Optional[Settings] = None,
    **overrides: Any,
) -> Session:
    """A session with a recording sink and a relay pool over a plain AsyncClient."""
    cfg = settings or make_settings(**overrides)
    return Session(
        settings=cfg,
        model=model or ScriptedModel(cfg=cfg),
        registry=registry,
        relays=RelayPool.from_settings(cfg, client=httpx.AsyncClient()),
        sink=RecordingSink(),
    )
