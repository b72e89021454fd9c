"""Per-conversation context handed to every tool, planner and executor call."""

import logging
from typing import (
    Dict,
    Optional,
)

import httpx

from scoutchat.agent.model_interface import (
    BaseChatModel,
    load_model,
)
from scoutchat.agent.sinks import UISink
from scoutchat.config import (
    Settings,
    settings as default_settings,
)
from scoutchat.core.schema import ConversationState
from scoutchat.memory.memory_store import ConversationMemory
from scoutchat.tools import (
    TOOL_REGISTRY,
    ToolRegistry,
)
from scoutchat.tools.relay import RelayPool

logger = logging.getLogger(__name__)


class Session:
    """
    Everything one conversation owns.

    Parameters
    ----------
    settings:
        Configuration; the module-level settings when omitted.
    model:
        Chat model; built with :func:`load_model` when omitted.
    registry:
        Tool registry; the built-in tools when omitted.
    relays:
        Relay pool; built from ``settings.RELAYS`` when omitted (sharing *client* if given).
    sink:
        Where user-visible output goes; a silent :class:`UISink` when omitted.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        model: Optional[BaseChatModel] = None,
        registry: Optional[ToolRegistry] = None,
        relays: Optional[RelayPool] = None,
        sink: Optional[UISink] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or default_settings
        self.model = model or load_model(cfg=self.settings)
        self.registry = registry or TOOL_REGISTRY
        self.relays = relays or RelayPool.from_settings(self.settings, client=client)
        self.sink = sink or UISink()
        self.state = ConversationState()
        self.memory = ConversationMemory()
        self.page_cache: Dict[str, str] = {}

    def clear(self) -> None:
        """Forget history, snippets, memory and cached pages."""
        self.state.clear()
        self.memory.clear()
        self.page_cache.clear()
        logger.debug("Session cleared")

    async def aclose(self) -> None:
        await self.relays.aclose()
