"""
Tool registry for scoutchat.

This module provides a registry that maps tool names to async handler functions and a decorator
to register them.  Handlers are called as ``await handler(session, **arguments)`` and return a
tool-specific result.  The registry itself holds no per-conversation state; dispatch, argument
validation and error wrapping live in :mod:`scoutchat.agent.tool_executor`.
"""

import inspect
import logging
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    TypedDict,
    get_type_hints,
)

from scoutchat.agent.tool_executor import (
    execute_tool,
    tool_parameters,
)

if TYPE_CHECKING:
    from scoutchat.agent.session import Session

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any]]


class ParameterInfo(TypedDict):
    """
    Information about a tool parameter.
    """

    type: str
    required: bool


class ToolSchema(TypedDict):
    """
    Schema for a tool function
    """

    description: str
    parameters: Mapping[str, ParameterInfo]


class ToolRegistry:
    """A closed, enumerable mapping of tool names (and aliases) to handlers."""

    def __init__(self) -> None:
        self._tools: Dict[str, Handler] = {}
        self._aliases: Dict[str, str] = {}

    def register(self, name: str, aliases: Iterable[str] = ()) -> Callable[[Handler], Handler]:
        """
        Register an async tool handler under *name*.

        The handler is used as a decorator:
            @registry.register("my_tool")
            async def my_tool(session, arg1: str) -> str:
                ...

        Parameters
        ----------
        name: str
            The name of the tool.  This must be unique across names and aliases.
        aliases:
            Extra names that dispatch to the same handler.

        Raises
        ------
        ValueError
            If the name or one of the aliases is already taken.
        """
        aliases = tuple(aliases)
        for key in (name, *aliases):
            if key in self._tools or key in self._aliases:
                raise ValueError(f"Tool '{key}' is already registered.")
        logger.debug("Registering tool '%s'", name)

        def wrapper(fn: Handler) -> Handler:
            self._tools[name] = fn
            for alias in aliases:
                self._aliases[alias] = name
            return fn

        return wrapper

    def resolve(self, name: str) -> Optional[str]:
        """Return the canonical tool name for *name*, or *None* if unknown."""
        if name in self._tools:
            return name
        return self._aliases.get(name)

    def handler(self, name: str) -> Optional[Handler]:
        """Return the handler registered for *name* (or one of its aliases)."""
        canonical = self.resolve(name)
        return self._tools[canonical] if canonical else None

    def names(self) -> List[str]:
        """Canonical tool names in registration order."""
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.resolve(name) is not None

    def copy(self) -> "ToolRegistry":
        """Return an independent registry holding the same tools."""
        clone = ToolRegistry()
        clone._tools = dict(self._tools)
        clone._aliases = dict(self._aliases)
        return clone

    def schemas(self) -> Mapping[str, ToolSchema]:
        """Extract parameter information from registered tools."""
        tool_schemas: Dict[str, ToolSchema] = {}
        for name, func in self._tools.items():
            try:
                type_hints = get_type_hints(func)
            except NameError:
                type_hints = {}
            params = {}
            for param in tool_parameters(func):
                param_type = type_hints.get(param.name, param.annotation)
                if param_type is inspect.Parameter.empty:
                    param_type = "any"
                param_type_name = getattr(param_type, "__name__", str(param_type))
                params[param.name] = ParameterInfo(
                    type=param_type_name, required=param.default is inspect.Parameter.empty
                )
            tool_schemas[name] = {
                "description": inspect.getdoc(func) or "",
                "parameters": params,
            }
        return tool_schemas

    async def invoke(self, name: str, arguments: Any, session: "Session") -> Any:
        """Validate *arguments* and run the tool.  See :func:`execute_tool`."""
        return await execute_tool(self, name, arguments, session)


TOOL_REGISTRY = ToolRegistry()
"""Registry holding the built-in tools."""

register_tool = TOOL_REGISTRY.register

# Built-in tools register themselves on import.
from scoutchat.tools import web_tools  # noqa: E402,F401  pylint: disable=wrong-import-position
