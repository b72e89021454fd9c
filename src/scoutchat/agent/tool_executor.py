"""Dispatches tool calls registered in ``scoutchat.tools`` and wraps errors."""

import inspect
import logging
import types
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
    get_args,
    get_origin,
)

if TYPE_CHECKING:
    from scoutchat.agent.session import Session
    from scoutchat.tools import ToolRegistry

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


class ToolUnknown(ToolExecutionError):
    """Raised when the requested tool is not registered."""


class ToolArgumentInvalid(ToolExecutionError):
    """Raised when a required argument is missing or has the wrong type."""


def tool_parameters(fn: Callable[..., Any]) -> List[inspect.Parameter]:
    """Return the caller-supplied parameters of a handler (everything after ``session``)."""
    params = list(inspect.signature(fn).parameters.values())
    return params[1:]


def _expected_types(annotation: Any) -> Tuple[Tuple[type, ...], bool]:
    """Return (accepted types, optional) for a parameter annotation."""
    if annotation is inspect.Parameter.empty or isinstance(annotation, str):
        return (), True
    members = [annotation]
    if get_origin(annotation) in (Union, types.UnionType):
        members = list(get_args(annotation))
    optional = type(None) in members
    accepted: List[type] = []
    for member in members:
        if member is type(None):
            continue
        base = get_origin(member) or member
        if isinstance(base, type):
            accepted.append(base)
    return tuple(accepted), optional


def _check_value(tool: str, name: str, value: Any, param: inspect.Parameter) -> Any:
    accepted, optional = _expected_types(param.annotation)
    if value is None:
        if optional or param.default is None:
            return value
        raise ToolArgumentInvalid(f"Invalid arguments for tool '{tool}': '{name}' must not be null")
    if not accepted:
        return value
    if int in accepted and bool not in accepted:
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            value = int(value.strip())
        if isinstance(value, bool):
            raise ToolArgumentInvalid(
                f"Invalid arguments for tool '{tool}': '{name}' must be an integer"
            )
    if not isinstance(value, accepted):
        expected = " or ".join(t.__name__ for t in accepted)
        raise ToolArgumentInvalid(
            f"Invalid arguments for tool '{tool}': '{name}' must be {expected}, "
            f"got {type(value).__name__}"
        )
    if (
        isinstance(value, str)
        and not value.strip()
        and param.default is inspect.Parameter.empty
    ):
        raise ToolArgumentInvalid(f"Invalid arguments for tool '{tool}': '{name}' is empty")
    return value


def validate_arguments(
    tool: str, fn: Callable[..., Any], arguments: Optional[Mapping[str, Any]]
) -> Dict[str, Any]:
    """
    Check *arguments* against the handler signature.

    Returns a cleaned copy (numeric strings coerced for integer parameters).

    Raises
    ------
    ToolArgumentInvalid
        On a non-mapping, a missing required argument, an unexpected argument, a wrong primitive
        type or a blank required string.
    """
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, Mapping):
        raise ToolArgumentInvalid(
            f"Invalid arguments for tool '{tool}': expected a mapping, "
            f"got {type(arguments).__name__}"
        )

    params = {p.name: p for p in tool_parameters(fn)}
    accepts_extra = any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values())
    cleaned: Dict[str, Any] = {}
    for name, value in arguments.items():
        param = params.get(name)
        if param is None or param.kind is inspect.Parameter.VAR_KEYWORD:
            if not accepts_extra:
                raise ToolArgumentInvalid(
                    f"Invalid arguments for tool '{tool}': unexpected argument '{name}'"
                )
            cleaned[name] = value
            continue
        cleaned[name] = _check_value(tool, name, value, param)

    for name, param in params.items():
        if param.kind in (inspect.Parameter.VAR_KEYWORD, inspect.Parameter.VAR_POSITIONAL):
            continue
        if param.default is inspect.Parameter.empty and name not in cleaned:
            raise ToolArgumentInvalid(
                f"Invalid arguments for tool '{tool}': missing required argument '{name}'"
            )
    return cleaned


async def execute_tool(
    registry: "ToolRegistry",
    name: str,
    args: Any,
    session: "Session",
) -> Any:
    """
    Look up *name* in *registry* and await it with *args*.

    Parameters
    ----------
    registry:
        Where to look the tool up.
    name:
        The registered tool name or alias.
    args:
        Keyword arguments for the tool.  If *None*, an empty dict is assumed.
    session:
        The conversation session handed to the handler as its first argument.

    Returns
    -------
    Any
        Whatever the tool handler returns.

    Raises
    ------
    ToolUnknown
        If the tool is not registered.
    ToolArgumentInvalid
        If the arguments do not fit the handler's signature.
    ToolExecutionError
        If the handler itself raises.
    """
    tool_fn = registry.handler(name)
    if tool_fn is None:
        raise ToolUnknown(f"Tool '{name}' is not registered.")

    cleaned = validate_arguments(name, tool_fn, args)
    try:
        logger.debug("Executing tool '%s' with args=%s", name, cleaned)
        return await tool_fn(session, **cleaned)
    except ToolExecutionError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", name)
        raise ToolExecutionError(f"Tool '{name}' raised an error: {exc}") from exc
