"""Interactive terminal shell for scoutchat."""

import asyncio
import logging
from typing import Tuple

from scoutchat.agent.agent_loop import ConversationLoop
from scoutchat.agent.session import Session
from scoutchat.agent.sinks import ConsoleSink
from scoutchat.common import (
    AnsiColors,
    colored_print,
)
from scoutchat.config import (
    Settings,
    settings as default_settings,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    import signal  # pylint: disable=import-outside-toplevel

    # Ensure SIGINT breaks out of slow system calls such as read()
    signal.siginterrupt(signal.SIGINT, True)

    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


async def _shell(cfg: Settings) -> None:
    session = Session(settings=cfg, sink=ConsoleSink())
    loop = ConversationLoop(session)
    colored_print(
        "\n🔭 scoutchat shell - type '/clear' to reset, 'exit' or 'quit' (or Ctrl+C) to exit",
        AnsiColors.GREEN,
    )
    try:
        while True:
            colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
            user_msg, ok = get_user_message()
            if not ok:
                break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
            if user_msg.lower() in {"exit", "quit"}:
                break
            if not user_msg:
                continue
            if user_msg == "/clear":
                loop.clear()
                colored_print("Conversation cleared.", AnsiColors.GREY)
                continue

            reply = await loop.run_turn(user_msg)
            logger.debug("Turn reply: %s", reply)
    finally:
        await session.aclose()


def run_cli(cfg: Settings | None = None) -> None:
    """Run the interactive shell until the user quits."""
    asyncio.run(_shell(cfg or default_settings))


if __name__ == "__main__":
    run_cli()
