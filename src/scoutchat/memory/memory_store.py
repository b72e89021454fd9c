"""Conversation memory (remembered turns and topic) + lightweight JSON log."""

import json
import logging
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from scoutchat.core.schema import AgentTurn

logger = logging.getLogger(__name__)


class RememberedTurn(BaseModel):
    """One finished exchange."""

    user_query: str
    answer: str = ""
    facts: Dict[str, Any] = Field(default_factory=dict)


class ConversationMemory:
    """Per-session memory of previous turns, used for context-aware search terms."""

    def __init__(self) -> None:
        self.turns: List[RememberedTurn] = []

    def add_turn(self, user_query: str, answer: str, facts: Optional[Dict[str, Any]] = None) -> None:
        self.turns.append(RememberedTurn(user_query=user_query, answer=answer, facts=facts or {}))

    @staticmethod
    def extract_topic(query: str) -> str:
        """Naive topic: the last word of the query."""
        words = query.split()
        return words[-1] if words else ""

    def last_topic(self) -> str:
        """Topic of the most recent turn (explicit ``facts["topic"]`` wins)."""
        if not self.turns:
            return ""
        last = self.turns[-1]
        return str(last.facts.get("topic") or self.extract_topic(last.user_query))

    def summary(self) -> str:
        return "\n".join(f"Q: {t.user_query}\nA: {t.answer}" for t in self.turns)

    def clear(self) -> None:
        self.turns.clear()


def save_turn(turn: AgentTurn, assistant_reply: str, path: str | Path | None) -> None:
    """
    Append an AgentTurn to the flat-file audit trail (JSON lines format).

    Does nothing when *path* is empty.
    """
    if not path:
        return
    log_path = Path(path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as f:
        f.write(
            json.dumps({"turn": turn.model_dump(mode="json"), "reply": assistant_reply}) + "\n"
        )
    logger.debug("Saved turn to %s", log_path)
