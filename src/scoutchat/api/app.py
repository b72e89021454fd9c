"""
HTTP API for scoutchat.

It exposes the following endpoints:
- **GET /health**  - liveness probe for health checks.
- **POST /sessions** - create a new session, returns a session ID.
- **GET /sessions** - list all active sessions.
- **POST /agent**   - multi-turn interaction: {"message": "...", "session_id": "..."}
- **DELETE /sessions/{session_id}** - clear a session's conversation.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import (
    AsyncIterator,
    Dict,
    List,
    Optional,
)

from fastapi import (
    FastAPI,
    HTTPException,
)

from scoutchat.agent.agent_loop import ConversationLoop
from scoutchat.agent.model_interface import (
    BaseChatModel,
    load_model,
)
from scoutchat.agent.session import Session
from scoutchat.agent.sinks import RecordingSink
from scoutchat.api.models import (
    ClearResponse,
    MessageRequest,
    MessageResponse,
    SessionResponse,
)
from scoutchat.common import (
    AnsiColors,
    colored_print,
)
from scoutchat.config import (
    Settings,
    settings as default_settings,
)

logger = logging.getLogger(__name__)


class SessionStore:
    """In-memory sessions, each with its own loop, sink and lock."""

    def __init__(self, cfg: Settings, model: Optional[BaseChatModel] = None) -> None:
        self.settings = cfg
        self.model = model
        self.loops: Dict[str, ConversationLoop] = {}
        self.locks: Dict[str, asyncio.Lock] = {}

    def create(self) -> str:
        model = self.model or load_model(cfg=self.settings)
        session = Session(settings=self.settings, model=model, sink=RecordingSink())
        session_id = str(uuid.uuid4())
        self.loops[session_id] = ConversationLoop(session)
        self.locks[session_id] = asyncio.Lock()
        logger.info("Created session %s", session_id)
        return session_id

    def get_or_create(self, session_id: Optional[str] = None) -> str:
        """Get existing session or create a new one."""
        if session_id and session_id in self.loops:
            return session_id
        return self.create()

    async def close_all(self) -> None:
        for loop in self.loops.values():
            await loop.session.aclose()
        self.loops.clear()
        self.locks.clear()


def create_app(cfg: Optional[Settings] = None, model: Optional[BaseChatModel] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Parameters
    ----------
    cfg:
        Settings for every session created by this app (module settings by default).
    model:
        A chat model shared by all sessions; one is loaded per session when omitted.
    """
    cfg = cfg or default_settings
    store = SessionStore(cfg, model)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await store.close_all()

    app = FastAPI(
        title="scoutchat API",
        version="0.1.0",
        description="Tool-using research chat agent",
        lifespan=lifespan,
    )
    app.state.sessions = store

    # ---------------------------------------------------------------------------
    # Routes
    # ---------------------------------------------------------------------------
    @app.get("/health", summary="Health check")
    async def health() -> dict[str, str]:
        """Return a simple liveness payload."""
        return {"status": "ok"}

    @app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
    async def create_session() -> SessionResponse:
        """Create a new conversation session."""
        try:
            session_id = store.create()
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to create session: %s", exc)
            raise HTTPException(status_code=500, detail=f"Could not create session: {exc}") from exc
        return SessionResponse(session_id=session_id)

    @app.get("/sessions", response_model=List[str], summary="List active sessions")
    async def list_sessions() -> List[str]:
        """List all active session IDs."""
        return list(store.loops.keys())

    @app.post("/agent", response_model=MessageResponse, summary="Process a message")
    async def agent_endpoint(req: MessageRequest) -> MessageResponse:
        """Process a user message with optional session context."""
        try:
            session_id = store.get_or_create(req.session_id)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to create session: %s", exc)
            raise HTTPException(status_code=500, detail=f"Could not create session: {exc}") from exc

        loop = store.loops[session_id]
        sink = loop.session.sink
        async with store.locks[session_id]:
            if isinstance(sink, RecordingSink):
                sink.reset()
            reply = await loop.run_turn(req.message)
            narration = list(sink.narration) if isinstance(sink, RecordingSink) else []
            plan = sink.last_plan if isinstance(sink, RecordingSink) else []

        logger.debug("Session %s reply: %s", session_id, reply)
        return MessageResponse(reply=reply, narration=narration, plan=plan, session_id=session_id)

    @app.delete("/sessions/{session_id}", response_model=ClearResponse, summary="Clear a session")
    async def clear_session(session_id: str) -> ClearResponse:
        """Forget a session's conversation history."""
        loop = store.loops.get(session_id)
        if loop is None:
            raise HTTPException(status_code=404, detail=f"Unknown session '{session_id}'")
        async with store.locks[session_id]:
            loop.clear()
        return ClearResponse(session_id=session_id)

    return app


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting the app.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = default_settings.LOG_LEVEL

    logger.info(
        "Starting scoutchat API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"🔭 scoutchat API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "scoutchat.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m scoutchat.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
