"""
Core API backend for mcpchat.

It exposes the following endpoints:
- **GET /health**     - liveness probe, reports whether the tool server is connected.
- **POST /api/chat**  - answer one question: {"message": "..."} -> {"response": "..."}
- **POST /api/model** - switch the completion provider: {"model": "lm_studio"}

The tool-server connection is opened in the application lifespan and closed when it ends.  Queries
share that connection, so they are serialized with a lock.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import (
    AsyncIterator,
    Optional,
)

from fastapi import (
    APIRouter,
    FastAPI,
    HTTPException,
    Request,
)
from fastapi.middleware.cors import CORSMiddleware

from mcpchat.api.models import (
    ChatRequest,
    ChatResponse,
    HealthResponse,
    ModelRequest,
    ModelResponse,
)
from mcpchat.common import (
    AnsiColors,
    colored_print,
)
from mcpchat.config import (
    Settings,
    settings,
)
from mcpchat.core.connection import Connection
from mcpchat.core.errors import (
    NotConnectedError,
    ProviderFaultError,
)
from mcpchat.core.orchestrator import Orchestrator
from mcpchat.core.providers import (
    BaseCompletionProvider,
    load_provider,
)
from mcpchat.transport import build_transport
from mcpchat.transport.base import ToolTransport

logger = logging.getLogger(__name__)

router = APIRouter()


class ChatService:
    """Per-application state: the connection, the active provider and the query lock."""

    def __init__(
        self,
        cfg: Settings,
        connection: Connection,
        provider: Optional[BaseCompletionProvider],
    ) -> None:
        self.cfg = cfg
        self.connection = connection
        self.provider = provider
        self.lock = asyncio.Lock()

    async def ask(self, message: str) -> str:
        async with self.lock:
            orchestrator = Orchestrator(
                self.connection, self.provider, max_iterations=self.cfg.MAX_ITERATIONS
            )
            return await orchestrator.process_query(message)


def _service(request: Request) -> ChatService:
    return request.app.state.chat


def _try_load_provider(cfg: Settings) -> Optional[BaseCompletionProvider]:
    try:
        return load_provider(cfg=cfg)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Failed to initialize provider '%s': %s", cfg.PROVIDER, exc)
        return None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(request: Request) -> HealthResponse:
    """Return a simple liveness payload."""
    service = _service(request)
    return HealthResponse(
        connected=service.connection.is_open,
        model=service.provider.name if service.provider else None,
    )


@router.post("/api/chat", response_model=ChatResponse, summary="Answer a question")
async def chat(req: ChatRequest, request: Request) -> ChatResponse:
    """Run the tool-calling loop for one user message."""
    service = _service(request)
    try:
        reply = await service.ask(req.message)
    except NotConnectedError as exc:
        logger.warning("Chat request while not connected: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ProviderFaultError as exc:
        logger.error("Error processing query: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to process query") from exc
    return ChatResponse(response=reply)


@router.post("/api/model", response_model=ModelResponse, summary="Switch provider")
async def switch_model(req: ModelRequest, request: Request) -> ModelResponse:
    """Replace the active completion provider."""
    service = _service(request)
    try:
        provider = load_provider(req.model, cfg=service.cfg)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Failed to initialize provider '%s': %s", req.model, exc)
        raise HTTPException(status_code=400, detail=f"Cannot use '{req.model}': {exc}") from exc

    async with service.lock:
        service.provider = provider
    logger.info("Switched to %s model", provider.name)
    return ModelResponse(model=provider.name)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(
    cfg: Settings | None = None,
    transport: ToolTransport | None = None,
    provider: BaseCompletionProvider | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    *transport* and *provider* default to the ones selected by *cfg*; tests pass fakes.
    """
    cfg = cfg or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        connection = Connection(transport or build_transport(cfg))
        app.state.chat = ChatService(cfg, connection, provider or _try_load_provider(cfg))
        try:
            await connection.open()
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to connect to tool server: %s", exc)
        try:
            yield
        finally:
            await connection.close()

    app = FastAPI(
        title="mcpchat API",
        version="0.1.0",
        description="Tool-calling LLM orchestrator API",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[f"http://localhost:{cfg.API_PORT}"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 3000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting the app built by :func:`create_app`.

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

    if log_level is None:
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting mcpchat API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"mcpchat API is running at http://localhost:{port}.", AnsiColors.GREEN)
    uvicorn.run(
        "mcpchat.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m mcpchat.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
