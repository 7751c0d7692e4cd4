"""Agent proxy — FastAPI app speaking the OpenAI chat-completions protocol.

Exposes /v1/chat/completions (and /chat/completions) as JSON or SSE, backed
by Vertex AI Gemini, plus /health. The supervisor starts this app in a
detached process through ``agent-proxy serve``.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from agent_proxy import __version__
from agent_proxy.config import AgentConfig, load_config
from agent_proxy.errors import PromptError, classify_error, status_for_kind
from agent_proxy.orchestrator import Orchestrator
from agent_proxy.prompts.preprocessor import preprocess_request
from agent_proxy.runtime import (
    InvalidRequestError,
    log_backend_failure,
    stream_completion,
    validate_chat_request,
)
from agent_proxy.schemas import ErrorEnvelope, HealthConfig, HealthResponse

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Cache-Control",
    "X-Accel-Buffering": "no",
}

_REDACTED_HEADERS = {"authorization", "x-api-key", "cookie"}


def create_app(
    config: AgentConfig | None = None,
    orchestrator: Orchestrator | None = None,
) -> FastAPI:
    """Build the app. Config and orchestrator live on ``app.state``."""
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Agent proxy started (model={config.vertex_ai_model}, "
            f"project={config.vertex_ai_project}, location={config.vertex_ai_location}, "
            f"prompts={'enabled' if config.prompts_enabled else 'disabled'}, "
            f"debug={config.debug_mode})"
        )
        yield
        logger.info("Agent proxy shutting down")

    app = FastAPI(title="Agent Proxy", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.orchestrator = orchestrator or Orchestrator(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Request/response logging
    # -----------------------------------------------------------------------

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        if config.debug_mode:
            headers = {
                k: ("[REDACTED]" if k.lower() in _REDACTED_HEADERS else v)
                for k, v in request.headers.items()
            }
            logger.info(f"→ {request.method} {request.url.path} headers={headers}")
        else:
            logger.debug(f"{request.method} {request.url.path}")

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - start) * 1000
        level = logging.INFO if config.debug_mode else logging.DEBUG
        logger.log(
            level,
            f"← {request.method} {request.url.path} {response.status_code} ({elapsed_ms:.0f}ms)",
        )
        return response

    # -----------------------------------------------------------------------
    # Error handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code in (404, 405):
            logger.warning(f"Endpoint not found: {request.method} {request.url.path}")
            return JSONResponse(
                status_code=404,
                content={"error": f"Endpoint not found: {request.method} {request.url.path}"},
            )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception):
        logger.error(
            f"Internal server error on {request.method} {request.url.path}: {exc}",
            exc_info=config.debug_mode,
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    @app.get("/health")
    async def health() -> HealthResponse:
        """Liveness check."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            config=HealthConfig(
                model=config.vertex_ai_model,
                project=config.vertex_ai_project,
                location=config.vertex_ai_location,
            ),
        )

    @app.post("/v1/chat/completions")
    @app.post("/chat/completions")
    async def chat_completions(request: Request):
        """OpenAI-compatible chat completion, streamed as SSE when requested."""
        try:
            body = await request.json()
        except ValueError:
            body = None

        try:
            chat_request = validate_chat_request(body)
        except InvalidRequestError as e:
            logger.warning(f"Invalid chat completion request: {e}")
            return JSONResponse(status_code=400, content={"error": str(e)})

        logger.info(f"Chat completion request received (stream={bool(chat_request.stream)})")

        try:
            processed = await run_in_threadpool(preprocess_request, chat_request, config)
        except PromptError as e:
            logger.error(f"Prompt composition failed: {e}")
            envelope = ErrorEnvelope(
                message=str(e),
                type="invalid_request_error",
                code="prompt_composition_error",
            )
            return JSONResponse(status_code=400, content={"error": envelope.model_dump()})

        orchestrator: Orchestrator = request.app.state.orchestrator

        if chat_request.stream:
            return StreamingResponse(
                stream_completion(orchestrator, processed),
                media_type="text/event-stream",
                headers=SSE_HEADERS,
            )

        try:
            response = await orchestrator.complete(processed.request, processed.system_prompt)
        except Exception as e:
            log_backend_failure("Error in non-streaming response", e)
            envelope = classify_error(e)
            return JSONResponse(
                status_code=status_for_kind(envelope.type),
                content={"error": envelope.model_dump()},
            )

        logger.info("Non-streaming response completed successfully")
        return response

    return app


def serve(config: AgentConfig, host: str = DEFAULT_HOST) -> None:
    """Run the server in the foreground until terminated."""
    app = create_app(config)
    logger.info(f"Agent proxy listening on {host}:{config.proxy_port}")
    uvicorn.run(app, host=host, port=config.proxy_port, log_config=None)
