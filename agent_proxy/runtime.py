"""Runtime — bridges HTTP requests to prompt composition and the orchestrator.

Validates request bodies, runs preprocessing, and turns orchestrator output
into Server-Sent Events frames.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

from pydantic import ValidationError

from agent_proxy.errors import classify_error, is_authentication_error, stream_error_chunk
from agent_proxy.orchestrator import Orchestrator
from agent_proxy.prompts.preprocessor import ProcessedRequest
from agent_proxy.schemas import ChatCompletionRequest

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"


class InvalidRequestError(ValueError):
    """The request body does not describe a chat completion."""


def validate_chat_request(body: Any) -> ChatCompletionRequest:
    """Check the body shape and parse it.

    Raises InvalidRequestError with a client-facing message on failure.
    """
    if not isinstance(body, dict) or not isinstance(body.get("messages"), list):
        raise InvalidRequestError("Invalid request format. Missing required field: messages")
    if not body["messages"]:
        raise InvalidRequestError("Invalid request format. Messages array cannot be empty")

    try:
        return ChatCompletionRequest.model_validate(body)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidRequestError(f"Invalid request format. {details}") from e


def sse_frame(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


def log_backend_failure(label: str, error: Exception) -> None:
    envelope = classify_error(error)
    logger.error(
        f"{label}: {envelope.message} "
        f"(type={envelope.type}, code={envelope.code}, auth={is_authentication_error(error)})"
    )


async def stream_completion(
    orchestrator: Orchestrator, processed: ProcessedRequest
) -> AsyncGenerator[str, None]:
    """Yield SSE frames for one streamed completion.

    Ends with ``[DONE]`` on success. On failure one error frame is sent
    and the stream ends there; frames already sent are kept.
    """
    try:
        async for chunk in orchestrator.stream(processed.request, processed.system_prompt):
            yield sse_frame(chunk.wire())
    except Exception as e:
        log_backend_failure("Error in streaming response", e)
        yield sse_frame(stream_error_chunk(e))
        return

    yield DONE_FRAME
    logger.info("Streaming response completed successfully")
