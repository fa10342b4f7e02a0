"""
Core logic: error taxonomy and the generate-endpoint transport.

Every adapter talks to its backend through these helpers so that network,
HTTP and empty-body failures surface as the same exception types.
"""

import contextlib
import inspect
import json
import logging
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional, Union

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log,
)

from edugenie.config import DEFAULT_TIMEOUT_SECONDS, ERROR_EXCERPT_CHARS

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], Union[None, Awaitable[None]]]


# ─────────────────────────────────────────────────────────────────────
# ERRORS
# ─────────────────────────────────────────────────────────────────────

class EduGenieError(Exception):
    """Base class for every error this package raises on purpose."""
    pass


class BackendError(EduGenieError):
    """A backend could not produce a usable response."""
    pass


class BackendUnreachable(BackendError):
    """Network or connection failure before a response arrived."""
    pass


class BackendNotConfigured(BackendError):
    """Required credentials or settings for a backend are missing."""
    pass


class BackendEmptyResponse(BackendError):
    """The backend answered successfully but carried no generated text."""
    pass


class BackendHTTPError(BackendError):
    """Non-success HTTP status from a backend."""

    def __init__(self, status_code: int, body_excerpt: str, message: Optional[str] = None):
        self.status_code = status_code
        self.body_excerpt = body_excerpt
        super().__init__(message or f"Backend returned HTTP {status_code}: {body_excerpt}")


class ModelNotFound(BackendHTTPError):
    """The backend does not have the requested model installed."""

    def __init__(self, model_id: str, hint: str = "", body_excerpt: str = ""):
        self.model_id = model_id
        self.hint = hint
        message = f'Model "{model_id}" not found.'
        if hint:
            message = f"{message} {hint}"
        super().__init__(404, body_excerpt, message)


class GenerationError(EduGenieError):
    """Model output did not contain recoverable structured data."""
    pass


class UnparsableResponse(GenerationError):
    pass


class UnexpectedResponseShape(GenerationError):
    pass


class EmptyResultSet(GenerationError):
    pass


def excerpt(text: str, limit: int = ERROR_EXCERPT_CHARS) -> str:
    """Truncate text for error messages and logs."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def parse_backend_error(body: str) -> str:
    """Extract a user-friendly error message from an error response body."""
    try:
        data = json.loads(body)
    except ValueError:
        return excerpt(body)
    # Ollama returns {"error": "..."}; OpenAI-style servers nest a message
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, str) and error:
            return excerpt(error)
        if isinstance(error, dict) and error.get("message"):
            return excerpt(str(error["message"]))
    return excerpt(body)


# ─────────────────────────────────────────────────────────────────────
# TRANSPORT
# ─────────────────────────────────────────────────────────────────────

async def emit_token(on_token: TokenCallback, token: str) -> None:
    """Hand a token to a sync or async callback."""
    result = on_token(token)
    if inspect.isawaitable(result):
        await result


def _raise_for_status(status_code: int, body: str) -> None:
    if status_code >= 400:
        raise BackendHTTPError(status_code, parse_backend_error(body))


async def post_json(
    endpoint: str,
    payload: dict[str, Any],
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """
    POST a JSON body and return the response once the status is known good.

    Raises:
        BackendUnreachable: connection or timeout failure
        BackendHTTPError: status >= 400
    """
    try:
        async with httpx.AsyncClient(timeout=timeout_seconds, transport=transport) as client:
            response = await client.post(endpoint, json=payload)
    except httpx.TransportError as e:
        raise BackendUnreachable(f"Failed to reach {endpoint}: {e}") from e

    _raise_for_status(response.status_code, response.text)
    return response


async def stream_generate(
    endpoint: str,
    payload: dict[str, Any],
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncGenerator[str, None]:
    """
    Stream newline-delimited JSON from a generate endpoint.

    Yields each non-empty "response" fragment in the order it arrived.
    Lines split across network chunks are reassembled before decoding;
    malformed lines are logged and skipped.
    """
    body = {**payload, "stream": True}
    try:
        async with httpx.AsyncClient(timeout=timeout_seconds, transport=transport) as client:
            async with client.stream("POST", endpoint, json=body) as response:
                if response.status_code >= 400:
                    error_body = await response.aread()
                    _raise_for_status(
                        response.status_code, error_body.decode(errors="replace")
                    )

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning("Skipping malformed stream line: %s", excerpt(line))
                        continue
                    if not isinstance(chunk, dict):
                        logger.warning("Skipping non-object stream line: %s", excerpt(line))
                        continue

                    if chunk.get("error"):
                        raise BackendError(f"Backend error mid-stream: {chunk['error']}")

                    fragment = chunk.get("response")
                    if fragment:
                        yield str(fragment)

                    if chunk.get("done"):
                        break
    except httpx.TransportError as e:
        raise BackendUnreachable(f"Failed to reach {endpoint}: {e}") from e


async def call_generate(
    endpoint: str,
    payload: dict[str, Any],
    stream: bool = False,
    on_token: Optional[TokenCallback] = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """
    Run one generate call and return the full text.

    Non-streaming: decodes a single JSON envelope and returns its "response".
    Streaming: passes every fragment to on_token as soon as it is decoded
    and returns the concatenation once the stream reports done or closes.

    Raises:
        BackendUnreachable, BackendHTTPError, BackendEmptyResponse
    """
    if stream:
        parts = []
        # Close the HTTP stream now if on_token raises, not at garbage collection
        async with contextlib.aclosing(
            stream_generate(endpoint, payload, timeout_seconds=timeout_seconds, transport=transport)
        ) as fragments:
            async for fragment in fragments:
                parts.append(fragment)
                if on_token is not None:
                    await emit_token(on_token, fragment)
        return "".join(parts)

    response = await post_json(
        endpoint,
        {**payload, "stream": False},
        timeout_seconds=timeout_seconds,
        transport=transport,
    )
    try:
        data = response.json()
    except ValueError as e:
        raise BackendEmptyResponse(
            f"Backend returned a non-JSON body: {excerpt(response.text)}"
        ) from e

    text = data.get("response") if isinstance(data, dict) else None
    if not text:
        raise BackendEmptyResponse("Backend returned an empty response")
    return str(text)


# ─────────────────────────────────────────────────────────────────────
# RETRY
# ─────────────────────────────────────────────────────────────────────

def backend_retry(
    attempts: int,
    min_wait: float,
    max_wait: float,
    allow: Optional[Callable[[], bool]] = None,
):
    """
    Build a tenacity decorator that retries BackendUnreachable.

    Only connection-level failures are retried; HTTP errors and bad output
    are not transient in a way a retry would fix. The optional allow()
    callable can veto a retry, e.g. once streamed tokens were delivered.
    """
    def is_retryable(exception: BaseException) -> bool:
        if not isinstance(exception, BackendUnreachable):
            return False
        return allow is None or allow()

    return retry(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
