"""Model gateway: one call interface to Ollama with retry and failure classification.

Every call streams (see ``consume_stream``) so the HTTP read timeout resets
per chunk. Rate-limit, server-error and network failures are retried with
exponential backoff; anything else surfaces immediately.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import httpx
import ollama

from storyspec.services.image_service import ImageBlock
from storyspec.settings import Settings
from storyspec.utils.exceptions import LLMConnectionError, LLMGenerationError, summarize_llm_error
from storyspec.utils.streaming import consume_stream

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUSES = frozenset({429})
SERVER_ERROR_STATUSES = frozenset({500, 502, 503, 504})

# Module-level cache for Ollama clients (keyed by (url, timeout))
_ollama_clients: dict[tuple[str, float], ollama.Client] = {}
_ollama_clients_lock = threading.Lock()


class FailureKind(StrEnum):
    """How a failed model call should be treated."""

    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    NETWORK = "network"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self is not FailureKind.FATAL


def classify_failure(error: BaseException) -> FailureKind:
    """Classify an exception raised by a model call.

    Args:
        error: Exception from the Ollama client or the stream consumer.

    Returns:
        RATE_LIMIT or SERVER for retryable HTTP statuses, NETWORK for
        connection resets, timeouts and unresolved hosts, FATAL otherwise.
    """
    if isinstance(error, ollama.ResponseError):
        status = getattr(error, "status_code", None)
        if status in RATE_LIMIT_STATUSES:
            return FailureKind.RATE_LIMIT
        if status in SERVER_ERROR_STATUSES:
            return FailureKind.SERVER
        return FailureKind.FATAL
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in RATE_LIMIT_STATUSES:
            return FailureKind.RATE_LIMIT
        if status in SERVER_ERROR_STATUSES:
            return FailureKind.SERVER
        return FailureKind.FATAL
    if isinstance(error, (ConnectionError, TimeoutError, httpx.TransportError)):
        return FailureKind.NETWORK
    return FailureKind.FATAL


@dataclass
class ModelResponse:
    """Text and accounting for one completed model call."""

    text: str
    stop_reason: str | None
    input_tokens: int
    output_tokens: int
    model: str


@dataclass
class UsageTotals:
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, response: ModelResponse) -> None:
        self.calls += 1
        self.input_tokens += response.input_tokens
        self.output_tokens += response.output_tokens


def get_ollama_client(settings: Settings) -> ollama.Client:
    """Get or create a cached Ollama client for the configured URL and timeout.

    Thread-safe via double-checked locking.
    """
    timeout = float(settings.ollama_timeout)
    cache_key = (settings.ollama_url, timeout)

    if cache_key not in _ollama_clients:
        with _ollama_clients_lock:
            if cache_key not in _ollama_clients:
                _ollama_clients[cache_key] = ollama.Client(host=settings.ollama_url, timeout=timeout)
                logger.debug("Created Ollama client for %s (timeout=%.0fs)", settings.ollama_url, timeout)

    return _ollama_clients[cache_key]


def backoff_delay(settings: Settings, attempt: int) -> float:
    """Exponential backoff for a zero-based attempt, capped at retry_max_delay."""
    return min(settings.retry_base_delay * 2**attempt, settings.retry_max_delay)


class ModelGateway:
    """Uniform ``send`` over the Ollama chat API.

    Usage:
        gateway = ModelGateway(settings)
        response = gateway.send(system_prompt, user_prompt, role="judge", json_mode=True)
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.usage = UsageTotals()

    def _build_messages(
        self, system_instructions: str, user_content: str, images: list[ImageBlock] | None
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if system_instructions:
            messages.append({"role": "system", "content": system_instructions})
        user_message: dict[str, Any] = {"role": "user", "content": user_content}
        if images:
            user_message["images"] = [image.data_b64 for image in images]
        messages.append(user_message)
        return messages

    def send(
        self,
        system_instructions: str,
        user_content: str,
        model_override: str | None = None,
        images: list[ImageBlock] | None = None,
        role: str | None = None,
        json_mode: bool = False,
    ) -> ModelResponse:
        """Send one request and return the completed response.

        Args:
            system_instructions: System prompt (may be empty).
            user_content: User message text.
            model_override: Model to use instead of the role/default model.
            images: Optional image attachments for the user message.
            role: Pipeline role; selects the model and temperature.
            json_mode: Ask Ollama to constrain output to JSON.

        Returns:
            ModelResponse with text, stop reason and token counts.

        Raises:
            LLMConnectionError: A retryable failure persisted through every attempt.
            LLMGenerationError: The model rejected the request (not retried).
        """
        role = role or "generator"
        model = self.settings.get_model_for_role(role, model_override)
        options = {
            "temperature": self.settings.get_temperature_for_role(role),
            "num_ctx": self.settings.context_size,
        }
        messages = self._build_messages(system_instructions, user_content, images)
        client = get_ollama_client(self.settings)
        attempts = max(1, self.settings.max_retries)

        last_error: Exception | None = None
        last_status: int | None = None
        for attempt in range(attempts):
            try:
                start_time = time.time()
                stream = client.chat(
                    model=model,
                    messages=messages,
                    format="json" if json_mode else None,
                    options=options,
                    stream=True,
                )
                result = consume_stream(
                    stream,
                    inter_chunk_timeout=self.settings.stream_inter_chunk_timeout,
                    wall_clock_timeout=self.settings.stream_wall_clock_timeout,
                )
                response = ModelResponse(
                    text=result.content,
                    stop_reason=result.done_reason,
                    input_tokens=result.prompt_eval_count or 0,
                    output_tokens=result.eval_count or 0,
                    model=model,
                )
                self.usage.add(response)
                logger.info(
                    "LLM call complete: model=%s, role=%s, %.2fs, tokens: %d+%d, stop=%s",
                    model,
                    role,
                    time.time() - start_time,
                    response.input_tokens,
                    response.output_tokens,
                    response.stop_reason,
                )
                return response

            except (
                ollama.ResponseError,
                httpx.HTTPStatusError,
                ConnectionError,
                TimeoutError,
                httpx.TransportError,
            ) as e:
                kind = classify_failure(e)
                if not kind.retryable:
                    status = getattr(e, "status_code", None)
                    logger.error("Non-retryable model error (%s): %s", role, summarize_llm_error(e))
                    raise LLMGenerationError(
                        f"Model call failed for role {role}: {summarize_llm_error(e)}",
                        status_code=status,
                    ) from e

                last_error = e
                last_status = getattr(e, "status_code", last_status)
                logger.warning(
                    "Retryable model error [%s] (attempt %d/%d): %s",
                    kind,
                    attempt + 1,
                    attempts,
                    summarize_llm_error(e),
                )
                if attempt < attempts - 1:
                    delay = backoff_delay(self.settings, attempt)
                    logger.debug("Backing off %.1fs before retry", delay)
                    time.sleep(delay)

        logger.error("Model call failed after %d attempts (role=%s)", attempts, role)
        raise LLMConnectionError(
            f"Model call failed after {attempts} attempts: {summarize_llm_error(last_error)}"
            if last_error
            else f"Model call failed after {attempts} attempts",
            attempts=attempts,
            last_status=last_status,
        ) from last_error
