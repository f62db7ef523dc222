"""Streaming helpers for Ollama chat responses.

Every gateway call streams so the HTTP read timeout resets per chunk; long
generations would otherwise trip it. Two watchdogs bound a stalled stream.
"""

import logging
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import httpcore

logger = logging.getLogger(__name__)

_DEFAULT_INTER_CHUNK_TIMEOUT = 120
_DEFAULT_WALL_CLOCK_TIMEOUT = 600


class StreamTimeoutError(TimeoutError):
    """Raised when a streaming response stalls or runs past its wall-clock limit.

    Subclasses TimeoutError so the gateway treats it as a retryable network failure.
    """

    def __init__(self, message: str, *, partial_content_length: int = 0, timeout_type: str = ""):
        super().__init__(message)
        self.partial_content_length = partial_content_length
        self.timeout_type = timeout_type


@dataclass
class StreamResult:
    """Collected content and accounting from a finished stream."""

    content: str
    done_reason: str | None = None
    prompt_eval_count: int | None = None
    eval_count: int | None = None
    chunks: int = 0


def consume_stream(
    stream: Iterator[Any],
    *,
    inter_chunk_timeout: int | None = None,
    wall_clock_timeout: int | None = None,
) -> StreamResult:
    """Drain a ``client.chat(stream=True)`` iterator.

    Args:
        stream: Iterator of ChatResponse chunks.
        inter_chunk_timeout: Max seconds between chunks (default 120).
        wall_clock_timeout: Max seconds for the whole stream (default 600).

    Returns:
        StreamResult with joined content, done reason and token counts from the final chunk.

    Raises:
        StreamTimeoutError: If either watchdog fires.
        ConnectionError: If the transport drops mid-stream.
    """
    inter_chunk = inter_chunk_timeout or _DEFAULT_INTER_CHUNK_TIMEOUT
    wall_clock = wall_clock_timeout or _DEFAULT_WALL_CLOCK_TIMEOUT

    parts: list[str] = []
    result = StreamResult(content="")
    stalled = threading.Event()
    timer: threading.Timer | None = None

    def _rearm() -> None:
        nonlocal timer
        if timer is not None:
            timer.cancel()
        timer = threading.Timer(inter_chunk, stalled.set)
        timer.daemon = True
        timer.start()

    start = time.monotonic()
    _rearm()
    try:
        for chunk in stream:
            elapsed = time.monotonic() - start
            if elapsed > wall_clock:
                received = sum(len(p) for p in parts)
                logger.error(
                    "Stream wall-clock timeout after %.1fs (limit=%ds, partial=%d chars)",
                    elapsed,
                    wall_clock,
                    received,
                )
                raise StreamTimeoutError(
                    f"Stream exceeded wall-clock timeout of {wall_clock}s",
                    partial_content_length=received,
                    timeout_type="wall_clock",
                )
            if stalled.is_set():
                received = sum(len(p) for p in parts)
                logger.error("Stream stalled: no chunk for %ds (partial=%d chars)", inter_chunk, received)
                raise StreamTimeoutError(
                    f"No stream chunk received for {inter_chunk}s",
                    partial_content_length=received,
                    timeout_type="inter_chunk",
                )
            _rearm()

            result.chunks += 1
            message = getattr(chunk, "message", None)
            if message is not None and message.content:
                parts.append(message.content)
            if getattr(chunk, "done", False):
                result.done_reason = getattr(chunk, "done_reason", None)
                result.prompt_eval_count = getattr(chunk, "prompt_eval_count", None)
                result.eval_count = getattr(chunk, "eval_count", None)
    except (httpcore.RemoteProtocolError, httpcore.ReadError, httpcore.NetworkError) as e:
        logger.error("Ollama stream interrupted mid-response: %s", e)
        raise ConnectionError(f"Ollama stream interrupted: {e}") from e
    finally:
        if timer is not None:
            timer.cancel()

    result.content = "".join(parts)
    logger.debug(
        "Stream consumed: %d chunks, %d chars, %.2fs",
        result.chunks,
        len(result.content),
        time.monotonic() - start,
    )
    return result
