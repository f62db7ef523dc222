"""Centralized exception hierarchy for StorySpec.

Exception Hierarchy:

    StorySpecError (base for all application errors)
    ├── LLMError (model gateway related errors)
    │   ├── LLMConnectionError (retryable failures that exhausted all attempts)
    │   ├── LLMGenerationError (non-retryable model failures)
    │   └── RefusalError (model output that reads as a refusal)
    ├── ValidationError (validation failures)
    │   └── ResponseValidationError (model response validation)
    ├── ConfigError (configuration parsing/validation failures)
    ├── DiscoveryError (system discovery failed, pipeline cannot continue)
    ├── ImageSupplyError (image reference could not be loaded)
    ├── PromptTemplateError (prompt template loading/rendering failures)
    └── JSONParseError (JSON parsing failures)

Patch rejections, merge ambiguity and low quality scores are reported as
metrics and flags, never raised.

Usage:
    from storyspec.utils.exceptions import LLMError, LLMConnectionError

    try:
        gateway.send(system, user)
    except LLMConnectionError:
        logger.error("Model unreachable after retries")
    except LLMError:
        logger.error("Model call failed")
"""

import logging

logger = logging.getLogger(__name__)


def summarize_llm_error(error: Exception, max_length: int = 300) -> str:
    """Create a concise summary of a model-related exception for logging.

    Ollama response errors can embed the whole rejected request body in
    their message; this keeps log lines readable.

    Args:
        error: The exception to summarize.
        max_length: Maximum length of the summary string.

    Returns:
        A concise error summary suitable for log messages.
    """
    msg = str(error)
    if len(msg) <= max_length:
        return msg

    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        head = msg[: max_length // 2]
        return f"{type(error).__name__} (status {status_code}): {head}..."

    return f"{msg[:max_length]}... [{len(msg) - max_length} chars truncated]"


class StorySpecError(Exception):
    """Base exception for all StorySpec errors."""

    pass


class LLMError(StorySpecError):
    """Base exception for model gateway errors."""

    pass


class LLMConnectionError(LLMError):
    """Raised when the model cannot be reached after all retries.

    Covers rate limiting, server-side failures and network-level errors
    once the retry budget is spent.
    """

    def __init__(self, message: str, attempts: int = 0, last_status: int | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_status = last_status


class LLMGenerationError(LLMError):
    """Raised when the model rejects a request with a non-retryable error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RefusalError(LLMError):
    """Raised when model output looks like a refusal instead of content.

    Detection is heuristic (short output containing a known refusal phrase),
    so this is never treated as a security boundary.
    """

    def __init__(self, message: str, response_preview: str | None = None, step: str = ""):
        super().__init__(message)
        self.response_preview = response_preview
        self.step = step


class ValidationError(StorySpecError):
    """Raised when validation fails."""

    pass


class ResponseValidationError(ValidationError):
    """Raised when a model response does not match its expected schema."""

    pass


class ConfigError(StorySpecError):
    """Raised when configuration or run input is invalid."""

    pass


class DiscoveryError(StorySpecError):
    """Raised when system discovery fails.

    Nothing downstream can run without a shared model, so this is the one
    stage failure that aborts a pipeline run.
    """

    pass


class ImageSupplyError(StorySpecError):
    """Raised when an image reference cannot be resolved to an image block.

    Attributes:
        reference: The path, URL or encoded reference that failed.
    """

    def __init__(self, message: str, reference: str = ""):
        super().__init__(message)
        self.reference = reference


class PromptTemplateError(StorySpecError):
    """Raised for prompt template loading or rendering failures."""

    pass


class JSONParseError(StorySpecError):
    """Raised when JSON parsing fails.

    Attributes:
        response_preview: First characters of the response that failed to parse.
        expected_type: The type that was expected (dict, list, model name).
    """

    def __init__(
        self,
        message: str,
        response_preview: str | None = None,
        expected_type: str | None = None,
    ):
        super().__init__(message)
        self.response_preview = response_preview
        self.expected_type = expected_type
