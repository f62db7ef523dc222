"""Validation functions for Settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from storyspec.settings._types import (
    AUTO_FIX_TYPES,
    ENTITY_KINDS,
    LOG_LEVELS,
    MODEL_ROLES,
    PRODUCT_TYPES,
)

if TYPE_CHECKING:
    from storyspec.settings._settings import Settings

logger = logging.getLogger(__name__)


def validate(settings: Settings) -> bool:
    """Validate all settings fields.

    Returns:
        True if any settings were normalized during validation, False otherwise.

    Raises:
        ValueError: If any field contains an invalid value.
    """
    _validate_log_level(settings)
    _validate_url(settings)
    _validate_connection_limits(settings)
    _validate_role_dicts(settings)
    _validate_retry_policy(settings)
    _validate_refinement(settings)
    _validate_quality_gate(settings)
    _validate_auto_fix(settings)
    _validate_classification_preference(settings)
    changed = _validate_refusal_phrases(settings)
    _validate_product_type(settings)
    return changed


def _validate_log_level(settings: Settings) -> None:
    """Validate log_level is a known logging level."""
    if settings.log_level not in LOG_LEVELS:
        raise ValueError(
            f"log_level must be one of {list(LOG_LEVELS.keys())}, got {settings.log_level}"
        )


def _validate_url(settings: Settings) -> None:
    parsed = urlparse(settings.ollama_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Invalid ollama_url: {settings.ollama_url}")


def _validate_connection_limits(settings: Settings) -> None:
    if not 10 <= settings.ollama_timeout <= 3600:
        raise ValueError(
            f"ollama_timeout must be between 10 and 3600 seconds, got {settings.ollama_timeout}"
        )
    if not 1024 <= settings.context_size <= 1_048_576:
        raise ValueError(
            f"context_size must be between 1024 and 1048576, got {settings.context_size}"
        )
    if settings.stream_inter_chunk_timeout < 1:
        raise ValueError(
            f"stream_inter_chunk_timeout must be >= 1, got {settings.stream_inter_chunk_timeout}"
        )
    if settings.stream_wall_clock_timeout < settings.stream_inter_chunk_timeout:
        raise ValueError(
            "stream_wall_clock_timeout must be >= stream_inter_chunk_timeout "
            f"({settings.stream_wall_clock_timeout} < {settings.stream_inter_chunk_timeout})"
        )
    if settings.workflow_max_events < 1:
        raise ValueError(f"workflow_max_events must be >= 1, got {settings.workflow_max_events}")


def _validate_role_dicts(settings: Settings) -> None:
    """Role dicts must cover exactly the known roles with sane values."""
    if not settings.default_model:
        raise ValueError("default_model must not be empty")
    for field_name in ("role_models", "role_temperatures"):
        keys = set(getattr(settings, field_name))
        unknown = keys - set(MODEL_ROLES)
        if unknown:
            raise ValueError(f"Unknown roles in {field_name}: {sorted(unknown)}")
    for role, temp in settings.role_temperatures.items():
        if not 0.0 <= temp <= 2.0:
            raise ValueError(f"Temperature for {role} must be between 0.0 and 2.0, got {temp}")


def _validate_retry_policy(settings: Settings) -> None:
    if not 1 <= settings.max_retries <= 10:
        raise ValueError(f"max_retries must be between 1 and 10, got {settings.max_retries}")
    if settings.retry_base_delay < 0:
        raise ValueError(f"retry_base_delay must be >= 0, got {settings.retry_base_delay}")
    if settings.retry_max_delay < settings.retry_base_delay:
        raise ValueError(
            f"retry_max_delay ({settings.retry_max_delay}) must be >= "
            f"retry_base_delay ({settings.retry_base_delay})"
        )


def _validate_refinement(settings: Settings) -> None:
    if not 1 <= settings.max_refinement_rounds <= 10:
        raise ValueError(
            f"max_refinement_rounds must be between 1 and 10, got {settings.max_refinement_rounds}"
        )
    if not 0.0 <= settings.relationship_confidence_threshold <= 1.0:
        raise ValueError(
            "relationship_confidence_threshold must be between 0.0 and 1.0, "
            f"got {settings.relationship_confidence_threshold}"
        )


def _validate_quality_gate(settings: Settings) -> None:
    if not 0.0 <= settings.quality_pass_threshold <= 5.0:
        raise ValueError(
            f"quality_pass_threshold must be between 0.0 and 5.0, got {settings.quality_pass_threshold}"
        )
    # 0 disables rewriting; the default is 1.
    if not 0 <= settings.max_rewrites <= 3:
        raise ValueError(f"max_rewrites must be between 0 and 3, got {settings.max_rewrites}")


def _validate_auto_fix(settings: Settings) -> None:
    if not 0.0 <= settings.auto_fix_confidence_threshold <= 1.0:
        raise ValueError(
            "auto_fix_confidence_threshold must be between 0.0 and 1.0, "
            f"got {settings.auto_fix_confidence_threshold}"
        )
    unknown = set(settings.auto_fix_types) - set(AUTO_FIX_TYPES)
    if unknown:
        raise ValueError(
            f"auto_fix_types contains unsupported types {sorted(unknown)}; "
            f"allowed: {list(AUTO_FIX_TYPES)}"
        )


def _validate_classification_preference(settings: Settings) -> None:
    """Preference must be a permutation of the discoverable kinds."""
    if sorted(settings.classification_preference) != sorted(ENTITY_KINDS):
        raise ValueError(
            f"classification_preference must order exactly {list(ENTITY_KINDS)}, "
            f"got {settings.classification_preference}"
        )


def _validate_refusal_phrases(settings: Settings) -> bool:
    """Lower-case refusal phrases so matching is case-insensitive."""
    if settings.refusal_max_length < 0:
        raise ValueError(f"refusal_max_length must be >= 0, got {settings.refusal_max_length}")
    normalized = [p.strip().lower() for p in settings.refusal_phrases if p.strip()]
    if normalized != settings.refusal_phrases:
        logger.info("Normalized %d refusal phrases to lower case", len(normalized))
        settings.refusal_phrases = normalized
        return True
    return False


def _validate_product_type(settings: Settings) -> None:
    if settings.product_type not in PRODUCT_TYPES:
        raise ValueError(
            f"product_type must be one of {list(PRODUCT_TYPES)}, got {settings.product_type}"
        )
