"""Main Settings dataclass for StorySpec.

Settings are stored in settings.json next to the package and merged with
defaults on every load, so new fields appear automatically and removed
ones are cleaned up.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, ClassVar

from storyspec.settings import _validation as _validation_mod
from storyspec.settings._paths import RUNS_DIR, SETTINGS_FILE
from storyspec.settings._types import AUTO_FIX_TYPES, DEFAULT_REFUSAL_PHRASES, MODEL_ROLES

logger = logging.getLogger(__name__)

# Dict fields whose sub-keys are the model roles; merged key by key on load.
_ROLE_DICT_FIELDS = ("role_models", "role_temperatures")


def _merge_with_defaults(data: dict[str, Any], settings_cls: type[Settings]) -> bool:
    """Merge loaded JSON data with dataclass defaults, in place.

    - Adds missing top-level keys with their default values
    - Removes top-level keys that no longer exist in the dataclass
    - For role-keyed dicts, adds missing roles and drops unknown ones

    Returns:
        True if any changes were made, False otherwise.
    """
    default_dict = asdict(settings_cls())
    known_fields = {f.name for f in fields(settings_cls)}
    changed = False

    for key in list(data):
        if key not in known_fields:
            logger.info("Removing obsolete setting: %s", key)
            del data[key]
            changed = True

    for key in sorted(known_fields):
        if key not in data:
            logger.info("Adding new setting with default: %s", key)
            data[key] = default_dict[key]
            changed = True

    for field_name in _ROLE_DICT_FIELDS:
        default_sub = default_dict[field_name]
        current_sub = data[field_name]
        if not isinstance(current_sub, dict):
            logger.warning(
                "Resetting %s to default (expected dict, got %s)",
                field_name,
                type(current_sub).__name__,
            )
            data[field_name] = default_sub
            changed = True
            continue
        for role in list(current_sub):
            if role not in default_sub:
                logger.info("Removing obsolete %s[%s]", field_name, role)
                del current_sub[role]
                changed = True
        for role, value in default_sub.items():
            if role not in current_sub:
                logger.info("Adding new %s[%s] = %r", field_name, role, value)
                current_sub[role] = value
                changed = True

    return changed


def _atomic_write_json(path: Path | str, data: dict[str, Any]) -> None:
    """Write JSON to *path* via a temp file and rename."""
    path = Path(path)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError as cleanup_err:
            logger.warning("Failed to remove temp settings file %s: %s", tmp_path, cleanup_err)
        raise


@dataclass
class Settings:
    """Application settings, stored as JSON."""

    # Ollama connection
    ollama_url: str = "http://localhost:11434"
    ollama_timeout: int = 180  # Per-call timeout in seconds, not per-run
    context_size: int = 32768
    log_level: str = "INFO"

    # Models: an empty role entry falls back to default_model
    default_model: str = "qwen3:14b"
    role_models: dict[str, str] = field(default_factory=lambda: dict.fromkeys(MODEL_ROLES, ""))
    role_temperatures: dict[str, float] = field(
        default_factory=lambda: {
            "discovery": 0.2,
            "generator": 0.7,
            "advisor": 0.4,
            "judge": 0.1,  # Low temp keeps scores reproducible
            "rewriter": 0.5,
            "interconnection": 0.2,
            "consistency": 0.1,
        }
    )

    # Gateway retry policy
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    stream_inter_chunk_timeout: int = 120
    stream_wall_clock_timeout: int = 600

    # Refinement loop
    max_refinement_rounds: int = 3
    relationship_confidence_threshold: float = 0.75

    # Quality gate (scores are 0-5)
    quality_pass_threshold: float = 3.5
    max_rewrites: int = 1

    # Global consistency auto-fix
    auto_fix_confidence_threshold: float = 0.8  # Strictly greater than
    auto_fix_types: list[str] = field(default_factory=lambda: list(AUTO_FIX_TYPES))

    # Discovery classification order for names mentioned under several kinds
    classification_preference: list[str] = field(
        default_factory=lambda: ["component", "stateModel", "event"]
    )

    # Refusal heuristic: short output containing one of these phrases
    refusal_max_length: int = 400
    refusal_phrases: list[str] = field(default_factory=lambda: list(DEFAULT_REFUSAL_PHRASES))

    # Advisor passes applied after generation, in this order
    advisor_ids: list[str] = field(
        default_factory=lambda: ["validation", "accessibility", "security"]
    )
    product_type: str = "web"

    # Locations ("" means the bundled/default location)
    prompt_templates_dir: str = ""
    output_dir: str = ""

    # Bounded event history kept by the pipeline orchestrator
    workflow_max_events: int = 500

    _cached_instance: ClassVar[Settings | None] = None

    def save(self) -> None:
        """Validate and save settings to the JSON file."""
        self.validate()
        _atomic_write_json(SETTINGS_FILE, asdict(self))

    def validate(self) -> bool:
        """Validate all settings fields. Delegates to the _validation module.

        Returns:
            True if any settings were normalized during validation, False otherwise.

        Raises:
            ValueError: If any field contains an invalid value.
        """
        return _validation_mod.validate(self)

    @classmethod
    def load(cls, use_cache: bool = True) -> Settings:
        """Load settings from JSON file, or create defaults.

        Args:
            use_cache: If True, return the cached instance when available.

        Returns:
            Settings instance.

        Raises:
            ValueError: If a stored value has the wrong type or is out of range.
        """
        if use_cache and cls._cached_instance is not None:
            return cls._cached_instance

        data: dict[str, Any] = {}
        loaded_from_file = False
        if SETTINGS_FILE.exists():
            try:
                with open(SETTINGS_FILE) as f:
                    raw = json.load(f)
                if isinstance(raw, dict):
                    data = raw
                    loaded_from_file = bool(raw)
                else:
                    logger.error(
                        "Corrupted settings file (expected JSON object, got %s)",
                        type(raw).__name__,
                    )
                    cls._backup_corrupt_file()
            except json.JSONDecodeError as e:
                logger.error("Corrupted settings file (invalid JSON): %s", e)
                cls._backup_corrupt_file()
            except OSError as e:
                logger.error("Cannot read settings file: %s", e)

        changed = _merge_with_defaults(data, cls)
        try:
            settings = cls(**data)
            changed = settings.validate() or changed
        except TypeError as e:
            raise ValueError(f"A setting has an invalid type: {e}") from e

        if changed or not loaded_from_file:
            try:
                _atomic_write_json(SETTINGS_FILE, asdict(settings))
                logger.info("Settings written to %s", SETTINGS_FILE)
            except OSError as write_err:
                logger.warning("Could not persist settings to disk: %s", write_err)

        logger.info("Settings load: loaded_from_file=%s, changed=%s", loaded_from_file, changed)
        cls._cached_instance = settings
        return settings

    @staticmethod
    def _backup_corrupt_file() -> None:
        backup_path = SETTINGS_FILE.with_suffix(".json.corrupt")
        try:
            shutil.copy(SETTINGS_FILE, backup_path)
            logger.info("Backed up corrupted settings to %s", backup_path)
        except OSError as copy_err:
            logger.warning("Failed to backup corrupted settings: %s", copy_err)

    @classmethod
    def clear_cache(cls) -> None:
        """Clear the cached settings instance.

        Tests call this so each one sees settings loaded from its own file.
        """
        cls._cached_instance = None

    def get_model_for_role(self, role: str, override: str | None = None) -> str:
        """Resolve the model for a pipeline role.

        Args:
            role: One of the MODEL_ROLES keys.
            override: Model that wins over every configured value when given.

        Raises:
            ValueError: If role is unknown.
        """
        if role not in self.role_models:
            raise ValueError(f"Unknown model role '{role}' - must be one of: {sorted(MODEL_ROLES)}")
        if override:
            return override
        return self.role_models[role] or self.default_model

    def get_temperature_for_role(self, role: str) -> float:
        """Get temperature for a pipeline role.

        Raises:
            ValueError: If role is not configured in role_temperatures.
        """
        if role not in self.role_temperatures:
            raise ValueError(
                f"Unknown model role '{role}' - must be one of: {sorted(self.role_temperatures)}"
            )
        return float(self.role_temperatures[role])

    def get_output_dir(self) -> Path:
        """Directory run artifacts are written under."""
        return Path(self.output_dir) if self.output_dir else RUNS_DIR
