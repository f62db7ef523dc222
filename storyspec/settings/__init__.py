"""Settings package for StorySpec.

- _paths.py: Path constants for the settings file and run output
- _types.py: Model roles and closed value sets used by validation
- _validation.py: Per-category validation functions
- _settings.py: Main Settings dataclass
"""

from storyspec.settings._paths import OUTPUT_DIR, RUNS_DIR, SETTINGS_FILE
from storyspec.settings._settings import Settings
from storyspec.settings._types import (
    AUTO_FIX_TYPES,
    ENTITY_KINDS,
    MODEL_ROLES,
    PRODUCT_TYPES,
    ModelRoleInfo,
)

__all__ = [
    "AUTO_FIX_TYPES",
    "ENTITY_KINDS",
    "MODEL_ROLES",
    "OUTPUT_DIR",
    "PRODUCT_TYPES",
    "RUNS_DIR",
    "SETTINGS_FILE",
    "ModelRoleInfo",
    "Settings",
]
