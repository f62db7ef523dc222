"""Role definitions and enumerations shared by Settings and its validation."""

import logging
from typing import TypedDict

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class ModelRoleInfo(TypedDict):
    """Description of a model-backed role in the pipeline."""

    name: str
    description: str


MODEL_ROLES: dict[str, ModelRoleInfo] = {
    "discovery": {
        "name": "Discovery",
        "description": "Extracts components, state models and events across all stories",
    },
    "generator": {
        "name": "Generator",
        "description": "Writes the structured story from a seed and the shared model",
    },
    "advisor": {
        "name": "Advisor",
        "description": "Proposes scoped patches for one concern (accessibility, security, ...)",
    },
    "judge": {
        "name": "Judge",
        "description": "Scores stories against the rubric and surfaces new relationships",
    },
    "rewriter": {
        "name": "Rewriter",
        "description": "Rewrites a low-scoring story to resolve judge violations",
    },
    "interconnection": {
        "name": "Interconnection",
        "description": "Maps product terms, contracts, ownership and sibling links per story",
    },
    "consistency": {
        "name": "Consistency",
        "description": "Detects cross-story issues and proposes typed fixes",
    },
}

ENTITY_KINDS = ("component", "stateModel", "event")

AUTO_FIX_TYPES = (
    "add-bidirectional-link",
    "normalize-contract-id",
    "normalize-term-to-vocabulary",
)

PRODUCT_TYPES = ("web", "mobile-native", "mobile-web", "desktop", "api")

DEFAULT_REFUSAL_PHRASES = (
    "i can't",
    "i cannot",
    "i'm unable",
    "i am unable",
    "i'm sorry",
    "i apologize",
    "as an ai",
    "i won't",
    "i will not",
    "not able to help",
)
