"""Story quality: rubric judge, rewriter, and the bounded gate that combines them."""

from storyspec.services.quality.quality_gate import QualityGate, QualityOutcome
from storyspec.services.quality.story_judge import StoryJudge, format_system_context
from storyspec.services.quality.story_rewriter import StoryRewriter

__all__ = [
    "QualityGate",
    "QualityOutcome",
    "StoryJudge",
    "StoryRewriter",
    "format_system_context",
]
