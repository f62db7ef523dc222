"""Run input, per-story working documents, and the pipeline result."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from storyspec.memory._base import WireModel
from storyspec.memory.interconnections import StoryInterconnections
from storyspec.memory.judge_rubric import GlobalConsistencyReport, JudgeRubric, Relationship
from storyspec.memory.story_structure import StoryStructure
from storyspec.memory.system_context import SystemDiscoveryContext


class ProductContext(WireModel):
    """Product framing threaded into prompts; not interpreted by the pipeline."""

    product_name: str = ""
    target_audience: str = ""
    product_type: str = ""
    key_features: list[str] = Field(default_factory=list)
    notes: str = ""


class PipelineInput(WireModel):
    """Everything a run needs, as supplied by the CLI or another caller."""

    stories: list[str] = Field(default_factory=list)
    reference_documents: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)  # Paths, URLs or encoded bytes
    product_context: ProductContext | None = None

    def non_empty_stories(self) -> list[str]:
        return [s.strip() for s in self.stories if s and s.strip()]


class StoryDocument(BaseModel):
    """Working copy of one story during generation and refinement."""

    story_id: str
    seed: str
    structure: StoryStructure
    markdown: str = ""
    fallback_used: bool = False
    iteration_log: list[str] = Field(default_factory=list)


class StoryResult(WireModel):
    """Final per-story output."""

    story_id: str
    seed: str
    structure: StoryStructure
    markdown: str
    rubric_history: list[JudgeRubric] = Field(default_factory=list)
    needs_manual_review: bool = False
    final_score: float | None = None
    review_reason: str | None = None
    interconnections: StoryInterconnections | None = None


class ManualReviewItem(WireModel):
    """Something deferred to a human instead of being applied automatically."""

    source: str  # "merger", "consistency", "quality"
    reason: str
    story_id: str | None = None
    detail: dict[str, Any] = Field(default_factory=dict)


class RunMetadata(WireModel):
    passes_completed: list[str] = Field(default_factory=list)
    refinement_rounds: int = 0
    loop_state: str = ""
    generation_passes: int = 0
    fixes_applied: int = 0
    fixes_rejected: int = 0
    fixes_flagged: int = 0
    manual_review: list[ManualReviewItem] = Field(default_factory=list)
    model_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    started_at: str = ""
    finished_at: str = ""
    correlation_id: str | None = None


class PipelineResult(WireModel):
    success: bool
    message: str = ""
    context: SystemDiscoveryContext | None = None
    stories: list[StoryResult] = Field(default_factory=list)
    consistency_report: GlobalConsistencyReport | None = None
    relationships: list[Relationship] = Field(default_factory=list)
    metadata: RunMetadata = Field(default_factory=RunMetadata)

    def story(self, story_id: str) -> StoryResult | None:
        return next((s for s in self.stories if s.story_id == story_id), None)
