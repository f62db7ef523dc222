"""Judge output models: rubric scores, discovered relationships, consistency report."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import Field, field_validator

from storyspec.memory._base import WireModel
from storyspec.memory.story_structure import Item, PatchMatch


class RelationshipOperation(StrEnum):
    ADD_NODE = "add_node"
    ADD_EDGE = "add_edge"
    EDIT_NODE = "edit_node"
    EDIT_EDGE = "edit_edge"


class RelationshipKind(StrEnum):
    COMPONENT = "component"
    EVENT = "event"
    STATE_MODEL = "stateModel"
    DATA_FLOW = "dataFlow"


class Relationship(WireModel):
    """A proposed shared-model change surfaced while judging one story.

    ``operation`` and ``type`` stay plain strings so that an unknown value
    still reaches the merger (and manual review) instead of failing parsing.
    """

    id: str = ""
    type: str = ""
    operation: str = ""
    name: str = ""
    evidence: str = ""
    canonical_name: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    contract_id: str | None = None
    emitter: str | None = None
    listeners: list[str] | None = None
    source: str | None = None
    target: str | None = None

    @field_validator("operation", mode="before")
    @classmethod
    def _normalize_operation(cls, value: Any) -> Any:
        """Accept "add-edge", "ADD_EDGE" and "add_edge" alike."""
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_")
        return value

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> Any:
        if isinstance(value, int | float):
            return min(max(float(value), 0.0), 1.0)
        return value

    def describe(self) -> str:
        """One-line description for logs and manual review lists."""
        target = self.canonical_name or self.name or self.id
        if self.source or self.target:
            return f"{self.operation} {self.type} {target} ({self.source} -> {self.target})"
        return f"{self.operation} {self.type} {target}"


class ScoredDimension(WireModel):
    score: float = Field(ge=0.0, le=5.0)
    reasoning: str = ""


class Violation(WireModel):
    section: str = ""
    quote: str = ""
    suggested_rewrite: str = ""


class SectionSeparation(ScoredDimension):
    violations: list[Violation] = Field(default_factory=list)

    @field_validator("violations", mode="before")
    @classmethod
    def _structure_violations(cls, value: Any) -> Any:
        """Judges sometimes return bare strings; wrap them as quotes."""
        if not isinstance(value, list):
            return value
        normalized = []
        for entry in value:
            if isinstance(entry, str):
                normalized.append({"section": "", "quote": entry, "suggestedRewrite": ""})
            elif isinstance(entry, dict):
                normalized.append(entry)
            else:
                normalized.append({"section": "", "quote": str(entry), "suggestedRewrite": ""})
        return normalized


class CorrectnessDimension(ScoredDimension):
    hallucinations: list[str] = Field(default_factory=list)


class AcceptanceTestability(WireModel):
    outcome_ac: ScoredDimension = Field(alias="outcomeAC")
    system_ac: ScoredDimension = Field(alias="systemAC")

    @property
    def score(self) -> float:
        return (self.outcome_ac.score + self.system_ac.score) / 2


class CompletenessDimension(ScoredDimension):
    missing_elements: list[str] = Field(default_factory=list)


Recommendation = Literal["approve", "rewrite", "manual-review"]


class JudgeRubric(WireModel):
    """Scores (0-5) for one story plus relationships the judge discovered."""

    section_separation: SectionSeparation
    correctness_vs_system_context: CorrectnessDimension
    testability: AcceptanceTestability
    completeness: CompletenessDimension
    overall_score: float = Field(ge=0.0, le=5.0)
    recommendation: Recommendation = "approve"
    new_relationships: list[Relationship] = Field(default_factory=list)
    needs_system_context_update: bool = False
    confidence_by_relationship: dict[str, float] = Field(default_factory=dict)

    @field_validator("recommendation", mode="before")
    @classmethod
    def _normalize_recommendation(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower().replace("_", "-").replace(" ", "-")
        return value

    def relationship_confidence(self, relationship: Relationship) -> float:
        """Confidence for a relationship; inline value wins over the side table, missing is 0."""
        if relationship.confidence is not None:
            return relationship.confidence
        return float(self.confidence_by_relationship.get(relationship.id, 0.0))

    @property
    def violation_summaries(self) -> list[str]:
        """Flat, human-readable list of everything the rewriter should fix."""
        lines = []
        for v in self.section_separation.violations:
            where = f"[{v.section}] " if v.section else ""
            fix = f" -> {v.suggested_rewrite}" if v.suggested_rewrite else ""
            lines.append(f"{where}{v.quote}{fix}")
        lines.extend(f"Hallucination: {h}" for h in self.correctness_vs_system_context.hallucinations)
        lines.extend(f"Missing: {m}" for m in self.completeness.missing_elements)
        return lines


class ConsistencyIssue(WireModel):
    description: str
    suggested_fix_type: str = "unknown"
    confidence: float = 0.0
    affected_stories: list[str] = Field(default_factory=list)


class ConsistencyFix(WireModel):
    """A typed, story-scoped correction proposed by the consistency judge."""

    type: str
    story_id: str
    path: str
    operation: Literal["add", "replace"] = "add"
    item: Item | None = None
    match: PatchMatch | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""


class GlobalConsistencyReport(WireModel):
    issues: list[ConsistencyIssue] = Field(default_factory=list)
    fixes: list[ConsistencyFix] = Field(default_factory=list)

    @field_validator("issues", "fixes", mode="before")
    @classmethod
    def _list_or_empty(cls, value: Any) -> Any:
        return value if isinstance(value, list) else []

    @classmethod
    def parse_failure(cls, description: str = "Failed to parse consistency response") -> GlobalConsistencyReport:
        """Report carrying a single zero-confidence issue describing the failure."""
        return cls(
            issues=[
                ConsistencyIssue(
                    description=description,
                    suggested_fix_type="unknown",
                    confidence=0.0,
                    affected_stories=[],
                )
            ],
            fixes=[],
        )
