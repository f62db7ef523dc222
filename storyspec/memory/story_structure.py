"""Structured story document and the patch vocabulary that mutates it."""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field, field_validator

from storyspec.memory._base import WireModel

STORY_STRUCTURE_VERSION = "1"


class PatchPath(StrEnum):
    """Closed set of addressable story sections."""

    STORY_AS_A = "story.asA"
    STORY_I_WANT = "story.iWant"
    STORY_SO_THAT = "story.soThat"
    USER_VISIBLE_BEHAVIOR = "userVisibleBehavior"
    OUTCOME_ACCEPTANCE_CRITERIA = "outcomeAcceptanceCriteria"
    SYSTEM_ACCEPTANCE_CRITERIA = "systemAcceptanceCriteria"
    IMPL_STATE_OWNERSHIP = "implementationNotes.stateOwnership"
    IMPL_DATA_FLOW = "implementationNotes.dataFlow"
    IMPL_API_CONTRACTS = "implementationNotes.apiContracts"
    IMPL_LOADING_STATES = "implementationNotes.loadingStates"
    IMPL_PERFORMANCE = "implementationNotes.performanceNotes"
    IMPL_SECURITY = "implementationNotes.securityNotes"
    IMPL_TELEMETRY = "implementationNotes.telemetryNotes"
    UI_MAPPING = "uiMapping"
    OPEN_QUESTIONS = "openQuestions"
    EDGE_CASES = "edgeCases"
    NON_GOALS = "nonGoals"

    @property
    def is_story_line(self) -> bool:
        """True for the As-a / I-want / So-that string fields."""
        return self.value.startswith("story.")

    @classmethod
    def parse(cls, value: str) -> PatchPath | None:
        """Return the member for a wire value, or None when it is not a known section."""
        try:
            return cls(value)
        except ValueError:
            return None


ALL_PATCH_PATHS: tuple[PatchPath, ...] = tuple(PatchPath)

# Required item id prefix per list section
ID_PREFIX_BY_PATH: dict[PatchPath, str] = {
    PatchPath.USER_VISIBLE_BEHAVIOR: "UVB-",
    PatchPath.OUTCOME_ACCEPTANCE_CRITERIA: "AC-OUT-",
    PatchPath.SYSTEM_ACCEPTANCE_CRITERIA: "AC-SYS-",
    PatchPath.IMPL_STATE_OWNERSHIP: "IMPL-STATE-",
    PatchPath.IMPL_DATA_FLOW: "IMPL-FLOW-",
    PatchPath.IMPL_API_CONTRACTS: "IMPL-API-",
    PatchPath.IMPL_LOADING_STATES: "IMPL-LOAD-",
    PatchPath.IMPL_PERFORMANCE: "IMPL-PERF-",
    PatchPath.IMPL_SECURITY: "IMPL-SEC-",
    PatchPath.IMPL_TELEMETRY: "IMPL-TEL-",
    PatchPath.UI_MAPPING: "UI-MAP-",
    PatchPath.OPEN_QUESTIONS: "QUESTION-",
    PatchPath.EDGE_CASES: "EDGE-",
    PatchPath.NON_GOALS: "NON-GOAL-",
}


class Item(WireModel):
    """A single identified line in a list section."""

    id: str = ""
    text: str = ""
    tags: list[str] = Field(default_factory=list)
    source_advisor: str | None = None


class UIMappingItem(WireModel):
    """Product term mapped to the component that implements it."""

    id: str
    product_term: str
    component_name: str
    contract_id: str | None = None

    @property
    def match_text(self) -> str:
        """Text used for textEquals matching: "term | component"."""
        return f"{self.product_term} | {self.component_name}"


class StoryLines(WireModel):
    """The As-a / I-want / So-that triple."""

    as_a: str = ""
    i_want: str = ""
    so_that: str = ""


class ImplementationNotes(WireModel):
    """Implementation notes grouped by concern, rendered in this field order."""

    state_ownership: list[Item] = Field(default_factory=list)
    data_flow: list[Item] = Field(default_factory=list)
    api_contracts: list[Item] = Field(default_factory=list)
    loading_states: list[Item] = Field(default_factory=list)
    performance_notes: list[Item] = Field(default_factory=list)
    security_notes: list[Item] = Field(default_factory=list)
    telemetry_notes: list[Item] = Field(default_factory=list)


# PatchPath -> (container, attribute) on StoryStructure
_LIST_LOCATIONS: dict[PatchPath, tuple[str | None, str]] = {
    PatchPath.USER_VISIBLE_BEHAVIOR: (None, "user_visible_behavior"),
    PatchPath.OUTCOME_ACCEPTANCE_CRITERIA: (None, "outcome_acceptance_criteria"),
    PatchPath.SYSTEM_ACCEPTANCE_CRITERIA: (None, "system_acceptance_criteria"),
    PatchPath.IMPL_STATE_OWNERSHIP: ("implementation_notes", "state_ownership"),
    PatchPath.IMPL_DATA_FLOW: ("implementation_notes", "data_flow"),
    PatchPath.IMPL_API_CONTRACTS: ("implementation_notes", "api_contracts"),
    PatchPath.IMPL_LOADING_STATES: ("implementation_notes", "loading_states"),
    PatchPath.IMPL_PERFORMANCE: ("implementation_notes", "performance_notes"),
    PatchPath.IMPL_SECURITY: ("implementation_notes", "security_notes"),
    PatchPath.IMPL_TELEMETRY: ("implementation_notes", "telemetry_notes"),
    PatchPath.UI_MAPPING: (None, "ui_mapping"),
    PatchPath.OPEN_QUESTIONS: (None, "open_questions"),
    PatchPath.EDGE_CASES: (None, "edge_cases"),
    PatchPath.NON_GOALS: (None, "non_goals"),
}

_STORY_LINE_ATTRS: dict[PatchPath, str] = {
    PatchPath.STORY_AS_A: "as_a",
    PatchPath.STORY_I_WANT: "i_want",
    PatchPath.STORY_SO_THAT: "so_that",
}


class StoryStructure(WireModel):
    """Structured story data; the single source the renderer reads from."""

    story_structure_version: str = STORY_STRUCTURE_VERSION
    system_context_digest: str = ""
    generated_at: str = ""
    title: str = ""
    story: StoryLines = Field(default_factory=StoryLines)
    user_visible_behavior: list[Item] = Field(default_factory=list)
    outcome_acceptance_criteria: list[Item] = Field(default_factory=list)
    system_acceptance_criteria: list[Item] = Field(default_factory=list)
    implementation_notes: ImplementationNotes = Field(default_factory=ImplementationNotes)
    ui_mapping: list[UIMappingItem] = Field(default_factory=list)
    open_questions: list[Item] = Field(default_factory=list)
    edge_cases: list[Item] = Field(default_factory=list)
    non_goals: list[Item] = Field(default_factory=list)

    @field_validator("ui_mapping", "open_questions", "edge_cases", "non_goals", mode="before")
    @classmethod
    def _none_as_empty(cls, value: object) -> object:
        return [] if value is None else value

    def items_for(self, path: PatchPath) -> list[Item] | list[UIMappingItem]:
        """Return the live list behind a list section.

        Raises:
            KeyError: If path is a story line.
        """
        container, attr = _LIST_LOCATIONS[path]
        owner = getattr(self, container) if container else self
        return getattr(owner, attr)

    def story_line(self, path: PatchPath) -> str:
        return getattr(self.story, _STORY_LINE_ATTRS[path])

    def set_story_line(self, path: PatchPath, text: str) -> None:
        setattr(self.story, _STORY_LINE_ATTRS[path], text)

    def item_count(self) -> int:
        """Total number of list items across every section."""
        return sum(len(self.items_for(path)) for path in _LIST_LOCATIONS)


class PatchMatch(WireModel):
    """Locator for replace/remove: by id or by exact text."""

    id: str | None = None
    text_equals: str | None = None


class PatchMetadata(WireModel):
    advisor_id: str = ""
    reasoning: str | None = None


class SectionPatch(WireModel):
    """An atomic, path-scoped mutation of a StoryStructure."""

    op: Literal["add", "replace", "remove"]
    path: PatchPath
    item: Item | None = None
    match: PatchMatch | None = None
    metadata: PatchMetadata = Field(default_factory=PatchMetadata)

    @field_validator("op", mode="before")
    @classmethod
    def _lower_op(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value
