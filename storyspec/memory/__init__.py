"""Data models for stories, the shared system model, and run results."""

from storyspec.memory.interconnections import Ownership, RelatedStory, StoryInterconnections
from storyspec.memory.judge_rubric import (
    ConsistencyFix,
    ConsistencyIssue,
    GlobalConsistencyReport,
    JudgeRubric,
    Relationship,
    RelationshipKind,
    RelationshipOperation,
)
from storyspec.memory.pipeline_state import (
    ManualReviewItem,
    PipelineInput,
    PipelineResult,
    ProductContext,
    RunMetadata,
    StoryDocument,
    StoryResult,
)
from storyspec.memory.story_structure import (
    ID_PREFIX_BY_PATH,
    ImplementationNotes,
    Item,
    PatchMatch,
    PatchMetadata,
    PatchPath,
    SectionPatch,
    StoryLines,
    StoryStructure,
    UIMappingItem,
)
from storyspec.memory.system_context import (
    Component,
    ComponentGraph,
    CompositionEdge,
    CoordinationEdge,
    DataFlow,
    EventDefinition,
    SharedContracts,
    StateModel,
    SystemDiscoveryContext,
    SystemDiscoveryMentions,
)

__all__ = [
    "ID_PREFIX_BY_PATH",
    "Component",
    "ComponentGraph",
    "CompositionEdge",
    "ConsistencyFix",
    "ConsistencyIssue",
    "CoordinationEdge",
    "DataFlow",
    "EventDefinition",
    "GlobalConsistencyReport",
    "ImplementationNotes",
    "Item",
    "JudgeRubric",
    "ManualReviewItem",
    "Ownership",
    "PatchMatch",
    "PatchMetadata",
    "PatchPath",
    "PipelineInput",
    "PipelineResult",
    "ProductContext",
    "RelatedStory",
    "Relationship",
    "RelationshipKind",
    "RelationshipOperation",
    "RunMetadata",
    "SectionPatch",
    "SharedContracts",
    "StateModel",
    "StoryDocument",
    "StoryInterconnections",
    "StoryLines",
    "StoryResult",
    "StoryStructure",
    "SystemDiscoveryContext",
    "SystemDiscoveryMentions",
    "UIMappingItem",
]
