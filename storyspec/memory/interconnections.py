"""Per-story interconnection metadata: UI mapping, contracts, ownership, sibling links."""

from typing import Literal

from pydantic import Field

from storyspec.memory._base import WireModel

RelatedStoryKind = Literal["prerequisite", "parallel", "dependent", "related"]


class Ownership(WireModel):
    owns_state: list[str] = Field(default_factory=list)
    consumes_state: list[str] = Field(default_factory=list)
    emits_events: list[str] = Field(default_factory=list)
    listens_to_events: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.owns_state or self.consumes_state or self.emits_events or self.listens_to_events
        )


class RelatedStory(WireModel):
    story_id: str
    relationship: RelatedStoryKind = "related"
    description: str = ""


class StoryInterconnections(WireModel):
    """Cross-references extracted for one story."""

    story_id: str
    ui_mapping: dict[str, str] = Field(default_factory=dict)  # product term -> component id
    contract_dependencies: list[str] = Field(default_factory=list)
    ownership: Ownership = Field(default_factory=Ownership)
    related_stories: list[RelatedStory] = Field(default_factory=list)
