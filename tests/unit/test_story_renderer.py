"""Tests for deterministic markdown rendering."""

from storyspec.memory.interconnections import (
    Ownership,
    RelatedStory,
    StoryInterconnections,
)
from storyspec.memory.story_structure import (
    ImplementationNotes,
    Item,
    StoryLines,
    StoryStructure,
    UIMappingItem,
)
from storyspec.services.story_renderer import (
    append_interconnection_metadata,
    escape_inline,
    to_markdown,
)


def sample_story(**overrides) -> StoryStructure:
    data = {
        "title": "Sign in",
        "story": StoryLines(as_a="returning user", i_want="to sign in", so_that="I see my account"),
        "user_visible_behavior": [Item(id="UVB-001", text="User sees the login form")],
        "outcome_acceptance_criteria": [Item(id="AC-OUT-001", text="Valid login opens the account")],
        "system_acceptance_criteria": [Item(id="AC-SYS-001", text="E-USER-LOGGED-IN is emitted")],
        "implementation_notes": ImplementationNotes(
            security_notes=[Item(id="IMPL-SEC-001", text="Rate-limit attempts")],
            state_ownership=[Item(id="IMPL-STATE-001", text="Auth owns C-STATE-SESSION")],
        ),
    }
    data.update(overrides)
    return StoryStructure(**data)


class TestToMarkdown:
    """Tests for to_markdown."""

    def test_fixed_layout(self):
        """Title, story lines and required sections render in order."""
        markdown = to_markdown(sample_story())
        lines = markdown.splitlines()
        assert lines[0] == "# Sign in"
        assert "As a returning user" in lines
        assert "I want to sign in" in lines
        assert "So that I see my account" in lines
        order = [
            markdown.index("## User-Visible Behavior"),
            markdown.index("## Acceptance Criteria (Outcome)"),
            markdown.index("## Acceptance Criteria (System)"),
            markdown.index("## Implementation Notes"),
        ]
        assert order == sorted(order)

    def test_items_carry_ids(self):
        """Items render as bullets prefixed with their id."""
        markdown = to_markdown(sample_story())
        assert "- [UVB-001] User sees the login form" in markdown
        assert "- [AC-SYS-001] E-USER-LOGGED-IN is emitted" in markdown

    def test_implementation_subsections_in_fixed_order(self):
        """Subsections follow the fixed order regardless of field assignment order."""
        markdown = to_markdown(sample_story())
        assert markdown.index("### State ownership") < markdown.index("### Security")
        assert "### Telemetry" not in markdown

    def test_optional_sections_omitted_when_empty(self):
        """UI Mapping, Open Questions, Edge Cases and Non-Goals appear only with entries."""
        markdown = to_markdown(sample_story())
        for heading in ("## UI Mapping", "## Open Questions", "## Edge Cases", "## Non-Goals"):
            assert heading not in markdown

        markdown = to_markdown(
            sample_story(
                ui_mapping=[
                    UIMappingItem(id="UI-MAP-001", product_term="sign in", component_name="COMP-LOGIN-BUTTON")
                ],
                edge_cases=[Item(id="EDGE-001", text="Caps lock is on")],
            )
        )
        assert "## UI Mapping" in markdown
        assert "- [UI-MAP-001] **sign in**: COMP-LOGIN-BUTTON" in markdown
        assert markdown.index("## UI Mapping") < markdown.index("## Edge Cases")

    def test_deterministic_and_tidy(self):
        """Same structure gives byte-identical output with no runs of blank lines."""
        story = sample_story()
        first = to_markdown(story)
        assert to_markdown(story.model_copy(deep=True)) == first
        assert "\n\n\n" not in first
        assert first == first.rstrip()

    def test_markdown_characters_escaped(self):
        """Characters that change inline rendering are escaped."""
        assert escape_inline("a*b_c[d\\") == "a\\*b\\_c\\[d\\\\"
        markdown = to_markdown(
            sample_story(user_visible_behavior=[Item(id="UVB-001", text="Shows *bold* text")])
        )
        assert "- [UVB-001] Shows \\*bold\\* text" in markdown


class TestInterconnectionMetadata:
    """Tests for append_interconnection_metadata."""

    def test_empty_metadata_leaves_markdown(self):
        """Nothing is appended when there is nothing to say."""
        markdown = "# Story\n\nbody"
        assert append_interconnection_metadata(markdown, StoryInterconnections(story_id="story-001")) == markdown

    def test_all_sections(self):
        """Each populated block is appended under its heading."""
        interconnections = StoryInterconnections(
            story_id="story-002",
            ui_mapping={"sign in": "COMP-LOGIN-BUTTON"},
            contract_dependencies=["C-STATE-SESSION"],
            ownership=Ownership(owns_state=["C-STATE-SESSION"], emits_events=["E-USER-LOGGED-IN"]),
            related_stories=[
                RelatedStory(story_id="story-001", relationship="prerequisite", description="Account exists"),
                RelatedStory(story_id="story-003", relationship="related"),
            ],
        )
        result = append_interconnection_metadata("# Story", interconnections)
        assert '- "sign in" → COMP-LOGIN-BUTTON' in result
        assert "## Contract Dependencies\n\n- C-STATE-SESSION" in result
        assert "**Owns State**: C-STATE-SESSION" in result
        assert "**Emits Events**: E-USER-LOGGED-IN" in result
        assert "**Consumes State**" not in result
        assert "**Prerequisites**:\n- story-001: Account exists" in result
        assert "**Related**:\n- story-003" in result
        assert result == result.strip()
