"""Deterministic markdown rendering of StoryStructure.

Rendering makes no judgment calls: the same structure always produces the
same markdown, and section order is fixed.
"""

import logging
import re

from storyspec.memory.interconnections import StoryInterconnections
from storyspec.memory.story_structure import (
    ImplementationNotes,
    Item,
    StoryStructure,
    UIMappingItem,
)

logger = logging.getLogger(__name__)

_EXTRA_BLANK_LINES = re.compile(r"\n{3,}")

# (attribute on ImplementationNotes, subsection heading)
IMPLEMENTATION_SUBSECTIONS: tuple[tuple[str, str], ...] = (
    ("state_ownership", "State ownership"),
    ("data_flow", "Data flow"),
    ("api_contracts", "API contracts"),
    ("loading_states", "Loading states"),
    ("performance_notes", "Performance"),
    ("security_notes", "Security"),
    ("telemetry_notes", "Telemetry"),
)

RELATED_STORY_GROUPS: tuple[tuple[str, str], ...] = (
    ("prerequisite", "Prerequisites"),
    ("parallel", "Parallel"),
    ("dependent", "Dependent"),
    ("related", "Related"),
)


def escape_inline(text: str) -> str:
    """Escape the markdown characters that would change how an item renders."""
    return (
        text.replace("\\", "\\\\").replace("*", "\\*").replace("_", "\\_").replace("[", "\\[")
    )


def escape_heading(text: str) -> str:
    return text.replace("#", "")


def _render_items(items: list[Item]) -> list[str]:
    lines = []
    for item in items:
        prefix = f"- [{item.id}] " if item.id else "- "
        lines.append(prefix + escape_inline(item.text))
    return lines


def _render_ui_mapping(items: list[UIMappingItem]) -> list[str]:
    return [
        f"- [{entry.id}] **{escape_inline(entry.product_term)}**: "
        f"{escape_inline(entry.component_name)}"
        for entry in items
    ]


def _render_implementation_notes(notes: ImplementationNotes) -> list[str]:
    lines: list[str] = []
    for attr, label in IMPLEMENTATION_SUBSECTIONS:
        items = getattr(notes, attr)
        if items:
            lines.extend([f"### {label}", "", *_render_items(items), ""])
    return lines


def _section(heading: str, body: list[str]) -> list[str]:
    return [f"## {heading}", "", *body, ""]


def to_markdown(story: StoryStructure) -> str:
    """Render a story to the canonical markdown template.

    Layout: title, the As a / I want / So that lines, the three behaviour and
    criteria sections, implementation notes (subsections in fixed order, empty
    ones omitted), then UI Mapping, Open Questions, Edge Cases and Non-Goals
    when they have entries.

    Args:
        story: Structured story.

    Returns:
        Markdown with at most one blank line between blocks and no trailing
        whitespace.
    """
    lines = [
        f"# {escape_heading(story.title)}",
        "",
        f"As a {escape_inline(story.story.as_a)}",
        f"I want {escape_inline(story.story.i_want)}",
        f"So that {escape_inline(story.story.so_that)}",
        "",
    ]
    lines += _section("User-Visible Behavior", _render_items(story.user_visible_behavior))
    lines += _section("Acceptance Criteria (Outcome)", _render_items(story.outcome_acceptance_criteria))
    lines += _section("Acceptance Criteria (System)", _render_items(story.system_acceptance_criteria))
    lines += _section("Implementation Notes", _render_implementation_notes(story.implementation_notes))

    if story.ui_mapping:
        lines += _section("UI Mapping", _render_ui_mapping(story.ui_mapping))
    if story.open_questions:
        lines += _section("Open Questions", _render_items(story.open_questions))
    if story.edge_cases:
        lines += _section("Edge Cases", _render_items(story.edge_cases))
    if story.non_goals:
        lines += _section("Non-Goals", _render_items(story.non_goals))

    return _EXTRA_BLANK_LINES.sub("\n\n", "\n".join(lines)).rstrip()


def append_interconnection_metadata(markdown: str, interconnections: StoryInterconnections) -> str:
    """Append UI mapping, contract, ownership and related-story sections.

    Sections with nothing to say are left out entirely.
    """
    result = markdown.rstrip()

    if interconnections.ui_mapping:
        result += "\n\n## UI Mapping\n\n"
        result += "\n".join(
            f'- "{term}" → {component_id}'
            for term, component_id in interconnections.ui_mapping.items()
        )

    if interconnections.contract_dependencies:
        result += "\n\n## Contract Dependencies\n\n"
        result += "\n".join(f"- {contract_id}" for contract_id in interconnections.contract_dependencies)

    ownership = interconnections.ownership
    if not ownership.is_empty():
        result += "\n\n## Ownership\n\n"
        for label, values in (
            ("Owns State", ownership.owns_state),
            ("Consumes State", ownership.consumes_state),
            ("Emits Events", ownership.emits_events),
            ("Listens To", ownership.listens_to_events),
        ):
            if values:
                result += f"**{label}**: {', '.join(values)}\n"

    if interconnections.related_stories:
        result += "\n\n## Related Stories\n\n"
        for kind, label in RELATED_STORY_GROUPS:
            group = [r for r in interconnections.related_stories if r.relationship == kind]
            if not group:
                continue
            result += f"**{label}**:\n"
            result += "\n".join(
                f"- {r.story_id}: {r.description}" if r.description else f"- {r.story_id}"
                for r in group
            )
            result += "\n\n"

    return result.strip()
