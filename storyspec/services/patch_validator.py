"""Shape and target validation for SectionPatches."""

import logging
import re
from dataclasses import dataclass, field

from storyspec.memory.story_structure import (
    ID_PREFIX_BY_PATH,
    Item,
    PatchMatch,
    SectionPatch,
    StoryStructure,
    UIMappingItem,
)

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 500

_ITEM_ID = re.compile(r"^[a-zA-Z0-9_-]+$")


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid


def entry_text(entry: Item | UIMappingItem) -> str:
    """Text an entry is matched on by ``textEquals``."""
    if isinstance(entry, UIMappingItem):
        return entry.match_text
    return entry.text


def locate(entries: list[Item] | list[UIMappingItem], match: PatchMatch | None) -> int | None:
    """Index of the first entry matching by id, or failing that by exact text."""
    if match is None:
        return None
    for index, entry in enumerate(entries):
        if match.id and entry.id == match.id:
            return index
        if match.text_equals is not None and entry_text(entry) == match.text_equals:
            return index
    return None


def expected_id_prefix(patch: SectionPatch) -> str | None:
    """Id prefix required for the patch's section, None for story lines."""
    return ID_PREFIX_BY_PATH.get(patch.path)


class PatchValidator:
    """Checks a patch against the story it would be applied to.

    Rules:
    - every patch names its advisor in metadata
    - story lines accept add/replace with non-empty text, never remove
    - list add/replace needs item.id (section prefix, [A-Za-z0-9_-]) and item.text
    - add may not reuse an id already in the section
    - replace/remove need match.id or match.textEquals that finds an entry
    - text is at most MAX_TEXT_LENGTH characters
    """

    def validate(self, patch: SectionPatch, story: StoryStructure) -> ValidationResult:
        errors: list[str] = []

        if not patch.metadata.advisor_id:
            return ValidationResult(False, ["Patch must have path and metadata.advisorId"])

        if patch.path.is_story_line:
            return self._validate_story_line(patch)

        entries = story.items_for(patch.path)

        if patch.op in ("add", "replace"):
            item = patch.item
            if item is None or not item.text.strip():
                return ValidationResult(False, ["add/replace patches must provide item.text"])
            if not item.id.strip():
                return ValidationResult(
                    False, ["add/replace patches for list sections must provide item.id"]
                )
            if len(item.text) > MAX_TEXT_LENGTH:
                errors.append(f"item.text must be at most {MAX_TEXT_LENGTH} characters")
            if not _ITEM_ID.match(item.id):
                errors.append("item.id must be alphanumeric, underscore, or hyphen")
            prefix = expected_id_prefix(patch)
            if prefix is not None and not item.id.startswith(prefix):
                errors.append(f'item.id must start with "{prefix}" for path {patch.path}')
            if patch.op == "add" and any(entry.id == item.id for entry in entries):
                errors.append(f'Duplicate id "{item.id}" in {patch.path}')

        if patch.op in ("replace", "remove"):
            if patch.match is None or not (patch.match.id or patch.match.text_equals):
                errors.append("replace/remove must specify match.id or match.textEquals")
            elif locate(entries, patch.match) is None:
                errors.append(f"No matching item to {patch.op} in {patch.path}")

        return ValidationResult(not errors, errors)

    @staticmethod
    def _validate_story_line(patch: SectionPatch) -> ValidationResult:
        if patch.op == "remove":
            return ValidationResult(
                False, ["remove operation not supported on story line paths (use replace instead)"]
            )
        if patch.item is None or not patch.item.text.strip():
            return ValidationResult(False, ["Story line patch must provide item.text"])
        if len(patch.item.text) > MAX_TEXT_LENGTH:
            return ValidationResult(False, [f"item.text must be at most {MAX_TEXT_LENGTH} characters"])
        return ValidationResult(True)
