"""Applies SectionPatches to a story under a caller-supplied allow-list.

Rejections are counted and logged, never raised. The input story is never
modified; every call works on a deep copy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from storyspec.memory.story_structure import (
    Item,
    PatchPath,
    SectionPatch,
    StoryStructure,
    UIMappingItem,
)
from storyspec.services.patch_validator import PatchValidator, locate

logger = logging.getLogger(__name__)


@dataclass
class PatchMetrics:
    """Outcome counts for one apply_patches call."""

    total_patches: int = 0
    applied: int = 0
    rejected_path: int = 0
    rejected_validation: int = 0
    rejected_reasons: list[str] = field(default_factory=list)

    @property
    def rejected(self) -> int:
        return self.rejected_path + self.rejected_validation

    def merge(self, other: PatchMetrics) -> None:
        """Accumulate another call's counts into this one."""
        self.total_patches += other.total_patches
        self.applied += other.applied
        self.rejected_path += other.rejected_path
        self.rejected_validation += other.rejected_validation
        self.rejected_reasons.extend(other.rejected_reasons)


def to_ui_mapping(item: Item) -> UIMappingItem:
    """Shape a generic item into a UI mapping entry from "term | component" text."""
    term, _, component = item.text.partition("|")
    return UIMappingItem(
        id=item.id,
        product_term=term.strip() or item.text.strip(),
        component_name=component.strip(),
    )


def _shape(path: PatchPath, item: Item) -> Item | UIMappingItem:
    if path is PatchPath.UI_MAPPING:
        return to_ui_mapping(item)
    return item.model_copy(deep=True)


class PatchOrchestrator:
    """Validates then applies patches in order, one at a time."""

    def __init__(self, validator: PatchValidator | None = None):
        self.validator = validator or PatchValidator()

    def apply_patches(
        self,
        story: StoryStructure,
        patches: Sequence[SectionPatch],
        allowed_paths: Iterable[PatchPath | str],
    ) -> tuple[StoryStructure, PatchMetrics]:
        """Apply allowed, valid patches to a copy of ``story``.

        Args:
            story: Current story (not mutated).
            patches: Patches to apply, in order.
            allowed_paths: Sections this step may touch.

        Returns:
            Tuple of (new story, metrics). Identical inputs always give identical output.
        """
        allowed = {PatchPath(p) for p in allowed_paths}
        metrics = PatchMetrics(total_patches=len(patches))
        current = story.model_copy(deep=True)

        for patch in patches:
            advisor = patch.metadata.advisor_id or "unknown"
            if patch.path not in allowed:
                metrics.rejected_path += 1
                metrics.rejected_reasons.append(f"Path not allowed: {patch.path}")
                logger.debug("Patch rejected (path): %s by %s", patch.path, advisor)
                continue

            validation = self.validator.validate(patch, current)
            if not validation:
                metrics.rejected_validation += 1
                metrics.rejected_reasons.extend(validation.errors)
                logger.debug(
                    "Patch rejected (validation): %s by %s - %s",
                    patch.path,
                    advisor,
                    "; ".join(validation.errors),
                )
                continue

            self._apply_one(current, patch)
            metrics.applied += 1

        if metrics.rejected:
            logger.info(
                "Patches: applied=%d, rejected_path=%d, rejected_validation=%d (of %d)",
                metrics.applied,
                metrics.rejected_path,
                metrics.rejected_validation,
                metrics.total_patches,
            )
        return current, metrics

    @staticmethod
    def _apply_one(story: StoryStructure, patch: SectionPatch) -> None:
        """Mutate the working copy; the patch has already been validated against it."""
        if patch.path.is_story_line:
            if patch.item is not None:
                story.set_story_line(patch.path, patch.item.text)
            return

        entries = story.items_for(patch.path)
        if patch.op == "add" and patch.item is not None:
            entries.append(_shape(patch.path, patch.item))
            return

        index = locate(entries, patch.match)
        if index is None:
            return
        if patch.op == "replace" and patch.item is not None:
            entries[index] = _shape(patch.path, patch.item)
        elif patch.op == "remove":
            del entries[index]
