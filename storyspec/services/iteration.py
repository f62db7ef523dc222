"""Tagged outcome of one model-driven story step, and the helpers that produce it.

A step that asks the model for structured output ends in one of three ways:
the output parsed (``success``), it did not parse and is kept as raw text
(``fallback``), or it reads like a refusal (``error``).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum

from pydantic import ValidationError as PydanticValidationError

from storyspec.memory.pipeline_state import StoryDocument
from storyspec.memory.story_structure import (
    ALL_PATCH_PATHS,
    ID_PREFIX_BY_PATH,
    Item,
    PatchMetadata,
    PatchPath,
    SectionPatch,
    StoryStructure,
)
from storyspec.services.patch_orchestrator import PatchMetrics, PatchOrchestrator
from storyspec.services.story_renderer import to_markdown
from storyspec.settings import Settings
from storyspec.utils.exceptions import JSONParseError, RefusalError
from storyspec.utils.json_parser import extract_json, parse_json_to_model, strip_reasoning

logger = logging.getLogger(__name__)


class OutcomeKind(StrEnum):
    SUCCESS = "success"
    FALLBACK = "fallback"
    ERROR = "error"


@dataclass
class IterationOutcome:
    """What a single generation, advisor or rewrite step produced."""

    kind: OutcomeKind
    structure: StoryStructure | None = None
    patches: list[SectionPatch] = field(default_factory=list)
    raw_text: str = ""
    error: str = ""
    invalid_patches: int = 0

    @classmethod
    def success(
        cls,
        structure: StoryStructure | None = None,
        patches: list[SectionPatch] | None = None,
        invalid_patches: int = 0,
    ) -> IterationOutcome:
        return cls(
            OutcomeKind.SUCCESS,
            structure=structure,
            patches=patches or [],
            invalid_patches=invalid_patches,
        )

    @classmethod
    def fallback(cls, raw_text: str) -> IterationOutcome:
        return cls(OutcomeKind.FALLBACK, raw_text=raw_text)

    @classmethod
    def refusal(cls, raw_text: str, error: str) -> IterationOutcome:
        return cls(OutcomeKind.ERROR, raw_text=raw_text, error=error)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    def raise_for_error(self, step: str) -> None:
        """Raise RefusalError if this outcome is a detected refusal."""
        if self.kind is OutcomeKind.ERROR:
            raise RefusalError(
                f"{step}: {self.error}", response_preview=self.raw_text[:200], step=step
            )


def detect_refusal(text: str, settings: Settings) -> bool:
    """Best-effort check for a model refusal: short output containing a known phrase.

    Misclassification is possible either way; callers treat the result as a hint.
    """
    stripped = strip_reasoning(text).strip()
    if not stripped:
        return False
    if len(stripped) > settings.refusal_max_length:
        return False
    lowered = stripped.lower()
    return any(phrase in lowered for phrase in settings.refusal_phrases)


def _unparseable(text: str, settings: Settings, what: str) -> IterationOutcome:
    if detect_refusal(text, settings):
        logger.warning("%s output looks like a refusal (%d chars)", what, len(text))
        return IterationOutcome.refusal(text, f"Model output resembles a refusal: {text[:120]!r}")
    if not text.strip():
        return IterationOutcome.refusal(text, "Model returned empty output")
    logger.warning("%s output is not valid structured JSON; keeping raw text as fallback", what)
    return IterationOutcome.fallback(strip_reasoning(text).strip())


def interpret_structure_response(text: str, settings: Settings, what: str = "Story") -> IterationOutcome:
    """Parse model output as a StoryStructure, falling back to raw text."""
    try:
        structure = parse_json_to_model(text, StoryStructure)
    except JSONParseError as e:
        logger.debug("%s structure parse failed: %s", what, e)
        return _unparseable(text, settings, what)
    return IterationOutcome.success(structure=structure)


def interpret_patch_response(text: str, settings: Settings, advisor_id: str) -> IterationOutcome:
    """Parse model output as a list of SectionPatches.

    Accepts ``{"patches": [...]}`` or a bare list. Individual entries that do
    not validate (for example an unknown section path) are dropped and counted.
    """
    try:
        data = extract_json(text)
    except JSONParseError as e:
        logger.debug("Advisor %s patch parse failed: %s", advisor_id, e)
        return _unparseable(text, settings, f"Advisor {advisor_id}")

    raw_patches = data.get("patches") if isinstance(data, dict) else data
    if not isinstance(raw_patches, list):
        return _unparseable(text, settings, f"Advisor {advisor_id}")

    patches: list[SectionPatch] = []
    invalid = 0
    for raw in raw_patches:
        if not isinstance(raw, dict):
            invalid += 1
            continue
        raw.setdefault("metadata", {})
        if isinstance(raw["metadata"], dict):
            raw["metadata"].setdefault("advisorId", advisor_id)
        try:
            patches.append(SectionPatch.model_validate(raw))
        except PydanticValidationError as e:
            invalid += 1
            logger.debug("Dropping malformed patch from %s: %s", advisor_id, e.errors()[:1])
    if invalid:
        logger.info("Advisor %s: %d malformed patch(es) dropped", advisor_id, invalid)
    return IterationOutcome.success(patches=patches, invalid_patches=invalid)


def _item_id(path: PatchPath, candidate: str, index: int, used: set[str]) -> str:
    prefix = ID_PREFIX_BY_PATH[path]
    if candidate and candidate.startswith(prefix) and candidate not in used:
        return candidate
    number = index
    while f"{prefix}{number:03d}" in used:
        number += 1
    return f"{prefix}{number:03d}"


def structure_to_patches(source: StoryStructure, advisor_id: str) -> list[SectionPatch]:
    """Express a whole structure as add patches, one per story line and item.

    Items get section-prefixed ids when the model omitted or misprefixed them.
    UI mapping entries travel as "term | component" text.
    """
    metadata = PatchMetadata(advisor_id=advisor_id)
    patches: list[SectionPatch] = []
    for path in ALL_PATCH_PATHS:
        if path.is_story_line:
            text = source.story_line(path)
            if text.strip():
                patches.append(
                    SectionPatch(op="add", path=path, item=Item(text=text), metadata=metadata)
                )
            continue

        used: set[str] = set()
        for index, entry in enumerate(source.items_for(path), start=1):
            if path is PatchPath.UI_MAPPING:
                text = entry.match_text
            else:
                text = entry.text
            if not text.strip():
                continue
            item_id = _item_id(path, entry.id, index, used)
            used.add(item_id)
            item = Item(id=item_id, text=text)
            if path is not PatchPath.UI_MAPPING:
                item.tags = list(entry.tags)
                item.source_advisor = entry.source_advisor
            patches.append(SectionPatch(op="add", path=path, item=item, metadata=metadata))
    return patches


def rebuild_structure(
    source: StoryStructure,
    *,
    orchestrator: PatchOrchestrator,
    advisor_id: str,
    digest: str = "",
    generated_at: str = "",
) -> tuple[StoryStructure, PatchMetrics]:
    """Rebuild a model-produced structure on an empty skeleton through validated patches.

    Every section is allowed, so only malformed content is dropped.
    """
    skeleton = StoryStructure(
        title=source.title.strip(),
        system_context_digest=digest,
        generated_at=generated_at,
    )
    return orchestrator.apply_patches(
        skeleton, structure_to_patches(source, advisor_id), ALL_PATCH_PATHS
    )


def apply_outcome(
    document: StoryDocument,
    outcome: IterationOutcome,
    *,
    orchestrator: PatchOrchestrator,
    step: str,
    allowed_paths: Iterable[PatchPath] = ALL_PATCH_PATHS,
) -> PatchMetrics | None:
    """Fold a step's outcome into the working document in place.

    A structure replaces the document through validated patches on an empty
    skeleton; patches are applied under ``allowed_paths``; fallback text
    replaces the rendered body until a later structured step succeeds.

    Returns:
        Patch metrics for structured outcomes, None for fallbacks.

    Raises:
        RefusalError: If the outcome is a detected refusal.
    """
    outcome.raise_for_error(step)

    if outcome.kind is OutcomeKind.FALLBACK:
        document.markdown = outcome.raw_text
        document.fallback_used = True
        document.iteration_log.append(f"{step}: fallback ({len(outcome.raw_text)} chars)")
        return None

    if outcome.structure is not None:
        source = outcome.structure
        if not source.title.strip():
            source = source.model_copy(update={"title": document.structure.title})
        structure, metrics = rebuild_structure(
            source,
            orchestrator=orchestrator,
            advisor_id=step,
            digest=document.structure.system_context_digest,
            generated_at=document.structure.generated_at,
        )
    else:
        structure, metrics = orchestrator.apply_patches(
            document.structure, outcome.patches, allowed_paths
        )

    metrics.total_patches += outcome.invalid_patches
    metrics.rejected_validation += outcome.invalid_patches
    document.structure = structure
    document.markdown = to_markdown(structure)
    document.fallback_used = False
    document.iteration_log.append(
        f"{step}: applied={metrics.applied}, rejected={metrics.rejected}"
    )
    return metrics
