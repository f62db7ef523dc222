"""Generation-with-refinement stage for PipelineOrchestrator."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from storyspec.memory.pipeline_state import ManualReviewItem, StoryDocument
from storyspec.memory.story_structure import StoryStructure
from storyspec.memory.system_context import SystemDiscoveryContext
from storyspec.services.quality import QualityOutcome
from storyspec.services.story_generator import title_from_seed
from storyspec.utils.exceptions import LLMError, StorySpecError, summarize_llm_error

if TYPE_CHECKING:
    from . import PipelineOrchestrator, RunState

logger = logging.getLogger(__name__)


def story_id_for(index: int) -> str:
    """Stable per-run story id from the seed's position, e.g. ``story-001``."""
    return f"story-{index + 1:03d}"


def _placeholder(story_id: str, seed: str, context: SystemDiscoveryContext, reason: str) -> StoryDocument:
    """Document standing in for a story whose generation failed: the seed as body."""
    return StoryDocument(
        story_id=story_id,
        seed=seed,
        structure=StoryStructure(
            title=title_from_seed(seed),
            system_context_digest=context.digest(),
            generated_at=datetime.now(UTC).isoformat(),
        ),
        markdown=seed,
        fallback_used=True,
        iteration_log=[f"generator: failed: {reason}"],
    )


def generate_story(
    orc: PipelineOrchestrator, run: RunState, index: int, seed: str, context: SystemDiscoveryContext
) -> StoryDocument:
    """Generate one story and run the advisors over it.

    A failure in generation does not stop the batch: the story keeps its seed
    as the body and is recorded so the judge step can flag it.
    """
    story_id = story_id_for(index)
    run.generation_failures.pop(story_id, None)
    product_context = run.pipeline_input.product_context
    images = run.images or None
    try:
        document = orc.generator.generate(story_id, seed, context, product_context, images)
    except StorySpecError as e:
        reason = summarize_llm_error(e)
        logger.error("Generation failed for %s: %s", story_id, reason)
        orc._emit("warning", "refinement", f"Generation failed for {story_id}", {"error": reason})
        run.generation_failures[story_id] = reason
        return _placeholder(story_id, seed, context, reason)

    if orc.advisors_enabled:
        try:
            orc.generator.apply_advisors(document, context, product_context, images)
        except LLMError as e:
            logger.warning(
                "Advisor passes stopped for %s: %s", story_id, summarize_llm_error(e)
            )
            document.iteration_log.append(f"advisors: stopped: {summarize_llm_error(e)}")
    return document


def judge_story(
    orc: PipelineOrchestrator, run: RunState, document: StoryDocument, context: SystemDiscoveryContext
) -> QualityOutcome:
    """Run the quality gate; failed generations and judge outages go to manual review."""
    failure = run.generation_failures.get(document.story_id)
    if failure is not None:
        return QualityOutcome(
            document=document,
            needs_manual_review=True,
            reason=f"Generation failed: {failure}",
        )
    try:
        return orc.quality_gate.run(document, context)
    except LLMError as e:
        reason = summarize_llm_error(e)
        logger.error("Quality gate failed for %s: %s", document.story_id, reason)
        return QualityOutcome(
            document=document,
            needs_manual_review=True,
            reason=f"Judge unavailable: {reason}",
        )


def run_refinement(orc: PipelineOrchestrator, run: RunState) -> None:
    """Run the refinement loop over every story against the shared model.

    Args:
        orc: PipelineOrchestrator instance.
        run: Per-run state; receives the final outcomes, documents and context.
    """
    context = run.require_context()
    orc._emit("stage_start", "refinement", f"Generating {len(run.seeds)} stories")

    result = orc.refinement.run(
        run.seeds,
        context,
        lambda index, seed, ctx: generate_story(orc, run, index, seed, ctx),
        lambda document, ctx: judge_story(orc, run, document, ctx),
    )

    run.context = result.context
    run.outcomes = result.documents
    run.documents = {o.document.story_id: o.document for o in result.documents}
    run.relationships = result.relationships

    metadata = run.metadata
    metadata.refinement_rounds = result.rounds
    metadata.loop_state = result.state.value
    metadata.generation_passes = result.passes
    metadata.passes_completed.append("generation")

    for report in result.merge_reports:
        for entry in report.manual_review:
            metadata.manual_review.append(
                ManualReviewItem(
                    source="merger",
                    reason=entry.reason,
                    detail=entry.relationship.to_wire(),
                )
            )
    for outcome in result.documents:
        if outcome.needs_manual_review:
            metadata.manual_review.append(
                ManualReviewItem(
                    source="quality",
                    reason=outcome.reason or "Below quality threshold",
                    story_id=outcome.document.story_id,
                    detail={"finalScore": outcome.final_score, "rewrites": outcome.rewrites},
                )
            )

    orc._emit(
        "stage_complete",
        "refinement",
        f"Refinement finished after {result.rounds} round(s): {result.state.value}",
        {"passes": result.passes, "relationships": len(result.relationships)},
    )
