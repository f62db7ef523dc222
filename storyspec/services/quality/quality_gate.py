"""Bounded judge -> rewrite -> re-judge cycle for one story."""

import logging
from dataclasses import dataclass, field

from storyspec.memory.judge_rubric import JudgeRubric, Relationship
from storyspec.memory.pipeline_state import StoryDocument
from storyspec.memory.system_context import SystemDiscoveryContext
from storyspec.services.iteration import apply_outcome
from storyspec.services.patch_orchestrator import PatchOrchestrator
from storyspec.services.quality.story_judge import StoryJudge
from storyspec.services.quality.story_rewriter import StoryRewriter
from storyspec.settings import Settings
from storyspec.utils.exceptions import (
    JSONParseError,
    LLMError,
    RefusalError,
    ResponseValidationError,
    summarize_llm_error,
)

logger = logging.getLogger(__name__)


@dataclass
class QualityOutcome:
    """Final state of one story after the gate."""

    document: StoryDocument
    rubric: JudgeRubric | None = None
    history: list[JudgeRubric] = field(default_factory=list)
    rewrites: int = 0
    needs_manual_review: bool = False
    final_score: float | None = None
    reason: str | None = None

    def relationships(self) -> list[Relationship]:
        """Relationships surfaced by every judgment, first occurrence wins."""
        seen: set[tuple] = set()
        found: list[Relationship] = []
        for rubric in self.history:
            for rel in rubric.new_relationships:
                key = _relationship_key(rel)
                if key in seen:
                    continue
                seen.add(key)
                found.append(rel)
        return found

    def confidence(self, relationship: Relationship) -> float:
        """Highest confidence any judgment in the history gave this relationship."""
        key = _relationship_key(relationship)
        return max(
            (
                rubric.relationship_confidence(rel)
                for rubric in self.history
                for rel in rubric.new_relationships
                if _relationship_key(rel) == key
            ),
            default=0.0,
        )


def _relationship_key(rel: Relationship) -> tuple:
    return (rel.operation, rel.type, rel.id, rel.name, rel.source, rel.target)


class QualityGate:
    """Judge a story; below threshold, rewrite at most ``max_rewrites`` times.

    A story still below threshold afterwards is flagged for manual review with
    its final score. Neither outcome is an error.
    """

    def __init__(
        self,
        settings: Settings,
        judge: StoryJudge,
        rewriter: StoryRewriter,
        orchestrator: PatchOrchestrator | None = None,
    ):
        self.settings = settings
        self.judge = judge
        self.rewriter = rewriter
        self.orchestrator = orchestrator or PatchOrchestrator()

    def run(self, document: StoryDocument, context: SystemDiscoveryContext) -> QualityOutcome:
        """Judge, rewrite while below threshold, and re-judge.

        A model failure during the first judgment propagates. Failures during
        a rewrite or re-judge keep the judgments made so far; the outcome
        carries the last version that was actually scored.
        """
        threshold = self.settings.quality_pass_threshold
        outcome = QualityOutcome(document=document)

        try:
            rubric = self.judge.judge(document.markdown, context)
        except (JSONParseError, ResponseValidationError) as e:
            logger.warning("Story %s: judge output unusable: %s", document.story_id, e)
            outcome.needs_manual_review = True
            outcome.reason = "Judge output could not be parsed"
            return outcome
        outcome.history.append(rubric)

        interrupted: str | None = None
        while rubric.overall_score < threshold and outcome.rewrites < self.settings.max_rewrites:
            logger.info(
                "Story %s scored %.1f (< %.1f), rewriting",
                document.story_id,
                rubric.overall_score,
                threshold,
            )
            outcome.rewrites += 1
            scored = outcome.document.model_copy(deep=True)
            try:
                rewritten = self.rewriter.rewrite(scored.markdown, rubric, context)
                apply_outcome(
                    outcome.document, rewritten, orchestrator=self.orchestrator, step="rewriter"
                )
            except RefusalError as e:
                logger.warning(
                    "Story %s: rewrite refused, keeping previous version: %s", document.story_id, e
                )
                outcome.document = scored
                break
            except LLMError as e:
                logger.warning(
                    "Story %s: rewrite failed, keeping previous version: %s",
                    document.story_id,
                    summarize_llm_error(e),
                )
                outcome.document = scored
                interrupted = f"Rewrite unavailable: {summarize_llm_error(e)}"
                break

            try:
                rubric = self.judge.judge(outcome.document.markdown, context)
            except (JSONParseError, ResponseValidationError, LLMError) as e:
                logger.warning(
                    "Story %s: re-judge failed, restoring the scored version: %s",
                    document.story_id,
                    summarize_llm_error(e),
                )
                outcome.document = scored
                interrupted = f"Re-judge unavailable: {summarize_llm_error(e)}"
                break
            outcome.history.append(rubric)

        outcome.rubric = rubric
        outcome.final_score = rubric.overall_score
        if rubric.overall_score < threshold:
            outcome.needs_manual_review = True
            if interrupted is not None:
                outcome.reason = (
                    f"{interrupted}; kept the version scored {rubric.overall_score:.1f} "
                    f"(below {threshold:.1f})"
                )
            else:
                outcome.reason = (
                    f"Score {rubric.overall_score:.1f} below {threshold:.1f} "
                    f"after {outcome.rewrites} rewrite(s)"
                )
            logger.warning("Story %s flagged for manual review: %s", document.story_id, outcome.reason)
        else:
            logger.info("Story %s passed quality gate (%.1f)", document.story_id, rubric.overall_score)
        return outcome
