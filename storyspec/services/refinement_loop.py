"""Batch refinement loop: generate, judge, merge discovered relationships, repeat.

The loop is an explicit state machine with a hard round cap:

    ROUND(n) --no high-confidence relationships--> CONVERGED
    ROUND(n) --merge added nothing new-----------> CONVERGED
    ROUND(n) --otherwise, n < max----------------> ROUND(n+1)
    ROUND(max) --otherwise-----------------------> MAX_ROUNDS_REACHED
    MAX_ROUNDS_REACHED --one final pass----------> stop

Every round regenerates every story against the latest shared model, so the
number of generation passes never exceeds ``max_rounds + 1``.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from storyspec.memory.judge_rubric import Relationship
from storyspec.memory.pipeline_state import StoryDocument
from storyspec.memory.system_context import SystemDiscoveryContext
from storyspec.services.quality.quality_gate import QualityOutcome
from storyspec.services.relationship_merger import MergeResult, merge
from storyspec.settings import Settings

logger = logging.getLogger(__name__)

type GenerateFn = Callable[[int, str, SystemDiscoveryContext], StoryDocument]
type JudgeFn = Callable[[StoryDocument, SystemDiscoveryContext], QualityOutcome]


class LoopState(StrEnum):
    ROUND = "round"
    CONVERGED = "converged"
    MAX_ROUNDS_REACHED = "max_rounds_reached"


@dataclass
class RefinementResult:
    """Final documents and shared model after the loop stops."""

    documents: list[QualityOutcome]
    context: SystemDiscoveryContext
    rounds: int
    state: LoopState
    passes: int
    relationships: list[Relationship] = field(default_factory=list)
    merge_reports: list[MergeResult] = field(default_factory=list)


class RefinementLoop:
    def __init__(self, settings: Settings):
        self.max_rounds = settings.max_refinement_rounds
        self.threshold = settings.relationship_confidence_threshold

    def _generation_pass(
        self,
        seeds: list[str],
        context: SystemDiscoveryContext,
        generate_fn: GenerateFn,
        judge_fn: JudgeFn,
    ) -> list[QualityOutcome]:
        outcomes = []
        for index, seed in enumerate(seeds):
            document = generate_fn(index, seed, context)
            outcomes.append(judge_fn(document, context))
        return outcomes

    def _high_confidence(self, outcomes: list[QualityOutcome]) -> tuple[int, list[Relationship]]:
        """Return (total surfaced, those at or above the threshold)."""
        surfaced = 0
        kept: list[Relationship] = []
        for outcome in outcomes:
            for rel in outcome.relationships():
                surfaced += 1
                confidence = outcome.confidence(rel)
                if confidence >= self.threshold:
                    kept.append(rel.model_copy(update={"confidence": confidence}))
        return surfaced, kept

    def run(
        self,
        seeds: list[str],
        context: SystemDiscoveryContext,
        generate_fn: GenerateFn,
        judge_fn: JudgeFn,
    ) -> RefinementResult:
        """Run the loop to convergence or the round cap.

        Args:
            seeds: Story seed texts, in order.
            context: Shared model after discovery.
            generate_fn: ``(index, seed, context) -> StoryDocument``.
            judge_fn: ``(document, context) -> QualityOutcome``.

        Returns:
            RefinementResult holding the last pass's outcomes and the final context.
        """
        state = LoopState.ROUND
        round_number = 1
        passes = 0
        merged_relationships: list[Relationship] = []
        merge_reports: list[MergeResult] = []

        while True:
            outcomes = self._generation_pass(seeds, context, generate_fn, judge_fn)
            passes += 1

            if state is LoopState.MAX_ROUNDS_REACHED:
                logger.info("Final pass after %d rounds complete (pass %d)", self.max_rounds, passes)
                break

            surfaced, candidates = self._high_confidence(outcomes)
            if not candidates:
                state = LoopState.CONVERGED
                logger.info(
                    "Round %d: %d relationship(s) surfaced, none >= %.2f; converged",
                    round_number,
                    surfaced,
                    self.threshold,
                )
                break

            before = context.entry_count()
            report = merge(context, candidates)
            context = report.context
            merge_reports.append(report)
            added = context.entry_count() - before
            not_merged = {id(rel) for rel in report.skipped}
            not_merged.update(id(entry.relationship) for entry in report.manual_review)
            merged_relationships.extend(rel for rel in candidates if id(rel) not in not_merged)
            logger.info(
                "Round %d: surfaced=%d, high-confidence=%d, merged=%d, new entries=%d",
                round_number,
                surfaced,
                len(candidates),
                report.merged_count,
                added,
            )

            if added == 0:
                state = LoopState.CONVERGED
                logger.info("Round %d: merge added nothing new; converged", round_number)
                break

            if round_number >= self.max_rounds:
                state = LoopState.MAX_ROUNDS_REACHED
                logger.warning(
                    "Reached %d refinement rounds without converging; running one final pass",
                    self.max_rounds,
                )
                continue

            round_number += 1

        return RefinementResult(
            documents=outcomes,
            context=context,
            rounds=round_number,
            state=state,
            passes=passes,
            relationships=merged_relationships,
            merge_reports=merge_reports,
        )
