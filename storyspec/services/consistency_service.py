"""Global consistency pass: detect cross-story issues, auto-apply the safe fixes.

A fix auto-applies only when its confidence is strictly above the configured
threshold and its type is allow-listed. It then goes through the patch
orchestrator scoped to the fix's own section, like any other patch.
"""

import logging
from dataclasses import dataclass, field

from storyspec.memory.judge_rubric import ConsistencyFix, GlobalConsistencyReport
from storyspec.memory.pipeline_state import ManualReviewItem, StoryDocument
from storyspec.memory.story_structure import PatchMetadata, PatchPath, SectionPatch
from storyspec.memory.system_context import SystemDiscoveryContext
from storyspec.services.patch_orchestrator import PatchOrchestrator
from storyspec.services.quality.story_judge import StoryJudge
from storyspec.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class FixSummary:
    """Outcome of applying one consistency report."""

    documents: dict[str, StoryDocument]
    applied: int = 0
    rejected: int = 0
    flagged: int = 0
    changed_story_ids: list[str] = field(default_factory=list)
    manual_review: list[ManualReviewItem] = field(default_factory=list)


class ConsistencyService:
    def __init__(
        self,
        settings: Settings,
        judge: StoryJudge,
        orchestrator: PatchOrchestrator | None = None,
    ):
        self.settings = settings
        self.judge = judge
        self.orchestrator = orchestrator or PatchOrchestrator()

    def check(self, stories: dict[str, str], context: SystemDiscoveryContext) -> GlobalConsistencyReport:
        """Ask the judge for a report over story id -> rendered markdown."""
        return self.judge.judge_global_consistency(stories, context)

    def is_auto_applicable(self, fix: ConsistencyFix) -> bool:
        return (
            fix.confidence > self.settings.auto_fix_confidence_threshold
            and fix.type in self.settings.auto_fix_types
        )

    def apply_fixes(
        self, report: GlobalConsistencyReport, documents: dict[str, StoryDocument]
    ) -> FixSummary:
        """Apply eligible fixes to copies of the documents.

        Args:
            report: Consistency report from ``check``.
            documents: Story id -> document (not mutated).

        Returns:
            FixSummary with the new documents and applied/rejected/flagged counts.
            Flagged and rejected fixes are listed for manual review.
        """
        summary = FixSummary(
            documents={sid: doc.model_copy(deep=True) for sid, doc in documents.items()}
        )

        for fix in report.fixes:
            if not self.is_auto_applicable(fix):
                summary.flagged += 1
                summary.manual_review.append(
                    ManualReviewItem(
                        source="consistency",
                        reason=f"Fix not auto-applicable (type={fix.type}, confidence={fix.confidence:.2f})",
                        story_id=fix.story_id,
                        detail=fix.to_wire(),
                    )
                )
                continue

            reason = self._apply_one(fix, summary)
            if reason is None:
                summary.applied += 1
                if fix.story_id not in summary.changed_story_ids:
                    summary.changed_story_ids.append(fix.story_id)
            else:
                summary.rejected += 1
                summary.manual_review.append(
                    ManualReviewItem(
                        source="consistency",
                        reason=reason,
                        story_id=fix.story_id,
                        detail=fix.to_wire(),
                    )
                )
                logger.info("Consistency fix rejected for %s: %s", fix.story_id, reason)

        logger.info(
            "Consistency fixes: %d applied, %d rejected, %d flagged",
            summary.applied,
            summary.rejected,
            summary.flagged,
        )
        return summary

    def _apply_one(self, fix: ConsistencyFix, summary: FixSummary) -> str | None:
        """Apply one fix in place on the summary's documents; return a rejection reason or None."""
        path = PatchPath.parse(fix.path)
        if path is None:
            return f"Unknown section path: {fix.path}"
        document = summary.documents.get(fix.story_id)
        if document is None:
            return f"Unknown story: {fix.story_id}"

        patch = SectionPatch(
            op=fix.operation,
            path=path,
            item=fix.item,
            match=fix.match,
            metadata=PatchMetadata(advisor_id=f"consistency:{fix.type}", reasoning=fix.reasoning),
        )
        structure, metrics = self.orchestrator.apply_patches(document.structure, [patch], [path])
        if not metrics.applied:
            return "; ".join(metrics.rejected_reasons) or "Patch not applied"
        document.structure = structure
        document.iteration_log.append(f"consistency:{fix.type}: applied to {path}")
        return None
