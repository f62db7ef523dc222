"""Global consistency stage for PipelineOrchestrator."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from storyspec.memory.judge_rubric import GlobalConsistencyReport
from storyspec.services.story_renderer import append_interconnection_metadata, to_markdown
from storyspec.utils.exceptions import LLMError, summarize_llm_error

if TYPE_CHECKING:
    from . import PipelineOrchestrator, RunState

logger = logging.getLogger(__name__)


def interconnected_markdown(run: RunState) -> dict[str, str]:
    """Story id -> rendered story, with its interconnection block when it has one."""
    markdowns = {}
    for story_id, document in run.documents.items():
        interconnections = run.interconnections.get(story_id)
        if interconnections is None:
            markdowns[story_id] = document.markdown
        else:
            markdowns[story_id] = append_interconnection_metadata(
                document.markdown, interconnections
            )
    return markdowns


def run_consistency(orc: PipelineOrchestrator, run: RunState) -> None:
    """Check every story together and auto-apply the eligible fixes.

    Args:
        orc: PipelineOrchestrator instance.
        run: Per-run state; documents are replaced by their fixed copies.
    """
    context = run.require_context()
    orc._emit("stage_start", "consistency", "Checking cross-story consistency")

    try:
        report = orc.consistency.check(interconnected_markdown(run), context)
    except LLMError as e:
        reason = summarize_llm_error(e)
        logger.error("Consistency check failed: %s", reason)
        orc._emit("warning", "consistency", "Consistency check failed", {"error": reason})
        report = GlobalConsistencyReport.parse_failure(f"Consistency check failed: {reason}")

    run.consistency_report = report
    summary = orc.consistency.apply_fixes(report, run.documents)

    for story_id in summary.changed_story_ids:
        document = summary.documents[story_id]
        if document.fallback_used:
            logger.debug("%s keeps its unstructured body; fix recorded on the structure only", story_id)
            continue
        document.markdown = to_markdown(document.structure)
    run.documents = summary.documents

    metadata = run.metadata
    metadata.fixes_applied = summary.applied
    metadata.fixes_rejected = summary.rejected
    metadata.fixes_flagged = summary.flagged
    metadata.manual_review.extend(summary.manual_review)
    metadata.passes_completed.append("consistency")

    orc._emit(
        "stage_complete",
        "consistency",
        f"{len(report.issues)} issue(s); fixes applied={summary.applied}, "
        f"rejected={summary.rejected}, flagged={summary.flagged}",
    )
