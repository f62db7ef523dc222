"""Interconnection stage for PipelineOrchestrator."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from storyspec.utils.exceptions import (
    JSONParseError,
    LLMError,
    ResponseValidationError,
    summarize_llm_error,
)

if TYPE_CHECKING:
    from . import PipelineOrchestrator, RunState

logger = logging.getLogger(__name__)


def run_interconnection(orc: PipelineOrchestrator, run: RunState) -> None:
    """Extract interconnections for every story, one model call each.

    A story whose call fails keeps going without the metadata block.

    Args:
        orc: PipelineOrchestrator instance.
        run: Per-run state; ``interconnections`` is filled per story id.
    """
    context = run.require_context()
    documents = list(run.documents.values())
    orc._emit("stage_start", "interconnection", f"Linking {len(documents)} stories")

    failed = 0
    for document in documents:
        try:
            run.interconnections[document.story_id] = orc.interconnection.extract(
                document, documents, context
            )
        except (LLMError, JSONParseError, ResponseValidationError) as e:
            failed += 1
            reason = summarize_llm_error(e)
            logger.warning("Interconnection failed for %s: %s", document.story_id, reason)
            orc._emit(
                "warning",
                "interconnection",
                f"No interconnection metadata for {document.story_id}",
                {"error": reason},
            )

    run.metadata.passes_completed.append("interconnection")
    orc._emit(
        "stage_complete",
        "interconnection",
        f"Interconnections extracted for {len(documents) - failed}/{len(documents)} stories",
    )
