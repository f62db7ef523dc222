"""Discovery stage for PipelineOrchestrator."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from storyspec.memory.pipeline_state import ManualReviewItem
from storyspec.services.image_service import load_image
from storyspec.utils.exceptions import ImageSupplyError

if TYPE_CHECKING:
    from . import PipelineOrchestrator, RunState

logger = logging.getLogger(__name__)


def load_run_images(orc: PipelineOrchestrator, run: RunState) -> None:
    """Resolve the run's image references.

    An image that cannot be loaded is left out and listed for manual review;
    the run continues with the rest.
    """
    for reference in run.pipeline_input.images:
        try:
            run.images.append(load_image(reference))
        except ImageSupplyError as e:
            logger.warning("Skipping image %s: %s", e.reference[:80], e)
            run.metadata.manual_review.append(
                ManualReviewItem(
                    source="image",
                    reason=str(e),
                    detail={"reference": e.reference[:200]},
                )
            )
            orc._emit("warning", "discovery", f"Image skipped: {e}")
    if run.images:
        logger.info("Loaded %d image(s)", len(run.images))


def run_discovery(orc: PipelineOrchestrator, run: RunState) -> None:
    """Build the initial shared model from every story.

    Args:
        orc: PipelineOrchestrator instance.
        run: Per-run state; ``context`` is set on success.

    Raises:
        DiscoveryError: The discovery call failed or returned nothing usable.
    """
    orc._emit("stage_start", "discovery", f"Discovering shared model across {len(run.seeds)} stories")
    load_run_images(orc, run)

    result = orc.discovery.discover(
        run.seeds,
        run.id_registry,
        reference_documents=run.pipeline_input.reference_documents or None,
        images=run.images or None,
        product_context=run.pipeline_input.product_context,
    )
    run.context = result.context
    run.metadata.passes_completed.append("discovery")
    orc._emit(
        "stage_complete",
        "discovery",
        f"Shared model seeded with {result.context.entry_count()} entries",
        {"ids": dict(result.ids)},
    )
