"""Pipeline orchestrator that sequences every stage of a run.

Discovery -> generation with refinement -> interconnection -> global
consistency. Stage logic lives in the private modules; each stage function
takes the orchestrator and the per-run state.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from storyspec.memory.interconnections import StoryInterconnections
from storyspec.memory.judge_rubric import GlobalConsistencyReport, Relationship
from storyspec.memory.pipeline_state import (
    PipelineInput,
    PipelineResult,
    RunMetadata,
    StoryDocument,
    StoryResult,
)
from storyspec.memory.system_context import SystemDiscoveryContext
from storyspec.services.consistency_service import ConsistencyService
from storyspec.services.discovery_service import DiscoveryService
from storyspec.services.id_registry import IDRegistry
from storyspec.services.image_service import ImageBlock
from storyspec.services.interconnection_service import InterconnectionService
from storyspec.services.llm_client import ModelGateway
from storyspec.services.patch_orchestrator import PatchOrchestrator
from storyspec.services.quality import QualityGate, QualityOutcome, StoryJudge, StoryRewriter
from storyspec.services.refinement_loop import RefinementLoop
from storyspec.services.story_generator import StoryGenerator
from storyspec.services.story_renderer import append_interconnection_metadata
from storyspec.settings import Settings
from storyspec.utils.exceptions import DiscoveryError
from storyspec.utils.logging_config import log_context, log_performance
from storyspec.utils.prompt_registry import PromptRegistry, get_prompt_registry

from . import _consistency, _discovery, _interconnection, _persistence, _refinement

logger = logging.getLogger(__name__)

EMPTY_INPUT_MESSAGE = "No stories supplied; nothing to process"

# Share of overall progress each stage accounts for (sums to 1.0)
STAGE_WEIGHTS = {
    "discovery": 0.1,
    "refinement": 0.6,
    "interconnection": 0.2,
    "consistency": 0.1,
}


@dataclass
class WorkflowEvent:
    """An event in the run, kept for callers that report progress."""

    event_type: str  # "stage_start", "stage_complete", "warning", "error", "complete"
    stage: str
    message: str
    data: dict[str, Any] | None = None
    timestamp: datetime | None = None
    correlation_id: str | None = None
    progress: float | None = None  # Overall progress 0.0-1.0


@dataclass
class RunState:
    """Mutable per-run working state threaded through the stage functions."""

    seeds: list[str]
    pipeline_input: PipelineInput
    metadata: RunMetadata
    id_registry: IDRegistry = field(default_factory=IDRegistry)
    images: list[ImageBlock] = field(default_factory=list)
    context: SystemDiscoveryContext | None = None
    outcomes: list[QualityOutcome] = field(default_factory=list)
    documents: dict[str, StoryDocument] = field(default_factory=dict)
    relationships: list[Relationship] = field(default_factory=list)
    interconnections: dict[str, StoryInterconnections] = field(default_factory=dict)
    consistency_report: GlobalConsistencyReport | None = None
    generation_failures: dict[str, str] = field(default_factory=dict)  # story id -> reason

    def require_context(self) -> SystemDiscoveryContext:
        if self.context is None:
            raise RuntimeError("Shared model not available; discovery has not run")
        return self.context


class PipelineOrchestrator:
    """Runs the whole batch: one shared model threaded through every story."""

    def __init__(
        self,
        settings: Settings | None = None,
        gateway: ModelGateway | None = None,
        registry: PromptRegistry | None = None,
        advisors_enabled: bool = True,
    ):
        """Create the orchestrator and wire up its services.

        Parameters:
            settings: Application settings; when None the default settings are loaded.
            gateway: Model gateway; when None one is built from settings.
            registry: Prompt registry; when None the shared registry is used.
            advisors_enabled: Run the advisor passes after each generation.
        """
        self.settings = settings or Settings.load()
        self.gateway = gateway or ModelGateway(self.settings)
        self.registry = registry or get_prompt_registry(self.settings.prompt_templates_dir or None)
        self.advisors_enabled = advisors_enabled

        self.patcher = PatchOrchestrator()
        self.discovery = DiscoveryService(self.settings, self.gateway, self.registry)
        self.generator = StoryGenerator(self.settings, self.gateway, self.registry, self.patcher)
        self.judge = StoryJudge(self.gateway, self.registry)
        self.rewriter = StoryRewriter(self.gateway, self.registry)
        self.quality_gate = QualityGate(self.settings, self.judge, self.rewriter, self.patcher)
        self.refinement = RefinementLoop(self.settings)
        self.interconnection = InterconnectionService(self.gateway, self.registry)
        self.consistency = ConsistencyService(self.settings, self.judge, self.patcher)

        # Use deque with maxlen to prevent unbounded memory growth
        self.events: deque[WorkflowEvent] = deque(maxlen=self.settings.workflow_max_events)
        self._correlation_id: str | None = None
        self._completed_weight = 0.0

    def _emit(
        self, event_type: str, stage: str, message: str, data: dict[str, Any] | None = None
    ) -> WorkflowEvent:
        """Record a workflow event stamped with time, correlation id and progress."""
        if event_type == "stage_complete":
            self._completed_weight = min(1.0, self._completed_weight + STAGE_WEIGHTS.get(stage, 0.0))
        event = WorkflowEvent(
            event_type=event_type,
            stage=stage,
            message=message,
            data=data or {},
            timestamp=datetime.now(),
            correlation_id=self._correlation_id,
            progress=round(self._completed_weight, 3),
        )
        self.events.append(event)
        return event

    def clear_events(self) -> None:
        """Drop events left over from an earlier run."""
        self.events.clear()

    def run(self, pipeline_input: PipelineInput) -> PipelineResult:
        """Run every stage over the input batch.

        Returns:
            PipelineResult with the converged shared model, one result per
            story, the consistency report and run metadata. Empty input
            returns an informational result without calling the model.

        Raises:
            DiscoveryError: Discovery failed; nothing downstream can run.
        """
        self.clear_events()
        seeds = pipeline_input.non_empty_stories()
        if not seeds:
            logger.info("Pipeline run skipped: no non-empty stories")
            self._emit("complete", "pipeline", EMPTY_INPUT_MESSAGE)
            return PipelineResult(success=True, message=EMPTY_INPUT_MESSAGE)

        self._completed_weight = 0.0
        with log_context() as correlation_id:
            self._correlation_id = correlation_id
            logger.info("Pipeline run started: %d stories", len(seeds))
            run = RunState(
                seeds=seeds,
                pipeline_input=pipeline_input,
                metadata=RunMetadata(
                    started_at=datetime.now(UTC).isoformat(), correlation_id=correlation_id
                ),
            )
            usage_before = (
                self.gateway.usage.calls,
                self.gateway.usage.input_tokens,
                self.gateway.usage.output_tokens,
            )

            try:
                with log_performance(logger, "Discovery"):
                    _discovery.run_discovery(self, run)
            except DiscoveryError as e:
                self._emit("error", "discovery", str(e))
                raise

            with log_performance(logger, "Generation with refinement"):
                _refinement.run_refinement(self, run)
            with log_performance(logger, "Interconnection"):
                _interconnection.run_interconnection(self, run)
            with log_performance(logger, "Global consistency"):
                _consistency.run_consistency(self, run)

            metadata = run.metadata
            metadata.model_calls = self.gateway.usage.calls - usage_before[0]
            metadata.input_tokens = self.gateway.usage.input_tokens - usage_before[1]
            metadata.output_tokens = self.gateway.usage.output_tokens - usage_before[2]
            metadata.finished_at = datetime.now(UTC).isoformat()

            result = PipelineResult(
                success=True,
                message=self._summary(run),
                context=run.context,
                stories=self._story_results(run),
                consistency_report=run.consistency_report,
                relationships=run.relationships,
                metadata=metadata,
            )
            logger.info("Pipeline run finished: %s", result.message)
            self._emit("complete", "pipeline", result.message)
            return result

    @staticmethod
    def _story_results(run: RunState) -> list[StoryResult]:
        results = []
        for outcome in run.outcomes:
            document = run.documents.get(outcome.document.story_id, outcome.document)
            interconnections = run.interconnections.get(document.story_id)
            markdown = document.markdown
            if interconnections is not None:
                markdown = append_interconnection_metadata(markdown, interconnections)
            results.append(
                StoryResult(
                    story_id=document.story_id,
                    seed=document.seed,
                    structure=document.structure,
                    markdown=markdown,
                    rubric_history=outcome.history,
                    needs_manual_review=outcome.needs_manual_review,
                    final_score=outcome.final_score,
                    review_reason=outcome.reason,
                    interconnections=interconnections,
                )
            )
        return results

    @staticmethod
    def _summary(run: RunState) -> str:
        flagged = sum(1 for o in run.outcomes if o.needs_manual_review)
        return (
            f"{len(run.outcomes)} stories processed in {run.metadata.refinement_rounds} "
            f"refinement round(s) ({run.metadata.loop_state}); {flagged} need manual review; "
            f"fixes applied={run.metadata.fixes_applied}, rejected={run.metadata.fixes_rejected}, "
            f"flagged={run.metadata.fixes_flagged}"
        )

    def save(self, result: PipelineResult, output_dir: Path | str | None = None) -> Path:
        """Persist a run's artifacts.

        Args:
            result: Result returned by ``run``.
            output_dir: Target directory. Defaults to a timestamped folder
                under the configured output directory.

        Returns:
            The directory written.
        """
        if output_dir is None:
            stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
            suffix = result.metadata.correlation_id or "run"
            output_dir = self.settings.get_output_dir() / f"{stamp}-{suffix}"
        return _persistence.save_run(result, output_dir)


__all__ = [
    "EMPTY_INPUT_MESSAGE",
    "PipelineOrchestrator",
    "RunState",
    "WorkflowEvent",
]
