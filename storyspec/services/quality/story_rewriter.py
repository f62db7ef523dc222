"""Rewrites a low-scoring story to resolve the judge's listed violations."""

import logging

from storyspec.memory.judge_rubric import JudgeRubric
from storyspec.memory.system_context import SystemDiscoveryContext
from storyspec.services.iteration import IterationOutcome, interpret_structure_response
from storyspec.services.llm_client import ModelGateway
from storyspec.services.quality.story_judge import format_system_context
from storyspec.utils.prompt_registry import PromptRegistry, get_prompt_registry

logger = logging.getLogger(__name__)


class StoryRewriter:
    def __init__(self, gateway: ModelGateway, registry: PromptRegistry | None = None):
        self.gateway = gateway
        self.registry = registry or get_prompt_registry()

    def rewrite(
        self, markdown: str, rubric: JudgeRubric, context: SystemDiscoveryContext
    ) -> IterationOutcome:
        """Ask the model for a corrected StoryStructure.

        Args:
            markdown: Current rendered story.
            rubric: Judgment whose violations should be fixed.
            context: Current shared model.

        Returns:
            ``success`` with the rewritten structure, ``fallback`` with raw
            text when the output is not structured, or ``error`` on refusal.
        """
        violations = rubric.violation_summaries
        logger.debug("Rewriting story for %d violation(s)", len(violations))
        system = self.registry.render_system("rewriter")
        user = self.registry.render(
            "rewriter",
            "rewrite",
            system_context=format_system_context(context),
            violations=violations,
            overall_score=rubric.overall_score,
            story=markdown,
        )
        response = self.gateway.send(system, user, role="rewriter", json_mode=True)
        return interpret_structure_response(response.text, self.gateway.settings, "Rewriter")
