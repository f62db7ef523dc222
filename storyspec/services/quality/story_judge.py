"""Rubric judge for single stories and for cross-story consistency."""

import logging

from pydantic import ValidationError as PydanticValidationError

from storyspec.memory.judge_rubric import GlobalConsistencyReport, JudgeRubric
from storyspec.memory.system_context import SystemDiscoveryContext
from storyspec.services.llm_client import ModelGateway
from storyspec.utils.exceptions import JSONParseError, ResponseValidationError
from storyspec.utils.json_parser import extract_json
from storyspec.utils.prompt_registry import PromptRegistry, get_prompt_registry

logger = logging.getLogger(__name__)


def format_system_context(context: SystemDiscoveryContext) -> str:
    """Render the shared model as compact labelled lines for prompts.

    Returns "(no system context)" when there is nothing to show.
    """
    graph = context.component_graph
    contracts = context.shared_contracts
    parts: list[str] = []

    if context.timestamp:
        parts.append(f"Timestamp: {context.timestamp}")
    if graph.components:
        parts.append(
            "Components: "
            + ", ".join(f"{c.id} ({c.product_name})" for c in graph.components.values())
        )
    if graph.composition_edges:
        parts.append(
            "Composition: " + ", ".join(f"{e.parent}→{e.child}" for e in graph.composition_edges)
        )
    if graph.coordination_edges:
        parts.append(
            "Coordination: "
            + ", ".join(
                f"{e.from_component}→{e.to_component} ({e.via})" for e in graph.coordination_edges
            )
        )
    if graph.data_flows:
        parts.append("Data flows: " + ", ".join(f"{d.source}→{d.target}" for d in graph.data_flows))
    if contracts.state_models:
        parts.append("State models: " + ", ".join(s.id for s in contracts.state_models))
    if contracts.event_registry:
        parts.append("Events: " + ", ".join(e.id for e in contracts.event_registry))
    if contracts.standard_states:
        parts.append("Standard states: " + ", ".join(s.type for s in contracts.standard_states))
    if contracts.data_flows:
        parts.append("Contract data flows: " + ", ".join(d.id for d in contracts.data_flows))
    if context.component_roles:
        parts.append(
            "Roles: " + ", ".join(f"{r.component_id}: {r.role}" for r in context.component_roles)
        )
    if context.product_vocabulary:
        parts.append(
            "Vocabulary: "
            + ", ".join(f"{term}→{name}" for term, name in context.product_vocabulary.items())
        )
    if context.reference_documents:
        parts.append(f"Reference documents: {len(context.reference_documents)} item(s)")

    return "\n".join(parts) if parts else "(no system context)"


def parse_judge_rubric(text: str) -> JudgeRubric:
    """Parse judge output into a JudgeRubric.

    Raises:
        JSONParseError: If the output holds no JSON object.
        ResponseValidationError: If the JSON does not match the rubric schema.
    """
    data = extract_json(text)
    if not isinstance(data, dict):
        raise JSONParseError(
            "No valid JSON object in judge response",
            response_preview=text[:500],
            expected_type="JudgeRubric",
        )
    try:
        return JudgeRubric.model_validate(data)
    except PydanticValidationError as e:
        logger.warning("Judge rubric parse errors: %s", e.errors()[:3])
        raise ResponseValidationError(f"Invalid judge rubric: {e.error_count()} error(s)") from e


class StoryJudge:
    """Scores stories against the fixed rubric and surfaces new relationships."""

    def __init__(self, gateway: ModelGateway, registry: PromptRegistry | None = None):
        self.gateway = gateway
        self.registry = registry or get_prompt_registry()

    def judge(self, markdown: str, context: SystemDiscoveryContext) -> JudgeRubric:
        """Judge one rendered story against the current shared model.

        Raises:
            JSONParseError: Output held no JSON.
            ResponseValidationError: Output did not match the rubric.
            LLMError: The model call itself failed.
        """
        logger.debug("Judging story (%d chars)", len(markdown))
        system = self.registry.render_system("judge")
        user = self.registry.render(
            "judge",
            "evaluate",
            system_context=format_system_context(context),
            story=markdown,
        )
        response = self.gateway.send(system, user, role="judge", json_mode=True)
        rubric = parse_judge_rubric(response.text)
        logger.info(
            "Judge: overall=%.1f, recommendation=%s, relationships=%d",
            rubric.overall_score,
            rubric.recommendation,
            len(rubric.new_relationships),
        )
        return rubric

    def judge_global_consistency(
        self, stories: dict[str, str], context: SystemDiscoveryContext
    ) -> GlobalConsistencyReport:
        """Assess consistency across all stories.

        Never raises on bad output: unparseable or schema-invalid responses
        come back as a report with a single zero-confidence issue.

        Args:
            stories: Story id -> rendered markdown, in run order. Each story
                is headed by its id in the prompt.
            context: Current shared model.
        """
        logger.debug("Judging global consistency (%d stories)", len(stories))
        system = self.registry.render("judge", "consistency_system")
        user = self.registry.render(
            "judge",
            "global_consistency",
            system_context=format_system_context(context),
            stories=[{"id": sid, "markdown": markdown} for sid, markdown in stories.items()],
        )
        response = self.gateway.send(system, user, role="consistency", json_mode=True)

        data = extract_json(response.text, strict=False)
        if not isinstance(data, dict):
            return GlobalConsistencyReport.parse_failure()
        try:
            report = GlobalConsistencyReport.model_validate(data)
        except PydanticValidationError as e:
            logger.warning("Global consistency parse errors: %s", e.errors()[:3])
            return GlobalConsistencyReport.parse_failure("Invalid consistency response")

        logger.info(
            "Global consistency: %d issue(s), %d proposed fix(es)",
            len(report.issues),
            len(report.fixes),
        )
        return report
