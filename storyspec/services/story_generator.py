"""Story generation and scoped advisor passes.

The generator writes a whole story in one model call; each advisor then
proposes patches limited to the sections its template declares.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from storyspec.memory.pipeline_state import ProductContext, StoryDocument
from storyspec.memory.story_structure import PatchPath, StoryStructure
from storyspec.memory.system_context import SystemDiscoveryContext
from storyspec.services.image_service import ImageBlock
from storyspec.services.iteration import (
    IterationOutcome,
    apply_outcome,
    detect_refusal,
    interpret_patch_response,
    interpret_structure_response,
)
from storyspec.services.llm_client import ModelGateway
from storyspec.services.patch_orchestrator import PatchMetrics, PatchOrchestrator
from storyspec.services.quality.story_judge import format_system_context
from storyspec.settings import Settings
from storyspec.utils.exceptions import PromptTemplateError, RefusalError
from storyspec.utils.prompt_registry import PromptRegistry, get_prompt_registry
from storyspec.utils.prompt_template import PromptTemplate

logger = logging.getLogger(__name__)

__all__ = [
    "AdvisorSpec",
    "IterationOutcome",
    "StoryGenerator",
    "detect_refusal",
    "load_advisors",
]

MAX_TITLE_LENGTH = 80


@dataclass(frozen=True)
class AdvisorSpec:
    """An advisor pass as declared by its prompt template."""

    advisor_id: str
    name: str
    allowed_paths: tuple[PatchPath, ...]
    order: int
    category: str
    applicable_to: tuple[str, ...] | None  # None means every product type

    def applies_to(self, product_type: str) -> bool:
        return self.applicable_to is None or product_type in self.applicable_to

    @classmethod
    def from_template(cls, template: PromptTemplate) -> AdvisorSpec:
        """Build from template metadata.

        Raises:
            PromptTemplateError: If allowed_paths is missing or names an unknown section.
        """
        raw_paths = template.metadata.get("allowed_paths") or []
        paths = []
        for raw in raw_paths:
            path = PatchPath.parse(str(raw))
            if path is None:
                raise PromptTemplateError(
                    f"Advisor template {template.task} lists unknown section '{raw}'"
                )
            paths.append(path)
        if not paths:
            raise PromptTemplateError(f"Advisor template {template.task} has no allowed_paths")

        applicable = template.metadata.get("applicable_to", "all")
        return cls(
            advisor_id=template.task,
            name=template.description or template.task,
            allowed_paths=tuple(paths),
            order=int(template.metadata.get("order", 100)),
            category=str(template.metadata.get("category", "")),
            applicable_to=None if applicable == "all" else tuple(applicable),
        )


def load_advisors(
    registry: PromptRegistry, advisor_ids: list[str], product_type: str
) -> list[AdvisorSpec]:
    """Resolve configured advisor ids to specs, in workflow order.

    Ids without a template, and advisors that do not apply to the product
    type, are skipped with a log line.
    """
    advisors: list[AdvisorSpec] = []
    for advisor_id in advisor_ids:
        if not registry.has_template("advisor", advisor_id):
            logger.warning("No advisor template for '%s', skipping", advisor_id)
            continue
        spec = AdvisorSpec.from_template(registry.get("advisor", advisor_id))
        if not spec.applies_to(product_type):
            logger.debug("Advisor %s does not apply to %s products", advisor_id, product_type)
            continue
        advisors.append(spec)
    return sorted(advisors, key=lambda a: a.order)


def title_from_seed(seed: str) -> str:
    first_line = seed.strip().splitlines()[0] if seed.strip() else "Untitled story"
    if len(first_line) <= MAX_TITLE_LENGTH:
        return first_line
    return first_line[: MAX_TITLE_LENGTH - 3].rstrip() + "..."


class StoryGenerator:
    """Writes one story against a shared-model snapshot, then runs advisors."""

    def __init__(
        self,
        settings: Settings,
        gateway: ModelGateway,
        registry: PromptRegistry | None = None,
        orchestrator: PatchOrchestrator | None = None,
    ):
        self.settings = settings
        self.gateway = gateway
        self.registry = registry or get_prompt_registry()
        self.orchestrator = orchestrator or PatchOrchestrator()
        self.advisors = load_advisors(self.registry, settings.advisor_ids, settings.product_type)
        logger.debug("Advisors enabled: %s", [a.advisor_id for a in self.advisors])

    @staticmethod
    def _product_context(product_context: ProductContext | None) -> dict | None:
        return product_context.to_wire() if product_context else None

    def generate(
        self,
        story_id: str,
        seed: str,
        context: SystemDiscoveryContext,
        product_context: ProductContext | None = None,
        images: list[ImageBlock] | None = None,
    ) -> StoryDocument:
        """Generate a story document from its seed.

        Returns:
            The document; ``fallback_used`` is set when output was not structured.

        Raises:
            RefusalError: The model refused or returned nothing.
            LLMError: The model call failed.
        """
        system = self.registry.render_system("generator")
        user = self.registry.render(
            "generator",
            "generate",
            seed=seed,
            system_context=format_system_context(context),
            product_context=self._product_context(product_context),
            image_count=len(images or []),
        )
        response = self.gateway.send(system, user, role="generator", images=images, json_mode=True)
        outcome = interpret_structure_response(response.text, self.settings, "Generator")

        document = StoryDocument(
            story_id=story_id,
            seed=seed,
            structure=StoryStructure(
                title=title_from_seed(seed),
                system_context_digest=context.digest(),
                generated_at=datetime.now(UTC).isoformat(),
            ),
        )
        apply_outcome(document, outcome, orchestrator=self.orchestrator, step="generator")
        logger.info(
            "Generated %s: %d items%s",
            story_id,
            document.structure.item_count(),
            " (fallback)" if document.fallback_used else "",
        )
        return document

    def run_advisor(
        self,
        document: StoryDocument,
        advisor: AdvisorSpec,
        context: SystemDiscoveryContext,
        product_context: ProductContext | None = None,
        images: list[ImageBlock] | None = None,
    ) -> PatchMetrics | None:
        """Run one advisor and apply its patches under the advisor's allow-list.

        Raises:
            RefusalError: The advisor output read as a refusal.
        """
        system = self.registry.render_system("advisor")
        user = self.registry.render(
            "advisor",
            advisor.advisor_id,
            story=document.markdown,
            system_context=format_system_context(context),
            allowed_paths=[str(p) for p in advisor.allowed_paths],
            product_context=self._product_context(product_context),
            image_count=len(images or []),
        )
        response = self.gateway.send(system, user, role="advisor", images=images, json_mode=True)
        outcome = interpret_patch_response(response.text, self.settings, advisor.advisor_id)
        return apply_outcome(
            document,
            outcome,
            orchestrator=self.orchestrator,
            step=advisor.advisor_id,
            allowed_paths=advisor.allowed_paths,
        )

    def apply_advisors(
        self,
        document: StoryDocument,
        context: SystemDiscoveryContext,
        product_context: ProductContext | None = None,
        images: list[ImageBlock] | None = None,
    ) -> PatchMetrics:
        """Run every enabled advisor in order.

        A refusal from one advisor is logged and skipped; the rest still run.
        """
        totals = PatchMetrics()
        for advisor in self.advisors:
            try:
                metrics = self.run_advisor(document, advisor, context, product_context, images)
            except RefusalError as e:
                logger.warning("Advisor %s refused on %s: %s", advisor.advisor_id, document.story_id, e)
                document.iteration_log.append(f"{advisor.advisor_id}: refused")
                continue
            if metrics is not None:
                totals.merge(metrics)
        if totals.total_patches:
            logger.info(
                "Advisors on %s: %d applied, %d rejected (path=%d, validation=%d)",
                document.story_id,
                totals.applied,
                totals.rejected,
                totals.rejected_path,
                totals.rejected_validation,
            )
        return totals
