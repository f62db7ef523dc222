"""System discovery: one model call over every story to seed the shared model.

The model reports raw mentions and canonical names only. Classification and
stable-id minting happen here, deterministically.
"""

import logging
from dataclasses import dataclass, field

from pydantic import ValidationError as PydanticValidationError

from storyspec.memory.pipeline_state import ProductContext
from storyspec.memory.system_context import (
    Component,
    EventDefinition,
    StateModel,
    SystemDiscoveryContext,
    SystemDiscoveryMentions,
)
from storyspec.services.id_registry import EntityKind, IDRegistry
from storyspec.services.image_service import ImageBlock
from storyspec.services.llm_client import ModelGateway
from storyspec.settings import Settings
from storyspec.utils.exceptions import DiscoveryError, JSONParseError, LLMError
from storyspec.utils.json_parser import extract_json
from storyspec.utils.prompt_registry import PromptRegistry, get_prompt_registry

logger = logging.getLogger(__name__)

_MENTION_FIELDS = {
    EntityKind.COMPONENT: "components",
    EntityKind.STATE_MODEL: "state_models",
    EntityKind.EVENT: "events",
}


@dataclass
class DiscoveryResult:
    context: SystemDiscoveryContext
    mentions: SystemDiscoveryMentions
    ids: dict[str, str] = field(default_factory=dict)  # canonical name -> stable id
    kinds: dict[str, EntityKind] = field(default_factory=dict)


def classify_canonical_name(
    canonical_name: str,
    aliases: list[str],
    mentions: SystemDiscoveryMentions,
    preference: list[str],
) -> EntityKind:
    """Pick exactly one kind for a canonical name.

    A kind is a candidate when the name or any of its aliases appears in that
    kind's mention list. Ties go to the earliest kind in ``preference``; a name
    with no matching mention takes the first preferred kind.
    """
    names = {canonical_name, *aliases}
    for kind_value in preference:
        kind = EntityKind(kind_value)
        pool = getattr(mentions.mentions, _MENTION_FIELDS[kind])
        if names.intersection(pool):
            return kind
    return EntityKind(preference[0])


def build_context(
    mentions: SystemDiscoveryMentions,
    registry: IDRegistry,
    preference: list[str],
    reference_documents: list[str] | None = None,
) -> DiscoveryResult:
    """Classify, mint and seed a fresh shared model from discovery output.

    The four standard states are always present on the result.
    """
    context = SystemDiscoveryContext(reference_documents=reference_documents or None)
    result = DiscoveryResult(context=context, mentions=mentions)
    contracts = context.shared_contracts

    canonical = mentions.canonical_names
    grouped = {alias for aliases in canonical.values() for alias in aliases} | set(canonical)
    orphans = [
        mention
        for field_name in _MENTION_FIELDS.values()
        for mention in getattr(mentions.mentions, field_name)
        if mention not in grouped
    ]
    if orphans:
        logger.debug("Discovery: %d mention(s) not tied to a canonical name: %s", len(orphans), orphans[:10])

    for name, aliases in canonical.items():
        if not name.strip():
            continue
        kind = classify_canonical_name(name, aliases, mentions, preference)
        stable_id = registry.mint(name, kind)
        result.ids[name] = stable_id
        result.kinds[name] = kind

        if kind is EntityKind.COMPONENT:
            if not context.has_component(stable_id):
                context.component_graph.components[stable_id] = Component(
                    id=stable_id, product_name=name
                )
        elif kind is EntityKind.STATE_MODEL:
            if not context.has_state_model(stable_id):
                contracts.state_models.append(StateModel(id=stable_id, name=name))
        elif not context.has_event(stable_id):
            contracts.event_registry.append(EventDefinition(id=stable_id, name=name))

    vocabulary: dict[str, str] = {}
    for name, aliases in canonical.items():
        for alias in aliases:
            if alias and alias != name:
                vocabulary.setdefault(alias, name)
    vocabulary.update({k: v for k, v in mentions.vocabulary.items() if k and v})
    context.product_vocabulary = vocabulary

    logger.info(
        "Discovery seeded %d components, %d state models, %d events, %d vocabulary terms",
        len(context.component_graph.components),
        len(contracts.state_models),
        len(contracts.event_registry),
        len(vocabulary),
    )
    return result


class DiscoveryService:
    def __init__(
        self,
        settings: Settings,
        gateway: ModelGateway,
        registry: PromptRegistry | None = None,
    ):
        self.settings = settings
        self.gateway = gateway
        self.registry = registry or get_prompt_registry()

    def discover(
        self,
        stories: list[str],
        id_registry: IDRegistry,
        reference_documents: list[str] | None = None,
        images: list[ImageBlock] | None = None,
        product_context: ProductContext | None = None,
    ) -> DiscoveryResult:
        """Run discovery over all stories.

        Raises:
            DiscoveryError: The model call failed or returned nothing usable.
        """
        system = self.registry.render_system("discovery")
        user = self.registry.render(
            "discovery",
            "extract",
            stories=stories,
            reference_documents=reference_documents or [],
            product_context=product_context.to_wire() if product_context else None,
            image_count=len(images or []),
        )
        try:
            response = self.gateway.send(system, user, role="discovery", images=images, json_mode=True)
        except LLMError as e:
            raise DiscoveryError(f"Discovery model call failed: {e}") from e

        try:
            data = extract_json(response.text)
            if not isinstance(data, dict):
                raise DiscoveryError("Discovery response is not a JSON object")
            mentions = SystemDiscoveryMentions.model_validate(data)
        except JSONParseError as e:
            raise DiscoveryError(f"Discovery response could not be parsed: {e}") from e
        except PydanticValidationError as e:
            raise DiscoveryError(
                f"Discovery response failed validation: {e.error_count()} error(s)"
            ) from e

        return build_context(
            mentions,
            id_registry,
            self.settings.classification_preference,
            reference_documents,
        )
