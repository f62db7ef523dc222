"""Per-story interconnection pass: UI mapping, contracts, ownership, sibling links."""

import logging

from pydantic import ValidationError as PydanticValidationError

from storyspec.memory.interconnections import Ownership, StoryInterconnections
from storyspec.memory.pipeline_state import StoryDocument
from storyspec.memory.system_context import SystemDiscoveryContext
from storyspec.services.llm_client import ModelGateway
from storyspec.services.quality.story_judge import format_system_context
from storyspec.utils.exceptions import JSONParseError, ResponseValidationError
from storyspec.utils.json_parser import extract_json
from storyspec.utils.prompt_registry import PromptRegistry, get_prompt_registry

logger = logging.getLogger(__name__)


def _known(ids: list[str], known: set[str], label: str, story_id: str) -> list[str]:
    kept = [i for i in ids if i in known]
    dropped = [i for i in ids if i not in known]
    if dropped:
        logger.info("%s: dropped %d unknown %s id(s): %s", story_id, len(dropped), label, dropped)
    return kept


def sanitize_interconnections(
    raw: StoryInterconnections,
    story_id: str,
    context: SystemDiscoveryContext,
    sibling_ids: list[str],
) -> StoryInterconnections:
    """Keep only references that resolve.

    Contract and ownership ids must exist in the shared model; related stories
    must be siblings. The story id is always the one that was asked about.
    """
    known = context.known_ids()
    ownership = raw.ownership
    siblings = set(sibling_ids)
    related = [r for r in raw.related_stories if r.story_id in siblings and r.story_id != story_id]
    if len(related) < len(raw.related_stories):
        logger.info(
            "%s: dropped %d related-story link(s) to unknown stories",
            story_id,
            len(raw.related_stories) - len(related),
        )
    return StoryInterconnections(
        story_id=story_id,
        ui_mapping={term: target for term, target in raw.ui_mapping.items() if term and target},
        contract_dependencies=_known(raw.contract_dependencies, known, "contract", story_id),
        ownership=Ownership(
            owns_state=_known(ownership.owns_state, known, "state", story_id),
            consumes_state=_known(ownership.consumes_state, known, "state", story_id),
            emits_events=_known(ownership.emits_events, known, "event", story_id),
            listens_to_events=_known(ownership.listens_to_events, known, "event", story_id),
        ),
        related_stories=related,
    )


class InterconnectionService:
    def __init__(self, gateway: ModelGateway, registry: PromptRegistry | None = None):
        self.gateway = gateway
        self.registry = registry or get_prompt_registry()

    def extract(
        self,
        document: StoryDocument,
        siblings: list[StoryDocument],
        context: SystemDiscoveryContext,
    ) -> StoryInterconnections:
        """Extract interconnections for one story.

        Raises:
            JSONParseError: Output held no JSON object.
            ResponseValidationError: Output did not match the schema.
            LLMError: The model call failed.
        """
        others = [s for s in siblings if s.story_id != document.story_id]
        system = self.registry.render_system("interconnection")
        user = self.registry.render(
            "interconnection",
            "extract",
            story_id=document.story_id,
            story=document.markdown,
            siblings=[{"id": s.story_id, "title": s.structure.title} for s in others],
            system_context=format_system_context(context),
        )
        response = self.gateway.send(system, user, role="interconnection", json_mode=True)

        data = extract_json(response.text)
        if not isinstance(data, dict):
            raise JSONParseError(
                "Interconnection response is not a JSON object",
                response_preview=response.text[:500],
                expected_type="StoryInterconnections",
            )
        data.setdefault("storyId", document.story_id)
        try:
            raw = StoryInterconnections.model_validate(data)
        except PydanticValidationError as e:
            raise ResponseValidationError(
                f"Invalid interconnections for {document.story_id}: {e.error_count()} error(s)"
            ) from e

        result = sanitize_interconnections(
            raw, document.story_id, context, [s.story_id for s in others]
        )
        logger.info(
            "Interconnections for %s: %d UI terms, %d contracts, %d related",
            document.story_id,
            len(result.ui_mapping),
            len(result.contract_dependencies),
            len(result.related_stories),
        )
        return result
