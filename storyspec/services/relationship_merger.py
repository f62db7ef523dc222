"""Folds judge-discovered relationships into the shared system model.

The merge is add-only: new nodes and edges are appended, existing entries
are never changed, and anything ambiguous (edits, dangling edges, unknown
operations or kinds) is routed to manual review instead of being guessed.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from storyspec.memory.judge_rubric import Relationship, RelationshipOperation
from storyspec.memory.system_context import (
    Component,
    CompositionEdge,
    CoordinationEdge,
    EventDefinition,
    StateModel,
    SystemDiscoveryContext,
)

logger = logging.getLogger(__name__)

COMPOSITION_EDGE_NAMES = frozenset({"composed-of", "contains"})
COORDINATION_EDGE_NAMES = frozenset({"coordinates-with", "communicates-with"})

EDIT_REVIEW_REASON = "Edit operations require manual review (add-only policy)"


class _Outcome(Enum):
    MERGED = "merged"
    SKIPPED = "skipped"
    REVIEW = "review"


@dataclass
class ManualReviewEntry:
    relationship: Relationship
    reason: str


@dataclass
class MergeResult:
    """Result of one merge call; ``context`` is a new value, the input is untouched."""

    context: SystemDiscoveryContext
    merged_count: int = 0
    skipped: list[Relationship] = field(default_factory=list)
    manual_review: list[ManualReviewEntry] = field(default_factory=list)


def merge(context: SystemDiscoveryContext, relationships: list[Relationship]) -> MergeResult:
    """Merge relationships into a copy of the context.

    Args:
        context: Current shared model (not mutated).
        relationships: Candidate relationships, usually already confidence-filtered.

    Returns:
        MergeResult with the updated context and per-relationship outcomes.
    """
    result = MergeResult(context=context.model_copy(deep=True))

    for relationship in relationships:
        outcome, reason = _merge_one(result.context, relationship)
        if outcome is _Outcome.MERGED:
            result.merged_count += 1
        elif outcome is _Outcome.SKIPPED:
            result.skipped.append(relationship)
        else:
            result.manual_review.append(ManualReviewEntry(relationship, reason))
            logger.debug("Manual review: %s (%s)", relationship.describe(), reason)

    logger.info(
        "Merge summary: %d merged, %d skipped (duplicates), %d flagged for manual review",
        result.merged_count,
        len(result.skipped),
        len(result.manual_review),
    )
    return result


def _merge_one(context: SystemDiscoveryContext, rel: Relationship) -> tuple[_Outcome, str]:
    """Apply one relationship to the working copy in place."""
    operation = rel.operation
    if operation in (RelationshipOperation.EDIT_NODE, RelationshipOperation.EDIT_EDGE):
        return _Outcome.REVIEW, EDIT_REVIEW_REASON
    if operation == RelationshipOperation.ADD_NODE:
        return _merge_add_node(context, rel)
    if operation == RelationshipOperation.ADD_EDGE:
        return _merge_add_edge(context, rel)
    return _Outcome.REVIEW, f"Unknown operation: {operation}"


def _merge_add_node(context: SystemDiscoveryContext, rel: Relationship) -> tuple[_Outcome, str]:
    canonical_name = rel.canonical_name or rel.name
    if not rel.id or not canonical_name:
        return _Outcome.REVIEW, "add_node missing required fields (id, canonicalName or name)"

    graph = context.component_graph
    contracts = context.shared_contracts

    if rel.type == "component":
        if context.has_component(rel.id):
            return _Outcome.SKIPPED, ""
        graph.components[rel.id] = Component(id=rel.id, product_name=canonical_name)
        return _Outcome.MERGED, ""

    if rel.type == "stateModel":
        if context.has_state_model(rel.id):
            return _Outcome.SKIPPED, ""
        contracts.state_models.append(StateModel(id=rel.id, name=canonical_name))
        return _Outcome.MERGED, ""

    if rel.type == "event":
        if context.has_event(rel.id):
            return _Outcome.SKIPPED, ""
        contracts.event_registry.append(EventDefinition(id=rel.id, name=canonical_name))
        return _Outcome.MERGED, ""

    return _Outcome.REVIEW, f"Unknown node type: {rel.type}"


def _merge_add_edge(context: SystemDiscoveryContext, rel: Relationship) -> tuple[_Outcome, str]:
    name, source, target = rel.name, rel.source, rel.target
    if not name or not source or not target:
        return _Outcome.REVIEW, "add_edge missing required fields (name, source, target)"

    if not (context.has_component(source) and context.has_component(target)):
        return (
            _Outcome.REVIEW,
            f"Entity references do not exist (source: {source}, target: {target})",
        )

    graph = context.component_graph
    if name in COMPOSITION_EDGE_NAMES:
        if any(e.parent == source and e.child == target for e in graph.composition_edges):
            return _Outcome.SKIPPED, ""
        graph.composition_edges.append(CompositionEdge(parent=source, child=target))
        return _Outcome.MERGED, ""

    if name in COORDINATION_EDGE_NAMES:
        if any(
            e.from_component == source and e.to_component == target and e.via == name
            for e in graph.coordination_edges
        ):
            return _Outcome.SKIPPED, ""
        graph.coordination_edges.append(
            CoordinationEdge(from_component=source, to_component=target, via=name)
        )
        return _Outcome.MERGED, ""

    return _Outcome.REVIEW, f"Unknown edge type: {name}"
