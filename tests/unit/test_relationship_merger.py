"""Tests for the add-only relationship merger."""

import pytest

from storyspec.memory.judge_rubric import Relationship
from storyspec.services.relationship_merger import EDIT_REVIEW_REASON, merge


def node(id, type="component", name=None, operation="add_node"):
    return Relationship(id=id, type=type, operation=operation, name=name or id, confidence=0.9)


def edge(name, source, target, operation="add_edge"):
    return Relationship(
        type="component", operation=operation, name=name, source=source, target=target, confidence=0.9
    )


class TestMergeNodes:
    """Tests for add_node handling."""

    def test_adds_each_node_kind(self, context):
        """Components, state models and events are appended."""
        result = merge(
            context,
            [
                node("COMP-PASSWORD-FIELD", name="Password Field"),
                node("C-STATE-CART", type="stateModel", name="Cart"),
                node("E-CART-UPDATED", type="event", name="Cart Updated"),
            ],
        )
        assert result.merged_count == 3
        assert result.context.has_component("COMP-PASSWORD-FIELD")
        assert result.context.has_state_model("C-STATE-CART")
        assert result.context.has_event("E-CART-UPDATED")
        assert result.context.component_graph.components["COMP-PASSWORD-FIELD"].product_name == (
            "Password Field"
        )

    def test_input_context_untouched(self, context):
        """The merge works on a copy."""
        before = context.entry_count()
        result = merge(context, [node("COMP-PASSWORD-FIELD")])
        assert context.entry_count() == before
        assert result.context.entry_count() == before + 1

    def test_existing_node_is_skipped_not_replaced(self, context):
        """A duplicate id leaves the existing entry exactly as it was."""
        result = merge(context, [node("COMP-LOGIN-BUTTON", name="Something Else")])
        assert result.merged_count == 0
        assert len(result.skipped) == 1
        assert result.context.component_graph.components["COMP-LOGIN-BUTTON"].product_name == (
            "Login Button"
        )

    def test_unknown_node_type_goes_to_review(self, context):
        """Node kinds the model does not know are never guessed."""
        result = merge(context, [node("X-WIDGET", type="widget")])
        assert result.manual_review[0].reason == "Unknown node type: widget"
        assert result.context.entry_count() == context.entry_count()

    def test_entry_count_never_decreases(self, context):
        """Whatever the mix of inputs, the model only grows."""
        result = merge(
            context,
            [
                node("COMP-LOGIN-BUTTON", operation="edit_node"),
                node("COMP-NEW"),
                edge("contains", "COMP-NOPE", "COMP-NEW"),
                Relationship(id="x", operation="delete_node"),
            ],
        )
        assert result.context.entry_count() >= context.entry_count()
        assert set(context.known_ids()) <= set(result.context.known_ids())


class TestMergeEdges:
    """Tests for add_edge handling."""

    @pytest.mark.parametrize("name", ["composed-of", "contains"])
    def test_composition_edge(self, context, name):
        """Composition names produce a parent/child edge."""
        result = merge(context, [edge(name, "COMP-LOGIN-FORM", "COMP-LOGIN-BUTTON")])
        edges = result.context.component_graph.composition_edges
        assert result.merged_count == 1
        assert (edges[0].parent, edges[0].child) == ("COMP-LOGIN-FORM", "COMP-LOGIN-BUTTON")

    @pytest.mark.parametrize("name", ["coordinates-with", "communicates-with"])
    def test_coordination_edge(self, context, name):
        """Coordination names produce a from/to edge via the relationship name."""
        result = merge(context, [edge(name, "COMP-LOGIN-BUTTON", "COMP-LOGIN-FORM")])
        coordination = result.context.component_graph.coordination_edges[0]
        assert coordination.from_component == "COMP-LOGIN-BUTTON"
        assert coordination.to_component == "COMP-LOGIN-FORM"
        assert coordination.via == name

    def test_duplicate_edge_skipped(self, context):
        """The same edge twice merges once."""
        rel = edge("contains", "COMP-LOGIN-FORM", "COMP-LOGIN-BUTTON")
        result = merge(context, [rel, rel])
        assert result.merged_count == 1
        assert len(result.skipped) == 1

    def test_dangling_edge_goes_to_review(self, context):
        """Edges to unknown components are flagged, not created."""
        result = merge(context, [edge("contains", "COMP-LOGIN-FORM", "COMP-GHOST")])
        assert result.merged_count == 0
        assert result.manual_review[0].reason == (
            "Entity references do not exist (source: COMP-LOGIN-FORM, target: COMP-GHOST)"
        )

    def test_edge_to_node_added_in_same_batch(self, context):
        """Nodes merged earlier in the batch can be referenced by later edges."""
        result = merge(
            context,
            [node("COMP-REMEMBER-ME"), edge("contains", "COMP-LOGIN-FORM", "COMP-REMEMBER-ME")],
        )
        assert result.merged_count == 2

    def test_unknown_edge_type_goes_to_review(self, context):
        """Unrecognized edge names are flagged."""
        result = merge(context, [edge("depends-on", "COMP-LOGIN-FORM", "COMP-LOGIN-BUTTON")])
        assert result.manual_review[0].reason == "Unknown edge type: depends-on"


class TestMergeOperations:
    """Tests for operation routing."""

    @pytest.mark.parametrize("operation", ["edit_node", "edit-edge", "EDIT_NODE"])
    def test_edits_always_reviewed(self, context, operation):
        """Edit operations are never applied automatically."""
        result = merge(context, [node("COMP-LOGIN-BUTTON", operation=operation)])
        assert result.manual_review[0].reason == EDIT_REVIEW_REASON
        assert result.merged_count == 0

    def test_hyphenated_add_accepted(self, context):
        """add-node is read as add_node."""
        result = merge(context, [node("COMP-NEW", operation="add-node")])
        assert result.merged_count == 1

    def test_unknown_operation(self, context):
        """Anything else is flagged with the operation name."""
        result = merge(context, [Relationship(id="COMP-X", type="component", operation="rename")])
        assert result.manual_review[0].reason == "Unknown operation: rename"
