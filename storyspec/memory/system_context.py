"""Shared cross-story system model (components, contracts, vocabulary).

The context is treated as a value: services that change it take a snapshot
and return a new one via ``model_copy(deep=True)``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import Field, model_validator

from storyspec.memory._base import WireModel

StandardStateType = Literal["loading", "error", "empty", "success"]

STANDARD_STATE_DESCRIPTIONS: dict[str, str] = {
    "loading": "Data is being fetched or an action is in progress",
    "error": "An operation failed and the user can recover or retry",
    "empty": "No data exists yet for this view",
    "success": "Data loaded or the action completed",
}


class Component(WireModel):
    id: str
    product_name: str
    technical_name: str | None = None
    description: str = ""
    children: list[str] = Field(default_factory=list)
    data_sources: list[str] = Field(default_factory=list)
    emitted_events: list[str] = Field(default_factory=list)
    consumed_events: list[str] = Field(default_factory=list)


class CompositionEdge(WireModel):
    """Parent contains child."""

    parent: str
    child: str


class CoordinationEdge(WireModel):
    """Two components coordinate via an event or callback."""

    from_component: str = Field(alias="from")
    to_component: str = Field(alias="to")
    via: str = ""


class DataFlow(WireModel):
    id: str
    source: str = ""
    target: str = ""
    description: str = ""


class StateModel(WireModel):
    id: str
    name: str
    description: str = ""
    owner: str = ""
    consumers: list[str] = Field(default_factory=list)


class EventDefinition(WireModel):
    id: str
    name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    emitter: str = ""
    listeners: list[str] = Field(default_factory=list)


class StandardState(WireModel):
    type: StandardStateType
    description: str = ""


class ComponentRole(WireModel):
    component_id: str
    role: str
    description: str = ""


class ComponentGraph(WireModel):
    components: dict[str, Component] = Field(default_factory=dict)
    composition_edges: list[CompositionEdge] = Field(default_factory=list)
    coordination_edges: list[CoordinationEdge] = Field(default_factory=list)
    data_flows: list[DataFlow] = Field(default_factory=list)


def default_standard_states() -> list[StandardState]:
    """The four UI states every system context carries."""
    return [
        StandardState(type=state_type, description=description)
        for state_type, description in STANDARD_STATE_DESCRIPTIONS.items()
    ]


class SharedContracts(WireModel):
    state_models: list[StateModel] = Field(default_factory=list)
    event_registry: list[EventDefinition] = Field(default_factory=list)
    standard_states: list[StandardState] = Field(default_factory=default_standard_states)
    data_flows: list[DataFlow] = Field(default_factory=list)

    @model_validator(mode="after")
    def _ensure_standard_states(self) -> SharedContracts:
        present = {state.type for state in self.standard_states}
        for state in default_standard_states():
            if state.type not in present:
                self.standard_states.append(state)
        return self


class SystemDiscoveryContext(WireModel):
    """The shared model threaded through every pipeline stage.

    Entries are only ever added during a run; nothing here is removed.
    """

    component_graph: ComponentGraph = Field(default_factory=ComponentGraph)
    shared_contracts: SharedContracts = Field(default_factory=SharedContracts)
    component_roles: list[ComponentRole] = Field(default_factory=list)
    product_vocabulary: dict[str, str] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    reference_documents: list[str] | None = None

    def has_component(self, component_id: str) -> bool:
        return component_id in self.component_graph.components

    def has_state_model(self, state_id: str) -> bool:
        return any(s.id == state_id for s in self.shared_contracts.state_models)

    def has_event(self, event_id: str) -> bool:
        return any(e.id == event_id for e in self.shared_contracts.event_registry)

    def has_data_flow(self, flow_id: str) -> bool:
        return any(d.id == flow_id for d in self.component_graph.data_flows) or any(
            d.id == flow_id for d in self.shared_contracts.data_flows
        )

    def known_ids(self) -> set[str]:
        """Every stable id present in the model (components, states, events, flows)."""
        ids = set(self.component_graph.components)
        ids.update(s.id for s in self.shared_contracts.state_models)
        ids.update(e.id for e in self.shared_contracts.event_registry)
        ids.update(d.id for d in self.component_graph.data_flows)
        ids.update(d.id for d in self.shared_contracts.data_flows)
        return ids

    def entry_count(self) -> int:
        """Number of nodes plus edges; grows only when the merger adds something."""
        graph = self.component_graph
        contracts = self.shared_contracts
        return (
            len(graph.components)
            + len(graph.composition_edges)
            + len(graph.coordination_edges)
            + len(graph.data_flows)
            + len(contracts.state_models)
            + len(contracts.event_registry)
            + len(contracts.data_flows)
        )

    def digest(self) -> str:
        """Short content hash, ignoring the timestamp, stamped onto generated stories."""
        payload = self.to_wire()
        payload.pop("timestamp", None)
        encoded = json.dumps(payload, sort_keys=True).encode()
        return hashlib.sha256(encoded).hexdigest()[:16]


class DiscoveryMentions(WireModel):
    components: list[str] = Field(default_factory=list)
    state_models: list[str] = Field(default_factory=list)
    events: list[str] = Field(default_factory=list)


class SystemDiscoveryMentions(WireModel):
    """Raw discovery output: surface mentions and canonical names, no ids yet."""

    mentions: DiscoveryMentions = Field(default_factory=DiscoveryMentions)
    canonical_names: dict[str, list[str]] = Field(default_factory=dict)
    evidence: dict[str, str] = Field(default_factory=dict)
    vocabulary: dict[str, str] = Field(default_factory=dict)
