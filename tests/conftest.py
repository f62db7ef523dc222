"""Pytest fixtures for StorySpec tests."""

import json
import logging
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from storyspec.memory.system_context import (
    Component,
    EventDefinition,
    StateModel,
    SystemDiscoveryContext,
)
from storyspec.services.llm_client import ModelGateway, ModelResponse, UsageTotals
from storyspec.settings import Settings
from storyspec.utils.prompt_registry import PromptRegistry


@pytest.fixture(autouse=True, scope="function")
def cleanup_production_log_handlers():
    """Remove file handlers pointing to the production log after each test."""
    yield

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if isinstance(handler, logging.FileHandler) and "storyspec.log" in getattr(
            handler, "baseFilename", ""
        ):
            handler.close()
            root_logger.removeHandler(handler)


@pytest.fixture(autouse=True)
def clear_settings_cache_per_test():
    """Clear Settings cache before each test to ensure isolation."""
    Settings.clear_cache()
    yield
    Settings.clear_cache()


@pytest.fixture(autouse=True)
def clear_prompt_registry_cache_per_test():
    """Reset the module-level prompt registry singleton."""
    import storyspec.utils.prompt_registry as registry_module

    registry_module._registry = None
    yield
    registry_module._registry = None


@pytest.fixture(autouse=True)
def isolate_settings_file(tmp_path, monkeypatch):
    """Point the settings file at a temp path so tests never touch the real one."""
    import storyspec.settings._settings as settings_module

    settings_file = tmp_path / "settings.json"
    monkeypatch.setattr(settings_module, "SETTINGS_FILE", settings_file)
    return settings_file


@pytest.fixture
def settings() -> Settings:
    """Default settings created without reading settings.json."""
    settings = Settings()
    settings.validate()
    return settings


@pytest.fixture(scope="session")
def registry() -> PromptRegistry:
    """Registry over the bundled templates, loaded once per session."""
    return PromptRegistry()


@pytest.fixture
def context() -> SystemDiscoveryContext:
    """A small shared model: two components, one state model, one event."""
    ctx = SystemDiscoveryContext()
    ctx.component_graph.components["COMP-LOGIN-BUTTON"] = Component(
        id="COMP-LOGIN-BUTTON", product_name="Login Button"
    )
    ctx.component_graph.components["COMP-LOGIN-FORM"] = Component(
        id="COMP-LOGIN-FORM", product_name="Login Form"
    )
    ctx.shared_contracts.state_models.append(StateModel(id="C-STATE-SESSION", name="Session"))
    ctx.shared_contracts.event_registry.append(
        EventDefinition(id="E-USER-LOGGED-IN", name="User Logged In")
    )
    ctx.product_vocabulary = {"sign in": "Login Button"}
    return ctx


def response(text: str) -> ModelResponse:
    return ModelResponse(text=text, stop_reason="stop", input_tokens=10, output_tokens=5, model="test")


type Script = dict[str, list[Any] | Callable[..., str]]


@pytest.fixture
def scripted_gateway(settings) -> Callable[[Script], MagicMock]:
    """Build a fake gateway whose replies are scripted per role.

    Each role maps to a list consumed in order (str replies, or exceptions to
    raise) or to a callable ``(system, user) -> str``. Dicts and lists are
    sent as JSON.
    """

    def make(script: Script) -> MagicMock:
        gateway = MagicMock(spec=ModelGateway)
        gateway.settings = settings
        gateway.usage = UsageTotals()
        queues = {role: list(v) if isinstance(v, list) else v for role, v in script.items()}

        def send(system, user, model_override=None, images=None, role=None, json_mode=False):
            role = role or "generator"
            entry = queues.get(role)
            if entry is None:
                raise AssertionError(f"Unexpected model call for role {role}")
            if callable(entry):
                reply = entry(system, user)
            else:
                if not entry:
                    raise AssertionError(f"No scripted reply left for role {role}")
                reply = entry.pop(0)
            if isinstance(reply, Exception):
                raise reply
            if not isinstance(reply, str):
                reply = json.dumps(reply)
            result = response(reply)
            gateway.usage.add(result)
            return result

        gateway.send.side_effect = send
        return gateway

    return make


def rubric_payload(score: float, relationships: list[dict] | None = None) -> dict:
    """Judge JSON with every dimension at ``score``."""
    return {
        "sectionSeparation": {"score": score, "reasoning": "ok", "violations": []},
        "correctnessVsSystemContext": {"score": score, "reasoning": "ok", "hallucinations": []},
        "testability": {
            "outcomeAC": {"score": score, "reasoning": "ok"},
            "systemAC": {"score": score, "reasoning": "ok"},
        },
        "completeness": {"score": score, "reasoning": "ok", "missingElements": []},
        "overallScore": score,
        "recommendation": "approve" if score >= 3.5 else "rewrite",
        "newRelationships": relationships or [],
    }


def story_payload(title: str = "Sign in", behavior: str = "User sees the login form") -> dict:
    """Minimal generator JSON for one story."""
    return {
        "title": title,
        "story": {"asA": "returning user", "iWant": "to sign in", "soThat": "I see my account"},
        "userVisibleBehavior": [{"id": "UVB-001", "text": behavior}],
        "outcomeAcceptanceCriteria": [{"id": "AC-OUT-001", "text": "Valid credentials open the account"}],
        "systemAcceptanceCriteria": [{"id": "AC-SYS-001", "text": "E-USER-LOGGED-IN is emitted"}],
        "implementationNotes": {
            "stateOwnership": [{"id": "IMPL-STATE-001", "text": "C-STATE-SESSION owned by auth"}]
        },
    }


@pytest.fixture
def rubric() -> Callable[..., dict]:
    return rubric_payload


@pytest.fixture
def story_json() -> Callable[..., dict]:
    return story_payload
