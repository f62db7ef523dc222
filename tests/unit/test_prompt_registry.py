"""Tests for prompt templates and the prompt registry."""

from pathlib import Path

import pytest

from storyspec.services.story_generator import AdvisorSpec
from storyspec.utils.exceptions import PromptTemplateError
from storyspec.utils.prompt_registry import (
    DEFAULT_TEMPLATES_DIR,
    PromptRegistry,
    get_prompt_registry,
)
from storyspec.utils.prompt_template import PromptTemplate

BUNDLED_FILES = sorted(DEFAULT_TEMPLATES_DIR.rglob("*.yaml"))


def write_template(directory: Path, agent: str, task: str, body: str) -> Path:
    agent_dir = directory / agent
    agent_dir.mkdir(parents=True, exist_ok=True)
    path = agent_dir / f"{task}.yaml"
    path.write_text(body, encoding="utf-8")
    return path


GREETING = """
name: greeter_hello
version: "1.2"
description: Say hello
agent: greeter
task: hello
template: |
  Hello {{ name }}{% if suffix %}{{ suffix }}{% endif %}
variables:
  required: [name]
  optional: [suffix]
"""


class TestPromptTemplate:
    """Tests for PromptTemplate."""

    def test_from_yaml(self, tmp_path):
        """YAML fields map onto the template; unknown keys become metadata."""
        path = write_template(tmp_path, "greeter", "hello", GREETING + "order: 3\n")
        template = PromptTemplate.from_yaml(path)
        assert template.name == "greeter_hello"
        assert template.version == "1.2"
        assert template.required_variables == ["name"]
        assert template.metadata == {"order": 3}
        assert str(template) == "PromptTemplate(greeter/hello v1.2)"

    def test_render_with_optional_default(self, tmp_path):
        """Optional variables default to None."""
        template = PromptTemplate.from_yaml(write_template(tmp_path, "greeter", "hello", GREETING))
        assert template.render(name="Ada") == "Hello Ada\n"
        assert template.render(name="Ada", suffix="!") == "Hello Ada!\n"

    def test_missing_required_variable(self, tmp_path):
        """Rendering without a required variable raises."""
        template = PromptTemplate.from_yaml(write_template(tmp_path, "greeter", "hello", GREETING))
        with pytest.raises(PromptTemplateError, match="Missing required variables"):
            template.render()

    def test_undeclared_variable_is_strict(self):
        """Variables used but not declared fail instead of rendering empty."""
        template = PromptTemplate(
            name="t", version="1", description="", agent="a", task="t", template="{{ who }}"
        )
        with pytest.raises(PromptTemplateError, match="Undefined variable"):
            template.render()

    @pytest.mark.parametrize(
        ("body", "message"),
        [
            ("name: x\nagent: a\ntask: t\ntemplate: hi\n", "Missing required 'version'"),
            ("- just\n- a list\n", "expected dict"),
            ('version: "1"\nagent: a\ntemplate: "{{ oops"\n', "Invalid Jinja2 syntax"),
            ('version: "1"\nagent: a\ntemplate: hi\nvariables: [x]\n', "Invalid 'variables'"),
            ("version: [unclosed\n", "Invalid YAML"),
        ],
    )
    def test_invalid_files(self, tmp_path, body, message):
        """Malformed template files raise with a descriptive message."""
        path = write_template(tmp_path, "a", "t", body)
        with pytest.raises(PromptTemplateError, match=message):
            PromptTemplate.from_yaml(path)

    def test_hash_changes_with_version(self):
        """The hash covers version and text."""
        first = PromptTemplate(name="t", version="1", description="", agent="a", task="t", template="x")
        second = PromptTemplate(name="t", version="2", description="", agent="a", task="t", template="x")
        assert first.get_hash() != second.get_hash()


class TestPromptRegistry:
    """Tests for PromptRegistry."""

    def test_get_and_render(self, tmp_path):
        """Templates are served by agent and task."""
        write_template(tmp_path, "greeter", "hello", GREETING)
        registry = PromptRegistry(tmp_path)
        assert len(registry) == 1
        assert registry.has_template("greeter", "hello")
        assert registry.render("greeter", "hello", name="Bo") == "Hello Bo\n"

    def test_unknown_template(self, tmp_path):
        """Unknown keys raise PromptTemplateError."""
        registry = PromptRegistry(tmp_path)
        with pytest.raises(PromptTemplateError, match="Template not found: greeter/bye"):
            registry.get("greeter", "bye")

    def test_broken_file_skipped(self, tmp_path):
        """A bad file is logged and skipped; the rest still load."""
        write_template(tmp_path, "greeter", "hello", GREETING)
        write_template(tmp_path, "greeter", "broken", "not: [valid\n")
        registry = PromptRegistry(tmp_path)
        assert len(registry) == 1

    def test_missing_directory(self, tmp_path):
        """A missing directory yields an empty registry."""
        assert len(PromptRegistry(tmp_path / "nope")) == 0

    def test_list_for_agent_excludes_system(self, tmp_path):
        """System prompts are not listed as tasks."""
        write_template(tmp_path, "greeter", "hello", GREETING)
        write_template(
            tmp_path,
            "greeter",
            "system",
            'name: s\nversion: "1"\nagent: greeter\ntask: system\nis_system_prompt: true\ntemplate: Be kind\n',
        )
        registry = PromptRegistry(tmp_path)
        assert [t.task for t in registry.list_for_agent("greeter")] == ["hello"]
        assert registry.render_system("greeter") == "Be kind"

    def test_shared_registry_cached(self, tmp_path):
        """The shared registry is reused until another directory is asked for."""
        first = get_prompt_registry()
        assert get_prompt_registry() is first
        write_template(tmp_path, "greeter", "hello", GREETING)
        other = get_prompt_registry(tmp_path)
        assert other is not first
        assert other.has_template("greeter", "hello")


class TestBundledTemplates:
    """Tests over the templates shipped with the package."""

    @pytest.mark.parametrize("path", BUNDLED_FILES, ids=lambda p: f"{p.parent.name}/{p.stem}")
    def test_each_file_loads(self, path):
        """Every bundled file parses and validates."""
        template = PromptTemplate.from_yaml(path)
        assert template.agent == path.parent.name
        assert template.task == path.stem

    def test_all_registered(self, registry):
        """No bundled template is lost to a duplicate key."""
        assert len(registry) == len(BUNDLED_FILES)

    @pytest.mark.parametrize(
        ("agent", "task"),
        [
            ("discovery", "system"),
            ("discovery", "extract"),
            ("generator", "system"),
            ("generator", "generate"),
            ("judge", "system"),
            ("judge", "evaluate"),
            ("judge", "consistency_system"),
            ("judge", "global_consistency"),
            ("rewriter", "system"),
            ("rewriter", "rewrite"),
            ("interconnection", "system"),
            ("interconnection", "extract"),
            ("advisor", "system"),
        ],
    )
    def test_pipeline_templates_present(self, registry, agent, task):
        """Every template a pipeline stage renders is registered."""
        assert registry.has_template(agent, task)

    def test_advisor_templates_declare_scope(self, registry):
        """Every advisor template yields a valid AdvisorSpec."""
        advisors = [AdvisorSpec.from_template(t) for t in registry.list_for_agent("advisor")]
        assert len(advisors) == 7
        assert all(a.allowed_paths for a in advisors)
        assert len({a.order for a in advisors}) == 7
