"""Central registry for prompt templates."""

import logging
from pathlib import Path
from typing import Any

from storyspec.utils.exceptions import PromptTemplateError
from storyspec.utils.prompt_template import PromptTemplate

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES_DIR = Path(__file__).parent.parent / "prompts" / "templates"


class PromptRegistry:
    """Loads every YAML template once and serves them by agent/task.

    Templates are organized in directories by agent:
    ```
    prompts/templates/
    ├── discovery/
    │   ├── system.yaml
    │   └── extract.yaml
    ├── judge/
    │   ├── system.yaml
    │   ├── evaluate.yaml
    │   └── global_consistency.yaml
    └── advisor/
        ├── accessibility.yaml
        └── security.yaml
    ```
    """

    def __init__(self, templates_dir: Path | str | None = None):
        """Initialize registry and load all templates.

        Args:
            templates_dir: Directory containing template YAML files.
                Defaults to the bundled storyspec/prompts/templates.
        """
        self.templates_dir = Path(templates_dir) if templates_dir else DEFAULT_TEMPLATES_DIR
        self._templates: dict[str, PromptTemplate] = {}
        self._load_all_templates()

    @staticmethod
    def _make_key(agent: str, task: str) -> str:
        return f"{agent}/{task}"

    def _load_all_templates(self) -> None:
        if not self.templates_dir.exists():
            logger.warning("Templates directory not found: %s", self.templates_dir)
            return

        yaml_files = sorted(self.templates_dir.rglob("*.yaml"))
        loaded = 0
        errors = 0
        for yaml_file in yaml_files:
            try:
                template = PromptTemplate.from_yaml(yaml_file)
            except PromptTemplateError as e:
                logger.error("Failed to load template %s: %s", yaml_file, e)
                errors += 1
                continue

            key = self._make_key(template.agent, template.task)
            if key in self._templates:
                logger.warning("Duplicate template key '%s', overwriting with %s", key, yaml_file)
            self._templates[key] = template
            loaded += 1

        logger.info(
            "Loaded %d templates from %s (%d errors)", loaded, self.templates_dir, errors
        )

    def get(self, agent: str, task: str) -> PromptTemplate:
        """Get a template by agent and task.

        Raises:
            PromptTemplateError: If the template is not registered.
        """
        key = self._make_key(agent, task)
        template = self._templates.get(key)
        if template is None:
            available = sorted(self._templates)
            raise PromptTemplateError(
                f"Template not found: {key}. Available templates: {available[:10]}..."
            )
        return template

    def has_template(self, agent: str, task: str) -> bool:
        """Check if a template exists."""
        return self._make_key(agent, task) in self._templates

    def render(self, agent: str, task: str, **kwargs: Any) -> str:
        """Render a template with variables.

        Raises:
            PromptTemplateError: If template not found or rendering fails.
        """
        return self.get(agent, task).render(**kwargs)

    def render_system(self, agent: str, **kwargs: Any) -> str:
        """Render the system prompt (task "system") for an agent."""
        return self.render(agent, "system", **kwargs)

    def list_for_agent(self, agent: str) -> list[PromptTemplate]:
        """Return all non-system templates registered for an agent, sorted by task."""
        prefix = f"{agent}/"
        return [
            template
            for key, template in sorted(self._templates.items())
            if key.startswith(prefix) and not template.is_system_prompt
        ]

    def __len__(self) -> int:
        return len(self._templates)


_registry: PromptRegistry | None = None


def get_prompt_registry(templates_dir: Path | str | None = None) -> PromptRegistry:
    """Return the shared registry, creating it on first use.

    Passing a directory different from the cached one rebuilds the registry.
    """
    global _registry
    wanted = Path(templates_dir) if templates_dir else DEFAULT_TEMPLATES_DIR
    if _registry is None or _registry.templates_dir != wanted:
        _registry = PromptRegistry(wanted)
    return _registry
