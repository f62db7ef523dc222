"""YAML-based prompt template system with Jinja2 rendering."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, UndefinedError

from storyspec.utils.exceptions import PromptTemplateError

logger = logging.getLogger(__name__)


@dataclass
class PromptTemplate:
    """A YAML prompt template rendered with Jinja2.

    Attributes:
        name: Unique template name (e.g. "judge_story").
        version: Template version, required so rendered prompts are traceable.
        description: Human-readable purpose.
        agent: Role this template belongs to (e.g. "judge", "advisor").
        task: Task identifier within the role (e.g. "evaluate", "system").
        template: Jinja2 template string.
        required_variables: Variables that must be passed to render().
        optional_variables: Variables that default to None when omitted.
        is_system_prompt: Whether this template is a system prompt.
        metadata: Extra top-level YAML keys (advisor scope, ordering, etc.).
    """

    name: str
    version: str
    description: str
    agent: str
    task: str
    template: str
    required_variables: list[str] = field(default_factory=list)
    optional_variables: list[str] = field(default_factory=list)
    is_system_prompt: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    _jinja_env: Environment = field(
        default_factory=lambda: Environment(undefined=StrictUndefined, keep_trailing_newline=True),
        repr=False,
        compare=False,
    )

    def render(self, **kwargs: Any) -> str:
        """Render template with variables.

        Args:
            **kwargs: Variables to substitute into the template.

        Returns:
            Rendered prompt string.

        Raises:
            PromptTemplateError: If required variables are missing or rendering fails.
        """
        missing = set(self.required_variables) - set(kwargs)
        if missing:
            raise PromptTemplateError(
                f"Missing required variables for template '{self.name}': {sorted(missing)}"
            )
        for var in self.optional_variables:
            kwargs.setdefault(var, None)

        try:
            rendered = self._jinja_env.from_string(self.template).render(**kwargs)
        except UndefinedError as e:
            raise PromptTemplateError(f"Undefined variable in template '{self.name}': {e}") from e
        except TemplateSyntaxError as e:
            raise PromptTemplateError(f"Syntax error in template '{self.name}': {e}") from e

        logger.debug("Rendered template '%s' v%s (%d chars)", self.name, self.version, len(rendered))
        return rendered

    def get_hash(self) -> str:
        """MD5 of version and template text, for tagging prompt revisions in logs."""
        content = f"{self.version}:{self.template}"
        return hashlib.md5(content.encode()).hexdigest()

    def validate(self) -> list[str]:
        """Validate template structure and Jinja2 syntax.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []
        for attr in ("name", "version", "agent", "task", "template"):
            if not getattr(self, attr):
                errors.append(f"Template {attr} is required")
        try:
            self._jinja_env.parse(self.template)
        except TemplateSyntaxError as e:
            errors.append(f"Invalid Jinja2 syntax: {e}")
        return errors

    @classmethod
    def from_yaml(cls, path: Path) -> PromptTemplate:
        """Load a template from a YAML file.

        Expected structure:
        ```yaml
        name: judge_story
        version: "1.0"
        description: "Scores a story against the unified rubric"
        agent: judge
        task: evaluate
        template: |
          ## System context
          {{ system_context }}
        variables:
          required: [system_context]
          optional: []
        ```

        Any other top-level key is kept in ``metadata``.

        Raises:
            PromptTemplateError: If the file cannot be read, parsed or validated.
        """
        if not path.exists():
            raise PromptTemplateError(f"Template file not found: {path}")

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise PromptTemplateError(f"Invalid YAML in {path}: {e}") from e
        except OSError as e:
            raise PromptTemplateError(f"Cannot read template file {path}: {e}") from e

        if not isinstance(data, dict):
            raise PromptTemplateError(f"Invalid template format in {path}: expected dict")
        if "version" not in data:
            raise PromptTemplateError(f"Missing required 'version' field in {path}")

        variables = data.get("variables") or {}
        if not isinstance(variables, dict):
            raise PromptTemplateError(
                f"Invalid 'variables' in {path}: expected dict, got {type(variables).__name__}"
            )
        required_vars = variables.get("required") or []
        optional_vars = variables.get("optional") or []
        if not isinstance(required_vars, list) or not isinstance(optional_vars, list):
            raise PromptTemplateError(f"Invalid 'variables' lists in {path}")

        known = {
            "name",
            "version",
            "description",
            "agent",
            "task",
            "template",
            "variables",
            "is_system_prompt",
        }
        template = cls(
            name=data.get("name", path.stem),
            version=str(data["version"]),
            description=data.get("description", ""),
            agent=data.get("agent", ""),
            task=data.get("task", path.stem),
            template=data.get("template", ""),
            required_variables=required_vars,
            optional_variables=optional_vars,
            is_system_prompt=bool(data.get("is_system_prompt", False)),
            metadata={k: v for k, v in data.items() if k not in known},
        )

        errors = template.validate()
        if errors:
            raise PromptTemplateError(f"Invalid template in {path}: {'; '.join(errors)}")

        logger.debug("Loaded template '%s' v%s from %s", template.name, template.version, path)
        return template

    def __str__(self) -> str:
        return f"PromptTemplate({self.agent}/{self.task} v{self.version})"
