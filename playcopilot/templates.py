import json
import logging
from pathlib import Path
from typing import Any, Protocol

from pydantic import TypeAdapter

from .artifacts import _atomic_write
from .assembler import find_placeholders
from .models import PromptTemplate
from .tools import ConfigurationError, ToolSpec, list_tools

logger = logging.getLogger(__name__)

_TEMPLATE_LIST = TypeAdapter(list[PromptTemplate])


class TemplateStore(Protocol):
    def get(self, tool_name: str) -> PromptTemplate | None: ...

    def put(self, template: PromptTemplate) -> None: ...

    def list_templates(self) -> list[PromptTemplate]: ...


class InMemoryTemplateStore:
    def __init__(self, templates: list[PromptTemplate] | None = None):
        self._templates: dict[str, PromptTemplate] = {}
        for template in templates or []:
            self.put(template)

    def get(self, tool_name: str) -> PromptTemplate | None:
        return self._templates.get(tool_name)

    def put(self, template: PromptTemplate) -> None:
        self._templates[template.tool_name] = template

    def list_templates(self) -> list[PromptTemplate]:
        return [self._templates[name] for name in sorted(self._templates)]


class JsonTemplateStore:
    """Template store backed by a JSON list on disk; every put rewrites the file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _load(self) -> dict[str, PromptTemplate]:
        if not self.path.exists():
            return {}
        try:
            templates = _TEMPLATE_LIST.validate_json(self.path.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise ConfigurationError(
                f"template file {self.path} is not a valid template list: {exc}",
                kind="invalid_template_file",
            ) from exc
        return {template.tool_name: template for template in templates}

    def _save(self, templates: dict[str, PromptTemplate]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [templates[name].model_dump() for name in sorted(templates)]
        _atomic_write(self.path, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")

    def get(self, tool_name: str) -> PromptTemplate | None:
        return self._load().get(tool_name)

    def put(self, template: PromptTemplate) -> None:
        templates = self._load()
        templates[template.tool_name] = template
        self._save(templates)
        logger.debug("stored template %s in %s", template.tool_name, self.path)

    def list_templates(self) -> list[PromptTemplate]:
        templates = self._load()
        return [templates[name] for name in sorted(templates)]


def require_template(store: TemplateStore, tool_name: str) -> PromptTemplate:
    template = store.get(tool_name)
    if template is None:
        raise ConfigurationError(f"no prompt template stored for tool '{tool_name}'", kind="missing_template")
    return template


def update_template(store: TemplateStore, tool_name: str, **changes: Any) -> PromptTemplate:
    current = require_template(store, tool_name)
    if "tool_name" in changes and changes["tool_name"] != tool_name:
        raise ConfigurationError("tool_name cannot be changed by an update", kind="invalid_update")
    payload = current.model_dump()
    payload.update(changes)
    try:
        updated = PromptTemplate.model_validate(payload)
    except ValueError as exc:
        raise ConfigurationError(f"invalid template update for '{tool_name}': {exc}", kind="invalid_update") from exc
    store.put(updated)
    return updated


def check_template(template: PromptTemplate, tool: ToolSpec) -> list[str]:
    warnings: list[str] = []

    if template.tool_name != tool.name:
        warnings.append(f"template tool_name '{template.tool_name}' does not match tool '{tool.name}'")

    placeholders = find_placeholders(template.prompt_text)
    accepted = set(tool.accepted_inputs)
    for name in placeholders:
        if name not in accepted:
            warnings.append(f"placeholder '{name}' is never supplied by {tool.name}")
    for name in tool.required:
        if name not in placeholders:
            warnings.append(f"required input '{name}' is not referenced by the template")

    if not 0.0 <= template.temperature <= 1.0:
        warnings.append(f"temperature {template.temperature} is outside 0..1")
    if not 0.0 < template.top_p <= 1.0:
        warnings.append(f"top_p {template.top_p} is outside (0, 1]")
    for name in ("frequency_penalty", "presence_penalty"):
        value = getattr(template, name)
        if not -2.0 <= value <= 2.0:
            warnings.append(f"{name} {value} is outside -2..2")

    return warnings


def default_templates() -> list[PromptTemplate]:
    return [tool.default_template() for tool in list_tools()]
