import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .models import AssembleTrace, Message, PromptTemplate

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


@dataclass(frozen=True)
class AssembledPrompt:
    messages: list[Message]
    trace: AssembleTrace

    def as_dicts(self) -> list[dict[str, str]]:
        return [message.model_dump() for message in self.messages]


def field_text(value: Any) -> str:
    """Flatten a caller value (plain, label object or list) into prompt text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        for key in ("value", "label"):
            if value.get(key) is not None:
                return value[key] if isinstance(value[key], str) else str(value[key])
        return ""
    if isinstance(value, (list, tuple)):
        parts = [field_text(item) for item in value]
        return ", ".join(part for part in parts if part)
    return str(value)


def normalize_fields(fields: Mapping[str, Any]) -> dict[str, str]:
    return {str(key): field_text(value) for key, value in fields.items()}


def find_placeholders(prompt_text: str) -> list[str]:
    return sorted({match.group(1) for match in _PLACEHOLDER.finditer(prompt_text)})


def render_template(prompt_text: str, fields: Mapping[str, str]) -> tuple[str, list[str]]:
    missing: set[str] = set()

    def _substitute(match: re.Match) -> str:
        key = match.group(1)
        if key not in fields:
            missing.add(key)
            return ""
        return fields[key]

    rendered = _PLACEHOLDER.sub(_substitute, prompt_text)
    return rendered, sorted(missing)


def _context_block(fields: Mapping[str, str]) -> str:
    lines = ["Context:"]
    for key, value in fields.items():
        if value.strip():
            lines.append(f"{key.replace('_', ' ').title()}: {value.strip()}")
    if len(lines) == 1:
        return ""
    return "\n".join(lines)


def assemble(
    template: PromptTemplate,
    fields: Mapping[str, Any],
    instructions: Sequence[str] = (),
) -> AssembledPrompt:
    text_fields = normalize_fields(fields)
    rendered, missing = render_template(template.prompt_text, text_fields)
    leaked = find_placeholders(rendered)

    if missing:
        logger.debug(
            "template %s: no value for placeholders %s, substituted empty text",
            template.tool_name,
            ", ".join(missing),
        )
    if leaked:
        logger.warning(
            "template %s: placeholders left after substitution: %s",
            template.tool_name,
            ", ".join(leaked),
        )

    messages = [Message(role="system", content=rendered.strip())]
    context = _context_block(text_fields)
    if context:
        messages.append(Message(role="user", content=context))
    for instruction in instructions:
        if instruction.strip():
            messages.append(Message(role="user", content=instruction.strip()))

    trace = AssembleTrace(
        placeholders=find_placeholders(template.prompt_text),
        missing_fields=missing,
        leaked_placeholders=leaked,
    )
    return AssembledPrompt(messages=messages, trace=trace)
