import logging
from dataclasses import dataclass
from typing import Any, Mapping

from .assembler import AssembledPrompt, assemble
from .llm import AnthropicCompletionService, CompletionService
from .models import NormalizedResult
from .normalizer import normalize
from .templates import TemplateStore, require_template
from .tools import get_tool

logger = logging.getLogger(__name__)


class MissingToolInput(ValueError):
    def __init__(self, tool_name: str, missing: list[str]):
        super().__init__(f"{tool_name} requires: {', '.join(missing)}")
        self.tool_name = tool_name
        self.missing = missing
        self.kind = "missing_input"


@dataclass(frozen=True)
class ToolRunResult:
    tool_name: str
    prompt: AssembledPrompt
    raw: str
    result: NormalizedResult

    def to_payload(self) -> dict[str, Any]:
        return self.result.to_payload()

    def trace(self) -> dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "messages": self.prompt.as_dicts(),
            "assemble": self.prompt.trace.model_dump(),
            "normalize": self.result.trace.model_dump(),
        }


def run_tool(
    tool_name: str,
    fields: Mapping[str, Any],
    *,
    store: TemplateStore,
    service: CompletionService | None = None,
    client: Any | None = None,
    api_key: str | None = None,
) -> ToolRunResult:
    tool = get_tool(tool_name)

    missing = tool.missing_inputs(fields)
    if missing:
        raise MissingToolInput(tool_name, missing)

    unexpected = sorted(set(fields) - set(tool.accepted_inputs))
    if unexpected:
        logger.debug("%s: passing unexpected inputs as context: %s", tool_name, ", ".join(unexpected))

    template = require_template(store, tool_name)
    prompt = assemble(template, fields, tool.instructions)

    resolved_service = service or AnthropicCompletionService(client=client, api_key=api_key)
    raw = resolved_service.complete(prompt.messages, template.model_params())

    result = normalize(raw, tool.schema)
    logger.info("%s: parse_status=%s", tool_name, result.parse_status)
    return ToolRunResult(tool_name=tool_name, prompt=prompt, raw=raw, result=result)


def normalize_reply(tool_name: str, raw: str) -> NormalizedResult:
    return normalize(raw, get_tool(tool_name).schema)
