import logging
from typing import Any, Protocol, Sequence

import anthropic
from anthropic import Anthropic

from .models import Message, ModelParams

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class UpstreamError(RuntimeError):
    def __init__(self, error: str, kind: str):
        super().__init__(f"Model service failure ({kind}): {error}")
        self.error = error
        self.kind = kind


class UpstreamTimeout(UpstreamError):
    def __init__(self, timeout: float):
        super().__init__(
            error=f"No response within {timeout:g}s",
            kind="timeout",
        )
        self.timeout = timeout


class UpstreamServiceError(UpstreamError):
    def __init__(self, error: str, status_code: int | None = None):
        super().__init__(error=error, kind="service_error")
        self.status_code = status_code


class CompletionService(Protocol):
    def complete(self, messages: Sequence[Message], params: ModelParams) -> str: ...


def resolve_client(client: Any | None = None, api_key: str | None = None, timeout: float = DEFAULT_TIMEOUT) -> Any:
    if client is not None:
        return client
    if not api_key:
        raise RuntimeError("ANTHROPIC_API_KEY is required to call the model when no client is injected")
    logger.debug("creating Anthropic client with %gs timeout", timeout)
    return Anthropic(api_key=api_key, timeout=timeout)


def extract_text(resp) -> str:
    """Join the text blocks of a Messages API reply; an empty reply is logged, not raised."""
    text = "".join(
        block.text for block in resp.content if getattr(block, "type", "text") == "text" and getattr(block, "text", None)
    ).strip()
    if not text:
        logger.warning(
            "model reply had no text content (stop_reason=%s)",
            getattr(resp, "stop_reason", None),
        )
    return text


def split_messages(messages: Sequence[Message]) -> tuple[str, list[dict[str, str]]]:
    """Move system messages into one system string and merge consecutive same-role turns."""
    system_parts: list[str] = []
    turns: list[dict[str, str]] = []
    for message in messages:
        if message.role == "system":
            system_parts.append(message.content)
        elif turns and turns[-1]["role"] == message.role:
            turns[-1]["content"] += "\n\n" + message.content
        else:
            turns.append({"role": message.role, "content": message.content})

    system = "\n\n".join(part for part in system_parts if part)
    if not turns:
        return "", [{"role": "user", "content": system}]
    return system, turns


class AnthropicCompletionService:
    def __init__(
        self,
        client: Any | None = None,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.client = resolve_client(client=client, api_key=api_key, timeout=timeout)
        self.timeout = timeout

    def _request_kwargs(self, messages: Sequence[Message], params: ModelParams) -> dict[str, Any]:
        system, turns = split_messages(messages)
        kwargs: dict[str, Any] = {
            "model": params.model,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "messages": turns,
            "timeout": self.timeout,
        }
        if system:
            kwargs["system"] = system
        if params.top_p != 1.0:
            kwargs["top_p"] = params.top_p
        if params.frequency_penalty or params.presence_penalty:
            logger.debug(
                "frequency_penalty=%s presence_penalty=%s not supported by the Messages API, not sent",
                params.frequency_penalty,
                params.presence_penalty,
            )
        return kwargs

    def complete(self, messages: Sequence[Message], params: ModelParams) -> str:
        kwargs = self._request_kwargs(messages, params)
        logger.debug("requesting completion from %s with %d turns", params.model, len(kwargs["messages"]))

        try:
            resp = self.client.messages.create(**kwargs)
        except anthropic.APITimeoutError as e:
            raise UpstreamTimeout(self.timeout) from e
        except anthropic.APIStatusError as e:
            raise UpstreamServiceError(str(e), status_code=e.status_code) from e
        except anthropic.APIError as e:
            raise UpstreamServiceError(str(e)) from e

        return extract_text(resp)
