import json

import anthropic
import pytest

from fakes import API_REQUEST, FakeClient
from playcopilot.llm import UpstreamTimeout
from playcopilot.runner import MissingToolInput, normalize_reply, run_tool
from playcopilot.templates import InMemoryTemplateStore
from playcopilot.tools import ConfigurationError

SIGNAL_REPLY = {
    "signal_summary": "Demo requests doubled after the webinar.",
    "why_it_matters": "Webinars may be the strongest top-of-funnel play.",
    "possible_next_step": "Schedule a second webinar for a new segment.",
}


def test_run_tool_end_to_end(store):
    client = FakeClient(text=json.dumps(SIGNAL_REPLY))

    result = run_tool(
        "signal_lab",
        {"observation": "Demo requests doubled", "team_industry": {"label": "SaaS"}},
        store=store,
        client=client,
    )

    assert result.to_payload() == {**SIGNAL_REPLY, "parse_status": "success"}
    call = client.messages.calls[0]
    assert "Observation: Demo requests doubled" in call["system"]
    assert "Industry: SaaS" in call["system"]
    assert "Return ONLY valid JSON" in call["messages"][0]["content"]
    assert call["model"] == "claude-opus-4-6"
    assert call["max_tokens"] == 1000


def test_run_tool_flattens_fallback_payload(store):
    client = FakeClient(text="**Signal Summary**: Demo requests doubled.")

    payload = run_tool("signal_lab", {"observation": "x"}, store=store, client=client).to_payload()

    assert payload["signal_summary"] == "Demo requests doubled."
    assert payload["why_it_matters"] == ""
    assert payload["parse_status"] == "fallback_used"
    assert "warning" in payload and "user_note" in payload
    assert "raw_response" not in payload


def test_run_tool_trace_records_prompt_and_tiers(store):
    client = FakeClient(text="no structure here")

    result = run_tool("signal_lab", {"observation": "x"}, store=store, client=client)
    trace = result.trace()

    assert result.result.parse_status == "failed"
    assert result.to_payload()["raw_response"] == "no structure here"
    assert trace["messages"][0]["role"] == "system"
    assert trace["normalize"]["attempts"][-1]["tier"] == "raw_passthrough"


def test_run_tool_uses_injected_service(store):
    class RecordingService:
        def __init__(self):
            self.params = None

        def complete(self, messages, params):
            self.params = params
            return json.dumps([{"tension": "Speed vs. craft"}])

    service = RecordingService()
    result = run_tool(
        "creative_tension_finder",
        {"problem_or_strategy_summary": "Ship faster without losing quality"},
        store=store,
        service=service,
    )

    assert result.result.fields == {"tensions": [{"tension": "Speed vs. craft"}]}
    assert service.params.temperature == 0.7


def test_missing_required_input_fails_before_model_call(store):
    client = FakeClient(text="{}")

    with pytest.raises(MissingToolInput) as exc_info:
        run_tool("signal_lab", {"context": "Q3"}, store=store, client=client)

    assert exc_info.value.missing == ["observation"]
    assert client.messages.calls == []


def test_missing_template_is_configuration_error():
    with pytest.raises(ConfigurationError) as exc_info:
        run_tool("signal_lab", {"observation": "x"}, store=InMemoryTemplateStore(), client=FakeClient())
    assert exc_info.value.kind == "missing_template"


def test_unknown_tool_is_configuration_error(store):
    with pytest.raises(ConfigurationError):
        run_tool("vision_board", {}, store=store, client=FakeClient())


def test_upstream_timeout_propagates(store):
    client = FakeClient(error=anthropic.APITimeoutError(request=API_REQUEST))

    with pytest.raises(UpstreamTimeout):
        run_tool("signal_lab", {"observation": "x"}, store=store, client=client)


def test_normalize_reply_uses_tool_schema():
    result = normalize_reply("get_to_by_generator", '{"get": "a", "to": "b", "by": "c"}')

    assert result.fields == {"get": "a", "to": "b", "by": "c"}
    assert result.parse_status == "success"
