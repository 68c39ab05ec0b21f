import logging

from playcopilot.assembler import assemble, field_text, find_placeholders, render_template
from playcopilot.models import PromptTemplate


def _template(text: str) -> PromptTemplate:
    return PromptTemplate(tool_name="signal_lab", prompt_text=text)


def test_field_text_flattens_caller_values():
    assert field_text(None) == ""
    assert field_text("plain") == "plain"
    assert field_text({"value": "Growth"}) == "Growth"
    assert field_text({"label": "Marketing"}) == "Marketing"
    assert field_text({"id": 3}) == ""
    assert field_text(["Retention", {"label": "Pricing"}, None]) == "Retention, Pricing"
    assert field_text(42) == "42"


def test_field_text_stringifies_non_string_labels():
    assert field_text({"value": 5}) == "5"
    assert field_text({"label": 2.5}) == "2.5"
    assert field_text({"value": None, "label": "Q3"}) == "Q3"
    assert field_text({"value": False}) == "False"


def test_find_placeholders_sorted_and_unique():
    text = "{{ observation }} and {{context}} then {{observation}}"

    assert find_placeholders(text) == ["context", "observation"]


def test_render_template_blanks_unknown_keys():
    rendered, missing = render_template("Hi {{name}}, see {{topic}}.", {"name": "Ana"})

    assert rendered == "Hi Ana, see ."
    assert missing == ["topic"]


def test_assemble_builds_system_context_and_instructions():
    prompt = assemble(
        _template("Observation: {{observation}}\nContext: {{context}}\n"),
        {"observation": "Signups dipped", "context": None, "team_industry": {"value": "SaaS"}},
        instructions=["Return ONLY valid JSON.", "  "],
    )

    assert [message.role for message in prompt.messages] == ["system", "user", "user"]
    assert prompt.messages[0].content == "Observation: Signups dipped\nContext:"
    assert prompt.messages[1].content == "Context:\nObservation: Signups dipped\nTeam Industry: SaaS"
    assert prompt.messages[2].content == "Return ONLY valid JSON."
    assert prompt.trace.placeholders == ["context", "observation"]
    assert prompt.trace.missing_fields == []
    assert prompt.trace.leaked_placeholders == []


def test_assemble_without_fields_has_no_context_message():
    prompt = assemble(_template("You are a helper."), {})

    assert prompt.as_dicts() == [{"role": "system", "content": "You are a helper."}]


def test_assemble_reports_missing_fields():
    prompt = assemble(_template("Observation: {{observation}}"), {})

    assert prompt.messages[0].content == "Observation:"
    assert prompt.trace.missing_fields == ["observation"]


def test_placeholder_left_after_substitution_is_logged(caplog):
    with caplog.at_level(logging.WARNING, logger="playcopilot.assembler"):
        prompt = assemble(_template("Observation: {{observation}}"), {"observation": "{{secret}}"})

    assert prompt.trace.leaked_placeholders == ["secret"]
    assert "secret" in caplog.text


def test_assemble_is_deterministic():
    template = _template("Idea: {{idea_prompt}}")
    fields = {"idea_prompt": "Weekly demos", "focus_areas": ["Retention", "Activation"]}

    assert assemble(template, fields, ["x"]).as_dicts() == assemble(template, fields, ["x"]).as_dicts()
