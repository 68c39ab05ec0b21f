from dataclasses import dataclass, field
from typing import Any, Mapping

from .assembler import field_text
from .models import PromptTemplate, ResponseSchema, SchemaField
from .prompts import COUNT_RULE, DEFAULT_PROMPTS, OUTPUT_TEMPLATE, TEAM_CONTEXT


class ConfigurationError(RuntimeError):
    def __init__(self, message: str, kind: str):
        super().__init__(message)
        self.kind = kind


TEAM_CONTEXT_INPUTS = ("team_industry", "focus_areas", "team_description")

_KIND_SHAPES = {
    "string": "string",
    "number": "number",
    "string_list": "string[]",
}


@dataclass(frozen=True)
class ToolSpec:
    name: str
    title: str
    schema: ResponseSchema
    inputs: tuple[str, ...]
    required: tuple[str, ...] = ()
    default_prompt: str = ""
    instructions: tuple[str, ...] = field(default=(), init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "instructions", (build_output_instructions(self.schema),))

    @property
    def accepted_inputs(self) -> tuple[str, ...]:
        return self.inputs + TEAM_CONTEXT_INPUTS

    def missing_inputs(self, fields: Mapping[str, Any]) -> list[str]:
        return [name for name in self.required if not field_text(fields.get(name)).strip()]

    def default_template(self) -> PromptTemplate:
        return PromptTemplate(tool_name=self.name, prompt_text=self.default_prompt)


def _field_shape(schema_field: SchemaField) -> str:
    if schema_field.kind in _KIND_SHAPES:
        return _KIND_SHAPES[schema_field.kind]
    inner = ", ".join(f'"{sub.name}": {_field_shape(sub)}' for sub in schema_field.subfields)
    if schema_field.kind == "object":
        return "{" + inner + "}"
    return "[{" + inner + "}]"


def describe_shape(schema: ResponseSchema) -> str:
    if schema.root == "array":
        return _field_shape(schema.fields[0])
    body = ",\n".join(f'  "{item.name}": {_field_shape(item)}' for item in schema.fields)
    return "{\n" + body + "\n}"


def build_output_instructions(schema: ResponseSchema) -> str:
    is_array = schema.root == "array"
    text = OUTPUT_TEMPLATE.format(
        shape=describe_shape(schema),
        container="array" if is_array else "object",
        opener="[" if is_array else "{",
        closer="]" if is_array else "}",
    )
    counts = [
        COUNT_RULE.format(name=item.name, count=item.expected_count)
        for item in schema.fields
        if item.expected_count is not None
    ]
    if counts:
        text = text.rstrip() + "\n" + "\n".join(counts) + "\n"
    return text


def _default_prompt(name: str) -> str:
    return DEFAULT_PROMPTS[name].replace("{team_context}", TEAM_CONTEXT).strip()


def _s(name: str, label: str | None = None, **kwargs: Any) -> SchemaField:
    return SchemaField(name=name, kind="string", label=label, **kwargs)


def _sl(name: str, label: str | None = None, **kwargs: Any) -> SchemaField:
    return SchemaField(name=name, kind="string_list", label=label, **kwargs)


_PERSONA_SUBFIELDS = [
    _s("name"),
    _s("age"),
    _s("location"),
    _s("bio"),
    _s("motivations", aliases=["Motivations & Values"]),
    _s("pain_points", aliases=["Pain Points & Objections"]),
    _s("triggers", aliases=["Decision Drivers & Triggers"]),
    _s("media_habits", aliases=["Media & Content Habits"]),
]

_TOOL_LIST = [
    ToolSpec(
        name="play_builder",
        title="Play Builder",
        schema=ResponseSchema(
            fields=[
                _s("hypothesis"),
                _s("how_to_run_summary", "How-to-Run Summary"),
                _sl("signals_to_watch", "Signals to Watch"),
                _s("owner_role"),
                _s("what_success_looks_like"),
                _s("next_recommendation"),
            ]
        ),
        inputs=("idea_prompt", "top_signal", "team_type", "quarter_focus", "owner_role", "additional_context"),
        required=("idea_prompt",),
        default_prompt=_default_prompt("play_builder"),
    ),
    ToolSpec(
        name="signal_lab",
        title="Signal Lab",
        schema=ResponseSchema(
            fields=[
                _s("signal_summary"),
                _s("why_it_matters", aliases=["Possible Meaning"]),
                _s("possible_next_step", aliases=["Suggested Next Exploration"]),
            ]
        ),
        inputs=("observation", "context"),
        required=("observation",),
        default_prompt=_default_prompt("signal_lab"),
    ),
    ToolSpec(
        name="ritual_guide",
        title="Ritual Guide",
        schema=ResponseSchema(
            fields=[
                _sl("agenda"),
                _sl("discussion_prompts"),
                _s("roles_contributions", "Roles & Contributions"),
                _sl("preparation_tips"),
                _s("success_definition"),
            ]
        ),
        inputs=("ritual_type", "team_type", "top_challenges", "additional_context"),
        required=("ritual_type",),
        default_prompt=_default_prompt("ritual_guide"),
    ),
    ToolSpec(
        name="plain_english_translator",
        title="Plain English Translator",
        schema=ResponseSchema(
            fields=[
                _s("plain_english_rewrite"),
                SchemaField(
                    name="side_by_side_table",
                    kind="object_list",
                    label="Side-by-Side Table",
                    subfields=[_s("what_it_says"), _s("what_it_really_means")],
                ),
                _sl("jargon_glossary"),
            ]
        ),
        inputs=("original_text",),
        required=("original_text",),
        default_prompt=_default_prompt("plain_english_translator"),
    ),
    ToolSpec(
        name="get_to_by_generator",
        title="Get/To/By Generator",
        schema=ResponseSchema(fields=[_s("get"), _s("to"), _s("by")]),
        inputs=("audience_description", "behavioral_or_emotional_insight", "brand_product_role"),
        required=("audience_description",),
        default_prompt=_default_prompt("get_to_by_generator"),
    ),
    ToolSpec(
        name="creative_tension_finder",
        title="Creative Tension Finder",
        schema=ResponseSchema(
            root="array",
            fields=[
                SchemaField(
                    name="tensions",
                    kind="object_list",
                    subfields=[_s("tension"), _s("optional_platform_name")],
                    item_label="tensions",
                )
            ],
        ),
        inputs=("problem_or_strategy_summary",),
        required=("problem_or_strategy_summary",),
        default_prompt=_default_prompt("creative_tension_finder"),
    ),
    ToolSpec(
        name="persona_generator",
        title="Persona Generator",
        schema=ResponseSchema(
            fields=[
                SchemaField(name="persona_sheet", kind="object", subfields=_PERSONA_SUBFIELDS),
                _s("ask_mode_message"),
            ]
        ),
        inputs=("audience_seed",),
        required=("audience_seed",),
        default_prompt=_default_prompt("persona_generator"),
    ),
    ToolSpec(
        name="synthetic_focus_group",
        title="Synthetic Focus Group",
        schema=ResponseSchema(
            fields=[
                SchemaField(
                    name="persona_lineup",
                    kind="object_list",
                    subfields=_PERSONA_SUBFIELDS,
                    expected_count=5,
                    item_label="personas",
                ),
                _s("ask_mode_message"),
            ]
        ),
        inputs=("audience_seed", "topic_or_concept"),
        required=("audience_seed",),
        default_prompt=_default_prompt("synthetic_focus_group"),
    ),
    ToolSpec(
        name="test_learn_scale",
        title="Test-Learn-Scale",
        schema=ResponseSchema(
            fields=[
                _sl("core_hypotheses"),
                SchemaField(
                    name="test_design_table",
                    kind="object_list",
                    subfields=[
                        _s("hypothesis"),
                        _s("tactic"),
                        _s("primary_kpi", "Primary KPI"),
                        _s("success_threshold"),
                        SchemaField(name="target_sample", kind="number"),
                        _s("timeframe"),
                    ],
                ),
                _s("learning_application"),
                _sl("risk_mitigation_tips"),
            ]
        ),
        inputs=("campaign_summary", "constraints"),
        required=("campaign_summary",),
        default_prompt=_default_prompt("test_learn_scale"),
    ),
    ToolSpec(
        name="agile_sprint_planner",
        title="Agile Sprint Planner",
        schema=ResponseSchema(
            fields=[
                _s("sprint_objective"),
                _sl("team_roster_and_responsibilities"),
                _s("sprint_cadence"),
                _sl("rituals_and_artifacts"),
                _sl("deliverables_per_sprint"),
                _sl("rapid_testing_validation_methods", "Rapid Testing & Validation Methods"),
                _sl("definition_of_done"),
            ]
        ),
        inputs=("project_goal", "team_members", "sprint_length"),
        required=("project_goal",),
        default_prompt=_default_prompt("agile_sprint_planner"),
    ),
    ToolSpec(
        name="connected_media_matrix",
        title="Connected Media Matrix",
        schema=ResponseSchema(
            fields=[
                SchemaField(
                    name="moment_matrix",
                    kind="object_list",
                    subfields=[
                        _s("moment_or_trigger"),
                        _s("audience_mindset"),
                        _s("channel_format_ranked"),
                        _s("creative_or_offer_cue"),
                        _s("primary_kpi", "Primary KPI"),
                        _s("measurement_approach"),
                    ],
                )
            ]
        ),
        inputs=("campaign_summary", "audience"),
        required=("campaign_summary",),
        default_prompt=_default_prompt("connected_media_matrix"),
    ),
]

TOOLS: dict[str, ToolSpec] = {tool.name: tool for tool in _TOOL_LIST}


def get_tool(name: str) -> ToolSpec:
    try:
        return TOOLS[name]
    except KeyError:
        raise ConfigurationError(f"unknown tool '{name}'", kind="unknown_tool") from None


def list_tools() -> list[ToolSpec]:
    return list(TOOLS.values())
