from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_MODEL = "claude-opus-4-6"

FieldKind = Literal["string", "number", "string_list", "object", "object_list"]
ParseStatus = Literal["success", "fallback_used", "failed"]
Role = Literal["system", "user", "assistant"]

LIST_KINDS = {"string_list", "object_list"}
OBJECT_KINDS = {"object", "object_list"}


class ModelParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    model: str = Field(DEFAULT_MODEL, min_length=1)
    max_tokens: int = Field(1000, gt=0)
    temperature: float = 0.7
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0


class PromptTemplate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tool_name: str = Field(..., min_length=1)
    prompt_text: str
    model: str = Field(DEFAULT_MODEL, min_length=1)
    max_tokens: int = Field(1000, gt=0)
    temperature: float = 0.7
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0

    def model_params(self) -> ModelParams:
        return ModelParams(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
            frequency_penalty=self.frequency_penalty,
            presence_penalty=self.presence_penalty,
        )


class Message(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: Role
    content: str


class SchemaField(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    kind: FieldKind = "string"
    label: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)
    subfields: List["SchemaField"] = Field(default_factory=list)
    expected_count: Optional[int] = Field(None, gt=0)
    item_label: Optional[str] = None

    @model_validator(mode="after")
    def validate_shape(self) -> "SchemaField":
        if self.subfields and self.kind not in OBJECT_KINDS:
            raise ValueError(f"field '{self.name}' of kind '{self.kind}' cannot declare subfields")
        for sub in self.subfields:
            if sub.kind in OBJECT_KINDS:
                raise ValueError(f"subfield '{self.name}.{sub.name}' cannot be an object")
        if self.expected_count is not None and self.kind not in LIST_KINDS:
            raise ValueError(f"expected_count requires a list field, got '{self.kind}' for '{self.name}'")
        return self

    @property
    def heading(self) -> str:
        return self.label or self.name.replace("_", " ").title()

    @property
    def headings(self) -> List[str]:
        seen: List[str] = []
        for candidate in [self.heading, self.name, *self.aliases]:
            if candidate and candidate not in seen:
                seen.append(candidate)
        return seen

    def empty_value(self) -> Any:
        if self.kind in LIST_KINDS:
            return []
        if self.kind == "object":
            return {}
        return ""


class ResponseSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    root: Literal["object", "array"] = "object"
    fields: List[SchemaField] = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_fields(self) -> "ResponseSchema":
        names = [field.name for field in self.fields]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate schema fields: {', '.join(duplicates)}")
        if self.root == "array":
            if len(self.fields) != 1 or self.fields[0].kind not in LIST_KINDS:
                raise ValueError("array schemas require exactly one list field")
        return self

    def field_names(self) -> List[str]:
        return [field.name for field in self.fields]

    def numeric_keys(self) -> List[str]:
        keys = set()
        for field in self.fields:
            if field.kind == "number":
                keys.add(field.name)
            for sub in field.subfields:
                if sub.kind == "number":
                    keys.add(sub.name)
        return sorted(keys)

    def empty_fields(self) -> Dict[str, Any]:
        return {field.name: field.empty_value() for field in self.fields}


class TierAttempt(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tier: Literal["strict_json", "section_regex", "line_scan", "raw_passthrough"]
    outcome: Literal["success", "empty", "error"]
    detail: Optional[str] = None


class NormalizeTrace(BaseModel):
    model_config = ConfigDict(extra="forbid")

    attempts: List[TierAttempt] = Field(default_factory=list)
    rewrites: List[str] = Field(default_factory=list)
    populated: List[str] = Field(default_factory=list)


class NormalizedResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fields: Dict[str, Any]
    parse_status: ParseStatus
    warning: Optional[str] = None
    user_note: Optional[str] = None
    raw_response: Optional[str] = None
    trace: NormalizeTrace = Field(default_factory=NormalizeTrace)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.fields)
        if self.raw_response is not None:
            payload["raw_response"] = self.raw_response
        payload["parse_status"] = self.parse_status
        if self.warning is not None:
            payload["warning"] = self.warning
        if self.user_note is not None:
            payload["user_note"] = self.user_note
        return payload


class AssembleTrace(BaseModel):
    model_config = ConfigDict(extra="forbid")

    placeholders: List[str] = Field(default_factory=list)
    missing_fields: List[str] = Field(default_factory=list)
    leaked_placeholders: List[str] = Field(default_factory=list)
