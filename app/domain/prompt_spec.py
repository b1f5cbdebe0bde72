from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
import re

import yaml


@dataclass(frozen=True)
class PromptTemplate:
    system: str
    user_template: str


@dataclass(frozen=True)
class PromptSpec:
    spec_version: str
    model: str
    temperature: float
    readme_max_chars: int
    quick_summary: PromptTemplate
    full_summary: PromptTemplate
    review: PromptTemplate
    responses: dict[str, dict[str, object]]


DEFAULT_PROMPT_SPEC_PATH = Path(__file__).resolve().parents[1] / "prompts" / "review.v1.yaml"
PLACEHOLDER_RE = re.compile(r"\{\{\s*([a-zA-Z0-9_.-]+)\s*\}\}")
CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")
REQUIRED_RESPONSES = ("quick_summary", "review")

_MISSING = object()


def load_prompt_spec(*, file_path: str | Path = DEFAULT_PROMPT_SPEC_PATH) -> PromptSpec:
    data = yaml.safe_load(Path(file_path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("prompt spec must be a YAML object")
    return parse_prompt_spec(data)


def parse_prompt_spec(data: dict[str, object]) -> PromptSpec:
    runtime_raw = _required_obj(data, "runtime")
    limits_raw = _required_obj(data, "limits")
    readme_max_chars = limits_raw.get("readme_max_chars")
    if not isinstance(readme_max_chars, int) or readme_max_chars <= 0:
        raise ValueError("limits.readme_max_chars must be a positive integer")

    prompts_raw = _required_obj(data, "prompts")
    full_raw = _required_obj(prompts_raw, "full_summary")

    responses_raw = _required_obj(data, "responses")
    responses: dict[str, dict[str, object]] = {}
    for name in REQUIRED_RESPONSES:
        schema = _required_obj(responses_raw, name)
        _validate_response_spec(name, schema)
        responses[name] = dict(schema)

    return PromptSpec(
        spec_version=_required_str(data, "spec_version"),
        model=_required_str(data, "model"),
        temperature=_required_float(runtime_raw, "temperature"),
        readme_max_chars=readme_max_chars,
        quick_summary=_template(_required_obj(prompts_raw, "quick_summary")),
        full_summary=PromptTemplate(system="", user_template=_required_str(full_raw, "user_template")),
        review=_template(_required_obj(prompts_raw, "review")),
        responses=responses,
    )


def render_prompt(*, template: str, inputs: dict[str, object]) -> str:
    """Substitute {{ dotted.path }} placeholders from inputs.

    An unknown placeholder raises ValueError; a known but empty value renders as "n/a".
    """

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        value = _lookup_dot_path(inputs, key)
        if value is _MISSING:
            raise ValueError(f"unknown placeholder: {key}")
        if value is None or value == "" or value == [] or value == ():
            return "n/a"
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, ensure_ascii=True, sort_keys=True)
        return str(value)

    return PLACEHOLDER_RE.sub(_replace, template)


def parse_json_object(text: str) -> dict[str, object] | None:
    """Parse a JSON object from model output, tolerating markdown code fences."""
    cleaned = CODE_FENCE_RE.sub("", text.strip())
    try:
        loaded = json.loads(cleaned)
    except json.JSONDecodeError:
        return None
    return loaded if isinstance(loaded, dict) else None


def validate_response(*, payload: dict[str, object], schema: dict[str, object]) -> None:
    _validate_schema_node(payload, schema, path="$")


def _template(raw: dict[str, object]) -> PromptTemplate:
    return PromptTemplate(
        system=_required_str(raw, "system"),
        user_template=_required_str(raw, "user_template"),
    )


def _validate_response_spec(name: str, schema: dict[str, object]) -> None:
    if schema.get("type") != "json":
        raise ValueError(f"responses.{name}.type must be 'json'")
    if not isinstance(schema.get("required"), list):
        raise ValueError(f"responses.{name}.required must be a list")
    if not isinstance(schema.get("properties"), dict):
        raise ValueError(f"responses.{name}.properties must be an object")


def _validate_schema_node(value: object, schema: dict[str, object], *, path: str) -> None:
    schema_type = schema.get("type")
    if schema_type in ("json", "object"):
        if not isinstance(value, dict):
            raise ValueError(f"{path}: expected JSON object")
        required = schema.get("required", [])
        properties = schema.get("properties", {})
        if not isinstance(required, list) or not isinstance(properties, dict):
            raise ValueError(f"{path}: invalid object schema")
        for field_name in required:
            if field_name not in value:
                raise ValueError(f"{path}.{field_name}: required field is missing")
        for key, field_schema in properties.items():
            if key not in value:
                continue
            if not isinstance(field_schema, dict):
                raise ValueError(f"{path}.{key}: field schema must be object")
            _validate_schema_node(value[key], field_schema, path=f"{path}.{key}")
        return

    if schema_type == "string":
        if not isinstance(value, str):
            raise ValueError(f"{path}: expected string")
        return

    if schema_type == "number":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{path}: expected number")
        return

    raise ValueError(f"{path}: unsupported schema type '{schema_type}'")


def _lookup_dot_path(data: dict[str, object], path: str) -> object:
    current: object = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _required_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{key} is required and must be non-empty string")
    return value


def _required_float(data: dict[str, object], key: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} is required and must be number")
    return float(value)


def _required_obj(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ValueError(f"{key} is required and must be object")
    return value
