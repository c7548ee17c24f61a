from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from adaptation.resolution.errors import ManifestError, ResolutionError
from adaptation.resolution.models import RegistryEntry
from adaptation.resolution.registry import Registry

MANIFEST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["subjects"],
    "additionalProperties": False,
    "properties": {
        "version": {"type": "integer", "minimum": 1},
        "subjects": {"type": "object", "additionalProperties": {"$ref": "#/$defs/subject"}},
    },
    "$defs": {
        "subject": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "default": {"type": "string"},
                "variants": {"type": "object", "additionalProperties": {"$ref": "#/$defs/variant"}},
            },
        },
        "variant": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "trigger": {},
                "payload": {},
            },
        },
    },
}


def _type_ok(expected: str, value: Any) -> bool:
    mapping = {
        "object": dict,
        "array": list,
        "string": str,
        "number": (int, float),
        "integer": int,
        "boolean": bool,
    }
    py_t = mapping.get(expected)
    if py_t is None:
        return True
    if expected in ("number", "integer") and isinstance(value, bool):
        return False
    return isinstance(value, py_t)


def _resolve_ref(schema: dict[str, Any], root_schema: dict[str, Any]) -> dict[str, Any] | None:
    ref = schema.get("$ref")
    if not ref:
        return schema
    if not str(ref).startswith("#/$defs/"):
        return None
    target = root_schema.get("$defs", {}).get(str(ref).split("/")[-1])
    return target if isinstance(target, dict) else None


def validate_schema(
    data: Any,
    schema: dict[str, Any],
    path: str = "$",
    root_schema: dict[str, Any] | None = None,
) -> list[str]:
    errors: list[str] = []
    root_schema = root_schema or schema
    resolved = _resolve_ref(schema, root_schema)
    if resolved is None:
        return [f"{path}: unresolved $ref {schema.get('$ref')}"]
    schema = resolved

    expected_type = schema.get("type")
    if expected_type and not _type_ok(expected_type, data):
        errors.append(f"{path}: expected {expected_type}, got {type(data).__name__}")
        return errors

    if isinstance(data, (int, float)) and not isinstance(data, bool):
        if "minimum" in schema and data < schema["minimum"]:
            errors.append(f"{path}: value {data} < minimum {schema['minimum']}")

    if isinstance(data, dict):
        for k in schema.get("required", []):
            if k not in data:
                errors.append(f"{path}: missing required key '{k}'")
        properties = schema.get("properties", {})
        additional = schema.get("additionalProperties", True)
        for k, v in data.items():
            if k in properties:
                errors.extend(validate_schema(v, properties[k], f"{path}.{k}", root_schema))
            elif additional is False:
                errors.append(f"{path}: unexpected key '{k}'")
            elif isinstance(additional, dict):
                errors.extend(validate_schema(v, additional, f"{path}.{k}", root_schema))

    return errors


@dataclass(frozen=True)
class SubjectDefinition:
    subject_id: str
    default_variant_name: str
    variants: dict[str, Any]


def load_file(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            obj = json.loads(text)
        else:
            obj = yaml.safe_load(text)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ManifestError(f"{path}: {e}") from e
    if not isinstance(obj, dict):
        raise ManifestError(f"{path}: top-level must be object")
    return obj


def parse_manifest(data: dict[str, Any], *, source: str = "<memory>") -> list[SubjectDefinition]:
    errors = validate_schema(data, MANIFEST_SCHEMA)
    if errors:
        raise ManifestError(f"{source}: " + "; ".join(errors[:10]))

    out: list[SubjectDefinition] = []
    for subject_id, body in (data.get("subjects") or {}).items():
        body = body or {}
        variants = body.get("variants") or {}
        default = str(body.get("default", "") or "")
        try:
            # Full predicate/default validation without touching any registry.
            Registry.validate(str(subject_id), variants, default)
        except ResolutionError as e:
            raise ManifestError(f"{source}: subject={subject_id}: {e}") from e
        out.append(SubjectDefinition(str(subject_id), default, dict(variants)))
    return out


def load_manifest(path: Path | str) -> list[SubjectDefinition]:
    p = Path(path)
    return parse_manifest(load_file(p), source=str(p))


def apply_manifest(engine: Any, path: Path | str) -> list[RegistryEntry]:
    definitions = load_manifest(path)
    return engine.register_many(
        {d.subject_id: {"default": d.default_variant_name, "variants": d.variants} for d in definitions}
    )
