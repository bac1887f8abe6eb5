from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from jsonschema import Draft202012Validator

from core.pricing import PricingUnit, SchemaVersion

RICH_SCHEMA: Dict[str, Any] = {
    "$id": "pricing_record.v2",
    "type": "object",
    "required": ["pricing_unit", "base_cost"],
    "properties": {
        "pricing_unit": {"enum": PricingUnit.values()},
        "base_cost": {"type": "number", "minimum": 0},
        "gpu_type": {"type": ["string", "null"]},
        # entries are policed one by one by the corrector, not here
        "resolutions": {"type": ["array", "null"]},
    },
}

LEGACY_SCHEMA: Dict[str, Any] = {
    "$id": "pricing_record.v1",
    "type": "object",
    "required": ["cost_per_image", "runs_per_dollar"],
    "properties": {
        "cost_per_image": {"type": "number", "minimum": 0},
        "runs_per_dollar": {"type": "number", "minimum": 0},
    },
}

SCHEMAS: Dict[SchemaVersion, Dict[str, Any]] = {
    SchemaVersion.V1: LEGACY_SCHEMA,
    SchemaVersion.V2: RICH_SCHEMA,
}


@dataclass
class ValidationResult:
    ok: bool
    error: Optional[str] = None
    schema_id: Optional[str] = None
    field: Optional[str] = None


def _validate(schema: dict, instance: Any) -> ValidationResult:
    v = Draft202012Validator(schema)
    errors = sorted(v.iter_errors(instance), key=lambda e: [str(p) for p in e.path])
    if errors:
        e = errors[0]
        field = str(e.path[0]) if e.path else None
        if field is None and e.validator == "required":
            field = e.message.split("'")[1] if "'" in e.message else None
        return ValidationResult(False, f"{e.message}", schema.get("$id"), field)
    return ValidationResult(True, None, schema.get("$id"))


def validate_structure(schema_version: SchemaVersion, payload: Any) -> ValidationResult:
    return _validate(SCHEMAS[schema_version], payload)
