"""Prompt contracts sent to the vision providers.

A contract couples the instruction text with a description of the fields the
model must return. The primary provider turns the field description into an
enforced response schema; the secondary provider only gets it as text.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.pricing import PricingUnit, SchemaVersion


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: str  # "number", "integer", "string", "array"
    description: str
    required: bool = True
    nullable: bool = False
    enum: Optional[Tuple[str, ...]] = None
    items: Optional[Tuple["FieldSpec", ...]] = None


@dataclass(frozen=True)
class PromptContract:
    name: str
    schema_version: SchemaVersion
    instruction: str
    fields: Tuple[FieldSpec, ...] = field(default_factory=tuple)

    @property
    def required_fields(self) -> List[str]:
        return [f.name for f in self.fields if f.required]

    @property
    def mandatory_fields(self) -> List[str]:
        """Required fields that can not be satisfied by an explicit null."""
        return [f.name for f in self.fields if f.required and not f.nullable]

    @property
    def nullable_fields(self) -> List[str]:
        return [f.name for f in self.fields if f.nullable]

    def response_schema(self) -> Dict[str, Any]:
        """Gemini ``responseSchema`` (OpenAPI subset) for this contract."""
        return _object_schema(self.fields)

    def example(self) -> Dict[str, Any]:
        return {f.name: _example_value(f) for f in self.fields}

    def render_text(self) -> str:
        """Instruction plus an explicit JSON shape, for providers without schema mode."""
        lines = [self.instruction, "", "Respond with a single JSON object and nothing else. Fields:"]
        for f in self.fields:
            constraint = f" One of: {', '.join(f.enum)}." if f.enum else ""
            nullable = " May be null." if f.nullable else ""
            lines.append(f"- {f.name} ({f.type}): {f.description}.{constraint}{nullable}")
        lines.append("")
        lines.append("Example shape:")
        lines.append(json.dumps(self.example()))
        return "\n".join(lines)


def _object_schema(specs: Tuple[FieldSpec, ...]) -> Dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": {f.name: _field_schema(f) for f in specs},
        "required": [f.name for f in specs if f.required],
    }


def _field_schema(spec: FieldSpec) -> Dict[str, Any]:
    if spec.type == "array":
        schema: Dict[str, Any] = {"type": "ARRAY", "items": _object_schema(spec.items or ())}
    else:
        schema = {"type": spec.type.upper()}
        if spec.enum:
            schema["format"] = "enum"
            schema["enum"] = list(spec.enum)
    schema["description"] = spec.description
    if spec.nullable:
        schema["nullable"] = True
    return schema


def _example_value(spec: FieldSpec) -> Any:
    if spec.enum:
        return spec.enum[0]
    if spec.type == "array":
        return [{item.name: _example_value(item) for item in spec.items or ()}]
    return {"number": 0.0, "integer": 0, "string": "..."}.get(spec.type)


RICH_INSTRUCTION = """Analyze the attached screenshot of an AI model's pricing page (for example from fal.ai).
Extract how the model is billed.

Decision rules:
1. pricing_unit is the billing dimension. If the page lists resolution or image size options, use PER_MEGAPIXEL unless the text clearly says the price is per image.
2. Use PER_IMAGE for a flat price per generated image, PER_SECOND_VIDEO for a price per second of output video, PER_VIDEO for a flat price per video, PER_SECOND_GPU for GPU time billing.
3. Use FREE only when the page says the model is free; base_cost must then be 0.
4. If no cost text is visible at all, use UNKNOWN with base_cost 0.
5. base_cost is the dollar amount for one pricing unit, as a decimal number (e.g. 0.005).
6. gpu_type is only set for PER_SECOND_GPU (e.g. "A100", "H100"); otherwise null.
7. resolutions lists the image sizes shown, with width and height in pixels. Use null when no sizes are shown.

Never guess. Every optional field that cannot be read from the image must be null, not omitted."""

LEGACY_INSTRUCTION = """Analyze the attached image which contains pricing information from fal.ai.
Extract the following information:
1. cost_per_image: The cost per image/run in dollars (as a decimal number, e.g., 0.039)
2. runs_per_dollar: The number of runs/images you can generate for $1.00 (as an integer)

Look for text patterns like:
- "$X.XX per image" or "costs $X.XX"
- "For $1.00, you can run this model X times"
- Any pricing table or cost breakdown"""


RICH_CONTRACT = PromptContract(
    name="rich",
    schema_version=SchemaVersion.V2,
    instruction=RICH_INSTRUCTION,
    fields=(
        FieldSpec("pricing_unit", "string", "The billing dimension of the model", enum=tuple(PricingUnit.values())),
        FieldSpec("base_cost", "number", "Cost in dollars for one pricing unit"),
        FieldSpec("gpu_type", "string", "GPU model for PER_SECOND_GPU pricing", nullable=True),
        FieldSpec(
            "resolutions",
            "array",
            "Image sizes offered on the page",
            nullable=True,
            items=(
                FieldSpec("name", "string", "Label shown for the size, e.g. Square HD"),
                FieldSpec("width", "integer", "Width in pixels"),
                FieldSpec("height", "integer", "Height in pixels"),
            ),
        ),
    ),
)

LEGACY_CONTRACT = PromptContract(
    name="legacy",
    schema_version=SchemaVersion.V1,
    instruction=LEGACY_INSTRUCTION,
    fields=(
        FieldSpec("cost_per_image", "number", "The cost per image/run in dollars"),
        FieldSpec("runs_per_dollar", "integer", "The number of runs/images you can generate for $1.00"),
    ),
)

CONTRACTS: Dict[SchemaVersion, PromptContract] = {
    SchemaVersion.V2: RICH_CONTRACT,
    SchemaVersion.V1: LEGACY_CONTRACT,
}
