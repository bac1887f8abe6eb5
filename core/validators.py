"""Validation and correction of raw extraction results.

Structurally invalid output (unknown pricing unit, non-numeric cost) raises
``ValidationFailure``. Output that is well formed but breaks a cross-field rule
is corrected in place of being rejected, and every correction is logged.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.failures import ValidationFailure
from core.pricing import (
    LegacyPricingRecord,
    PricingRecord,
    PricingRecordV2,
    PricingUnit,
    Resolution,
    SchemaVersion,
)
from core.schema_validate import validate_structure

log = logging.getLogger(__name__)

_NUMERIC_FIELDS = {
    SchemaVersion.V1: ("cost_per_image", "runs_per_dollar"),
    SchemaVersion.V2: ("base_cost",),
}


@dataclass(frozen=True)
class Correction:
    field: str
    original: Any
    corrected: Any
    reason: str


@dataclass
class NormalizationResult:
    record: PricingRecord
    corrections: List[Correction] = field(default_factory=list)


def normalize(raw: Any, schema_version: SchemaVersion) -> NormalizationResult:
    if not isinstance(raw, dict):
        raise ValidationFailure(f"expected a JSON object, got {type(raw).__name__}")

    res = validate_structure(schema_version, raw)
    if not res.ok:
        raise ValidationFailure(f"{res.schema_id}: {res.error}", field=res.field)
    _require_finite(raw, _NUMERIC_FIELDS[schema_version])

    if schema_version == SchemaVersion.V1:
        return NormalizationResult(_legacy_record(raw))
    return _normalize_v2(raw)


def _require_finite(raw: Dict[str, Any], names: tuple) -> None:
    # json.loads accepts NaN and Infinity, which pass the numeric schema checks
    for name in names:
        value = raw.get(name)
        if isinstance(value, float) and not math.isfinite(value):
            raise ValidationFailure(f"{name} must be a finite number, got {value!r}", field=name)


def normalize_record(raw: Any, schema_version: SchemaVersion) -> PricingRecord:
    return normalize(raw, schema_version).record


def _legacy_record(raw: Dict[str, Any]) -> LegacyPricingRecord:
    return LegacyPricingRecord(
        cost_per_image=float(raw["cost_per_image"]),
        runs_per_dollar=int(raw["runs_per_dollar"]),
    )


def _normalize_v2(raw: Dict[str, Any]) -> NormalizationResult:
    corrections: List[Correction] = []
    unit = PricingUnit(raw["pricing_unit"])
    base_cost = float(raw["base_cost"])
    gpu_type = raw.get("gpu_type")

    if unit == PricingUnit.FREE and base_cost != 0:
        corrections.append(Correction("base_cost", base_cost, 0.0, "FREE pricing must have zero base cost"))
        base_cost = 0.0

    if unit != PricingUnit.PER_SECOND_GPU and gpu_type is not None:
        corrections.append(Correction("gpu_type", gpu_type, None, f"gpu_type only applies to {PricingUnit.PER_SECOND_GPU.value}"))
        gpu_type = None

    resolutions: Optional[List[Resolution]] = None
    raw_resolutions = raw.get("resolutions")
    if raw_resolutions:
        kept = [r for r in (_coerce_resolution(item) for item in raw_resolutions) if r is not None]
        dropped = len(raw_resolutions) - len(kept)
        if dropped:
            corrections.append(Correction("resolutions", len(raw_resolutions), len(kept), f"dropped {dropped} invalid resolution(s)"))
        resolutions = kept or None

    for c in corrections:
        log.info(
            "Corrected %s: %r -> %r (%s)",
            c.field,
            c.original,
            c.corrected,
            c.reason,
            extra={"correction": c.reason, "field": c.field},
        )

    record = PricingRecordV2(pricing_unit=unit, base_cost=base_cost, gpu_type=gpu_type, resolutions=resolutions)
    return NormalizationResult(record, corrections)


def _coerce_resolution(item: Any) -> Optional[Resolution]:
    if not isinstance(item, dict):
        return None
    width = _as_dimension(item.get("width"))
    height = _as_dimension(item.get("height"))
    if width is None or height is None:
        return None
    name = item.get("name")
    return Resolution(name=str(name) if name is not None else f"{width}x{height}", width=width, height=height)


def _as_dimension(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value < 0 or value != int(value):
        return None
    return int(value)
