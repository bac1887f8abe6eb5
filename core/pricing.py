"""Pricing record data model.

A pricing record is a tagged variant: ``LegacyPricingRecord`` (schema v1) or
``PricingRecordV2`` (schema v2). Consumers dispatch on ``schema_version``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class SchemaVersion(str, Enum):
    V1 = "v1"
    V2 = "v2"


class PricingUnit(str, Enum):
    PER_MEGAPIXEL = "PER_MEGAPIXEL"
    PER_IMAGE = "PER_IMAGE"
    PER_SECOND_VIDEO = "PER_SECOND_VIDEO"
    PER_VIDEO = "PER_VIDEO"
    PER_SECOND_GPU = "PER_SECOND_GPU"
    FREE = "FREE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


@dataclass(frozen=True)
class Resolution:
    name: str
    width: int
    height: int

    @property
    def is_sentinel(self) -> bool:
        """A 0x0 entry means "no specific size selected"."""
        return self.width == 0 and self.height == 0

    def to_payload(self) -> Dict[str, Any]:
        return {"name": self.name, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class LegacyPricingRecord:
    cost_per_image: float
    runs_per_dollar: int
    schema_version: SchemaVersion = field(default=SchemaVersion.V1, init=False)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version.value,
            "cost_per_image": self.cost_per_image,
            "runs_per_dollar": self.runs_per_dollar,
        }


@dataclass(frozen=True)
class PricingRecordV2:
    pricing_unit: PricingUnit
    base_cost: float
    gpu_type: Optional[str] = None
    resolutions: Optional[List[Resolution]] = None
    schema_version: SchemaVersion = field(default=SchemaVersion.V2, init=False)

    def selectable_resolutions(self) -> List[Resolution]:
        """Resolutions usable in per-size tables (no sentinel, no zero side)."""
        return [r for r in (self.resolutions or []) if r.width > 0 and r.height > 0]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version.value,
            "pricing_unit": self.pricing_unit.value,
            "base_cost": self.base_cost,
            "gpu_type": self.gpu_type,
            "resolutions": [r.to_payload() for r in self.resolutions] if self.resolutions is not None else None,
        }


PricingRecord = Union[LegacyPricingRecord, PricingRecordV2]


def parse_record(payload: Dict[str, Any]) -> PricingRecord:
    """Rebuild a record from its wire payload.

    Untagged payloads (responses from before versioning) are classified here,
    once, so that everything downstream can rely on ``schema_version``.
    """
    version = payload.get("schema_version")
    if version is None:
        version = SchemaVersion.V2.value if "pricing_unit" in payload and "base_cost" in payload else SchemaVersion.V1.value

    if version == SchemaVersion.V1.value:
        return LegacyPricingRecord(
            cost_per_image=float(payload["cost_per_image"]),
            runs_per_dollar=int(payload["runs_per_dollar"]),
        )
    if version == SchemaVersion.V2.value:
        resolutions = payload.get("resolutions")
        return PricingRecordV2(
            pricing_unit=PricingUnit(payload["pricing_unit"]),
            base_cost=float(payload["base_cost"]),
            gpu_type=payload.get("gpu_type"),
            resolutions=[
                Resolution(name=str(r.get("name", "")), width=int(r["width"]), height=int(r["height"]))
                for r in resolutions
            ] if resolutions else None,
        )
    raise ValueError(f"unknown schema_version {version!r}")
