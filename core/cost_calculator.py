"""Cost metrics derived from a normalized pricing record.

Pure functions only. ``UNBOUNDED_RUNS`` (``math.inf``) is what a free or
zero-cost record yields for runs-per-dollar.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from core.pricing import LegacyPricingRecord, PricingRecord, PricingRecordV2, PricingUnit, Resolution, SchemaVersion

UNBOUNDED_RUNS = math.inf
DEFAULT_BUDGET = 10.0


def megapixels(width: int, height: int) -> float:
    return (width * height) / 1_000_000


def cost_per_image(record: PricingRecord, width: Optional[int] = None, height: Optional[int] = None) -> float:
    """Cost of one generated image, optionally at a given resolution.

    Only PER_MEGAPIXEL depends on the resolution; every other unit (and any
    call without both dimensions) passes ``base_cost`` through.
    """
    if record.schema_version == SchemaVersion.V1:
        return record.cost_per_image

    if record.pricing_unit == PricingUnit.FREE:
        return 0.0
    if record.pricing_unit == PricingUnit.PER_MEGAPIXEL and width and height:
        return record.base_cost * megapixels(width, height)
    return record.base_cost


def runs_per_dollar(cost: float, budget: float = 1.0) -> float:
    """Whole runs affordable with ``budget`` dollars.

    Returns an int for positive costs and ``UNBOUNDED_RUNS`` otherwise.
    """
    if cost <= 0:
        return UNBOUNDED_RUNS
    return math.floor(budget / cost)


def aspect_ratio(width: int, height: int) -> Tuple[int, int]:
    if width <= 0 or height <= 0:
        raise ValueError(f"aspect ratio undefined for {width}x{height}")
    divisor = math.gcd(width, height)
    return width // divisor, height // divisor


def is_sentinel(resolution: Resolution) -> bool:
    return resolution.is_sentinel


@dataclass(frozen=True)
class CostRow:
    name: Optional[str]
    width: Optional[int]
    height: Optional[int]
    megapixels: Optional[float]
    aspect_ratio: Optional[Tuple[int, int]]
    cost_per_image: float
    runs: float


def cost_breakdown(record: PricingRecord, budget: float = DEFAULT_BUDGET) -> List[CostRow]:
    """One row per selectable resolution, or a single row when there are none."""
    if record.schema_version == SchemaVersion.V2:
        rows = [_resolution_row(record, r, budget) for r in record.selectable_resolutions()]
        if rows:
            return rows

    cost = cost_per_image(record)
    return [CostRow(None, None, None, None, None, cost, runs_per_dollar(cost, budget))]


def _resolution_row(record: PricingRecordV2, resolution: Resolution, budget: float) -> CostRow:
    cost = cost_per_image(record, resolution.width, resolution.height)
    return CostRow(
        name=resolution.name,
        width=resolution.width,
        height=resolution.height,
        megapixels=megapixels(resolution.width, resolution.height),
        aspect_ratio=aspect_ratio(resolution.width, resolution.height),
        cost_per_image=cost,
        runs=runs_per_dollar(cost, budget),
    )


def aspect_ratio_table(record: PricingRecord) -> List[Tuple[str, Tuple[int, int]]]:
    if not isinstance(record, PricingRecordV2):
        return []
    return [(r.name, aspect_ratio(r.width, r.height)) for r in record.selectable_resolutions()]


def format_cost(value: float) -> str:
    if value < 0.01:
        return f"${value:.4f}"
    return f"${value:.2f}"


def format_runs(value: float) -> str:
    if value == UNBOUNDED_RUNS:
        return "∞"
    return f"{int(value):,}"


def legacy_runs_for_budget(record: LegacyPricingRecord, budget: float = DEFAULT_BUDGET) -> int:
    """Runs for ``budget`` dollars using the extracted runs-per-dollar figure."""
    return int(record.runs_per_dollar * budget)
