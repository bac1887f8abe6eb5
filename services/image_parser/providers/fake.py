from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Optional, Union

from core.pricing import SchemaVersion
from services.image_parser.prompts import PromptContract
from services.image_parser.providers.base import ImagePayload, Provider

Scripted = Union[Dict[str, Any], BaseException]

DEFAULT_RICH = {
    "pricing_unit": "PER_MEGAPIXEL",
    "base_cost": 0.005,
    "gpu_type": None,
    "resolutions": [{"name": "Square HD", "width": 1024, "height": 1024}],
}
DEFAULT_LEGACY = {"cost_per_image": 0.039, "runs_per_dollar": 25}


class FakeProvider(Provider):
    """Offline provider that replays scripted responses.

    Each scripted item is either a result dict or an exception to raise. With
    nothing scripted, canned rich/legacy answers are returned.
    """

    def __init__(self, responses: Optional[Iterable[Scripted]] = None, name: str = "fake", api_key: str = "fake-key") -> None:
        super().__init__(name, api_key)
        self._responses: Deque[Scripted] = deque(responses or [])
        self.calls: List[str] = []

    def extract(self, image: ImagePayload, contract: PromptContract) -> Dict[str, Any]:
        self.calls.append(contract.name)
        if self._responses:
            item = self._responses.popleft()
            if isinstance(item, BaseException):
                raise item
            return dict(item)
        if contract.schema_version == SchemaVersion.V2:
            return dict(DEFAULT_RICH)
        return dict(DEFAULT_LEGACY)
