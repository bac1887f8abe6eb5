"""Client for the image parser endpoint.

The presentation layer only needs ``parse_image``: it takes a base64 image and
an optional key, and never raises.
"""
from __future__ import annotations

import base64
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from core.failures import RATE_LIMITED_MESSAGE
from core.pricing import PricingRecord, parse_record

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = os.getenv("IMAGE_PARSER_URL", "http://localhost:8000")


@dataclass
class ApiResponse:
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def record(self) -> Optional[PricingRecord]:
        return parse_record(self.data) if self.success and self.data else None


def strip_data_url(value: str) -> str:
    """Drop a ``data:<mime>;base64,`` prefix if present."""
    if value.startswith("data:") and "," in value:
        return value.split(",", 1)[1]
    return value


def file_to_base64(path: str | Path) -> str:
    return base64.b64encode(Path(path).read_bytes()).decode("ascii")


class ImageParserClient:
    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 90.0, anon_key: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.anon_key = anon_key

    def _headers(self, user_api_key: Optional[str], provider: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.anon_key:
            headers["Authorization"] = f"Bearer {self.anon_key}"
        if user_api_key:
            key_header = "x-openrouter-key" if provider == "secondary" else "x-gemini-key"
            headers[key_header] = user_api_key
        return headers

    def parse_image(
        self,
        image_base64: str,
        user_api_key: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> ApiResponse:
        body: Dict[str, Any] = {"image": strip_data_url(image_base64)}
        if provider:
            body["provider"] = provider
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.base_url}/image-parser",
                    headers=self._headers(user_api_key, provider),
                    json=body,
                )
        except httpx.HTTPError as e:
            log.warning("Image parser request failed: %s", e)
            return ApiResponse(False, error=str(e) or "An unexpected error occurred")

        if response.status_code == 429:
            return ApiResponse(False, error=RATE_LIMITED_MESSAGE)

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            error = body.get("error") if isinstance(body, dict) else None
            if not isinstance(error, str):
                error = None
            return ApiResponse(False, error=error or f"Request failed with status {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            return ApiResponse(False, error="Invalid response from server")
        return ApiResponse(True, data=data)
