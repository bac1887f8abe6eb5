"""Base vision provider interface.

A provider sends one screenshot plus one prompt contract to an external model
and returns the parsed JSON object. Providers classify their own failures
(``AuthFailure``, ``UpstreamError``, ``ExtractionFailure``) and never retry;
retry and fallback decisions belong to the orchestrator.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from core.failures import AuthFailure, ExtractionFailure, InputError, UpstreamError
from services.image_parser.prompts import PromptContract

log = logging.getLogger(__name__)

_MAGIC = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


@dataclass(frozen=True)
class ImagePayload:
    """A base64 encoded screenshot."""
    data: str
    mime_type: str = "image/png"

    @classmethod
    def from_base64(cls, value: str) -> "ImagePayload":
        """Build a payload from raw base64 or a ``data:`` URL.

        Raises:
            InputError: If the value does not decode as base64
        """
        data = value.strip()
        if data.startswith("data:") and "," in data:
            data = data.split(",", 1)[1]
        data = "".join(data.split())
        if not data:
            raise InputError("Missing or invalid 'image' field. Expected base64 string.")
        try:
            head = base64.b64decode(data[:64] + "=" * (-len(data[:64]) % 4), validate=True)
            base64.b64decode(data + "=" * (-len(data) % 4), validate=True)
        except (binascii.Error, ValueError):
            raise InputError("Invalid 'image' field: not valid base64 data.")
        return cls(data=data, mime_type=sniff_mime_type(head))

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


def sniff_mime_type(head: bytes, default: str = "image/png") -> str:
    for magic, mime in _MAGIC:
        if head.startswith(magic):
            return mime
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    return default


class Provider(ABC):
    """Abstract base class for vision providers."""

    def __init__(self, name: str, api_key: Optional[str] = None, timeout: float = 60.0):
        self.name = name
        self.api_key = api_key
        self.timeout = timeout

    @abstractmethod
    def extract(self, image: ImagePayload, contract: PromptContract) -> Dict[str, Any]:
        """Extract a JSON object shaped by ``contract`` from ``image``.

        Raises:
            AuthFailure: If the upstream rejects the credential
            UpstreamError: On transport errors or upstream 5xx/429
            ExtractionFailure: If the model output cannot be parsed into the contract
        """
        raise NotImplementedError

    def validate_api_key(self) -> bool:
        """Check that an API key is present and plausibly formatted."""
        return bool(self.api_key and len(self.api_key) > 10)

    def _post(self, url: str, headers: Dict[str, str], body: Dict[str, Any]) -> Dict[str, Any]:
        """Single bounded POST; returns the decoded JSON body."""
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, headers=headers, json=body)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e)
        except httpx.TimeoutException:
            raise UpstreamError(f"{self.name} request timed out after {self.timeout}s")
        except httpx.RequestError as e:
            raise UpstreamError(f"{self.name} request failed: {e}")
        except ValueError as e:
            raise UpstreamError(f"{self.name} returned a non-JSON response: {e}")

    def _error_message(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return str(error.get("message") or response.text)
        return str(error) if error else response.text

    def _is_auth_error(self, status_code: int, message: str) -> bool:
        return status_code in (401, 403)

    def _handle_http_error(self, error: httpx.HTTPStatusError) -> None:
        status_code = error.response.status_code
        message = self._error_message(error.response)

        if self._is_auth_error(status_code, message):
            raise AuthFailure(f"{self.name} rejected the API key: {message}")
        if status_code == 429:
            raise UpstreamError(f"{self.name} rate limit exceeded: {message}", upstream_status=status_code)
        if status_code >= 500:
            raise UpstreamError(f"{self.name} server error ({status_code}): {message}", upstream_status=status_code)
        raise UpstreamError(f"{self.name} API error ({status_code}): {message}", upstream_status=status_code)


def parse_json_object(text: str, provider: str) -> Dict[str, Any]:
    try:
        result = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ExtractionFailure(f"{provider} returned unparseable JSON: {e}")
    if not isinstance(result, dict):
        raise ExtractionFailure(f"{provider} returned {type(result).__name__}, expected a JSON object")
    return result


def check_fields(result: Dict[str, Any], contract: PromptContract, provider: str) -> Dict[str, Any]:
    """Ensure mandatory fields exist; fill omitted nullable ones with None."""
    missing = [name for name in contract.mandatory_fields if result.get(name) is None]
    if missing:
        raise ExtractionFailure(f"{provider} response is missing required fields: {', '.join(missing)}")
    for name in contract.nullable_fields:
        result.setdefault(name, None)
    return result
