"""Google Gemini provider implementation.

The primary adapter. The prompt contract is sent as a ``responseSchema`` with
``responseMimeType: application/json`` so the model is constrained to the
contract's shape.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from core.failures import ConfigError, ExtractionFailure
from services.image_parser.prompts import PromptContract
from services.image_parser.providers.base import ImagePayload, Provider, check_fields, parse_json_object

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.0-flash"


class GeminiProvider(Provider):
    """Provider for Google Gemini vision models with structured output."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = 60.0,
        temperature: float = 0.0,
    ) -> None:
        super().__init__("gemini", api_key, timeout)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature

    def validate_api_key(self) -> bool:
        """Gemini API keys start with "AIza" and are 39 characters long."""
        return bool(self.api_key and self.api_key.startswith("AIza") and len(self.api_key) == 39)

    def _build_request_body(self, image: ImagePayload, contract: PromptContract) -> Dict[str, Any]:
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": contract.instruction},
                        {"inline_data": {"mime_type": image.mime_type, "data": image.data}},
                    ],
                }
            ],
            "generationConfig": {
                "temperature": self.temperature,
                "responseMimeType": "application/json",
                "responseSchema": contract.response_schema(),
            },
        }

    def _is_auth_error(self, status_code: int, message: str) -> bool:
        # Gemini answers an invalid key with 400 INVALID_ARGUMENT
        if status_code == 400 and "api key" in message.lower():
            return True
        return super()._is_auth_error(status_code, message)

    def extract(self, image: ImagePayload, contract: PromptContract) -> Dict[str, Any]:
        if not self.api_key:
            raise ConfigError("Gemini API key is required")

        url = f"{self.base_url}/models/{self.model}:generateContent"
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}
        log.debug("Gemini request: model=%s contract=%s mime=%s", self.model, contract.name, image.mime_type)

        data = self._post(url, headers, self._build_request_body(image, contract))
        text = self._response_text(data)
        result = parse_json_object(text, self.name)
        return check_fields(result, contract, self.name)

    def _response_text(self, data: Dict[str, Any]) -> str:
        candidates: List[Dict[str, Any]] = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise ExtractionFailure(f"Content blocked: {block_reason}")
            raise ExtractionFailure("No candidates in response")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text.strip():
            raise ExtractionFailure(
                f"Empty response from Gemini (finishReason={candidates[0].get('finishReason')})"
            )
        return text
