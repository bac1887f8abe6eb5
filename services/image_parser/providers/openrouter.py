"""OpenRouter vision provider.

The secondary adapter. OpenRouter exposes an OpenAI-compatible chat completions
API; the contract is sent as plain instructions (no structured output mode),
so the JSON object has to be located inside free text.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from core.failures import ConfigError, ExtractionFailure
from services.image_parser.prompts import PromptContract
from services.image_parser.providers.base import ImagePayload, Provider, check_fields, parse_json_object

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "google/gemini-2.0-flash-001"


def find_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span in ``text``.

    Braces inside JSON strings (and escaped quotes) are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


class OpenRouterProvider(Provider):
    """Provider for vision models routed through OpenRouter."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = 60.0,
        max_tokens: int = 1024,
        referer: Optional[str] = None,
    ):
        super().__init__("openrouter", api_key, timeout)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.referer = referer

    def _build_request_payload(self, image: ImagePayload, contract: PromptContract) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": 0,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": contract.render_text()},
                        {"type": "image_url", "image_url": {"url": image.data_url()}},
                    ],
                }
            ],
        }

    def extract(self, image: ImagePayload, contract: PromptContract) -> Dict[str, Any]:
        if not self.api_key:
            raise ConfigError("OpenRouter API key is required")

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        if self.referer:
            headers["HTTP-Referer"] = self.referer

        log.debug("OpenRouter request: model=%s contract=%s", self.model, contract.name)
        response = self._post(f"{self.base_url}/chat/completions", headers, self._build_request_payload(image, contract))

        text = self._response_text(response)
        span = find_json_object(text)
        if span is None:
            raise ExtractionFailure("openrouter response contained no JSON object")
        result = parse_json_object(span, self.name)
        return check_fields(result, contract, self.name)

    def _response_text(self, response: Dict[str, Any]) -> str:
        choices: List[Dict[str, Any]] = response.get("choices") or []
        if not choices:
            raise ExtractionFailure("No response choices returned")
        content = (choices[0].get("message") or {}).get("content") or ""
        # some routed models answer with a list of content parts
        if isinstance(content, list):
            content = "".join(part.get("text", "") for part in content if isinstance(part, dict))
        return content
