"""Extraction orchestrator.

Turns one screenshot into a normalized pricing record:

    START -> RATE_LIMIT_CHECK (anonymous only) -> RICH_ATTEMPT
          -> SUCCESS | LEGACY_FALLBACK -> LEGACY_ATTEMPT -> SUCCESS | FAIL

Stage order and the failure classes that allow the rich -> legacy fallback are
defined in ``core.state_machine``; this module only executes stages.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.config import Settings
from core.failures import (
    NOT_FOUND_MESSAGE,
    ConfigError,
    ExtractionFailure,
    ImageParserError,
    InputError,
    RateLimitError,
)
from core.pricing import PricingRecord, SchemaVersion
from core.rate_limiter import InMemoryRateLimiter, RateLimiter
from core.state_machine import TERMINAL, ExtractionStage, assert_transition, next_stage
from core.validators import Correction, NormalizationResult, normalize
from services.image_parser.prompts import CONTRACTS
from services.image_parser.providers import FakeProvider, GeminiProvider, ImagePayload, OpenRouterProvider, Provider

log = logging.getLogger(__name__)


class ProviderChoice(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass
class ExtractionRequest:
    image: Any
    credential: Optional[str] = None
    provider: Optional[str] = None
    identity: str = "anonymous"
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class ExtractionOutcome:
    record: PricingRecord
    provider: str
    stages: List[ExtractionStage]
    corrections: List[Correction] = field(default_factory=list)

    @property
    def fell_back(self) -> bool:
        return ExtractionStage.LEGACY_FALLBACK in self.stages

    def to_payload(self) -> Dict[str, Any]:
        return self.record.to_payload()


@dataclass
class ParseResult:
    """Discriminated result handed to presentation code."""
    success: bool
    status_code: int
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


ProviderFactory = Callable[[ProviderChoice, Optional[str]], Provider]


def build_provider(settings: Settings, choice: ProviderChoice, api_key: Optional[str]) -> Provider:
    if settings.test_mode:
        return FakeProvider(name=f"fake-{choice.value}")
    if choice == ProviderChoice.SECONDARY:
        return OpenRouterProvider(
            api_key=api_key,
            base_url=settings.openrouter_base_url,
            model=settings.openrouter_model,
            timeout=settings.timeout_s,
        )
    return GeminiProvider(
        api_key=api_key,
        base_url=settings.gemini_base_url,
        model=settings.gemini_model,
        timeout=settings.timeout_s,
    )


class ExtractionOrchestrator:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[RateLimiter] = None,
        provider_factory: Optional[ProviderFactory] = None,
    ):
        self.settings = settings or Settings()
        self.rate_limiter = rate_limiter or InMemoryRateLimiter(
            self.settings.rate_limit_max_requests, self.settings.rate_limit_window_s
        )
        self.provider_factory = provider_factory or (lambda choice, key: build_provider(self.settings, choice, key))

    # ---- request preconditions ----

    def _image(self, value: Any) -> ImagePayload:
        if not value or not isinstance(value, str):
            raise InputError("Missing or invalid 'image' field. Expected base64 string.")
        return ImagePayload.from_base64(value)

    def _choose(self, request: ExtractionRequest) -> ProviderChoice:
        if request.provider is None:
            return ProviderChoice.PRIMARY
        try:
            return ProviderChoice(request.provider)
        except ValueError:
            raise InputError(f"Unknown provider {request.provider!r}; expected 'primary' or 'secondary'")

    def _server_key(self, choice: ProviderChoice) -> Optional[str]:
        if choice == ProviderChoice.SECONDARY:
            return self.settings.openrouter_api_key
        return self.settings.gemini_api_key

    def _provider(self, choice: ProviderChoice, credential: Optional[str]) -> Provider:
        api_key = credential or self._server_key(choice)
        if not api_key and not self.settings.test_mode:
            log.error("No %s API key configured and none supplied by caller", choice.value)
            raise ConfigError("Server configuration error")
        provider = self.provider_factory(choice, api_key)
        if credential and not provider.validate_api_key():
            log.warning("Caller-supplied key does not look like a valid %s API key", provider.name)
        return provider

    # ---- stages ----

    def _check_rate_limit(self, identity: str) -> None:
        decision = self.rate_limiter.hit(identity)
        if not decision.allowed:
            log.warning("Anonymous quota exhausted (%s/%s)", decision.count, decision.limit)
            raise RateLimitError(retry_after=decision.retry_after)

    def _attempt(self, provider: Provider, image: ImagePayload, version: SchemaVersion) -> NormalizationResult:
        raw = provider.extract(image, CONTRACTS[version])
        return normalize(raw, version)

    def run(self, request: ExtractionRequest) -> ExtractionOutcome:
        """Execute the pipeline for one request.

        Raises:
            ImageParserError: The terminal failure, already classified
        """
        image = self._image(request.image)
        provider = self._provider(self._choose(request), request.credential)

        stage = ExtractionStage.START
        stages = [stage]
        result: Optional[NormalizationResult] = None
        error: Optional[ImageParserError] = None

        while stage not in TERMINAL:
            error = None
            if stage == ExtractionStage.START:
                target = next_stage(stage, has_credential=bool(request.credential))
            else:
                try:
                    if stage == ExtractionStage.RATE_LIMIT_CHECK:
                        self._check_rate_limit(request.identity)
                    elif stage == ExtractionStage.RICH_ATTEMPT:
                        result = self._attempt(provider, image, SchemaVersion.V2)
                    elif stage == ExtractionStage.LEGACY_ATTEMPT:
                        result = self._attempt(provider, image, SchemaVersion.V1)
                except ImageParserError as exc:
                    error = exc
                target = next_stage(stage, error=error)
                if target == ExtractionStage.LEGACY_FALLBACK:
                    log.warning("Rich extraction failed via %s, falling back to legacy schema: %s", provider.name, error)

            assert_transition(stage, target, request_id=request.request_id)
            if target == ExtractionStage.FAIL:
                stages.append(target)
                raise self._terminal_error(stage, error)
            stage = target
            stages.append(stage)

        assert result is not None
        log.info(
            "Extracted %s record via %s (stages=%s, corrections=%d)",
            result.record.schema_version.value,
            provider.name,
            "->".join(s.value for s in stages),
            len(result.corrections),
        )
        return ExtractionOutcome(result.record, provider.name, stages, list(result.corrections))

    def _terminal_error(self, stage: ExtractionStage, error: Optional[ImageParserError]) -> ImageParserError:
        if isinstance(error, ExtractionFailure) and stage == ExtractionStage.LEGACY_ATTEMPT:
            log.warning("Legacy extraction failed: %s", error)
            not_found = ExtractionFailure(NOT_FOUND_MESSAGE, details={"cause": str(error)})
            not_found.__cause__ = error
            return not_found
        if error is None:
            return ImageParserError(f"extraction failed at {stage.value}")
        log.warning("Extraction failed at %s: %s", stage.value, error)
        return error

    def parse_image(
        self,
        image: Any,
        credential: Optional[str] = None,
        provider: Optional[str] = None,
        identity: str = "anonymous",
    ) -> ParseResult:
        """Run the pipeline and fold every outcome into a ``ParseResult``."""
        request = ExtractionRequest(image=image, credential=credential or None, provider=provider, identity=identity)
        try:
            outcome = self.run(request)
        except ImageParserError as exc:
            return ParseResult(False, exc.status_code, error=exc.message)
        except Exception:
            log.exception("Unexpected error processing request %s", request.request_id)
            return ParseResult(False, 500, error="Internal server error")
        return ParseResult(True, 200, data=outcome.to_payload())
