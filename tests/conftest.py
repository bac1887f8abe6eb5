import base64
from typing import List, Optional, Tuple

import pytest

from core.config import Settings
from core.rate_limiter import InMemoryRateLimiter
from services.image_parser.orchestrator import ExtractionOrchestrator, ProviderChoice
from services.image_parser.providers import FakeProvider

PNG_HEADER = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 32


@pytest.fixture
def png_b64() -> str:
    return base64.b64encode(PNG_HEADER).decode("ascii")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        gemini_api_key="server-gemini-key",
        openrouter_api_key=None,
        rate_limit_max_requests=10,
        rate_limit_window_s=3600,
        rate_limit_backend="memory",
        test_mode=False,
        config_path=None,
        forwarded_allow_ips=None,
    )


class RecordingFactory:
    """Provider factory that hands out one scripted FakeProvider and records each build."""

    def __init__(self, provider: Optional[FakeProvider] = None):
        self.provider = provider or FakeProvider()
        self.builds: List[Tuple[ProviderChoice, Optional[str]]] = []

    def __call__(self, choice: ProviderChoice, api_key: Optional[str]) -> FakeProvider:
        self.builds.append((choice, api_key))
        return self.provider


@pytest.fixture
def make_orchestrator(settings):
    def _make(responses=None, limiter=None, factory=None):
        factory = factory or RecordingFactory(FakeProvider(responses))
        orchestrator = ExtractionOrchestrator(
            settings,
            rate_limiter=limiter or InMemoryRateLimiter(settings.rate_limit_max_requests, settings.rate_limit_window_s),
            provider_factory=factory,
        )
        return orchestrator, factory

    return _make
