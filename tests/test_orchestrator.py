import logging
from unittest.mock import MagicMock

import pytest

from core.failures import (
    NOT_FOUND_MESSAGE,
    AuthFailure,
    ConfigError,
    ExtractionFailure,
    InputError,
    RateLimitError,
    UpstreamError,
)
from core.config import Settings
from core.pricing import SchemaVersion
from core.state_machine import ExtractionStage
from services.image_parser.orchestrator import (
    ExtractionOrchestrator,
    ExtractionRequest,
    ProviderChoice,
    build_provider,
)
from services.image_parser.providers import FakeProvider, GeminiProvider, OpenRouterProvider

LEGACY = {"cost_per_image": 0.039, "runs_per_dollar": 25}
RICH = {"pricing_unit": "PER_IMAGE", "base_cost": 0.04, "gpu_type": None, "resolutions": None}


class TestStateMachinePath:
    def test_rich_success_for_anonymous_caller(self, make_orchestrator, png_b64):
        orchestrator, factory = make_orchestrator([RICH])

        outcome = orchestrator.run(ExtractionRequest(image=png_b64, identity="1.2.3.4"))

        assert outcome.record.schema_version == SchemaVersion.V2
        assert outcome.stages == [
            ExtractionStage.START,
            ExtractionStage.RATE_LIMIT_CHECK,
            ExtractionStage.RICH_ATTEMPT,
            ExtractionStage.SUCCESS,
        ]
        assert factory.provider.calls == ["rich"]
        assert factory.builds == [(ProviderChoice.PRIMARY, "server-gemini-key")]

    def test_extraction_failure_triggers_exactly_one_legacy_attempt(self, make_orchestrator, png_b64):
        orchestrator, factory = make_orchestrator([ExtractionFailure("unparseable"), LEGACY])

        outcome = orchestrator.run(ExtractionRequest(image=png_b64))

        assert factory.provider.calls == ["rich", "legacy"]
        assert outcome.record.schema_version == SchemaVersion.V1
        assert outcome.record.runs_per_dollar == 25
        assert outcome.fell_back

    def test_invalid_rich_record_falls_back(self, make_orchestrator, png_b64, caplog):
        caplog.set_level(logging.WARNING)
        orchestrator, factory = make_orchestrator([{"pricing_unit": "PER_TOKEN", "base_cost": 0.1}, LEGACY])

        outcome = orchestrator.run(ExtractionRequest(image=png_b64))

        assert factory.provider.calls == ["rich", "legacy"]
        assert outcome.record.cost_per_image == 0.039
        assert any("falling back" in rec.message for rec in caplog.records)

    def test_non_finite_rich_cost_falls_back(self, make_orchestrator, png_b64):
        orchestrator, factory = make_orchestrator([dict(RICH, base_cost=float("nan")), LEGACY])

        outcome = orchestrator.run(ExtractionRequest(image=png_b64))

        assert factory.provider.calls == ["rich", "legacy"]
        assert outcome.record.schema_version == SchemaVersion.V1

    def test_non_finite_legacy_value_is_not_found(self, make_orchestrator, png_b64):
        orchestrator, _ = make_orchestrator(
            [ExtractionFailure("no json"), {"cost_per_image": 0, "runs_per_dollar": float("inf")}]
        )

        result = orchestrator.parse_image(png_b64)

        assert result.status_code == 422
        assert result.error == NOT_FOUND_MESSAGE

    def test_auth_failure_never_falls_back(self, make_orchestrator, png_b64):
        orchestrator, factory = make_orchestrator([AuthFailure("bad key"), LEGACY])

        with pytest.raises(AuthFailure):
            orchestrator.run(ExtractionRequest(image=png_b64, credential="AIza-user-key-123"))

        assert factory.provider.calls == ["rich"]

    def test_upstream_error_never_falls_back(self, make_orchestrator, png_b64):
        orchestrator, factory = make_orchestrator([UpstreamError("503", upstream_status=503), LEGACY])

        with pytest.raises(UpstreamError):
            orchestrator.run(ExtractionRequest(image=png_b64))

        assert factory.provider.calls == ["rich"]

    def test_both_attempts_failing_reports_missing_pricing(self, make_orchestrator, png_b64):
        orchestrator, factory = make_orchestrator([ExtractionFailure("no json"), ExtractionFailure("no json")])

        with pytest.raises(ExtractionFailure) as excinfo:
            orchestrator.run(ExtractionRequest(image=png_b64))

        assert excinfo.value.message == NOT_FOUND_MESSAGE
        assert excinfo.value.status_code == 422
        assert factory.provider.calls == ["rich", "legacy"]

    def test_legacy_validation_failure_is_terminal(self, make_orchestrator, png_b64):
        orchestrator, factory = make_orchestrator([ExtractionFailure("no json"), {"cost_per_image": "cheap", "runs_per_dollar": 1}])

        with pytest.raises(ExtractionFailure, match="pricing information"):
            orchestrator.run(ExtractionRequest(image=png_b64))

    def test_auth_failure_on_legacy_attempt_propagates(self, make_orchestrator, png_b64):
        orchestrator, _ = make_orchestrator([ExtractionFailure("no json"), AuthFailure("revoked")])

        with pytest.raises(AuthFailure):
            orchestrator.run(ExtractionRequest(image=png_b64))

    def test_corrections_are_reported(self, make_orchestrator, png_b64):
        orchestrator, _ = make_orchestrator([{"pricing_unit": "FREE", "base_cost": 3.0, "gpu_type": None, "resolutions": None}])

        outcome = orchestrator.run(ExtractionRequest(image=png_b64))

        assert outcome.record.base_cost == 0
        assert [c.field for c in outcome.corrections] == ["base_cost"]


class TestRateLimiting:
    def test_eleventh_anonymous_request_is_rate_limited(self, make_orchestrator, png_b64):
        orchestrator, factory = make_orchestrator()

        for _ in range(10):
            orchestrator.run(ExtractionRequest(image=png_b64, identity="1.2.3.4"))

        with pytest.raises(RateLimitError):
            orchestrator.run(ExtractionRequest(image=png_b64, identity="1.2.3.4"))
        assert factory.provider.calls.count("rich") == 10

    def test_other_identity_is_not_affected(self, make_orchestrator, png_b64):
        orchestrator, _ = make_orchestrator()
        for _ in range(10):
            orchestrator.run(ExtractionRequest(image=png_b64, identity="1.2.3.4"))

        outcome = orchestrator.run(ExtractionRequest(image=png_b64, identity="5.6.7.8"))
        assert outcome.record is not None

    def test_caller_credential_never_consults_limiter(self, make_orchestrator, png_b64):
        limiter = MagicMock()
        orchestrator, factory = make_orchestrator(limiter=limiter)

        for _ in range(25):
            outcome = orchestrator.run(ExtractionRequest(image=png_b64, credential="AIza-user-key-123", identity="1.2.3.4"))

        limiter.hit.assert_not_called()
        assert ExtractionStage.RATE_LIMIT_CHECK not in outcome.stages
        assert factory.builds[-1] == (ProviderChoice.PRIMARY, "AIza-user-key-123")

    def test_rate_limit_checked_before_provider_call(self, make_orchestrator, png_b64):
        limiter = MagicMock()
        limiter.hit.return_value = MagicMock(allowed=False, count=10, limit=10, retry_after=30.0)
        orchestrator, factory = make_orchestrator(limiter=limiter)

        with pytest.raises(RateLimitError) as excinfo:
            orchestrator.run(ExtractionRequest(image=png_b64))

        assert excinfo.value.retry_after == 30.0
        assert factory.provider.calls == []


class TestPreconditions:
    @pytest.mark.parametrize("image", [None, "", 123, {"data": "x"}])
    def test_missing_or_non_string_image(self, make_orchestrator, image):
        orchestrator, factory = make_orchestrator()

        with pytest.raises(InputError):
            orchestrator.run(ExtractionRequest(image=image))

        assert factory.builds == []

    def test_unknown_provider_selector(self, make_orchestrator, png_b64):
        orchestrator, _ = make_orchestrator()
        with pytest.raises(InputError):
            orchestrator.run(ExtractionRequest(image=png_b64, provider="tertiary"))

    def test_no_credential_available(self, png_b64):
        settings = Settings(gemini_api_key=None, openrouter_api_key=None, test_mode=False)
        factory = MagicMock()
        orchestrator = ExtractionOrchestrator(settings, provider_factory=factory)

        with pytest.raises(ConfigError) as excinfo:
            orchestrator.run(ExtractionRequest(image=png_b64))

        assert excinfo.value.status_code == 500
        factory.assert_not_called()

    def test_malformed_user_key_only_warns(self, make_orchestrator, png_b64, caplog):
        caplog.set_level(logging.WARNING)
        orchestrator, _ = make_orchestrator()

        orchestrator.run(ExtractionRequest(image=png_b64, credential="short"))

        assert any("does not look like a valid" in rec.message for rec in caplog.records)
        assert not any("short" in rec.message for rec in caplog.records)


class TestProviderSelection:
    def test_secondary_credential_routes_both_attempts(self, make_orchestrator, png_b64):
        orchestrator, factory = make_orchestrator([ExtractionFailure("no json"), LEGACY])

        orchestrator.run(ExtractionRequest(image=png_b64, credential="sk-or-user-key", provider="secondary"))

        assert factory.builds == [(ProviderChoice.SECONDARY, "sk-or-user-key")]
        assert factory.provider.calls == ["rich", "legacy"]

    def test_build_provider_variants(self, settings):
        assert isinstance(build_provider(settings, ProviderChoice.PRIMARY, "k" * 20), GeminiProvider)
        secondary = build_provider(settings, ProviderChoice.SECONDARY, "k" * 20)
        assert isinstance(secondary, OpenRouterProvider)
        assert secondary.model == settings.openrouter_model

    def test_test_mode_uses_fake_provider(self, png_b64):
        settings = Settings(gemini_api_key=None, test_mode=True)
        orchestrator = ExtractionOrchestrator(settings)

        outcome = orchestrator.run(ExtractionRequest(image=png_b64))

        assert isinstance(build_provider(settings, ProviderChoice.PRIMARY, None), FakeProvider)
        assert outcome.provider == "fake-primary"


class TestParseImage:
    def test_success_result(self, make_orchestrator, png_b64):
        orchestrator, _ = make_orchestrator([RICH])

        result = orchestrator.parse_image(png_b64)

        assert result.success is True
        assert result.status_code == 200
        assert result.data["schema_version"] == "v2"
        assert result.error is None

    def test_failure_result(self, make_orchestrator, png_b64):
        orchestrator, _ = make_orchestrator([AuthFailure("gemini rejected the API key")])

        result = orchestrator.parse_image(png_b64, credential="AIza-user-key-123")

        assert result.success is False
        assert result.status_code == 401
        assert "rejected" in result.error

    def test_unexpected_error_is_contained(self, make_orchestrator, png_b64):
        orchestrator, _ = make_orchestrator([RuntimeError("boom")])

        result = orchestrator.parse_image(png_b64)

        assert result.success is False
        assert result.status_code == 500
        assert result.error == "Internal server error"
