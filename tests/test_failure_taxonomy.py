import pytest

from core.failures import (
    AuthFailure,
    ConfigError,
    ExtractionFailure,
    Failure,
    FailureCategory,
    ImageParserError,
    InputError,
    RateLimitError,
    UpstreamError,
    ValidationFailure,
)


def test_failure_payload_structure():
    failure = Failure(FailureCategory.UPSTREAM, "timeout", details={"provider": "gemini"})
    payload = failure.to_payload()
    assert payload["category"] == "UPSTREAM"
    assert payload["details"]["provider"] == "gemini"


@pytest.mark.parametrize(
    "error, status",
    [
        (InputError("bad"), 400),
        (ConfigError("no key"), 500),
        (RateLimitError(), 429),
        (ExtractionFailure("no json"), 422),
        (ValidationFailure("bad unit"), 422),
        (AuthFailure("bad key"), 401),
        (UpstreamError("down"), 502),
    ],
)
def test_status_codes(error, status):
    assert isinstance(error, ImageParserError)
    assert error.status_code == status
    assert error.failure.category == error.category


def test_rate_limit_message_suggests_own_key():
    err = RateLimitError(retry_after=12.0)
    assert "own Gemini API key" in err.message
    assert err.failure.details == {"retry_after": 12.0}


def test_upstream_error_keeps_status():
    err = UpstreamError("server error", upstream_status=503)
    assert err.upstream_status == 503
    assert err.failure.to_payload()["details"]["upstream_status"] == 503
