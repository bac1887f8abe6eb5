from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Set, Tuple, Type

from core.failures import ExtractionFailure, ValidationFailure


class ExtractionStage(str, Enum):
    START = "START"
    RATE_LIMIT_CHECK = "RATE_LIMIT_CHECK"
    RICH_ATTEMPT = "RICH_ATTEMPT"
    LEGACY_FALLBACK = "LEGACY_FALLBACK"
    LEGACY_ATTEMPT = "LEGACY_ATTEMPT"
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"


_ALLOWED: Dict[ExtractionStage, Set[ExtractionStage]] = {
    ExtractionStage.START: {ExtractionStage.RATE_LIMIT_CHECK, ExtractionStage.RICH_ATTEMPT},
    ExtractionStage.RATE_LIMIT_CHECK: {ExtractionStage.RICH_ATTEMPT, ExtractionStage.FAIL},
    ExtractionStage.RICH_ATTEMPT: {ExtractionStage.SUCCESS, ExtractionStage.LEGACY_FALLBACK, ExtractionStage.FAIL},
    ExtractionStage.LEGACY_FALLBACK: {ExtractionStage.LEGACY_ATTEMPT},
    ExtractionStage.LEGACY_ATTEMPT: {ExtractionStage.SUCCESS, ExtractionStage.FAIL},
    ExtractionStage.SUCCESS: set(),
    ExtractionStage.FAIL: set(),
}

TERMINAL: Set[ExtractionStage] = {ExtractionStage.SUCCESS, ExtractionStage.FAIL}

# Failure classes that move RICH_ATTEMPT to LEGACY_FALLBACK. Everything else
# (auth, transport, quota) fails the request as-is.
FALLBACK_ON: Tuple[Type[Exception], ...] = (ExtractionFailure, ValidationFailure)


class IllegalTransition(ValueError):
    def __init__(self, from_state: ExtractionStage, to_state: ExtractionStage, request_id: Optional[str] = None):
        self.from_state = from_state
        self.to_state = to_state
        self.request_id = request_id
        self.allowed_transitions = sorted(_ALLOWED.get(from_state, set()), key=lambda s: s.value)
        super().__init__(f"Illegal transition {from_state.value} -> {to_state.value}")


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    from_stage: ExtractionStage
    to_stage: ExtractionStage
    reason: str | None = None


def is_allowed(from_stage: ExtractionStage, to_stage: ExtractionStage) -> bool:
    return to_stage in _ALLOWED.get(from_stage, set())


def assert_transition(
    from_stage: ExtractionStage, to_stage: ExtractionStage, request_id: Optional[str] = None
) -> TransitionResult:
    if is_allowed(from_stage, to_stage):
        return TransitionResult(True, from_stage, to_stage, None)
    raise IllegalTransition(from_stage, to_stage, request_id=request_id)


def permits_fallback(stage: ExtractionStage, error: BaseException) -> bool:
    return stage == ExtractionStage.RICH_ATTEMPT and isinstance(error, FALLBACK_ON)


def next_stage(
    stage: ExtractionStage,
    *,
    has_credential: bool = False,
    error: Optional[BaseException] = None,
) -> ExtractionStage:
    """Transition function of the extraction pipeline.

    ``error`` is the failure raised while in ``stage`` (None when the stage
    completed normally).
    """
    if stage == ExtractionStage.START:
        return ExtractionStage.RICH_ATTEMPT if has_credential else ExtractionStage.RATE_LIMIT_CHECK
    if stage in TERMINAL:
        raise IllegalTransition(stage, stage)
    if error is not None:
        if permits_fallback(stage, error):
            return ExtractionStage.LEGACY_FALLBACK
        return ExtractionStage.FAIL
    if stage == ExtractionStage.RATE_LIMIT_CHECK:
        return ExtractionStage.RICH_ATTEMPT
    if stage == ExtractionStage.LEGACY_FALLBACK:
        return ExtractionStage.LEGACY_ATTEMPT
    return ExtractionStage.SUCCESS
