"""
Attempt Policy Module

State machine around one kiosk transaction. It bounds repeated capture
attempts and tells the caller when to switch to a non-biometric fallback
(scanning a printed ID or typing the student number).

States:
    IDLE -> CAPTURING -> MATCHING -> {ACCEPTED | RETRY_PENDING | EXHAUSTED}

Usage:
    policy = AttemptPolicy(max_attempts=3)
    policy.begin_capture()
    policy.begin_matching()
    state = policy.record_result(result)
    if state == ScanState.EXHAUSTED:
        ...  # fallback identification
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from faceid.errors import InvalidTransition
from faceid.matching.interfaces import MatchResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class OutingType(str, Enum):
    """Business context selected by the gate operator."""

    LOCAL = "Local"
    NON_LOCAL = "Non-Local"


class ScanState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    MATCHING = "matching"
    ACCEPTED = "accepted"
    RETRY_PENDING = "retry_pending"
    EXHAUSTED = "exhausted"


@dataclass
class ScanAttemptState:
    """Attempt counter for one kiosk interaction."""

    attempts_made: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    @property
    def remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts_made)

    @property
    def exhausted(self) -> bool:
        return self.attempts_made >= self.max_attempts


class AttemptPolicy:
    """
    Bounded-retry policy for kiosk scans.

    A failed match or a failed capture (decode, preprocessing, detection)
    counts as one attempt. Acceptance, cancellation, a completed fallback
    and an outing-type change all reset the counter.

    Args:
        max_attempts: Failed attempts allowed before fallback (default 3).
        outing_type: Initial business context.
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 outing_type: OutingType = OutingType.LOCAL):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        self.attempts = ScanAttemptState(attempts_made=0, max_attempts=int(max_attempts))
        self.outing_type = OutingType(outing_type)
        self.state = ScanState.IDLE
        self.last_result: Optional[MatchResult] = None
        self.last_error: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any],
                    outing_type: OutingType = OutingType.LOCAL) -> "AttemptPolicy":
        """Build from the "attempts" configuration section."""
        return cls(
            max_attempts=config.get("max_attempts", DEFAULT_MAX_ATTEMPTS),
            outing_type=outing_type,
        )

    @property
    def attempts_made(self) -> int:
        return self.attempts.attempts_made

    @property
    def max_attempts(self) -> int:
        return self.attempts.max_attempts

    @property
    def remaining(self) -> int:
        return self.attempts.remaining

    @property
    def fallback_required(self) -> bool:
        return self.state == ScanState.EXHAUSTED

    def _require(self, operation: str, *allowed: ScanState):
        if self.state not in allowed:
            raise InvalidTransition(
                f"Cannot {operation} while {self.state.value} "
                f"(allowed from: {', '.join(s.value for s in allowed)})"
            )

    def _reset_counter(self):
        self.attempts.attempts_made = 0

    def begin_capture(self) -> ScanState:
        """
        Start a capture.

        Raises:
            InvalidTransition: If a capture is already running or attempts are
                               exhausted (fallback must complete first).
        """
        self._require("begin capture", ScanState.IDLE, ScanState.RETRY_PENDING, ScanState.ACCEPTED)
        self.state = ScanState.CAPTURING
        self.last_error = None
        return self.state

    def begin_matching(self) -> ScanState:
        self._require("begin matching", ScanState.CAPTURING)
        self.state = ScanState.MATCHING
        return self.state

    def record_result(self, result: MatchResult) -> ScanState:
        """Feed the matcher's decision for the current attempt."""
        self._require("record a match result", ScanState.MATCHING)
        self.last_result = result

        if result.matched:
            self._reset_counter()
            self.state = ScanState.ACCEPTED
            logger.info(f"Scan accepted: {result.candidate_id}")
            return self.state

        return self._fail("no confident match")

    def record_failure(self, error: Optional[BaseException] = None) -> ScanState:
        """Count a capture that could not be described or matched."""
        self._require("record a failure", ScanState.CAPTURING, ScanState.MATCHING)
        self.last_result = None
        return self._fail(str(error) if error is not None else "capture failed")

    def _fail(self, reason: str) -> ScanState:
        self.attempts.attempts_made += 1
        self.last_error = reason

        if self.attempts.exhausted:
            self.state = ScanState.EXHAUSTED
            logger.warning(
                f"Scan attempts exhausted ({self.attempts_made}/{self.max_attempts}), "
                f"fallback required"
            )
        else:
            self.state = ScanState.RETRY_PENDING
            logger.info(
                f"Scan attempt {self.attempts_made}/{self.max_attempts} failed: {reason}"
            )
        return self.state

    def cancel(self) -> ScanState:
        """Operator closed the capture UI. Any in-flight result is discarded."""
        return self.reset()

    def change_context(self, outing_type: OutingType) -> ScanState:
        """Switch the outing type; starts a fresh transaction."""
        self.outing_type = OutingType(outing_type)
        return self.reset()

    def complete_fallback(self) -> ScanState:
        """Manual identification succeeded."""
        return self.reset()

    def reset(self) -> ScanState:
        self._reset_counter()
        self.state = ScanState.IDLE
        self.last_result = None
        self.last_error = None
        return self.state

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "outing_type": self.outing_type.value,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "remaining": self.remaining,
            "fallback_required": self.fallback_required,
        }
