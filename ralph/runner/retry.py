"""
Retry and backoff policy.

Outcomes fall into three dispositions:
    success       resets the failure and rate-limit streaks
    rate_limited  transient; caller sleeps the cooldown and retries the
                  same feature without touching the failure counter
    failure       timeout, process error, validation error or failed
                  verification; counts toward the consecutive-failure limit

Consecutive rate limits are capped (max_rate_limit_retries, 0 = no cap);
past the cap each further rate limit is treated as an ordinary failure.

Per-feature failure counts feed an optional auto-block budget
(max_feature_errors, 0 = disabled).
"""

import logging
from enum import Enum
from typing import Optional

from ralph.lib.errors import MaxFailuresExceeded
from ralph.runner.state import ControllerState

logger = logging.getLogger(__name__)


class Disposition(str, Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    FAILURE = "failure"


# Iteration outcome kinds -> disposition
_DISPOSITIONS = {
    "success": Disposition.SUCCESS,
    "no_op": Disposition.SUCCESS,
    "rate_limited": Disposition.RATE_LIMITED,
    "timeout": Disposition.FAILURE,
    "process_error": Disposition.FAILURE,
    "validation_error": Disposition.FAILURE,
    "verification_failed": Disposition.FAILURE,
}


def classify(outcome_kind: str) -> Disposition:
    """Map an iteration outcome kind to its disposition."""
    try:
        return _DISPOSITIONS[outcome_kind]
    except KeyError:
        raise ValueError(f"Outcome '{outcome_kind}' has no retry disposition") from None


class RetryPolicy:
    def __init__(
        self,
        max_failures: int = 3,
        cooldown: float = 60.0,
        max_rate_limit_retries: int = 10,
        max_feature_errors: int = 0,
    ):
        self.max_failures = max_failures
        self.cooldown = cooldown
        self.max_rate_limit_retries = max_rate_limit_retries
        self.max_feature_errors = max_feature_errors

    def apply(
        self,
        state: ControllerState,
        disposition: Disposition,
        feature_id: Optional[str],
        error: Optional[Exception] = None,
    ) -> Disposition:
        """
        Update the counters in state for one outcome.

        Returns the effective disposition (a rate limit past the cap comes
        back as FAILURE).

        Raises:
            MaxFailuresExceeded: on the failure that reaches max_failures
        """
        if disposition == Disposition.SUCCESS:
            state.consecutive_failures = 0
            state.consecutive_rate_limits = 0
            if feature_id is not None:
                state.feature_errors.pop(feature_id, None)
            return Disposition.SUCCESS

        if disposition == Disposition.RATE_LIMITED:
            state.consecutive_rate_limits += 1
            cap = self.max_rate_limit_retries
            if not cap or state.consecutive_rate_limits <= cap:
                logger.info(
                    f"Rate limited ({state.consecutive_rate_limits}"
                    f"{f'/{cap}' if cap else ''}), cooling down {self.cooldown:g}s"
                )
                return Disposition.RATE_LIMITED
            logger.warning(f"Rate limited {state.consecutive_rate_limits} times in a row, counting as failure")
        else:
            state.consecutive_rate_limits = 0

        state.consecutive_failures += 1
        state.last_error = error
        if feature_id is not None:
            state.feature_errors[feature_id] = state.feature_errors.get(feature_id, 0) + 1

        logger.info(f"Failure {state.consecutive_failures}/{self.max_failures}: {error}")
        if state.consecutive_failures >= self.max_failures:
            raise MaxFailuresExceeded(state.consecutive_failures, error)
        return Disposition.FAILURE

    def should_block(self, state: ControllerState, feature_id: str) -> bool:
        """True once a feature has used up its error budget."""
        if not self.max_feature_errors:
            return False
        return state.feature_errors.get(feature_id, 0) >= self.max_feature_errors
