"""
Stuck-loop detection.

Every observed iteration produces a Signature. If the last `window`
signatures are identical the agent is repeating itself without progress
(same feature, same result, same fields touched) and the run is stopped.
This is independent of the failure counter: a run of "successful" no-op
iterations is just as stuck as a run of identical failures.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

from ralph.lib.errors import StuckLoopError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Signature:
    feature_id: Optional[str]
    result: str
    paths: frozenset[str] = frozenset()


class StuckDetector:
    def __init__(self, window: int = 3):
        if window < 2:
            raise ValueError("window must be at least 2")
        self.window = window
        self._recent: deque[Signature] = deque(maxlen=window)

    @property
    def recent(self) -> list[Signature]:
        return list(self._recent)

    def observe(self, signature: Signature) -> None:
        """
        Record a signature.

        Raises:
            StuckLoopError: when the last `window` signatures are all equal
        """
        self._recent.append(signature)
        repeats = self._trailing_repeats()
        if repeats > 1:
            logger.debug(f"[STUCK] {signature.feature_id}/{signature.result} repeated {repeats}x")
        if repeats >= self.window:
            raise StuckLoopError(signature, repeats)

    def _trailing_repeats(self) -> int:
        last = self._recent[-1]
        count = 0
        for sig in reversed(self._recent):
            if sig != last:
                break
            count += 1
        return count
