"""Overall pipeline timeout.

One ``Deadline`` is created per run. It is checked at every stage boundary
and its remaining budget bounds every blocking collaborator call, so a
timeout anywhere ends the run instead of letting it continue silently.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from novahub.errors import PipelineTimeoutError


class Deadline:
    """A monotonic-clock deadline ``seconds`` from construction."""

    def __init__(
        self, seconds: float, *, clock: Callable[[], float] = time.monotonic
    ) -> None:
        if seconds <= 0:
            raise ValueError(f"deadline must be positive, got {seconds}")
        self._clock = clock
        self._seconds = seconds
        self._expires_at = clock() + seconds

    @property
    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def remaining(self, where: str = "") -> float:
        """Seconds left; raises ``PipelineTimeoutError`` if none remain."""
        left = self._expires_at - self._clock()
        if left <= 0:
            suffix = f" at {where}" if where else ""
            raise PipelineTimeoutError(
                f"Pipeline timeout of {self._seconds:g}s exceeded{suffix}"
            )
        return left

    def check(self, where: str) -> None:
        """Raise ``PipelineTimeoutError`` if the deadline has passed."""
        self.remaining(where)


def budget(deadline: Deadline | None, where: str) -> float | None:
    """Timeout for one blocking call; ``None`` means unbounded."""
    return deadline.remaining(where) if deadline is not None else None
