"""Backoff schedule shared by handler retries and feed reconnects."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Backoff:
    initial: float = 0.5
    maximum: float = 30.0
    factor: float = 2.0

    def delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""

        if attempt < 1:
            return 0.0
        return min(self.maximum, self.initial * self.factor ** (attempt - 1))
