"""Demo credential quota window."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class QuotaWindow(BaseModel):
    """Usage count within a rolling window that opened at ``window_start_ms``."""

    model_config = ConfigDict(frozen=True)

    usage_count: int = 0
    window_start_ms: int = 0
    max_uses: int = 5

    @property
    def remaining(self) -> int:
        return max(0, self.max_uses - self.usage_count)

    @property
    def exhausted(self) -> bool:
        return self.usage_count >= self.max_uses
