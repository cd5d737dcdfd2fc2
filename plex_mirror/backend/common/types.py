from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, TypedDict



LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


class HealthReport(TypedDict):
    status: Literal["ok", "degraded", "fail"]
    components: dict[str, Literal["ok", "degraded", "fail"]]


@dataclass(frozen=True)
class Progress:
    """Determinate progress snapshot; ``total == 0`` means still enumerating."""

    phase: str
    current: int
    total: int

    @property
    def fraction(self) -> Optional[float]:
        if self.total <= 0:
            return None
        return self.current / self.total
