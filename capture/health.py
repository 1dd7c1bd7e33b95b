from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum, auto
from typing import List, Optional


class HealthLevel(Enum):
    OK = auto()
    ERROR = auto()


class HealthCode(Enum):
    UNSUPPORTED_PLATFORM = auto()
    CAPTURE_TOOL_MISSING = auto()
    CAMERA_NOT_FOUND = auto()


@dataclass(frozen=True)
class HealthStatus:
    level: HealthLevel
    code: Optional[HealthCode] = None
    message: Optional[str] = None
    instructions: List[str] | None = None
    device: Optional[str] = None
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def ok(device: Optional[str] = None) -> "HealthStatus":
        return HealthStatus(level=HealthLevel.OK, device=device)

    @staticmethod
    def error(
            *,
            code: HealthCode,
            message: str,
            instructions: List[str],
    ) -> "HealthStatus":
        return HealthStatus(
            level=HealthLevel.ERROR,
            code=code,
            message=message,
            instructions=instructions,
        )

    def to_dict(self) -> dict:
        if self.level == HealthLevel.OK:
            return {"level": "OK", "device": self.device}

        return {
            "level": self.level.name,
            "code": self.code.name if self.code else None,
            "message": self.message,
            "instructions": self.instructions,
        }
