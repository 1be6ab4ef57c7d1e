from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional, TypedDict, Union

OutcomeStatus = Literal["pong", "timeout", "error"]
ConnectionStatus = Literal["disconnected", "connecting", "connected", "failed"]

class PingEvent(TypedDict, total=False):
    host: str
    status: OutcomeStatus
    sequence_number: Optional[int]
    rtt_ms: Optional[float]
    error: Optional[str]
    timestamp: str


def _now() -> str:
    return datetime.now().isoformat()


@dataclass(frozen=True)
class Pong:
    sequence_number: int
    elapsed_ms: float

    def to_event(self, host: Optional[str] = None) -> PingEvent:
        return {"host": host, "status": "pong", "sequence_number": self.sequence_number,
                "rtt_ms": self.elapsed_ms, "error": None, "timestamp": _now()}


@dataclass(frozen=True)
class Timeout:
    sequence_number: int

    def to_event(self, host: Optional[str] = None) -> PingEvent:
        return {"host": host, "status": "timeout", "sequence_number": self.sequence_number,
                "rtt_ms": None, "error": None, "timestamp": _now()}


@dataclass(frozen=True)
class Error:
    message: str

    def to_event(self, host: Optional[str] = None) -> PingEvent:
        return {"host": host, "status": "error", "sequence_number": None,
                "rtt_ms": None, "error": self.message, "timestamp": _now()}


Outcome = Union[Pong, Timeout, Error]
