# echoping/keepalive/state.py
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from echoping.schemas import ConnectionStatus

MAX_LOG_ENTRIES = 100  # oldest entries fall off

@dataclass
class ConnectionLog:
    timestamp: datetime
    message: str
    is_error: bool = False

@dataclass
class MonitorState:
    target: str | None = None
    state: ConnectionStatus = "disconnected"
    failure: str | None = None    # message behind a "failed" state
    request_count: int = 0
    pongs: int = 0
    timeouts: int = 0
    errors: int = 0
    last_rtt_ms: float | None = None
    last_response_time: datetime | None = None
    stop_reason: str | None = None
    logs: deque = field(default_factory=lambda: deque(maxlen=MAX_LOG_ENTRIES))
