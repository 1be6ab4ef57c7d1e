from dataclasses import dataclass
from typing import Optional

@dataclass
class Settings:
    default_timeout_s: float = 2.0
    socket_kind: str = "raw"          # "raw" | "dgram" (dgram only where the kernel keeps our identifier)
    recv_buffer: int = 2048
    thread_name: str = "Pinger"
    start_timeout_s: float = 5.0      # how long the constructor waits for the engine loop

    # keep-alive runner
    mode: str = "ping-gateway"        # "ping-gateway" | "ping-custom"
    gateway_ip: Optional[str] = None  # must be configured, never guessed
    custom_target: str = ""
    keepalive_interval_s: float = 5.0
    keepalive_timeout_s: float = 2.0
