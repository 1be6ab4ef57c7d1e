# echoping/keepalive/controller.py

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from echoping.keepalive.rules import derive_target, describe_outcome, next_state
from echoping.keepalive.state import ConnectionLog, MonitorState
from echoping.schemas import Error, Pong, Timeout

logger = logging.getLogger(__name__)


class KeepAliveMonitor:
    """
    Liveness probe for one target: ping once, then keep pinging every
    keepalive_interval_s until stopped. All repetition lives here; the
    pinger only ever answers one request at a time.

    The link counts as connected once the first ping has come back, even if
    it timed out; only an Error leaves it failed. After disconnect() no late
    result moves the state away from "disconnected".
    """

    def __init__(self, pinger, settings, log_sink: Optional[Callable[[ConnectionLog], None]] = None):
        self.pinger = pinger
        self.s = settings
        self.log_sink = log_sink
        self.state = MonitorState()
        self._stop = threading.Event()

    def log(self, message: str, is_error: bool = False) -> None:
        entry = ConnectionLog(timestamp=datetime.now(), message=message, is_error=is_error)
        self.state.logs.append(entry)
        logger.log(logging.WARNING if is_error else logging.INFO, "%s", message)
        if self.log_sink is not None:
            self.log_sink(entry)

    def clear_logs(self) -> None:
        self.state.logs.clear()

    def stop(self) -> None:
        self._stop.set()

    def disconnect(self) -> None:
        self.stop()
        self.state.state = "disconnected"
        self.log("Disconnected")

    def run(self, max_pings: Optional[int] = None) -> dict:
        st = self.state
        target, problem = derive_target(self.s)
        if target is None:
            st.state = "failed"
            st.failure = problem
            st.stop_reason = "no_target"
            self.log(problem, is_error=True)
            return self.summary()

        st.target = target
        what = "gateway" if self.s.mode == "ping-gateway" else "custom target"
        self.log(f"Pinging {what}: {target}")
        st.state = "connecting"

        # -------------------------------
        # 1) First probe (unnumbered)
        # -------------------------------
        self._handle(self.pinger.ping(target, self.s.keepalive_timeout_s))
        if st.state == "connecting":
            st.state = "connected"
        pings = 1

        # -------------------------------
        # 2) Keep-alive loop
        # -------------------------------
        while True:
            if max_pings is not None and pings >= max_pings:
                st.stop_reason = "max_pings"
                break
            # wait() returns True as soon as stop() is called
            if self._stop.wait(self.s.keepalive_interval_s):
                st.stop_reason = "stopped"
                break

            st.request_count += 1
            n = st.request_count
            self.log(f"Ping #{n} to {target}")
            self._handle(self.pinger.ping(target, self.s.keepalive_timeout_s), request_number=n)
            pings += 1

        return self.summary()

    def _handle(self, outcome, request_number: Optional[int] = None) -> None:
        st = self.state
        message, is_error = describe_outcome(outcome, request_number)
        self.log(message, is_error=is_error)

        if isinstance(outcome, Pong):
            st.pongs += 1
            st.last_rtt_ms = outcome.elapsed_ms
            st.last_response_time = datetime.now()
            st.failure = None
        elif isinstance(outcome, Timeout):
            st.timeouts += 1
        elif isinstance(outcome, Error):
            st.errors += 1
            st.failure = outcome.message
        st.state = next_state(st.state, outcome)

    def summary(self) -> dict:
        st = self.state
        return {
            "target": st.target,
            "state": st.state,
            "failure": st.failure,
            "request_count": st.request_count,
            "pongs": st.pongs,
            "timeouts": st.timeouts,
            "errors": st.errors,
            "last_rtt_ms": st.last_rtt_ms,
            "last_response_time": (
                st.last_response_time.isoformat() if st.last_response_time else None
            ),
            "stop_reason": st.stop_reason,
            "logs": [
                {"timestamp": e.timestamp.isoformat(), "message": e.message, "is_error": e.is_error}
                for e in st.logs
            ],
        }
