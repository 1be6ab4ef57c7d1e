# echoping/keepalive/rules.py
from echoping.schemas import Error, Outcome, Pong, Timeout

def derive_target(settings) -> tuple[str | None, str | None]:
    """
    Pick what to ping for the configured mode.
    Returns (target, None) or (None, reason) when nothing usable is configured.
    """
    if settings.mode == "ping-gateway":
        if not settings.gateway_ip:
            return None, "Cannot determine gateway"
        return settings.gateway_ip, None
    if settings.mode == "ping-custom":
        if not settings.custom_target:
            return None, "No target specified"
        return settings.custom_target, None
    return None, f"Unknown mode: {settings.mode}"

def describe_outcome(outcome: Outcome, request_number: int | None = None) -> tuple[str, bool]:
    if isinstance(outcome, Pong):
        if request_number is not None:
            return f"Pong #{request_number}: {outcome.elapsed_ms:.1f} ms", False
        return f"Pong (seq={outcome.sequence_number}): {outcome.elapsed_ms:.1f} ms", False
    if isinstance(outcome, Timeout):
        if request_number is not None:
            return f"Timeout #{request_number}", True
        return f"Timeout (seq={outcome.sequence_number})", True
    return f"Ping error: {outcome.message}", True

def next_state(current: str, outcome: Outcome) -> str:
    # results still in flight at disconnect must not revive the monitor
    if current == "disconnected":
        return current
    # timeouts leave the state where it was
    if isinstance(outcome, Pong):
        return "connected"
    if isinstance(outcome, Error):
        return "failed"
    return current
