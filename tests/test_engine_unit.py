# tests/test_engine_unit.py
import asyncio
import threading
import time
from concurrent.futures import Future

import pytest

from echoping.codec.packet import ICMP_HEADER, build_echo_request, build_ipv4_header, verify
from echoping.config import Settings
from echoping.engine.base import ResolutionError, resolve_ipv4
from echoping.engine.icmp import IcmpEchoEngine
from echoping.schemas import Error, Pong, Timeout

from fakes import LoopbackIcmpSocket, reply_for


def make_engine(sock, **settings):
    return IcmpEchoEngine(Settings(**settings), socket_factory=lambda: sock)


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def test_resolve_ipv4_numeric_and_invalid():
    assert resolve_ipv4("10.0.0.1") == "10.0.0.1"
    with pytest.raises(ResolutionError):
        resolve_ipv4("256.256.256.256")
    with pytest.raises(ResolutionError):
        resolve_ipv4("")


def test_ping_pong_through_loopback():
    """One call sends one well-formed request and resolves to Pong."""
    sock = LoopbackIcmpSocket()
    with make_engine(sock) as engine:
        outcome = engine.ping("127.0.0.1", timeout=1.0)
        assert isinstance(outcome, Pong)
        assert outcome.sequence_number == 1
        assert 0 <= outcome.elapsed_ms < 1000
        assert engine.pending_count == 0

    assert len(sock.sent) == 1
    packet, address = sock.sent[0]
    assert address == ("127.0.0.1", 0)
    assert len(packet) == 24
    assert packet[0] == 8
    assert verify(packet)


def test_timeout_against_silent_host():
    """No reply: Timeout(1) no earlier than the deadline, registry empty afterwards."""
    sock = LoopbackIcmpSocket(auto_reply=False)
    with make_engine(sock) as engine:
        start = time.perf_counter()
        outcome = engine.ping("10.0.0.1", timeout=0.2)
        elapsed = time.perf_counter() - start
        assert outcome == Timeout(1)
        assert elapsed >= 0.2
        assert elapsed < 1.0
        assert engine.pending_count == 0


def test_invalid_hostname_returns_immediately():
    sock = LoopbackIcmpSocket()
    with make_engine(sock) as engine:
        start = time.perf_counter()
        outcome = engine.ping("256.256.256.256", timeout=1.0)
        assert outcome == Error("Invalid hostname: 256.256.256.256")
        assert time.perf_counter() - start < 0.5
        assert engine.pending_count == 0
    assert sock.sent == []


def test_socket_unavailable_is_permanent():
    calls = []

    def factory():
        calls.append(1)
        raise PermissionError("Operation not permitted")

    with IcmpEchoEngine(Settings(), socket_factory=factory) as engine:
        assert not engine.socket_available
        assert engine.ping("127.0.0.1", 1.0) == Error("Socket not available")
        assert engine.ping("127.0.0.1", 1.0) == Error("Socket not available")
    assert len(calls) == 1


def test_send_failure_cleans_up():
    sock = LoopbackIcmpSocket(fail_send=True)
    with make_engine(sock) as engine:
        outcome = engine.ping("127.0.0.1", timeout=5.0)
        assert outcome == Error("Failed to send ping")
        assert engine.pending_count == 0


def test_short_send_is_a_send_failure():
    sock = LoopbackIcmpSocket(short_send=True)
    with make_engine(sock) as engine:
        assert engine.ping("127.0.0.1", timeout=5.0) == Error("Failed to send ping")
        assert engine.pending_count == 0


def test_invalid_timeout():
    with make_engine(LoopbackIcmpSocket()) as engine:
        assert engine.ping("127.0.0.1", timeout=0) == Error("Invalid timeout: 0")
        assert engine.ping("127.0.0.1", timeout=-1.5) == Error("Invalid timeout: -1.5")


def test_default_timeout_from_settings():
    sock = LoopbackIcmpSocket(auto_reply=False)
    with make_engine(sock, default_timeout_s=0.05) as engine:
        assert engine.ping("127.0.0.1") == Timeout(1)


def test_late_and_foreign_replies_are_ignored():
    """Replies for unknown ids, echo requests and junk leave a pending ping untouched."""
    sock = LoopbackIcmpSocket(auto_reply=False)
    with make_engine(sock) as engine:
        result = {}
        t = threading.Thread(target=lambda: result.update(o=engine.ping("127.0.0.1", 2.0)))
        t.start()
        assert wait_until(lambda: len(sock.sent) == 1)
        request, _ = sock.sent[0]
        ident = ICMP_HEADER.unpack_from(request, 0)[3]

        sock.inject(reply_for(request, identifier=(ident + 1) & 0xFFFF))
        sock.inject(build_ipv4_header(len(request)) + request)
        sock.inject(b"\x45\x00")
        time.sleep(0.05)
        assert engine.pending_count == 1
        assert "o" not in result

        sock.inject(reply_for(request))
        t.join(2.0)
        assert isinstance(result["o"], Pong)
        assert engine.pending_count == 0

        # same reply again, now stale
        sock.inject(reply_for(request))
        assert engine.ping("127.0.0.1", 0.05) == Timeout(1)


def test_reply_after_timeout_is_discarded():
    sock = LoopbackIcmpSocket(auto_reply=False)
    with make_engine(sock) as engine:
        assert engine.ping("127.0.0.1", 0.05) == Timeout(1)
        request, _ = sock.sent[0]
        sock.inject(reply_for(request))
        time.sleep(0.05)
        assert engine.pending_count == 0
        sock.auto_reply = True
        assert isinstance(engine.ping("127.0.0.1", 1.0), Pong)


def test_concurrent_pings_get_distinct_identifiers():
    """Pings from many threads each resolve once and never share an identifier."""
    sock = LoopbackIcmpSocket(auto_reply=False)
    with make_engine(sock) as engine:
        outcomes = []
        lock = threading.Lock()

        def worker():
            o = engine.ping("127.0.0.1", 1.0)
            with lock:
                outcomes.append(o)

        threads = [threading.Thread(target=worker) for _ in range(50)]
        for t in threads:
            t.start()
        assert wait_until(lambda: len(sock.sent) == 50)
        assert engine.pending_count == 50
        idents = {ICMP_HEADER.unpack_from(p, 0)[3] for p, _ in sock.sent}
        assert len(idents) == 50

        # answer half of them
        for packet, _ in sock.sent[:25]:
            sock.inject(reply_for(packet))
        for t in threads:
            t.join(2.0)

    assert len(outcomes) == 50
    assert sum(isinstance(o, Pong) for o in outcomes) == 25
    assert sum(isinstance(o, Timeout) for o in outcomes) == 25


def test_timer_after_reply_is_a_noop():
    """Firing the deadline for an id that already resolved changes nothing."""
    sock = LoopbackIcmpSocket()
    with make_engine(sock) as engine:
        outcome = engine.ping("127.0.0.1", 1.0)
        request, _ = sock.sent[0]
        ident = ICMP_HEADER.unpack_from(request, 0)[3]
        done = threading.Event()
        engine._loop.call_soon_threadsafe(lambda: (engine._on_timeout(ident), done.set()))
        assert done.wait(1.0)
        assert isinstance(outcome, Pong)
        assert engine.pending_count == 0


def test_close_resolves_pending_and_refuses_new_pings():
    sock = LoopbackIcmpSocket(auto_reply=False)
    engine = make_engine(sock)
    result = {}
    t = threading.Thread(target=lambda: result.update(o=engine.ping("127.0.0.1", 30.0)))
    t.start()
    assert wait_until(lambda: engine.pending_count == 1)

    engine.close()
    t.join(2.0)
    assert result["o"] == Error("Engine closed")
    assert sock.closed
    assert engine.ping("127.0.0.1", 1.0) == Error("Engine closed")
    engine.close()  # idempotent


def test_ping_async():
    sock = LoopbackIcmpSocket()
    with make_engine(sock) as engine:
        async def main():
            return await asyncio.gather(
                engine.ping_async("127.0.0.1", 1.0),
                engine.ping_async("256.256.256.256", 1.0),
            )

        pong, bad = asyncio.run(main())
    assert isinstance(pong, Pong)
    assert bad == Error("Invalid hostname: 256.256.256.256")


def test_unknown_socket_kind_rejected():
    with pytest.raises(ValueError):
        IcmpEchoEngine(Settings(socket_kind="stream"))


def test_request_packet_matches_codec():
    """What goes on the wire is exactly what the codec builds for that id and token."""
    sock = LoopbackIcmpSocket()
    with make_engine(sock) as engine:
        engine.ping("127.0.0.1", 1.0)
    packet, _ = sock.sent[0]
    ident = ICMP_HEADER.unpack_from(packet, 0)[3]
    assert build_echo_request(ident, 1, packet[8:]) == packet


def test_ping_abandoned_before_send_is_never_sent():
    """A future cancelled before the engine picks it up sends nothing and leaves no entry."""
    sock = LoopbackIcmpSocket(auto_reply=False)
    with make_engine(sock) as engine:
        fut = Future()
        fut.cancel()
        done = threading.Event()
        engine._loop.call_soon_threadsafe(
            lambda: (engine._send("127.0.0.1", 1.0, fut), done.set()))
        assert done.wait(1.0)
        assert sock.sent == []
        assert engine.pending_count == 0


def test_in_flight_ping_cannot_be_cancelled():
    """Once sent, the caller's future is RUNNING and resolves normally."""
    sock = LoopbackIcmpSocket(auto_reply=False)
    with make_engine(sock) as engine:
        fut = Future()
        engine._loop.call_soon_threadsafe(engine._send, "127.0.0.1", 0.1, fut)
        assert wait_until(lambda: engine.pending_count == 1)
        assert not fut.cancel()
        assert fut.result(timeout=2.0) == Timeout(1)
        assert engine.pending_count == 0


def test_dgram_socket_rejected_on_linux(monkeypatch):
    monkeypatch.setattr("echoping.engine.icmp.platform.system", lambda: "Linux")
    with pytest.raises(ValueError):
        IcmpEchoEngine(Settings(socket_kind="dgram"))
