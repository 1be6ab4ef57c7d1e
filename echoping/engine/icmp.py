# echoping/engine/icmp.py
import asyncio
import logging
import os
import platform
import socket
import threading
import time
import uuid
from concurrent.futures import Future
from typing import Callable, Optional

from echoping.codec.packet import IPPROTO_ICMP, build_echo_request, parse_inbound_datagram
from echoping.config import Settings
from echoping.engine.base import Pinger, ResolutionError, resolve_ipv4
from echoping.engine.registry import PendingRequest, RequestRegistry
from echoping.schemas import Error, Outcome, Pong, Timeout

logger = logging.getLogger(__name__)

SEQUENCE_NUMBER = 1  # one packet per request, no sequencing

SOCKET_KINDS = {"raw": socket.SOCK_RAW, "dgram": socket.SOCK_DGRAM}

# Unprivileged ICMP sockets only keep the IP header on BSD-derived stacks
CAN_HAVE_IP_HEADER = os.name != "posix" or platform.system() == "Darwin"


def open_icmp_socket(kind: str = "raw") -> socket.socket:
    sock = socket.socket(socket.AF_INET, SOCKET_KINDS[kind], IPPROTO_ICMP)
    sock.setblocking(False)
    return sock


def socket_has_ip_header(sock) -> bool:
    return CAN_HAVE_IP_HEADER or sock.type == socket.SOCK_RAW


class IcmpEchoEngine(Pinger):
    """
    Single-endpoint ICMP echo engine.

    Owns one ICMP socket for its whole lifetime and a private thread running
    its own event loop. Everything that touches the socket, the request
    registry or a deadline timer runs on that loop; ping() may be called from
    any thread and blocks on a future the loop resolves exactly once.

    A process normally needs one engine (the socket is privileged), but it is
    a plain object: build it where you need it and pass it around.
    """

    def __init__(self,
                 settings: Optional[Settings] = None,
                 socket_factory: Optional[Callable[[], socket.socket]] = None,
                 resolver: Callable[[str], str] = resolve_ipv4,
                 clock: Callable[[], float] = time.perf_counter):
        self.s = settings or Settings()
        if socket_factory is None:
            if self.s.socket_kind not in SOCKET_KINDS:
                raise ValueError(f"unknown socket kind: {self.s.socket_kind!r}")
            if self.s.socket_kind == "dgram" and platform.system() == "Linux":
                # Linux ping sockets overwrite the echo identifier with the local port
                raise ValueError("socket_kind 'dgram' cannot correlate replies on Linux; use 'raw'")
            kind = self.s.socket_kind
            socket_factory = lambda: open_icmp_socket(kind)
        self._socket_factory = socket_factory
        self._resolve = resolver
        self._clock = clock

        self._registry = RequestRegistry()
        self._sock = None
        self._has_ip_header = True
        self._closed = False
        self._state_lock = threading.Lock()

        self._loop = asyncio.SelectorEventLoop()
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._run, name=self.s.thread_name, daemon=True)
        self._thread.start()
        if not self._ready.wait(self.s.start_timeout_s):
            raise RuntimeError("ping engine loop did not start")

    # ------------------------------------------------------------------
    # public surface (any thread)
    # ------------------------------------------------------------------
    @property
    def socket_available(self) -> bool:
        return self._sock is not None

    @property
    def pending_count(self) -> int:
        return len(self._registry)

    def ping(self, host: str, timeout: Optional[float] = None) -> Outcome:
        timeout = self.s.default_timeout_s if timeout is None else timeout
        refused = self._refuse(timeout)
        if refused is not None:
            return refused
        try:
            address = self._resolve(host)
        except ResolutionError:
            logger.debug("could not resolve %r", host)
            return Error(f"Invalid hostname: {host}")
        return self._submit(address, timeout).result()

    async def ping_async(self, host: str, timeout: Optional[float] = None) -> Outcome:
        timeout = self.s.default_timeout_s if timeout is None else timeout
        refused = self._refuse(timeout)
        if refused is not None:
            return refused
        loop = asyncio.get_running_loop()
        try:
            address = await loop.run_in_executor(None, self._resolve, host)
        except ResolutionError:
            logger.debug("could not resolve %r", host)
            return Error(f"Invalid hostname: {host}")
        return await asyncio.wrap_future(self._submit(address, timeout))

    def close(self) -> None:
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            if self._thread.is_alive():
                self._loop.call_soon_threadsafe(self._shutdown)
        self._thread.join(self.s.start_timeout_s)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _refuse(self, timeout: float) -> Optional[Error]:
        if self._sock is None:
            return Error("Socket not available")
        if self._closed:
            return Error("Engine closed")
        if timeout <= 0:
            return Error(f"Invalid timeout: {timeout}")
        return None

    def _submit(self, address: str, timeout: float) -> Future:
        future = Future()
        with self._state_lock:
            if self._closed:
                future.set_result(Error("Engine closed"))
                return future
            self._loop.call_soon_threadsafe(self._send, address, timeout, future)
        return future

    # ------------------------------------------------------------------
    # engine loop only
    # ------------------------------------------------------------------
    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._open_socket()
        self._loop.call_soon(self._ready.set)
        try:
            self._loop.run_forever()
        finally:
            if self._sock is not None:
                self._sock.close()
            self._loop.close()

    def _open_socket(self) -> None:
        try:
            sock = self._socket_factory()
        except OSError as e:
            # permanent: we never try to reopen
            logger.warning("ICMP socket unavailable (%s); all pings will fail", e)
            return
        sock.setblocking(False)
        self._has_ip_header = socket_has_ip_header(sock)
        self._loop.add_reader(sock.fileno(), self._on_readable)
        self._sock = sock
        logger.debug("ICMP socket open (ip header included: %s)", self._has_ip_header)

    def _send(self, address: str, timeout: float, future: Future) -> None:
        # RUNNING futures can no longer be cancelled by the caller
        if not future.set_running_or_notify_cancel():
            logger.debug("ping to %s abandoned before it was sent", address)
            return
        try:
            identifier = self._registry.allocate_identifier()
        except RuntimeError:
            logger.warning("no free ICMP identifier for %s", address)
            future.set_result(Error("Too many pings in flight"))
            return

        # allocate + insert are two lock sections; safe because only this loop inserts
        packet = build_echo_request(identifier, SEQUENCE_NUMBER, uuid.uuid4().bytes)
        request = PendingRequest(identifier, SEQUENCE_NUMBER, sent_at=self._clock(), future=future)
        request.timer = self._loop.call_later(timeout, self._on_timeout, identifier)
        self._registry.insert(request)

        request.sent_at = self._clock()
        try:
            sent = self._sock.sendto(packet, (address, 0))
        except OSError as e:
            logger.warning("sending echo request to %s failed: %s", address, e)
            sent = 0

        if sent != len(packet):
            claimed = self._registry.claim(identifier)
            if claimed is not None:
                claimed.resolve(Error("Failed to send ping"))
            return
        logger.debug("echo request id=%#06x seq=%d -> %s (timeout %.3fs)",
                     identifier, SEQUENCE_NUMBER, address, timeout)

    def _on_readable(self) -> None:
        while True:
            try:
                data = self._sock.recv(self.s.recv_buffer)
            except (BlockingIOError, InterruptedError):
                return
            except OSError as e:
                logger.warning("receive on ICMP socket failed: %s", e)
                return
            self._dispatch(data, self._clock())

    def _dispatch(self, data: bytes, received_at: float) -> None:
        reply = parse_inbound_datagram(data, with_ip_header=self._has_ip_header)
        if reply is None:
            # other ICMP traffic, our own requests, truncated junk
            logger.debug("ignoring %d-byte datagram", len(data))
            return
        request = self._registry.claim(reply.identifier)
        if request is None:
            logger.debug("dropping reply id=%#06x: nothing in flight", reply.identifier)
            return
        elapsed_ms = (received_at - request.sent_at) * 1000.0
        logger.debug("echo reply id=%#06x in %.3f ms", reply.identifier, elapsed_ms)
        request.resolve(Pong(request.sequence_number, elapsed_ms))

    def _on_timeout(self, identifier: int) -> None:
        request = self._registry.claim(identifier)
        if request is None:
            return
        logger.debug("echo request id=%#06x timed out", identifier)
        request.resolve(Timeout(request.sequence_number))

    def _shutdown(self) -> None:
        for request in self._registry.drain():
            request.resolve(Error("Engine closed"))
        if self._sock is not None:
            self._loop.remove_reader(self._sock.fileno())
        self._loop.stop()
