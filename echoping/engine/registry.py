# echoping/engine/registry.py
import asyncio
import random
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Optional

from echoping.schemas import Outcome

IDENTIFIER_SPACE = 1 << 16


@dataclass
class PendingRequest:
    identifier: int
    sequence_number: int
    sent_at: float
    future: Future
    timer: Optional[asyncio.TimerHandle] = None

    def resolve(self, outcome: Outcome) -> None:
        """Only whoever claimed this request from the registry may call this."""
        if self.timer is not None:
            self.timer.cancel()
        # the engine marks futures RUNNING before sending; this covers ones it never saw
        if self.future.cancelled():
            return
        self.future.set_result(outcome)


class RequestRegistry:
    """
    identifier -> PendingRequest for every echo request in flight.

    Each public method takes the lock for exactly one read-modify-write; the
    lock is never held while waiting on the network. claim() is the only way
    out of the registry, so a reply and a timer racing for the same entry can
    resolve it at most once between them.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._requests: dict = {}
        self._lock = threading.Lock()
        self._rng = rng or random.Random()

    def allocate_identifier(self) -> int:
        with self._lock:
            if len(self._requests) >= IDENTIFIER_SPACE:
                raise RuntimeError("all 65536 ICMP identifiers are in flight")
            while True:
                ident = self._rng.randrange(IDENTIFIER_SPACE)
                if ident not in self._requests:
                    return ident

    def insert(self, request: PendingRequest) -> None:
        with self._lock:
            if request.identifier in self._requests:
                raise KeyError(f"identifier {request.identifier} already in flight")
            self._requests[request.identifier] = request

    def claim(self, identifier: int) -> Optional[PendingRequest]:
        with self._lock:
            return self._requests.pop(identifier, None)

    def drain(self) -> list:
        with self._lock:
            requests = list(self._requests.values())
            self._requests.clear()
            return requests

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    def __contains__(self, identifier: int) -> bool:
        with self._lock:
            return identifier in self._requests
