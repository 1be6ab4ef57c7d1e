# echoping/engine/base.py
import asyncio
import ipaddress
import re
import socket
from abc import ABC, abstractmethod
from typing import Optional

from echoping.schemas import Outcome

_DOTTED_QUAD = re.compile(r"^\d+\.\d+\.\d+\.\d+$")


class ResolutionError(Exception):
    """Host did not resolve to a usable IPv4 address."""


def resolve_ipv4(host: str) -> str:
    """Resolve a hostname or numeric string to a dotted-quad IPv4 address."""
    if not host:
        raise ResolutionError(host)
    # looks numeric but isn't a valid address (e.g. 256.256.256.256): don't hand it to DNS
    if _DOTTED_QUAD.match(host):
        try:
            return str(ipaddress.IPv4Address(host))
        except ValueError as e:
            raise ResolutionError(host) from e
    try:
        infos = socket.getaddrinfo(host, None, socket.AF_INET, socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as e:
        raise ResolutionError(host) from e
    if not infos:
        raise ResolutionError(host)
    return infos[0][4][0]


class Pinger(ABC):
    @abstractmethod
    def ping(self, host: str, timeout: Optional[float] = None) -> Outcome:
        """Send exactly one echo request to host and block until it resolves."""
        raise NotImplementedError

    async def ping_async(self, host: str, timeout: Optional[float] = None) -> Outcome:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.ping, host, timeout)
