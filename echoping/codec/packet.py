# echoping/codec/packet.py
"""
ICMP Echo wire format (IPv4).

    0               1               2               3
    +---------------+---------------+-------------------------------+
    |     Type      |     Code      |           Checksum            |
    +---------------+---------------+-------------------------------+
    |          Identifier           |        Sequence Number        |
    +-------------------------------+-------------------------------+
    |                 Token (16 bytes, opaque payload)              |
    +---------------------------------------------------------------+

All multi-byte fields are big-endian on the wire. Everything here is pure:
no sockets, no clocks, no logging.
"""
import socket
import struct
from typing import NamedTuple, Optional

ICMP_ECHO_REPLY = 0
ICMP_ECHO_REQUEST = 8
ICMP_CODE = 0
IPPROTO_ICMP = 1

ICMP_HEADER = struct.Struct("!BBHHH")
IP_HEADER = struct.Struct("!BBHHHBBH4s4s")

TOKEN_SIZE = 16
PACKET_SIZE = ICMP_HEADER.size + TOKEN_SIZE              # 24
MIN_DATAGRAM_SIZE = IP_HEADER.size + ICMP_HEADER.size    # 28


class IPHeader(NamedTuple):
    version: int
    header_length: int   # bytes, from IHL
    total_length: int
    ttl: int
    protocol: int
    source: str
    destination: str


class EchoReply(NamedTuple):
    type: int
    identifier: int
    sequence_number: int


def checksum(data: bytes) -> int:
    """Internet checksum (RFC 1071) over big-endian 16-bit words."""
    if len(data) % 2:
        data += b"\x00"
    total = 0
    for i in range(0, len(data), 2):
        total += (data[i] << 8) | data[i + 1]
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def verify(packet: bytes) -> bool:
    """True if the checksum carried in `packet` is consistent with its bytes."""
    return checksum(packet) == 0


def _check_u16(name: str, value: int) -> None:
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"{name} out of 16-bit range: {value}")


def _build_echo(icmp_type: int, identifier: int, sequence_number: int, token: bytes) -> bytes:
    _check_u16("identifier", identifier)
    _check_u16("sequence_number", sequence_number)
    if len(token) != TOKEN_SIZE:
        raise ValueError(f"token must be {TOKEN_SIZE} bytes, got {len(token)}")

    header = ICMP_HEADER.pack(icmp_type, ICMP_CODE, 0, identifier, sequence_number)
    csum = checksum(header + token)
    header = ICMP_HEADER.pack(icmp_type, ICMP_CODE, csum, identifier, sequence_number)
    return header + bytes(token)


def build_echo_request(identifier: int, sequence_number: int, token: bytes) -> bytes:
    return _build_echo(ICMP_ECHO_REQUEST, identifier, sequence_number, token)


def build_echo_reply(identifier: int, sequence_number: int, token: bytes) -> bytes:
    return _build_echo(ICMP_ECHO_REPLY, identifier, sequence_number, token)


def build_ipv4_header(payload_length: int,
                      protocol: int = IPPROTO_ICMP,
                      source: str = "127.0.0.1",
                      destination: str = "127.0.0.1",
                      ttl: int = 64) -> bytes:
    """Minimal option-less IPv4 header, the way a raw socket hands it to us."""
    fields = [
        (4 << 4) | 5,                        # version 4, IHL 5
        0,                                   # TOS
        IP_HEADER.size + payload_length,
        0,                                   # identification
        0,                                   # flags / fragment offset
        ttl,
        protocol,
        0,                                   # header checksum, filled below
        socket.inet_aton(source),
        socket.inet_aton(destination),
    ]
    fields[7] = checksum(IP_HEADER.pack(*fields))
    return IP_HEADER.pack(*fields)


def parse_ip_header(data: bytes) -> Optional[IPHeader]:
    if len(data) < IP_HEADER.size:
        return None
    ver_ihl, _tos, total_length, _ident, _frag, ttl, protocol, _csum, src, dst = \
        IP_HEADER.unpack_from(data, 0)
    return IPHeader(
        version=ver_ihl >> 4,
        header_length=(ver_ihl & 0x0F) * 4,
        total_length=total_length,
        ttl=ttl,
        protocol=protocol,
        source=socket.inet_ntoa(src),
        destination=socket.inet_ntoa(dst),
    )


def parse_inbound_datagram(data: bytes, with_ip_header: bool = True) -> Optional[EchoReply]:
    """
    Pull the echo reply fields out of a received datagram.

    Returns None for anything that is not an ICMP Echo Reply: truncated
    buffers, other IP protocols, echo requests and every other ICMP type.
    Raw sockets deliver the IPv4 header in front of the ICMP message; pass
    with_ip_header=False for sockets that hand over the bare ICMP message.
    """
    offset = 0
    if with_ip_header:
        if len(data) < MIN_DATAGRAM_SIZE:
            return None
        ip = parse_ip_header(data)
        if ip.protocol != IPPROTO_ICMP:
            return None
        # skip IP options when IHL announces them
        offset = max(IP_HEADER.size, ip.header_length)

    if len(data) < offset + ICMP_HEADER.size:
        return None

    icmp_type, _code, _csum, identifier, sequence_number = ICMP_HEADER.unpack_from(data, offset)
    if icmp_type != ICMP_ECHO_REPLY:
        return None
    return EchoReply(icmp_type, identifier, sequence_number)
