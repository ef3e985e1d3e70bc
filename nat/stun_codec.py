# nat/stun_codec.py
"""
Encoding and decoding of STUN binding messages.

Two framings are supported:

- classic: a bare 20-byte header (type, payload length, 16-byte transaction id)
  followed by the optional payload. Replies are read as a header followed by a
  single MAPPED-ADDRESS style attribute at a fixed offset. This is what the
  public servers have answered to for years and it is the default.
- rfc5389: a conformant message built and parsed with aioice.stun (magic
  cookie, 12-byte id, padded attributes, optional FINGERPRINT,
  XOR-MAPPED-ADDRESS).
"""
from __future__ import annotations
from dataclasses import dataclass
import ipaddress
import random
import socket
import struct
from typing import Tuple

from aioice import stun

from nat.config import Framing
from nat.errors import MalformedResponse, StunErrorResponse

HEADER_SIZE = 20
ATTR_HEADER_SIZE = 4
MIN_RESPONSE_SIZE = HEADER_SIZE + ATTR_HEADER_SIZE   # 24
MAPPED_ADDRESS_SIZE = 8                              # dummy, family, port, ipv4
TRANSACTION_ID_SIZE = 16
MAGIC_COOKIE = 0x2112A442

ATTR_MAPPED_ADDRESS = 0x0001
ATTR_XOR_MAPPED_ADDRESS = 0x0020
FAMILY_IPV4 = 0x01
FAMILY_IPV6 = 0x02

_HEADER = struct.Struct("!HH16s")
_ATTR_HEADER = struct.Struct("!HH")
_MAPPED = struct.Struct("!BBH4s")

_HEX = "0123456789ABCDEF"
_rng = random.SystemRandom()


@dataclass(frozen=True)
class StunHeader:
    message_type: int
    message_length: int
    transaction_id: bytes   # always the 16 bytes found at offset 4


@dataclass(frozen=True)
class MappedAddress:
    attr_type: int
    attr_length: int
    family_dummy: int
    family: int
    port: int
    address: str


def new_transaction_id(framing: Framing = Framing.CLASSIC) -> bytes:
    if framing is Framing.RFC5389:
        return stun.random_transaction_id()
    # 16 upper-case hex characters, sent as their ASCII bytes
    return "".join(_rng.choice(_HEX) for _ in range(TRANSACTION_ID_SIZE)).encode("ascii")


# ---------------- classic framing ----------------

def encode_request(method: int, transaction_id: bytes, payload: bytes = b"") -> bytes:
    if len(transaction_id) != TRANSACTION_ID_SIZE:
        raise ValueError(f"transaction id must be {TRANSACTION_ID_SIZE} bytes, got {len(transaction_id)}")
    return _HEADER.pack(method, len(payload), transaction_id) + payload


def decode_response(data: bytes) -> Tuple[StunHeader, MappedAddress]:
    if len(data) < MIN_RESPONSE_SIZE:
        raise MalformedResponse(f"response too short: {len(data)} bytes, need at least {MIN_RESPONSE_SIZE}")
    if len(data) < MIN_RESPONSE_SIZE + MAPPED_ADDRESS_SIZE:
        raise MalformedResponse(f"truncated MAPPED-ADDRESS: {len(data)} bytes")

    message_type, message_length, transaction_id = _HEADER.unpack_from(data, 0)
    attr_type, attr_length = _ATTR_HEADER.unpack_from(data, HEADER_SIZE)
    dummy, family, port, raw_addr = _MAPPED.unpack_from(data, MIN_RESPONSE_SIZE)

    header = StunHeader(message_type, message_length, transaction_id)
    mapped = MappedAddress(
        attr_type=attr_type,
        attr_length=attr_length,
        family_dummy=dummy,
        family=family,
        port=port,
        address=socket.inet_ntoa(raw_addr),
    )
    return header, mapped


# ---------------- RFC 5389 framing ----------------

def encode_rfc5389_request(method: int, transaction_id: bytes, payload: bytes = b"",
                           fingerprint: bool = False) -> bytes:
    try:
        message_method = stun.Method(method)
    except ValueError:
        raise ValueError(f"unknown STUN method for rfc5389 framing: {method:#06x}") from None
    msg = stun.Message(
        message_method=message_method,
        message_class=stun.Class.REQUEST,
        transaction_id=transaction_id,
    )
    if payload:
        msg.attributes["DATA"] = payload
    if fingerprint:
        # CRC-32 trailer over everything before it, so it goes in last
        msg.attributes["FINGERPRINT"] = stun.message_fingerprint(bytes(msg))
    return bytes(msg)


def decode_rfc5389_response(data: bytes) -> Tuple[StunHeader, MappedAddress]:
    try:
        msg = stun.parse_message(data)
    except (ValueError, struct.error) as e:
        raise MalformedResponse(f"invalid STUN message: {e}") from e

    if msg.message_class == stun.Class.ERROR:
        code, reason = msg.attributes.get("ERROR-CODE", (0, ""))
        raise StunErrorResponse(code, reason)

    header = StunHeader(
        message_type=msg.message_method | msg.message_class,
        message_length=len(data) - HEADER_SIZE,
        transaction_id=data[4:HEADER_SIZE],
    )

    if "XOR-MAPPED-ADDRESS" in msg.attributes:
        attr_type, (host, port) = ATTR_XOR_MAPPED_ADDRESS, msg.attributes["XOR-MAPPED-ADDRESS"]
    elif "MAPPED-ADDRESS" in msg.attributes:
        attr_type, (host, port) = ATTR_MAPPED_ADDRESS, msg.attributes["MAPPED-ADDRESS"]
    else:
        raise MalformedResponse("response carries no mapped address")

    v6 = ipaddress.ip_address(host).version == 6
    mapped = MappedAddress(
        attr_type=attr_type,
        attr_length=20 if v6 else MAPPED_ADDRESS_SIZE,
        family_dummy=0,
        family=FAMILY_IPV6 if v6 else FAMILY_IPV4,
        port=port,
        address=host,
    )
    return header, mapped


def encode(framing: Framing, method: int, transaction_id: bytes, payload: bytes = b"",
           fingerprint: bool = False) -> bytes:
    if framing is Framing.RFC5389:
        return encode_rfc5389_request(method, transaction_id, payload, fingerprint=fingerprint)
    return encode_request(method, transaction_id, payload)


def decode(framing: Framing, data: bytes) -> Tuple[StunHeader, MappedAddress]:
    if framing is Framing.RFC5389:
        return decode_rfc5389_response(data)
    return decode_response(data)
