# nat/config.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

DEFAULT_PORT = 3478
DEFAULT_RETRIES = 5
DEFAULT_TIMEOUT = 2.0
BINDING_REQUEST = 0x0001
MAX_PAYLOAD = 0xFFFF


class TransportProtocol(Enum):
    UDP = "udp"
    TCP = "tcp"


class Framing(Enum):
    CLASSIC = "classic"   # bare 20-byte header, 16-byte id, no attributes
    RFC5389 = "rfc5389"   # magic cookie, 12-byte id, padded attributes


@dataclass(frozen=True)
class TransactionConfig:
    server_host: str
    server_port: int = DEFAULT_PORT
    local_address: Optional[str] = None
    local_port: int = 0
    protocol: TransportProtocol = TransportProtocol.UDP
    retries: int = DEFAULT_RETRIES
    timeout: float = DEFAULT_TIMEOUT
    method: int = BINDING_REQUEST
    payload: bytes = b""
    transaction_id: Optional[bytes] = None

    framing: Framing = Framing.CLASSIC
    verify_transaction_id: bool = False
    receive_errors_fatal: bool = False
    retry_on_malformed: bool = False
    fingerprint: bool = False

    def __post_init__(self) -> None:
        # frozen: normalise through object.__setattr__
        if isinstance(self.protocol, str):
            object.__setattr__(self, "protocol", TransportProtocol(self.protocol.lower()))
        if isinstance(self.framing, str):
            object.__setattr__(self, "framing", Framing(self.framing.lower()))
        if isinstance(self.payload, str):
            object.__setattr__(self, "payload", self.payload.encode("utf-8"))
        if isinstance(self.transaction_id, str):
            object.__setattr__(self, "transaction_id", self.transaction_id.encode("ascii"))

        if not self.server_host:
            raise ValueError("server_host is required")
        if not 0 < self.server_port <= 0xFFFF:
            raise ValueError(f"server_port out of range: {self.server_port}")
        if not 0 <= self.local_port <= 0xFFFF:
            raise ValueError(f"local_port out of range: {self.local_port}")
        if self.retries < 1:
            raise ValueError("retries must be at least 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if not 0 <= self.method <= 0xFFFF:
            raise ValueError(f"method must fit in 16 bits: {self.method:#x}")
        if len(self.payload) > MAX_PAYLOAD:
            raise ValueError(f"payload too large: {len(self.payload)} bytes")
        if self.transaction_id is not None:
            want = 16 if self.framing is Framing.CLASSIC else 12
            if len(self.transaction_id) != want:
                raise ValueError(
                    f"{self.framing.value} transaction id must be {want} bytes, got {len(self.transaction_id)}"
                )

    @property
    def server(self) -> tuple:
        return (self.server_host, self.server_port)


def parse_method(value: Union[int, str]) -> int:
    """Accept an int or a hex string such as "0001" (the status-table form)."""
    if isinstance(value, int):
        return value
    text = value.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    return int(text, 16)
