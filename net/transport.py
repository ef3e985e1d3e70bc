import select
import socket
import struct
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from nat.config import TransportProtocol

Address = Tuple[str, int]

_STUN_HEADER = 20


class StunTransport(ABC):
    """
    Blocking socket wrapper used by one STUN transaction.
    Owned by exactly one runner; closed when the runner's `with` block exits.
    """

    protocol: TransportProtocol

    def __init__(self) -> None:
        self._sock: Optional[socket.socket] = None

    @property
    def sock(self) -> socket.socket:
        if self._sock is None:
            raise OSError("transport is closed")
        return self._sock

    def bind(self, host: str, port: int) -> None:
        self.sock.bind((host, port))

    @abstractmethod
    def send(self, data: bytes, address: Address) -> int:
        """Send once; return the byte count the OS accepted."""
        raise NotImplementedError

    def wait_readable(self, timeout: float) -> bool:
        sock = self.sock
        readable, _, errored = select.select([sock], [], [sock], timeout)
        return bool(readable or errored)

    def receive(self, max_bytes: int) -> bytes:
        return self.sock.recv(max_bytes)

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None

    def __enter__(self) -> "StunTransport":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class UdpTransport(StunTransport):
    protocol = TransportProtocol.UDP

    def __init__(self) -> None:
        super().__init__()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def send(self, data: bytes, address: Address) -> int:
        return self.sock.sendto(data, address)


class TcpTransport(StunTransport):
    """Stream variant: connects on the first send and reuses the connection for retries."""

    protocol = TransportProtocol.TCP

    def __init__(self, connect_timeout: Optional[float] = None) -> None:
        super().__init__()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._peer: Optional[Address] = None
        self._connect_timeout = connect_timeout

    def send(self, data: bytes, address: Address) -> int:
        sock = self.sock
        if self._peer != address:
            sock.settimeout(self._connect_timeout)
            sock.connect(address)
            sock.settimeout(None)
            self._peer = address
        return sock.send(data)

    def receive(self, max_bytes: int) -> bytes:
        """
        Read one STUN message off the stream: the 20-byte header, then as many
        bytes as its length field announces (capped at max_bytes).
        """
        sock = self.sock
        data = sock.recv(max_bytes)
        if not data:
            raise ConnectionResetError("STUN server closed the connection")

        sock.settimeout(self._connect_timeout)
        try:
            while len(data) < max_bytes:
                if len(data) >= _STUN_HEADER:
                    want = _STUN_HEADER + struct.unpack_from("!H", data, 2)[0]
                    if len(data) >= want:
                        break
                chunk = sock.recv(max_bytes - len(data))
                if not chunk:
                    # peer closed mid-message; the decoder judges what arrived
                    break
                data += chunk
        except socket.timeout:
            pass
        finally:
            sock.settimeout(None)
        return data


def open_transport(protocol: TransportProtocol, timeout: Optional[float] = None) -> StunTransport:
    if protocol is TransportProtocol.UDP:
        return UdpTransport()
    if protocol is TransportProtocol.TCP:
        return TcpTransport(connect_timeout=timeout)
    raise ValueError(f"Unknown transport protocol: {protocol}")
