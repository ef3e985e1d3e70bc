# nat/stun_client.py
from __future__ import annotations
from dataclasses import dataclass
import threading
from typing import Any, Dict, Optional, Tuple

from nat.config import TransactionConfig
from nat.errors import (
    BindError,
    MalformedResponse,
    ReceiveError,
    ReceiveTransient,
    SendError,
    StunTimeout,
    TransactionCancelled,
    TransactionMismatch,
)
from nat.stun_codec import MappedAddress, StunHeader, decode, encode, new_transaction_id
from net.resolver import SocketResolver
from net.transport import StunTransport, open_transport
from util.log import log
from util.metrics import incr

MAX_RESPONSE_SIZE = 1024


def _printable_id(tid: bytes) -> str:
    # classic ids are ASCII hex text; RFC 5389 ids (cookie + random bytes) are not
    if tid.isascii() and tid.decode("ascii").isprintable():
        return tid.decode("ascii")
    return tid.hex()


@dataclass(frozen=True)
class TransactionResult:
    header: StunHeader
    mapped_address: MappedAddress
    raw: bytes
    server: Tuple[str, int]
    attempts: int
    transaction_id: bytes

    @property
    def address(self) -> str:
        return self.mapped_address.address

    @property
    def port(self) -> int:
        return self.mapped_address.port

    def to_dict(self) -> Dict[str, Any]:
        h, ma = self.header, self.mapped_address
        return {
            "message_type": h.message_type,
            "message_length": h.message_length,
            "transaction_id": _printable_id(h.transaction_id),
            "attr_type": ma.attr_type,
            "attr_length": ma.attr_length,
            "ma_dummy": ma.family_dummy,
            "ma_family": ma.family,
            "ma_port": ma.port,
            "ma_address": ma.address,
        }


class StunClient:
    """
    Runs one binding transaction: bind, resolve, then send the same request up to
    `retries` times, waiting `timeout` seconds for a reply after each send.

    The transport passed in (or opened here) belongs to this client and is closed
    when run() returns or raises.
    """

    def __init__(self, config: TransactionConfig,
                 transport: Optional[StunTransport] = None,
                 resolver: Optional[SocketResolver] = None):
        self.config = config
        self._transport = transport
        self._resolver = resolver or SocketResolver()

        # fixed for every retransmission of this transaction
        self.transaction_id = config.transaction_id or new_transaction_id(config.framing)
        self.request = encode(
            config.framing,
            config.method,
            self.transaction_id,
            config.payload,
            fingerprint=config.fingerprint,
        )
        self._wire_id = self.request[4:20]

    def run(self, cancel: Optional[threading.Event] = None) -> TransactionResult:
        cfg = self.config
        transport = self._transport or open_transport(cfg.protocol, timeout=cfg.timeout)
        self._transport = None

        with transport:
            if cfg.local_address:
                try:
                    transport.bind(cfg.local_address, cfg.local_port)
                except OSError as e:
                    raise BindError(f"could not bind {cfg.local_address}:{cfg.local_port}: {e}") from e
                log("stun_bind", local_address=cfg.local_address, local_port=cfg.local_port)

            server = (self._resolver.resolve(cfg.server_host), cfg.server_port)
            log("stun_resolved", host=cfg.server_host, server=f"{server[0]}:{server[1]}")

            for attempt in range(1, cfg.retries + 1):
                if cancel is not None and cancel.is_set():
                    raise TransactionCancelled(f"cancelled before attempt {attempt}")

                self._send(transport, server, attempt)

                if not transport.wait_readable(cfg.timeout):
                    incr("stun_attempt_timeouts")
                    log("stun_attempt_timeout", attempt=attempt, timeout=cfg.timeout)
                    continue

                try:
                    data = self._receive(transport, attempt)
                except ReceiveTransient as e:
                    incr("stun_receive_errors")
                    log("stun_recv_error", attempt=attempt, error=str(e))
                    if cfg.receive_errors_fatal:
                        raise ReceiveError(str(e)) from e
                    continue

                try:
                    result = self._accept(data, server, attempt)
                except MalformedResponse as e:
                    incr("stun_malformed")
                    log("stun_malformed", attempt=attempt, size=len(data), error=str(e))
                    if cfg.retry_on_malformed:
                        continue
                    raise
                except TransactionMismatch as e:
                    incr("stun_tid_mismatches")
                    log("stun_tid_mismatch", attempt=attempt, expected=e.expected.hex(), got=e.got.hex())
                    continue

                incr("stun_responses")
                log("stun_response", attempt=attempt, address=result.address, port=result.port)
                return result

        incr("stun_timeouts")
        log("stun_timeout", attempts=cfg.retries, server=f"{server[0]}:{server[1]}")
        raise StunTimeout(cfg.retries, server)

    def _send(self, transport: StunTransport, server: Tuple[str, int], attempt: int) -> None:
        try:
            sent = transport.send(self.request, server)
        except OSError as e:
            raise SendError(f"send to {server[0]}:{server[1]} failed: {e}") from e
        incr("stun_requests_sent")
        log("stun_send", attempt=attempt, size=len(self.request), sent=sent)
        if sent != len(self.request):
            raise SendError(f"short send: {sent} of {len(self.request)} bytes")

    def _receive(self, transport: StunTransport, attempt: int) -> bytes:
        try:
            data = transport.receive(MAX_RESPONSE_SIZE)
        except OSError as e:
            raise ReceiveTransient(f"receive failed on attempt {attempt}: {e}") from e
        if not data:
            raise ReceiveTransient(f"empty read on attempt {attempt}")
        return data

    def _accept(self, data: bytes, server: Tuple[str, int], attempt: int) -> TransactionResult:
        header, mapped = decode(self.config.framing, data)
        if self.config.verify_transaction_id and header.transaction_id != self._wire_id:
            raise TransactionMismatch(self._wire_id, header.transaction_id)
        return TransactionResult(
            header=header,
            mapped_address=mapped,
            raw=bytes(data),
            server=server,
            attempts=attempt,
            transaction_id=self.transaction_id,
        )


def run(config: TransactionConfig, transport: Optional[StunTransport] = None,
        resolver: Optional[SocketResolver] = None) -> TransactionResult:
    return StunClient(config, transport=transport, resolver=resolver).run()
