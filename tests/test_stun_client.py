# tests/test_stun_client.py
import struct
import threading

import pytest
from aioice import stun

from nat.config import Framing, TransactionConfig, TransportProtocol
from nat.errors import (
    BindError,
    MalformedResponse,
    ReceiveError,
    ReceiveTransient,
    ResolutionError,
    SendError,
    StunErrorResponse,
    StunTimeout,
    TransactionCancelled,
)
from nat.stun_client import StunClient, run
from net.transport import StunTransport
from util import metrics

TID = b"FEDCBA9876543210"
SERVER_IP = "198.51.100.7"


def classic_response(tid=TID, addr=(203, 0, 113, 20), port=61000, msg_type=0x0101):
    return struct.pack("!HH16sHHBBH4s", msg_type, 12, tid, 0x0001, 8, 0, 1, port, bytes(addr))


class FakeTransport(StunTransport):
    """
    Scripted transport. Each entry of `script` is consumed by one attempt:
      None        -> wait_readable() returns False
      Exception   -> receive() raises it
      bytes       -> receive() returns it
    """
    protocol = TransportProtocol.UDP

    def __init__(self, script=(), short_send=False, send_error=None, bind_error=None):
        super().__init__()
        self.script = list(script)
        self.short_send = short_send
        self.send_error = send_error
        self.bind_error = bind_error
        self.sent = []
        self.waits = []
        self.bound = None
        self.closed = False

    def bind(self, host, port):
        if self.bind_error:
            raise self.bind_error
        self.bound = (host, port)

    def send(self, data, address):
        if self.send_error:
            raise self.send_error
        self.sent.append((data, address))
        return len(data) - 1 if self.short_send else len(data)

    def wait_readable(self, timeout):
        self.waits.append(timeout)
        if not self.script or self.script[0] is None:
            if self.script:
                self.script.pop(0)
            return False
        return True

    def receive(self, max_bytes):
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item[:max_bytes]

    def close(self):
        self.closed = True


class FakeResolver:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def resolve(self, host):
        self.calls.append(host)
        if self.fail:
            raise ResolutionError(f"could not resolve {host!r}")
        return SERVER_IP


def make_config(**kw):
    kw.setdefault("server_host", "stun.example.org")
    kw.setdefault("transaction_id", TID)
    return TransactionConfig(**kw)


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield


def test_first_reply_is_returned():
    t = FakeTransport([classic_response()])
    result = StunClient(make_config(), transport=t, resolver=FakeResolver()).run()

    assert result.address == "203.0.113.20"
    assert result.port == 61000
    assert result.attempts == 1
    assert result.server == (SERVER_IP, 3478)
    assert result.raw == classic_response()
    assert result.transaction_id == TID
    assert len(t.sent) == 1
    assert t.sent[0] == (b"\x00\x01\x00\x00" + TID, (SERVER_IP, 3478))
    assert t.closed


def test_to_dict_uses_classic_keys():
    t = FakeTransport([classic_response()])
    d = StunClient(make_config(), transport=t, resolver=FakeResolver()).run().to_dict()
    assert d == {
        "message_type": 0x0101,
        "message_length": 12,
        "transaction_id": TID.decode("ascii"),
        "attr_type": 1,
        "attr_length": 8,
        "ma_dummy": 0,
        "ma_family": 1,
        "ma_port": 61000,
        "ma_address": "203.0.113.20",
    }


def test_never_readable_times_out_after_all_retries():
    t = FakeTransport()
    with pytest.raises(StunTimeout) as exc:
        StunClient(make_config(retries=3, timeout=0.5), transport=t, resolver=FakeResolver()).run()
    assert exc.value.attempts == 3
    assert len(t.sent) == 3
    assert t.waits == [0.5, 0.5, 0.5]
    assert t.closed
    assert metrics.get("stun_requests_sent") == 3
    assert metrics.get("stun_attempt_timeouts") == 3
    assert metrics.get("stun_timeouts") == 1


def test_retransmissions_reuse_request_and_id():
    t = FakeTransport([None, None, classic_response()])
    client = StunClient(make_config(transaction_id=None), transport=t, resolver=FakeResolver())
    first_id = client.transaction_id
    result = client.run()

    assert result.attempts == 3
    assert len({data for data, _ in t.sent}) == 1
    assert t.sent[0][0][4:20] == first_id
    assert client.transaction_id == first_id


def test_short_send_is_fatal():
    t = FakeTransport([classic_response()], short_send=True)
    with pytest.raises(SendError):
        StunClient(make_config(), transport=t, resolver=FakeResolver()).run()
    assert len(t.sent) == 1
    assert t.waits == []
    assert t.closed


def test_send_oserror_is_fatal():
    t = FakeTransport(send_error=OSError("network unreachable"))
    with pytest.raises(SendError) as exc:
        StunClient(make_config(), transport=t, resolver=FakeResolver()).run()
    assert isinstance(exc.value.__cause__, OSError)
    assert t.closed


def test_bind_failure_happens_before_any_send():
    t = FakeTransport(bind_error=OSError("address in use"))
    resolver = FakeResolver()
    with pytest.raises(BindError):
        StunClient(make_config(local_address="10.9.9.9", local_port=5000), transport=t, resolver=resolver).run()
    assert t.sent == []
    assert resolver.calls == []
    assert t.closed


def test_bind_uses_local_endpoint():
    t = FakeTransport([classic_response()])
    StunClient(make_config(local_address="192.168.1.247", local_port=40000), transport=t,
               resolver=FakeResolver()).run()
    assert t.bound == ("192.168.1.247", 40000)


def test_no_bind_without_local_address():
    t = FakeTransport([classic_response()])
    StunClient(make_config(local_port=40000), transport=t, resolver=FakeResolver()).run()
    assert t.bound is None


def test_resolution_failure_is_fatal():
    t = FakeTransport([classic_response()])
    with pytest.raises(ResolutionError):
        StunClient(make_config(), transport=t, resolver=FakeResolver(fail=True)).run()
    assert t.sent == []
    assert t.closed


def test_receive_error_is_retried():
    t = FakeTransport([ConnectionRefusedError("port unreachable"), classic_response()])
    result = StunClient(make_config(), transport=t, resolver=FakeResolver()).run()
    assert result.attempts == 2
    assert len(t.sent) == 2
    assert metrics.get("stun_receive_errors") == 1


def test_empty_read_is_retried():
    t = FakeTransport([b"", classic_response()])
    result = StunClient(make_config(), transport=t, resolver=FakeResolver()).run()
    assert result.attempts == 2


def test_receive_error_can_be_fatal():
    t = FakeTransport([ConnectionRefusedError("port unreachable"), classic_response()])
    with pytest.raises(ReceiveError) as exc:
        StunClient(make_config(receive_errors_fatal=True), transport=t, resolver=FakeResolver()).run()
    assert type(exc.value) is ReceiveError
    assert isinstance(exc.value.__cause__, ReceiveTransient)
    assert len(t.sent) == 1


def test_receive_errors_exhaust_into_timeout():
    t = FakeTransport([OSError("boom"), OSError("boom")])
    with pytest.raises(StunTimeout):
        StunClient(make_config(retries=2), transport=t, resolver=FakeResolver()).run()
    assert len(t.sent) == 2


def test_malformed_reply_is_surfaced():
    t = FakeTransport([b"\x01\x01\x00\x00", classic_response()])
    with pytest.raises(MalformedResponse):
        StunClient(make_config(), transport=t, resolver=FakeResolver()).run()
    assert len(t.sent) == 1
    assert metrics.get("stun_malformed") == 1


def test_malformed_reply_can_be_retried():
    t = FakeTransport([b"\x01\x01\x00\x00", classic_response()])
    result = StunClient(make_config(retry_on_malformed=True), transport=t, resolver=FakeResolver()).run()
    assert result.attempts == 2


def test_foreign_transaction_id_accepted_by_default():
    t = FakeTransport([classic_response(tid=b"X" * 16)])
    result = StunClient(make_config(), transport=t, resolver=FakeResolver()).run()
    assert result.header.transaction_id == b"X" * 16


def test_foreign_transaction_id_dropped_when_verifying():
    stray = classic_response(tid=b"X" * 16, port=1111)
    t = FakeTransport([stray, classic_response()])
    result = StunClient(make_config(verify_transaction_id=True), transport=t, resolver=FakeResolver()).run()
    assert result.attempts == 2
    assert result.port == 61000
    assert metrics.get("stun_tid_mismatches") == 1


def test_classic_mode_ignores_error_class_bits():
    t = FakeTransport([classic_response(msg_type=0x0111)])
    result = StunClient(make_config(), transport=t, resolver=FakeResolver()).run()
    assert result.header.message_type == 0x0111


def test_payload_is_appended_to_request():
    t = FakeTransport([classic_response()])
    StunClient(make_config(payload="ping"), transport=t, resolver=FakeResolver()).run()
    data = t.sent[0][0]
    assert data[2:4] == b"\x00\x04"
    assert data[20:] == b"ping"


def test_cancelled_before_first_attempt():
    t = FakeTransport([classic_response()])
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(TransactionCancelled):
        StunClient(make_config(), transport=t, resolver=FakeResolver()).run(cancel)
    assert t.sent == []
    assert t.closed


def _rfc_response(client, message_class=stun.Class.RESPONSE):
    msg = stun.Message(
        message_method=stun.Method.BINDING,
        message_class=message_class,
        transaction_id=client.transaction_id,
    )
    if message_class == stun.Class.ERROR:
        msg.attributes["ERROR-CODE"] = (420, "Unknown Attribute")
    else:
        msg.attributes["XOR-MAPPED-ADDRESS"] = ("203.0.113.77", 50123)
    return bytes(msg)


def test_rfc5389_exchange():
    t = FakeTransport()
    client = StunClient(make_config(transaction_id=None, framing=Framing.RFC5389, verify_transaction_id=True),
                        transport=t, resolver=FakeResolver())
    t.script = [_rfc_response(client)]
    result = client.run()

    assert len(client.transaction_id) == 12
    assert result.address == "203.0.113.77"
    assert result.port == 50123
    sent = stun.parse_message(t.sent[0][0])
    assert sent.transaction_id == client.transaction_id


def test_rfc5389_error_response_is_raised():
    t = FakeTransport()
    client = StunClient(make_config(transaction_id=None, framing=Framing.RFC5389),
                        transport=t, resolver=FakeResolver())
    t.script = [_rfc_response(client, stun.Class.ERROR)]
    with pytest.raises(StunErrorResponse) as exc:
        client.run()
    assert exc.value.code == 420


def test_config_validation():
    with pytest.raises(ValueError):
        TransactionConfig(server_host="h", retries=0)
    with pytest.raises(ValueError):
        TransactionConfig(server_host="h", timeout=0)
    with pytest.raises(ValueError):
        TransactionConfig(server_host="h", transaction_id=b"too short")
    with pytest.raises(ValueError):
        TransactionConfig(server_host="h", framing="rfc5389", transaction_id=TID)
    with pytest.raises(ValueError):
        TransactionConfig(server_host="h", method=0x10000)
    with pytest.raises(ValueError):
        TransactionConfig(server_host="")


def test_config_defaults_and_coercion():
    cfg = TransactionConfig(server_host="stun.example.org", protocol="TCP", payload="abc")
    assert cfg.server_port == 3478
    assert cfg.retries == 5
    assert cfg.timeout == 2
    assert cfg.method == 0x0001
    assert cfg.protocol is TransportProtocol.TCP
    assert cfg.payload == b"abc"
    assert cfg.framing is Framing.CLASSIC


def test_module_run_entry_point():
    t = FakeTransport([None, classic_response()])
    result = run(make_config(retries=2), transport=t, resolver=FakeResolver())
    assert result.address == "203.0.113.20"
    assert result.attempts == 2
    assert t.closed


def test_counters_snapshot_after_mixed_attempts():
    t = FakeTransport([None, OSError("boom"), b"\x00" * 4, classic_response()])
    run(make_config(retries=4, retry_on_malformed=True), transport=t, resolver=FakeResolver())
    assert metrics.snapshot() == {
        "stun_requests_sent": 4,
        "stun_attempt_timeouts": 1,
        "stun_receive_errors": 1,
        "stun_malformed": 1,
        "stun_responses": 1,
    }


def test_to_dict_hex_encodes_binary_ids():
    tid = b"\x00\x01" + b"\xff" * 14
    t = FakeTransport([classic_response(tid=tid)])
    d = run(make_config(), transport=t, resolver=FakeResolver()).to_dict()
    assert d["transaction_id"] == tid.hex()
