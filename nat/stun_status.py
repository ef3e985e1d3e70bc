# nat/stun_status.py
from typing import Dict, Optional, Union

# message type -> classic (RFC 3489) name
STATUS_CODES: Dict[int, str] = {
    0x0001: "BindRequestMsg",
    0x0101: "BindResponseMsg",
    0x0111: "BindErrorResponseMsg",
    0x0002: "SharedSecretRequestMsg",
    0x0102: "SharedSecretResponseMsg",
    0x0112: "SharedSecretErrorResponseMsg",
}

ATTRIBUTE_NAMES: Dict[int, str] = {
    0x0001: "MAPPED-ADDRESS",
    0x0002: "RESPONSE-ADDRESS",
    0x0003: "CHANGE-REQUEST",
    0x0004: "SOURCE-ADDRESS",
    0x0005: "CHANGED-ADDRESS",
    0x0006: "USERNAME",
    0x0007: "PASSWORD",
    0x0008: "MESSAGE-INTEGRITY",
    0x0009: "ERROR-CODE",
    0x000A: "UNKNOWN-ATTRIBUTES",
    0x000B: "REFLECTED-FROM",
    0x0014: "REALM",
    0x0015: "NONCE",
    0x0020: "XOR-MAPPED-ADDRESS",
    0x8020: "XOR-MAPPED-ADDRESS",   # pre-RFC servers
    0x8022: "SOFTWARE",
    0x8023: "ALTERNATE-SERVER",
    0x8028: "FINGERPRINT",
}


def _code(value: Union[int, str]) -> int:
    if isinstance(value, int):
        return value
    text = value.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    return int(text, 16)


def status_message(code: Union[int, str]) -> Optional[str]:
    """Name of a message type, e.g. status_message("0001") -> "BindRequestMsg"."""
    try:
        return STATUS_CODES.get(_code(code))
    except ValueError:
        return None


def attribute_name(code: Union[int, str]) -> Optional[str]:
    try:
        return ATTRIBUTE_NAMES.get(_code(code))
    except ValueError:
        return None
