# nat/errors.py
from typing import Optional


class StunError(Exception):
    """Base class for everything a STUN transaction can fail with."""


class ResolutionError(StunError):
    pass


class BindError(StunError):
    pass


class SendError(StunError):
    pass


class ReceiveError(StunError):
    """A receive call failed and the config makes that fatal."""


class ReceiveTransient(ReceiveError):
    """A receive call failed or returned nothing; the runner retries."""


class MalformedResponse(StunError):
    pass


class TransactionMismatch(StunError):
    def __init__(self, expected: bytes, got: bytes):
        super().__init__(f"transaction id mismatch: sent {expected.hex()}, got {got.hex()}")
        self.expected = expected
        self.got = got


class StunTimeout(StunError):
    def __init__(self, attempts: int, server: Optional[tuple] = None):
        where = f" from {server[0]}:{server[1]}" if server else ""
        super().__init__(f"no response{where} after {attempts} attempt(s)")
        self.attempts = attempts
        self.server = server


class StunErrorResponse(StunError):
    def __init__(self, code: int, reason: str):
        super().__init__(f"server answered with error {code}: {reason}")
        self.code = code
        self.reason = reason


class TransactionCancelled(StunError):
    pass
