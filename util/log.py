import json
import os
import sys
from typing import Any

from util.metrics import now_ms

_enabled = os.environ.get("STUN_LOG", "1").lower() not in ("0", "false", "no", "off")


def set_enabled(enabled: bool) -> None:
    global _enabled
    _enabled = bool(enabled)


def log(event: str, **fields: Any) -> None:
    """One JSON object per line on stderr; stdout is left to command output."""
    if not _enabled:
        return
    record = {"ts_ms": now_ms(), "event": event}
    record.update(fields)
    print(json.dumps(record, separators=(",", ":"), default=str), file=sys.stderr, flush=True)
