# main.py
import os
from pprint import pprint

from nat.config import TransactionConfig
from nat.errors import StunError
from nat.stun_client import StunClient


def main():
    # Local bind is optional; set STUN_LOCAL_ADDRESS to pick the outgoing interface.
    config = TransactionConfig(
        server_host=os.environ.get("STUN_SERVER", "stun.ekiga.net"),
        local_address=os.environ.get("STUN_LOCAL_ADDRESS") or None,
    )
    try:
        result = StunClient(config).run()
    except StunError as e:
        raise SystemExit(f"{type(e).__name__}: {e}")
    pprint(result.to_dict())


if __name__ == "__main__":
    main()
