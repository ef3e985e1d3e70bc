# scripts/check_servers.py
import argparse
import asyncio

from nat.async_client import query_many
from nat.config import Framing, TransactionConfig
from nat.errors import StunError
from util.log import set_enabled

# Public servers that used to answer classic binding requests.
KNOWN_SERVERS = [
    ("stun.ekiga.net", 3478),
    ("stun.fwdnet.net", 3478),
    ("stun.ideasip.com", 3478),
    ("stun01.sipphone.com", 3478),
    ("stun.softjoys.com", 3478),
    ("stun.voipbuster.com", 3478),
    ("stun.voxgratia.org", 3478),
    ("stun.xten.com", 3478),
    ("stunserver.org", 3478),
    ("stun.sipgate.net", 10000),
]


def _parse_server(text: str):
    host, _, port = text.partition(":")
    return host, int(port) if port else 3478


async def run(servers, retries: int, timeout: float, rfc5389: bool):
    framing = Framing.RFC5389 if rfc5389 else Framing.CLASSIC
    configs = [
        TransactionConfig(server_host=h, server_port=p, retries=retries, timeout=timeout, framing=framing)
        for h, p in servers
    ]
    results = await query_many(configs)
    for (host, port), res in zip(servers, results):
        if isinstance(res, StunError):
            print(f"{host}:{port:<6} FAIL  {type(res).__name__}: {res}")
        else:
            print(f"{host}:{port:<6} OK    {res.address}:{res.port} (attempt {res.attempts})")


def main():
    ap = argparse.ArgumentParser(description="Query a list of STUN servers concurrently")
    ap.add_argument("servers", nargs="*", help="host[:port] (default: built-in list)")
    ap.add_argument("--retries", type=int, default=2)
    ap.add_argument("--timeout", type=float, default=2.0)
    ap.add_argument("--rfc5389", action="store_true")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args()

    set_enabled(args.verbose)
    servers = [_parse_server(s) for s in args.servers] or KNOWN_SERVERS
    asyncio.run(run(servers, args.retries, args.timeout, args.rfc5389))


if __name__ == "__main__":
    main()
