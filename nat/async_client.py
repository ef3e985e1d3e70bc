# nat/async_client.py
import asyncio
import threading
from typing import Iterable, List, Optional, Union

from nat.config import TransactionConfig
from nat.errors import StunError
from nat.stun_client import StunClient, TransactionResult
from net.resolver import SocketResolver
from net.transport import StunTransport


async def query_async(config: TransactionConfig,
                      transport: Optional[StunTransport] = None,
                      resolver: Optional[SocketResolver] = None) -> TransactionResult:
    """Run one blocking transaction in a worker thread without stalling the loop."""
    client = StunClient(config, transport=transport, resolver=resolver)
    cancel = threading.Event()
    try:
        return await asyncio.to_thread(client.run, cancel)
    except asyncio.CancelledError:
        # the worker notices before its next attempt
        cancel.set()
        raise


async def query_many(configs: Iterable[TransactionConfig]) -> List[Union[TransactionResult, StunError]]:
    """
    Query several servers at once. Each config gets its own client, socket and
    transaction id. STUN failures are returned in place; anything else is raised.
    """
    results = await asyncio.gather(*(query_async(c) for c in configs), return_exceptions=True)
    for r in results:
        if isinstance(r, BaseException) and not isinstance(r, StunError):
            raise r
    return results
