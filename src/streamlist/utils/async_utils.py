"""Async bridge for blocking calls (SQLite, yt-dlp extraction).

Catalog storage and stream extraction are synchronous. `run_blocking` moves
them onto a small dedicated thread pool so the event loop that drives the
playback engine never stalls on disk or network IO.
"""

from __future__ import annotations

import asyncio
import atexit
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, TypeVar

T = TypeVar("T")

_POLL_INTERVAL_S = 0.1
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="streamlist-io")
atexit.register(_executor.shutdown, wait=False, cancel_futures=True)


async def run_blocking(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Await `func(*args, **kwargs)` executed on the shared IO pool."""
    if not callable(func):
        raise TypeError("func must be callable")
    call = partial(func, *args, **kwargs) if kwargs else partial(func, *args)
    future = asyncio.get_running_loop().run_in_executor(_executor, call)
    # Thread->loop wakeups can be missed in some sandboxes; poll the future.
    while True:
        try:
            return await asyncio.wait_for(asyncio.shield(future), _POLL_INTERVAL_S)
        except asyncio.TimeoutError:
            continue
