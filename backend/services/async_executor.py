"""
Thread pool for blocking work.

smtplib, reportlab and the PDF file writes are synchronous. run_blocking()
hands them to a shared pool sized by IO_MAX_WORKERS so a slow mail server
or a long invoice never stalls the event loop.
"""
import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_pool: ThreadPoolExecutor | None = None
_pool_size = 4


def configure_executor(max_workers: int) -> None:
    """Set the pool size; takes effect the next time the pool is created."""
    global _pool_size
    _pool_size = max(1, int(max_workers))


def get_executor() -> ThreadPoolExecutor:
    global _pool
    if _pool is None:
        _pool = ThreadPoolExecutor(max_workers=_pool_size, thread_name_prefix="io_")
        logger.info(f"Blocking I/O pool started ({_pool_size} workers)")
    return _pool


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Await `func(*args, **kwargs)` running on the pool."""
    call = functools.partial(func, *args, **kwargs)
    return await asyncio.get_running_loop().run_in_executor(get_executor(), call)


def shutdown_executor() -> None:
    """Drain and drop the pool; a later run_blocking() starts a fresh one."""
    global _pool
    if _pool is None:
        return
    _pool.shutdown(wait=True)
    _pool = None
    logger.info("Blocking I/O pool stopped")
