"""Signal-driven shutdown of routers, publishers and tracers."""

import logging
import signal
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from types import FrameType
from typing import Protocol

import anyio

DEFAULT_SIGNALS = (signal.SIGTERM, signal.SIGINT)

logger = logging.getLogger("ferry.messaging")


class Closeable(Protocol):
    async def close(self) -> None: ...


async def close_all(*closeables: Closeable) -> None:
    """Close each object in order; one failure does not stop the rest."""
    for closeable in closeables:
        try:
            await closeable.close()
        except Exception:
            logger.exception("Failed to close %r", closeable)


@asynccontextmanager
async def graceful_shutdown(
    *closeables: Closeable,
    signals: Sequence[signal.Signals] = DEFAULT_SIGNALS,
) -> AsyncIterator[anyio.Event]:
    """Close ``closeables`` in order when one of ``signals`` arrives.

    Pass the router first and the tracer last, so deliveries finish, open
    spans are truncated and the span queue is flushed before exit. Yields an
    event that is set once everything is closed. The original signal
    handlers are restored on exit.

    Example:
        async with anyio.create_task_group() as tg:
            tg.start_soon(router.run)
            tg.start_soon(tracer.processor.run)
            async with graceful_shutdown(router, tracer) as stopped:
                await stopped.wait()
    """
    stopped = anyio.Event()
    originals: dict[int, object] = {}
    triggered = False

    async def shutdown() -> None:
        with anyio.CancelScope(shield=True):
            await close_all(*closeables)
        stopped.set()

    async with anyio.create_task_group() as tg:

        def handler(signum: int, frame: FrameType | None) -> None:
            nonlocal triggered
            if triggered:
                return
            triggered = True
            logger.info("Received %s, shutting down", signal.Signals(signum).name)
            tg.start_soon(shutdown)

        for sig in signals:
            originals[sig] = signal.getsignal(sig)
            signal.signal(sig, handler)
        try:
            yield stopped
        finally:
            for sig, original in originals.items():
                signal.signal(sig, original)
