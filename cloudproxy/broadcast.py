"""Fan-out of operator keystrokes to every droplet's remote command.

One producer, many consumers. ``publish`` returns only once every
subscriber has room for the item, which means it has taken the previous
one: a slow droplet throttles delivery to all of them, and no subscriber
ever holds more than one pending character.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import sys
import termios
import tty
from collections.abc import AsyncIterator, Iterator
from typing import TextIO

from loguru import logger


class Subscription:
    """One consumer's view of a Broadcaster. Async-iterable."""

    def __init__(self, owner: Broadcaster, name: str) -> None:
        self.name = name
        self._owner = owner
        self._queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=1)
        self.closed = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    async def __anext__(self) -> bytes:
        if self.closed:
            raise StopAsyncIteration
        return await self._queue.get()

    async def _put(self, item: bytes) -> None:
        if not self.closed:
            await self._queue.put(item)

    def close(self) -> None:
        """Leave the broadcast; a producer blocked on this subscriber is released."""
        self.closed = True
        self._owner._subscribers.discard(self)
        while not self._queue.empty():
            self._queue.get_nowait()


class Broadcaster:
    """Synchronous single-producer, multi-consumer broadcast."""

    def __init__(self) -> None:
        self._subscribers: set[Subscription] = set()

    def subscribe(self, name: str = "") -> Subscription:
        sub = Subscription(self, name)
        self._subscribers.add(sub)
        return sub

    @property
    def subscribers(self) -> int:
        return len(self._subscribers)

    async def publish(self, item: bytes) -> None:
        """Hand ``item`` to every subscriber at once."""
        await asyncio.gather(*(sub._put(item) for sub in list(self._subscribers)))


@contextlib.contextmanager
def cbreak(stream: TextIO = sys.stdin) -> Iterator[int]:
    """Put a terminal into cbreak mode without echo; restore it on exit."""
    fd = stream.fileno()
    saved = termios.tcgetattr(fd)
    try:
        tty.setcbreak(fd)
        attrs = termios.tcgetattr(fd)
        attrs[3] &= ~termios.ECHO
        termios.tcsetattr(fd, termios.TCSADRAIN, attrs)
        yield fd
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


async def read_keystrokes(broadcaster: Broadcaster, stream: TextIO = sys.stdin) -> None:
    """Publish every byte typed on ``stream`` until EOF or cancellation."""
    loop = asyncio.get_running_loop()
    pending: asyncio.Queue[bytes] = asyncio.Queue()

    def on_readable(fd: int) -> None:
        data = os.read(fd, 1024)
        if not data:
            loop.remove_reader(fd)
        # b"" marks EOF for the pump below
        for i in range(len(data)):
            pending.put_nowait(data[i : i + 1])
        if not data:
            pending.put_nowait(b"")

    interactive = stream.isatty()
    with cbreak(stream) if interactive else contextlib.nullcontext(stream.fileno()) as fd:
        loop.add_reader(fd, on_readable, fd)
        try:
            while char := await pending.get():
                logger.debug(f"Sending: {char!r}")
                await broadcaster.publish(char)
        finally:
            loop.remove_reader(fd)


__all__ = ["Broadcaster", "Subscription", "cbreak", "read_keystrokes"]
