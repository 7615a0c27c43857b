"""Blocks, notifications, the provider interface and the result channel."""

from __future__ import annotations

import asyncio
import enum
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol, Union, runtime_checkable

from blockrange.errors import ScannerError

MAX_BUFFERED_MESSAGES = 50000


@dataclass(frozen=True)
class Block:
    """A block header as far as the scanner needs it."""

    number: int
    hash: str
    parent_hash: str | None = None


class BlockTag(str, enum.Enum):
    """Named positions on the chain."""

    LATEST = "latest"
    EARLIEST = "earliest"
    FINALIZED = "finalized"
    SAFE = "safe"
    PENDING = "pending"

    def __str__(self) -> str:
        return self.value


BlockId = Union[int, str, BlockTag]
"""A block number, a block hash or a tag."""


class Notification(enum.Enum):
    """Notices sent alongside block ranges."""

    SWITCHING_TO_LIVE = "switching_to_live"
    NO_PAST_LOGS_FOUND = "no_past_logs_found"


@dataclass(frozen=True)
class ReorgDetected:
    """A reorganisation was seen; blocks after ``common_ancestor`` are streamed again."""

    common_ancestor: int


ScannerMessage = Union[range, Notification, ReorgDetected, ScannerError]
"""What a result channel carries: a block range, a notice or an error."""


@runtime_checkable
class ChainProvider(Protocol):
    """The calls the scanner makes against a node.

    Lookups raise :class:`~blockrange.errors.BlockNotFound` for missing blocks and
    other :class:`~blockrange.errors.ScannerError` subclasses for failed calls.
    """

    async def get_block_number(self) -> int:
        """Return the number of the latest block."""

    async def get_block(self, block_id: BlockId) -> Block:
        """Return the block identified by number, hash or tag."""

    async def get_block_by_number(self, number: int | BlockTag) -> Block:
        """Return the block with the given number or tag."""

    async def get_block_by_hash(self, block_hash: str) -> Block:
        """Return the block with the given hash."""

    async def get_block_number_by_id(self, block_id: BlockId) -> int:
        """Return the number of the block identified by number, hash or tag."""

    async def get_latest_confirmed(self, block_confirmations: int) -> int:
        """Return the latest block number less ``block_confirmations``, not below zero."""

    async def subscribe_blocks(self) -> AsyncIterator[Block | ScannerError]:
        """Return an iterator of new headers; failures arrive as error items."""


class ResultChannel:
    """Bounded asynchronous queue of scanner messages.

    Sending waits while the channel is full. Once closed, sends return ``False``
    and iteration ends after the buffered items are drained.
    """

    def __init__(self, capacity: int = MAX_BUFFERED_MESSAGES) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._items: deque[ScannerMessage] = deque()
        self._closed = False
        self._has_items = asyncio.Event()
        self._has_space = asyncio.Event()

    async def send(self, item: ScannerMessage) -> bool:
        """Queue ``item``; return ``False`` if the channel is closed."""
        while not self._closed and len(self._items) >= self._capacity:
            self._has_space.clear()
            await self._has_space.wait()
        if self._closed:
            return False
        self._items.append(item)
        self._has_items.set()
        return True

    def close(self) -> None:
        """Stop accepting items and wake anyone waiting."""
        self._closed = True
        self._has_items.set()
        self._has_space.set()

    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._items)

    def __aiter__(self) -> ResultChannel:
        return self

    async def __anext__(self) -> ScannerMessage:
        while not self._items:
            if self._closed:
                raise StopAsyncIteration
            self._has_items.clear()
            await self._has_items.wait()
        item = self._items.popleft()
        self._has_space.set()
        return item