"""Block range scanner service and its client."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Coroutine
from typing import Any, Union

from blockrange.errors import (
    BlockNotFound,
    InvalidMaxBlockRange,
    ScannerError,
    ServiceShutdown,
)
from blockrange.messages import (
    MAX_BUFFERED_MESSAGES,
    Block,
    BlockId,
    BlockTag,
    ChainProvider,
    ReorgDetected,
    ResultChannel,
)
from blockrange.reorg_handler import DEFAULT_PAST_BLOCKS_STORAGE_CAPACITY, ReorgHandler
from blockrange.streaming import stream_historical_range, stream_live_blocks
from blockrange.sync_handler import SyncHandler

logger = logging.getLogger(__name__)

DEFAULT_MAX_BLOCK_RANGE = 1000
DEFAULT_BLOCK_CONFIRMATIONS = 0
# After this many confirmations a block on Ethereum is considered final.
DEFAULT_REORG_REWIND_DEPTH = 64

_COMMAND_QUEUE_SIZE = 100


@dataclasses.dataclass(frozen=True)
class BlockRangeScanner:
    """Configuration of a block range scanner, not yet bound to a provider."""

    max_block_range: int = DEFAULT_MAX_BLOCK_RANGE
    past_blocks_storage_capacity: int | None = DEFAULT_PAST_BLOCKS_STORAGE_CAPACITY

    def with_max_block_range(self, max_block_range: int) -> BlockRangeScanner:
        """Return a copy that streams at most ``max_block_range`` blocks per range."""
        return dataclasses.replace(self, max_block_range=max_block_range)

    def with_past_blocks_storage_capacity(self, capacity: int | None) -> BlockRangeScanner:
        """Return a copy that remembers ``capacity`` block hashes for reorg checks."""
        return dataclasses.replace(self, past_blocks_storage_capacity=capacity)

    def connect(self, provider: ChainProvider) -> ConnectedBlockRangeScanner:
        """Bind the configuration to ``provider``."""
        if not isinstance(provider, ChainProvider):
            raise TypeError("provider does not implement the ChainProvider interface")
        return ConnectedBlockRangeScanner(
            provider, self.max_block_range, self.past_blocks_storage_capacity
        )


class ConnectedBlockRangeScanner:
    """A scanner bound to a provider, ready to start its service."""

    def __init__(
        self,
        provider: ChainProvider,
        max_block_range: int,
        past_blocks_storage_capacity: int | None,
    ) -> None:
        self._provider = provider
        self._max_block_range = max_block_range
        self._past_blocks_storage_capacity = past_blocks_storage_capacity

    @property
    def provider(self) -> ChainProvider:
        return self._provider

    def run(self) -> BlockRangeScannerClient:
        """Start the service on the running event loop and return a client for it."""
        service = _Service(
            self._provider, self._max_block_range, self._past_blocks_storage_capacity
        )
        task = asyncio.create_task(service.run())
        return BlockRangeScannerClient(service.commands, task)


@dataclasses.dataclass
class _StreamLive:
    sender: ResultChannel
    block_confirmations: int
    response: asyncio.Future[None]


@dataclasses.dataclass
class _StreamHistorical:
    sender: ResultChannel
    start_id: BlockId
    end_id: BlockId
    response: asyncio.Future[None]


@dataclasses.dataclass
class _StreamFrom:
    sender: ResultChannel
    start_id: BlockId
    block_confirmations: int
    response: asyncio.Future[None]


@dataclasses.dataclass
class _Rewind:
    sender: ResultChannel
    start_id: BlockId
    end_id: BlockId
    response: asyncio.Future[None]


_Command = Union[_StreamLive, _StreamHistorical, _StreamFrom, _Rewind]


class _Service:
    """Executes commands one after another and spawns the streaming tasks."""

    def __init__(
        self,
        provider: ChainProvider,
        max_block_range: int,
        past_blocks_storage_capacity: int | None,
    ) -> None:
        self._provider = provider
        self._max_block_range = max_block_range
        self._capacity = past_blocks_storage_capacity
        self.error_count = 0
        self.commands: asyncio.Queue[_Command] = asyncio.Queue(_COMMAND_QUEUE_SIZE)
        self._tasks: set[asyncio.Task[Any]] = set()

    async def run(self) -> None:
        logger.info("Starting subscription service")
        try:
            while True:
                command = await self.commands.get()
                try:
                    await self._handle(command)
                except ScannerError as error:
                    logger.error("Command handling error: %s", error)
                    self.error_count += 1
                    command.sender.close()
                    if not command.response.done():
                        command.response.set_exception(error)
                else:
                    if not command.response.done():
                        command.response.set_result(None)
        finally:
            logger.info("Subscription service stopped")

    async def _handle(self, command: _Command) -> None:
        if self._max_block_range < 1:
            raise InvalidMaxBlockRange()
        match command:
            case _StreamLive(sender=sender, block_confirmations=confirmations):
                logger.info("Starting live stream")
                await self._handle_live(confirmations, sender)
            case _StreamHistorical(sender=sender, start_id=start_id, end_id=end_id):
                logger.info("Starting historical stream from %s to %s", start_id, end_id)
                await self._handle_historical(start_id, end_id, sender)
            case _StreamFrom(sender=sender, start_id=start_id, block_confirmations=confirmations):
                logger.info("Starting streaming from %s", start_id)
                await self._handle_sync(start_id, confirmations, sender)
            case _Rewind(sender=sender, start_id=start_id, end_id=end_id):
                logger.info("Starting rewind from %s to %s", start_id, end_id)
                await self._handle_rewind(start_id, end_id, sender)

    def _keep(self, task: asyncio.Task[Any]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _spawn(self, work: Coroutine[Any, Any, Any], sender: ResultChannel) -> None:
        async def guarded() -> None:
            try:
                await work
            finally:
                sender.close()

        self._keep(asyncio.create_task(guarded()))

    async def _handle_live(self, block_confirmations: int, sender: ResultChannel) -> None:
        latest = await self._provider.get_block_number()
        # The subscription only yields blocks mined after ``latest``.
        range_start = max(0, latest + 1 - block_confirmations)
        subscription = await self._provider.subscribe_blocks()
        logger.info("Connected for live blocks")

        self._spawn(
            stream_live_blocks(
                range_start,
                subscription,
                sender,
                self._provider,
                block_confirmations,
                self._max_block_range,
                ReorgHandler(self._provider, self._capacity),
                False,
            ),
            sender,
        )

    async def _handle_historical(
        self, start_id: BlockId, end_id: BlockId, sender: ResultChannel
    ) -> None:
        start_block, end_block = await asyncio.gather(
            self._provider.get_block(start_id), self._provider.get_block(end_id)
        )
        start, end = sorted((start_block.number, end_block.number))
        logger.info("Normalized the block range to %s..=%s", start, end)

        self._spawn(
            stream_historical_range(
                start,
                end,
                self._max_block_range,
                sender,
                self._provider,
                ReorgHandler(self._provider, self._capacity),
            ),
            sender,
        )

    async def _handle_sync(
        self, start_id: BlockId, block_confirmations: int, sender: ResultChannel
    ) -> None:
        handler = SyncHandler(
            self._provider,
            self._max_block_range,
            start_id,
            block_confirmations,
            self._capacity,
            sender,
        )
        self._keep(await handler.run())

    async def _handle_rewind(
        self, start_id: BlockId, end_id: BlockId, sender: ResultChannel
    ) -> None:
        start_block, end_block = await asyncio.gather(
            self._provider.get_block(start_id), self._provider.get_block(end_id)
        )
        if start_block.number > end_block.number:
            newest, oldest = start_block, end_block
        else:
            newest, oldest = end_block, start_block

        self._spawn(
            _stream_rewind(
                newest,
                oldest,
                self._max_block_range,
                sender,
                self._provider,
                ReorgHandler(self._provider, self._capacity),
            ),
            sender,
        )


async def _stream_rewind(
    newest: Block,
    oldest: Block,
    max_block_range: int,
    sender: ResultChannel,
    provider: ChainProvider,
    reorg_handler: ReorgHandler,
) -> None:
    """Stream ranges from ``newest`` back to ``oldest``, each range in ascending order."""
    tip = newest
    top = newest.number
    bottom = oldest.number

    try:
        finalized = await provider.get_block_by_number(BlockTag.FINALIZED)
    except ScannerError as error:
        logger.error("Failed to get finalized block: %s", error)
        await sender.send(error)
        return

    # Finalized blocks cannot be reorganised.
    check_reorg = tip.number > finalized.number

    batch_count = 0
    batch_from = top
    while batch_from >= bottom:
        batch_to = max(max(0, batch_from - (max_block_range - 1)), bottom)

        if not await sender.send(range(batch_to, batch_from + 1)):
            break

        batch_count += 1
        if batch_count % 10 == 0:
            logger.debug("Processed %s rewind batches", batch_count)

        if batch_to == bottom:
            break

        if check_reorg:
            try:
                common_ancestor = await reorg_handler.check(tip)
            except ScannerError as error:
                logger.error("Terminal RPC call error, shutting down: %s", error)
                await sender.send(error)
                return
            if common_ancestor is not None:
                new_tip = await _rescan_reorged(
                    tip, common_ancestor, max_block_range, sender, provider
                )
                if new_tip is None:
                    return
                tip = new_tip

        batch_from = batch_to - 1

    logger.info("Rewind completed after %s batches", batch_count)


async def _rescan_reorged(
    tip: Block,
    common_ancestor: Block,
    max_block_range: int,
    sender: ResultChannel,
    provider: ChainProvider,
) -> Block | None:
    """Announce a reorg and stream the blocks after the ancestor up to the tip again.

    Returns the new tip block, or ``None`` if the channel closed or an error was sent.
    """
    tip_number = tip.number
    ancestor = common_ancestor.number
    logger.info(
        "Reorg detected at block %s (%s), common ancestor %s", tip_number, tip.hash, ancestor
    )

    if not await sender.send(ReorgDetected(common_ancestor=ancestor)):
        return None

    try:
        new_tip = await provider.get_block_by_number(tip_number)
    except BlockNotFound as error:
        logger.error("Unexpected error: pre-reorg chain tip should exist on a reorged chain")
        await sender.send(error)
        return None
    except ScannerError as error:
        logger.error("Terminal RPC call error, shutting down: %s", error)
        await sender.send(error)
        return None

    batch_start = ancestor + 1
    while batch_start <= tip_number:
        batch_end = min(batch_start + max_block_range - 1, tip_number)
        if not await sender.send(range(batch_start, batch_end + 1)):
            return None
        batch_start = batch_end + 1

    return new_tip


class BlockRangeScannerClient:
    """Sends stream requests to a running scanner service."""

    def __init__(
        self, commands: asyncio.Queue[_Command], service: asyncio.Task[None]
    ) -> None:
        self._commands = commands
        self._service = service

    async def _submit(self, build: Any) -> ResultChannel:
        if self._service.done():
            raise ServiceShutdown()
        sender = ResultChannel(MAX_BUFFERED_MESSAGES)
        response: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        await self._commands.put(build(sender, response))
        await asyncio.wait({response, self._service}, return_when=asyncio.FIRST_COMPLETED)
        if not response.done() or response.cancelled():
            raise ServiceShutdown()
        response.result()
        return sender

    async def stream_live(self, block_confirmations: int) -> ResultChannel:
        """Stream ranges of new blocks once they have ``block_confirmations``."""
        return await self._submit(
            lambda sender, response: _StreamLive(sender, block_confirmations, response)
        )

    async def stream_historical(self, start_id: BlockId, end_id: BlockId) -> ResultChannel:
        """Stream the blocks between the two ids, in either order, oldest first."""
        return await self._submit(
            lambda sender, response: _StreamHistorical(sender, start_id, end_id, response)
        )

    async def stream_from(self, start_id: BlockId, block_confirmations: int) -> ResultChannel:
        """Stream from ``start_id`` up to the chain tip, then switch to live mode."""
        return await self._submit(
            lambda sender, response: _StreamFrom(
                sender, start_id, block_confirmations, response
            )
        )

    async def rewind(self, start_id: BlockId, end_id: BlockId) -> ResultChannel:
        """Stream the blocks between the two ids newest batch first.

        Each batch is in ascending order. Above the finalized block, reorged blocks
        are announced and streamed again in ascending order before the rewind goes on.
        """
        return await self._submit(
            lambda sender, response: _Rewind(sender, start_id, end_id, response)
        )