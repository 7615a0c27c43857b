"""Catching up on past blocks, then following the chain live."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from blockrange.errors import InvalidMaxBlockRange, ScannerError
from blockrange.messages import BlockId, ChainProvider, Notification, ResultChannel
from blockrange.reorg_handler import DEFAULT_PAST_BLOCKS_STORAGE_CAPACITY, ReorgHandler
from blockrange.streaming import stream_historical_range, stream_live_blocks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _AlreadyLive:
    """The start block is at or beyond the confirmed tip."""

    start_block: int


@dataclass(frozen=True)
class _NeedsCatchup:
    """The start block is behind the confirmed tip."""

    start_block: int
    confirmed_tip: int


class SyncHandler:
    """Streams block ranges from ``start_id`` up to the chain tip and then live.

    All messages go to ``sender``, which is closed once streaming ends.
    """

    def __init__(
        self,
        provider: ChainProvider,
        max_block_range: int,
        start_id: BlockId,
        block_confirmations: int,
        past_blocks_storage_capacity: int | None = DEFAULT_PAST_BLOCKS_STORAGE_CAPACITY,
        sender: ResultChannel | None = None,
    ) -> None:
        if max_block_range < 1:
            raise InvalidMaxBlockRange()
        self._provider = provider
        self._max_block_range = max_block_range
        self._start_id = start_id
        self._block_confirmations = block_confirmations
        self._sender = sender if sender is not None else ResultChannel()
        self._reorg_handler = ReorgHandler(provider, past_blocks_storage_capacity)

    @property
    def sender(self) -> ResultChannel:
        return self._sender

    async def run(self) -> asyncio.Task[None]:
        """Start streaming in the background and return the running task.

        Errors met before streaming starts are raised; later ones are sent on the
        channel.
        """
        state = await self._determine_sync_state()

        if isinstance(state, _AlreadyLive):
            logger.info(
                "Start block %s is beyond confirmed tip, waiting for it to be confirmed "
                "before starting live stream",
                state.start_block,
            )
            return await self._spawn_live_only(state.start_block)

        logger.info(
            "Start block %s is behind confirmed tip %s, catching up then going live",
            state.start_block,
            state.confirmed_tip,
        )
        return asyncio.create_task(
            self._catchup_then_live(state.start_block, state.confirmed_tip)
        )

    async def _determine_sync_state(self) -> _AlreadyLive | _NeedsCatchup:
        start_block, confirmed_tip = await asyncio.gather(
            self._provider.get_block_number_by_id(self._start_id),
            self._provider.get_latest_confirmed(self._block_confirmations),
        )
        if start_block > confirmed_tip:
            return _AlreadyLive(start_block)
        return _NeedsCatchup(start_block, confirmed_tip)

    async def _spawn_live_only(self, start_block: int) -> asyncio.Task[None]:
        subscription = await self._provider.subscribe_blocks()

        async def live() -> None:
            try:
                await stream_live_blocks(
                    start_block,
                    subscription,
                    self._sender,
                    self._provider,
                    self._block_confirmations,
                    self._max_block_range,
                    self._reorg_handler,
                    True,
                )
            finally:
                self._sender.close()

        return asyncio.create_task(live())

    async def _catchup_then_live(self, start_block: int, confirmed_tip: int) -> None:
        try:
            try:
                live_start = await self._catchup_historical_blocks(start_block, confirmed_tip)
            except ScannerError as error:
                logger.error("Error during historical catchup, shutting down: %s", error)
                await self._sender.send(error)
                return
            if live_start is None:
                return
            await self._transition_to_live(live_start)
        finally:
            self._sender.close()

    async def _catchup_historical_blocks(
        self, start_block: int, confirmed_tip: int
    ) -> int | None:
        """Stream past blocks until the confirmed tip stops moving ahead.

        Returns the block live streaming begins at, or ``None`` if streaming stopped.
        """
        while start_block < confirmed_tip:
            if not await stream_historical_range(
                start_block,
                confirmed_tip,
                self._max_block_range,
                self._sender,
                self._provider,
                self._reorg_handler,
            ):
                return None

            latest = await self._provider.get_block_number()
            start_block = confirmed_tip + 1
            confirmed_tip = max(0, latest - self._block_confirmations)

        logger.info("Historical catchup complete, ready to transition to live")
        return start_block

    async def _transition_to_live(self, start_block: int) -> None:
        try:
            subscription = await self._provider.subscribe_blocks()
        except ScannerError as error:
            logger.error("Error subscribing to live blocks, shutting down: %s", error)
            await self._sender.send(error)
            return

        if not await self._sender.send(Notification.SWITCHING_TO_LIVE):
            return

        logger.info("Successfully transitioned from historical to live streaming")

        await stream_live_blocks(
            start_block,
            subscription,
            self._sender,
            self._provider,
            self._block_confirmations,
            self._max_block_range,
            self._reorg_handler,
            False,
        )