"""Detection of chain reorganisations from remembered block hashes."""

from __future__ import annotations

import copy
import logging

from blockrange.errors import BlockNotFound
from blockrange.messages import Block, BlockTag, ChainProvider
from blockrange.ring_buffer import RingBuffer

logger = logging.getLogger(__name__)

DEFAULT_PAST_BLOCKS_STORAGE_CAPACITY = 10


class ReorgHandler:
    """Remembers hashes of checked blocks and finds common ancestors after a reorg.

    ``capacity`` bounds how many hashes are kept; ``None`` keeps all of them and
    ``0`` keeps none, so every reorg falls back to the finalized block.
    """

    def __init__(
        self,
        provider: ChainProvider,
        capacity: int | None = DEFAULT_PAST_BLOCKS_STORAGE_CAPACITY,
    ) -> None:
        self._provider = provider
        self._buffer: RingBuffer[str] = RingBuffer(capacity)

    async def check(self, block: Block) -> Block | None:
        """Return the common ancestor if ``block`` was reorged away, else ``None``.

        Falls back to the finalized block when no remembered block survives or the
        surviving one is older than the finalized block. Errors other than a missing
        block are raised to the caller.
        """
        logger.info("Checking if block %s (%s) was reorged", block.number, block.hash)

        if not await self._reorg_detected(block):
            logger.info("No reorg detected for block %s", block.number)
            if self._buffer.back() != block.hash:
                self._buffer.push(block.hash)
            return None

        logger.info("Reorg detected, searching for common ancestor")

        while (block_hash := self._buffer.back()) is not None:
            try:
                ancestor = await self._provider.get_block_by_hash(block_hash)
            except BlockNotFound:
                self._buffer.pop_back()
                continue
            return await self._common_ancestor(ancestor)

        logger.warning("Possible deep reorg detected, setting finalized block as common ancestor")
        finalized = await self._provider.get_block_by_number(BlockTag.FINALIZED)
        logger.info("Finalized block %s set as common ancestor", finalized.number)
        return finalized

    async def _reorg_detected(self, block: Block) -> bool:
        try:
            await self._provider.get_block_by_hash(block.hash)
        except BlockNotFound:
            return True
        return False

    async def _common_ancestor(self, ancestor: Block) -> Block:
        finalized = await self._provider.get_block_by_number(BlockTag.FINALIZED)
        if finalized.number <= ancestor.number:
            logger.info("Common ancestor found at block %s", ancestor.number)
            return ancestor
        logger.warning(
            "Possible deep reorg detected, using finalized block %s as common ancestor",
            finalized.number,
        )
        # Everything remembered is at or below finality now.
        self._buffer.clear()
        return finalized

    def __copy__(self) -> ReorgHandler:
        duplicate = ReorgHandler(self._provider, self._buffer.capacity)
        duplicate._buffer = copy.copy(self._buffer)
        return duplicate