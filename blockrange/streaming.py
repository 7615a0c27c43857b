"""Streaming of block ranges in historical and live mode, with reorg handling."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from blockrange.errors import InvalidMaxBlockRange, ScannerError, SubscriptionLagged
from blockrange.messages import (
    Block,
    BlockTag,
    ChainProvider,
    Notification,
    ReorgDetected,
    ResultChannel,
)
from blockrange.reorg_handler import ReorgHandler

logger = logging.getLogger(__name__)

HeaderItem = Block | ScannerError


@dataclass
class _LiveState:
    """Where the next live batch begins and the block that ended the previous one."""

    batch_start: int
    previous_batch_end: Block | None


def _require_positive_range(max_block_range: int) -> None:
    if max_block_range < 1:
        raise InvalidMaxBlockRange()


def _confirmed(number: int, block_confirmations: int) -> int:
    return max(0, number - block_confirmations)


async def stream_live_blocks(
    stream_start: int,
    subscription: AsyncIterator[HeaderItem],
    sender: ResultChannel,
    provider: ChainProvider,
    block_confirmations: int,
    max_block_range: int,
    reorg_handler: ReorgHandler,
    notify_after_first_block: bool,
) -> None:
    """Stream confirmed block ranges from ``stream_start`` as new headers arrive.

    Headers whose confirmed number lies before ``stream_start`` are skipped. Errors
    from the subscription or the provider are sent on ``sender`` and end streaming.
    """
    _require_positive_range(max_block_range)

    headers = _relevant_headers(subscription, stream_start, block_confirmations)

    first_block = await _first_block(headers, sender)
    if first_block is None:
        return

    if notify_after_first_block and not await sender.send(Notification.SWITCHING_TO_LIVE):
        return

    state = await _initial_state(
        first_block,
        stream_start,
        block_confirmations,
        max_block_range,
        sender,
        provider,
        reorg_handler,
    )
    if state is None:
        return

    await _stream_continuously(
        headers,
        state,
        stream_start,
        block_confirmations,
        max_block_range,
        sender,
        provider,
        reorg_handler,
    )

    logger.warning("Live block subscription ended")


async def _relevant_headers(
    subscription: AsyncIterator[HeaderItem],
    stream_start: int,
    block_confirmations: int,
) -> AsyncIterator[HeaderItem]:
    """Drop leading headers not yet relevant, then pass everything through."""
    skipping = True
    async for item in subscription:
        if skipping:
            if isinstance(item, SubscriptionLagged):
                continue
            if (
                isinstance(item, Block)
                and _confirmed(item.number, block_confirmations) < stream_start
            ):
                continue
            skipping = False
        yield item


async def _first_block(
    headers: AsyncIterator[HeaderItem], sender: ResultChannel
) -> Block | None:
    async for item in headers:
        if isinstance(item, Block):
            return item
        if isinstance(item, SubscriptionLagged):
            logger.info("Skipping lagged notice, next block should be the first live block")
            continue
        await sender.send(item)
        return None
    return None


async def _initial_state(
    first_block: Block,
    stream_start: int,
    block_confirmations: int,
    max_block_range: int,
    sender: ResultChannel,
    provider: ChainProvider,
    reorg_handler: ReorgHandler,
) -> _LiveState | None:
    logger.info("Received first block header %s", first_block.number)
    confirmed = _confirmed(first_block.number, block_confirmations)
    min_common_ancestor = max(0, stream_start - 1)

    previous_batch_end = await stream_range_with_reorg_handling(
        min_common_ancestor,
        stream_start,
        confirmed,
        max_block_range,
        sender,
        provider,
        reorg_handler,
    )
    if previous_batch_end is None:
        return None
    return _LiveState(batch_start=stream_start, previous_batch_end=previous_batch_end)


async def _stream_continuously(
    headers: AsyncIterator[HeaderItem],
    state: _LiveState,
    stream_start: int,
    block_confirmations: int,
    max_block_range: int,
    sender: ResultChannel,
    provider: ChainProvider,
    reorg_handler: ReorgHandler,
) -> None:
    async for item in headers:
        if not isinstance(item, Block):
            logger.error("Error receiving block from stream: %s", item)
            if isinstance(item, SubscriptionLagged):
                continue
            await sender.send(item)
            return

        logger.info("Received block header %s", item.number)

        previous_batch_end = state.previous_batch_end
        if previous_batch_end is None:
            # A previously detected reorg was not fully handled yet.
            continue

        try:
            common_ancestor = await reorg_handler.check(previous_batch_end)
        except ScannerError as error:
            logger.error("Failed to perform reorg check: %s", error)
            await sender.send(error)
            return

        if common_ancestor is not None:
            if not await _handle_reorg(common_ancestor, stream_start, state, sender):
                return
        else:
            state.batch_start = previous_batch_end.number + 1

        batch_end = _confirmed(item.number, block_confirmations)
        if not await _stream_next_batch(
            batch_end,
            state,
            stream_start,
            max_block_range,
            sender,
            provider,
            reorg_handler,
        ):
            return


async def _handle_reorg(
    common_ancestor: Block,
    stream_start: int,
    state: _LiveState,
    sender: ResultChannel,
) -> bool:
    ancestor = common_ancestor.number
    if not await sender.send(ReorgDetected(common_ancestor=ancestor)):
        return False

    if ancestor < stream_start:
        logger.info(
            "Reorg at %s reaches before stream start %s, resetting to stream start",
            ancestor,
            stream_start,
        )
        state.batch_start = stream_start
        state.previous_batch_end = None
    else:
        logger.info("Reorg detected, resuming after common ancestor %s", ancestor)
        state.batch_start = ancestor + 1
        state.previous_batch_end = common_ancestor
    return True


async def _stream_next_batch(
    batch_end: int,
    state: _LiveState,
    stream_start: int,
    max_block_range: int,
    sender: ResultChannel,
    provider: ChainProvider,
    reorg_handler: ReorgHandler,
) -> bool:
    if batch_end < state.batch_start:
        return True

    min_common_ancestor = max(0, stream_start - 1)
    state.previous_batch_end = await stream_range_with_reorg_handling(
        min_common_ancestor,
        state.batch_start,
        batch_end,
        max_block_range,
        sender,
        provider,
        reorg_handler,
    )
    if state.previous_batch_end is None:
        return False

    state.batch_start = batch_end + 1
    return True


async def stream_historical_range(
    start: int,
    end: int,
    max_block_range: int,
    sender: ResultChannel,
    provider: ChainProvider,
    reorg_handler: ReorgHandler,
) -> bool:
    """Stream ``start..=end`` in batches; return ``False`` if streaming stopped early.

    Finalized blocks are streamed without reorg checks; the rest with them.
    """
    _require_positive_range(max_block_range)

    logger.info("Getting finalized block number")
    try:
        finalized = await provider.get_block_number_by_id(BlockTag.FINALIZED)
    except ScannerError as error:
        logger.error("Failed to get finalized block: %s", error)
        await sender.send(error)
        return False

    batch_start = start
    finalized_batch_end = min(finalized, end)
    while batch_start <= finalized_batch_end:
        batch_end = min(batch_start + max_block_range - 1, finalized_batch_end)
        if not await sender.send(range(batch_start, batch_end + 1)):
            return False
        batch_start = batch_end + 1

    if batch_start > end:
        return True

    # Only blocks after the finalized one, and not before ``start``, may be re-streamed.
    min_common_ancestor = max(max(0, start - 1), finalized)

    last = await stream_range_with_reorg_handling(
        min_common_ancestor,
        batch_start,
        end,
        max_block_range,
        sender,
        provider,
        reorg_handler,
    )
    return last is not None


async def stream_range_with_reorg_handling(
    min_common_ancestor: int,
    next_start_block: int,
    end: int,
    max_block_range: int,
    sender: ResultChannel,
    provider: ChainProvider,
    reorg_handler: ReorgHandler,
) -> Block | None:
    """Stream ``next_start_block..=end``, re-streaming after reorgs.

    Expects ``min_common_ancestor <= next_start_block <= end``. Returns the block that
    ended the last batch, or ``None`` if the channel closed or an error was sent.
    """
    _require_positive_range(max_block_range)

    batch_count = 0
    while True:
        batch_end_number = min(next_start_block + max_block_range - 1, end)
        try:
            batch_end = await provider.get_block_by_number(batch_end_number)
        except ScannerError as error:
            logger.error(
                "Failed to get ending block of batch %s..=%s: %s",
                next_start_block,
                batch_end_number,
                error,
            )
            await sender.send(error)
            return None

        if not await sender.send(range(next_start_block, batch_end_number + 1)):
            return None

        batch_count += 1
        if batch_count % 10 == 0:
            logger.debug("Processed %s historical batches", batch_count)

        try:
            reorged = await reorg_handler.check(batch_end)
        except ScannerError as error:
            logger.error("Failed to perform reorg check: %s", error)
            await sender.send(error)
            return None

        if reorged is not None:
            ancestor = reorged.number
            if not await sender.send(ReorgDetected(common_ancestor=ancestor)):
                return None
            next_start_block = max(ancestor + 1, min_common_ancestor)
        else:
            next_start_block = batch_end_number + 1

        if next_start_block > end:
            logger.info("Historical sync completed after %s batches", batch_count)
            return batch_end