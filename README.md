# blockrange

`blockrange` turns a chain of numbered blocks into a stream of inclusive
block ranges. A consumer reads those ranges and fetches whatever it needs for
each one, such as logs or receipts. The package also watches for chain
reorganisations. When it sees one, it tells the consumer and streams the
affected blocks again.

It is built on `asyncio` and has no runtime dependencies. It talks to the
chain through any object that implements the `ChainProvider` protocol from
`blockrange.messages`.

## Modules

- `blockrange.scanner`: `BlockRangeScanner` (configuration),
  `ConnectedBlockRangeScanner` and `BlockRangeScannerClient`. It also holds the
  constants `DEFAULT_MAX_BLOCK_RANGE` (1000), `DEFAULT_BLOCK_CONFIRMATIONS` (0)
  and `DEFAULT_REORG_REWIND_DEPTH` (64).
- `blockrange.messages` holds the following:
  - `Block` (number, hash, parent hash);
  - `BlockTag` (`LATEST`, `EARLIEST`, `FINALIZED`, `SAFE`, `PENDING`);
  - `Notification` (`SWITCHING_TO_LIVE`, `NO_PAST_LOGS_FOUND`);
  - `ReorgDetected`;
  - the `ChainProvider` protocol;
  - `ResultChannel`, a bounded async queue that every stream is delivered
    through.
- `blockrange.streaming`: the building blocks `stream_live_blocks`,
  `stream_historical_range` and `stream_range_with_reorg_handling`.
- `blockrange.sync_handler`: `SyncHandler`, which catches up on past blocks and
  then follows the chain live.
- `blockrange.reorg_handler`: `ReorgHandler`, which finds common ancestors.
- `blockrange.ring_buffer`: `RingBuffer`, a store for the newest items. It can
  be bounded or unbounded.
- `blockrange.errors`: `ScannerError` and its subclasses.

## Modes

`ConnectedBlockRangeScanner.run()` starts a background service on the running
event loop and returns a `BlockRangeScannerClient`. The client has four methods.
Each one returns a `ResultChannel`.

- `stream_live(block_confirmations)` streams new blocks as their headers
  arrive. A block is streamed only once it has the requested number of
  confirmations.
- `stream_historical(start_id, end_id)` streams a fixed range in ascending
  batches. The two ids may be given in either order.
- `stream_from(start_id, block_confirmations)` catches up from `start_id` to the
  confirmed tip. It then sends `Notification.SWITCHING_TO_LIVE` and carries on
  in live mode. If `start_id` is already past the confirmed tip, the
  notification is sent once the first relevant live header arrives.
- `rewind(start_id, end_id)` streams batches from the newest block to the
  oldest. Within each batch the blocks are in ascending order. The two ids may
  be given in either order.

A block id can be a block number, a block hash or a `BlockTag`. Each batch is
at most `max_block_range` blocks long.

Errors found while setting up a request are raised from the client method.
An unknown block, for example, raises `BlockNotFound`, and a
`max_block_range` below 1 raises `InvalidMaxBlockRange`. If the service is no
longer running, the method raises `ServiceShutdown`.

## Usage

```python
from blockrange.errors import ScannerError
from blockrange.messages import Notification, ReorgDetected
from blockrange.scanner import BlockRangeScanner


async def consume(provider):
    connected = BlockRangeScanner().with_max_block_range(100).connect(provider)
    client = connected.run()

    stream = await client.stream_historical(0, 500)
    async for item in stream:
        if isinstance(item, ScannerError):
            print("error:", item)
        elif isinstance(item, ReorgDetected):
            print("reorg, common ancestor", item.common_ancestor)
        elif isinstance(item, Notification):
            print("notification:", item)
        else:
            print(f"blocks {item.start}..={item[-1]}")
```

`connect` is a plain call. It raises `TypeError` if the provider does not
implement `ChainProvider`. `run` must be called while an event loop is running.

Each item in a stream is one of the following:

- a `range` of block numbers. `item.start` is the first block and `item[-1]`
  is the last.
- a `Notification`.
- a `ReorgDetected`, which carries the common ancestor's block number.
- a `ScannerError` subclass, such as `RpcError`, `BlockNotFound`,
  `ScannerTimeout` or `SubscriptionClosed`.

The channel is closed when the work is done or after a terminal error has
been sent. Iteration then ends.

## Reorg handling

`ReorgHandler.check(block)` works in three steps:

1. If the block's hash is still on the chain, the handler remembers that hash
   in a `RingBuffer` and returns `None`.
2. If the hash is gone, it walks back through the remembered hashes until one
   is still on the chain. That block is the common ancestor.
3. If no remembered hash survives, or the ancestor found is older than the
   finalized block, the finalized block is returned instead.

The buffer capacity is set with
`BlockRangeScanner.with_past_blocks_storage_capacity`:

- the default is 10;
- `None` means no limit;
- `0` keeps nothing, so every reorg falls back to the finalized block.

Historical streaming sends finalized blocks without reorg checks. Rewind
checks for reorgs only when its newest block is above the finalized block.

## What this package does not include

- It contains no client for a real node. You supply the `ChainProvider`,
  including the header subscription that `subscribe_blocks` returns.
- It only produces block ranges. It does not fetch or decode logs or events.
- It provides no command-line program.

## Running the tests

```
pip install -e ".[test]"
pytest
```