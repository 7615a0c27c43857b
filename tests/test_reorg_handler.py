import copy

import pytest

from blockrange.errors import BlockNotFound, RpcError
from blockrange.messages import Block, BlockTag
from blockrange.reorg_handler import ReorgHandler


class FakeChain:
    def __init__(self, tip, finalized=0):
        self.blocks = {n: Block(number=n, hash=f"0x{n:04x}") for n in range(tip + 1)}
        self.finalized = finalized
        self.hash_lookups = []
        self.failure = None
        self._generation = 0

    async def get_block_by_hash(self, block_hash):
        self.hash_lookups.append(block_hash)
        if self.failure is not None:
            raise self.failure
        for block in self.blocks.values():
            if block.hash == block_hash:
                return block
        raise BlockNotFound(block_hash)

    async def get_block_by_number(self, number):
        if number is BlockTag.FINALIZED:
            number = self.finalized
        try:
            return self.blocks[number]
        except KeyError:
            raise BlockNotFound(number) from None

    def reorg(self, depth):
        self._generation += 1
        tip = max(self.blocks)
        for n in range(tip - depth + 1, tip + 1):
            self.blocks[n] = Block(number=n, hash=f"0x{n:04x}r{self._generation}")


@pytest.mark.asyncio
async def test_no_reorg_returns_none():
    chain = FakeChain(5)
    handler = ReorgHandler(chain)
    assert await handler.check(chain.blocks[5]) is None
    assert chain.hash_lookups == [chain.blocks[5].hash]


@pytest.mark.asyncio
async def test_reorg_returns_newest_surviving_block():
    chain = FakeChain(5)
    handler = ReorgHandler(chain)
    old_tip = chain.blocks[5]
    await handler.check(chain.blocks[3])
    await handler.check(old_tip)
    chain.reorg(2)
    assert await handler.check(old_tip) == chain.blocks[3]


@pytest.mark.asyncio
async def test_duplicate_check_is_not_buffered_twice():
    chain = FakeChain(5)
    handler = ReorgHandler(chain)
    tip = chain.blocks[5]
    await handler.check(chain.blocks[4])
    await handler.check(tip)
    await handler.check(tip)
    chain.reorg(1)
    chain.hash_lookups.clear()
    assert await handler.check(tip) == chain.blocks[4]
    assert chain.hash_lookups == [tip.hash, tip.hash, chain.blocks[4].hash]


@pytest.mark.asyncio
async def test_deep_reorg_falls_back_to_finalized():
    chain = FakeChain(5, finalized=1)
    handler = ReorgHandler(chain, capacity=2)
    old = [chain.blocks[n] for n in (3, 4, 5)]
    for block in old:
        await handler.check(block)
    chain.reorg(4)
    assert await handler.check(old[-1]) == chain.blocks[1]


@pytest.mark.asyncio
async def test_ancestor_below_finalized_uses_finalized_and_forgets():
    chain = FakeChain(5)
    handler = ReorgHandler(chain)
    old_tip = chain.blocks[5]
    await handler.check(chain.blocks[2])
    await handler.check(old_tip)
    chain.finalized = 4
    chain.reorg(1)
    assert await handler.check(old_tip) == chain.blocks[4]

    chain.hash_lookups.clear()
    assert await handler.check(old_tip) == chain.blocks[4]
    assert chain.hash_lookups == [old_tip.hash]


@pytest.mark.asyncio
async def test_zero_capacity_always_uses_finalized():
    chain = FakeChain(5, finalized=2)
    handler = ReorgHandler(chain, capacity=0)
    old = chain.blocks[4]
    await handler.check(old)
    chain.reorg(2)
    assert await handler.check(old) == chain.blocks[2]


@pytest.mark.asyncio
async def test_rpc_failure_is_raised():
    chain = FakeChain(3)
    handler = ReorgHandler(chain)
    chain.failure = RpcError("node unavailable")
    with pytest.raises(RpcError, match="node unavailable"):
        await handler.check(chain.blocks[3])


@pytest.mark.asyncio
async def test_copy_has_its_own_memory():
    chain = FakeChain(5)
    handler = ReorgHandler(chain)
    old_tip = chain.blocks[5]
    await handler.check(chain.blocks[3])
    clone = copy.copy(handler)
    await handler.check(old_tip)
    chain.reorg(1)
    assert await handler.check(old_tip) == chain.blocks[3]
    assert await clone.check(chain.blocks[5]) is None
    assert await clone.check(old_tip) == chain.blocks[5]