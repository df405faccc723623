"""Resolve which block heights a fetch run covers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Mapping, Protocol

from loguru import logger

from btcfetch.config.schema import MAX_BLOCKS
from btcfetch.utils.exceptions import ChainForkError, InvalidRangeError


class BlockHashSource(Protocol):
    async def get_block_hash(self, height: int) -> str: ...


@dataclass(frozen=True)
class FetchWindow:
    """Inclusive height range [from_height, target_height]."""
    from_height: int
    target_height: int

    @property
    def size(self) -> int:
        return self.target_height - self.from_height + 1

    def heights(self) -> Iterator[int]:
        return iter(range(self.from_height, self.target_height + 1))


def resolve_window(from_height: int, tip_height: int, max_blocks: int = MAX_BLOCKS) -> FetchWindow:
    """target = min(tip, from + max_blocks)."""
    if from_height < 0 or tip_height < 0:
        raise InvalidRangeError("block heights must be non-negative", from_height, tip_height)
    if max_blocks < 1:
        raise InvalidRangeError(f"max_blocks must be positive, got {max_blocks}", from_height, tip_height)
    if from_height > tip_height:
        raise InvalidRangeError(
            f"nothing to fetch: from height {from_height} is above tip {tip_height}",
            from_height,
            tip_height,
        )
    return FetchWindow(from_height, min(tip_height, from_height + max_blocks))


async def find_common_ancestor(
    chain: BlockHashSource,
    known_hashes: Mapping[int, str],
    tip_height: int,
    max_lookback: int,
) -> int:
    """
    Walk backward and return the highest height whose node hash equals the recorded one.

    The walk starts at min(tip, highest recorded height). Heights with no
    recorded hash are skipped but still count toward max_lookback.
    Raises ChainForkError when max_lookback heights are examined without a match.
    """
    if not known_hashes:
        raise InvalidRangeError("no recorded block hashes to resume from", None, tip_height)
    if max_lookback < 1:
        raise InvalidRangeError(f"max_lookback must be positive, got {max_lookback}", None, tip_height)

    start = min(tip_height, max(known_hashes))
    lowest = max(start - max_lookback + 1, 0)
    for height in range(start, lowest - 1, -1):
        recorded = known_hashes.get(height)
        if recorded is None:
            continue
        current = await chain.get_block_hash(height)
        if current.lower() == recorded.lower():
            if height != start:
                logger.info("Chain diverged above height {}; resuming from common ancestor", height)
            return height
        logger.debug("Hash mismatch at height {}: recorded {}, node {}", height, recorded, current)
    raise ChainForkError(lowest, max_lookback)


async def resolve_incremental_window(
    chain: BlockHashSource,
    known_hashes: Mapping[int, str],
    tip_height: int,
    max_blocks: int = MAX_BLOCKS,
    max_lookback: int = 100,
) -> FetchWindow:
    """Window starting at the common ancestor, whose hash becomes prevBlockHash."""
    ancestor = await find_common_ancestor(chain, known_hashes, tip_height, max_lookback)
    return resolve_window(ancestor, tip_height, max_blocks)
