"""One fetch run: tip -> window -> hashes -> headers -> encoded artifact."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

from loguru import logger

from btcfetch.config.schema import Config
from btcfetch.fetcher.encoder import OutputRecord, encode
from btcfetch.fetcher.orchestrator import (
    CancelToken,
    FetchOrchestrator,
    ItemOutcome,
    unwrap_outcomes,
)
from btcfetch.fetcher.window import FetchWindow, resolve_incremental_window, resolve_window
from btcfetch.rpc.chain import BitcoinRpc
from btcfetch.rpc.transport import JsonRpcTransport, transport_from_config


async def resolve_run_window(
    chain: BitcoinRpc,
    config: Config,
    known_hashes: Mapping[int, str] | None = None,
) -> FetchWindow:
    tip = await chain.get_block_count()
    logger.info("Got BTC latest block height: {}", tip)
    if known_hashes:
        return await resolve_incremental_window(
            chain, known_hashes, tip, config.fetch.max_blocks, config.fetch.max_lookback
        )
    return resolve_window(config.fetch.from_height, tip, config.fetch.max_blocks)


async def _retry_items(
    orchestrator: FetchOrchestrator,
    outcomes: list[ItemOutcome],
    fetch: Callable[[Any], Awaitable[Any]],
    retries: int,
    cancel: CancelToken | None,
) -> list[Any]:
    for _ in range(retries):
        if all(o.ok for o in outcomes):
            break
        outcomes = await orchestrator.retry_failed(outcomes, fetch, cancel)
    return unwrap_outcomes(outcomes)


async def run_fetch(
    config: Config,
    *,
    known_hashes: Mapping[int, str] | None = None,
    cancel: CancelToken | None = None,
    transport: JsonRpcTransport | None = None,
) -> OutputRecord:
    """
    Fetch and encode one window of blocks.

    With known_hashes (height -> hash from an earlier run) the window starts
    at the common ancestor with the node's chain instead of fetch.from_height.
    Any unrecovered error propagates; nothing is written here.
    """
    owned = transport is None
    transport = transport or transport_from_config(config.rpc)
    try:
        chain = BitcoinRpc(transport)
        orchestrator = FetchOrchestrator(chain, max_concurrency=config.fetch.max_concurrency, cancel=cancel)
        window = await resolve_run_window(chain, config, known_hashes)
        retries = config.fetch.item_retries

        if retries <= 0:
            hashes = await orchestrator.fetch_hashes(window, cancel)
            headers = await orchestrator.fetch_headers(hashes, cancel)
        else:
            outcomes = await orchestrator.fetch_hash_outcomes(window, cancel)
            hashes = await _retry_items(orchestrator, outcomes, chain.get_block_hash, retries, cancel)
            outcomes = await orchestrator.fetch_header_outcomes(hashes, cancel)
            headers = await _retry_items(orchestrator, outcomes, chain.get_block_header, retries, cancel)
        logger.info("Loaded BTC blocks {}-{}", window.from_height, window.target_height)
        return encode(window, hashes, headers)
    finally:
        if owned:
            await transport.aclose()


def write_record(record: OutputRecord, path: Path | str) -> Path:
    """Write the artifact as compact JSON; the target is replaced only once fully written."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = out.with_suffix(out.suffix + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(json.dumps(record.to_dict(), separators=(",", ":")))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, out)
    finally:
        tmp_path.unlink(missing_ok=True)
    logger.info("Wrote {} block(s) to {}", len(record.block_hashes), out)
    return out


def load_record(path: Path | str) -> dict[str, Any]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict) or "prevBlockHash" not in data:
        raise ValueError(f"Not a btcfetch artifact: {path}")
    return data
