"""Concurrent fan-out/fan-in of per-height and per-hash node queries."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from loguru import logger

from btcfetch.fetcher.window import FetchWindow
from btcfetch.rpc.chain import BitcoinRpc
from btcfetch.utils.exceptions import FetchCancelledError

Fetch = Callable[[Any], Awaitable[Any]]


class CancelToken:
    """Cooperative cancellation flag shared by the batches of one fetch run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "") -> None:
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class ItemOutcome:
    """Result of one item of a batch: a value or the error it raised."""
    index: int
    key: Any
    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def unwrap_outcomes(outcomes: Sequence[ItemOutcome]) -> list[Any]:
    """Values in input order; raises the first failure by position."""
    for outcome in outcomes:
        if outcome.error is not None:
            raise outcome.error
    return [outcome.value for outcome in outcomes]


class FetchOrchestrator:
    """
    Issue one chain query per item concurrently and return results in input order.

    By default a batch is all-or-nothing: the first failing call cancels the
    rest and its error propagates. The *_outcomes methods instead report every
    item separately so the caller can retry only the failures.
    """

    def __init__(
        self,
        chain: BitcoinRpc,
        *,
        max_concurrency: int = 64,
        cancel: CancelToken | None = None,
    ):
        self.chain = chain
        self.max_concurrency = max_concurrency
        self.cancel = cancel

    async def fetch_hashes(self, window: FetchWindow, cancel: CancelToken | None = None) -> list[str]:
        outcomes = await self._run("getblockhash", list(window.heights()), self.chain.get_block_hash, cancel)
        return [o.value for o in outcomes]

    async def fetch_headers(self, hashes: Sequence[str], cancel: CancelToken | None = None) -> list[str]:
        outcomes = await self._run("getblockheader", list(hashes), self.chain.get_block_header, cancel)
        return [o.value for o in outcomes]

    async def fetch_hash_outcomes(
        self, window: FetchWindow, cancel: CancelToken | None = None
    ) -> list[ItemOutcome]:
        return await self._run(
            "getblockhash", list(window.heights()), self.chain.get_block_hash, cancel, isolate=True
        )

    async def fetch_header_outcomes(
        self, hashes: Sequence[str], cancel: CancelToken | None = None
    ) -> list[ItemOutcome]:
        return await self._run(
            "getblockheader", list(hashes), self.chain.get_block_header, cancel, isolate=True
        )

    async def retry_failed(
        self,
        outcomes: Sequence[ItemOutcome],
        fetch: Fetch,
        cancel: CancelToken | None = None,
    ) -> list[ItemOutcome]:
        """Re-run only the failed items; successful outcomes are kept as they are."""
        failed = [o for o in outcomes if not o.ok]
        merged = list(outcomes)
        if not failed:
            return merged
        logger.info("Retrying {} failed item(s) of {}", len(failed), len(outcomes))
        rerun = await self._run("retry", [o.key for o in failed], fetch, cancel, isolate=True)
        for original, fresh in zip(failed, rerun):
            merged[original.index] = ItemOutcome(original.index, original.key, fresh.value, fresh.error)
        return merged

    async def _run(
        self,
        operation: str,
        keys: list[Any],
        fetch: Fetch,
        cancel: CancelToken | None,
        *,
        isolate: bool = False,
    ) -> list[ItemOutcome]:
        token = cancel or self.cancel
        if token is not None and token.cancelled:
            raise FetchCancelledError(operation, 0)
        if not keys:
            return []

        started = time.monotonic()
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency > 0 else None

        async def run_one(key: Any) -> Any:
            if semaphore is None:
                return await fetch(key)
            async with semaphore:
                return await fetch(key)

        tasks = [asyncio.create_task(run_one(key)) for key in keys]
        cancel_task = asyncio.create_task(token.wait()) if token is not None else None
        try:
            pending: set[asyncio.Task] = set(tasks)
            while pending:
                waiters = pending | {cancel_task} if cancel_task is not None else pending
                done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                if cancel_task is not None and cancel_task in done:
                    raise FetchCancelledError(operation, len(pending - done))
                pending -= done
                if not isolate:
                    # first failure by input position among this round's completions
                    for task in tasks:
                        if task in done and task.exception() is not None:
                            raise task.exception()
        finally:
            leftovers = [t for t in tasks if not t.done()]
            if cancel_task is not None:
                leftovers.append(cancel_task)
            for task in leftovers:
                task.cancel()
            # reap every task so no exception goes unretrieved
            await asyncio.gather(*tasks, *([cancel_task] if cancel_task else []), return_exceptions=True)

        outcomes = []
        for index, (key, task) in enumerate(zip(keys, tasks)):
            error = task.exception()
            outcomes.append(ItemOutcome(index, key, None if error else task.result(), error))
        logger.debug(
            "{}: {} call(s) finished in {:.2f}s ({} failed)",
            operation,
            len(keys),
            time.monotonic() - started,
            sum(1 for o in outcomes if not o.ok),
        )
        return outcomes
