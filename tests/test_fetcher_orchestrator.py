import asyncio

import pytest

from btcfetch.fetcher.orchestrator import CancelToken, FetchOrchestrator, ItemOutcome, unwrap_outcomes
from btcfetch.fetcher.window import FetchWindow
from btcfetch.utils.exceptions import FetchCancelledError, RpcError


class _FakeChain:
    """Chain whose calls finish in reverse input order unless delays say otherwise."""

    def __init__(
        self,
        size: int,
        *,
        fail: set | None = None,
        fail_once: set | None = None,
        slow: float = 0.0,
        step: float = 0.001,
    ):
        self.size = size
        self.fail = fail or set()
        self.fail_once = set(fail_once or ())
        self.slow = slow
        self.step = step
        self.completed: list[int] = []
        self.calls: list[int] = []
        self.cancelled = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def _call(self, key: int, result: str) -> str:
        self.calls.append(key)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if key in self.fail:
                await asyncio.sleep(0)
                raise RpcError("getblockhash", -8, f"boom at {key}")
            if key in self.fail_once:
                self.fail_once.discard(key)
                await asyncio.sleep(0)
                raise RpcError("getblockhash", -1, f"flaky at {key}")
            await asyncio.sleep(self.slow or (self.size - key) * self.step)
            self.completed.append(key)
            return result
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.in_flight -= 1

    async def get_block_hash(self, height: int) -> str:
        return await self._call(height, f"hash-{height}")

    async def get_block_header(self, block_hash: str) -> str:
        return await self._call(int(block_hash.split("-")[1]), f"header-{block_hash}")


@pytest.mark.asyncio
async def test_results_keep_input_order_despite_completion_order() -> None:
    chain = _FakeChain(20)
    orchestrator = FetchOrchestrator(chain)  # type: ignore[arg-type]

    hashes = await orchestrator.fetch_hashes(FetchWindow(0, 19))

    assert hashes == [f"hash-{h}" for h in range(20)]
    assert chain.completed != sorted(chain.completed)

    headers = await orchestrator.fetch_headers(hashes)
    assert headers == [f"header-hash-{h}" for h in range(20)]


@pytest.mark.asyncio
async def test_max_concurrency_bounds_in_flight_calls() -> None:
    chain = _FakeChain(30, slow=0.002)
    orchestrator = FetchOrchestrator(chain, max_concurrency=4)  # type: ignore[arg-type]

    hashes = await orchestrator.fetch_hashes(FetchWindow(0, 29))

    assert len(hashes) == 30
    assert chain.max_in_flight == 4


@pytest.mark.asyncio
async def test_unbounded_concurrency_dispatches_everything() -> None:
    chain = _FakeChain(25, slow=0.005)
    orchestrator = FetchOrchestrator(chain, max_concurrency=0)  # type: ignore[arg-type]
    await orchestrator.fetch_hashes(FetchWindow(0, 24))
    assert chain.max_in_flight == 25


@pytest.mark.asyncio
async def test_single_failure_fails_whole_batch_and_cancels_the_rest() -> None:
    chain = _FakeChain(10, fail={9}, step=0.05)
    orchestrator = FetchOrchestrator(chain)  # type: ignore[arg-type]

    with pytest.raises(RpcError) as err:
        await orchestrator.fetch_hashes(FetchWindow(0, 9))

    assert "boom at 9" in str(err.value)
    assert chain.cancelled == 9
    assert chain.completed == []


@pytest.mark.asyncio
async def test_outcomes_isolate_failures() -> None:
    chain = _FakeChain(6, fail={2, 4})
    orchestrator = FetchOrchestrator(chain)  # type: ignore[arg-type]

    outcomes = await orchestrator.fetch_hash_outcomes(FetchWindow(0, 5))

    assert [o.ok for o in outcomes] == [True, True, False, True, False, True]
    assert [o.key for o in outcomes] == list(range(6))
    assert outcomes[0].value == "hash-0"
    assert isinstance(outcomes[2].error, RpcError)
    with pytest.raises(RpcError) as err:
        unwrap_outcomes(outcomes)
    assert "boom at 2" in str(err.value)


@pytest.mark.asyncio
async def test_retry_failed_reruns_only_failed_items() -> None:
    chain = _FakeChain(5, fail_once={1, 3})
    orchestrator = FetchOrchestrator(chain)  # type: ignore[arg-type]

    outcomes = await orchestrator.fetch_hash_outcomes(FetchWindow(0, 4))
    assert [o.ok for o in outcomes] == [True, False, True, False, True]

    chain.calls.clear()
    retried = await orchestrator.retry_failed(outcomes, chain.get_block_hash)

    assert sorted(chain.calls) == [1, 3]
    assert all(o.ok for o in retried)
    assert unwrap_outcomes(retried) == [f"hash-{h}" for h in range(5)]


@pytest.mark.asyncio
async def test_retry_failed_without_failures_is_a_noop() -> None:
    chain = _FakeChain(2)
    orchestrator = FetchOrchestrator(chain)  # type: ignore[arg-type]
    outcomes = [ItemOutcome(0, 0, "hash-0"), ItemOutcome(1, 1, "hash-1")]
    assert await orchestrator.retry_failed(outcomes, chain.get_block_hash) == outcomes
    assert chain.calls == []


@pytest.mark.asyncio
async def test_cancel_token_stops_in_flight_batch() -> None:
    chain = _FakeChain(8, slow=10.0)
    token = CancelToken()
    orchestrator = FetchOrchestrator(chain, cancel=token)  # type: ignore[arg-type]

    async def cancel_soon() -> None:
        await asyncio.sleep(0.01)
        token.cancel("operator abort")

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(FetchCancelledError) as err:
        await asyncio.wait_for(orchestrator.fetch_hashes(FetchWindow(0, 7)), timeout=5)
    await canceller

    assert err.value.details["pending"] == 8
    assert chain.cancelled == 8
    assert token.reason == "operator abort"


@pytest.mark.asyncio
async def test_already_cancelled_token_dispatches_nothing() -> None:
    chain = _FakeChain(3)
    token = CancelToken()
    token.cancel()
    orchestrator = FetchOrchestrator(chain)  # type: ignore[arg-type]

    with pytest.raises(FetchCancelledError):
        await orchestrator.fetch_hashes(FetchWindow(0, 2), cancel=token)
    assert chain.calls == []


@pytest.mark.asyncio
async def test_empty_header_batch() -> None:
    orchestrator = FetchOrchestrator(_FakeChain(0))  # type: ignore[arg-type]
    assert await orchestrator.fetch_headers([]) == []
