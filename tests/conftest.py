"""Pytest hooks and fixtures."""

import json
import os

import httpx
import pytest

from btcfetch.config.schema import RetryConfig
from btcfetch.rpc.transport import JsonRpcTransport

NODE_URL = "http://node.test:8332/"


def pytest_configure(config):
    """Register custom markers (also in pyproject.toml)."""
    config.addinivalue_line(
        "markers",
        "live_node: talks to a real Bitcoin node at BTCFETCH_LIVE_URL (skipped otherwise)",
    )


def pytest_collection_modifyitems(config, items):
    """Skip live_node tests unless a node URL is configured."""
    if os.environ.get("BTCFETCH_LIVE_URL"):
        return
    skip = pytest.mark.skip(reason="BTCFETCH_LIVE_URL not set")
    for item in items:
        if "live_node" in item.keywords:
            item.add_marker(skip)


def block_hash(height: int) -> str:
    return f"{height:064x}"


def block_header(height: int) -> str:
    return f"{height:08x}" + "ab" * 76


class FakeNode:
    """In-memory bitcoind answering getblockcount/getblockhash/getblockheader."""

    def __init__(self, tip: int):
        self.tip = tip
        self.calls: list[dict] = []
        self.headers: list[dict[str, str]] = []
        self.rate_limited = 0
        self.overrides: dict[int, str] = {}
        self.header_overrides: dict[int, str] = {}
        self.fail_once: set = set()
        self.missing_headers: set[str] = set()

    def hash_at(self, height: int) -> str:
        return self.overrides.get(height, block_hash(height))

    def header_at(self, height: int) -> str:
        return self.header_overrides.get(height, block_header(height))

    def height_of(self, hash_hex: str) -> int | None:
        for height, value in self.overrides.items():
            if value == hash_hex:
                return height
        height = int(hash_hex, 16)
        if height <= self.tip and height not in self.overrides:
            return height
        return None

    def _result(self, method: str, params: list):
        if method == "getblockcount":
            return None, self.tip
        if method == "getblockhash":
            height = params[0]
            if height > self.tip:
                return {"code": -8, "message": "Block height out of range"}, None
            return None, self.hash_at(height)
        if method == "getblockheader":
            height = None if params[0] in self.missing_headers else self.height_of(params[0])
            if height is not None:
                return None, self.header_at(height)
            return {"code": -5, "message": "Block not found"}, None
        return {"code": -32601, "message": "Method not found"}, None

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.calls.append(payload)
        self.headers.append(dict(request.headers))
        if self.rate_limited > 0:
            self.rate_limited -= 1
            return httpx.Response(429, text="Too Many Requests")
        key = (payload["method"], tuple(p for p in payload["params"] if not isinstance(p, bool)))
        if key in self.fail_once:
            self.fail_once.discard(key)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "error": {"code": -1, "message": "flaky"}})
        error, result = self._result(payload["method"], payload["params"])
        body = {"jsonrpc": "2.0", "id": payload["id"]}
        if error is not None:
            body["error"] = error
        else:
            body["result"] = result
        return httpx.Response(200, json=body)


@pytest.fixture
def fake_node() -> FakeNode:
    return FakeNode(tip=700010)


@pytest.fixture
async def make_transport():
    """Factory: transport whose HTTP calls go to the given handler, with zero backoff."""
    clients: list[httpx.AsyncClient] = []

    def _make(handler, **kwargs) -> JsonRpcTransport:
        kwargs.setdefault("retry", RetryConfig(backoff_seconds=0.0))
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return JsonRpcTransport(NODE_URL, http_client=client, **kwargs)

    yield _make
    for client in clients:
        await client.aclose()
