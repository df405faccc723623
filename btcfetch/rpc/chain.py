"""Typed Bitcoin node queries on top of the JSON-RPC transport."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from btcfetch.rpc.transport import JsonRpcTransport, Params, RpcResponse
from btcfetch.utils.exceptions import RpcError

HASH_HEX_CHARS = 64
HEADER_HEX_CHARS = 160
_HEX = re.compile(r"[0-9a-fA-F]*")


@dataclass
class BlockInfo:
    """Verbose getblock summary (verbosity 1)"""
    hash: str
    height: int
    merkleroot: str
    n_tx: int
    tx: list[str] = field(default_factory=list)

    @classmethod
    def from_result(cls, result: dict[str, Any]) -> "BlockInfo":
        return cls(
            hash=str(result.get("hash") or ""),
            height=int(result.get("height") or 0),
            merkleroot=str(result.get("merkleroot") or ""),
            n_tx=int(result.get("nTx") or 0),
            tx=[str(t) for t in result.get("tx") or []],
        )


class BitcoinRpc:
    """Bitcoin Core RPC methods used by the fetcher. Errors are never retried here."""

    def __init__(self, transport: JsonRpcTransport):
        self.transport = transport

    async def _call(self, method: str, params: Params, expected: type | tuple[type, ...]) -> Any:
        res: RpcResponse = await self.transport.request(method, params)
        if res.error is not None:
            raise RpcError(method, res.error.code, res.error.message or "unknown error", res.error.data)
        # bool is an int subclass; never a valid block count or height
        if not isinstance(res.result, expected) or isinstance(res.result, bool):
            raise RpcError(
                method,
                None,
                f"unexpected result type {type(res.result).__name__}",
                res.result,
                code="UNEXPECTED_RESULT",
            )
        return res.result

    async def _call_hex(self, method: str, params: Params, length: int) -> str:
        result = await self._call(method, params, str)
        if len(result) != length or not _HEX.fullmatch(result):
            raise RpcError(
                method,
                None,
                f"expected {length} hex chars, got {len(result)}",
                result,
                code="UNEXPECTED_RESULT",
            )
        return result

    async def get_block_count(self) -> int:
        return await self._call("getblockcount", [], int)

    async def get_block_hash(self, height: int) -> str:
        return await self._call_hex("getblockhash", [height], HASH_HEX_CHARS)

    async def get_block_header(self, block_hash: str) -> str:
        """Serialized (non-verbose) header as 160 hex chars."""
        return await self._call_hex("getblockheader", [block_hash, False], HEADER_HEX_CHARS)

    async def get_block(self, block_hash: str) -> BlockInfo:
        result = await self._call("getblock", [block_hash, 1], dict)
        return BlockInfo.from_result(result)

    async def get_raw_transaction(self, txid: str, block_hash: str) -> str:
        return await self._call("getrawtransaction", [txid, False, block_hash], str)
