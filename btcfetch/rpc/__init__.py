"""Bitcoin node JSON-RPC client."""

from btcfetch.rpc.chain import BitcoinRpc, BlockInfo
from btcfetch.rpc.transport import (
    JsonRpcTransport,
    RpcRequest,
    RpcResponse,
    create_getblock_transport,
    transport_from_config,
)

__all__ = [
    "BitcoinRpc",
    "BlockInfo",
    "JsonRpcTransport",
    "RpcRequest",
    "RpcResponse",
    "create_getblock_transport",
    "transport_from_config",
]
