"""JSON-RPC 2.0 transport over HTTP for Bitcoin nodes."""

from __future__ import annotations

import asyncio
import itertools
import json
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from btcfetch.config.schema import RetryConfig, RpcConfig
from btcfetch.utils.exceptions import TransportError, sanitize_error_message

JSONRPC_VERSION = "2.0"
GETBLOCK_NETWORKS = ("mainnet", "testnet")

Params = list[Any] | dict[str, Any]


@dataclass
class RpcRequest:
    id: int
    method: str
    params: Params = field(default_factory=list)
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {"jsonrpc": self.jsonrpc, "id": self.id, "method": self.method, "params": self.params}


@dataclass
class RpcErrorObject:
    code: int | None
    message: str
    data: Any = None


@dataclass
class RpcResponse:
    id: int | str | None
    result: Any = None
    error: RpcErrorObject | None = None
    jsonrpc: str = JSONRPC_VERSION

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RpcResponse":
        error = payload.get("error")
        error_obj = None
        if isinstance(error, dict):
            error_obj = RpcErrorObject(
                code=error.get("code"),
                message=str(error.get("message") or ""),
                data=error.get("data"),
            )
        elif error is not None:
            # bitcoind JSON-RPC 1.0 replies may carry a bare string
            error_obj = RpcErrorObject(code=None, message=str(error))
        return cls(
            id=payload.get("id"),
            result=payload.get("result"),
            error=error_obj,
            jsonrpc=str(payload.get("jsonrpc") or JSONRPC_VERSION),
        )


class JsonRpcTransport:
    """
    Send JSON-RPC requests to a single endpoint.

    Request ids come from an instance-owned counter starting at 1; each send
    (retries included) takes a fresh one. HTTP 429 is retried with bounded
    exponential backoff, every other failure raises TransportError.
    """

    def __init__(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        retry: RetryConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.retry = retry or RetryConfig()
        self._ids = itertools.count(1)
        self._http_client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "JsonRpcTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def _next_request(self, method: str, params: Params | None) -> RpcRequest:
        return RpcRequest(id=next(self._ids), method=method, params=params if params is not None else [])

    def _backoff_delay(self, attempt: int) -> float:
        delay = self.retry.backoff_seconds * (self.retry.backoff_multiplier ** (attempt - 1))
        return min(delay, self.retry.max_backoff_seconds)

    async def request(self, method: str, params: Params | None = None) -> RpcResponse:
        """Send one call and return the correlated response."""
        attempt = 0
        while True:
            attempt += 1
            req = self._next_request(method, params)
            resp = await self._send(req)
            if resp.status_code != 429:
                return self._parse(req, resp)
            if attempt >= self.retry.max_attempts:
                raise self._error(
                    f"rate limited after {attempt} attempt(s)",
                    req,
                    resp,
                    code="RETRY_EXHAUSTED",
                    retryable=True,
                )
            delay = self._backoff_delay(attempt)
            logger.warning(
                "JSON-RPC {} rate limited by {} (attempt {}/{}), retrying in {:.2f}s",
                method,
                self.url,
                attempt,
                self.retry.max_attempts,
                delay,
            )
            await asyncio.sleep(delay)

    async def _send(self, req: RpcRequest) -> httpx.Response:
        client = await self._get_http_client()
        headers = {**self.headers, "Content-Type": "application/json"}
        try:
            return await client.post(self.url, json=req.to_dict(), headers=headers, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            raise self._error(f"timeout after {self.timeout}s", req, None, code="TIMEOUT", retryable=True) from exc
        except httpx.RequestError as exc:
            raise self._error(f"network error: {exc}", req, None, code="NETWORK_ERROR", retryable=True) from exc

    def _parse(self, req: RpcRequest, resp: httpx.Response) -> RpcResponse:
        try:
            body = resp.json()
        except ValueError as exc:
            if resp.status_code >= 400:
                raise self._error("http error", req, resp, code="HTTP_ERROR") from exc
            raise self._error("response is not valid JSON", req, resp, code="BAD_RESPONSE") from exc

        if not isinstance(body, dict):
            raise self._error("response is not a JSON object", req, resp, code="BAD_RESPONSE")
        # A node error object rides on 4xx/5xx for some bitcoind versions; let the caller see it.
        if resp.status_code >= 400 and body.get("error") is None:
            raise self._error("http error", req, resp, code="HTTP_ERROR")
        # bool is an int subclass and 1.0 == 1; ids must match in type and value
        received = body.get("id")
        if type(received) is not int or received != req.id:
            raise self._error(
                f"id mismatch: sent {req.id}, received {received!r}",
                req,
                resp,
                code="ID_MISMATCH",
            )
        return RpcResponse.from_payload(body)

    def _error(
        self,
        reason: str,
        req: RpcRequest,
        resp: httpx.Response | None,
        *,
        code: str,
        retryable: bool = False,
    ) -> TransportError:
        status = resp.status_code if resp is not None else None
        raw_request = json.dumps(req.to_dict())
        raw_response = resp.text if resp is not None else None
        message = f"JSON-RPC method {req.method} error: {reason}, {self.url} sent {status}"
        return TransportError(
            sanitize_error_message(message),
            code=code,
            status_code=status,
            retryable=retryable,
            details={
                "method": req.method,
                "url": self.url,
                "request": raw_request,
                "response": sanitize_error_message(raw_response) if raw_response else None,
            },
        )


def transport_from_config(config: RpcConfig, http_client: httpx.AsyncClient | None = None) -> JsonRpcTransport:
    """Build a transport from the rpc section of the config."""
    return JsonRpcTransport(
        config.url,
        headers=config.build_headers(),
        timeout=config.request_timeout_seconds,
        retry=config.retry,
        http_client=http_client,
    )


def create_getblock_transport(api_key: str, network: str = "mainnet", **kwargs: Any) -> JsonRpcTransport:
    """Transport pointing to getblock.io."""
    if not api_key:
        raise ValueError("Missing GetBlock API key")
    if network not in GETBLOCK_NETWORKS:
        raise ValueError(f"Unsupported GetBlock network: {network}")
    headers = {**kwargs.pop("headers", {}), "x-api-key": api_key}
    return JsonRpcTransport(f"https://btc.getblock.io/{network}/", headers=headers, **kwargs)
