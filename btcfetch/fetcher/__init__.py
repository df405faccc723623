"""Block range fetching and circuit-input encoding."""

from btcfetch.fetcher.encoder import OutputRecord, decode_hash, encode, encode_hash
from btcfetch.fetcher.orchestrator import CancelToken, FetchOrchestrator, ItemOutcome
from btcfetch.fetcher.pipeline import load_record, run_fetch, write_record
from btcfetch.fetcher.window import FetchWindow, find_common_ancestor, resolve_window

__all__ = [
    "CancelToken",
    "FetchOrchestrator",
    "FetchWindow",
    "ItemOutcome",
    "OutputRecord",
    "decode_hash",
    "encode",
    "encode_hash",
    "find_common_ancestor",
    "load_record",
    "resolve_window",
    "run_fetch",
    "write_record",
]
