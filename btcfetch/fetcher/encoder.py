"""
Header and hash encoding for circuit inputs.

Headers become their 80 raw byte values; each 256-bit hash becomes two
128-bit halves, byte-reversed and printed as base-10 integers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from btcfetch.fetcher.window import FetchWindow

HEADER_BYTES = 80
HASH_HEX_CHARS = 64
HALF_HEX_CHARS = HASH_HEX_CHARS // 2


@dataclass(frozen=True)
class OutputRecord:
    """Encoded fetch result; block_hashes[i] and block_headers[i] share a height."""
    prev_block_hash: tuple[str, str]
    block_hashes: list[tuple[str, str]] = field(default_factory=list)
    block_headers: list[list[int]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "prevBlockHash": list(self.prev_block_hash),
            "blockHashes": [list(pair) for pair in self.block_hashes],
            "blockHeaders": [list(header) for header in self.block_headers],
        }


def header_to_bytes(header_hex: str) -> list[int]:
    """Raw header bytes in the order the node serialized them."""
    raw = bytes.fromhex(header_hex)
    if len(raw) != HEADER_BYTES:
        raise ValueError(f"Block header must be {HEADER_BYTES} bytes, got {len(raw)}")
    return list(raw)


def bytes_to_header(values: Sequence[int]) -> str:
    return bytes(values).hex()


def switch_endianness(hex_str: str) -> str:
    """Reverse the order of byte pairs: 'a1b2c3' -> 'c3b2a1'."""
    if len(hex_str) % 2:
        raise ValueError(f"Odd-length hex string: {hex_str!r}")
    return "".join(hex_str[i : i + 2] for i in range(len(hex_str) - 2, -1, -2))


def _check_hash(block_hash: str) -> None:
    if len(block_hash) != HASH_HEX_CHARS:
        raise ValueError(f"Block hash must be {HASH_HEX_CHARS} hex chars, got {len(block_hash)}")


def encode_hash(block_hash: str) -> tuple[str, str]:
    _check_hash(block_hash)
    halves = (block_hash[:HALF_HEX_CHARS], block_hash[HALF_HEX_CHARS:])
    return tuple(str(int(switch_endianness(half), 16)) for half in halves)  # type: ignore[return-value]


def decode_hash(pair: Sequence[str]) -> str:
    """Inverse of encode_hash."""
    if len(pair) != 2:
        raise ValueError(f"Encoded hash needs two halves, got {len(pair)}")
    halves = []
    for value in pair:
        number = int(value)
        if number < 0 or number >= 1 << 128:
            raise ValueError(f"Half out of 128-bit range: {value}")
        halves.append(switch_endianness(f"{number:0{HALF_HEX_CHARS}x}"))
    return "".join(halves)


def encode(window: FetchWindow, hashes: Sequence[str], headers: Sequence[str]) -> OutputRecord:
    """Build the output record; the first hash of the window becomes prev_block_hash."""
    if len(hashes) != window.size or len(headers) != window.size:
        raise ValueError(
            f"Expected {window.size} hashes and headers for heights "
            f"{window.from_height}-{window.target_height}, got {len(hashes)} and {len(headers)}"
        )
    encoded = [encode_hash(h) for h in hashes]
    return OutputRecord(
        prev_block_hash=encoded[0],
        block_hashes=encoded[1:],
        block_headers=[header_to_bytes(h) for h in headers[1:]],
    )


def known_hashes_from_record(record: Mapping[str, Any], from_height: int) -> dict[int, str]:
    """Recover height -> hash from a previously written artifact that started at from_height."""
    known = {from_height: decode_hash(record["prevBlockHash"])}
    for offset, pair in enumerate(record.get("blockHashes") or [], start=1):
        known[from_height + offset] = decode_hash(pair)
    return known
