from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from eth_utils import encode_hex, is_hex_address, keccak, remove_0x_prefix

from .errors import DecodeError
from .models import MintEvent, TransferRecord
from .value_types import NULL_ADDRESS, Address, RawLog, Topic


# Transfer(address indexed from, address indexed to, uint256 indexed tokenId)
TRANSFER_SIGNATURE = "Transfer(address,address,uint256)"
TRANSFER_TOPIC     = Topic(encode_hex(keccak(text=TRANSFER_SIGNATURE)))
NULL_ADDRESS_TOPIC = Topic("0x" + "00" * 32)

_HEX_WORD = re.compile(r"[0-9a-f]{64}")

# ---------- field helpers ------------------------------------------------------

def _word_hex(v: Any, field: str) -> str:
    """32-byte word as lowercase hex, no 0x."""
    if not isinstance(v, str):
        raise DecodeError(f"{field}: expected hex string, got {type(v).__name__}")
    h = remove_0x_prefix(v.lower())
    if len(h) != 64:
        raise DecodeError(f"{field}: expected 32-byte word, got {len(h) // 2} bytes")
    if not _HEX_WORD.fullmatch(h):
        raise DecodeError(f"{field}: not hex ({v!r})")
    return h

def _addr_from_topic(v: Any, field: str) -> Address:
    h = _word_hex(v, field)
    if h[:24] != "0" * 24:
        raise DecodeError(f"{field}: high 12 bytes of an address topic must be zero")
    addr = "0x" + h[24:]
    if not is_hex_address(addr):
        raise DecodeError(f"{field}: malformed address {addr!r}")
    return Address(addr)

def _hash(raw: RawLog, key: str) -> str:
    return "0x" + _word_hex(raw.get(key), key)

def _quantity(raw: RawLog, key: str) -> int:
    """JSON-RPC quantity: 0x-hex string (ints tolerated for already-normalized logs)."""
    v = raw.get(key)
    if isinstance(v, int) and not isinstance(v, bool) and v >= 0:
        return v
    if not isinstance(v, str) or not v.lower().startswith("0x"):
        raise DecodeError(f"{key}: expected 0x quantity, got {v!r}")
    try:
        return int(v, 16)
    except ValueError as e:
        raise DecodeError(f"{key}: not hex ({v!r})") from e

# ---------------------------- public API --------------------------------------

def decode_transfer(raw: RawLog) -> TransferRecord:
    """Decode one raw JSON-RPC log into a TransferRecord.

    Only the ERC-721 shape is accepted: four topics (signature, from, to,
    tokenId) and no data words. Anything else raises DecodeError.
    """
    if not isinstance(raw, Mapping):
        raise DecodeError(f"log entry is {type(raw).__name__}, expected an object")
    topics = raw.get("topics")
    if not isinstance(topics, (list, tuple)) or not topics:
        raise DecodeError("log has no topics")
    if len(topics) != 4:
        raise DecodeError(f"expected 4 topics for an ERC-721 Transfer, got {len(topics)}")
    if "0x" + _word_hex(topics[0], "topic0") != TRANSFER_TOPIC:
        raise DecodeError(f"topic0 {topics[0]!r} is not the Transfer signature")

    return TransferRecord(
        from_address = _addr_from_topic(topics[1], "from"),
        to_address   = _addr_from_topic(topics[2], "to"),
        token_id     = int(_word_hex(topics[3], "tokenId"), 16),
        block_number = _quantity(raw, "blockNumber"),
        block_hash   = _hash(raw, "blockHash"),
        tx_hash      = _hash(raw, "transactionHash"),
        log_index    = _quantity(raw, "logIndex"),
    )

def is_mint(record: TransferRecord) -> bool:
    return record.from_address.lower() == NULL_ADDRESS

def to_mint_event(record: TransferRecord) -> MintEvent:
    if not is_mint(record):
        raise DecodeError(f"transfer of token {record.token_id} from {record.from_address} is not a mint")
    return MintEvent(
        from_address = record.from_address,
        to_address   = record.to_address,
        token_id     = record.token_id,
        block_number = record.block_number,
        block_hash   = record.block_hash,
        tx_hash      = record.tx_hash,
        log_index    = record.log_index,
    )

def is_removed(raw: RawLog) -> bool:
    """True for logs the node retracted after a reorg."""
    return bool(raw.get("removed", False))
