from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from .value_types import Address, TokenId

EventKey = tuple[str, str, TokenId]   # (block_hash, tx_hash, token_id)

@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int
    def span(self) -> int: return self.end - self.start + 1

@dataclass(slots=True, frozen=True)
class TransferRecord:
    from_address: Address
    to_address: Address
    token_id: TokenId
    block_number: int
    block_hash: str          # lowercased hex with 0x
    tx_hash: str             # lowercased hex with 0x
    log_index: int

@dataclass(slots=True, frozen=True)
class MintEvent:
    from_address: Address    # always the null address
    to_address: Address
    token_id: TokenId
    block_number: int
    block_hash: str
    tx_hash: str
    log_index: int

    @property
    def key(self) -> EventKey:
        return (self.block_hash, self.tx_hash, self.token_id)

@dataclass(slots=True, frozen=True)
class Cursor:
    last_confirmed_height: int

class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
