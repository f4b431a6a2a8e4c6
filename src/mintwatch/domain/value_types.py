from __future__ import annotations
from typing import Any, Mapping, NewType

Address = NewType("Address", str)   # 0x-prefixed, lowercase
Topic   = NewType("Topic", str)     # 66-char 0x-hash
TokenId = int                       # arbitrary precision
RawLog  = Mapping[str, Any]         # eth_getLogs / eth_subscription "result" entry, untouched

NULL_ADDRESS = Address("0x" + "00" * 20)
