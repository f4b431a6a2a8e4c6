from __future__ import annotations
import asyncio, httpx, logging
from typing import Any
from ..domain.decoding import NULL_ADDRESS_TOPIC, TRANSFER_TOPIC
from ..domain.errors import TransportError
from ..domain.value_types import Address, RawLog
from ..ports.rpc import PollingLedgerClient

logger = logging.getLogger(__name__)

def _to_hex_block(n: int) -> str: return hex(int(n))

def _transfer_topics(mints_only: bool) -> list[str]:
    # topic1 = zero-padded `from`; the decoder still re-checks it
    return [TRANSFER_TOPIC, NULL_ADDRESS_TOPIC] if mints_only else [TRANSFER_TOPIC]

class HttpxLedgerClient(PollingLedgerClient):
    def __init__(
        self,
        rpc_url: str,
        address: Address,
        *,
        timeout_s: int = 20,
        max_conn: int = 8,
        mints_only: bool = True,
        max_attempts: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.address = Address(address.lower())
        self.mints_only = mints_only
        self.max_attempts = max_attempts
        self._id = 0
        self.client = httpx.AsyncClient(
            http2=transport is None,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
            transport=transport,
        )

    async def __aenter__(self) -> "HttpxLedgerClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._id += 1
        payload = {"jsonrpc":"2.0","id":self._id,"method":method,"params":params}
        # retry on 429 with simple backoff
        for attempt in range(self.max_attempts):
            try:
                r = await self.client.post(self.rpc_url, json=payload)
                if r.status_code == 429:
                    ra = r.headers.get("Retry-After")
                    delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                    logger.warning("%s rate limited (attempt %d/%d), sleeping %.1fs",
                                   method, attempt + 1, self.max_attempts, delay)
                    await asyncio.sleep(delay); continue
                r.raise_for_status()
                data = r.json()
            except httpx.HTTPError as e:
                raise TransportError(f"{method} failed: {type(e).__name__}: {e}") from e
            except ValueError as e:
                raise TransportError(f"{method} returned invalid JSON: {e}") from e
            if not isinstance(data, dict):
                raise TransportError(f"{method} returned non-object response: {data!r}")
            if "error" in data:
                err = data["error"]
                if isinstance(err, dict):
                    raise TransportError(f"{method} RPC error code={err.get('code')} message={err.get('message')}")
                raise TransportError(f"{method} RPC error: {err}")
            if "result" not in data:
                raise TransportError(f"{method} response has no result")
            return data["result"]
        raise TransportError(f"Retries exhausted for {method}")

    async def current_height(self) -> int:
        res = await self._call("eth_blockNumber", [])
        try:
            return int(res, 16)
        except (TypeError, ValueError) as e:
            raise TransportError(f"eth_blockNumber returned {res!r}") from e

    async def fetch_range(self, from_height: int, to_height: int) -> list[RawLog]:
        res = await self._call("eth_getLogs", [{
            "address": str(self.address),
            "fromBlock": _to_hex_block(from_height),
            "toBlock": _to_hex_block(to_height),
            "topics": _transfer_topics(self.mints_only),
        }])
        if not isinstance(res, list):
            raise TransportError(f"eth_getLogs returned {type(res).__name__}, expected list")
        logger.debug("eth_getLogs %d..%d -> %d log(s)", from_height, to_height, len(res))
        return res

    async def aclose(self) -> None:
        await self.client.aclose()
