"""Ethereum JSON-RPC implementation of the ledger reader."""

import itertools
import logging
from typing import Any, Optional

import httpx

from pharmatrace.chain.abi import ContractEventDecoder
from pharmatrace.chain.reader import DecodedEvent, in_ledger_order
from pharmatrace.common.exceptions import (
    AbiDecodeError,
    ChainReadError,
    TransactionNotFoundError,
)

logger = logging.getLogger(__name__)


def _to_int(value: Optional[str]) -> int:
    if value is None:
        return 0
    return int(value, 16) if isinstance(value, str) else int(value)


class JsonRpcChainReader:
    """Reads blocks and contract logs from an Ethereum-compatible node."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        decoder: ContractEventDecoder,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.rpc_url = rpc_url
        self.contract_address = contract_address.lower()
        self.decoder = decoder
        self.timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None
        self._ids = itertools.count(1)

    def _get_http_client(self) -> httpx.AsyncClient:
        """Lazy-init httpx.AsyncClient."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _call(self, method: str, params: list[Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._get_http_client().post(self.rpc_url, json=body)
        except httpx.HTTPError as e:
            raise ChainReadError(f"{method} transport error: {e}") from e

        if resp.status_code != 200:
            raise ChainReadError(f"{method} failed: HTTP {resp.status_code}")
        payload = resp.json()
        if payload.get("error"):
            err = payload["error"]
            raise ChainReadError(f"{method} failed: {err.get('message', err)}")
        return payload.get("result")

    # ── ChainReader ──

    async def chain_id(self) -> int:
        return _to_int(await self._call("eth_chainId", []))

    async def current_block_height(self) -> int:
        return _to_int(await self._call("eth_blockNumber", []))

    async def events_in_range(self, from_block: int, to_block: int) -> list[DecodedEvent]:
        logs = await self._call("eth_getLogs", [{
            "address": self.contract_address,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }])
        return await self._decode_logs(logs or [])

    async def events_for_transaction(self, tx_hash: str) -> list[DecodedEvent]:
        receipt = await self._call("eth_getTransactionReceipt", [tx_hash])
        if not receipt:
            raise TransactionNotFoundError(
                f"Transaction {tx_hash} not found on chain (pending or invalid hash)"
            )
        logs = [
            log for log in receipt.get("logs", [])
            if (log.get("address") or "").lower() == self.contract_address
        ]
        return await self._decode_logs(logs)

    # ── Internal helpers ──

    async def _block_timestamp(self, block_number: int, cache: dict[int, int]) -> Optional[int]:
        if block_number not in cache:
            block = await self._call("eth_getBlockByNumber", [hex(block_number), False])
            if not block:
                return None
            cache[block_number] = _to_int(block.get("timestamp"))
        return cache[block_number]

    async def _decode_logs(self, logs: list[dict[str, Any]]) -> list[DecodedEvent]:
        events = []
        # Scoped to one batch of logs.
        timestamps: dict[int, int] = {}
        for log in logs:
            if log.get("removed"):
                continue
            try:
                decoded = self.decoder.decode(log)
            except AbiDecodeError:
                logger.exception(
                    "Undecodable log in tx %s (index %s)",
                    log.get("transactionHash"), log.get("logIndex"),
                )
                raise
            if decoded is None:
                logger.warning(
                    "Skipping log with unknown topic %s in tx %s (ABI mismatch?)",
                    (log.get("topics") or ["-"])[0], log.get("transactionHash"),
                )
                continue

            name, args = decoded
            block_number = _to_int(log.get("blockNumber"))
            events.append(DecodedEvent(
                event_name=name,
                block_number=block_number,
                transaction_hash=log.get("transactionHash", ""),
                log_index=_to_int(log.get("logIndex")),
                args=args,
                block_timestamp=await self._block_timestamp(block_number, timestamps),
            ))
        return in_ledger_order(events)
