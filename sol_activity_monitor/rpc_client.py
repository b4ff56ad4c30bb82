"""Solana JSON-RPC client (HTTP).

Thin aiohttp wrapper over the three calls the monitor needs:
getSignaturesForAddress, getTransaction and getVersion.  Payloads are
normalised through :mod:`.decode` so callers only see typed records.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from .config import Config
from .decode import DecodeError, decode_signatures, decode_transaction
from .models import RawTransaction, SignatureRecord

log = logging.getLogger(__name__)

_HEADERS = {
    "Content-Type": "application/json",
    "User-Agent": "sol-activity-monitor",
}


class ChainDataError(Exception):
    """Base class for chain data source failures."""


class NotFoundError(ChainDataError):
    """The node has no record of the requested object."""


class UnavailableError(ChainDataError):
    """Transport failure, timeout, throttling or a JSON-RPC error reply."""


class SolanaRpcClient:
    """JSON-RPC over HTTP with a lazily created, shared ClientSession.

    Usage:
        rpc = SolanaRpcClient(cfg)
        sigs = await rpc.get_recent_signatures(address, limit=10)
        tx = await rpc.get_transaction(sigs[0].signature)
        await rpc.close()
    """

    def __init__(self, cfg: Config,
                 session: Optional[aiohttp.ClientSession] = None) -> None:
        self._cfg = cfg
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)
        self.calls = 0
        self.errors = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=_HEADERS)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _call(self, method: str, params: List[Any]) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        session = await self._get_session()
        self.calls += 1
        try:
            async with session.post(
                self._cfg.rpc_url, json=body,
                timeout=aiohttp.ClientTimeout(total=self._cfg.request_timeout_s),
            ) as resp:
                if resp.status == 429 or resp.status >= 500:
                    self.errors += 1
                    raise UnavailableError(f"{method}: HTTP {resp.status}")
                if resp.status != 200:
                    self.errors += 1
                    raise ChainDataError(f"{method}: HTTP {resp.status}")
                reply = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            self.errors += 1
            raise UnavailableError(f"{method}: {exc!r}") from exc

        if not isinstance(reply, dict):
            self.errors += 1
            raise UnavailableError(f"{method}: malformed reply")
        error = reply.get("error")
        if error:
            self.errors += 1
            message = error.get("message") if isinstance(error, dict) else error
            raise UnavailableError(f"{method}: {message}")
        return reply.get("result")

    # ── Public API ──

    async def get_recent_signatures(self, address: str,
                                    limit: int = 10) -> List[SignatureRecord]:
        """Newest-first signature records for *address*."""
        result = await self._call("getSignaturesForAddress", [
            address,
            {"limit": int(limit), "commitment": self._cfg.commitment},
        ])
        if result is None:
            return []
        try:
            return decode_signatures(result)
        except DecodeError as exc:
            raise UnavailableError(f"getSignaturesForAddress: {exc}") from exc

    async def get_transaction(self, signature: str) -> Optional[RawTransaction]:
        """Full transaction, or None when the node does not know it (yet).

        Raises DecodeError when the envelope is present but malformed.
        """
        result = await self._call("getTransaction", [
            signature,
            {
                "encoding": "jsonParsed",
                "commitment": self._cfg.commitment,
                "maxSupportedTransactionVersion": 0,
            },
        ])
        if result is None:
            return None
        return decode_transaction(result, signature)

    async def get_version(self) -> Dict[str, Any]:
        result = await self._call("getVersion", [])
        if not isinstance(result, dict):
            raise NotFoundError("getVersion: empty result")
        return result
