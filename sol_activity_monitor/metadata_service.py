"""Token metadata (name, symbol, decimals) per mint.

Built-in table first, then the remote token API when configured, then
the synthetic "Unknown Token" record.  ``get_metadata`` never fails.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any, Dict, Optional

import aiohttp

from .cache import TtlCache
from .config import Config
from .constants import DEFAULT_TOKEN_METADATA, UNKNOWN_TOKEN
from .models import TokenMetadata

log = logging.getLogger(__name__)

UNKNOWN_METADATA = TokenMetadata(*UNKNOWN_TOKEN)


class TokenMetadataService:

    def __init__(self, cfg: Config,
                 session: Optional[aiohttp.ClientSession] = None,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self._cfg = cfg
        self._session = session
        self._owns_session = session is None
        self._cache: TtlCache[TokenMetadata] = TtlCache(cfg.metadata_ttl_s, clock=clock)
        self._defaults = {
            mint: TokenMetadata(name, symbol, decimals)
            for mint, (name, symbol, decimals) in DEFAULT_TOKEN_METADATA.items()
        }

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _remote(self, mint: str) -> Optional[TokenMetadata]:
        """GET {token_api_url}/{mint} → {"name", "symbol", "decimals", ...}"""
        if not self._cfg.token_api_url:
            return None
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        url = f"{self._cfg.token_api_url.rstrip('/')}/{mint}"
        async with self._session.get(
            url, timeout=aiohttp.ClientTimeout(total=5),
        ) as resp:
            if resp.status != 200:
                return None
            data: Any = await resp.json(content_type=None)
        if not isinstance(data, dict) or data.get("decimals") is None:
            return None
        return TokenMetadata(
            name=str(data.get("name") or UNKNOWN_METADATA.name),
            symbol=str(data.get("symbol") or UNKNOWN_METADATA.symbol),
            decimals=int(data["decimals"]),
        )

    async def get_metadata(self, mint: str) -> TokenMetadata:
        known = self._defaults.get(mint)
        if known is not None:
            return known
        hit, cached = self._cache.lookup(mint)
        if hit and cached is not None:
            return cached
        try:
            meta = await self._remote(mint)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.debug("token metadata lookup failed for %s: %r", mint, exc)
            meta = None
        if meta is None:
            meta = UNKNOWN_METADATA
        self._cache.set(mint, meta)
        return meta

    def stats(self) -> Dict[str, Any]:
        return {**self._cache.stats(), "builtin": len(self._defaults)}
