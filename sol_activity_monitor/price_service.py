"""USD prices for SPL mints.

Jupiter first, CoinGecko's contract-address endpoint as fallback.
Quotes are cached per (source, mint) for ``price_ttl_s``.  Every
failure path ends in ``None``; callers render that as "Unknown".

Jupiter price v2:
    GET {price_api_url}?ids=<mint>
    {"data": {"<mint>": {"id": "<mint>", "type": "derivedPrice", "price": "171.23"}}}

CoinGecko:
    GET {coingecko}/simple/token_price/solana?contract_addresses=<mint>
        &vs_currencies=usd&include_market_cap=true&include_24hr_vol=true
    {"<mint>": {"usd": 171.2, "usd_market_cap": 8.1e10, "usd_24h_vol": 3.2e9}}
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
from .models import PriceQuote

log = logging.getLogger(__name__)

JUPITER = "Jupiter"
COINGECKO = "CoinGecko"


def _to_float(raw: Any) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


class PriceService:
    """Price collaborator; ``get_price`` never raises."""

    def __init__(self, cfg: Config,
                 session: Optional[aiohttp.ClientSession] = None,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self._cfg = cfg
        self._session = session
        self._owns_session = session is None
        self._cache: TtlCache[PriceQuote] = TtlCache(cfg.price_ttl_s, clock=clock)
        self.lookups = 0
        self.failures = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get_json(self, url: str, params: Dict[str, str],
                        headers: Optional[Dict[str, str]] = None) -> Any:
        session = await self._get_session()
        async with session.get(
            url, params=params, headers=headers,
            timeout=aiohttp.ClientTimeout(total=5),
        ) as resp:
            if resp.status != 200:
                return None
            return await resp.json(content_type=None)

    # ── Sources ──

    async def _jupiter(self, mint: str) -> Optional[PriceQuote]:
        data = await self._get_json(self._cfg.price_api_url, {"ids": mint})
        if not isinstance(data, dict):
            return None
        row = (data.get("data") or {}).get(mint)
        if not isinstance(row, dict) or row.get("price") is None:
            return None
        price = _to_float(row["price"])
        if price <= 0:
            return None
        return PriceQuote(
            price=price,
            volume_24h=_to_float(row.get("volume24h")),
            market_cap=_to_float(row.get("marketCap")),
            source=JUPITER,
        )

    async def _coingecko(self, mint: str) -> Optional[PriceQuote]:
        headers = None
        if self._cfg.coingecko_api_key:
            headers = {"x-cg-demo-api-key": self._cfg.coingecko_api_key}
        data = await self._get_json(
            f"{self._cfg.coingecko_api_url}/simple/token_price/solana",
            {
                "contract_addresses": mint,
                "vs_currencies": "usd",
                "include_market_cap": "true",
                "include_24hr_vol": "true",
            },
            headers,
        )
        if not isinstance(data, dict):
            return None
        row = data.get(mint) or data.get(mint.lower())
        if not isinstance(row, dict) or row.get("usd") is None:
            return None
        price = _to_float(row["usd"])
        if price <= 0:
            return None
        return PriceQuote(
            price=price,
            volume_24h=_to_float(row.get("usd_24h_vol")),
            market_cap=_to_float(row.get("usd_market_cap")),
            source=COINGECKO,
        )

    async def _from_source(self, source: str, mint: str) -> Optional[PriceQuote]:
        key = (source, mint)
        hit, cached = self._cache.lookup(key)
        if hit:
            return cached
        fetch = self._jupiter if source == JUPITER else self._coingecko
        try:
            quote = await fetch(mint)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failures += 1
            log.debug("%s price lookup failed for %s: %r", source, mint, exc)
            return None
        if quote is not None:
            self._cache.set(key, quote)
        return quote

    # ── Public API ──

    async def get_price(self, mint: str) -> Optional[PriceQuote]:
        self.lookups += 1
        quote = await self._from_source(JUPITER, mint)
        if quote is None:
            quote = await self._from_source(COINGECKO, mint)
        return quote

    def cache_stats(self) -> Dict[str, Any]:
        return {**self._cache.stats(), "lookups": self.lookups, "failures": self.failures}
