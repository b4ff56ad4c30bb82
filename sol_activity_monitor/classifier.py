"""Transaction classifier: (transaction, watched address) → ActivityEvent | None.

Two stages:

1. ``scan()``: pure and synchronous.  Relevance, instruction-driven type,
   then the balance-delta extraction that may veto the type guess
   (ambiguous swap legs, zero-delta transfers).  Deltas are exact
   integer subtraction on raw amounts.
2. ``TransactionClassifier.classify()``: awaits the metadata and price
   collaborators to attach symbols, decimals and USD values.  Nothing in
   this stage can turn a relevant transaction into ``None``; a failed
   lookup only leaves ``value_usd`` unset.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Protocol, Tuple

from .constants import (
    DEX_PROGRAMS,
    KNOWN_PROGRAM_LABELS,
    LAMPORTS_DECIMALS,
    SOL_MINT,
    TRANSFER_PROGRAMS,
    UNKNOWN_DEX,
)
from .formatting import format_token_amount
from .models import (
    ActivityEvent,
    ActivityType,
    PriceQuote,
    RawTransaction,
    TokenBalance,
    TokenInfo,
    TokenLeg,
    TokenMetadata,
)

log = logging.getLogger(__name__)

SOLANA_TRANSFER = "Solana Transfer"
TOKEN_TRANSFER = "Token Transfer"
UNKNOWN_PLATFORM = "Unknown"
RECEIVED = "Received"
SENT = "Sent"


class PriceSource(Protocol):
    async def get_price(self, mint: str) -> Optional[PriceQuote]: ...


class MetadataSource(Protocol):
    async def get_metadata(self, mint: str) -> TokenMetadata: ...


@dataclass(slots=True, frozen=True)
class Scan:
    """Structural classification before enrichment."""
    type: ActivityType
    platform: str
    input_leg: Optional[TokenLeg] = None
    output_leg: Optional[TokenLeg] = None
    direction: Optional[str] = None


# ──────────────────────────────────────────────────────────────
# Stage 1: structure
# ──────────────────────────────────────────────────────────────

def activity_type(tx: RawTransaction) -> Tuple[ActivityType, str]:
    """First instruction that matches decides: DEX → SWAP, transfer program → TRANSFER."""
    for ix in tx.instructions:
        platform = DEX_PROGRAMS.get(ix.program_id)
        if platform is not None:
            return ActivityType.SWAP, platform
        if ix.program_id in TRANSFER_PROGRAMS:
            return ActivityType.TRANSFER, ""
    return ActivityType.UNKNOWN, ""


def native_delta(tx: RawTransaction, address: str) -> int:
    idx = tx.account_index(address)
    if idx < 0:
        return 0
    pre = tx.pre_balances[idx] if idx < len(tx.pre_balances) else 0
    post = tx.post_balances[idx] if idx < len(tx.post_balances) else 0
    return int(post) - int(pre)


def _owned(rows: Tuple[TokenBalance, ...], address: str) -> List[TokenBalance]:
    return [b for b in rows if b.owner == address]


def token_deltas(tx: RawTransaction, address: str) -> Dict[str, int]:
    """Nonzero per-mint raw deltas over the token accounts *address* owns.

    Insertion order follows first appearance (pre balances, then post).
    """
    totals: Dict[str, int] = {}
    for b in _owned(tx.pre_token_balances, address):
        totals[b.mint] = totals.get(b.mint, 0) - b.raw_amount
    for b in _owned(tx.post_token_balances, address):
        totals[b.mint] = totals.get(b.mint, 0) + b.raw_amount
    return {mint: d for mint, d in totals.items() if d != 0}


def token_decimals(tx: RawTransaction, mint: str) -> Optional[int]:
    """Decimals reported by the transaction's own balance entries for *mint*."""
    for b in tx.post_token_balances + tx.pre_token_balances:
        if b.mint == mint:
            return b.decimals
    return None


def _leg(tx: RawTransaction, mint: str, delta: int) -> TokenLeg:
    decimals = token_decimals(tx, mint)
    return TokenLeg(mint=mint, raw_delta=delta,
                    decimals=LAMPORTS_DECIMALS if decimals is None else decimals)


def _unknown_platform(tx: RawTransaction) -> str:
    for ix in tx.instructions:
        label = KNOWN_PROGRAM_LABELS.get(ix.program_id)
        if label is not None:
            return label
    return UNKNOWN_PLATFORM


def scan(tx: RawTransaction, address: str) -> Optional[Scan]:
    if not tx.involves(address):
        return None

    kind, platform = activity_type(tx)

    if kind is ActivityType.SWAP:
        deltas = token_deltas(tx, address)
        if len(deltas) < 2:
            log.debug("%s: dex instruction but %d token leg(s), not a swap",
                      tx.signature, len(deltas))
            return None
        negative = [(m, d) for m, d in deltas.items() if d < 0]
        positive = [(m, d) for m, d in deltas.items() if d > 0]
        if len(negative) != 1 or len(positive) != 1:
            log.debug("%s: ambiguous swap legs (%d in, %d out)",
                      tx.signature, len(negative), len(positive))
            return None
        return Scan(
            type=kind,
            platform=platform or UNKNOWN_DEX,
            input_leg=_leg(tx, *negative[0]),
            output_leg=_leg(tx, *positive[0]),
        )

    if kind is ActivityType.TRANSFER:
        lamports = native_delta(tx, address)
        if lamports != 0:
            leg = TokenLeg(mint=SOL_MINT, raw_delta=lamports,
                           decimals=LAMPORTS_DECIMALS, symbol="SOL")
            return Scan(type=kind, platform=SOLANA_TRANSFER, input_leg=leg,
                        direction=RECEIVED if lamports > 0 else SENT)
        deltas = token_deltas(tx, address)
        if not deltas:
            log.debug("%s: transfer program but no balance change for %s",
                      tx.signature, address)
            return None
        mint, delta = next(iter(deltas.items()))
        return Scan(type=kind, platform=TOKEN_TRANSFER, input_leg=_leg(tx, mint, delta),
                    direction=RECEIVED if delta > 0 else SENT)

    return Scan(type=ActivityType.UNKNOWN, platform=_unknown_platform(tx))


# ──────────────────────────────────────────────────────────────
# Stage 2: enrichment
# ──────────────────────────────────────────────────────────────

class TransactionClassifier:
    """Structural scan plus best-effort symbol/price enrichment."""

    def __init__(self, prices: PriceSource, metadata: MetadataSource) -> None:
        self._prices = prices
        self._metadata = metadata

    async def _metadata_for(self, mint: str) -> Optional[TokenMetadata]:
        try:
            return await self._metadata.get_metadata(mint)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.debug("metadata lookup raised for %s", mint, exc_info=True)
            return None

    async def _price_for(self, mint: str) -> Optional[PriceQuote]:
        try:
            return await self._prices.get_price(mint)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.debug("price lookup raised for %s", mint, exc_info=True)
            return None

    async def _enrich(self, tx: RawTransaction,
                      leg: TokenLeg) -> Tuple[TokenLeg, Optional[PriceQuote]]:
        meta = await self._metadata_for(leg.mint)
        symbol = leg.symbol
        decimals = leg.decimals
        if meta is not None:
            if symbol == "UNKNOWN":
                symbol = meta.symbol
            if token_decimals(tx, leg.mint) is None and leg.mint != SOL_MINT:
                decimals = meta.decimals
        quote = await self._price_for(leg.mint)
        usd = None
        if quote is not None:
            usd = float(replace(leg, decimals=decimals).ui_amount) * quote.price
        return replace(leg, symbol=symbol, decimals=decimals, usd_value=usd), quote

    async def classify(self, tx: RawTransaction, address: str) -> Optional[ActivityEvent]:
        try:
            found = scan(tx, address)
        except (TypeError, ValueError, IndexError, AttributeError):
            log.debug("%s: unclassifiable transaction", tx.signature, exc_info=True)
            return None
        if found is None:
            return None

        if found.type is ActivityType.SWAP:
            assert found.input_leg is not None and found.output_leg is not None
            leg_in, _ = await self._enrich(tx, found.input_leg)
            leg_out, quote_out = await self._enrich(tx, found.output_leg)
            token_info = None
            if quote_out is not None:
                token_info = TokenInfo(symbol=leg_out.symbol, price=quote_out.price,
                                       market_cap=quote_out.market_cap)
            description = (
                f"{format_token_amount(abs(leg_in.raw_delta), leg_in.decimals)} {leg_in.symbol}"
                f" → "
                f"{format_token_amount(leg_out.raw_delta, leg_out.decimals)} {leg_out.symbol}"
            )
            return ActivityEvent(
                signature=tx.signature, block_time=tx.block_time, address=address,
                type=found.type, platform=found.platform, description=description,
                value_usd=leg_in.usd_value, input_leg=leg_in, output_leg=leg_out,
                token_info=token_info,
            )

        if found.type is ActivityType.TRANSFER:
            assert found.input_leg is not None
            leg, quote = await self._enrich(tx, found.input_leg)
            token_info = None
            if quote is not None and leg.mint != SOL_MINT:
                token_info = TokenInfo(symbol=leg.symbol, price=quote.price,
                                       market_cap=quote.market_cap)
            sign = "+" if leg.raw_delta > 0 else "-"
            description = f"{sign}{format_token_amount(abs(leg.raw_delta), leg.decimals)} {leg.symbol}"
            return ActivityEvent(
                signature=tx.signature, block_time=tx.block_time, address=address,
                type=found.type, platform=found.platform, description=description,
                value_usd=leg.usd_value, direction=found.direction, input_leg=leg,
                token_info=token_info,
            )

        return ActivityEvent(
            signature=tx.signature, block_time=tx.block_time, address=address,
            type=found.type, platform=found.platform,
            description="Transaction Detected",
        )
