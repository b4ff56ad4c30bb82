"""In-memory stand-ins for the chain source, push channel and price/metadata services."""
from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sol_activity_monitor.constants import COMPUTE_BUDGET_PROGRAM
from sol_activity_monitor.decode import DecodeError
from sol_activity_monitor.metadata_service import UNKNOWN_METADATA
from sol_activity_monitor.models import (
    AccountKey,
    Instruction,
    PriceQuote,
    RawTransaction,
    SignatureRecord,
    TokenBalance,
    TokenMetadata,
)
from sol_activity_monitor.push_channel import PushNotification
from sol_activity_monitor.rpc_client import UnavailableError

WATCHED = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
OTHER = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
STRANGER = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


def make_tx(signature: str = "sig1",
            keys: Sequence[str] = (WATCHED,),
            programs: Sequence[str] = (COMPUTE_BUDGET_PROGRAM,),
            pre: Sequence[int] = (),
            post: Sequence[int] = (),
            pre_tokens: Iterable[Tuple[str, str, int, int]] = (),
            post_tokens: Iterable[Tuple[str, str, int, int]] = (),
            block_time: Optional[int] = 1_700_000_000,
            slot: int = 1) -> RawTransaction:
    """Token rows are (owner, mint, raw_amount, decimals)."""
    def rows(entries: Iterable[Tuple[str, str, int, int]]) -> Tuple[TokenBalance, ...]:
        return tuple(
            TokenBalance(account_index=i + 1, mint=mint, owner=owner,
                         raw_amount=amount, decimals=decimals)
            for i, (owner, mint, amount, decimals) in enumerate(entries)
        )

    return RawTransaction(
        signature=signature,
        slot=slot,
        block_time=block_time,
        account_keys=tuple(AccountKey(k) for k in keys),
        instructions=tuple(Instruction(program_id=p) for p in programs),
        pre_balances=tuple(pre) or tuple(0 for _ in keys),
        post_balances=tuple(post) or tuple(0 for _ in keys),
        pre_token_balances=rows(pre_tokens),
        post_token_balances=rows(post_tokens),
    )


class FakePrices:
    def __init__(self, prices: Optional[Dict[str, float]] = None, fail: bool = False) -> None:
        self.prices = prices or {}
        self.fail = fail
        self.calls: List[str] = []

    async def get_price(self, mint: str) -> Optional[PriceQuote]:
        self.calls.append(mint)
        if self.fail:
            raise RuntimeError("price backend down")
        price = self.prices.get(mint)
        if price is None:
            return None
        return PriceQuote(price=price, market_cap=price * 1_000_000, source="test")


class FakeMetadata:
    def __init__(self, table: Optional[Dict[str, TokenMetadata]] = None) -> None:
        self.table = table or {}

    async def get_metadata(self, mint: str) -> TokenMetadata:
        return self.table.get(mint, UNKNOWN_METADATA)


class FakeChain:
    """Signature lists per address (newest first) and transactions by signature."""

    def __init__(self) -> None:
        self.signatures: Dict[str, List[SignatureRecord]] = {}
        self.transactions: Dict[str, RawTransaction] = {}
        self.fetched: List[str] = []
        self.polled: List[str] = []
        self.fail_polls = False
        # signatures whose envelope fails to decode
        self.malformed: Set[str] = set()

    def add(self, address: str, tx: RawTransaction) -> None:
        """Register *tx* as the newest signature of *address*."""
        self.transactions[tx.signature] = tx
        rec = SignatureRecord(signature=tx.signature, slot=tx.slot, block_time=tx.block_time)
        self.signatures.setdefault(address, []).insert(0, rec)

    async def get_recent_signatures(self, address: str, limit: int = 10) -> List[SignatureRecord]:
        self.polled.append(address)
        await asyncio.sleep(0)
        if self.fail_polls:
            raise UnavailableError("getSignaturesForAddress: HTTP 503")
        return list(self.signatures.get(address, []))[:limit]

    async def get_transaction(self, signature: str) -> Optional[RawTransaction]:
        self.fetched.append(signature)
        await asyncio.sleep(0)
        if signature in self.malformed:
            raise DecodeError(f"{signature}: meta.preBalances must be a list")
        return self.transactions.get(signature)


class RecordingClassifier:
    """Wraps a classifier and records the order signatures reach it."""

    def __init__(self, inner) -> None:
        self.inner = inner
        self.seen: List[str] = []

    async def classify(self, tx, address):
        self.seen.append(tx.signature)
        return await self.inner.classify(tx, address)


class FakePush:
    """Scripted push connection; holds the stream open until closed unless *hold_open* is off."""

    def __init__(self, notes: Sequence[PushNotification] = (), fail_connect: bool = False,
                 hold_open: bool = True) -> None:
        self.notes = list(notes)
        self.fail_connect = fail_connect
        self.hold_open = hold_open
        self.subscribed: List[Tuple[str, str]] = []
        self.unsubscribed: List[str] = []
        self.closed = False
        self._closed_event = asyncio.Event()

    @property
    def connected(self) -> bool:
        return not self.closed

    async def connect(self) -> None:
        await asyncio.sleep(0)
        if self.fail_connect:
            raise ConnectionError("ws refused")

    async def close(self) -> None:
        self.closed = True
        self._closed_event.set()

    async def subscribe_account(self, address: str) -> None:
        self.subscribed.append(("account", address))

    async def subscribe_logs(self, address: str) -> None:
        self.subscribed.append(("logs", address))

    async def unsubscribe(self, address: str) -> None:
        self.unsubscribed.append(address)

    def __aiter__(self):
        return self._stream()

    async def _stream(self):
        for note in self.notes:
            yield note
        if self.hold_open:
            await self._closed_event.wait()


async def wait_until(predicate, attempts: int = 500, delay: float = 0.0) -> bool:
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(delay)
    return predicate()
