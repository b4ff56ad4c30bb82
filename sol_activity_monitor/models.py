"""Data models for the activity monitor."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .formatting import scale_amount


# ──────────────────────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────────────────────

class ActivityType(str, Enum):
    """Semantic category of a transaction, seen from one watched address.

    DEFI is part of the vocabulary but is not produced by the instruction
    scan; DeFi program interactions fall through to UNKNOWN.
    """
    SWAP = "SWAP"
    TRANSFER = "TRANSFER"
    DEFI = "DEFI"
    UNKNOWN = "UNKNOWN"


class ConfirmationStatus(str, Enum):
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"


class ChannelState(str, Enum):
    """Push channel lifecycle.

    DISCONNECTED → CONNECTING → SUBSCRIBED, back to CONNECTING on close
    while retries remain, DEGRADED (polling only) once they run out.
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    DEGRADED = "degraded"


# ──────────────────────────────────────────────────────────────
# Registry / RPC records
# ──────────────────────────────────────────────────────────────

@dataclass(slots=True)
class WatchedAddress:
    address: str
    label: str = ""
    added_at: str = ""          # ISO-8601
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "label": self.label,
            "addedAt": self.added_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WatchedAddress":
        return cls(
            address=str(d.get("address") or ""),
            label=str(d.get("label") or ""),
            added_at=str(d.get("addedAt") or ""),
            updated_at=str(d.get("updatedAt") or d.get("addedAt") or ""),
        )


@dataclass(slots=True, frozen=True)
class SignatureRecord:
    """One row of getSignaturesForAddress."""
    signature: str
    slot: int
    block_time: Optional[int] = None                  # unix seconds
    confirmation_status: Optional[ConfirmationStatus] = None
    err: Optional[Any] = None                         # non-None for failed txs


# ──────────────────────────────────────────────────────────────
# Transaction envelope
# ──────────────────────────────────────────────────────────────

@dataclass(slots=True, frozen=True)
class AccountKey:
    """Canonical account key; RPC string/object variants are folded into this."""
    pubkey: str
    signer: bool = False
    writable: bool = False

    def __str__(self) -> str:
        return self.pubkey


@dataclass(slots=True, frozen=True)
class Instruction:
    program_id: str
    accounts: Tuple[str, ...] = ()
    data: str = ""


@dataclass(slots=True, frozen=True)
class TokenBalance:
    """Pre/post token-account balance entry."""
    account_index: int
    mint: str
    owner: Optional[str]
    raw_amount: int             # unscaled integer amount
    decimals: int

    @property
    def ui_amount(self) -> Decimal:
        return scale_amount(self.raw_amount, self.decimals)


@dataclass(slots=True, frozen=True)
class RawTransaction:
    signature: str
    slot: int
    block_time: Optional[int]
    account_keys: Tuple[AccountKey, ...]
    instructions: Tuple[Instruction, ...]
    pre_balances: Tuple[int, ...] = ()          # lamports, parallel to account_keys
    post_balances: Tuple[int, ...] = ()
    pre_token_balances: Tuple[TokenBalance, ...] = ()
    post_token_balances: Tuple[TokenBalance, ...] = ()
    fee: int = 0
    err: Optional[Any] = None

    def account_index(self, address: str) -> int:
        """Index of *address* in the account key list, -1 when absent."""
        for i, key in enumerate(self.account_keys):
            if key.pubkey == address:
                return i
        return -1

    def involves(self, address: str) -> bool:
        return self.account_index(address) >= 0


# ──────────────────────────────────────────────────────────────
# Collaborator payloads
# ──────────────────────────────────────────────────────────────

@dataclass(slots=True, frozen=True)
class PriceQuote:
    price: float
    volume_24h: float = 0.0
    market_cap: float = 0.0
    source: str = ""


@dataclass(slots=True, frozen=True)
class TokenMetadata:
    name: str
    symbol: str
    decimals: int


# ──────────────────────────────────────────────────────────────
# Activity event
# ──────────────────────────────────────────────────────────────

@dataclass(slots=True, frozen=True)
class TokenLeg:
    """One side of a swap or transfer, as a signed raw balance delta."""
    mint: str
    raw_delta: int
    decimals: int
    symbol: str = "UNKNOWN"
    usd_value: Optional[float] = None

    @property
    def ui_amount(self) -> Decimal:
        """abs(raw_delta) scaled by 10^decimals, exactly."""
        return scale_amount(abs(self.raw_delta), self.decimals)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mint": self.mint,
            "symbol": self.symbol,
            "raw_delta": self.raw_delta,
            "decimals": self.decimals,
            "amount": str(self.ui_amount),
            "usd_value": self.usd_value,
        }


@dataclass(slots=True, frozen=True)
class TokenInfo:
    """Auxiliary market info for the counter-token of an event."""
    symbol: str
    price: float
    market_cap: float = 0.0


@dataclass(slots=True, frozen=True)
class ActivityEvent:
    """Classifier output; created once per relevant (signature, address)."""
    signature: str
    block_time: Optional[int]
    address: str
    type: ActivityType
    platform: str
    description: str
    value_usd: Optional[float] = None
    direction: Optional[str] = None          # "Received" | "Sent" for transfers
    input_leg: Optional[TokenLeg] = None
    output_leg: Optional[TokenLeg] = None
    token_info: Optional[TokenInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "event": "ACTIVITY",
            "signature": self.signature,
            "block_time": self.block_time,
            "address": self.address,
            "type": self.type.value,
            "platform": self.platform,
            "description": self.description,
            "value_usd": None if self.value_usd is None else round(self.value_usd, 6),
        }
        if self.direction is not None:
            d["direction"] = self.direction
        if self.input_leg is not None:
            d["input"] = self.input_leg.to_dict()
        if self.output_leg is not None:
            d["output"] = self.output_leg.to_dict()
        if self.token_info is not None:
            d["token_info"] = {
                "symbol": self.token_info.symbol,
                "price": self.token_info.price,
                "market_cap": self.token_info.market_cap,
            }
        return d
