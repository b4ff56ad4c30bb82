"""RPC payload → typed model normalisation.

Everything the classifier sees passes through here, so the duck-typed
shapes the RPC returns (account keys as plain strings under ``json``
encoding, as ``{"pubkey", "signer", "writable"}`` objects under
``jsonParsed``; instructions addressed by ``programIdIndex`` or by
``programId``) are folded into one canonical form.

getTransaction (``jsonParsed``, abridged):
{
  "slot": 250000000,
  "blockTime": 1700000000,
  "meta": {
    "err": null, "fee": 5000,
    "preBalances": [...], "postBalances": [...],
    "preTokenBalances": [{"accountIndex": 3, "mint": "...", "owner": "...",
                          "uiTokenAmount": {"amount": "1500000000", "decimals": 9}}],
    "postTokenBalances": [...],
    "loadedAddresses": {"writable": [...], "readonly": [...]}
  },
  "transaction": {
    "signatures": ["..."],
    "message": {"accountKeys": [...], "instructions": [...]}
  }
}
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .models import (
    AccountKey,
    ConfirmationStatus,
    Instruction,
    RawTransaction,
    SignatureRecord,
    TokenBalance,
)

log = logging.getLogger(__name__)


class DecodeError(ValueError):
    """Payload does not have the shape of a transaction envelope."""


def _as_int(raw: Any, default: int = 0) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except ValueError:
        return default


def _opt_int(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def account_key(raw: Any) -> AccountKey:
    """Fold a string or ``{"pubkey": ...}`` object into an AccountKey."""
    if isinstance(raw, AccountKey):
        return raw
    if isinstance(raw, str):
        return AccountKey(pubkey=raw)
    if isinstance(raw, dict) and raw.get("pubkey"):
        return AccountKey(
            pubkey=str(raw["pubkey"]),
            signer=bool(raw.get("signer", False)),
            writable=bool(raw.get("writable", False)),
        )
    raise DecodeError(f"unrecognised account key: {raw!r}")


def _account_keys(message: Dict[str, Any], meta: Dict[str, Any]) -> List[AccountKey]:
    raw_keys = message.get("accountKeys")
    if not isinstance(raw_keys, list):
        raise DecodeError("message.accountKeys missing")
    keys = [account_key(k) for k in raw_keys]

    # json encoding of v0 transactions: lookup-table accounts live in meta
    # and follow the static keys (writable first, then readonly).
    has_objects = any(isinstance(k, dict) for k in raw_keys)
    loaded = meta.get("loadedAddresses")
    if not has_objects and isinstance(loaded, dict):
        for pubkey in loaded.get("writable") or []:
            keys.append(AccountKey(pubkey=str(pubkey), writable=True))
        for pubkey in loaded.get("readonly") or []:
            keys.append(AccountKey(pubkey=str(pubkey)))
    return keys


def _instruction(raw: Dict[str, Any], keys: List[AccountKey]) -> Instruction:
    program_id = raw.get("programId")
    if not program_id:
        idx = _opt_int(raw.get("programIdIndex"))
        if idx is None or not 0 <= idx < len(keys):
            raise DecodeError(f"instruction without resolvable program: {raw!r}")
        program_id = keys[idx].pubkey

    accounts: List[str] = []
    for a in raw.get("accounts") or []:
        if isinstance(a, int):
            if 0 <= a < len(keys):
                accounts.append(keys[a].pubkey)
        else:
            accounts.append(str(a))

    data = raw.get("data")
    return Instruction(
        program_id=str(program_id),
        accounts=tuple(accounts),
        data=data if isinstance(data, str) else "",
    )


def _token_balances(rows: Any) -> List[TokenBalance]:
    out: List[TokenBalance] = []
    if not isinstance(rows, list):
        return out
    for row in rows:
        if not isinstance(row, dict) or not row.get("mint"):
            continue
        ui = row.get("uiTokenAmount") or {}
        out.append(TokenBalance(
            account_index=_as_int(row.get("accountIndex"), -1),
            mint=str(row["mint"]),
            owner=str(row["owner"]) if row.get("owner") else None,
            raw_amount=_as_int(ui.get("amount")),
            decimals=_as_int(ui.get("decimals")),
        ))
    return out


def decode_transaction(payload: Any, signature: str = "") -> RawTransaction:
    """Build a RawTransaction from a getTransaction result; DecodeError on bad shape."""
    if not isinstance(payload, dict):
        raise DecodeError("transaction payload is not an object")
    tx = payload.get("transaction")
    meta = payload.get("meta")
    if not isinstance(tx, dict) or not isinstance(meta, dict):
        raise DecodeError("transaction or meta block missing")
    message = tx.get("message")
    if not isinstance(message, dict):
        raise DecodeError("transaction.message missing")

    keys = _account_keys(message, meta)
    raw_ixs = message.get("instructions") or []
    instructions = [_instruction(ix, keys) for ix in raw_ixs if isinstance(ix, dict)]

    signatures = tx.get("signatures") or []
    sig = signature or (str(signatures[0]) if signatures else "")

    return RawTransaction(
        signature=sig,
        slot=_as_int(payload.get("slot")),
        block_time=_opt_int(payload.get("blockTime")),
        account_keys=tuple(keys),
        instructions=tuple(instructions),
        pre_balances=tuple(_as_int(b) for b in meta.get("preBalances") or []),
        post_balances=tuple(_as_int(b) for b in meta.get("postBalances") or []),
        pre_token_balances=tuple(_token_balances(meta.get("preTokenBalances"))),
        post_token_balances=tuple(_token_balances(meta.get("postTokenBalances"))),
        fee=_as_int(meta.get("fee")),
        err=meta.get("err"),
    )


def decode_signatures(payload: Any) -> List[SignatureRecord]:
    """getSignaturesForAddress result → records, order preserved (newest first)."""
    out: List[SignatureRecord] = []
    if not isinstance(payload, list):
        raise DecodeError("signature list payload is not an array")
    for row in payload:
        if not isinstance(row, dict) or not row.get("signature"):
            continue
        status_raw = row.get("confirmationStatus")
        try:
            status = ConfirmationStatus(status_raw) if status_raw else None
        except ValueError:
            log.debug("unknown confirmation status %r", status_raw)
            status = None
        out.append(SignatureRecord(
            signature=str(row["signature"]),
            slot=_as_int(row.get("slot")),
            block_time=_opt_int(row.get("blockTime")),
            confirmation_status=status,
            err=row.get("err"),
        ))
    return out
