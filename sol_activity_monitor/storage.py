"""JSON-file persistence for watched addresses and processed signatures.

Two files under ``data_dir``:
    monitored-addresses.json      {"addresses": [...], "lastUpdated": iso}
    processed-transactions.json   {"transactions": [...], "lastUpdated": iso}

Both are created on first use and rewritten whole on every change
(temp file + ``os.replace``, so a crash never leaves half a document).
"""
from __future__ import annotations

import datetime as dt
import json
import logging
import os
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from .formatting import utc_now_iso
from .models import WatchedAddress

log = logging.getLogger(__name__)


def _read_json(path: str, default: Dict[str, Any]) -> Dict[str, Any]:
    if not os.path.exists(path):
        _write_json(path, default)
        log.debug("created %s", path)
        return dict(default)
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object")
    return data


def _write_json(path: str, data: Dict[str, Any]) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    os.replace(tmp, path)


def _parse_iso(value: str) -> Optional[dt.datetime]:
    try:
        ts = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt.timezone.utc)
    return ts


# ──────────────────────────────────────────────────────────────
# Watched addresses
# ──────────────────────────────────────────────────────────────

class AddressStore:
    """Watched-address list, unique by address, in insertion order."""

    def __init__(self, path: str) -> None:
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def load(self) -> List[WatchedAddress]:
        data = _read_json(self._path, {"addresses": [], "lastUpdated": utc_now_iso()})
        out: List[WatchedAddress] = []
        seen: set[str] = set()
        for row in data.get("addresses") or []:
            if not isinstance(row, dict):
                continue
            wa = WatchedAddress.from_dict(row)
            if wa.address and wa.address not in seen:
                seen.add(wa.address)
                out.append(wa)
        return out

    def _save(self, addresses: List[WatchedAddress]) -> None:
        _write_json(self._path, {
            "addresses": [a.to_dict() for a in addresses],
            "lastUpdated": utc_now_iso(),
        })

    def add(self, address: str, label: str = "") -> WatchedAddress:
        """Upsert; an existing entry keeps its ``added_at``."""
        addresses = self.load()
        now = utc_now_iso()
        for i, existing in enumerate(addresses):
            if existing.address == address:
                addresses[i] = WatchedAddress(address, label, existing.added_at or now, now)
                self._save(addresses)
                log.info("updated watched address %s", address)
                return addresses[i]
        entry = WatchedAddress(address, label, now, now)
        addresses.append(entry)
        self._save(addresses)
        log.info("added watched address %s", address)
        return entry

    def remove(self, address: str) -> bool:
        addresses = self.load()
        kept = [a for a in addresses if a.address != address]
        if len(kept) == len(addresses):
            log.warning("address not in watched list: %s", address)
            return False
        self._save(kept)
        log.info("removed watched address %s", address)
        return True


# ──────────────────────────────────────────────────────────────
# Processed signatures
# ──────────────────────────────────────────────────────────────

class ProcessedLedger:
    """Dedup ledger keyed by signature.

    Held in memory and mirrored to disk on every write; only the
    ``keep`` most recently processed signatures survive.
    """

    def __init__(self, path: Optional[str], keep: int = 1000) -> None:
        self._path = path
        self._keep = max(1, int(keep))
        self._records: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        if path:
            self._load(path)

    def _load(self, path: str) -> None:
        data = _read_json(path, {"transactions": [], "lastUpdated": utc_now_iso()})
        for row in data.get("transactions") or []:
            if isinstance(row, dict) and row.get("signature"):
                self._records[str(row["signature"])] = row
        self._trim()

    def _trim(self) -> None:
        while len(self._records) > self._keep:
            self._records.popitem(last=False)

    def _save(self) -> None:
        if not self._path:
            return
        _write_json(self._path, {
            "transactions": list(self._records.values()),
            "lastUpdated": utc_now_iso(),
        })

    def has(self, signature: str) -> bool:
        return signature in self._records

    def mark_processed(self, signature: str,
                       metadata: Optional[Dict[str, Any]] = None) -> None:
        """Idempotent upsert; the first ``processedAt`` is kept.

        Written through to disk before returning.
        """
        now = utc_now_iso()
        previous = self._records.pop(signature, None)
        record: Dict[str, Any] = {
            "signature": signature,
            "processedAt": previous["processedAt"] if previous else now,
            "updatedAt": now,
        }
        if metadata:
            record.update({k: v for k, v in metadata.items()
                           if k not in ("signature", "processedAt", "updatedAt")})
        self._records[signature] = record
        self._trim()
        self._save()

    def clear_older_than(self, days: float = 7) -> int:
        """Drop records processed more than *days* ago; returns how many went."""
        cutoff = dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=days)
        stale = []
        for sig, rec in self._records.items():
            ts = _parse_iso(str(rec.get("processedAt", "")))
            if ts is not None and ts <= cutoff:
                stale.append(sig)
        for sig in stale:
            del self._records[sig]
        if stale:
            self._save()
            log.info("cleared %d old processed transactions", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._records)

    def stats(self) -> Dict[str, Any]:
        return {
            "processed_transactions": len(self._records),
            "keep": self._keep,
            "path": self._path,
        }
