"""Watched-address registry.

The in-memory view the coordinator iterates; every change is persisted
through :class:`AddressStore` when one is attached.
"""
from __future__ import annotations

import logging
import re
from collections import OrderedDict
from typing import Iterator, List, Optional

from solders.pubkey import Pubkey

from .formatting import utc_now_iso
from .models import WatchedAddress
from .storage import AddressStore

log = logging.getLogger(__name__)

_BASE58 = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


class InvalidAddressError(ValueError):
    """Not a base58-encoded 32-byte Solana public key."""


def validate_address(address: str) -> str:
    """Return the canonical base58 form of *address* or raise InvalidAddressError."""
    text = (address or "").strip()
    if not _BASE58.match(text):
        raise InvalidAddressError(f"invalid Solana address: {address!r}")
    try:
        return str(Pubkey.from_string(text))
    except ValueError as exc:
        raise InvalidAddressError(f"invalid Solana address: {address!r}") from exc


class AddressRegistry:
    """Set of watched addresses, unique by address, in insertion order."""

    def __init__(self, store: Optional[AddressStore] = None) -> None:
        self._store = store
        self._entries: "OrderedDict[str, WatchedAddress]" = OrderedDict()
        if store is not None:
            for wa in store.load():
                self._entries[wa.address] = wa

    def add(self, address: str, label: str = "") -> WatchedAddress:
        """Validate and upsert; raises InvalidAddressError before touching state."""
        canonical = validate_address(address)
        if self._store is not None:
            entry = self._store.add(canonical, label)
        else:
            now = utc_now_iso()
            existing = self._entries.get(canonical)
            entry = WatchedAddress(canonical, label,
                                   existing.added_at if existing else now, now)
        self._entries[canonical] = entry
        return entry

    def remove(self, address: str) -> bool:
        address = (address or "").strip()
        if address not in self._entries:
            log.warning("address not watched: %s", address)
            return False
        del self._entries[address]
        if self._store is not None:
            self._store.remove(address)
        return True

    def get(self, address: str) -> Optional[WatchedAddress]:
        return self._entries.get(address)

    def addresses(self) -> List[str]:
        return list(self._entries)

    def entries(self) -> List[WatchedAddress]:
        return list(self._entries.values())

    def __contains__(self, address: object) -> bool:
        return address in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
