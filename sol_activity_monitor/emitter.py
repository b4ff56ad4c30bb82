"""Activity emitter: records the signature, logs the event, writes JSON.

Each event is one compact JSON line (JSONL) on stdout or an events file,
plus a human-readable block in the log.
"""
from __future__ import annotations

import json
import logging
import sys
from typing import Protocol, TextIO

from .formatting import format_address, format_timestamp, format_usd
from .models import ActivityEvent, ActivityType

log = logging.getLogger(__name__)


class Ledger(Protocol):
    def mark_processed(self, signature: str, metadata: dict | None = None) -> None: ...


class ActivityEmitter:
    """Writes ActivityEvent objects as JSON lines to a stream."""

    def __init__(self, ledger: Ledger, stream: TextIO | None = None) -> None:
        self._ledger = ledger
        self._stream = stream if stream is not None else sys.stdout
        self._count = 0

    @property
    def event_count(self) -> int:
        return self._count

    def emit(self, event: ActivityEvent) -> None:
        """Mark processed, then log and write; never raises."""
        try:
            self._ledger.mark_processed(event.signature, {
                "address": event.address,
                "type": event.type.value,
                "platform": event.platform,
                "blockTime": event.block_time,
            })
        except OSError:
            log.exception("could not persist processed signature %s", event.signature)
        self._count += 1
        log.info("%s", render(event))
        try:
            line = json.dumps(event.to_dict(), separators=(",", ":"))
            self._stream.write(line + "\n")
            self._stream.flush()
        except Exception:
            log.exception("activity emit error")


def render(event: ActivityEvent) -> str:
    """Multi-line summary used for the INFO log."""
    lines = [
        f"[{event.type.value}] {format_address(event.address)} on {event.platform}",
        f"  signature: {event.signature}",
    ]
    if event.type is ActivityType.SWAP:
        lines.append(f"  swap: {event.description}")
    elif event.type is ActivityType.TRANSFER:
        lines.append(f"  {(event.direction or 'transfer').lower()}: {event.description}")
    else:
        lines.append(f"  activity: {event.description}")
    lines.append(f"  value: {format_usd(event.value_usd)}")
    if event.token_info is not None:
        info = event.token_info
        cap = format_usd(info.market_cap) if info.market_cap else "Unknown"
        lines.append(f"  token: {info.symbol} @ {format_usd(info.price, 6)} (mcap {cap})")
    lines.append(f"  time: {format_timestamp(event.block_time)}")
    return "\n".join(lines)
