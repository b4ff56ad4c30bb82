"""Entry point: wires the monitor and handles the address-list commands.

Architecture:
    ┌────────────────┐
    │ Solana PubSub  │──account/logs──┐
    │ (WebSocket)    │                │
    └────────────────┘                ▼
    ┌────────────────┐          ChannelCoordinator ──dedup gate──→ getTransaction
    │ Solana RPC     │──poll────────→ (work queue)                      │
    │ (HTTP)         │                                                  ▼
    └────────────────┘                                     TransactionClassifier
                                                      (PriceService, TokenMetadataService)
                                                                        │
                                                                        ▼
                                        ActivityEmitter → ledger + log + stdout (JSONL)

Usage:
    sol-activity-monitor                       # run
    sol-activity-monitor add <address> [label]
    sol-activity-monitor remove <address>
    sol-activity-monitor list
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Dict, Optional, Sequence, TextIO

from .classifier import TransactionClassifier
from .config import Config, parse_args
from .coordinator import ChannelCoordinator
from .emitter import ActivityEmitter
from .formatting import format_address
from .metadata_service import TokenMetadataService
from .price_service import PriceService
from .registry import AddressRegistry, InvalidAddressError
from .rpc_client import ChainDataError, SolanaRpcClient
from .storage import AddressStore, ProcessedLedger

log = logging.getLogger(__name__)


class ActivityMonitorRunner:
    """Orchestrates all components."""

    def __init__(self, cfg: Config, events_stream: Optional[TextIO] = None) -> None:
        self.cfg = cfg
        self._events_stream = events_stream
        self._owns_stream = False
        if events_stream is None and cfg.events_file:
            self._events_stream = open(cfg.events_file, "a", encoding="utf-8")
            self._owns_stream = True

        self.registry = AddressRegistry(AddressStore(cfg.addresses_path))
        self.ledger = ProcessedLedger(cfg.processed_path, keep=cfg.processed_keep)
        self.rpc = SolanaRpcClient(cfg)
        self.prices = PriceService(cfg)
        self.metadata = TokenMetadataService(cfg)
        self.classifier = TransactionClassifier(self.prices, self.metadata)
        self.emitter = ActivityEmitter(self.ledger, self._events_stream)
        self.coordinator = ChannelCoordinator(
            cfg, self.registry, self.rpc, self.classifier, self.emitter, self.ledger,
        )
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        self._stop.set()

    async def _check_rpc(self) -> None:
        try:
            version = await self.rpc.get_version()
            log.info("connected to Solana RPC (version %s)", version.get("solana-core", "?"))
        except ChainDataError as exc:
            log.warning("RPC health check failed: %s", exc)

    def status(self) -> Dict[str, Any]:
        return {
            **self.coordinator.status(),
            "processed": len(self.ledger),
            "price_cache": self.prices.cache_stats(),
            "metadata_cache": self.metadata.stats(),
        }

    async def _status_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cfg.status_interval_s)
            s = self.status()
            log.info(
                "STATUS running=%s push=%s retries=%d addresses=%d polls=%d "
                "poll_errors=%d events=%d rejected=%d processed=%d",
                s["running"], s["state"], s["retry_attempts"],
                s["watched_addresses"], s["polls"], s["poll_errors"],
                s["events"], s["rejected_cached"], s["processed"],
            )
            log.debug("price cache %s, metadata cache %s", s["price_cache"], s["metadata_cache"])

    async def run(self) -> None:
        log.info("=" * 60)
        log.info("  Solana activity monitor starting")
        log.info("=" * 60)
        log.info("rpc:          %s", self.cfg.rpc_url)
        log.info("ws:           %s", self.cfg.ws_url)
        log.info("poll every:   %.1fs", self.cfg.poll_interval_s)
        log.info("addresses:    %d", len(self.registry))
        for wa in self.registry.entries():
            log.info("  %s %s", format_address(wa.address), wa.label)
        if not len(self.registry):
            log.warning("no addresses configured; use `add <address>` first")

        self.ledger.clear_older_than(self.cfg.processed_max_age_days)
        await self._check_rpc()
        await self.coordinator.start()
        status = asyncio.create_task(self._status_loop(), name="status")
        try:
            await self._stop.wait()
        except asyncio.CancelledError:
            log.info("runner cancelled")
        finally:
            status.cancel()
            await asyncio.gather(status, return_exceptions=True)
            await self.coordinator.stop()
            await self.close()
            log.info("monitor stopped. events emitted: %d", self.emitter.event_count)

    async def close(self) -> None:
        await self.rpc.close()
        await self.prices.close()
        await self.metadata.close()
        if self._owns_stream and self._events_stream is not None:
            self._events_stream.close()


# ──────────────────────────────────────────────────────────────
# Address-list commands
# ──────────────────────────────────────────────────────────────

def run_command(cfg: Config, args: argparse.Namespace,
                out: TextIO = sys.stdout) -> int:
    """Handle add/remove/list; returns a process exit code."""
    registry = AddressRegistry(AddressStore(cfg.addresses_path))

    if args.command == "list":
        entries = registry.entries()
        if not entries:
            out.write("no addresses monitored\n")
        for wa in entries:
            label = f"  {wa.label}" if wa.label else ""
            out.write(f"{wa.address}{label}\n")
        return 0

    if not args.args:
        log.error("%s needs an address", args.command)
        return 2

    address = args.args[0]
    if args.command == "add":
        label = " ".join(args.args[1:])
        try:
            entry = registry.add(address, label)
        except InvalidAddressError as exc:
            log.error("%s", exc)
            return 1
        out.write(f"watching {entry.address}\n")
        return 0

    if args.command == "remove":
        if not registry.remove(address):
            return 1
        out.write(f"removed {address}\n")
        return 0

    log.error("unknown command %s", args.command)
    return 2


def main(argv: Sequence[str] | None = None) -> None:
    cfg, args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s  %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    try:
        cfg.validate()
    except ValueError as exc:
        log.error("configuration error: %s", exc)
        sys.exit(2)

    if args.command != "run":
        sys.exit(run_command(cfg, args))

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    runner = ActivityMonitorRunner(cfg)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.request_stop)
        except NotImplementedError:
            pass  # Windows

    try:
        loop.run_until_complete(runner.run())
    except KeyboardInterrupt:
        log.info("interrupted")
    finally:
        loop.close()


if __name__ == "__main__":
    main()
