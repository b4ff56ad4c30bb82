"""Channel coordinator: push subscriptions + polling backstop.

Push channel lifecycle (one multiplexed socket for all addresses):

    DISCONNECTED ──start──→ CONNECTING ──handshake──→ SUBSCRIBED
                               ↑  │                       │
                 retries left  └──┴──── close / error ────┘
                                  │
                     retries spent└──→ DEGRADED (polling only, for good)

Polling runs from ``start()`` regardless of push state.  Both channels
feed one work queue drained by a single dispatch loop; every candidate
signature then passes the dedup gate (ledger, in-flight claim, rejected
memo) before the transaction is fetched and classified.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Protocol, Set, Tuple

from .config import Config
from .decode import DecodeError
from .models import ActivityEvent, ChannelState, RawTransaction, SignatureRecord, WatchedAddress
from .push_channel import ACCOUNT, LOGS, PushConnection, PushNotification
from .registry import AddressRegistry
from .rpc_client import ChainDataError

log = logging.getLogger(__name__)

POLL = "poll"
SIGNATURE = "signature"

REJECTED_MEMO_SIZE = 10_000


class ChainSource(Protocol):
    async def get_recent_signatures(self, address: str, limit: int = 10) -> List[SignatureRecord]: ...
    async def get_transaction(self, signature: str) -> Optional[RawTransaction]:
        """None while unknown to the node; DecodeError when malformed."""


class Classifier(Protocol):
    async def classify(self, tx: RawTransaction, address: str) -> Optional[ActivityEvent]: ...


class Emitter(Protocol):
    def emit(self, event: ActivityEvent) -> None: ...


class Ledger(Protocol):
    def has(self, signature: str) -> bool: ...


@dataclass(slots=True, frozen=True)
class WorkItem:
    kind: str                       # POLL | SIGNATURE
    address: str
    signature: Optional[str] = None


class ChannelCoordinator:
    """Owns the push channel, the poll timer and the dedup gate.

    Usage:
        coord = ChannelCoordinator(cfg, registry, rpc, classifier, emitter, ledger)
        await coord.start()
        ...
        await coord.stop()
    """

    def __init__(self, cfg: Config, registry: AddressRegistry, chain: ChainSource,
                 classifier: Classifier, emitter: Emitter, ledger: Ledger,
                 push_factory: Optional[Callable[[], PushConnection]] = None) -> None:
        self._cfg = cfg
        self._registry = registry
        self._chain = chain
        self._classifier = classifier
        self._emitter = emitter
        self._ledger = ledger
        self._push_factory = push_factory or (lambda: PushConnection(cfg))

        self._state = ChannelState.DISCONNECTED
        self._retries = 0
        self._running = False
        self._push: Optional[PushConnection] = None
        self._queue: Optional[asyncio.Queue[WorkItem]] = None
        self._tasks: List[asyncio.Task[None]] = []
        self._inflight: Set[asyncio.Task[None]] = set()

        # signatures currently between dedup check and emit/reject
        self._claims: Set[str] = set()
        # (signature, address) pairs that classified to None
        self._rejected: Set[Tuple[str, str]] = set()
        self._rejected_order: Deque[Tuple[str, str]] = deque()

        self.polls = 0
        self.poll_errors = 0
        self.events = 0
        self.connect_attempts = 0

    # ── State ──

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def running(self) -> bool:
        return self._running

    @property
    def retry_attempts(self) -> int:
        return self._retries

    def _set_state(self, state: ChannelState) -> None:
        if state is not self._state:
            log.debug("push state %s → %s", self._state.value, state.value)
            self._state = state

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "state": self._state.value,
            "push_connected": self._state is ChannelState.SUBSCRIBED,
            "retry_attempts": self._retries,
            "watched_addresses": len(self._registry),
            "polls": self.polls,
            "poll_errors": self.poll_errors,
            "events": self.events,
            "rejected_cached": len(self._rejected),
        }

    # ── Lifecycle ──

    async def start(self) -> None:
        if self._running:
            log.warning("coordinator already running")
            return
        self._running = True
        self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._dispatch_loop(), name="dispatch"),
            asyncio.create_task(self._poll_loop(), name="poll"),
            asyncio.create_task(self._push_loop(), name="push"),
        ]
        log.info("coordinator started: %d watched address(es)", len(self._registry))

    async def stop(self) -> None:
        """Cancel timers, the push loop and in-flight work, then let them unwind."""
        if not self._running:
            return
        self._running = False
        tasks = [*self._tasks, *self._inflight]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._inflight.clear()
        push, self._push = self._push, None
        if push is not None:
            await push.close()
        self._set_state(ChannelState.DISCONNECTED)
        log.info("coordinator stopped: %d event(s) emitted", self.events)

    # ── Address set ──

    async def add_address(self, address: str, label: str = "") -> WatchedAddress:
        """Watch *address*; InvalidAddressError propagates before any state changes."""
        entry = self._registry.add(address, label)
        push = self._push
        if self._state is ChannelState.SUBSCRIBED and push is not None:
            try:
                await self._subscribe(push, entry.address)
            except Exception:
                log.exception("subscribe failed for %s", entry.address)
        return entry

    async def remove_address(self, address: str) -> bool:
        removed = self._registry.remove(address)
        push = self._push
        if removed and self._state is ChannelState.SUBSCRIBED and push is not None:
            try:
                await push.unsubscribe(address)
            except Exception:
                log.exception("unsubscribe failed for %s", address)
        return removed

    # ── Push channel ──

    async def _subscribe(self, push: PushConnection, address: str) -> None:
        await push.subscribe_account(address)
        if self._cfg.subscribe_logs:
            await push.subscribe_logs(address)

    async def _push_loop(self) -> None:
        while self._running:
            self._set_state(ChannelState.CONNECTING)
            push = self._push_factory()
            self._push = push
            self.connect_attempts += 1
            try:
                await push.connect()
                self._retries = 0
                self._set_state(ChannelState.SUBSCRIBED)
                for address in self._registry.addresses():
                    await self._subscribe(push, address)
                async for note in push:
                    self._on_notification(note)
                log.warning("push channel closed")
            except Exception as exc:
                log.warning("push channel error: %r", exc)
            finally:
                if self._push is push:
                    self._push = None
                if self._running:
                    self._set_state(ChannelState.CONNECTING)
                await push.close()

            if not self._running:
                return
            if self._retries >= self._cfg.max_retries:
                self._set_state(ChannelState.DEGRADED)
                log.warning("push channel gave up after %d retries, polling only",
                            self._retries)
                return
            self._retries += 1
            log.info("push reconnect %d/%d in %.1fs", self._retries,
                     self._cfg.max_retries, self._cfg.retry_delay_s)
            await asyncio.sleep(self._cfg.retry_delay_s)

    def _attribute_logs(self, note: PushNotification) -> Optional[str]:
        if note.address is not None:
            return note.address
        for address in self._registry.addresses():
            if any(address in line for line in note.logs):
                return address
        return None

    def _on_notification(self, note: PushNotification) -> None:
        if self._queue is None:
            return
        if note.kind == ACCOUNT:
            if note.address is not None and note.address in self._registry:
                self._queue.put_nowait(WorkItem(POLL, note.address))
            return
        if note.kind == LOGS and note.signature:
            address = self._attribute_logs(note)
            if address is None or address not in self._registry:
                log.debug("logs for %s not attributable to a watched address",
                          note.signature)
                return
            self._queue.put_nowait(WorkItem(SIGNATURE, address, note.signature))

    # ── Work queue ──

    async def _dispatch_loop(self) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            task = asyncio.create_task(self._handle(item))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _handle(self, item: WorkItem) -> None:
        try:
            if item.kind == POLL:
                await self.poll_address(item.address)
            elif item.signature is not None:
                await self.process_signature(item.signature, item.address)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("work item failed: %s", item)

    # ── Polling ──

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("poll tick error")
            await asyncio.sleep(self._cfg.poll_interval_s)

    async def poll_once(self) -> None:
        """One tick: every watched address concurrently."""
        self.polls += 1
        addresses = self._registry.addresses()
        if addresses:
            await asyncio.gather(*(self.poll_address(a) for a in addresses))

    async def poll_address(self, address: str) -> None:
        try:
            records = await self._chain.get_recent_signatures(
                address, self._cfg.signature_limit)
        except ChainDataError as exc:
            self.poll_errors += 1
            log.warning("signature poll failed for %s: %s", address, exc)
            return

        novel = [r for r in reversed(records) if not self._seen(r.signature, address)]
        # API order is newest first; reversed + stable sort keeps that for ties
        novel.sort(key=lambda r: (r.slot, r.block_time or 0))
        for record in novel:
            if address not in self._registry:
                return
            await self.process_signature(record.signature, address)

    # ── Dedup gate ──

    def _seen(self, signature: str, address: str) -> bool:
        return (self._ledger.has(signature)
                or signature in self._claims
                or (signature, address) in self._rejected)

    def _remember_rejected(self, signature: str, address: str) -> None:
        key = (signature, address)
        if key in self._rejected:
            return
        self._rejected.add(key)
        self._rejected_order.append(key)
        while len(self._rejected_order) > REJECTED_MEMO_SIZE:
            self._rejected.discard(self._rejected_order.popleft())

    async def process_signature(self, signature: str, address: str) -> bool:
        """Fetch, classify and emit *signature* once; True when an event went out."""
        if self._seen(signature, address):
            return False
        self._claims.add(signature)
        try:
            try:
                tx = await self._chain.get_transaction(signature)
            except ChainDataError as exc:
                log.warning("transaction fetch failed for %s: %s", signature, exc)
                return False
            except DecodeError as exc:
                log.debug("undecodable transaction %s: %s", signature, exc)
                self._remember_rejected(signature, address)
                return False
            if tx is None:
                log.debug("transaction %s not available yet", signature)
                return False
            event = await self._classifier.classify(tx, address)
            if event is None:
                self._remember_rejected(signature, address)
                return False
            self._emitter.emit(event)
            self.events += 1
            return True
        finally:
            self._claims.discard(signature)
