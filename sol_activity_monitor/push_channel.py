"""Solana PubSub WebSocket connection.

One multiplexed socket carries every subscription.  Requests are
matched to replies by JSON-RPC id; replies carry the subscription id
that later notifications are tagged with, so both tables are kept here
and every notification leaves this module already attributed to the
watched address it belongs to (when that is knowable).

accountNotification:
{"jsonrpc": "2.0", "method": "accountNotification",
 "params": {"subscription": 23784,
            "result": {"context": {"slot": 5199307}, "value": {...}}}}

logsNotification:
{"jsonrpc": "2.0", "method": "logsNotification",
 "params": {"subscription": 24040,
            "result": {"context": {"slot": 5208469},
                       "value": {"signature": "5h6x...", "err": null,
                                 "logs": ["Program 1111... invoke [1]", ...]}}}}
"""
from __future__ import annotations

import itertools
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

import aiohttp

from .config import Config

log = logging.getLogger(__name__)

ACCOUNT = "account"
LOGS = "logs"

_SUBSCRIBE = {ACCOUNT: "accountSubscribe", LOGS: "logsSubscribe"}
_UNSUBSCRIBE = {ACCOUNT: "accountUnsubscribe", LOGS: "logsUnsubscribe"}
_NOTIFICATION = {"accountNotification": ACCOUNT, "logsNotification": LOGS}


@dataclass(slots=True, frozen=True)
class PushNotification:
    kind: str                          # ACCOUNT | LOGS
    address: Optional[str] = None      # resolved via the subscription table
    signature: Optional[str] = None    # logs notifications only
    logs: Tuple[str, ...] = ()
    subscription: Optional[int] = None
    err: Optional[Any] = None


class PushConnection:
    """aiohttp WebSocket wrapper for account/logs subscriptions.

    Usage:
        conn = PushConnection(cfg)
        await conn.connect()
        await conn.subscribe_account(addr)
        async for note in conn:     # ends when the socket closes
            ...
        await conn.close()
    """

    def __init__(self, cfg: Config) -> None:
        self._cfg = cfg
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._ids = itertools.count(1)
        # request id → (kind, address) awaiting the subscription id reply
        self._pending: Dict[int, Tuple[str, str]] = {}
        # subscription id → (kind, address)
        self._subs: Dict[int, Tuple[str, str]] = {}
        self._wanted: Set[Tuple[str, str]] = set()
        self.messages = 0

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    def subscriptions(self) -> Dict[int, Tuple[str, str]]:
        return dict(self._subs)

    async def connect(self) -> None:
        log.info("push connecting: %s", self._cfg.ws_url)
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(
                self._cfg.ws_url, heartbeat=self._cfg.ws_heartbeat_s,
            )
        except BaseException:
            await self._session.close()
            self._session = None
            raise
        log.info("push connected")

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._ws = None
        self._session = None
        self._pending.clear()
        self._subs.clear()
        self._wanted.clear()

    # ── Subscriptions ──

    async def _send(self, method: str, params: List[Any]) -> int:
        if self._ws is None or self._ws.closed:
            raise ConnectionError("push channel is not connected")
        req_id = next(self._ids)
        await self._ws.send_str(json.dumps({
            "jsonrpc": "2.0", "id": req_id, "method": method, "params": params,
        }))
        return req_id

    async def _subscribe(self, kind: str, address: str, params: List[Any]) -> None:
        self._wanted.add((kind, address))
        req_id = await self._send(_SUBSCRIBE[kind], params)
        self._pending[req_id] = (kind, address)

    async def subscribe_account(self, address: str) -> None:
        await self._subscribe(ACCOUNT, address, [
            address, {"encoding": "jsonParsed", "commitment": self._cfg.commitment},
        ])

    async def subscribe_logs(self, address: str) -> None:
        await self._subscribe(LOGS, address, [
            {"mentions": [address]}, {"commitment": self._cfg.commitment},
        ])

    async def unsubscribe(self, address: str) -> None:
        """Drop every subscription of *address*; pending ones are dropped on reply."""
        self._wanted = {w for w in self._wanted if w[1] != address}
        for sub_id, (kind, addr) in list(self._subs.items()):
            if addr != address:
                continue
            del self._subs[sub_id]
            await self._send(_UNSUBSCRIBE[kind], [sub_id])
            log.info("push unsubscribed %s %s (sub %d)", kind, address, sub_id)

    # ── Stream ──

    def __aiter__(self) -> AsyncIterator[PushNotification]:
        return self._notifications()

    async def _notifications(self) -> AsyncIterator[PushNotification]:
        if self._ws is None:
            return
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self.messages += 1
                note = await self._handle(msg.data)
                if note is not None:
                    yield note
            elif msg.type in (aiohttp.WSMsgType.CLOSED,
                              aiohttp.WSMsgType.ERROR):
                log.warning("push ws closed/error: %s", msg.type)
                break

    async def _handle(self, raw: str) -> Optional[PushNotification]:
        try:
            d = json.loads(raw)
        except json.JSONDecodeError:
            log.debug("push: non-JSON frame dropped")
            return None
        if not isinstance(d, dict):
            return None

        if "id" in d and d.get("id") in self._pending:
            await self._confirm(d)
            return None

        kind = _NOTIFICATION.get(d.get("method", ""))
        if kind is None:
            return None
        params = d.get("params") or {}
        sub_id = params.get("subscription")
        owner = self._subs.get(sub_id)
        value = (params.get("result") or {}).get("value") or {}

        if kind == ACCOUNT:
            return PushNotification(
                kind=ACCOUNT,
                address=owner[1] if owner else None,
                subscription=sub_id,
            )
        logs = value.get("logs") or []
        return PushNotification(
            kind=LOGS,
            address=owner[1] if owner else None,
            signature=value.get("signature"),
            logs=tuple(str(line) for line in logs),
            subscription=sub_id,
            err=value.get("err"),
        )

    async def _confirm(self, reply: Dict[str, Any]) -> None:
        kind, address = self._pending.pop(reply["id"])
        if "error" in reply:
            log.warning("push %s subscribe failed for %s: %s",
                        kind, address, reply["error"])
            return
        sub_id = reply.get("result")
        if not isinstance(sub_id, int):
            return
        if (kind, address) not in self._wanted:
            # removed while the request was in flight
            await self._send(_UNSUBSCRIBE[kind], [sub_id])
            return
        self._subs[sub_id] = (kind, address)
        log.info("push subscribed %s %s (sub %d)", kind, address, sub_id)
