"""Tests for RPC payload decoding and the JSON-RPC client."""
from __future__ import annotations

import asyncio
import copy
import io

import pytest

from sol_activity_monitor.classifier import TransactionClassifier
from sol_activity_monitor.config import Config
from sol_activity_monitor.coordinator import ChannelCoordinator
from sol_activity_monitor.decode import DecodeError, decode_signatures, decode_transaction
from sol_activity_monitor.emitter import ActivityEmitter
from sol_activity_monitor.models import ConfirmationStatus
from sol_activity_monitor.registry import AddressRegistry
from sol_activity_monitor.rpc_client import (
    ChainDataError,
    NotFoundError,
    SolanaRpcClient,
    UnavailableError,
)
from sol_activity_monitor.storage import ProcessedLedger
from sol_activity_monitor.tests.fakes import OTHER, WATCHED, FakeMetadata, FakePrices

TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

PARSED = {
    "slot": 250_000_000,
    "blockTime": 1_700_000_000,
    "meta": {
        "err": None,
        "fee": 5000,
        "preBalances": [10_000, 20_000, 1],
        "postBalances": [4_000, 26_000, 1],
        "preTokenBalances": [{
            "accountIndex": 1, "mint": OTHER, "owner": WATCHED,
            "uiTokenAmount": {"amount": "1500000000", "decimals": 6, "uiAmount": 1500.0},
        }],
        "postTokenBalances": [{
            "accountIndex": 1, "mint": OTHER, "owner": WATCHED,
            "uiTokenAmount": {"amount": "1000000000", "decimals": 6, "uiAmount": 1000.0},
        }],
    },
    "transaction": {
        "signatures": ["sigParsed"],
        "message": {
            "accountKeys": [
                {"pubkey": WATCHED, "signer": True, "writable": True, "source": "transaction"},
                {"pubkey": OTHER, "signer": False, "writable": True, "source": "transaction"},
                {"pubkey": TOKEN_PROGRAM, "signer": False, "writable": False},
            ],
            "instructions": [
                {"programId": TOKEN_PROGRAM, "parsed": {"type": "transfer"}, "program": "spl-token"},
                {"programId": "ComputeBudget111111111111111111111111111111",
                 "accounts": [WATCHED], "data": "3DTZbgwsozUF"},
            ],
        },
    },
}

RAW_V0 = {
    "slot": 7,
    "blockTime": None,
    "version": 0,
    "meta": {
        "err": {"InstructionError": [0, "Custom"]},
        "fee": 5000,
        "preBalances": [1, 2, 3],
        "postBalances": [1, 2, 3],
        "preTokenBalances": [],
        "postTokenBalances": [],
        "loadedAddresses": {"writable": ["LoadedW"], "readonly": ["LoadedR"]},
    },
    "transaction": {
        "signatures": ["sigRaw"],
        "message": {
            "accountKeys": [WATCHED, TOKEN_PROGRAM],
            "instructions": [{"programIdIndex": 1, "accounts": [0, 2, 3], "data": "x"}],
        },
    },
}


class TestDecodeTransaction:
    def test_parsed_keys_folded(self) -> None:
        tx = decode_transaction(PARSED)
        assert tx.signature == "sigParsed"
        assert [k.pubkey for k in tx.account_keys] == [WATCHED, OTHER, TOKEN_PROGRAM]
        assert tx.account_keys[0].signer and tx.account_keys[0].writable
        assert str(tx.account_keys[1]) == OTHER
        assert tx.instructions[0].program_id == TOKEN_PROGRAM
        assert tx.instructions[1].accounts == (WATCHED,)
        assert tx.pre_balances == (10_000, 20_000, 1)
        assert tx.fee == 5000

    def test_token_amounts_are_raw_ints(self) -> None:
        tx = decode_transaction(PARSED)
        assert tx.pre_token_balances[0].raw_amount == 1_500_000_000
        assert tx.post_token_balances[0].raw_amount == 1_000_000_000
        assert tx.post_token_balances[0].decimals == 6
        assert tx.post_token_balances[0].owner == WATCHED

    def test_index_instructions_and_loaded_addresses(self) -> None:
        tx = decode_transaction(RAW_V0, "explicit")
        assert tx.signature == "explicit"
        assert [k.pubkey for k in tx.account_keys] == [WATCHED, TOKEN_PROGRAM, "LoadedW", "LoadedR"]
        assert tx.account_keys[2].writable and not tx.account_keys[3].writable
        assert tx.instructions[0].program_id == TOKEN_PROGRAM
        assert tx.instructions[0].accounts == (WATCHED, "LoadedW", "LoadedR")
        assert tx.block_time is None
        assert tx.err == {"InstructionError": [0, "Custom"]}

    def test_involves(self) -> None:
        tx = decode_transaction(PARSED)
        assert tx.involves(WATCHED)
        assert tx.account_index(OTHER) == 1
        assert not tx.involves("Nobody111111111111111111111111111111111111")

    @pytest.mark.parametrize("mutate", [
        lambda d: d.pop("meta"),
        lambda d: d["transaction"].pop("message"),
        lambda d: d["transaction"]["message"].pop("accountKeys"),
        lambda d: d["transaction"]["message"]["accountKeys"].append(42),
        lambda d: d["transaction"]["message"]["instructions"].append({"programIdIndex": 99}),
    ])
    def test_malformed(self, mutate) -> None:
        payload = copy.deepcopy(RAW_V0)
        mutate(payload)
        with pytest.raises(DecodeError):
            decode_transaction(payload)

    def test_not_an_object(self) -> None:
        with pytest.raises(DecodeError):
            decode_transaction(["nope"])


class TestDecodeSignatures:
    def test_rows(self) -> None:
        rows = decode_signatures([
            {"signature": "s2", "slot": 11, "blockTime": 1_700_000_100,
             "confirmationStatus": "finalized", "err": None, "memo": None},
            {"signature": "s1", "slot": 10, "blockTime": None,
             "confirmationStatus": "weird", "err": {"x": 1}},
            {"slot": 9},
        ])
        assert [r.signature for r in rows] == ["s2", "s1"]
        assert rows[0].confirmation_status is ConfirmationStatus.FINALIZED
        assert rows[1].confirmation_status is None
        assert rows[1].err == {"x": 1}

    def test_not_a_list(self) -> None:
        with pytest.raises(DecodeError):
            decode_signatures({"signature": "s"})


# ──────────────────────────────────────────────────────────────
# JSON-RPC client against a stub session
# ──────────────────────────────────────────────────────────────


class _Resp:
    def __init__(self, status: int, body) -> None:
        self.status = status
        self._body = body

    async def json(self, content_type=None):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> bool:
        return False


class _Session:
    closed = False

    def __init__(self, *responses: _Resp) -> None:
        self._responses = list(responses)
        self.bodies: list[dict] = []

    def post(self, url, json=None, timeout=None):
        self.bodies.append(json)
        return self._responses.pop(0)


def _client(*responses: _Resp) -> tuple[SolanaRpcClient, _Session]:
    session = _Session(*responses)
    return SolanaRpcClient(Config(), session=session), session


class TestRpcClient:
    def test_get_transaction_decodes(self) -> None:
        client, session = _client(_Resp(200, {"jsonrpc": "2.0", "id": 1, "result": PARSED}))
        tx = asyncio.run(client.get_transaction("sigParsed"))
        assert tx.signature == "sigParsed"
        body = session.bodies[0]
        assert body["method"] == "getTransaction"
        assert body["params"][1]["maxSupportedTransactionVersion"] == 0

    def test_get_transaction_null_result(self) -> None:
        client, _ = _client(_Resp(200, {"jsonrpc": "2.0", "id": 1, "result": None}))
        assert asyncio.run(client.get_transaction("missing")) is None

    def test_get_transaction_malformed_raises(self) -> None:
        client, _ = _client(_Resp(200, {"jsonrpc": "2.0", "id": 1, "result": {"meta": {}}}))
        with pytest.raises(DecodeError):
            asyncio.run(client.get_transaction("bad"))

    def test_malformed_transaction_fetched_once_across_ticks(self) -> None:
        sigs = {"jsonrpc": "2.0", "id": 1, "result": [
            {"signature": "bad", "slot": 5, "confirmationStatus": "confirmed"},
        ]}
        client, session = _client(
            _Resp(200, sigs),
            _Resp(200, {"jsonrpc": "2.0", "id": 2, "result": {"meta": {}}}),
            *(_Resp(200, sigs) for _ in range(4)),
        )
        registry = AddressRegistry()
        registry.add(WATCHED)
        ledger = ProcessedLedger(None)
        coord = ChannelCoordinator(
            Config(), registry, client,
            TransactionClassifier(FakePrices(), FakeMetadata()),
            ActivityEmitter(ledger, io.StringIO()), ledger,
        )

        async def ticks():
            for _ in range(5):
                await coord.poll_once()

        asyncio.run(ticks())
        methods = [body["method"] for body in session.bodies]
        assert methods.count("getTransaction") == 1
        assert methods.count("getSignaturesForAddress") == 5
        assert coord.status()["rejected_cached"] == 1

    def test_signatures_request(self) -> None:
        client, session = _client(_Resp(200, {"jsonrpc": "2.0", "id": 1, "result": [
            {"signature": "s1", "slot": 1, "confirmationStatus": "confirmed"},
        ]}))
        rows = asyncio.run(client.get_recent_signatures(WATCHED, limit=5))
        assert [r.signature for r in rows] == ["s1"]
        assert session.bodies[0]["params"] == [WATCHED, {"limit": 5, "commitment": "confirmed"}]

    @pytest.mark.parametrize("resp", [
        _Resp(429, None),
        _Resp(503, None),
        _Resp(200, {"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "busy"}}),
        _Resp(200, "garbage"),
    ])
    def test_unavailable(self, resp) -> None:
        client, _ = _client(resp)
        with pytest.raises(UnavailableError):
            asyncio.run(client.get_recent_signatures(WATCHED))
        assert client.errors == 1

    def test_error_hierarchy(self) -> None:
        assert issubclass(NotFoundError, ChainDataError)
        assert issubclass(UnavailableError, ChainDataError)

    def test_get_version(self) -> None:
        client, _ = _client(_Resp(200, {"jsonrpc": "2.0", "id": 1,
                                        "result": {"solana-core": "1.18.22"}}))
        assert asyncio.run(client.get_version())["solana-core"] == "1.18.22"
