from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest

from common.ledger import LedgerClient, LedgerError, LedgerRevertError, parse_uint


CONTRACT = "0x00000000000000000000000000000000000000c0"
ALICE = "0x000000000000000000000000000000000000a11c"
BOB = "0x0000000000000000000000000000000000000b0b"


class FakeClock:
    def __init__(self) -> None:
        self.t = 0.0

    def __call__(self) -> float:
        return self.t


def _ledger(handler, **kwargs) -> LedgerClient:
    clock = kwargs.pop("clock", FakeClock())
    sleeps: List[float] = kwargs.pop("sleeps", [])

    def sleep(s: float) -> None:
        sleeps.append(s)
        clock.t += s

    return LedgerClient(
        "https://gateway.test",
        CONTRACT,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        clock=clock,
        sleep=sleep,
        **kwargs,
    )


def test_calls_carry_sender_contract_and_method():
    seen: List[Dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        return httpx.Response(200, json={"result": True})

    ledger = _ledger(handler)
    assert ledger.has_voted(ALICE, BOB) is True
    assert seen[0] == {"from": ALICE, "contract": CONTRACT, "method": "hasVoted", "args": [ALICE, BOB]}


def test_vote_waits_for_confirmation():
    statuses = iter(["pending", "pending", "confirmed"])
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/transactions":
            body = json.loads(request.content)
            assert body["method"] == "vote"
            assert body["args"] == [BOB, "0xct", "0xproof"]
            return httpx.Response(200, json={"txHash": "0xtx"})
        assert request.url.path == "/transactions/0xtx"
        status = next(statuses)
        return httpx.Response(200, json={"txHash": "0xtx", "status": status, "blockNumber": 7 if status == "confirmed" else None})

    receipt = _ledger(handler, sleeps=sleeps).submit_vote(ALICE, BOB, "0xct", "0xproof")

    assert receipt.confirmed and receipt.block_number == 7
    assert sleeps == [1.0, 1.0]


def test_revert_in_receipt_surfaces_reason_verbatim():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/transactions":
            return httpx.Response(200, json={"txHash": "0xtx"})
        return httpx.Response(200, json={"txHash": "0xtx", "status": "reverted", "revertReason": "Already voted"})

    with pytest.raises(LedgerRevertError) as ei:
        _ledger(handler).submit_vote(ALICE, BOB, "0xct", "0xproof")
    assert ei.value.reason == "Already voted"


def test_revert_envelope_on_send():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"code": "REVERT", "message": "Not registered"}})

    with pytest.raises(LedgerRevertError, match="Not registered"):
        _ledger(handler).register(ALICE)


def test_transactions_are_never_retried():
    sent = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        sent["count"] += 1
        return httpx.Response(503)

    with pytest.raises(LedgerError):
        _ledger(handler).check_match(ALICE, BOB)
    assert sent["count"] == 1


def test_reads_retry_transient_failures():
    responses = iter([httpx.Response(503), httpx.Response(429, headers={"Retry-After": "2"}), httpx.Response(200, json={"result": "0x1000"})])
    sleeps: List[float] = []

    handle = _ledger(lambda r: next(responses), sleeps=sleeps).get_match_result_handle(ALICE)

    assert handle == 0x1000
    assert sleeps == [0.5, 2.0]


def test_receipt_wait_times_out():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/transactions":
            return httpx.Response(200, json={"txHash": "0xtx"})
        return httpx.Response(200, json={"txHash": "0xtx", "status": "pending"})

    with pytest.raises(LedgerError, match="Timed out"):
        _ledger(handler, receipt_timeout=5.0).request_decrypt(ALICE)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ([True, True], (True, True)),
        (["0x1", False], ("0x1", False)),
        ({"result": 0, "decrypted": True}, (0, True)),
    ],
)
def test_decrypted_result_shapes(raw, expected):
    ledger = _ledger(lambda r: httpx.Response(200, json={"result": raw}))
    assert ledger.get_decrypted_result(ALICE) == expected


def test_decrypted_result_malformed():
    ledger = _ledger(lambda r: httpx.Response(200, json={"result": [1]}))
    with pytest.raises(LedgerError):
        ledger.get_decrypted_result(ALICE)


@pytest.mark.parametrize("raw, expected", [(5, 5), ("12", 12), ("0x10", 16), ("0x", 0)])
def test_parse_uint(raw, expected):
    assert parse_uint(raw) == expected


def test_parse_uint_rejects_bool():
    with pytest.raises(ValueError):
        parse_uint(True)
