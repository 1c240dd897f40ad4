from __future__ import annotations

import pytest
import structlog

from _fakes import (
    ALICE,
    BOB,
    CAROL,
    CONTRACT,
    FakeCofheAdapter,
    FakeDirectory,
    FakeFhevmAdapter,
    FakeLedger,
    FakeSigner,
    FakeStateStore,
    profile,
)
from common.config import MatchSettings
from matcher import handler
from state.models import pair_key
from state.s3_store import OptimisticLockError


def _settings(backend: str = "fhevm") -> MatchSettings:
    return MatchSettings(
        backend=backend,
        ledger_url="https://gateway.test",
        contract_address=CONTRACT,
        relayer_url="https://relayer.test",
        coprocessor_url="https://cofhe.test",
        wallet_url="https://wallet.test",
        directory_url="https://db.test",
        directory_api_key="anon",
        state_bucket="bucket",
        fernet_key="unused",
    )


@pytest.fixture
def services(monkeypatch):
    def build(backend: str = "fhevm", **kwargs):
        settings = _settings(backend)
        ledger = kwargs.get("ledger") or FakeLedger(registered=[ALICE, BOB, CAROL])
        adapter = FakeFhevmAdapter(ledger) if backend == "fhevm" else FakeCofheAdapter(ledger)
        svc = handler.Services(
            settings=settings,
            ledger=ledger,
            adapter=adapter,
            signer=kwargs.get("signer") or FakeSigner(),
            directory=kwargs.get("directory") or FakeDirectory([profile(BOB, "bob"), profile(CAROL, "carol")]),
            store=kwargs.get("store") or FakeStateStore(),
        )
        monkeypatch.setattr(handler, "build_services", lambda _settings: svc)
        return svc

    monkeypatch.setattr(handler, "_throttles", {})
    return build


def _run(svc, **event):
    return handler.run_once(event, settings=svc.settings)


def test_register_is_idempotent(services):
    svc = services(ledger=FakeLedger())

    first = _run(svc, action="register", principal=ALICE)
    second = _run(svc, action="register", principal=ALICE)

    assert first["created"] is True and first["tx_hash"].startswith("0x")
    assert second == {"ok": True, "registered": True, "created": False}
    assert svc.ledger.calls.count("register") == 1


def test_vote_persists_marker_and_offers_match_check(services):
    svc = services()

    first = _run(svc, action="vote", principal=BOB, target=ALICE, like=True)
    assert first["ok"] and first["offer_match_check"] is False

    second = _run(svc, action="vote", principal=ALICE, target=BOB, like=True)
    assert second["offer_match_check"] is True
    assert svc.store.state.voted == {pair_key(BOB, ALICE): True, pair_key(ALICE, BOB): True}


def test_duplicate_vote_is_reported(services):
    svc = services()
    _run(svc, action="vote", principal=ALICE, target=BOB, like=True)

    out = _run(svc, action="vote", principal=ALICE, target=BOB, like=False)

    assert out == {"ok": False, "error": "Already voted"}


def test_vote_requires_boolean_like(services):
    svc = services()
    out = _run(svc, action="vote", principal=ALICE, target=BOB, like="yes")
    assert out["ok"] is False and "like" in out["error"]
    assert svc.ledger.votes == {}


def test_candidates_and_activity(services):
    svc = services()
    _run(svc, action="vote", principal=ALICE, target=BOB, like=True)
    _run(svc, action="vote", principal=BOB, target=ALICE, like=False)

    cands = _run(svc, action="candidates", principal=ALICE)
    assert [c["name"] for c in cands["candidates"]] == ["carol"]

    activity = _run(svc, action="activity", principal=ALICE)
    assert activity["activity"] == [{"address": BOB.lower(), "name": "bob", "voted_back": True}]


@pytest.mark.parametrize("backend", ["fhevm", "cofhe"])
def test_match_reveals_contact_and_marks_pair(services, backend):
    svc = services(backend)
    _run(svc, action="vote", principal=ALICE, target=BOB, like=True)
    _run(svc, action="vote", principal=BOB, target=ALICE, like=True)

    out = _run(svc, action="match", principal=ALICE, target=BOB)

    assert out["ok"] is True
    assert out["state"] == "revealed"
    assert out["contact"]["name"] == "bob"
    assert svc.store.state.is_revealed(ALICE, BOB)


def test_match_negative_never_touches_directory(services):
    directory = FakeDirectory([profile(BOB, "bob")])
    svc = services(directory=directory)
    _run(svc, action="vote", principal=ALICE, target=BOB, like=True)
    _run(svc, action="vote", principal=BOB, target=ALICE, like=False)

    out = _run(svc, action="match", principal=ALICE, target=BOB)

    assert out == {"ok": True, "state": "not_matched"}
    assert directory.reads == []
    assert not svc.store.state.is_revealed(ALICE, BOB)


def test_match_error_is_reported_with_cause(services):
    svc = services(signer=FakeSigner(reject=True))
    _run(svc, action="vote", principal=ALICE, target=BOB, like=True)
    _run(svc, action="vote", principal=BOB, target=ALICE, like=True)

    out = _run(svc, action="match", principal=ALICE, target=BOB)

    assert out["ok"] is False
    assert out["state"] == "error"
    assert "rejected" in out["error"]


def test_match_already_revealed_is_not_checked_again(services):
    svc = services()
    _run(svc, action="vote", principal=ALICE, target=BOB, like=True)
    _run(svc, action="vote", principal=BOB, target=ALICE, like=True)
    _run(svc, action="match", principal=ALICE, target=BOB)

    again = _run(svc, action="match", principal=ALICE, target=BOB)

    assert again == {"ok": True, "state": "revealed", "already_revealed": True}
    assert svc.ledger.calls.count("prepareMatchCheck") == 1
    assert len(svc.signer.requests) == 1
    assert svc.directory.reads == [BOB.lower()]


def test_match_refresh_runs_a_new_check(services):
    svc = services()
    _run(svc, action="vote", principal=ALICE, target=BOB, like=True)
    _run(svc, action="vote", principal=BOB, target=ALICE, like=True)
    _run(svc, action="match", principal=ALICE, target=BOB)

    out = _run(svc, action="match", principal=ALICE, target=BOB, refresh=True)

    assert out["state"] == "revealed" and out["contact"]["name"] == "bob"
    assert svc.ledger.calls.count("prepareMatchCheck") == 2


@pytest.mark.parametrize("backend", ["fhevm", "cofhe"])
def test_confirmed_match_survives_state_write_failure(services, backend):
    store = FakeStateStore(fail_updates=OptimisticLockError("Gave up updating after 3 conflicts"))
    svc = services(backend, store=store)
    svc.ledger.votes[(ALICE.lower(), BOB.lower())] = True
    svc.ledger.votes[(BOB.lower(), ALICE.lower())] = True

    out = _run(svc, action="match", principal=ALICE, target=BOB)

    assert out["ok"] is True
    assert out["state"] == "revealed"
    assert out["contact"]["name"] == "bob"
    assert out["state_saved"] is False


def test_confirmed_vote_survives_state_write_failure(services):
    store = FakeStateStore(fail_updates=ValueError("Failed to decrypt client state: invalid Fernet token"))
    svc = services(store=store)

    out = _run(svc, action="vote", principal=ALICE, target=BOB, like=True)

    assert out["ok"] is True and out["tx_hash"].startswith("0x")
    assert out["state_saved"] is False
    assert svc.ledger.votes == {(ALICE.lower(), BOB.lower()): True}


def test_unknown_action(services):
    svc = services()
    assert handler.run_once({"action": "swipe"}, settings=svc.settings) == {
        "ok": False,
        "error": "Unknown action: 'swipe'",
    }


def test_lambda_handler_configures_logging(monkeypatch):
    monkeypatch.setenv(handler.ENV_ENVIRONMENT, "development")
    try:
        assert handler.lambda_handler({}, None) == {"ok": False, "error": "Unknown action: None"}
    finally:
        structlog.reset_defaults()
