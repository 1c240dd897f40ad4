from __future__ import annotations

import pytest

from _fakes import ALICE, BOB, FakeFhevmAdapter, FakeLedger
from common.rate_limiter import SlidingWindowRateLimiter
from protocol.compute import HandleComputeTrigger, StoredResultComputeTrigger
from protocol.errors import ComputeFailure
from protocol.voting import VoteSubmitter


class FakeClock:
    def __init__(self, t: float = 0.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def _ledger_with_votes(a_likes_b: bool = True, b_likes_a: bool = True) -> FakeLedger:
    ledger = FakeLedger(registered=[ALICE, BOB])
    sub = VoteSubmitter(ledger, FakeFhevmAdapter(ledger))
    sub.submit(ALICE, BOB, a_likes_b)
    sub.submit(BOB, ALICE, b_likes_a)
    return ledger


def test_handle_trigger_returns_fresh_nonzero_handle():
    ledger = _ledger_with_votes()
    trigger = HandleComputeTrigger(ledger)

    first = trigger.request_match_compute(ALICE, BOB)
    second = trigger.request_match_compute(ALICE, BOB)

    assert first.principal == ALICE
    assert first.contract_address == ledger.contract_address
    assert not first.is_absent
    assert second.value != first.value
    assert ledger.calls.count("prepareMatchCheck") == 2


def test_compute_before_both_votes_fails_without_ledger_evaluation():
    ledger = FakeLedger(registered=[ALICE, BOB])
    VoteSubmitter(ledger, FakeFhevmAdapter(ledger)).submit(ALICE, BOB, True)

    with pytest.raises(ComputeFailure, match="other person has not voted"):
        HandleComputeTrigger(ledger).request_match_compute(ALICE, BOB)
    with pytest.raises(ComputeFailure, match="not voted on this person"):
        StoredResultComputeTrigger(ledger).request_match_compute(BOB, ALICE)
    assert "prepareMatchCheck" not in ledger.calls
    assert "checkMatch" not in ledger.calls


def test_absent_handle_is_compute_failure():
    ledger = _ledger_with_votes()
    ledger.get_match_result_handle = lambda initiator: 0

    with pytest.raises(ComputeFailure, match="No match result handle"):
        HandleComputeTrigger(ledger).request_match_compute(ALICE, BOB)


def test_stored_result_trigger_is_account_scoped():
    ledger = _ledger_with_votes()

    handle = StoredResultComputeTrigger(ledger).request_match_compute(ALICE, BOB)

    assert handle.account_scoped
    assert ledger.calls[-1] == "checkMatch"


def test_ledger_failure_during_evaluation_is_compute_failure():
    ledger = _ledger_with_votes()
    ledger.fail_has_voted = True

    with pytest.raises(ComputeFailure, match="Could not read votes"):
        HandleComputeTrigger(ledger).request_match_compute(ALICE, BOB)


def test_throttle_limits_repeated_checks_per_pair():
    ledger = _ledger_with_votes()
    clock = FakeClock()
    throttle = SlidingWindowRateLimiter(2, 60.0, clock=clock)
    trigger = StoredResultComputeTrigger(ledger, throttle=throttle)

    trigger.request_match_compute(ALICE, BOB)
    trigger.request_match_compute(ALICE, BOB)
    with pytest.raises(ComputeFailure, match="Too many match checks"):
        trigger.request_match_compute(ALICE, BOB)
    assert ledger.calls.count("checkMatch") == 2

    # Other direction has its own budget
    trigger.request_match_compute(BOB, ALICE)

    clock.advance(60.0)
    trigger.request_match_compute(ALICE, BOB)
    assert ledger.calls.count("checkMatch") == 4


def test_failed_vote_precondition_does_not_spend_throttle_budget():
    ledger = FakeLedger(registered=[ALICE, BOB])
    VoteSubmitter(ledger, FakeFhevmAdapter(ledger)).submit(ALICE, BOB, True)
    throttle = SlidingWindowRateLimiter(1, 60.0, clock=FakeClock())
    trigger = StoredResultComputeTrigger(ledger, throttle=throttle)

    for _ in range(3):
        with pytest.raises(ComputeFailure, match="other person has not voted"):
            trigger.request_match_compute(ALICE, BOB)
    assert throttle.remaining((ALICE.lower(), BOB.lower())) == 1

    VoteSubmitter(ledger, FakeFhevmAdapter(ledger)).submit(BOB, ALICE, True)
    trigger.request_match_compute(ALICE, BOB)
    assert ledger.calls.count("checkMatch") == 1
