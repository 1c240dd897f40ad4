from __future__ import annotations

import pytest

from _fakes import ALICE, BOB, FakeDirectory, profile
from protocol.errors import InvalidTransition
from protocol.models import MatchOutcome, MatchQuery
from protocol.reveal import ConfirmedMatch, RevealGate


QUERY = MatchQuery(initiator=ALICE, counterparty=BOB)


def test_confirmed_match_cannot_be_built_from_negative_outcome():
    with pytest.raises(InvalidTransition):
        ConfirmedMatch(QUERY, MatchOutcome(matched=False))


def test_reveal_requires_confirmed_match_capability():
    directory = FakeDirectory([profile(BOB, "bob")])
    with pytest.raises(InvalidTransition):
        RevealGate(directory).reveal(QUERY)  # type: ignore[arg-type]
    assert directory.reads == []


def test_reveal_fetches_once_per_confirmed_match():
    directory = FakeDirectory([profile(BOB, "bob", telegram_id="bob_tg")])
    gate = RevealGate(directory)
    confirmed = ConfirmedMatch(QUERY, MatchOutcome(matched=True))

    first = gate.reveal(confirmed)
    second = gate.reveal(confirmed)

    assert first == second
    assert first.name == "bob"
    assert first.telegram_id == "bob_tg"
    assert first.twitter_id is None
    assert not first.placeholder
    assert directory.reads == [BOB.lower()]


def test_reveal_of_counterparty_without_profile_is_none():
    gate = RevealGate(FakeDirectory())
    assert gate.reveal(ConfirmedMatch(QUERY, MatchOutcome(matched=True))) is None


def test_directory_outage_falls_back_to_placeholder():
    gate = RevealGate(FakeDirectory(fail=True))

    record = gate.reveal(ConfirmedMatch(QUERY, MatchOutcome(matched=True)))

    assert record.placeholder
    assert record.name == "User"
    assert record.image_url == f"https://api.dicebear.com/7.x/adventurer/svg?seed={BOB}"
    assert record.principal == BOB


def test_each_confirmed_match_reads_the_directory_afresh():
    directory = FakeDirectory([profile(BOB, "bob")], fail=True)
    gate = RevealGate(directory)

    first = gate.reveal(ConfirmedMatch(QUERY, MatchOutcome(matched=True)))
    assert first.placeholder

    directory.fail = False
    later = ConfirmedMatch(QUERY, MatchOutcome(matched=True))
    assert gate.reveal(later).name == "bob"
    assert gate.reveal(later).name == "bob"
    assert directory.reads == [BOB.lower(), BOB.lower()]
