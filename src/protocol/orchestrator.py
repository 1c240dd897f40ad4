from __future__ import annotations

import threading
from typing import Callable, List, Optional, Set, Tuple

import structlog

from .authorizers import DecryptAuthorizer
from .errors import InvalidTransition, MatchError, RunInProgress
from .models import ContactRecord, MatchOutcome, MatchQuery
from .reveal import ConfirmedMatch, RevealGate
from .states import IN_FLIGHT, STARTABLE, ProtocolState


log = structlog.get_logger(__name__)

Observer = Callable[[ProtocolState], None]


class ActiveRuns:
    """Process-wide registry of (initiator, counterparty) pairs with a run in flight."""

    def __init__(self) -> None:
        self._pairs: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def claim(self, pair: Tuple[str, str]) -> bool:
        with self._lock:
            if pair in self._pairs:
                return False
            self._pairs.add(pair)
            return True

    def release(self, pair: Tuple[str, str]) -> None:
        with self._lock:
            self._pairs.discard(pair)

    def __contains__(self, pair: object) -> bool:
        with self._lock:
            return pair in self._pairs


_default_runs = ActiveRuns()


class ProtocolOrchestrator:
    """
    Drives one match check at a time through the configured authorizer.

    State is observable through `state` and `subscribe()`; reading it has no
    side effects. A run that fails lands in ERROR with the cause in
    `error_message` and stays there until `retry()`. Nothing is carried
    from one run to the next: every `start` computes and decrypts again.
    """

    def __init__(
        self,
        authorizer: DecryptAuthorizer,
        gate: RevealGate,
        *,
        active_runs: Optional[ActiveRuns] = None,
        on_revealed: Optional[Callable[[MatchQuery, Optional[ContactRecord]], None]] = None,
    ) -> None:
        self._authorizer = authorizer
        self._gate = gate
        self._runs = active_runs if active_runs is not None else _default_runs
        self._on_revealed = on_revealed
        self._observers: List[Observer] = []
        self._state = ProtocolState.IDLE
        self._error: Optional[str] = None
        self._query: Optional[MatchQuery] = None
        self._outcome: Optional[MatchOutcome] = None
        self._confirmed: Optional[ConfirmedMatch] = None
        self._running = False

    # --------------- Observation ---------------
    @property
    def state(self) -> ProtocolState:
        return self._state

    @property
    def error_message(self) -> Optional[str]:
        return self._error

    @property
    def outcome(self) -> Optional[MatchOutcome]:
        return self._outcome

    @property
    def query(self) -> Optional[MatchQuery]:
        return self._query

    def subscribe(self, callback: Observer) -> Callable[[], None]:
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    # --------------- Commands ---------------
    def start(self, initiator: str, counterparty: str) -> ProtocolState:
        if self._running or self._state in IN_FLIGHT:
            raise RunInProgress("A match check is already running")
        if self._state not in STARTABLE:
            raise InvalidTransition(f"Cannot start from {self._state.value}; retry first")
        if initiator.lower() == counterparty.lower():
            raise InvalidTransition("Cannot check a match with yourself")

        query = MatchQuery(initiator=initiator, counterparty=counterparty)
        if not self._runs.claim(query.pair):
            raise RunInProgress("A match check for this pair is already running")

        self._running = True
        self._query = query
        self._outcome = None
        self._confirmed = None
        self._error = None
        try:
            outcome = self._authorizer.authorize(query, self._transition)
        except MatchError as exc:
            log.info("match_run_failed", initiator=initiator, counterparty=counterparty, error=str(exc))
            self._fail(str(exc))
        except Exception as exc:
            log.exception("match_run_crashed", initiator=initiator, counterparty=counterparty)
            self._fail(f"Unexpected error: {exc}")
        else:
            self._outcome = outcome
            if outcome.matched:
                self._confirmed = ConfirmedMatch(query, outcome)
                self._transition(ProtocolState.MATCHED)
            else:
                self._transition(ProtocolState.NOT_MATCHED)
            log.info("match_run_finished", initiator=initiator, counterparty=counterparty, state=self._state.value)
        finally:
            self._running = False
            self._runs.release(query.pair)
        return self._state

    def retry(self) -> ProtocolState:
        """Reset ERROR to IDLE so the next `start` begins from scratch."""
        if self._state == ProtocolState.IDLE:
            return self._state
        if self._state != ProtocolState.ERROR:
            raise InvalidTransition(f"Nothing to retry from {self._state.value}")
        self._error = None
        self._outcome = None
        self._confirmed = None
        self._transition(ProtocolState.IDLE)
        return self._state

    def reveal(self) -> Optional[ContactRecord]:
        """Counterparty's contact record; only after a confirmed match."""
        if self._state not in (ProtocolState.MATCHED, ProtocolState.REVEALED) or self._confirmed is None:
            raise InvalidTransition(f"Cannot reveal from {self._state.value}")
        record = self._gate.reveal(self._confirmed)
        if self._state != ProtocolState.REVEALED:
            self._transition(ProtocolState.REVEALED)
            if self._on_revealed is not None:
                self._on_revealed(self._confirmed.query, record)
        return record

    # --------------- Internal ---------------
    def _fail(self, message: str) -> None:
        self._error = message
        self._transition(ProtocolState.ERROR)

    def _transition(self, new_state: ProtocolState) -> None:
        if new_state == self._state:
            return
        log.debug("protocol_state", previous=self._state.value, state=new_state.value)
        self._state = new_state
        for observer in list(self._observers):
            observer(new_state)


__all__ = ["ActiveRuns", "ProtocolOrchestrator"]
