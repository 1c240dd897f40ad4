from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import structlog

from common.ledger import LedgerClient, LedgerError, TxReceipt
from common.rate_limiter import RateLimitError, SlidingWindowRateLimiter

from .errors import ComputeFailure
from .models import ResultHandle


log = structlog.get_logger(__name__)


class MatchComputeTrigger(ABC):
    """
    Asks the ledger to evaluate like(A->B) AND like(B->A) and returns a
    reference to the encrypted result, scoped to the initiator.

    Every call re-evaluates; a handle from an earlier run is never reused.
    Both votes must be on the ledger first. An optional keyed limiter
    throttles repeated evaluations of the same pair.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        *,
        throttle: Optional[SlidingWindowRateLimiter] = None,
    ) -> None:
        self._ledger = ledger
        self._throttle = throttle

    @property
    def ledger(self) -> LedgerClient:
        return self._ledger

    def request_match_compute(self, initiator: str, counterparty: str) -> ResultHandle:
        self._require_votes(initiator, counterparty)

        if self._throttle is not None:
            try:
                self._throttle.acquire((initiator.lower(), counterparty.lower()), blocking=False)
            except RateLimitError as exc:
                raise ComputeFailure("Too many match checks for this pair; try again shortly") from exc

        try:
            receipt = self._evaluate(initiator, counterparty)
        except LedgerError as exc:
            raise ComputeFailure(f"Match computation failed: {exc}") from exc
        if not receipt.confirmed:
            raise ComputeFailure(f"Match computation {receipt.tx_hash} was not confirmed")

        log.info("match_computed", initiator=initiator, counterparty=counterparty, tx_hash=receipt.tx_hash)
        return self._handle_for(initiator)

    def _require_votes(self, initiator: str, counterparty: str) -> None:
        try:
            mine = self._ledger.has_voted(initiator, counterparty)
            theirs = self._ledger.has_voted(counterparty, initiator)
        except LedgerError as exc:
            raise ComputeFailure(f"Could not read votes: {exc}") from exc
        if not mine:
            raise ComputeFailure("You have not voted on this person yet")
        if not theirs:
            raise ComputeFailure("The other person has not voted yet")

    @abstractmethod
    def _evaluate(self, initiator: str, counterparty: str) -> TxReceipt:
        """Send the evaluation transaction and return its confirmed receipt."""

    @abstractmethod
    def _handle_for(self, initiator: str) -> ResultHandle:
        """Locate the freshly computed result for `initiator`."""


class HandleComputeTrigger(MatchComputeTrigger):
    """prepareMatchCheck, then read the initiator's result handle; zero means absent."""

    def _evaluate(self, initiator: str, counterparty: str) -> TxReceipt:
        return self._ledger.prepare_match_check(initiator, counterparty)

    def _handle_for(self, initiator: str) -> ResultHandle:
        try:
            value = self._ledger.get_match_result_handle(initiator)
        except LedgerError as exc:
            raise ComputeFailure(f"Could not read result handle: {exc}") from exc
        handle = ResultHandle(
            principal=initiator,
            contract_address=self._ledger.contract_address,
            value=value,
        )
        if handle.is_absent:
            raise ComputeFailure("No match result handle found")
        return handle


class StoredResultComputeTrigger(MatchComputeTrigger):
    """checkMatch; the result stays on the ledger under the initiator's account."""

    def _evaluate(self, initiator: str, counterparty: str) -> TxReceipt:
        return self._ledger.check_match(initiator, counterparty)

    def _handle_for(self, initiator: str) -> ResultHandle:
        return ResultHandle(principal=initiator, contract_address=self._ledger.contract_address)


__all__ = [
    "HandleComputeTrigger",
    "MatchComputeTrigger",
    "StoredResultComputeTrigger",
]
