from __future__ import annotations

from typing import List, Optional, Protocol

import structlog

from common.http import ServiceError
from common.ledger import LedgerError, LedgerRevertError, TxReceipt
from fhe.base import EncryptedInput, EncryptionAdapter
from fhe.sealing import SealingError
from state.models import ClientState, pair_key

from .errors import EncryptionFailure, ScopeMismatch, SubmissionRejected
from .models import SubmissionReceipt, Vote


log = structlog.get_logger(__name__)


class VoteLedger(Protocol):
    contract_address: str

    def has_voted(self, voter: str, target: str) -> bool: ...

    def submit_vote(self, voter: str, target: str, ciphertext: str, proof: str) -> TxReceipt: ...


class VotedCache:
    """
    Read-through record of (voter, target) pairs with a vote on the ledger.

    Backed by `ClientState.voted`. `known()` answers from memory and is only
    fit for display; `reconcile()` reads the ledger and corrects the entry, and
    is what every decision goes through.
    """

    def __init__(self, state: Optional[ClientState] = None) -> None:
        self._state = state if state is not None else ClientState.empty()

    @property
    def state(self) -> ClientState:
        return self._state

    def known(self, voter: str, target: str) -> bool:
        return bool(self._state.voted.get(pair_key(voter, target)))

    def record(self, voter: str, target: str) -> None:
        self._state.voted[pair_key(voter, target)] = True

    def forget(self, voter: str, target: str) -> None:
        self._state.voted.pop(pair_key(voter, target), None)

    def voted_targets(self, voter: str) -> List[str]:
        return self._state.voted_targets(voter)

    def reconcile(self, ledger: VoteLedger, voter: str, target: str) -> bool:
        fresh = ledger.has_voted(voter, target)
        if fresh:
            self.record(voter, target)
        elif self.known(voter, target):
            log.info("voted_cache_corrected", voter=voter, target=target)
            self.forget(voter, target)
        return fresh


class VoteSubmitter:
    """Encrypts one preference bit and submits it, waiting for ledger confirmation."""

    def __init__(
        self,
        ledger: VoteLedger,
        adapter: EncryptionAdapter,
        *,
        cache: Optional[VotedCache] = None,
    ) -> None:
        self._ledger = ledger
        self._adapter = adapter
        self.cache = cache or VotedCache()

    def submit(self, voter: str, target: str, like: bool) -> SubmissionReceipt:
        contract = self._ledger.contract_address
        if contract.lower() != self._adapter.contract_address.lower():
            raise ScopeMismatch(
                f"{self._adapter.backend} adapter is bound to {self._adapter.contract_address}, "
                f"ledger is {contract}"
            )

        vote = self._encrypt(voter, target, like)
        try:
            receipt = self._ledger.submit_vote(voter, target, vote.ciphertext, vote.validity_proof)
        except LedgerRevertError as exc:
            log.info("vote_rejected", voter=voter, target=target, reason=exc.reason)
            raise SubmissionRejected(exc.reason) from exc
        except LedgerError as exc:
            log.warning("vote_submission_failed", voter=voter, target=target, error=str(exc))
            raise SubmissionRejected(str(exc)) from exc

        if not receipt.confirmed:
            raise SubmissionRejected(f"Vote transaction {receipt.tx_hash} was not confirmed")

        self.cache.record(voter, target)
        log.info("vote_submitted", voter=voter, target=target, tx_hash=receipt.tx_hash)
        return SubmissionReceipt(
            voter=voter,
            target=target,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )

    def has_voted(self, voter: str, target: str) -> bool:
        """Ledger-confirmed vote existence; refreshes the local cache."""
        return self.cache.reconcile(self._ledger, voter, target)

    def counterpart_voted(self, voter: str, target: str) -> bool:
        """
        Whether `target` already voted on `voter`, used after a like to offer
        an immediate match check. A failed lookup only means "don't offer yet".
        """
        try:
            return self.has_voted(target, voter)
        except LedgerError as exc:
            log.warning("counterpart_vote_check_failed", voter=voter, target=target, error=str(exc))
            return False

    def _encrypt(self, voter: str, target: str, like: bool) -> Vote:
        try:
            enc: EncryptedInput = self._adapter.encrypt(self._ledger.contract_address, voter, like)
        except (ServiceError, SealingError) as exc:
            raise EncryptionFailure(f"Could not encrypt vote: {exc}") from exc
        if not enc.handle or not enc.proof:
            raise EncryptionFailure("Backend returned an empty ciphertext or proof")
        return Vote(voter=voter, target=target, ciphertext=enc.handle, validity_proof=enc.proof)
