from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Callable

import structlog

from common.http import ServiceError
from common.ledger import LedgerClient, LedgerError, parse_uint
from common.wallet import WalletError, WalletRejectedError
from fhe.cofhe import CofheAdapter, StatementSigner
from fhe.fhevm import FhevmAdapter, pick_result
from fhe.sealing import SealingError

from .compute import MatchComputeTrigger
from .errors import AuthorizationRejected, DecryptFailure, DecryptTimeout
from .models import DecryptGrant, DecryptJob, MatchOutcome, MatchQuery, ResultHandle
from .states import ProtocolState


log = structlog.get_logger(__name__)

StateCallback = Callable[[ProtocolState], None]

_TRUE_STRINGS = {"true", "1"}


def interpret_bit(value: Any) -> bool:
    """
    Decrypted result -> matched?

    `1` is accepted as bool, int, decimal or 0x-hex string, or big-endian
    bytes. Any other present value is a negative. A missing value is not a
    result at all and raises `DecryptFailure`.
    """
    if value is None:
        raise DecryptFailure("Decryption returned no value")
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value == 1
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(bytes(value), "big") == 1
    if isinstance(value, str):
        s = value.strip().lower()
        if s in _TRUE_STRINGS:
            return True
        if s.startswith("0x"):
            try:
                return parse_uint(s) == 1
            except ValueError:
                return False
        return False
    raise DecryptFailure(f"Unrecognized decrypted value of type {type(value).__name__}")


class DecryptAuthorizer(ABC):
    """
    Runs one match check to a definite outcome.

    Implementations drive the same contract with different internal states:
    they report each state through `on_state`, return `MatchOutcome` on a
    definite result, and raise a `MatchError` otherwise. A failure is never
    reported as a negative outcome.
    """

    def __init__(self, trigger: MatchComputeTrigger) -> None:
        self._trigger = trigger

    @property
    def contract_address(self) -> str:
        return self._trigger.ledger.contract_address

    @abstractmethod
    def authorize(self, query: MatchQuery, on_state: StateCallback) -> MatchOutcome:
        ...


class UserDecryptAuthorizer(DecryptAuthorizer):
    """computing -> signing -> decrypting; the holder signs a one-off grant per run."""

    def __init__(
        self,
        trigger: MatchComputeTrigger,
        adapter: FhevmAdapter,
        signer: StatementSigner,
        *,
        window_days: int = 1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(trigger)
        self._adapter = adapter
        self._signer = signer
        self._window_days = window_days
        self._clock = clock

    def authorize(self, query: MatchQuery, on_state: StateCallback) -> MatchOutcome:
        on_state(ProtocolState.COMPUTING)
        handle = self._trigger.request_match_compute(query.initiator, query.counterparty)

        on_state(ProtocolState.SIGNING)
        grant = self._request_grant(query.initiator)

        on_state(ProtocolState.DECRYPTING)
        value = self._decrypt(handle, grant, query.initiator)
        return MatchOutcome(matched=interpret_bit(value))

    def _request_grant(self, principal: str) -> DecryptGrant:
        scopes = [self.contract_address]
        public_key, private_key = self._adapter.generate_keypair()
        issued_at = int(self._clock())
        try:
            statement = self._adapter.build_authorization_statement(
                public_key, scopes, issued_at, self._window_days
            )
        except ServiceError as exc:
            raise DecryptFailure(f"Could not prepare the decryption request: {exc}") from exc
        try:
            signature = self._signer.sign_authorization_statement(principal, statement)
        except WalletRejectedError as exc:
            raise AuthorizationRejected(f"Signature request was rejected: {exc}") from exc
        except WalletError as exc:
            raise AuthorizationRejected(f"Signing failed: {exc}") from exc
        return DecryptGrant(
            public_key=public_key,
            private_key=private_key,
            signature=signature,
            issued_at=issued_at,
            window_days=self._window_days,
        )

    def _decrypt(self, handle: ResultHandle, grant: DecryptGrant, principal: str) -> Any:
        if grant.is_expired(self._clock()):
            raise DecryptFailure("Decryption grant expired before use")
        try:
            results = self._adapter.decrypt(
                [handle.hex],
                grant.private_key,
                grant.public_key,
                grant.signature,
                [self.contract_address],
                principal,
                grant.issued_at,
                grant.window_days,
            )
        except (ServiceError, SealingError) as exc:
            raise DecryptFailure(f"Decryption failed: {exc}") from exc
        try:
            return pick_result(results, handle.hex)
        except KeyError as exc:
            raise DecryptFailure("Decryption returned no value for the result handle") from exc


class CoprocessorDecryptAuthorizer(DecryptAuthorizer):
    """
    computing -> requesting_decrypt -> polling.

    The ledger asks the coprocessor to decrypt the stored bit; the client
    polls `getDecryptedResult` at `poll_interval` for at most `poll_attempts`
    reads, then gives up with `DecryptTimeout`.
    """

    def __init__(
        self,
        trigger: MatchComputeTrigger,
        adapter: CofheAdapter,
        signer: StatementSigner,
        *,
        poll_attempts: int = 30,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(trigger)
        if poll_attempts <= 0:
            raise ValueError("poll_attempts must be > 0")
        self._adapter = adapter
        self._signer = signer
        self._poll_attempts = poll_attempts
        self._poll_interval = poll_interval
        self._sleep = sleep

    @property
    def ledger(self) -> LedgerClient:
        return self._trigger.ledger

    def authorize(self, query: MatchQuery, on_state: StateCallback) -> MatchOutcome:
        # permit signing counts as part of computing
        on_state(ProtocolState.COMPUTING)
        self._ensure_permit(query.initiator)
        self._trigger.request_match_compute(query.initiator, query.counterparty)

        on_state(ProtocolState.REQUESTING_DECRYPT)
        try:
            receipt = self.ledger.request_decrypt(query.initiator)
        except LedgerError as exc:
            raise DecryptFailure(f"Decrypt request failed: {exc}") from exc
        if not receipt.confirmed:
            raise DecryptFailure(f"Decrypt request {receipt.tx_hash} was not confirmed")

        on_state(ProtocolState.POLLING)
        job = self._poll(query.initiator)
        return MatchOutcome(matched=interpret_bit(job.result_bit))

    def _ensure_permit(self, principal: str) -> None:
        try:
            self._adapter.ensure_permit(principal, self._signer)
        except WalletRejectedError as exc:
            raise AuthorizationRejected(f"Permit signature was rejected: {exc}") from exc
        except ServiceError as exc:
            raise AuthorizationRejected(f"Could not establish decrypt permit: {exc}") from exc

    def _poll(self, initiator: str) -> DecryptJob:
        job = DecryptJob()
        while job.attempts < self._poll_attempts:
            if job.attempts:
                self._sleep(self._poll_interval)
            job.attempts += 1
            try:
                bit, decrypted = self.ledger.get_decrypted_result(initiator)
            except LedgerError as exc:
                raise DecryptFailure(f"Could not read decrypted result: {exc}") from exc
            log.debug("decrypt_poll", initiator=initiator, attempt=job.attempts, decrypted=decrypted)
            if decrypted:
                job.status = "ready"
                job.result_bit = bit
                return job
        log.warning("decrypt_poll_exhausted", initiator=initiator, attempts=job.attempts)
        raise DecryptTimeout("Decryption timeout")


__all__ = [
    "CoprocessorDecryptAuthorizer",
    "DecryptAuthorizer",
    "StateCallback",
    "UserDecryptAuthorizer",
    "interpret_bit",
]
