from __future__ import annotations


class MatchError(RuntimeError):
    """Base error of the match protocol; `str(exc)` is the cause shown to the user."""


class EncryptionFailure(MatchError):
    """The backend could not produce a ciphertext + validity proof."""


class SubmissionRejected(MatchError):
    """The ledger rejected a vote (duplicate, unregistered principal, ...)."""


class ComputeFailure(MatchError):
    """Match evaluation was not confirmed, its preconditions failed, or the handle is absent."""


class AuthorizationRejected(MatchError):
    """The signing authority declined (or failed) to authorize decryption."""


class DecryptFailure(MatchError):
    """Decryption could not be completed or returned no usable value."""


class DecryptTimeout(DecryptFailure):
    """The coprocessor did not report a decrypted result within the poll budget."""


class DirectoryUnavailable(MatchError):
    """
    The contact directory could not be reached.

    Raised only where the directory is the whole answer (candidate listing).
    A reveal never raises it: `RevealGate` falls back to a placeholder record.
    """


class RunInProgress(MatchError):
    """A flow for the same (initiator, counterparty) pair is already running."""


class InvalidTransition(MatchError):
    """The requested operation is not allowed from the orchestrator's current state."""


class ScopeMismatch(ValueError):
    """An adapter bound to one ledger contract was used against another."""


__all__ = [
    "AuthorizationRejected",
    "ComputeFailure",
    "DecryptFailure",
    "DecryptTimeout",
    "DirectoryUnavailable",
    "EncryptionFailure",
    "InvalidTransition",
    "MatchError",
    "RunInProgress",
    "ScopeMismatch",
    "SubmissionRejected",
]
