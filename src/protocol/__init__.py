"""
Mutual-match protocol core.

Modules:
- voting: encrypted vote submission and the read-through voted cache
- compute: ledger match evaluation (handle or stored-result flavour)
- authorizers: the two decrypt flows behind one DecryptAuthorizer contract
- reveal: contact reveal, reachable only from a confirmed match
- orchestrator: run state machine, run-in-progress guard, retry
- discovery: candidate listing and vote activity
"""

from .authorizers import (
    CoprocessorDecryptAuthorizer,
    DecryptAuthorizer,
    UserDecryptAuthorizer,
    interpret_bit,
)
from .compute import HandleComputeTrigger, MatchComputeTrigger, StoredResultComputeTrigger
from .errors import (
    AuthorizationRejected,
    ComputeFailure,
    DecryptFailure,
    DecryptTimeout,
    DirectoryUnavailable,
    EncryptionFailure,
    InvalidTransition,
    MatchError,
    RunInProgress,
    ScopeMismatch,
    SubmissionRejected,
)
from .models import ContactRecord, MatchOutcome, MatchQuery, ResultHandle, SubmissionReceipt
from .orchestrator import ActiveRuns, ProtocolOrchestrator
from .reveal import ConfirmedMatch, RevealGate
from .states import ProtocolState
from .voting import VotedCache, VoteSubmitter

__all__ = [
    "ActiveRuns",
    "AuthorizationRejected",
    "ComputeFailure",
    "ConfirmedMatch",
    "ContactRecord",
    "CoprocessorDecryptAuthorizer",
    "DecryptAuthorizer",
    "DecryptFailure",
    "DecryptTimeout",
    "DirectoryUnavailable",
    "EncryptionFailure",
    "HandleComputeTrigger",
    "InvalidTransition",
    "MatchComputeTrigger",
    "MatchError",
    "MatchOutcome",
    "MatchQuery",
    "ProtocolOrchestrator",
    "ProtocolState",
    "ResultHandle",
    "RevealGate",
    "RunInProgress",
    "ScopeMismatch",
    "StoredResultComputeTrigger",
    "SubmissionReceipt",
    "SubmissionRejected",
    "UserDecryptAuthorizer",
    "VotedCache",
    "VoteSubmitter",
    "interpret_bit",
]
