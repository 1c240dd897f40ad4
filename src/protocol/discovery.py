from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol

import structlog
from pydantic import BaseModel

from common.directory import DirectoryError, Profile
from common.ledger import LedgerApiError, LedgerError

from .errors import DirectoryUnavailable
from .voting import VotedCache, VoteLedger


log = structlog.get_logger(__name__)


class ProfileDirectory(Protocol):
    def list_profiles(self, *, exclude: Optional[str] = None) -> List[Profile]: ...

    def get_profiles(self, addresses: Iterable[str]) -> Dict[str, Profile]: ...


class ActivityEntry(BaseModel):
    """
    One target the caller voted on.

    `voted_back` is True/False from a fresh ledger read, or None when the
    read failed. It says nothing about the counterpart's preference.
    """

    address: str
    profile: Optional[Profile] = None
    voted_back: Optional[bool] = None

    @property
    def both_voted(self) -> bool:
        return self.voted_back is True


def pending_candidates(
    directory: ProfileDirectory,
    ledger: VoteLedger,
    cache: VotedCache,
    principal: str,
) -> List[Profile]:
    """
    Directory profiles other than `principal` that `principal` has not voted on.

    Vote existence is read from the ledger for every profile and recorded in
    `cache`. Profiles the ledger refuses to answer for (not registered) are
    skipped.
    """
    try:
        profiles = directory.list_profiles(exclude=principal)
    except DirectoryError as exc:
        raise DirectoryUnavailable(f"Could not load profiles: {exc}") from exc

    pending: List[Profile] = []
    for profile in profiles:
        address = profile.wallet_address
        if address.lower() == principal.lower():
            continue
        try:
            voted = cache.reconcile(ledger, principal, address)
        except LedgerApiError as exc:
            log.info("candidate_skipped", address=address, error=str(exc))
            continue
        if not voted:
            pending.append(profile)
    return pending


def vote_activity(
    directory: ProfileDirectory,
    ledger: VoteLedger,
    cache: VotedCache,
    principal: str,
) -> List[ActivityEntry]:
    """Targets `principal` voted on, each with whether they voted back."""
    targets = cache.voted_targets(principal)
    if not targets:
        return []

    try:
        profiles = directory.get_profiles(targets)
    except DirectoryError as exc:
        log.warning("activity_profiles_unavailable", error=str(exc))
        profiles = {}

    entries: List[ActivityEntry] = []
    for target in targets:
        entry = ActivityEntry(address=target, profile=profiles.get(target.lower()))
        try:
            entry.voted_back = ledger.has_voted(target, principal)
        except LedgerError as exc:
            log.warning("voted_back_check_failed", target=target, error=str(exc))
        entries.append(entry)
    return entries


__all__ = ["ActivityEntry", "pending_candidates", "vote_activity"]
