from __future__ import annotations

import threading
import weakref
from typing import Optional, Protocol

import structlog

from common.directory import DirectoryError, Profile

from .errors import InvalidTransition
from .models import ContactRecord, MatchOutcome, MatchQuery


log = structlog.get_logger(__name__)


class ProfileSource(Protocol):
    def get_profile(self, address: str) -> Optional[Profile]: ...


class ConfirmedMatch:
    """
    Proof that a run ended in a positive match. The only thing `RevealGate`
    accepts, so no negative or failed run can reach the directory.
    """

    __slots__ = ("_query", "__weakref__")

    def __init__(self, query: MatchQuery, outcome: MatchOutcome) -> None:
        if not outcome.matched:
            raise InvalidTransition("Contact details are only available for a confirmed match")
        self._query = query

    @property
    def query(self) -> MatchQuery:
        return self._query

    @property
    def counterparty(self) -> str:
        return self._query.counterparty


def contact_from_profile(profile: Profile) -> ContactRecord:
    return ContactRecord(
        principal=profile.wallet_address,
        name=profile.name,
        image_url=profile.image_url,
        telegram_id=profile.telegram_id or None,
        twitter_id=profile.twitter_id or None,
    )


class RevealGate:
    """
    Reads the counterparty's contact record once per confirmed match.

    Records are cached per `ConfirmedMatch`, not per pair: a later run that
    confirms the same pair again reads the directory again.

    - A counterparty without a profile reveals as `None`.
    - Directory failures do not block the reveal: a placeholder identity is
      returned and the failure is logged.
    """

    def __init__(self, directory: ProfileSource) -> None:
        self._directory = directory
        self._revealed: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()
        self._lock = threading.Lock()

    def reveal(self, confirmed: ConfirmedMatch) -> Optional[ContactRecord]:
        if not isinstance(confirmed, ConfirmedMatch):
            raise InvalidTransition("reveal requires a confirmed match")
        with self._lock:
            if confirmed in self._revealed:
                return self._revealed[confirmed]
            record = self._fetch(confirmed.counterparty)
            self._revealed[confirmed] = record
            return record

    def _fetch(self, counterparty: str) -> Optional[ContactRecord]:
        try:
            profile = self._directory.get_profile(counterparty)
        except DirectoryError as exc:
            log.warning("directory_unavailable", counterparty=counterparty, error=str(exc))
            return ContactRecord.placeholder_for(counterparty)
        if profile is None:
            return None
        log.info("contact_revealed", counterparty=counterparty)
        return contact_from_profile(profile)


__all__ = ["ConfirmedMatch", "RevealGate", "contact_from_profile"]
