from __future__ import annotations

import os
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from common.config import MatchSettings, load_settings
from common.directory import DirectoryClient
from common.ledger import LedgerClient, LedgerError
from common.observability import configure_logging
from common.rate_limiter import SlidingWindowRateLimiter
from common.wallet import WalletSigner
from fhe.base import EncryptionAdapter
from fhe.cofhe import CofheAdapter
from fhe.fhevm import FhevmAdapter
from protocol.authorizers import CoprocessorDecryptAuthorizer, DecryptAuthorizer, UserDecryptAuthorizer
from protocol.compute import HandleComputeTrigger, StoredResultComputeTrigger
from protocol.discovery import pending_candidates, vote_activity
from protocol.errors import MatchError
from protocol.models import ContactRecord, MatchQuery
from protocol.orchestrator import ProtocolOrchestrator
from protocol.reveal import RevealGate
from protocol.states import ProtocolState
from protocol.voting import VotedCache, VoteSubmitter
from state.models import ClientState
from state.s3_store import ClientStateStore, OptimisticLockError


ENV_ENVIRONMENT = "MATCH_ENVIRONMENT"

log = structlog.get_logger(__name__)

# Warm invocations share one throttle per configuration
_throttles: Dict[Tuple[int, float], SlidingWindowRateLimiter] = {}


@dataclass
class Services:
    settings: MatchSettings
    ledger: LedgerClient
    adapter: EncryptionAdapter
    signer: WalletSigner
    directory: DirectoryClient
    store: ClientStateStore
    _stack: ExitStack = field(default_factory=ExitStack, repr=False)

    def close(self) -> None:
        self._stack.close()


def _compute_throttle(settings: MatchSettings) -> SlidingWindowRateLimiter:
    key = (settings.compute_max_per_window, settings.compute_window_seconds)
    if key not in _throttles:
        _throttles[key] = SlidingWindowRateLimiter(*key)
    return _throttles[key]


def _build_adapter(settings: MatchSettings) -> EncryptionAdapter:
    if settings.backend == "fhevm":
        return FhevmAdapter(
            settings.relayer_url or "",
            settings.contract_address,
            chain_id=settings.chain_id,
        )
    return CofheAdapter(
        settings.coprocessor_url or "",
        settings.contract_address,
        chain_id=settings.chain_id,
    )


def build_services(settings: MatchSettings) -> Services:
    stack = ExitStack()
    ledger = stack.enter_context(
        LedgerClient(
            settings.ledger_url,
            settings.contract_address,
            receipt_timeout=settings.receipt_timeout,
        )
    )
    adapter = _build_adapter(settings)
    stack.callback(adapter.close)
    signer = stack.enter_context(WalletSigner(settings.wallet_url))
    directory = stack.enter_context(DirectoryClient(settings.directory_url, settings.directory_api_key))
    store = ClientStateStore(
        bucket=settings.state_bucket,
        key=settings.state_key,
        fernet_key=settings.fernet_key,
    )
    return Services(
        settings=settings,
        ledger=ledger,
        adapter=adapter,
        signer=signer,
        directory=directory,
        store=store,
        _stack=stack,
    )


def _user_decrypt(services: Services) -> DecryptAuthorizer:
    trigger = HandleComputeTrigger(services.ledger, throttle=_compute_throttle(services.settings))
    return UserDecryptAuthorizer(
        trigger,
        services.adapter,
        services.signer,
        window_days=services.settings.grant_window_days,
    )


def _coprocessor(services: Services) -> DecryptAuthorizer:
    trigger = StoredResultComputeTrigger(services.ledger, throttle=_compute_throttle(services.settings))
    return CoprocessorDecryptAuthorizer(
        trigger,
        services.adapter,
        services.signer,
        poll_attempts=services.settings.poll_attempts,
        poll_interval=services.settings.poll_interval,
    )


_AUTHORIZERS: Dict[str, Callable[[Services], DecryptAuthorizer]] = {
    "fhevm": _user_decrypt,
    "cofhe": _coprocessor,
}


# State write failures after a confirmed ledger action are logged, never raised
_STORE_ERRORS = (OptimisticLockError, ClientError, BotoCoreError, ValueError)


def _update_state(store: ClientStateStore, mutate: Callable[[ClientState], None], *, reason: str) -> bool:
    try:
        store.update(mutate)
    except _STORE_ERRORS as exc:
        log.warning("client_state_not_saved", reason=reason, error=str(exc))
        return False
    return True


def _persist_votes(store: ClientStateStore, before: Dict[str, bool], after: Dict[str, bool]) -> bool:
    """Re-apply this invocation's voted-marker changes on top of the stored state."""
    added = {k: v for k, v in after.items() if v and not before.get(k)}
    removed = [k for k in before if k not in after]
    if not added and not removed:
        return True

    def mutate(state: ClientState) -> None:
        state.voted.update(added)
        for k in removed:
            state.voted.pop(k, None)

    return _update_state(store, mutate, reason="voted")


def _load_cache(store: ClientStateStore) -> Tuple[VotedCache, Dict[str, bool]]:
    state, _etag = store.read()
    return VotedCache(state), dict(state.voted)


def _already_revealed(store: ClientStateStore, principal: str, target: str) -> bool:
    try:
        state, _etag = store.read()
    except _STORE_ERRORS as exc:
        log.warning("client_state_unreadable", error=str(exc))
        return False
    return state.is_revealed(principal, target)


def _contact(record: Optional[ContactRecord]) -> Optional[Dict[str, Any]]:
    return record.model_dump() if record is not None else None


# --------------- Actions ---------------
def _register(services: Services, event: Dict[str, Any]) -> Dict[str, Any]:
    principal = _field(event, "principal")
    if services.ledger.is_registered(principal):
        return {"ok": True, "registered": True, "created": False}
    receipt = services.ledger.register(principal)
    return {"ok": True, "registered": True, "created": True, "tx_hash": receipt.tx_hash}


def _vote(services: Services, event: Dict[str, Any]) -> Dict[str, Any]:
    principal = _field(event, "principal")
    target = _field(event, "target")
    like = event.get("like")
    if not isinstance(like, bool):
        raise ValueError("`like` must be a boolean")

    cache, before = _load_cache(services.store)
    submitter = VoteSubmitter(services.ledger, services.adapter, cache=cache)
    receipt = submitter.submit(principal, target, like)
    offer = submitter.counterpart_voted(principal, target) if like else False
    saved = _persist_votes(services.store, before, cache.state.voted)
    return {
        "ok": True,
        "tx_hash": receipt.tx_hash,
        "block_number": receipt.block_number,
        "offer_match_check": offer,
        "state_saved": saved,
    }


def _candidates(services: Services, event: Dict[str, Any]) -> Dict[str, Any]:
    principal = _field(event, "principal")
    cache, before = _load_cache(services.store)
    profiles = pending_candidates(services.directory, services.ledger, cache, principal)
    _persist_votes(services.store, before, cache.state.voted)
    return {
        "ok": True,
        "candidates": [
            {"address": p.wallet_address, "name": p.name, "bio": p.bio, "image_url": p.image_url}
            for p in profiles
        ],
    }


def _activity(services: Services, event: Dict[str, Any]) -> Dict[str, Any]:
    principal = _field(event, "principal")
    cache, _ = _load_cache(services.store)
    entries = vote_activity(services.directory, services.ledger, cache, principal)
    return {
        "ok": True,
        "activity": [
            {
                "address": e.address,
                "name": e.profile.name if e.profile else None,
                "voted_back": e.voted_back,
            }
            for e in entries
        ],
    }


def _match(services: Services, event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Start a match check and reveal the contact on a mutual like.

    A pair already marked revealed is not checked again unless the event
    sets `refresh`; the contact was handed out on the earlier call.
    """
    principal = _field(event, "principal")
    target = _field(event, "target")
    if not event.get("refresh") and _already_revealed(services.store, principal, target):
        return {"ok": True, "state": ProtocolState.REVEALED.value, "already_revealed": True}

    authorizer = _AUTHORIZERS[services.settings.backend](services)
    saved = []

    def mark_revealed(query: MatchQuery, _record: Optional[ContactRecord]) -> None:
        saved.append(
            _update_state(
                services.store,
                lambda s: s.mark_revealed(query.initiator, query.counterparty),
                reason="revealed",
            )
        )

    orchestrator = ProtocolOrchestrator(
        authorizer,
        RevealGate(services.directory),
        on_revealed=mark_revealed,
    )
    state = orchestrator.start(principal, target)
    result: Dict[str, Any] = {"ok": state != ProtocolState.ERROR, "state": state.value}
    if state == ProtocolState.ERROR:
        result["error"] = orchestrator.error_message
    elif state == ProtocolState.MATCHED:
        result["contact"] = _contact(orchestrator.reveal())
        result["state"] = orchestrator.state.value
        result["state_saved"] = all(saved)
    return result


_ACTIONS: Dict[str, Callable[[Services, Dict[str, Any]], Dict[str, Any]]] = {
    "register": _register,
    "vote": _vote,
    "candidates": _candidates,
    "activity": _activity,
    "match": _match,
}


def _field(event: Dict[str, Any], name: str) -> str:
    value = event.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Missing `{name}` in event")
    return value.strip()


def run_once(event: Dict[str, Any], *, settings: Optional[MatchSettings] = None) -> Dict[str, Any]:
    action = event.get("action")
    handler = _ACTIONS.get(action) if isinstance(action, str) else None
    if handler is None:
        return {"ok": False, "error": f"Unknown action: {action!r}"}

    settings = settings or load_settings()
    services = build_services(settings)
    try:
        return handler(services, event)
    except (MatchError, ValueError) as exc:
        return {"ok": False, "error": str(exc)}
    except LedgerError as exc:
        log.warning("ledger_unavailable", action=action, error=str(exc))
        return {"ok": False, "error": str(exc)}
    finally:
        services.close()


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    configure_logging(os.environ.get(ENV_ENVIRONMENT, "production"))
    return run_once(event or {})
