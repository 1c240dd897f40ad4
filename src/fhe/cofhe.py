from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, Protocol

import httpx
import structlog

from .base import EncryptedInput, RelayerApiError, _BackendClient


PERMIT_PRIMARY_TYPE = "PermissionedV2IssuerSelf"
PERMIT_TTL_SECONDS = 24 * 60 * 60

log = structlog.get_logger(__name__)


class StatementSigner(Protocol):
    def sign_authorization_statement(self, principal: str, statement: Dict[str, Any]) -> str: ...


class CofheAdapter(_BackendClient):
    """
    Coprocessor backend: inputs are encrypted through the coprocessor API and
    decryption is requested on the ledger, so there is no client-side decrypt.

    Coprocessor surface
    - `GET  /v1/keys`     -> {publicKey}
    - `POST /v1/encrypt`  {contractAddress, userAddress, utype, ciphertext} -> {ctHash, signature}
    - `POST /v1/permits`  {issuer, expiration, signature, statement} -> {permitHash}

    The account-scoped permit is created once per adapter (session) and per
    principal; later calls reuse it until it expires.
    """

    backend = "cofhe"
    service_name = "cofhe coprocessor"

    def __init__(
        self,
        coprocessor_url: str,
        contract_address: str,
        *,
        chain_id: int,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(coprocessor_url, contract_address, timeout=timeout, client=client)
        self.chain_id = chain_id
        self._clock = clock
        self._permits: Dict[str, Dict[str, Any]] = {}

    def encrypt(self, contract_scope: str, principal: str, value: bool) -> EncryptedInput:
        self.check_scope(contract_scope)
        body = {
            "contractAddress": contract_scope,
            "userAddress": principal,
            "utype": "bool",
            "ciphertext": self._sealed_bool(value),
        }
        data = self._request("POST", "/v1/encrypt", json_body=body)
        ct_hash = data.get("ctHash") if isinstance(data, dict) else None
        signature = data.get("signature") if isinstance(data, dict) else None
        if not isinstance(ct_hash, str) or not isinstance(signature, str):
            raise RelayerApiError("Coprocessor returned no ctHash/signature for the encrypted input")
        return EncryptedInput(handle=ct_hash, proof=signature)

    def has_permit(self, principal: str) -> bool:
        permit = self._permits.get(principal.lower())
        return bool(permit) and permit["expiration"] > int(self._clock())

    def ensure_permit(self, principal: str, signer: StatementSigner) -> str:
        """Return the principal's permit hash, creating and signing one if needed."""
        key = principal.lower()
        if self.has_permit(principal):
            return self._permits[key]["permitHash"]

        expiration = int(self._clock()) + PERMIT_TTL_SECONDS
        statement = self.build_permit_statement(principal, expiration)
        signature = signer.sign_authorization_statement(principal, statement)
        body = {
            "issuer": principal,
            "expiration": expiration,
            "signature": signature,
            "statement": statement,
        }
        data = self._request("POST", "/v1/permits", json_body=body, retry=False)
        permit_hash = data.get("permitHash") if isinstance(data, dict) else None
        if not isinstance(permit_hash, str) or not permit_hash:
            raise RelayerApiError("Coprocessor did not return a permit hash")
        self._permits[key] = {"permitHash": permit_hash, "expiration": expiration}
        log.info("cofhe_permit_created", principal=principal, expiration=expiration)
        return permit_hash

    def build_permit_statement(self, principal: str, expiration: int) -> Dict[str, Any]:
        return {
            "types": {
                "EIP712Domain": [
                    {"name": "name", "type": "string"},
                    {"name": "version", "type": "string"},
                    {"name": "chainId", "type": "uint256"},
                    {"name": "verifyingContract", "type": "address"},
                ],
                PERMIT_PRIMARY_TYPE: [
                    {"name": "issuer", "type": "address"},
                    {"name": "expiration", "type": "uint64"},
                    {"name": "contracts", "type": "address[]"},
                ],
            },
            "primaryType": PERMIT_PRIMARY_TYPE,
            "domain": {
                "name": "CoFHE Permission",
                "version": "1",
                "chainId": self.chain_id,
                "verifyingContract": self.contract_address,
            },
            "message": {
                "issuer": principal,
                "expiration": str(expiration),
                "contracts": [self.contract_address],
            },
        }


__all__ = ["CofheAdapter", "StatementSigner", "PERMIT_TTL_SECONDS"]
