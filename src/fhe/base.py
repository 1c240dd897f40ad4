from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel

from common.http import JsonServiceClient, ServiceError

from .sealing import SealingError, load_public_key, seal


class RelayerError(ServiceError):
    """Base error for the encryption backends (relayer / coprocessor)."""


class RelayerApiError(RelayerError):
    """Backend returned an error or a payload of the wrong shape."""


class EncryptedInput(BaseModel):
    """Ciphertext reference plus the validity proof the ledger checks on `vote`."""

    handle: str
    proof: str


class EncryptionAdapter(ABC):
    """
    Backend capability shared by both decrypt flows: encrypt one boolean under
    the network evaluation key for a given contract scope and principal.

    The adapter is bound to one contract address; encrypting for any other
    scope is refused.
    """

    backend: str = ""

    def __init__(self, contract_address: str) -> None:
        if not contract_address:
            raise ValueError("contract_address is required")
        self.contract_address = contract_address

    def check_scope(self, contract_scope: str) -> None:
        if contract_scope.lower() != self.contract_address.lower():
            raise ValueError(
                f"{self.backend} adapter is bound to {self.contract_address}, not {contract_scope}"
            )

    @abstractmethod
    def encrypt(self, contract_scope: str, principal: str, value: bool) -> EncryptedInput:
        """Return the ciphertext handle and validity proof for `value`."""


class _BackendClient(EncryptionAdapter, JsonServiceClient):
    """HTTP plumbing shared by the two backends: key fetch and bool sealing."""

    error_cls = RelayerError
    api_error_cls = RelayerApiError

    def __init__(self, base_url: str, contract_address: str, **kwargs) -> None:
        EncryptionAdapter.__init__(self, contract_address)
        JsonServiceClient.__init__(self, base_url, **kwargs)
        self._network_key: Optional[str] = None

    def network_public_key(self) -> str:
        """Evaluation-domain public key, fetched once per client."""
        if self._network_key is None:
            data = self._request("GET", "/v1/keys")
            key = data.get("publicKey") if isinstance(data, dict) else None
            if not isinstance(key, str) or not key:
                raise RelayerApiError(f"{self.service_name} did not return a public key")
            self._network_key = key
            self._on_keys(data)
        return self._network_key

    def _on_keys(self, data: dict) -> None:
        """Hook for backends that read extra fields from the key document."""

    def _sealed_bool(self, value: bool) -> str:
        try:
            recipient = load_public_key(self.network_public_key())
        except SealingError as exc:
            raise RelayerApiError(str(exc)) from exc
        return base64.b64encode(seal(recipient, b"\x01" if value else b"\x00")).decode("ascii")


__all__ = [
    "EncryptedInput",
    "EncryptionAdapter",
    "RelayerError",
    "RelayerApiError",
]
