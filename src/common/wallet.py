from __future__ import annotations

import itertools
import json
from typing import Any, Dict, Optional

import httpx

from .http import JsonServiceClient, ServiceError


USER_REJECTED_CODE = 4001


class WalletError(ServiceError):
    """Base error for the wallet signing client."""


class WalletApiError(WalletError):
    """Wallet RPC returned an error object or a malformed envelope."""


class WalletRejectedError(WalletApiError):
    """The account holder declined the signature request."""


class WalletSigner(JsonServiceClient):
    """
    JSON-RPC client for the party's own signing authority.

    Only `eth_signTypedData_v4` is used: the typed-data statement is sent as a
    JSON string and the hex signature is returned. The call blocks until the
    holder approves or declines; it is never retried, a second prompt would be
    a second approval request.
    """

    error_cls = WalletError
    api_error_cls = WalletApiError
    service_name = "wallet"

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 300.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__(rpc_url, timeout=timeout, client=client, max_per_second=2)
        self._ids = itertools.count(1)

    def sign_authorization_statement(self, principal: str, statement: Dict[str, Any]) -> str:
        result = self._rpc("eth_signTypedData_v4", [principal, json.dumps(statement)])
        if not isinstance(result, str) or not result.startswith("0x"):
            raise WalletApiError("Wallet returned a malformed signature")
        return result

    def _rpc(self, method: str, params: list) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        data = self._request("POST", "", json_body=body, retry=False)
        if not isinstance(data, dict):
            raise WalletApiError("Malformed JSON-RPC response from wallet")
        err = data.get("error")
        if isinstance(err, dict):
            message = str(err.get("message") or "wallet error")
            if err.get("code") == USER_REJECTED_CODE:
                raise WalletRejectedError(message)
            raise WalletApiError(f"{message} (code={err.get('code')})")
        if "result" not in data:
            raise WalletApiError("JSON-RPC response without result")
        return data["result"]


__all__ = [
    "WalletSigner",
    "WalletError",
    "WalletApiError",
    "WalletRejectedError",
]
