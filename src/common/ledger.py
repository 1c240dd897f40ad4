from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from .http import JsonServiceClient, ServiceError


log = structlog.get_logger(__name__)


class LedgerError(ServiceError):
    """Base error for the ledger gateway client."""


class LedgerApiError(LedgerError):
    """Gateway returned an error payload or an unexpected structure."""


class LedgerRevertError(LedgerApiError):
    """The contract rejected the call or transaction; `reason` is the revert text verbatim."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class TxReceipt(BaseModel):
    tx_hash: str = Field(..., alias="txHash")
    status: Literal["pending", "confirmed", "reverted"]
    block_number: Optional[int] = Field(default=None, alias="blockNumber")
    revert_reason: Optional[str] = Field(default=None, alias="revertReason")

    model_config = {"populate_by_name": True}

    @property
    def confirmed(self) -> bool:
        return self.status == "confirmed"


def parse_uint(value: Any) -> int:
    """Coerce a gateway-encoded uint (int, decimal string or 0x-hex string) to int."""
    if isinstance(value, bool):
        raise ValueError("boolean is not a uint")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        s = value.strip().lower()
        if s.startswith("0x"):
            return int(s, 16) if len(s) > 2 else 0
        return int(s)
    raise ValueError(f"unsupported uint encoding: {type(value).__name__}")


class LedgerClient(JsonServiceClient):
    """
    Client for the HTTP gateway fronting the match contract.

    Gateway surface
    - `POST /calls`              {from, contract, method, args} -> {result}
    - `POST /transactions`       {from, contract, method, args} -> {txHash}
    - `GET  /transactions/{tx}`  -> {txHash, status, blockNumber?, revertReason?}

    Notes
    - Reads (`/calls`, receipt lookups) retry transient failures.
    - Transactions are sent exactly once; every state-changing helper returns
      only after the receipt is `confirmed` (raises `LedgerRevertError` on
      `reverted`, `LedgerError` when the confirmation wait times out).
    """

    error_cls = LedgerError
    api_error_cls = LedgerApiError
    service_name = "ledger gateway"

    def __init__(
        self,
        base_url: str,
        contract_address: str,
        *,
        timeout: float = 15.0,
        receipt_timeout: float = 120.0,
        receipt_poll_interval: float = 1.0,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not contract_address:
            raise ValueError("contract_address is required")
        super().__init__(base_url, timeout=timeout, client=client, sleep=sleep)
        self.contract_address = contract_address
        self._receipt_timeout = receipt_timeout
        self._receipt_poll_interval = receipt_poll_interval
        self._clock = clock

    # --------------- Registration / votes ---------------
    def register(self, principal: str) -> TxReceipt:
        return self._transact(principal, "register", [])

    def is_registered(self, principal: str) -> bool:
        return bool(self._call(principal, "registered", [principal]))

    def has_voted(self, voter: str, target: str) -> bool:
        return bool(self._call(voter, "hasVoted", [voter, target]))

    def submit_vote(self, voter: str, target: str, ciphertext: str, proof: str) -> TxReceipt:
        return self._transact(voter, "vote", [target, ciphertext, proof])

    # --------------- Variant A: user-decrypt ---------------
    def prepare_match_check(self, initiator: str, counterparty: str) -> TxReceipt:
        return self._transact(initiator, "prepareMatchCheck", [counterparty])

    def get_match_result_handle(self, initiator: str) -> int:
        raw = self._call(initiator, "getMatchResultHandle", [initiator])
        try:
            return parse_uint(raw)
        except ValueError as exc:
            raise LedgerApiError(f"Malformed result handle: {raw!r}") from exc

    # --------------- Variant B: coprocessor decrypt ---------------
    def check_match(self, initiator: str, counterparty: str) -> TxReceipt:
        return self._transact(initiator, "checkMatch", [counterparty])

    def request_decrypt(self, initiator: str) -> TxReceipt:
        return self._transact(initiator, "requestDecrypt", [])

    def get_decrypted_result(self, initiator: str) -> Tuple[Any, bool]:
        """Return `(result_bit, decrypted)` for the initiator's decrypt job; the bit is left as encoded."""
        raw = self._call(initiator, "getDecryptedResult", [])
        if isinstance(raw, dict):
            raw = [raw.get("result"), raw.get("decrypted")]
        if not isinstance(raw, (list, tuple)) or len(raw) != 2:
            raise LedgerApiError(f"Malformed decrypt result: {raw!r}")
        bit, decrypted = raw
        if not isinstance(decrypted, bool):
            raise LedgerApiError(f"Malformed decrypt flag: {decrypted!r}")
        return (bit, decrypted)

    # --------------- Internal ---------------
    def _payload(self, sender: str, method: str, args: List[Any]) -> Dict[str, Any]:
        return {
            "from": sender,
            "contract": self.contract_address,
            "method": method,
            "args": args,
        }

    def _call(self, sender: str, method: str, args: List[Any]) -> Any:
        data = self._request("POST", "/calls", json_body=self._payload(sender, method, args))
        if not isinstance(data, dict) or "result" not in data:
            raise LedgerApiError(f"Malformed response for {method}")
        return data["result"]

    def _transact(self, sender: str, method: str, args: List[Any]) -> TxReceipt:
        data = self._request(
            "POST", "/transactions", json_body=self._payload(sender, method, args), retry=False
        )
        tx_hash = data.get("txHash") if isinstance(data, dict) else None
        if not isinstance(tx_hash, str) or not tx_hash:
            raise LedgerApiError(f"Missing txHash in response for {method}")
        log.info("ledger_tx_sent", method=method, sender=sender, tx_hash=tx_hash)
        receipt = self.wait_for_receipt(tx_hash)
        log.info(
            "ledger_tx_confirmed",
            method=method,
            tx_hash=tx_hash,
            block_number=receipt.block_number,
        )
        return receipt

    def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        """Poll the gateway until the transaction leaves `pending`."""
        deadline = self._clock() + self._receipt_timeout
        while True:
            data = self._request("GET", f"/transactions/{tx_hash}")
            try:
                receipt = TxReceipt.model_validate(data)
            except ValidationError as ve:
                raise LedgerApiError(f"Failed to parse receipt: {ve}") from ve
            if receipt.status == "reverted":
                raise LedgerRevertError(receipt.revert_reason or "transaction reverted")
            if receipt.confirmed:
                return receipt
            if self._clock() >= deadline:
                raise LedgerError(f"Timed out waiting for confirmation of {tx_hash}")
            self._sleep(self._receipt_poll_interval)

    def _raise_for_status(self, resp: httpx.Response) -> None:
        # Gateway error envelope: {"error": {"code": "...", "message": "..."}}
        body: Any = None
        try:
            body = resp.json()
        except ValueError:
            pass
        err = body.get("error") if isinstance(body, dict) else None
        if isinstance(err, dict):
            message = str(err.get("message") or "ledger error")
            if err.get("code") == "REVERT":
                raise LedgerRevertError(message)
            raise LedgerApiError(f"{message} (HTTP {resp.status_code})")
        super()._raise_for_status(resp)


__all__ = [
    "LedgerClient",
    "LedgerError",
    "LedgerApiError",
    "LedgerRevertError",
    "TxReceipt",
    "parse_uint",
]
