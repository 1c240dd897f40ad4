from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from .base import EncryptedInput, RelayerApiError, _BackendClient
from .sealing import SealingError, generate_keypair, load_private_key, unseal


USER_DECRYPT_PRIMARY_TYPE = "UserDecryptRequestVerification"
USER_DECRYPT_INFO = b"mutual-match/user-decrypt/v1"


class FhevmAdapter(_BackendClient):
    """
    User-authorized decrypt backend, spoken through the relayer HTTP API.

    Relayer surface
    - `GET  /v1/keys`          -> {publicKey, verifyingContract}
    - `POST /v1/input-proof`   {contractAddress, userAddress, ciphertext} -> {handles[], inputProof}
    - `POST /v1/user-decrypt`  {handleContractPairs, requestValidity, ...} -> {response: [{handle, payload}]}

    Decrypted values come back sealed to the caller's ephemeral public key and
    are opened locally with the matching private key.
    """

    backend = "fhevm"
    service_name = "fhevm relayer"

    def __init__(
        self,
        relayer_url: str,
        contract_address: str,
        *,
        chain_id: int,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__(relayer_url, contract_address, timeout=timeout, client=client)
        self.chain_id = chain_id
        self._verifying_contract: Optional[str] = None

    def _on_keys(self, data: dict) -> None:
        vc = data.get("verifyingContract")
        self._verifying_contract = vc if isinstance(vc, str) and vc else None

    # --------------- Encryption ---------------
    def encrypt(self, contract_scope: str, principal: str, value: bool) -> EncryptedInput:
        self.check_scope(contract_scope)
        body = {
            "contractAddress": contract_scope,
            "userAddress": principal,
            "ciphertext": self._sealed_bool(value),
        }
        data = self._request("POST", "/v1/input-proof", json_body=body)
        handles = data.get("handles") if isinstance(data, dict) else None
        proof = data.get("inputProof") if isinstance(data, dict) else None
        if not isinstance(handles, list) or not handles or not isinstance(proof, str):
            raise RelayerApiError("Relayer returned no handle/proof for the encrypted input")
        return EncryptedInput(handle=str(handles[0]), proof=proof)

    # --------------- User decrypt ---------------
    def generate_keypair(self) -> Tuple[str, str]:
        return generate_keypair()

    def build_authorization_statement(
        self,
        public_key: str,
        contract_scopes: Sequence[str],
        issued_at: int,
        window_days: int,
    ) -> Dict[str, Any]:
        """EIP-712 typed data the holder signs to allow decryption under `public_key`."""
        self.network_public_key()
        verifying = self._verifying_contract or self.contract_address
        return {
            "types": {
                "EIP712Domain": [
                    {"name": "name", "type": "string"},
                    {"name": "version", "type": "string"},
                    {"name": "chainId", "type": "uint256"},
                    {"name": "verifyingContract", "type": "address"},
                ],
                USER_DECRYPT_PRIMARY_TYPE: [
                    {"name": "publicKey", "type": "bytes"},
                    {"name": "contractAddresses", "type": "address[]"},
                    {"name": "startTimestamp", "type": "uint256"},
                    {"name": "durationDays", "type": "uint256"},
                ],
            },
            "primaryType": USER_DECRYPT_PRIMARY_TYPE,
            "domain": {
                "name": "Decryption",
                "version": "1",
                "chainId": self.chain_id,
                "verifyingContract": verifying,
            },
            "message": {
                "publicKey": public_key,
                "contractAddresses": list(contract_scopes),
                "startTimestamp": str(issued_at),
                "durationDays": str(window_days),
            },
        }

    def decrypt(
        self,
        handles: Sequence[str],
        private_key: str,
        public_key: str,
        signature: str,
        contract_scopes: Sequence[str],
        principal: str,
        issued_at: int,
        window_days: int,
    ) -> Dict[str, int]:
        """Return `{handle_hex: value}` for each handle the relayer answered."""
        for scope in contract_scopes:
            self.check_scope(scope)
        body = {
            "handleContractPairs": [
                {"handle": h, "contractAddress": self.contract_address} for h in handles
            ],
            "requestValidity": {"startTimestamp": str(issued_at), "durationDays": str(window_days)},
            "contractAddresses": list(contract_scopes),
            "userAddress": principal,
            "signature": signature,
            "publicKey": public_key,
        }
        data = self._request("POST", "/v1/user-decrypt", json_body=body)
        entries = data.get("response") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise RelayerApiError("Relayer user-decrypt response is missing `response`")

        key = load_private_key(private_key)
        out: Dict[str, int] = {}
        for entry in entries:
            out.update(self._open_entry(key, entry))
        return out

    @staticmethod
    def _open_entry(key, entry: Any) -> Dict[str, int]:
        if not isinstance(entry, dict):
            raise RelayerApiError("Malformed user-decrypt entry")
        h = entry.get("handle")
        payload = entry.get("payload")
        if not isinstance(h, str) or not isinstance(payload, str):
            raise RelayerApiError("User-decrypt entry without handle/payload")
        try:
            clear = unseal(key, base64.b64decode(payload, validate=True), info=USER_DECRYPT_INFO)
        except (binascii.Error, SealingError) as exc:
            raise RelayerApiError(f"Could not open decrypted value for {h}: {exc}") from exc
        return {h.lower(): int.from_bytes(clear, "big")}


def pick_result(results: Dict[str, Any], handle: str) -> Any:
    """The value for `handle`; a single unlabeled answer is accepted as ours."""
    key = handle.lower()
    if key in results:
        return results[key]
    if len(results) == 1:
        return next(iter(results.values()))
    raise KeyError(handle)


__all__: List[str] = ["FhevmAdapter", "pick_result", "USER_DECRYPT_INFO"]
