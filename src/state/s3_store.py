from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable, Optional, Tuple
from uuid import uuid4

import boto3
import structlog
from botocore.exceptions import ClientError
from cryptography.fernet import Fernet, InvalidToken

from .models import ClientState


log = structlog.get_logger(__name__)


class OptimisticLockError(Exception):
    """Raised when an ETag precondition fails during a conditional write."""


def _to_fernet(key: str | bytes) -> Fernet:
    """Fernet from a URL-safe base64 32-byte key (as from `Fernet.generate_key()`)."""
    return Fernet(key.encode("utf-8") if isinstance(key, str) else key)


def _dump_state_json(state: ClientState) -> bytes:
    # Deterministic JSON: stable key order, no extra whitespace
    return json.dumps(state.model_dump(), separators=(",", ":"), sort_keys=True).encode("utf-8")


def _load_state_json(data: bytes) -> ClientState:
    return ClientState.model_validate(json.loads(data.decode("utf-8")))


@dataclass
class S3ObjectRef:
    bucket: str
    key: str


class ClientStateStore:
    """
    S3-backed persistence for `ClientState`, Fernet-encrypted at rest.

    - `read()` returns `(state, etag)`; a missing object is `(ClientState.empty(), None)`.
    - `write(state, if_match=None)` returns the new ETag. With `if_match`, the
      object is uploaded to a temporary key and copied over the destination
      with an `IfMatch` precondition (compare-and-swap); a mismatch raises
      `OptimisticLockError`.
    - `update(mutate)` is read-modify-write with the CAS above, re-reading and
      re-applying `mutate` when another writer got there first.
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        key: str,
        fernet_key: str | bytes,
        region_name: Optional[str] = None,
    ) -> None:
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._obj = S3ObjectRef(bucket=bucket, key=key)
        self._fernet = _to_fernet(fernet_key)

    def read(self) -> Tuple[ClientState, Optional[str]]:
        """Read and decrypt the state.

        Raises ValueError when the object cannot be decrypted or parsed, and
        re-raises any other S3 `ClientError`.
        """
        try:
            resp = self._s3.get_object(Bucket=self._obj.bucket, Key=self._obj.key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return (ClientState.empty(), None)
            raise

        body = resp["Body"].read()
        etag = resp.get("ETag")
        try:
            decrypted = self._fernet.decrypt(body)
        except InvalidToken as ex:
            raise ValueError("Failed to decrypt client state: invalid Fernet token") from ex

        try:
            state = _load_state_json(decrypted)
        except Exception as ex:
            raise ValueError("Failed to parse decrypted client state JSON") from ex

        return (state, etag)

    def write(self, state: ClientState, *, if_match: Optional[str] = None) -> str:
        ciphertext = self._fernet.encrypt(_dump_state_json(state))

        if if_match is None:
            resp = self._s3.put_object(
                Bucket=self._obj.bucket,
                Key=self._obj.key,
                Body=ciphertext,
                ContentType="application/octet-stream",
            )
            return str(resp.get("ETag"))

        # PutObject has no If-Match; stage under a temp key and copy with a precondition
        temp_key = f"{self._obj.key}.tmp-{uuid4().hex}"
        self._s3.put_object(
            Bucket=self._obj.bucket,
            Key=temp_key,
            Body=ciphertext,
            ContentType="application/octet-stream",
        )
        try:
            resp = self._s3.copy_object(
                Bucket=self._obj.bucket,
                Key=self._obj.key,
                CopySource={"Bucket": self._obj.bucket, "Key": temp_key},
                IfMatch=if_match,
                MetadataDirective="COPY",
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("PreconditionFailed", "412"):
                raise OptimisticLockError(
                    f"ETag mismatch for s3://{self._obj.bucket}/{self._obj.key}"
                ) from e
            raise
        finally:
            try:
                self._s3.delete_object(Bucket=self._obj.bucket, Key=temp_key)
            except ClientError as e:
                log.warning("state_temp_cleanup_failed", key=temp_key, error=str(e))

        return str(resp.get("ETag"))

    def update(self, mutate: Callable[[ClientState], None], *, attempts: int = 3) -> ClientState:
        """Apply `mutate` to the freshest state and persist it; returns the written state."""
        for attempt in range(1, attempts + 1):
            state, etag = self.read()
            mutate(state)
            try:
                # First write of a new object has no ETag to match against
                self.write(state, if_match=etag)
                return state
            except OptimisticLockError:
                log.info("state_write_conflict", attempt=attempt)
        raise OptimisticLockError(
            f"Gave up updating s3://{self._obj.bucket}/{self._obj.key} after {attempts} conflicts"
        )
