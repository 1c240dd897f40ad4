from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


PLACEHOLDER_NAME = "User"
PLACEHOLDER_AVATAR = "https://api.dicebear.com/7.x/adventurer/svg?seed={seed}"


class Vote(BaseModel):
    """An encrypted preference as submitted to the ledger."""

    model_config = ConfigDict(frozen=True)

    voter: str
    target: str
    ciphertext: str
    validity_proof: str = Field(repr=False)


class SubmissionReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    voter: str
    target: str
    tx_hash: str
    block_number: Optional[int] = None


class MatchQuery(BaseModel):
    """One run of the protocol; lives only in orchestrator memory."""

    model_config = ConfigDict(frozen=True)

    initiator: str
    counterparty: str

    @property
    def pair(self) -> tuple[str, str]:
        return (self.initiator.lower(), self.counterparty.lower())


class ResultHandle(BaseModel):
    """
    Reference to the encrypted AND result, scoped to `principal`.

    `value` is the ledger handle (Variant A). For the coprocessor flow the
    result is held by the ledger for the account and `value` is None.
    """

    model_config = ConfigDict(frozen=True)

    principal: str
    contract_address: str
    value: Optional[int] = None

    @property
    def account_scoped(self) -> bool:
        return self.value is None

    @property
    def is_absent(self) -> bool:
        return self.value == 0

    @property
    def hex(self) -> str:
        if self.value is None:
            raise ValueError("account-scoped result has no handle value")
        return "0x" + format(self.value, "x").rjust(64, "0")


class DecryptGrant(BaseModel):
    """Signed, time-boxed permission to decrypt under an ephemeral key. Never persisted."""

    model_config = ConfigDict(frozen=True)

    public_key: str
    private_key: str = Field(repr=False)
    signature: str = Field(repr=False)
    issued_at: int  # unix seconds
    window_days: int

    @property
    def expires_at(self) -> datetime:
        start = datetime.fromtimestamp(self.issued_at, tz=timezone.utc)
        return start + timedelta(days=self.window_days)

    def is_expired(self, now: float) -> bool:
        return datetime.fromtimestamp(now, tz=timezone.utc) >= self.expires_at


class DecryptJob(BaseModel):
    """Coprocessor decrypt request state, as observed by polling."""

    status: Literal["pending", "ready"] = "pending"
    result_bit: Any = None
    attempts: int = 0


class MatchOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    matched: bool


class ContactRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    principal: str
    name: str
    image_url: str
    telegram_id: Optional[str] = None
    twitter_id: Optional[str] = None
    placeholder: bool = False

    @classmethod
    def placeholder_for(cls, principal: str) -> "ContactRecord":
        """Generated identity used when the directory cannot be reached."""
        return cls(
            principal=principal,
            name=PLACEHOLDER_NAME,
            image_url=PLACEHOLDER_AVATAR.format(seed=principal),
            placeholder=True,
        )


__all__ = [
    "ContactRecord",
    "DecryptGrant",
    "DecryptJob",
    "MatchOutcome",
    "MatchQuery",
    "ResultHandle",
    "SubmissionReceipt",
    "Vote",
]
