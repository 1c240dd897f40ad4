from __future__ import annotations

import os
from typing import Dict, Iterable, Literal, Optional

import boto3
from botocore.exceptions import ClientError
from pydantic import BaseModel, Field


# Environment variable names
ENV_BACKEND = "MATCH_BACKEND"
ENV_PARAM_PREFIX = "MATCH_PARAM_PREFIX"
ENV_LEDGER_URL = "MATCH_LEDGER_URL"
ENV_CONTRACT_ADDRESS = "MATCH_CONTRACT_ADDRESS"
ENV_CHAIN_ID = "MATCH_CHAIN_ID"
ENV_RELAYER_URL = "MATCH_RELAYER_URL"
ENV_COPROCESSOR_URL = "MATCH_COPROCESSOR_URL"
ENV_WALLET_URL = "MATCH_WALLET_URL"
ENV_DIRECTORY_URL = "MATCH_DIRECTORY_URL"
ENV_STATE_BUCKET = "MATCH_STATE_BUCKET"
ENV_STATE_KEY = "MATCH_STATE_KEY"  # optional; defaults to "match-state.json"

# Secrets read from SSM under MATCH_PARAM_PREFIX
SSM_NAMES = ["directory_api_key", "fernet_key"]


class MatchSettings(BaseModel):
    """
    Runtime configuration for one deployment.

    `backend` picks the decrypt flow: "fhevm" (user-authorized decrypt through
    the relayer) or "cofhe" (coprocessor-requested decrypt with polling).
    """

    backend: Literal["fhevm", "cofhe"] = "fhevm"
    ledger_url: str
    contract_address: str
    chain_id: int = 11155111
    relayer_url: Optional[str] = None
    coprocessor_url: Optional[str] = None
    wallet_url: str
    directory_url: str
    directory_api_key: str
    state_bucket: str
    state_key: str = "match-state.json"
    fernet_key: str

    poll_attempts: int = Field(default=30, gt=0)
    poll_interval: float = Field(default=1.0, gt=0)
    grant_window_days: int = Field(default=1, gt=0)
    receipt_timeout: float = Field(default=120.0, gt=0)
    compute_max_per_window: int = Field(default=3, gt=0)
    compute_window_seconds: float = Field(default=60.0, gt=0)


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise RuntimeError(f"Missing required configuration: {what}")
    return v


def _load_ssm_params(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:
    ssm = boto3.client("ssm")
    out: Dict[str, Optional[str]] = {k: None for k in names}
    for name in names:
        full = f"{prefix}{name}"
        try:
            resp = ssm.get_parameter(Name=full, WithDecryption=True)
        except ClientError as e:
            # Leave as None if parameter missing or access denied
            code = e.response.get("Error", {}).get("Code")
            if code in ("ParameterNotFound", "AccessDeniedException"):
                out[name] = None
                continue
            raise
        val = resp.get("Parameter", {}).get("Value")
        out[name] = val if isinstance(val, str) and val != "" else None
    return out


def load_settings() -> MatchSettings:
    """Resolve settings from the environment, with secrets from SSM."""
    prefix = _require(_getenv(ENV_PARAM_PREFIX), ENV_PARAM_PREFIX)
    params = _load_ssm_params(prefix, SSM_NAMES)

    backend = _getenv(ENV_BACKEND, "fhevm")
    if backend not in ("fhevm", "cofhe"):
        raise RuntimeError(f"Unsupported {ENV_BACKEND}: {backend}")

    relayer_url = _getenv(ENV_RELAYER_URL)
    coprocessor_url = _getenv(ENV_COPROCESSOR_URL)
    if backend == "fhevm":
        _require(relayer_url, ENV_RELAYER_URL)
    else:
        _require(coprocessor_url, ENV_COPROCESSOR_URL)

    chain_id_raw = _getenv(ENV_CHAIN_ID, "11155111")
    try:
        chain_id = int(chain_id_raw or "")
    except ValueError as exc:
        raise RuntimeError(f"Invalid {ENV_CHAIN_ID}: {chain_id_raw}") from exc

    return MatchSettings(
        backend=backend,
        ledger_url=_require(_getenv(ENV_LEDGER_URL), ENV_LEDGER_URL),
        contract_address=_require(_getenv(ENV_CONTRACT_ADDRESS), ENV_CONTRACT_ADDRESS),
        chain_id=chain_id,
        relayer_url=relayer_url,
        coprocessor_url=coprocessor_url,
        wallet_url=_require(_getenv(ENV_WALLET_URL), ENV_WALLET_URL),
        directory_url=_require(_getenv(ENV_DIRECTORY_URL), ENV_DIRECTORY_URL),
        directory_api_key=_require(params.get("directory_api_key"), f"{prefix}directory_api_key"),
        state_bucket=_require(_getenv(ENV_STATE_BUCKET), ENV_STATE_BUCKET),
        state_key=_getenv(ENV_STATE_KEY, "match-state.json") or "match-state.json",
        fernet_key=_require(params.get("fernet_key"), f"{prefix}fernet_key"),
    )
