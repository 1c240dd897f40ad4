from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from common import config


class FakeSSM:
    def __init__(self, values, *, error_code=None):
        self.values = values
        self.error_code = error_code
        self.requested = []

    def get_parameter(self, *, Name, WithDecryption):
        self.requested.append((Name, WithDecryption))
        if self.error_code:
            raise ClientError({"Error": {"Code": self.error_code}}, "GetParameter")
        if Name not in self.values:
            raise ClientError({"Error": {"Code": "ParameterNotFound"}}, "GetParameter")
        return {"Parameter": {"Value": self.values[Name]}}


BASE_ENV = {
    "MATCH_PARAM_PREFIX": "/match/",
    "MATCH_LEDGER_URL": "https://gateway.test",
    "MATCH_CONTRACT_ADDRESS": "0x00000000000000000000000000000000000000c0",
    "MATCH_RELAYER_URL": "https://relayer.test",
    "MATCH_WALLET_URL": "https://wallet.test",
    "MATCH_DIRECTORY_URL": "https://db.test",
    "MATCH_STATE_BUCKET": "bucket",
}


@pytest.fixture
def env(monkeypatch):
    for name in [v for k, v in vars(config).items() if k.startswith("ENV_")]:
        monkeypatch.delenv(name, raising=False)
    for k, v in BASE_ENV.items():
        monkeypatch.setenv(k, v)
    return monkeypatch


def _patch_ssm(monkeypatch, ssm):
    monkeypatch.setattr(config.boto3, "client", lambda service: ssm)


def test_load_settings_from_env_and_ssm(env):
    ssm = FakeSSM({"/match/directory_api_key": "anon", "/match/fernet_key": "fk"})
    _patch_ssm(env, ssm)

    s = config.load_settings()

    assert s.backend == "fhevm"
    assert s.contract_address == BASE_ENV["MATCH_CONTRACT_ADDRESS"]
    assert s.chain_id == 11155111
    assert s.directory_api_key == "anon" and s.fernet_key == "fk"
    assert s.state_key == "match-state.json"
    assert s.poll_attempts == 30 and s.poll_interval == 1.0 and s.grant_window_days == 1
    assert all(with_decryption for _, with_decryption in ssm.requested)


def test_coprocessor_backend_requires_coprocessor_url(env):
    _patch_ssm(env, FakeSSM({"/match/directory_api_key": "anon", "/match/fernet_key": "fk"}))
    env.setenv("MATCH_BACKEND", "cofhe")

    with pytest.raises(RuntimeError, match="MATCH_COPROCESSOR_URL"):
        config.load_settings()

    env.setenv("MATCH_COPROCESSOR_URL", "https://cofhe.test")
    assert config.load_settings().backend == "cofhe"


def test_missing_secret_is_reported_with_parameter_name(env):
    _patch_ssm(env, FakeSSM({"/match/directory_api_key": "anon"}))
    with pytest.raises(RuntimeError, match="/match/fernet_key"):
        config.load_settings()


def test_unknown_backend_and_bad_chain_id(env):
    _patch_ssm(env, FakeSSM({"/match/directory_api_key": "anon", "/match/fernet_key": "fk"}))
    env.setenv("MATCH_BACKEND", "plaintext")
    with pytest.raises(RuntimeError, match="Unsupported"):
        config.load_settings()

    env.setenv("MATCH_BACKEND", "fhevm")
    env.setenv("MATCH_CHAIN_ID", "sepolia")
    with pytest.raises(RuntimeError, match="MATCH_CHAIN_ID"):
        config.load_settings()


def test_unexpected_ssm_error_propagates(env):
    _patch_ssm(env, FakeSSM({}, error_code="ThrottlingException"))
    with pytest.raises(ClientError):
        config.load_settings()
