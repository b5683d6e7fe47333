"""Tests for configuration loading and validation."""

import json
from pathlib import Path

import pytest

from distributor.config import DEFAULT_CONFIG_DIR, DistributorConfig


def _write_params(config_dir: Path, **overrides) -> Path:
    params = json.loads((DEFAULT_CONFIG_DIR / "distributor_params.json").read_text(encoding="utf-8"))
    for section, values in overrides.items():
        params[section].update(values)
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "distributor_params.json").write_text(json.dumps(params), encoding="utf-8")
    return config_dir


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for name in ("DISTRIBUTOR_RPC_URL", "DISTRIBUTOR_PRIVATE_KEY"):
        # setenv first so teardown also removes values loaded from a .env file
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


class TestDistributorConfig:
    def test_shipped_config_is_valid(self, tmp_path: Path) -> None:
        config = DistributorConfig.from_config_dir(env_file=tmp_path / "absent.env")
        assert config.validate() == []
        assert config.transfer_backend == "ledger"
        assert config.default_timelock_seconds == 86_400

    def test_bad_values_reported(self, tmp_path: Path) -> None:
        config_dir = _write_params(
            tmp_path / "cfg",
            distributor={"default_timelock_seconds": -1, "factory_address": "0xnope"},
            transfer={"backend": "carrier-pigeon"},
        )
        errors = DistributorConfig.from_config_dir(config_dir, env_file=tmp_path / "absent.env").validate()
        assert len(errors) == 3

    def test_erc20_needs_secrets(self, tmp_path: Path) -> None:
        config_dir = _write_params(tmp_path / "cfg", transfer={"backend": "erc20"})
        config = DistributorConfig.from_config_dir(config_dir, env_file=tmp_path / "absent.env")
        errors = config.validate()
        assert any("DISTRIBUTOR_RPC_URL" in e for e in errors)
        assert any("DISTRIBUTOR_PRIVATE_KEY" in e for e in errors)

    def test_secrets_from_env_file(self, tmp_path: Path) -> None:
        config_dir = _write_params(tmp_path / "cfg", transfer={"backend": "erc20"})
        env_file = tmp_path / ".env"
        env_file.write_text(
            "DISTRIBUTOR_RPC_URL=http://localhost:8545\n"
            "DISTRIBUTOR_PRIVATE_KEY=0x" + "11" * 32 + "\n",
            encoding="utf-8",
        )
        config = DistributorConfig.from_config_dir(config_dir, env_file=env_file)
        assert config.rpc_url == "http://localhost:8545"
        assert config.validate() == []
        assert "11" * 32 not in repr(config)
