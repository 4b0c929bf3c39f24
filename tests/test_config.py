"""
Tests for the persisted config store and runtime settings.
"""
import json
import os
from decimal import Decimal

import pytest

from domain import ConfigError, PersistenceError
from rebalancer.config import CONFIG_OVERRIDES, ConfigStore, Settings

CONFIG = {
    "rebalanceThresholdPercent": 5,
    "pool": {
        "id": "0xpool",
        "token0": "0xweth",
        "token1": "0xusdc",
        "tickSpacing": 100,
    },
    "position": {"id": "", "bandPercentage": 10},
}


@pytest.fixture(autouse=True)
def clear_overrides(monkeypatch):
    for name in CONFIG_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(CONFIG))
    return path


def test_load(config_path):
    config = ConfigStore(config_path).load()

    assert config.rebalance_threshold_percent == 5
    assert config.pool.tick_spacing == 100
    assert config.position.band_percentage == 10
    assert not config.has_position()


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        ConfigStore(tmp_path / "missing.json").load()


def test_load_invalid_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(ConfigError):
        ConfigStore(path).load()


def test_load_non_object(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[1, 2]")

    with pytest.raises(ConfigError):
        ConfigStore(path).load()


@pytest.mark.parametrize("key,value", [
    ("rebalanceThresholdPercent", 0),
    ("rebalanceThresholdPercent", -1),
])
def test_load_rejects_bad_threshold(tmp_path, key, value):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({**CONFIG, key: value}))

    with pytest.raises(ConfigError):
        ConfigStore(path).load()


def test_load_rejects_bad_band(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({**CONFIG, "position": {"id": "", "bandPercentage": 0}}))

    with pytest.raises(ConfigError):
        ConfigStore(path).load()


def test_load_rejects_missing_pool(tmp_path):
    data = dict(CONFIG)
    del data["pool"]
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data))

    with pytest.raises(ConfigError):
        ConfigStore(path).load()


def test_environment_overrides(config_path, monkeypatch):
    monkeypatch.setenv("REBALANCE_THRESHOLD_PERCENT", "7.5")
    monkeypatch.setenv("POSITION_BAND_PERCENTAGE", "3")
    monkeypatch.setenv("POOL_ID", "0xother")

    config = ConfigStore(config_path).load()

    assert config.rebalance_threshold_percent == Decimal("7.5")
    assert config.position.band_percentage == 3
    assert config.pool.id == "0xother"


def test_environment_override_bad_type(config_path, monkeypatch):
    monkeypatch.setenv("REBALANCE_THRESHOLD_PERCENT", "lots")

    with pytest.raises(ConfigError):
        ConfigStore(config_path).load()


def test_save_round_trip(config_path):
    store = ConfigStore(config_path)
    config = store.load()
    config.position.id = "42"

    store.save(config)

    raw = json.loads(config_path.read_text())
    assert raw["position"]["id"] == "42"
    assert raw["pool"]["tickSpacing"] == 100
    assert "pendingBridge" not in raw
    assert store.load().position.id == "42"


def test_fractional_percentages_round_trip_exactly(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        **CONFIG,
        "rebalanceThresholdPercent": 0.1,
        "position": {"id": "", "bandPercentage": 2.35},
        "pool": {**CONFIG["pool"], "spreadFactor": 0.0005},
    }))
    store = ConfigStore(path)

    config = store.load()
    assert config.rebalance_threshold_percent == Decimal("0.1")
    assert config.position.band_percentage == Decimal("2.35")
    assert config.pool.spread_factor == Decimal("0.0005")

    store.save(config)
    raw = json.loads(path.read_text())
    reloaded = store.load()

    # still plain JSON numbers
    assert raw["rebalanceThresholdPercent"] == 0.1
    assert raw["pool"]["tickSpacing"] == 100
    assert reloaded.rebalance_threshold_percent == Decimal("0.1")
    assert reloaded.position.band_percentage == Decimal("2.35")
    assert reloaded.pool.spread_factor == Decimal("0.0005")


def test_save_leaves_no_temp_files(config_path):
    store = ConfigStore(config_path)
    store.save(store.load())

    assert sorted(os.listdir(config_path.parent)) == ["config.json"]


def test_save_failure_keeps_previous_file(config_path, monkeypatch):
    store = ConfigStore(config_path)
    config = store.load()
    config.position.id = "99"

    def fail_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("rebalancer.config.os.replace", fail_replace)

    with pytest.raises(PersistenceError):
        store.save(config)

    assert json.loads(config_path.read_text())["position"]["id"] == ""
    assert sorted(os.listdir(config_path.parent)) == ["config.json"]


def test_set_position_id(config_path):
    store = ConfigStore(config_path)
    config = store.load()

    store.set_position_id(config, "7")
    assert ConfigStore(config_path).load().position.id == "7"

    store.set_position_id(config, "")
    assert not ConfigStore(config_path).load().has_position()


def test_settings_testnet_chains():
    settings = Settings.from_env("testnet")

    assert settings.base_chain_id == 84532
    assert settings.mirror_chain_id == 11155111


def test_settings_mainnet_chains():
    settings = Settings.from_env("mainnet")

    assert settings.base_chain_id == 8453
    assert settings.mirror_chain_id == 1


def test_settings_unknown_environment():
    with pytest.raises(ConfigError):
        Settings.from_env("devnet")


def test_settings_require_executor():
    settings = Settings.from_env("mainnet").model_copy(update={"executor_url": None})

    with pytest.raises(ConfigError):
        settings.require_executor()


def test_settings_gas_reserve_in_native_units():
    settings = Settings.from_env("mainnet").model_copy(update={"min_gas_balance": Decimal("0.0005")})

    reserve = settings.gas_reserve(8453)

    assert reserve.amount == 5 * 10**14
    assert reserve.token.name == "ETH"


def test_settings_invalid_gas_reserve(monkeypatch):
    monkeypatch.setattr("rebalancer.config.env.MIN_GAS_BALANCE", Decimal("-1"))

    with pytest.raises(ConfigError):
        Settings.from_env("mainnet")
