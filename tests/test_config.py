import json

from config.settings import CONFIG, EngineConfig, SharedStoreConfig
from config.settings_utils import _dataclass_to_dict, _safe_dataclass_from_dict
from core.types import FailurePolicy


def test_defaults() -> None:
    assert CONFIG.engine.repeat_last_value is False
    assert CONFIG.engine.failure_policy is FailurePolicy.SWALLOW
    assert CONFIG.shared.backend == "memory"
    assert CONFIG.shared.save_period == 2
    assert CONFIG.shared.allow_write is False
    assert CONFIG.validation_warnings == []


def test_safe_dataclass_bool_parses_false_strings() -> None:
    cfg = EngineConfig()
    cfg.print_in_main_log = True

    warnings = _safe_dataclass_from_dict(cfg, {"print_in_main_log": "false"})

    assert warnings == []
    assert cfg.print_in_main_log is False


def test_safe_dataclass_bool_rejects_unknown_string() -> None:
    cfg = EngineConfig()

    warnings = _safe_dataclass_from_dict(cfg, {"repeat_last_value": "maybe"})

    assert cfg.repeat_last_value is False
    assert warnings
    assert "Bad value for bool field 'repeat_last_value'" in warnings[0]


def test_safe_dataclass_enum_by_name_or_value() -> None:
    cfg = EngineConfig()

    assert _safe_dataclass_from_dict(cfg, {"failure_policy": "RETHROW"}) == []
    assert cfg.failure_policy is FailurePolicy.RETHROW
    assert _safe_dataclass_from_dict(cfg, {"failure_policy": "swallow"}) == []
    assert cfg.failure_policy is FailurePolicy.SWALLOW

    warnings = _safe_dataclass_from_dict(cfg, {"failure_policy": "explode"})
    assert warnings and "failure_policy" in warnings[0]


def test_safe_dataclass_optional_str_and_unknown_field() -> None:
    cfg = SharedStoreConfig()

    warnings = _safe_dataclass_from_dict(cfg, {"password": "s3cret", "colour": "red"})

    assert cfg.password == "s3cret"
    assert warnings == ["Unknown field 'colour' - ignored"]


def test_dataclass_to_dict_uses_enum_values() -> None:
    data = _dataclass_to_dict(EngineConfig(failure_policy=FailurePolicy.RETHROW))
    assert data["failure_policy"] == "rethrow"


def test_load_from_env(monkeypatch) -> None:
    monkeypatch.setenv("BARCACHE_SAVE_PERIOD", "5")
    monkeypatch.setenv("BARCACHE_ALLOW_SHARED_WRITE", "true")
    monkeypatch.setenv("BARCACHE_FAILURE_POLICY", "rethrow")
    monkeypatch.setenv("BARCACHE_SHARED_BACKEND", "REDIS")
    CONFIG.reload()

    assert CONFIG.shared.save_period == 5
    assert CONFIG.shared.allow_write is True
    assert CONFIG.engine.failure_policy is FailurePolicy.RETHROW
    assert CONFIG.shared.backend == "redis"


def test_invalid_env_does_not_override(monkeypatch) -> None:
    monkeypatch.setenv("BARCACHE_FAILURE_POLICY", "sometimes")
    CONFIG.reload()
    assert CONFIG.engine.failure_policy is FailurePolicy.SWALLOW


def test_save_period_env_clamped_to_one(monkeypatch) -> None:
    monkeypatch.setenv("BARCACHE_SAVE_PERIOD", "0")
    CONFIG.reload()
    assert CONFIG.shared.save_period == 1


def test_validation_corrects_bad_values(monkeypatch) -> None:
    monkeypatch.setenv("BARCACHE_SHARED_BACKEND", "memcached")
    monkeypatch.setenv("BARCACHE_LOG_LEVEL", "chatty")
    CONFIG.reload()

    assert CONFIG.shared.backend == "memory"
    assert CONFIG.logging.level == "INFO"
    assert len(CONFIG.validation_warnings) == 2


def test_config_file_then_env(tmp_path, monkeypatch) -> None:
    path = tmp_path / "engine.json"
    path.write_text(
        json.dumps({"shared": {"save_period": 4, "key_prefix": "x:"},
                    "engine": {"repeat_last_value": True}}),
        encoding="utf-8",
    )
    monkeypatch.setenv("BARCACHE_CONFIG_FILE", str(path))
    monkeypatch.setenv("BARCACHE_SAVE_PERIOD", "9")
    CONFIG.reload()

    assert CONFIG.shared.save_period == 9
    assert CONFIG.shared.key_prefix == "x:"
    assert CONFIG.engine.repeat_last_value is True


def test_save_round_trips_through_file(tmp_path, monkeypatch) -> None:
    path = tmp_path / "saved.json"
    monkeypatch.setenv("BARCACHE_CONFIG_FILE", str(path))
    CONFIG.reload()
    CONFIG.engine.failure_policy = FailurePolicy.RETHROW
    CONFIG.save()

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["engine"]["failure_policy"] == "rethrow"

    CONFIG.reload()
    assert CONFIG.engine.failure_policy is FailurePolicy.RETHROW


def test_broken_config_file_is_ignored(tmp_path, monkeypatch) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("BARCACHE_CONFIG_FILE", str(path))
    CONFIG.reload()
    assert CONFIG.shared.save_period == 2


def test_redis_socket_timeout_from_env(monkeypatch) -> None:
    monkeypatch.setenv("BARCACHE_REDIS_SOCKET_TIMEOUT", "2.5")
    CONFIG.reload()
    assert CONFIG.shared.socket_timeout == 2.5

    monkeypatch.setenv("BARCACHE_REDIS_SOCKET_TIMEOUT", "nan")
    CONFIG.reload()
    assert CONFIG.shared.socket_timeout == 5.0

    monkeypatch.setenv("BARCACHE_REDIS_SOCKET_TIMEOUT", "-1")
    CONFIG.reload()
    assert CONFIG.shared.socket_timeout == 5.0
    assert any("socket_timeout" in w for w in CONFIG.validation_warnings)
