from eai_broker.config import DEFAULT_POLL_DELAYS_MS, Settings, env_flag, parse_delays


def test_defaults(monkeypatch):
    for name in ("CONSUMER_BATCH_SIZE", "VALIDATION_POLICY", "POLL_DELAYS_MS", "PUBLISH_DEDUP_WINDOW_HOURS"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings()
    assert settings.consumer_batch_size == 50
    assert settings.validation_policy == "reject_record"
    assert settings.poll_delays_ms == DEFAULT_POLL_DELAYS_MS
    assert settings.publish_dedup_window_hours == 24


def test_environment_read_at_instantiation(monkeypatch):
    monkeypatch.setenv("CONSUMER_CONCURRENCY", "9")
    monkeypatch.setenv("VALIDATION_POLICY", "null_field")
    monkeypatch.setenv("POLL_DELAYS_MS", "10,20")
    monkeypatch.setenv("SWEEP_INTERVAL_SECONDS", "0.5")
    settings = Settings()
    assert settings.consumer_concurrency == 9
    assert settings.validation_policy == "null_field"
    assert settings.poll_delays_ms == [10, 20]
    assert settings.sweep_interval_seconds == 0.5


def test_parse_delays_falls_back_on_garbage():
    assert parse_delays("100, 200,400", [1]) == [100, 200, 400]
    assert parse_delays("", [1, 2]) == [1, 2]
    assert parse_delays("a,b", [3]) == [3]
    assert parse_delays(" , ", [4]) == [4]


def test_env_flag(monkeypatch):
    monkeypatch.setenv("INIT_DB_BEST_EFFORT", "Yes")
    assert env_flag("INIT_DB_BEST_EFFORT")
    monkeypatch.setenv("INIT_DB_BEST_EFFORT", "0")
    assert not env_flag("INIT_DB_BEST_EFFORT")
    assert env_flag("SOME_UNSET_FLAG_FOR_TEST", "true")
