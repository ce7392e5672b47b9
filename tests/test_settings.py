from turns.settings import Settings, TurnConfig


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("MODEL_PROVIDER", "openai")
    monkeypatch.setenv("MODEL_TIMEOUT", "12.5")
    monkeypatch.setenv("TURN_MAX_TOKENS", "4000")
    monkeypatch.setenv("TURN_MAX_ACTIVE_NPCS", "3")

    settings = Settings.from_env()

    assert settings.model_provider == "openai"
    assert settings.model_timeout == 12.5
    config = settings.turn_config()
    assert config.max_tokens == 4000
    assert config.max_active_npcs == 3
    assert config.model_timeout == 12.5


def test_turn_config_overrides() -> None:
    settings = Settings.from_env()
    config = settings.turn_config(temperature=0.3, module_overrides={"economy": True})

    assert config.temperature == 0.3
    assert config.assembler_config().module_overrides == {"economy": True}
    assert config.invocation_settings().temperature == 0.3
    assert TurnConfig().invocation_settings().repair_temperature == 0.2
