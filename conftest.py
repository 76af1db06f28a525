"""
Root conftest — isolate secret environment variables so that Settings-based
tests are not affected by real tokens in the developer's or CI environment.
"""
import pytest

_SECRET_ENV_VARS = [
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "HA_TOKEN",
    "OLLAMA_BASE_URL",
    "SIGNAL_ANALYST_CONFIG",
]


@pytest.fixture(autouse=True)
def _clear_secrets_from_env(monkeypatch):
    """Remove secret env vars for every test so Settings() behaves as if none
    are present unless the test explicitly provides them. Also disables .env
    file loading so a local developer .env can't leak real credentials."""
    for var in _SECRET_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
