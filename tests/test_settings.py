"""
Tests for settings loading: YAML with ${VAR} substitution, environment
overrides and startup validation.
"""
import pytest

from config.settings import (
    ConfigError, Settings, get_settings, load_settings, reset_settings,
)

_ENV_VARS = (
    "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "SERVER_URL", "HOST", "PORT",
    "CALL_TIMEOUT_SECONDS", "RETENTION_SECONDS", "VOICEFLOW_RUNTIME_URL", "CALLTRACK_CONFIG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


class TestLoadSettings:

    def test_defaults_without_file(self, tmp_path):
        settings = load_settings(str(tmp_path / "missing.yaml"))
        assert settings.port == 4242
        assert settings.tracker.call_timeout_seconds == 45
        assert settings.tracker.retention_seconds == 3600
        assert settings.telephony.provider == "twilio"

    def test_yaml_with_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MY_SID", "AC_from_env")
        path = tmp_path / "settings.yaml"
        path.write_text(
            "server_url: https://calls.example.com/\n"
            "port: 8080\n"
            "telephony:\n"
            "  account_sid: ${MY_SID}\n"
            "  auth_token: ${UNSET_TOKEN_VAR}\n"
            "tracker:\n"
            "  call_timeout_seconds: 30\n"
        )
        settings = load_settings(str(path))
        assert settings.server_url == "https://calls.example.com"
        assert settings.port == 8080
        assert settings.telephony.account_sid == "AC_from_env"
        assert settings.telephony.auth_token == ""
        assert settings.tracker.call_timeout_seconds == 30
        assert settings.tracker.retention_seconds == 3600

    def test_env_overrides_win(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("port: 8080\n")
        monkeypatch.setenv("PORT", "9000")
        monkeypatch.setenv("RETENTION_SECONDS", "60")
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "tok")
        settings = load_settings(str(path))
        assert settings.port == 9000
        assert settings.tracker.retention_seconds == 60
        assert settings.telephony.auth_token == "tok"

    def test_bundled_yaml_loads(self, monkeypatch):
        monkeypatch.setenv("SERVER_URL", "https://calls.example.com")
        settings = load_settings()
        assert settings.server_url == "https://calls.example.com"
        assert settings.port == 4242
        assert not hasattr(settings, "app_name")

    def test_bad_integer_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PORT", "eighty")
        with pytest.raises(ConfigError, match="PORT"):
            load_settings(str(tmp_path / "missing.yaml"))

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "alt.yaml"
        path.write_text("server_url: https://alt.example.com\n")
        monkeypatch.setenv("CALLTRACK_CONFIG", str(path))
        assert get_settings().server_url == "https://alt.example.com"

    def test_get_settings_is_cached(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CALLTRACK_CONFIG", str(tmp_path / "missing.yaml"))
        assert get_settings() is get_settings()


class TestValidate:

    def test_reports_every_problem(self):
        with pytest.raises(ConfigError) as exc:
            Settings().validate()
        message = str(exc.value)
        assert "TWILIO_ACCOUNT_SID" in message
        assert "TWILIO_AUTH_TOKEN" in message
        assert "SERVER_URL" in message

    def test_non_positive_timers(self):
        settings = Settings(server_url="https://x")
        settings.telephony.account_sid = "AC"
        settings.telephony.auth_token = "t"
        settings.tracker.call_timeout_seconds = 0
        with pytest.raises(ConfigError, match="CALL_TIMEOUT_SECONDS"):
            settings.validate()

    def test_valid(self):
        settings = Settings(server_url="https://x")
        settings.telephony.account_sid = "AC"
        settings.telephony.auth_token = "t"
        settings.validate()
