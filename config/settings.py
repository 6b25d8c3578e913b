"""
Configuration loader for the call status tracker.
Reads settings from an optional YAML file with environment variable
substitution, then applies environment overrides.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml

logger = structlog.get_logger()


class ConfigError(Exception):
    """Required configuration is missing or invalid; the service must not start."""


@dataclass
class TelephonyConfig:
    provider: str = "twilio"
    account_sid: str = ""
    auth_token: str = ""


@dataclass
class TrackerConfig:
    call_timeout_seconds: int = 45       # no-answer guard, also the ring timeout
    retention_seconds: int = 3600        # how long finished calls stay queryable


@dataclass
class VoiceflowConfig:
    runtime_url: str = "https://runtime-api.voiceflow.com/v1/twilio/webhooks"


@dataclass
class Settings:
    server_url: str = ""
    host: str = "0.0.0.0"
    port: int = 4242
    telephony: TelephonyConfig = field(default_factory=TelephonyConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    voiceflow: VoiceflowConfig = field(default_factory=VoiceflowConfig)

    def validate(self) -> None:
        """Raise ConfigError listing every problem at once."""
        problems = []
        if not self.telephony.account_sid:
            problems.append("TWILIO_ACCOUNT_SID is not set")
        if not self.telephony.auth_token:
            problems.append("TWILIO_AUTH_TOKEN is not set")
        if not self.server_url:
            problems.append("SERVER_URL is not set")
        if self.port <= 0:
            problems.append(f"PORT must be positive, got {self.port}")
        if self.tracker.call_timeout_seconds <= 0:
            problems.append("CALL_TIMEOUT_SECONDS must be positive")
        if self.tracker.retention_seconds <= 0:
            problems.append("RETENTION_SECONDS must be positive")
        if problems:
            raise ConfigError("; ".join(problems))


_settings: Optional[Settings] = None

# Environment variable → (section, attribute, type); section None means top level.
_ENV_OVERRIDES: dict[str, tuple[Optional[str], str, type]] = {
    "TWILIO_ACCOUNT_SID": ("telephony", "account_sid", str),
    "TWILIO_AUTH_TOKEN": ("telephony", "auth_token", str),
    "SERVER_URL": (None, "server_url", str),
    "HOST": (None, "host", str),
    "PORT": (None, "port", int),
    "CALL_TIMEOUT_SECONDS": ("tracker", "call_timeout_seconds", int),
    "RETENTION_SECONDS": ("tracker", "retention_seconds", int),
    "VOICEFLOW_RUNTIME_URL": ("voiceflow", "runtime_url", str),
}


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _coerce(name: str, raw: str, kind: type) -> Any:
    try:
        return kind(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be {kind.__name__}, got {raw!r}") from e


def _apply_yaml(settings: Settings, raw: dict[str, Any]) -> None:
    settings.server_url = raw.get("server_url", settings.server_url) or ""
    settings.host = raw.get("host", settings.host)
    settings.port = int(raw.get("port", settings.port) or settings.port)

    if "telephony" in raw:
        tel = raw["telephony"] or {}
        settings.telephony = TelephonyConfig(
            provider=tel.get("provider", "twilio"),
            account_sid=tel.get("account_sid", ""),
            auth_token=tel.get("auth_token", ""),
        )

    if "tracker" in raw:
        tr = raw["tracker"] or {}
        settings.tracker = TrackerConfig(
            call_timeout_seconds=int(tr.get("call_timeout_seconds", 45)),
            retention_seconds=int(tr.get("retention_seconds", 3600)),
        )

    if "voiceflow" in raw:
        vf = raw["voiceflow"] or {}
        settings.voiceflow = VoiceflowConfig(
            runtime_url=vf.get("runtime_url", settings.voiceflow.runtime_url),
        )


def _apply_env(settings: Settings) -> None:
    for env_name, (section, attr, kind) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        target = getattr(settings, section) if section else settings
        setattr(target, attr, _coerce(env_name, raw, kind))


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML (if present) plus environment overrides."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "CALLTRACK_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        _apply_yaml(settings, _process_values(raw))

    _apply_env(settings)
    settings.server_url = settings.server_url.rstrip("/")

    logger.info("settings_loaded",
                config_path=config_path,
                server_url=settings.server_url,
                port=settings.port)
    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings
    _settings = None
