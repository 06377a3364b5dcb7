"""Configuration loader for okrpilot."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict
import os
import yaml

from okrpilot.categories import UNCATEGORIZED
from okrpilot.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default.yaml"
USER_CONFIG_PATH = Path.home() / ".config" / "okrpilot" / "config.yaml"

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _flag(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def load_config(
    default_path: Path | None = None,
    user_path: Path | None = None,
) -> Dict[str, Any]:
    default_path = default_path or DEFAULT_CONFIG_PATH
    user_path = user_path or USER_CONFIG_PATH
    data: Dict[str, Any] = {}
    if default_path.exists():
        data = yaml.safe_load(default_path.read_text()) or {}
    if user_path.exists():
        override = yaml.safe_load(user_path.read_text()) or {}
        data = _deep_merge(data, override)

    # Environment overrides - Gemini
    api_key = os.getenv("GEMINI_API_KEY")
    if api_key:
        data.setdefault("gemini", {})["api_key"] = api_key
    model = os.getenv("GEMINI_MODEL")
    if model is not None:
        data.setdefault("gemini", {})["model"] = model
    default_model = os.getenv("OKRPILOT_DEFAULT_MODEL")
    if default_model:
        data.setdefault("gemini", {})["default_model"] = default_model
    timeout = os.getenv("OKRPILOT_TIMEOUT")
    if timeout:
        try:
            data.setdefault("gemini", {})["timeout_seconds"] = int(timeout)
        except ValueError:
            pass

    # Environment overrides - Reconcile behaviour
    strict_mode = os.getenv("OKRPILOT_STRICT")
    if strict_mode is not None:
        data.setdefault("reconcile", {})["strict"] = _flag(strict_mode)

    # Environment overrides - Server
    host = os.getenv("OKRPILOT_HOST")
    port = os.getenv("OKRPILOT_PORT")
    if host:
        data.setdefault("server", {})["host"] = host
    if port:
        try:
            data.setdefault("server", {})["port"] = int(port)
        except ValueError:
            pass

    # Environment overrides - Data directory and audit trail
    data_dir = os.getenv("OKRPILOT_DATA_DIR")
    if data_dir:
        data["data_dir"] = data_dir
    audit = os.getenv("OKRPILOT_AUDIT")
    if audit is not None:
        data.setdefault("audit", {})["enabled"] = _flag(audit)

    return data


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def gemini(self) -> Dict[str, Any]:
        return self.raw.get("gemini", {}) or {}

    @property
    def reconcile(self) -> Dict[str, Any]:
        return self.raw.get("reconcile", {}) or {}

    @property
    def server(self) -> Dict[str, Any]:
        return self.raw.get("server", {}) or {}

    @property
    def audit(self) -> Dict[str, Any]:
        return self.raw.get("audit", {}) or {}

    @property
    def data_dir(self) -> Path:
        default = str(Path.home() / ".okrpilot")
        return Path(self.raw.get("data_dir", default)).expanduser()

    @property
    def api_key(self) -> str:
        return str(self.gemini.get("api_key") or "").strip()

    @property
    def api_base(self) -> str:
        return str(self.gemini.get("api_base") or DEFAULT_API_BASE)

    @property
    def model_override(self) -> str | None:
        """Explicitly configured model; when set, discovery is never used."""
        value = str(self.gemini.get("model") or "").strip()
        return value or None

    @property
    def default_model(self) -> str:
        """Model tried first when no override is configured."""
        return str(self.gemini.get("default_model") or DEFAULT_GEMINI_MODEL)

    @property
    def timeout_seconds(self) -> int:
        """Timeout for a single HTTP call to the model API. Default 2 minutes."""
        return int(self.gemini.get("timeout_seconds", 120))

    @property
    def strict(self) -> bool:
        return bool(self.reconcile.get("strict", False))

    @property
    def default_deadline_days(self) -> int:
        return int(self.reconcile.get("default_deadline_days", 14))

    @property
    def placeholder_categories(self) -> list[str]:
        values = self.reconcile.get("placeholder_categories") or [UNCATEGORIZED]
        return [str(v) for v in values]

    @property
    def audit_enabled(self) -> bool:
        return bool(self.audit.get("enabled", False))

    @property
    def audit_path(self) -> Path:
        path = self.audit.get("path")
        return Path(path).expanduser() if path else self.data_dir / "audit.jsonl"

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError(
                "Missing GEMINI_API_KEY. Set it in the environment or under gemini.api_key in the config file."
            )
        return self.api_key


def get_config() -> Config:
    return Config(load_config())
