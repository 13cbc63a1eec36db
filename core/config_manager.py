import os
import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from core.logging_utils import log_json
from core.exceptions import ConfigurationError
from core.runtime_paths import pai_home

# ---------------------------------------------------------------------------
# Value validators: each returns (is_valid: bool, coerced_value, reason: str)
# ---------------------------------------------------------------------------

def _validate_positive_int(key: str, val: Any) -> Tuple[bool, Any, str]:
    if isinstance(val, bool):
        return False, None, f"{key} must be an integer, got {val!r}"
    try:
        v = int(val)
        if v > 0:
            return True, v, ""
        return False, None, f"{key} must be a positive integer, got {val!r}"
    except (ValueError, TypeError, OverflowError):
        return False, None, f"{key} must be an integer, got {val!r}"


def _validate_non_negative_int(key: str, val: Any) -> Tuple[bool, Any, str]:
    if isinstance(val, bool):
        return False, None, f"{key} must be an integer, got {val!r}"
    try:
        v = int(val)
        if v >= 0:
            return True, v, ""
        return False, None, f"{key} must be zero or a positive integer, got {val!r}"
    except (ValueError, TypeError, OverflowError):
        return False, None, f"{key} must be an integer, got {val!r}"


def _validate_bool(key: str, val: Any) -> Tuple[bool, Any, str]:
    if isinstance(val, bool):
        return True, val, ""
    if isinstance(val, str) and val.lower() in ("true", "false", "1", "0", "yes", "no"):
        return True, val.lower() in ("true", "1", "yes"), ""
    return False, None, f"{key} must be a boolean, got {val!r}"


def _validate_string(key: str, val: Any) -> Tuple[bool, Any, str]:
    if val is None or isinstance(val, str):
        return True, val, ""
    return False, None, f"{key} must be a string, got {val!r}"


# Key → validator function
_KEY_VALIDATORS = {
    "events_dir":          lambda k, v: _validate_string(k, v),
    "archive_dir":         lambda k, v: _validate_string(k, v),
    "retention_days":      lambda k, v: _validate_non_negative_int(k, v),
    "max_periods_per_run": lambda k, v: _validate_positive_int(k, v),
    "use_index":           lambda k, v: _validate_bool(k, v),
}

def validate_value(key: str, value: Any) -> Any:
    """Validate an explicitly supplied option; raise instead of falling back."""
    validator = _KEY_VALIDATORS.get(key)
    if validator is None:
        return value
    ok, coerced, reason = validator(key, value)
    if not ok:
        raise ConfigurationError(reason)
    return coerced


DEFAULT_CONFIG = {
    # None means "under ~/.pai" (see core.runtime_paths)
    "events_dir": None,
    "archive_dir": None,
    "retention_days": 90,
    "max_periods_per_run": 3,
    "use_index": True,
}


def default_config_file() -> Path:
    env_path = os.environ.get("PAI_CONFIG_FILE")
    if env_path:
        return Path(env_path)
    return pai_home() / "config.json"


class ConfigManager:
    """
    Centralized configuration for the event log and its compaction engine.
    Enforces a tiered strategy: (Overrides > ENV > JSON > Defaults).
    """
    def __init__(self, config_file=None, overrides: Optional[Dict[str, Any]] = None, ignore_file: bool = False):
        self.config_file = Path(config_file) if config_file else default_config_file()
        self.ignore_file = ignore_file
        self.runtime_overrides = overrides or {}
        self.file_config = {}
        self.effective_config = {}

        self.refresh()

    def _load_from_file(self) -> Dict[str, Any]:
        if self.ignore_file or not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            log_json("ERROR", "config_parse_failed", details={"path": str(self.config_file), "error": str(e)})
            raise ConfigurationError(f"Failed to parse config file: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {self.config_file} must contain a JSON object")
        log_json("INFO", "config_loaded_from_file", details={"path": str(self.config_file)})
        return data

    def _load_from_env(self) -> Dict[str, Any]:
        env_config = {}

        # Standard PAI_* overrides for all keys in DEFAULT_CONFIG
        for key, default_val in DEFAULT_CONFIG.items():
            env_key = f"PAI_{key.upper()}"
            if env_key not in os.environ:
                continue
            val = os.environ[env_key]
            try:
                if isinstance(default_val, bool):
                    env_config[key] = val.lower() in ("true", "1", "yes")
                elif isinstance(default_val, int):
                    env_config[key] = int(val)
                else:
                    env_config[key] = val
            except (ValueError, TypeError):
                log_json("WARN", "config_env_coercion_failed", details={"key": key, "val": val})
                # Skip this key, let it fall back to JSON/Default
                continue

        return env_config

    def refresh(self):
        """Re-evaluates the effective configuration based on the tier hierarchy."""
        self.file_config = self._load_from_file()
        env_config = self._load_from_env()

        # Merge hierarchy: Defaults < JSON < ENV < Overrides
        merged = DEFAULT_CONFIG.copy()
        merged.update(self.file_config)
        merged.update(env_config)
        merged.update(self.runtime_overrides)

        self.effective_config = merged

    def _validate_value(self, key: str, value: Any) -> Any:
        """Validate *value* for *key*; return coerced value or DEFAULT_CONFIG fallback on error."""
        validator = _KEY_VALIDATORS.get(key)
        if validator is None:
            return value
        ok, coerced, reason = validator(key, value)
        if ok:
            return coerced
        default = DEFAULT_CONFIG.get(key)
        log_json("ERROR", "config_value_invalid",
                 details={"key": key, "value": value, "reason": reason,
                          "fallback": default})
        return default

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieves a configuration value from the effective config."""
        val = self.effective_config.get(key, default)
        return self._validate_value(key, val) if key in _KEY_VALIDATORS else val

    def show_config(self) -> Dict[str, Any]:
        """Effective value of every known key after validation (``status --json``)."""
        return {key: self.get(key) for key in DEFAULT_CONFIG}


def _load_global_config() -> ConfigManager:
    try:
        return ConfigManager()
    except ConfigurationError:
        # A broken config file must not make the library unimportable
        log_json("WARN", "config_file_ignored", details={"path": str(default_config_file())})
        return ConfigManager(ignore_file=True)


# Global instance initialized with defaults
config = _load_global_config()
