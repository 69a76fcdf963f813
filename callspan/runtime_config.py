"""Runtime configuration state management."""

import os
from typing import Any, Dict, Mapping, Optional

from callspan.errors import ConfigError

_DEFAULTS: Dict[str, Any] = {
    "tracestate_max_length": 512,
    "sample_rate": 1.0,
    "service_name": "callspan",
    "success_event_template": "{name} success",
    "attr_truncation_limit": 1000,
    "debug": False,
}

# Global runtime configuration state
_config: Dict[str, Any] = dict(_DEFAULTS)

ENV_PREFIX = "CALLSPAN_"


def reset() -> None:
    """Restore every setting to its default."""
    _config.clear()
    _config.update(_DEFAULTS)


def set_tracestate_max_length(value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ConfigError(
            "tracestate_max_length must be a non-negative integer",
            {"value": value},
        )
    _config["tracestate_max_length"] = value


def get_tracestate_max_length() -> int:
    return _config["tracestate_max_length"]


def set_sample_rate(value: float) -> None:
    if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
        raise ConfigError("sample_rate must be between 0.0 and 1.0", {"value": value})
    _config["sample_rate"] = float(value)


def get_sample_rate() -> float:
    return _config["sample_rate"]


def set_service_name(value: str) -> None:
    if not value:
        raise ConfigError("service_name must be a non-empty string")
    _config["service_name"] = value


def get_service_name() -> str:
    return _config["service_name"]


def set_success_event_template(value: str) -> None:
    if "{name}" not in value:
        raise ConfigError(
            "success_event_template must contain a '{name}' placeholder",
            {"value": value},
        )
    _config["success_event_template"] = value


def get_success_event_template() -> str:
    return _config["success_event_template"]


def set_attr_truncation_limit(value: int) -> None:
    if not isinstance(value, int) or value <= 0:
        raise ConfigError("attr_truncation_limit must be a positive integer", {"value": value})
    _config["attr_truncation_limit"] = value


def get_attr_truncation_limit() -> int:
    return _config["attr_truncation_limit"]


def set_debug(value: bool) -> None:
    _config["debug"] = bool(value)


def get_debug() -> bool:
    return _config["debug"]


def _parse_bool(name: str, raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ConfigError(f"{name} must be a boolean", {"value": raw})


def load_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Apply CALLSPAN_* environment variables on top of the current settings.

    Recognised variables:
        CALLSPAN_TRACESTATE_MAX_LENGTH, CALLSPAN_SAMPLE_RATE,
        CALLSPAN_SERVICE_NAME, CALLSPAN_DEBUG

    Returns:
        Dict of the settings that were applied, keyed by setting name.

    Raises:
        ConfigError: if a variable holds a value of the wrong type or range.
    """
    env = os.environ if environ is None else environ
    applied: Dict[str, Any] = {}

    raw = env.get(ENV_PREFIX + "TRACESTATE_MAX_LENGTH")
    if raw is not None:
        try:
            value = int(raw)
        except ValueError:
            raise ConfigError(
                "CALLSPAN_TRACESTATE_MAX_LENGTH must be an integer", {"value": raw}
            ) from None
        set_tracestate_max_length(value)
        applied["tracestate_max_length"] = value

    raw = env.get(ENV_PREFIX + "SAMPLE_RATE")
    if raw is not None:
        try:
            rate = float(raw)
        except ValueError:
            raise ConfigError("CALLSPAN_SAMPLE_RATE must be a number", {"value": raw}) from None
        set_sample_rate(rate)
        applied["sample_rate"] = rate

    raw = env.get(ENV_PREFIX + "SERVICE_NAME")
    if raw:
        set_service_name(raw)
        applied["service_name"] = raw

    raw = env.get(ENV_PREFIX + "DEBUG")
    if raw is not None:
        debug = _parse_bool(ENV_PREFIX + "DEBUG", raw)
        set_debug(debug)
        applied["debug"] = debug

    return applied
