"""
Shared argument handling for the tagging and download scripts.

The tagger takes positional KEY=VALUE tokens; both scripts read a few
operational knobs (worker count, dry run, deadline) from the environment.
"""

from typing import Iterable, Mapping


TRUTHY = {"1", "true", "yes", "on"}


class ConfigError(ValueError):
    """A required parameter is missing or invalid."""


def parse_key_values(tokens: Iterable[str], recognized: Iterable[str]) -> dict:
    """Parse KEY=VALUE tokens, keeping only recognized keys.

    Tokens without '=' and unknown keys are ignored. The value is everything
    after the first '='; a later token for the same key wins.
    """
    wanted = set(recognized)
    values = {}
    for token in tokens:
        key, sep, value = token.partition("=")
        if not sep or key not in wanted:
            continue
        values[key] = value
    return values


def require(values: Mapping[str, str], key: str) -> str:
    value = values.get(key, "")
    if not value:
        raise ConfigError(f"{key} is required (pass {key}=<value>)")
    return value


def env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < 1:
        raise ConfigError(f"{name} must be at least 1, got {value}")
    return value


def env_float(environ: Mapping[str, str], name: str) -> float | None:
    raw = environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def env_flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "").strip().lower() in TRUTHY
