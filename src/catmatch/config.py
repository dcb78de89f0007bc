from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from .errors import ConfigError

REPO_ROOT = Path(__file__).resolve().parents[2]
CONFIG_FILE = REPO_ROOT / "configs" / "config.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_MISSING = object()

CHUNK_SIZE_MIN = 1
CHUNK_SIZE_MAX = 20
DEFAULT_CHUNK_SIZE = 5
DEFAULT_FUZZY_THRESHOLD = 70


def load_env_file(path: Path) -> None:
    """Load KEY=VALUE lines into os.environ without overriding existing values."""
    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        if key and key not in os.environ:
            os.environ[key] = value


def to_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def require_int(value: object, field: str) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise ValueError(f"Invalid value for '{field}': expected integer-like, got {type(value).__name__}")


def require_float(value: object, field: str) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return float(value.strip())
    raise ValueError(f"Invalid value for '{field}': expected float-like, got {type(value).__name__}")


def _config_path() -> Path:
    override = os.environ.get("CATMATCH_CONFIG_FILE", "").strip()
    if override:
        return Path(override).expanduser()
    return CONFIG_FILE


def load_config(path: Path | None = None) -> dict[str, Any]:
    target = path or _config_path()
    if not target.exists():
        return {}
    try:
        data = json.loads(target.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file is not valid JSON: {target}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a JSON object: {target}")
    return data


def config_value(path: str, default: Any = None) -> Any:
    node: Any = load_config()
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def env_or_config(
    env_key: str,
    config_path: str,
    default: Any = None,
    cast: Callable[[Any], Any] | None = None,
) -> Any:
    raw = os.environ.get(env_key, "").strip()
    value: Any = raw if raw else config_value(config_path, _MISSING)
    if value is _MISSING or value is None:
        return default
    if cast is None:
        return value
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {env_key} / '{config_path}': {value!r}") from exc


def resolve_repo_path(value: str | Path) -> Path:
    path = Path(value).expanduser()
    if path.is_absolute():
        return path
    return REPO_ROOT / path


def resolve_openai_api_key() -> str:
    key = str(env_or_config("OPENAI_API_KEY", "completion.api_key", "")).strip()
    if not key:
        raise ConfigError("OPENAI_API_KEY is empty. Set it in .env or the environment.")
    return key


def bounded_int(name: str, value: int, *, min_val: int, max_val: int) -> int:
    if value < min_val:
        print(f"[warn] {name}={value} is below minimum {min_val}, using {min_val}", flush=True)
        return min_val
    if value > max_val:
        print(f"[warn] {name}={value} is above maximum {max_val}, using {max_val}", flush=True)
        return max_val
    return value


@dataclass(frozen=True)
class CategorizerSettings:
    chunk_size: int
    fuzzy_threshold: int
    match_tiers: tuple[str, ...]
    chunk_delay_seconds: float
    unmatched_category: str
    uncategorized_slug: str
    max_prompt_categories: int
    completion_timeout: float
    batch_completion_timeout: float
    site_fetch_timeout: float


def load_categorizer_settings() -> CategorizerSettings:
    chunk_size = require_int(
        env_or_config("CHUNK_SIZE", "categorizer.chunk_size", DEFAULT_CHUNK_SIZE),
        "categorizer.chunk_size",
    )
    threshold = require_int(
        env_or_config("FUZZY_THRESHOLD", "categorizer.fuzzy_threshold", DEFAULT_FUZZY_THRESHOLD),
        "categorizer.fuzzy_threshold",
    )
    tiers = env_or_config("MATCH_TIERS", "categorizer.match_tiers", ["exact", "substring", "fuzzy"])
    if isinstance(tiers, str):
        tiers = [part.strip() for part in tiers.split(",") if part.strip()]
    return CategorizerSettings(
        chunk_size=bounded_int("CHUNK_SIZE", chunk_size, min_val=CHUNK_SIZE_MIN, max_val=CHUNK_SIZE_MAX),
        fuzzy_threshold=bounded_int("FUZZY_THRESHOLD", threshold, min_val=0, max_val=100),
        match_tiers=tuple(str(tier).strip().lower() for tier in tiers),
        chunk_delay_seconds=max(
            0.0,
            require_float(
                env_or_config("CHUNK_DELAY_SECONDS", "categorizer.chunk_delay_seconds", 0.5),
                "categorizer.chunk_delay_seconds",
            ),
        ),
        unmatched_category=str(
            env_or_config("UNMATCHED_CATEGORY", "categorizer.unmatched_category", "Unmatched")
        ).strip()
        or "Unmatched",
        uncategorized_slug=str(
            env_or_config("UNCATEGORIZED_SLUG", "store.uncategorized_slug", "uncategorized")
        ).strip(),
        max_prompt_categories=require_int(
            env_or_config("MAX_PROMPT_CATEGORIES", "categorizer.max_prompt_categories", 200),
            "categorizer.max_prompt_categories",
        ),
        completion_timeout=require_float(
            env_or_config("COMPLETION_TIMEOUT", "completion.timeout_seconds", 30),
            "completion.timeout_seconds",
        ),
        batch_completion_timeout=require_float(
            env_or_config("BATCH_COMPLETION_TIMEOUT", "completion.batch_timeout_seconds", 45),
            "completion.batch_timeout_seconds",
        ),
        site_fetch_timeout=require_float(
            env_or_config("SITE_FETCH_TIMEOUT", "external_search.fetch_timeout_seconds", 15),
            "external_search.fetch_timeout_seconds",
        ),
    )
