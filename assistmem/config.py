from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/assistmem/config.json").expanduser()

INT_KEYS = {
    "token_limit",
    "reserved_tokens",
    "context_message_cap",
    "summary_keep",
    "recent_message_limit",
    "rolling_summary_interval",
    "semantic_retrieval_count",
    "max_search_results",
    "summary_max_tokens",
    "backfill_interval_s",
    "backfill_message_limit",
    "graph_max_semantic_facts",
    "graph_max_comparisons",
    "graph_max_keyword_facts",
}

FLOAT_KEYS = {
    "vector_weight",
    "keyword_weight",
    "min_score_threshold",
    "keyword_only_threshold",
    "message_similarity_floor",
}

BOOL_KEYS = {"embedding_disabled"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("ASSISTMEM_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


@dataclass
class AssistMemConfig:
    db_path: str = "~/.assistmem.sqlite"

    # Classic (budgeted-tail) context assembly.
    token_limit: int = 150000
    reserved_tokens: int = 10000
    context_message_cap: int = 1000
    summary_keep: int = 3

    # Smart (rolling + semantic) context assembly.
    recent_message_limit: int = 20
    rolling_summary_interval: int = 50
    semantic_retrieval_count: int = 5

    # Hybrid retrieval.
    vector_weight: float = 0.7
    keyword_weight: float = 0.3
    min_score_threshold: float = 0.35
    keyword_only_threshold: float = 0.15
    max_search_results: int = 6
    message_similarity_floor: float = 0.3

    embedding_provider: str | None = None
    embedding_model: str | None = None
    embedding_api_key: str | None = None
    embedding_disabled: bool = False

    summary_provider: str | None = None
    summary_model: str | None = None
    summary_api_key: str | None = None
    summary_base_url: str | None = None
    summary_max_tokens: int = 600

    backfill_interval_s: int = 300
    backfill_message_limit: int = 100

    graph_max_semantic_facts: int = 200
    graph_max_comparisons: int = 5000
    graph_max_keyword_facts: int = 150


CONFIG_KEYS = frozenset(field.name for field in fields(AssistMemConfig))


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> AssistMemConfig:
    cfg = AssistMemConfig()
    try:
        data = read_config_file(path)
    except ValueError as exc:
        warnings.warn(f"Ignoring config file: {exc}", RuntimeWarning, stacklevel=2)
        data = {}
    cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return cfg


def coerce_config_value(key: str, value: str) -> Any:
    """Parse a command-line value into the type stored for ``key``."""

    if key not in CONFIG_KEYS:
        raise ValueError(f"unknown config key: {key}")
    try:
        if key in INT_KEYS:
            return int(value)
        if key in FLOAT_KEYS:
            return float(value)
    except ValueError as exc:
        raise ValueError(f"invalid value for {key}: {value!r}") from exc
    if key in BOOL_KEYS:
        lowered = value.lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "off", "no"}:
            return False
        raise ValueError(f"invalid value for {key}: {value!r}")
    return value


def _apply_dict(cfg: AssistMemConfig, data: dict[str, Any]) -> AssistMemConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if key in BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        setattr(cfg, key, value)
    return cfg


def _apply_env(cfg: AssistMemConfig) -> AssistMemConfig:
    cfg.db_path = os.getenv("ASSISTMEM_DB", cfg.db_path)
    cfg.token_limit = _parse_int(
        os.getenv("ASSISTMEM_TOKEN_LIMIT"), cfg.token_limit, key="token_limit"
    )
    cfg.reserved_tokens = _parse_int(
        os.getenv("ASSISTMEM_RESERVED_TOKENS"), cfg.reserved_tokens, key="reserved_tokens"
    )
    cfg.recent_message_limit = _parse_int(
        os.getenv("ASSISTMEM_RECENT_MESSAGE_LIMIT"),
        cfg.recent_message_limit,
        key="recent_message_limit",
    )
    cfg.rolling_summary_interval = _parse_int(
        os.getenv("ASSISTMEM_ROLLING_SUMMARY_INTERVAL"),
        cfg.rolling_summary_interval,
        key="rolling_summary_interval",
    )
    cfg.semantic_retrieval_count = _parse_int(
        os.getenv("ASSISTMEM_SEMANTIC_RETRIEVAL_COUNT"),
        cfg.semantic_retrieval_count,
        key="semantic_retrieval_count",
    )
    cfg.embedding_provider = os.getenv("ASSISTMEM_EMBEDDING_PROVIDER", cfg.embedding_provider)
    cfg.embedding_model = os.getenv("ASSISTMEM_EMBEDDING_MODEL", cfg.embedding_model)
    cfg.embedding_api_key = (
        os.getenv("ASSISTMEM_EMBEDDING_API_KEY")
        or cfg.embedding_api_key
        or os.getenv("OPENAI_API_KEY")
    )
    cfg.embedding_disabled = _parse_bool(
        os.getenv("ASSISTMEM_EMBEDDING_DISABLED"), cfg.embedding_disabled
    )
    cfg.summary_provider = os.getenv("ASSISTMEM_SUMMARY_PROVIDER", cfg.summary_provider)
    cfg.summary_model = os.getenv("ASSISTMEM_SUMMARY_MODEL", cfg.summary_model)
    cfg.summary_api_key = os.getenv("ASSISTMEM_SUMMARY_API_KEY", cfg.summary_api_key)
    cfg.summary_base_url = os.getenv("ASSISTMEM_SUMMARY_BASE_URL", cfg.summary_base_url)
    cfg.backfill_interval_s = _parse_int(
        os.getenv("ASSISTMEM_BACKFILL_INTERVAL_S"),
        cfg.backfill_interval_s,
        key="backfill_interval_s",
    )
    return cfg
