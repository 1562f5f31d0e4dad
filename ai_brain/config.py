import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

# Values from a local .env win over anything already exported by the shell or CI.
load_dotenv(override=True)

_TRUTHY = {"1", "true", "yes", "on"}


def _get_raw_env(name: str) -> Optional[str]:
    """Look up ``name`` directly, then as ``GITHUB_SECRET_<name>``.

    CI workflows that cannot export a secret under its real name publish it
    with the prefix instead.
    """

    for key in (name, f"GITHUB_SECRET_{name}"):
        if key in os.environ:
            return os.environ[key]
    return None


def get_env_value(name: str, default: Optional[str] = None) -> Optional[str]:
    value = _get_raw_env(name)
    return default if value is None else value


def _is_truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _get_bool_env(name: str, default: str = "false") -> bool:
    return _is_truthy(get_env_value(name, default))


def _get_int_env(name: str, default: str) -> int:
    raw = get_env_value(name, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        return int(default)


def _get_float_env(name: str, default: str) -> float:
    raw = get_env_value(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        return float(default)


def _get_str_env(name: str, default: str) -> str:
    """Like ``get_env_value`` but blank values fall back to ``default``."""
    raw = get_env_value(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


# =============================
# LLM oracles
# =============================


@lru_cache(maxsize=1)
def get_openai_api_key() -> Optional[str]:
    return get_env_value("OPENAI_API_KEY")


@lru_cache(maxsize=1)
def get_xai_api_key() -> Optional[str]:
    return get_env_value("XAI_API_KEY")


@lru_cache(maxsize=1)
def get_xai_base_url() -> str:
    return _get_str_env("XAI_BASE_URL", "https://api.x.ai/v1")


@lru_cache(maxsize=1)
def get_llm_provider() -> str:
    provider = _get_str_env("LLM_PROVIDER", "openai").lower()
    # "grok" is accepted as a synonym for the xAI provider
    return "xai" if provider == "grok" else provider


@lru_cache(maxsize=1)
def is_llm_configured() -> bool:
    keys = {"openai": get_openai_api_key, "xai": get_xai_api_key}
    getter = keys.get(get_llm_provider())
    if getter is None:
        return False
    return bool((getter() or "").strip())


@lru_cache(maxsize=1)
def get_analysis_model_name() -> str:
    default = "grok-4-fast-reasoning" if get_llm_provider() == "xai" else "gpt-4o-mini"
    return _get_str_env("ANALYSIS_MODEL", default)


@lru_cache(maxsize=1)
def get_embedding_model_name() -> str:
    return _get_str_env("EMBEDDING_MODEL", "text-embedding-3-small")


@lru_cache(maxsize=1)
def get_oracle_timeout_seconds() -> float:
    return _get_float_env("ORACLE_TIMEOUT_S", "10")


@lru_cache(maxsize=1)
def get_oracle_retries() -> int:
    return max(0, _get_int_env("ORACLE_RETRIES", "1"))


# =============================
# External stores
# =============================


@lru_cache(maxsize=1)
def get_database_url() -> Optional[str]:
    """PostgreSQL DSN; None leaves the service without a store (endpoints answer 503)."""
    raw = get_env_value("DATABASE_URL")
    return raw.strip() if raw and raw.strip() else None


@lru_cache(maxsize=1)
def get_db_pool_min_size() -> int:
    return _get_int_env("DB_POOL_MIN", "1")


@lru_cache(maxsize=1)
def get_db_pool_max_size() -> int:
    return max(get_db_pool_min_size(), _get_int_env("DB_POOL_MAX", "20"))


@lru_cache(maxsize=1)
def get_db_connect_timeout_seconds() -> float:
    return _get_float_env("DB_CONNECT_TIMEOUT_S", "5")


@lru_cache(maxsize=1)
def get_redis_url() -> Optional[str]:
    return get_env_value("REDIS_URL")


@lru_cache(maxsize=1)
def get_redis_socket_timeout_seconds() -> float:
    return _get_float_env("REDIS_SOCKET_TIMEOUT_S", "2")


# =============================
# Engine tuning
# =============================


@lru_cache(maxsize=1)
def get_chain_window_size() -> int:
    return max(1, _get_int_env("CHAIN_WINDOW_SIZE", "50"))


@lru_cache(maxsize=1)
def get_mental_state_probability() -> float:
    return min(1.0, max(0.0, _get_float_env("MENTAL_STATE_PROBABILITY", "0.3")))


@lru_cache(maxsize=1)
def is_scheduled_maintenance_enabled() -> bool:
    """SCHEDULED_MAINTENANCE_ENABLED gates the APScheduler jobs (default on).

    Manual runs through ``POST /v1/maintenance`` are not affected.
    """
    return _get_bool_env("SCHEDULED_MAINTENANCE_ENABLED", "true")


@lru_cache(maxsize=1)
def is_turn_worker_enabled() -> bool:
    return _get_bool_env("TURN_WORKER_ENABLED", "true")


# =============================
# Langfuse
# =============================


def get_langfuse_public_key() -> str:
    return get_env_value("LANGFUSE_PUBLIC_KEY", "") or ""


def get_langfuse_secret_key() -> str:
    return get_env_value("LANGFUSE_SECRET_KEY", "") or ""


def get_langfuse_host() -> str:
    return _get_str_env("LANGFUSE_HOST", "https://us.cloud.langfuse.com")


def is_langfuse_enabled() -> bool:
    """Tracing is on only when both Langfuse keys are present."""
    return bool(get_langfuse_public_key() and get_langfuse_secret_key())
