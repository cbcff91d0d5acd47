"""
Configuration loader for the agent orchestrator.

Loads configuration from YAML files with support for
environment variable interpolation.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from .models import (
    OrchestratorConfig,
    GeneratorConfig,
    EmbeddingConfig,
    WebSearchConfig,
    RecordStoreConfig,
    CacheConfig,
    ServerConfig,
    LoggingConfig,
    LangfuseConfig,
    AppConfig,
)

logger = logging.getLogger(__name__)

# Default config path relative to project root
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "config.yaml"

# Regex for environment variable interpolation: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

RECORD_STORE_BACKENDS = ("memory", "supabase")

# Singleton cache for app config
_app_config: Optional[AppConfig] = None


def resolve_env_vars(value: str) -> str:
    """
    Resolve environment variable references in a string.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: String potentially containing env var references

    Returns:
        String with env vars resolved
    """

    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, value)


def _substitute_env_vars_recursive(data: Any) -> Any:
    """Recursively substitute environment variables in a data structure."""
    if isinstance(data, dict):
        return {k: _substitute_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return resolve_env_vars(data)
    return data


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


def _parse_orchestrator_config(data: dict) -> OrchestratorConfig:
    """Parse orchestrator configuration from dict."""
    defaults = OrchestratorConfig()
    return OrchestratorConfig(
        base_url=data.get("base_url") or defaults.base_url,
        api_key=data.get("api_key", ""),
        model=data.get("model") or defaults.model,
        temperature=float(data.get("temperature", defaults.temperature)),
        max_tokens=int(data.get("max_tokens", defaults.max_tokens)),
        timeout=int(data.get("timeout", defaults.timeout)),
        max_iterations=int(data.get("max_iterations", defaults.max_iterations)),
        post_generation_rounds=int(
            data.get("post_generation_rounds", defaults.post_generation_rounds)
        ),
        system_prompt=data.get("system_prompt") or defaults.system_prompt,
    )


def _parse_generator_config(data: dict) -> GeneratorConfig:
    """Parse generator model profile from dict."""
    defaults = GeneratorConfig()
    return GeneratorConfig(
        base_url=data.get("base_url") or defaults.base_url,
        api_key=data.get("api_key", ""),
        model=data.get("model") or defaults.model,
        temperature=float(data.get("temperature", defaults.temperature)),
        max_tokens=int(data.get("max_tokens", defaults.max_tokens)),
        timeout=int(data.get("timeout", defaults.timeout)),
    )


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    defaults = EmbeddingConfig()
    return EmbeddingConfig(
        base_url=data.get("base_url") or defaults.base_url,
        api_key=data.get("api_key", ""),
        model=data.get("model") or defaults.model,
        timeout=int(data.get("timeout", defaults.timeout)),
    )


def _parse_web_search_config(data: dict) -> WebSearchConfig:
    defaults = WebSearchConfig()
    return WebSearchConfig(
        url=data.get("url") or defaults.url,
        api_key=data.get("api_key", ""),
        timeout=int(data.get("timeout", defaults.timeout)),
    )


def _parse_record_store_config(data: dict) -> RecordStoreConfig:
    defaults = RecordStoreConfig()
    return RecordStoreConfig(
        backend=(data.get("backend") or defaults.backend).lower(),
        url=data.get("url", ""),
        api_key=data.get("api_key", ""),
        timeout=int(data.get("timeout", defaults.timeout)),
        match_function=data.get("match_function") or defaults.match_function,
        history_limit=int(data.get("history_limit", defaults.history_limit)),
    )


def _parse_cache_config(data: dict) -> CacheConfig:
    defaults = CacheConfig()
    return CacheConfig(
        session_ttl=int(data.get("session_ttl", defaults.session_ttl)),
        knowledge_ttl=int(data.get("knowledge_ttl", defaults.knowledge_ttl)),
        web_search_ttl=int(data.get("web_search_ttl", defaults.web_search_ttl)),
        canon_ttl=int(data.get("canon_ttl", defaults.canon_ttl)),
        embedding_ttl=int(data.get("embedding_ttl", defaults.embedding_ttl)),
        max_entries=int(data.get("max_entries", defaults.max_entries)),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server configuration from dict."""
    return ServerConfig(
        host=data.get("host", "0.0.0.0"),
        port=int(data.get("port", 8000)),
        workers=int(data.get("workers", 1)),
        reload=_as_bool(data.get("reload"), False),
    )


def _parse_logging_config(data: dict) -> LoggingConfig:
    """Parse logging configuration from dict."""
    return LoggingConfig(level=(data.get("level") or "INFO").upper())


def _parse_langfuse_config(data: dict) -> LangfuseConfig:
    """Parse Langfuse configuration from dict."""
    return LangfuseConfig(
        public_key=data.get("public_key", ""),
        secret_key=data.get("secret_key", ""),
        host=data.get("host", ""),
        debug=_as_bool(data.get("debug"), False),
    )


def parse_app_config(raw_config: dict) -> AppConfig:
    """
    Build an AppConfig from an already-loaded (and interpolated) mapping.

    Missing sections fall back to dataclass defaults.
    """
    return AppConfig(
        version=str(raw_config.get("version", "1.0")),
        orchestrator=_parse_orchestrator_config(raw_config.get("orchestrator") or {}),
        generator=_parse_generator_config(raw_config.get("generator") or {}),
        embedding=_parse_embedding_config(raw_config.get("embedding") or {}),
        web_search=_parse_web_search_config(raw_config.get("web_search") or {}),
        record_store=_parse_record_store_config(raw_config.get("record_store") or {}),
        cache=_parse_cache_config(raw_config.get("cache") or {}),
        server=_parse_server_config(raw_config.get("server") or {}),
        logging=_parse_logging_config(raw_config.get("logging") or {}),
        langfuse=_parse_langfuse_config(raw_config.get("langfuse") or {}),
    )


def validate_app_config(config: AppConfig) -> list[str]:
    """
    Validate an application configuration.

    Args:
        config: Configuration to validate

    Returns:
        List of validation warnings (empty if valid)
    """
    errors = []

    if not config.orchestrator.api_key:
        errors.append("orchestrator: missing api_key")
    if not config.generator.api_key:
        errors.append("generator: missing api_key")
    if config.orchestrator.max_iterations <= 0:
        errors.append("orchestrator: max_iterations must be positive")
    if config.orchestrator.post_generation_rounds < 0:
        errors.append("orchestrator: post_generation_rounds must not be negative")
    if config.record_store.backend not in RECORD_STORE_BACKENDS:
        errors.append(
            f"record_store: unknown backend '{config.record_store.backend}' "
            f"(expected one of {', '.join(RECORD_STORE_BACKENDS)})"
        )
    if config.record_store.backend == "supabase" and not config.record_store.url:
        errors.append("record_store: supabase backend requires url")
    if not config.web_search.api_key:
        errors.append("web_search: missing api_key, web_search tool will fail")
    for name in ("session_ttl", "knowledge_ttl", "web_search_ttl", "canon_ttl", "embedding_ttl"):
        if getattr(config.cache, name) <= 0:
            errors.append(f"cache: {name} must be positive")

    return errors


def load_app_config(path: Optional[str] = None, reload: bool = False) -> AppConfig:
    """
    Load unified application configuration from a YAML file.

    Uses a singleton pattern - subsequent calls return the cached config
    unless reload=True is specified.

    Args:
        path: Path to the YAML configuration file. If None, uses
              CONFIG_PATH env var or the default path (config/config.yaml).
        reload: If True, force reload from disk instead of using cache.

    Returns:
        AppConfig with all configuration loaded

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config is empty
    """
    global _app_config

    if _app_config is not None and not reload:
        return _app_config

    # .env values never override variables already set in the environment
    load_dotenv()

    if path is None:
        path = os.environ.get("CONFIG_PATH", str(DEFAULT_CONFIG_PATH))

    config_path = Path(path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found at {config_path}. "
            f"Create one from config/config.yaml or set CONFIG_PATH env var."
        )

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, "r") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raise ValueError(f"Configuration file {config_path} is empty")

    raw_config = _substitute_env_vars_recursive(raw_config)
    app_config = parse_app_config(raw_config)

    for error in validate_app_config(app_config):
        logger.warning(f"Config validation warning: {error}")

    _app_config = app_config

    logger.debug(
        f"Configuration loaded: version={app_config.version}, "
        f"model={app_config.orchestrator.model}, "
        f"record_store={app_config.record_store.backend}"
    )

    return app_config


def reset_config_cache() -> None:
    """Reset the configuration cache, forcing a reload on next access."""
    global _app_config
    _app_config = None
    logger.debug("Configuration cache reset")
