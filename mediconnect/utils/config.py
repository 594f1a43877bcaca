"""
Configuration and secrets management for MediConnect.

Values come from Streamlit's secrets (``.streamlit/secrets.toml``) first and
fall back to environment variables, then to defaults. Lookups never raise.

Usage:
    from mediconnect.utils.config import get_api_config, is_api_enabled

    # Get AI configuration
    ai_config = get_api_config('ai')
    models = ai_config['models']

    # Check whether the Supabase backend is configured
    if is_api_enabled('supabase'):
        ...
"""

import logging
import os
from typing import Any, Dict, List, Optional

import streamlit as st

logger = logging.getLogger(__name__)

DEFAULT_AI_MODELS = [
    "gemini-2.5-flash-exp",
    "gemini-2.5-pro-exp",
    "gemini-2.0-flash",
    "gemini-2.0-flash-thinking-exp",
    "gemini-2.0-pro",
    "gemini-1.5-flash",
    "gemini-1.5-pro",
]

NPI_REGISTRY_URL = "https://npiregistry.cms.hhs.gov/api/"

MIN_API_KEY_LENGTH = 30
_PLACEHOLDER_MARKERS = ("your-api-key", "your_api_key", "placeholder", "changeme")

_LOGGING_CONFIGURED = False


def _env_name(key_path: str) -> str:
    return "MEDICONNECT_" + key_path.replace(".", "_").upper()


def _coerce(value: Any, default: Any) -> Any:
    """Convert an environment string to the type of ``default``."""
    if not isinstance(value, str) or default is None or isinstance(default, str):
        return value
    try:
        if isinstance(default, bool):
            return value.strip().lower() in ("1", "true", "yes", "y", "on")
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
        if isinstance(default, list):
            return [part.strip() for part in value.split(",") if part.strip()]
    except ValueError:
        logger.warning(f"Could not interpret '{value}' as {type(default).__name__}; using default")
        return default
    return value


def get_secret(key_path: str, default: Any = None, env_var: Optional[str] = None) -> Any:
    """
    Safely retrieve a configuration value.

    Args:
        key_path: Dot-notation path into Streamlit secrets (e.g., 'ai.api_key')
        default: Default value if neither secrets nor environment define it
        env_var: Environment variable to consult when the secret is missing;
            defaults to ``MEDICONNECT_<PATH>`` (e.g., ``MEDICONNECT_AI_API_KEY``)

    Returns:
        The configured value or default if not found

    Examples:
        >>> get_secret('supabase.url', '', env_var='SUPABASE_URL')
        >>> get_secret('cms.max_rows', 1000)
    """
    try:
        value = st.secrets
        for key in key_path.split("."):
            value = value[key]
        return value
    except Exception:
        # Missing key, or no secrets file at all
        pass

    for name in (env_var, _env_name(key_path)):
        if name and os.environ.get(name) not in (None, ""):
            return _coerce(os.environ[name], default)
    return default


def get_api_config(api_name: str) -> Dict[str, Any]:
    """
    Get configuration for a specific API or service.

    Args:
        api_name: One of 'geocoding', 'ai', 'cms', 'supabase'

    Returns:
        Dictionary containing the API configuration (empty for unknown names)
    """
    if api_name == "geocoding":
        return {
            "google_maps_api_key": get_secret("geocoding.google_maps_api_key", "", env_var="GOOGLE_MAPS_API_KEY"),
            "google_maps_enabled": get_secret("geocoding.google_maps_enabled", False),
            "nominatim_user_agent": get_secret("geocoding.nominatim_user_agent", "mediconnect_provider_matching"),
            "request_timeout": get_secret("geocoding.request_timeout", 10),
            "rate_limit_delay": get_secret("geocoding.rate_limit_delay", 1.0),
            "max_retries": get_secret("geocoding.max_retries", 2),
            "cache_size": get_secret("geocoding.cache_size", 256),
        }
    elif api_name == "ai":
        return {
            "api_key": get_secret("ai.api_key", "", env_var="GEMINI_API_KEY"),
            "models": list(get_secret("ai.models", list(DEFAULT_AI_MODELS))),
            "request_debounce_seconds": get_secret("ai.request_debounce_seconds", 1.0),
            "request_timeout": get_secret("ai.request_timeout", 10),
            "temperature": get_secret("ai.temperature", 0.3),
            "max_output_tokens": get_secret("ai.max_output_tokens", 2048),
        }
    elif api_name == "cms":
        return {
            "csv_path": get_secret("cms.csv_path", ""),
            "csv_url": get_secret("cms.csv_url", ""),
            "max_rows": get_secret("cms.max_rows", 1000),
            "min_columns": get_secret("cms.min_columns", 29),
            "npi_registry_enabled": get_secret("cms.npi_registry_enabled", True),
            "npi_registry_url": get_secret("cms.npi_registry_url", NPI_REGISTRY_URL),
            "npi_registry_limit": get_secret("cms.npi_registry_limit", 20),
            "request_timeout": get_secret("cms.request_timeout", 10),
        }
    elif api_name == "supabase":
        return {
            "url": get_secret("supabase.url", "", env_var="SUPABASE_URL"),
            "anon_key": get_secret("supabase.anon_key", "", env_var="SUPABASE_ANON_KEY"),
            "request_timeout": get_secret("supabase.request_timeout", 10),
        }
    else:
        return {}


def get_app_config() -> Dict[str, Any]:
    """
    Get general application configuration.

    Returns:
        Dictionary containing app configuration
    """
    return {
        "environment": get_secret("app.environment", "production"),
        "debug_mode": get_secret("app.debug_mode", False),
        "log_level": get_secret("app.log_level", "INFO"),
    }


def get_matching_config() -> Dict[str, Any]:
    """Defaults for the matching pipeline (result limit, travel mode)."""
    return {
        "max_results": get_secret("matching.max_results", 10),
        "travel_mode": get_secret("matching.travel_mode", "driving"),
    }


def is_valid_api_key(api_key: Optional[str]) -> bool:
    """False for missing keys, keys shorter than 30 characters, and template placeholders."""
    if not api_key:
        return False
    key = str(api_key).strip()
    if len(key) < MIN_API_KEY_LENGTH:
        return False
    lowered = key.lower()
    return not any(marker in lowered for marker in _PLACEHOLDER_MARKERS)


def is_api_enabled(api_name: str) -> bool:
    """
    Check if a specific API is enabled and properly configured.

    Args:
        api_name: 'google_maps', 'ai', 'cms_remote', 'npi_registry' or 'supabase'

    Returns:
        True if the API is enabled and has required configuration
    """
    if api_name == "google_maps":
        config = get_api_config("geocoding")
        return bool(config["google_maps_enabled"]) and bool(config["google_maps_api_key"])
    elif api_name == "ai":
        return is_valid_api_key(get_api_config("ai")["api_key"])
    elif api_name == "cms_remote":
        return bool(get_api_config("cms")["csv_url"])
    elif api_name == "npi_registry":
        config = get_api_config("cms")
        return bool(config["npi_registry_enabled"]) and bool(config["npi_registry_url"])
    elif api_name == "supabase":
        config = get_api_config("supabase")
        return bool(config["url"]) and bool(config["anon_key"])
    else:
        return False


def validate_configuration() -> Dict[str, str]:
    """
    Validate the application configuration and return any warnings or errors.

    Returns:
        Dictionary with configuration validation results
    """
    issues = {}

    geocoding_config = get_api_config("geocoding")
    if geocoding_config["google_maps_enabled"] and not geocoding_config["google_maps_api_key"]:
        issues["geocoding"] = "Google Maps is enabled but no API key is provided"

    ai_config = get_api_config("ai")
    if ai_config["api_key"] and not is_valid_api_key(ai_config["api_key"]):
        issues["ai"] = "AI API key looks invalid (too short or a placeholder); using the offline knowledge base"
    if not ai_config["models"]:
        issues["ai_models"] = "No AI models configured"

    cms_config = get_api_config("cms")
    if cms_config["csv_url"] and not str(cms_config["csv_url"]).startswith(("http://", "https://")):
        issues["cms"] = "CMS CSV URL should start with http:// or https://"
    if int(cms_config["max_rows"]) <= 0:
        issues["cms_max_rows"] = "cms.max_rows must be positive"

    supabase_config = get_api_config("supabase")
    if bool(supabase_config["url"]) != bool(supabase_config["anon_key"]):
        issues["supabase"] = "Supabase needs both url and anon_key; using the in-memory backend"

    app_config = get_app_config()
    if app_config["environment"] not in ["development", "staging", "production"]:
        issues["app"] = f"Unknown environment: {app_config['environment']}"

    return issues


def configure_logging(level: Optional[str] = None) -> None:
    """Apply the configured log level once per process."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    level_name = str(level or get_app_config()["log_level"]).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _LOGGING_CONFIGURED = True


def describe_configuration() -> List[str]:
    """One status line per integration, for the landing page and the data check script."""
    lines = []
    for api in ["ai", "google_maps", "cms_remote", "npi_registry", "supabase"]:
        status = "enabled" if is_api_enabled(api) else "disabled / not configured"
        lines.append(f"{api}: {status}")
    return lines
