"""Remote API connection configuration.

Reads vault API settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    LSVAULT_API_URL: Vault API base URL (required)
    LSVAULT_API_KEY: API key (required)
    LSVAULT_INSECURE: Skip SSL verification (optional, default: false)
    LSVAULT_TIMEOUT: Request read timeout in seconds (optional, default: 60)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


@dataclass
class ClientConfig:
    api_url: str
    api_key: str
    insecure: bool = False
    timeout: float = 60.0


def validate_config(config: ClientConfig) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: ClientConfig instance to validate.

    Raises:
        ValueError: If URL format is invalid or the API key is empty.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid API URL '{config.api_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid API URL '{config.api_url}': URL must include a hostname"
        )

    config.api_url = config.api_url.removesuffix("/")

    if not config.api_key.strip():
        raise ValueError(
            "API key cannot be empty. Set LSVAULT_API_KEY environment variable."
        )

    if config.timeout <= 0:
        raise ValueError(
            f"Invalid timeout {config.timeout}: must be positive"
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def load_config(
    url: str | None = None,
    api_key: str | None = None,
    insecure: bool = False,
    yaml_fallbacks: dict | None = None,
) -> ClientConfig:
    """Load API configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        url: Override API URL.
        api_key: Override API key.
        insecure: Skip SSL verification (CLI flag).
        yaml_fallbacks: Dict of values from the YAML ``api`` section.

    Returns:
        Validated ClientConfig instance.

    Raises:
        ValueError: If URL or API key is missing after checking all
            sources, or a numeric env var is malformed.
    """
    fb = yaml_fallbacks or {}

    api_url = url or os.getenv("LSVAULT_API_URL") or fb.get("url")
    if not api_url:
        raise ValueError(
            "API URL not found. Set LSVAULT_API_URL environment variable, "
            "pass --url, or add 'api.url' to config.yml."
        )

    final_key = api_key or os.getenv("LSVAULT_API_KEY") or fb.get("api_key")
    if not final_key:
        raise ValueError(
            "API key not found. Set LSVAULT_API_KEY environment variable "
            "or add 'api.api_key' to config.yml."
        )

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("LSVAULT_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    timeout_raw = os.getenv("LSVAULT_TIMEOUT")
    if timeout_raw is not None:
        try:
            final_timeout = float(timeout_raw)
        except ValueError:
            raise ValueError(
                f"Invalid LSVAULT_TIMEOUT '{timeout_raw}': must be a number of seconds"
            ) from None
    elif "timeout" in fb:
        final_timeout = float(fb["timeout"])
    else:
        final_timeout = 60.0

    config = ClientConfig(
        api_url=api_url.strip(),
        api_key=final_key.strip(),
        insecure=final_insecure,
        timeout=final_timeout,
    )

    validate_config(config)

    return config
