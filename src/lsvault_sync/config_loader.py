"""YAML settings for the sync daemon.

Settings may live in up to three files; each top-level section
(``api``, ``engine``, ``logging``) comes whole from the most specific
file that defines it.  String values may reference the environment as
``${VAR}`` or ``${VAR:-default}``.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LSVAULT_CONFIG"

_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Substitute ``${VAR}`` / ``${VAR:-default}`` references.

    An unset or empty variable yields its default, or ``""``.  An
    unterminated ``${`` is left as is.
    """
    return _ENV_REF.sub(
        lambda m: os.environ.get(m.group(1)) or m.group(2) or "", value
    )


def expand_env_vars(node: Any) -> Any:
    """Apply ``interpolate_env_vars`` to every string in a YAML tree."""
    if isinstance(node, str):
        return interpolate_env_vars(node)
    if isinstance(node, list):
        return [expand_env_vars(item) for item in node]
    if isinstance(node, dict):
        return {key: expand_env_vars(item) for key, item in node.items()}
    return node


def discover_config_files() -> list[Path]:
    """Existing settings files, most specific first.

    1. ``$LSVAULT_CONFIG``
    2. ``./.lsvault/config.yml``
    3. ``~/.config/lsvault/config.yml``
    4. ``~/.lsvault/config.yaml``
    """
    home = Path.home()
    candidates = [
        Path.cwd() / ".lsvault" / "config.yml",
        home / ".config" / "lsvault" / "config.yml",
        home / ".lsvault" / "config.yaml",
    ]
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.insert(0, Path(explicit).expanduser().resolve())
    return [path for path in candidates if path.is_file()]


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered settings file into one dict.

    Returns ``{}`` when there are none.  A file whose root is not a
    mapping is skipped with a warning; YAML errors propagate.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files()):
        logger.debug("Loading config: %s", path)
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Ignoring %s: top level is a %s, not a mapping",
                path,
                type(data).__name__,
            )
            continue
        merged.update(data)
    return expand_env_vars(merged)
