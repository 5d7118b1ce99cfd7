"""Environment handling for command line runs and job files.

``load_env_file`` feeds ``TIERING_*`` settings from a dotenv file through
python-dotenv; ``expand_references`` resolves ``${VAR}`` / ``$VAR``
references inside a parsed job file so secrets and per-environment names
stay out of version control.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional, Union

from dotenv import load_dotenv

from tiering.lib.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = ["expand_env_vars", "expand_references", "load_env_file"]

REFERENCE = re.compile(r"\$\{(?P<braced>[^}]+)\}|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)")


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load variables from a dotenv file into the process environment.

    Without ``path`` the nearest ``.env`` is used if there is one. An
    explicit path that does not exist is a configuration error rather than
    a silent no-op. Variables already set win unless ``override`` is set.
    """
    if path is not None and not Path(path).is_file():
        raise ConfigurationError(f"Environment file not found: {path}", field="env_file", value=str(path))
    loaded = load_dotenv(dotenv_path=path, override=override)
    if loaded:
        logger.debug("Loaded environment from %s", path or ".env")
    return loaded


def expand_env_vars(value: str, *, strict: bool = False) -> str:
    """Substitute environment references in one string.

    Unknown variables stay as written, or raise ConfigurationError when
    ``strict`` is set.

    Example:
        >>> os.environ["TIERING_DB"] = "AdventureWorksDW"
        >>> expand_env_vars("${TIERING_DB}/dbo")
        'AdventureWorksDW/dbo'
    """

    def substitute(match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("bare")
        if name in os.environ:
            return os.environ[name]
        if strict:
            raise ConfigurationError(f"Environment variable {name} is not set", field=name)
        return match.group(0)

    return REFERENCE.sub(substitute, value)


def expand_references(node: Any, *, strict: bool = False) -> Any:
    """Return a copy of a parsed YAML document with strings expanded.

    Mappings and lists are walked at any depth; dates, numbers and
    booleans pass through unchanged.
    """
    if isinstance(node, str):
        return expand_env_vars(node, strict=strict)
    if isinstance(node, dict):
        return {key: expand_references(value, strict=strict) for key, value in node.items()}
    if isinstance(node, list):
        return [expand_references(item, strict=strict) for item in node]
    return node
