"""Path templates and backup file resolution."""

import os
from datetime import date
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

from shared.logger import get_logger

from .config import DefaultConfig, ServerConfig
from .errors import ConfigurationError

logger = get_logger(__name__)

TokenMap = Mapping[str, str]


def build_tokens(server_name: str, today: Optional[date] = None) -> TokenMap:
    """
    Compute the template tokens for one server and day.

    Args:
        server_name: Name of the server
        today: Date of the run (defaults to today)

    Returns:
        Read-only mapping of token to value
    """
    today = today or date.today()
    return MappingProxyType(
        {
            "%server%": server_name,
            "%year%": f"{today.year:04d}",
            "%month%": f"{today.month:02d}",
            "%day%": f"{today.day:02d}",
            "%week%": f"{today.isocalendar()[1]:02d}",
        }
    )


def apply_template(template: str, tokens: TokenMap) -> str:
    """Replace every literal token occurrence; other text is left untouched."""
    for token, value in tokens.items():
        if token in template:
            template = template.replace(token, value)
    return template


class PathTemplateResolver:
    """
    Resolve output and destination templates to absolute paths for a server.

    Relative targets land under the server's backup directory. An absolute
    server ``backup_dir`` is used as is; otherwise it is joined below the
    absolute default backup directory. A server without an override uses its
    name as sub-directory.
    """

    def __init__(self, server: ServerConfig, defaults: DefaultConfig, tokens: TokenMap):
        self.server = server
        self.defaults = defaults
        self.tokens = tokens

    def resolve(self, template: str, mkdir: bool = True) -> Path:
        """
        Resolve a template to an absolute path.

        Args:
            template: Path template containing tokens
            mkdir: Create the parent directory of relative targets

        Returns:
            Absolute path

        Raises:
            ConfigurationError: If a relative target has no absolute base directory
        """
        target = apply_template(template, self.tokens)
        if os.path.isabs(target):
            return Path(target)

        subdir = self.server.backup_subdir()
        if os.path.isabs(subdir):
            resolved = Path(subdir) / target
        else:
            base = self.defaults.backup_dir
            if not base or not os.path.isabs(base):
                raise ConfigurationError(
                    f"Missing backup directory for server {self.server.name}",
                    server=self.server.name,
                )
            resolved = Path(base) / subdir / target

        if mkdir:
            resolved.parent.mkdir(parents=True, exist_ok=True)

        logger.debug(f"Resolved {template!r} to {resolved}")
        return resolved
