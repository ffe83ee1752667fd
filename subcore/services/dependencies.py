"""Injectable I/O used by providers.

Tests replace ``request``/``run_command``/``which`` with fakes and point
``home`` at a temporary directory.
"""

import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional

from ..utils.http import CommandResult, HttpResponse, aiohttp_request, run_command

logger = logging.getLogger(__name__)

RequestFn = Callable[..., Awaitable[HttpResponse]]
RunCommandFn = Callable[..., Awaitable[CommandResult]]
WhichFn = Callable[[str], Optional[str]]


@dataclass
class Dependencies:
    """Filesystem, network and process access for providers."""
    home: Path = field(default_factory=Path.home)
    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    request: RequestFn = aiohttp_request
    run_command: RunCommandFn = run_command
    which: WhichFn = shutil.which

    def read_json(self, path: Path) -> Optional[Any]:
        """Parse a JSON file; None when missing or unreadable."""
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.debug("Could not read %s: %s", path, e)
            return None

    @property
    def pi_auth_path(self) -> Path:
        """Credentials written by the coding agent's /login."""
        return self.home / ".pi" / "agent" / "auth.json"

    def read_pi_auth(self) -> dict[str, Any]:
        data = self.read_json(self.pi_auth_path)
        return data if isinstance(data, dict) else {}


def create_default_dependencies() -> Dependencies:
    return Dependencies()
