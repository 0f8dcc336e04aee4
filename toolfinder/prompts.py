from __future__ import annotations

"""
Versioned prompt templates.

Templates live under ``prompt_templates/versioned/<version>/<name>.txt`` inside
the package.  A ``PromptStore`` is bound to one version and caches each
template the first time it is read, so a running service keeps serving
the exact text it started with even if files change on disk.
"""

import re
import threading
from pathlib import Path
from typing import Dict, Optional

from loguru import logger

from .config import PROMPT_VERSION, PROMPTS_DIR
from .errors import PromptTemplateError

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def render_template(template: str, values: Dict[str, str]) -> str:
    """
    Substitute ``{name}`` placeholders with ``values[name]``.

    Only simple identifiers in braces are touched and only when a value
    is supplied, so literal JSON examples inside a template survive.
    """

    def _sub(m: re.Match) -> str:
        key = m.group(1)
        if key in values:
            return str(values[key])
        return m.group(0)

    return _PLACEHOLDER_RE.sub(_sub, template)


class PromptStore:
    def __init__(self, version: str = PROMPT_VERSION, root: Optional[Path] = None):
        self.version = version
        self.root = Path(root) if root is not None else PROMPTS_DIR
        self._cache: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, name: str) -> str:
        with self._lock:
            if name in self._cache:
                return self._cache[name]
            path = self.root / self.version / f"{name}.txt"
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as e:
                raise PromptTemplateError(
                    f"Prompt {name} {self.version} not found at {path}"
                ) from e
            logger.info("Loaded prompt template {} ({})", name, self.version)
            self._cache[name] = text
            return text

    def render(self, name: str, **values: str) -> str:
        return render_template(self.load(name), values)
