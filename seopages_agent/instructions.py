"""Load and render instruction templates shipped with the package.

Templates are markdown files under ``seopages_agent/instructions/`` using
``str.format`` placeholders. A deployment may point
``SEOPAGES_INSTRUCTIONS_DIR`` at a directory of replacement templates; any
file found there shadows the packaged one of the same name.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping


_PACKAGED_DIR = Path(__file__).resolve().parent / "instructions"


class _SafeFormatDict(dict[str, str]):
    """Leave unknown placeholders untouched instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class InstructionLoader:
    """Read and render instruction templates.

    Resolution order for every template:
      1. ``override_dir / name`` (``SEOPAGES_INSTRUCTIONS_DIR``), when set
      2. ``base_dir / name`` (packaged templates)
    """

    def __init__(
        self,
        base_dir: Path | str | None = None,
        override_dir: Path | str | None = None,
    ):
        self.base_dir = Path(base_dir).expanduser().resolve() if base_dir is not None else _PACKAGED_DIR
        if override_dir is None:
            env_dir = os.getenv("SEOPAGES_INSTRUCTIONS_DIR")
            override_dir = env_dir or None
        self.override_dir: Path | None = (
            Path(override_dir).expanduser().resolve() if override_dir is not None else None
        )
        self._cache: dict[str, str] = {}

    def _path(self, name: str) -> Path:
        if self.override_dir is not None:
            candidate = self.override_dir / name
            if candidate.is_file():
                return candidate
        return self.base_dir / name

    def load(self, name: str) -> str:
        """Load template content by filename."""
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        path = self._path(name)
        if not path.is_file():
            raise FileNotFoundError(f"Instruction template not found: {path}")
        content = path.read_text(encoding="utf-8").strip()
        self._cache[name] = content
        return content

    def render(self, name: str, **variables: object) -> str:
        """Render template with ``str.format`` placeholder substitution."""
        template = self.load(name)
        values: Mapping[str, str] = {k: str(v) for k, v in variables.items()}
        return template.format_map(_SafeFormatDict(values))


_loader: InstructionLoader | None = None


def get_instruction_loader() -> InstructionLoader:
    """Get the shared loader for packaged templates."""
    global _loader
    if _loader is None:
        _loader = InstructionLoader()
    return _loader
