"""Runtime executable resolution for the external transcoder and prober.

Responsibilities:
- Resolve `ffmpeg`/`ffprobe` with explicit-override-first precedence.
- Support bundled `bin/` layouts next to the package and frozen app layouts.
"""

from __future__ import annotations

import os
from pathlib import Path
import shutil
import sys
from typing import Mapping


def executable_override_key(command_name: str) -> str:
    """Return the environment variable that overrides one executable path."""

    return f"CHAPTERVOICE_{command_name.strip().upper()}_PATH"


def resolve_executable(command_name: str, env: Mapping[str, str] | None = None) -> str:
    """Resolve an executable path.

    Resolution order:
    1. `CHAPTERVOICE_<TOOL>_PATH` environment override.
    2. Bundled app directories (`./bin/<tool>` then `./<tool>` from app root).
    3. System `PATH`.
    4. Raw command name, so the subprocess call raises a missing-binary error.
    """

    normalized = command_name.strip()
    if not normalized:
        return command_name

    env_map = os.environ if env is None else env
    override = env_map.get(executable_override_key(normalized), "").strip()
    if override:
        return override

    for candidate in _bundled_candidates(normalized):
        if candidate.is_file():
            return str(candidate)

    resolved_path = shutil.which(normalized)
    if resolved_path is not None:
        return resolved_path

    return normalized


def _bundled_candidates(command_name: str) -> list[Path]:
    """Return bundled candidate paths for one executable name."""

    app_root = _app_root()
    candidates: list[Path] = []
    for name in _candidate_names(command_name):
        candidates.append(app_root / "bin" / name)
        candidates.append(app_root / name)
    return candidates


def _candidate_names(command_name: str) -> tuple[str, ...]:
    """Return command name variants including the Windows `.exe` form."""

    if command_name.lower().endswith(".exe"):
        return (command_name,)
    return (command_name, f"{command_name}.exe")


def _app_root() -> Path:
    """Resolve the application root for frozen and source execution."""

    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]
