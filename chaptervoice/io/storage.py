"""Filesystem artifact storage.

Responsibilities:
- Provide deterministic filesystem storage for JSON sidecars and audio artifacts.
- Write files atomically so an interrupted write never leaves a partial artifact.
- Offer lookup, copy, and delete helpers used by the segment audio cache.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
import shutil


class ArtifactStore:
    """Filesystem-backed artifact store rooted at one directory."""

    def __init__(self, root: Path) -> None:
        """Initialize the store with a root directory."""

        self.root = root

    def path_for(self, relative_path: Path) -> Path:
        """Return the absolute location of a relative artifact path."""

        return self.root / relative_path

    def save_json(self, relative_path: Path, payload: dict[str, object]) -> Path:
        """Save a JSON-serializable payload and return its path."""

        return self._write_atomic(
            relative_path,
            json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True).encode("utf-8"),
        )

    def load_json(self, relative_path: Path) -> dict[str, object] | None:
        """Load a JSON object, returning `None` when missing or unreadable."""

        path = self.path_for(relative_path)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    def save_audio(self, relative_path: Path, data: bytes) -> Path:
        """Save audio bytes and return their path."""

        return self._write_atomic(relative_path, data)

    def copy_into(self, source: Path, relative_path: Path) -> Path:
        """Copy an existing file into the store and return the destination path."""

        destination = self.path_for(relative_path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        temporary = destination.with_name(f".{destination.name}.tmp")
        shutil.copyfile(source, temporary)
        os.replace(temporary, destination)
        return destination

    def delete(self, relative_path: Path) -> bool:
        """Delete one artifact file and report whether it existed."""

        path = self.path_for(relative_path)
        if not path.exists():
            return False
        path.unlink()
        return True

    def delete_tree(self, relative_path: Path) -> bool:
        """Delete an artifact directory tree and report whether it existed."""

        path = self.path_for(relative_path)
        if not path.exists():
            return False
        shutil.rmtree(path)
        return True

    def _write_atomic(self, relative_path: Path, data: bytes) -> Path:
        """Write bytes through a temporary sibling file and rename into place."""

        path = self.path_for(relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        temporary = path.with_name(f".{path.name}.tmp")
        temporary.write_bytes(data)
        os.replace(temporary, path)
        return path
