"""Filesystem helpers."""

import json
import os
from pathlib import Path
from typing import Any


def write_json_atomic(path: Path, data: Any) -> None:  # noqa: ANN401
    """Write pretty-printed JSON via a sibling temp file and an atomic rename.

    A reader never observes a partially written file: either the previous
    content or the new content is at ``path``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def read_json(path: Path) -> Any | None:  # noqa: ANN401
    """Read a JSON file, returning None when it is missing or unparsable."""
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return None


def make_executable(path: Path) -> None:
    """Add exec bits for everyone who can read the file. No-op where modes are unsupported."""
    if os.name == "nt":
        return
    mode = path.stat().st_mode
    path.chmod(mode | ((mode & 0o444) >> 2) | 0o100)
