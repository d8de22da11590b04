"""
JSON file persistence adapter.

Blocking helpers that read/write the raw users array. The repository runs
them in a worker thread so the event loop is never blocked on disk I/O.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
import json

from api.domain.users import UserDirectoryError


class StorageError(UserDirectoryError):
    """Raised when the backing file cannot be read, parsed or written."""

    def __init__(self, message: str, path: Path):
        super().__init__(f"{message}: {path}")
        self.message = message
        self.path = path


def load_records(path: Path) -> list[Any] | None:
    """
    Return the raw JSON array stored in ``path``, or None when the file does
    not exist. A document that is not an array counts as empty.
    """
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        raise StorageError("Could not read users file", path) from exc
    except (json.JSONDecodeError, RecursionError) as exc:
        raise StorageError("Users file is not valid JSON", path) from exc
    return data if isinstance(data, list) else []


def save_records(path: Path, records: list[dict]) -> None:
    """Overwrite ``path`` with the full pretty-printed array."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
    except OSError as exc:
        raise StorageError("Could not write users file", path) from exc


def init_file(path: Path) -> None:
    """Create parent directories and an empty array."""
    save_records(path, [])
