"""Low-level JSON helpers shared by repositories and the file document store."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from .errors import DataLoadError


def load_json(path: Path, *, missing_ok: bool = False) -> object:
    """Load JSON from disk and raise DataLoadError on failure.

    With ``missing_ok`` a missing file yields ``None`` instead of an error.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        if missing_ok:
            return None
        raise DataLoadError(f"File not found: {path}") from exc
    except OSError as exc:
        raise DataLoadError(f"Unable to read file: {path}") from exc

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise DataLoadError(f"Invalid JSON in {path}: {exc}") from exc


def dump_json(path: Path, payload: Dict[str, Any]) -> None:
    """Write ``payload`` through a temp file that replaces the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)
