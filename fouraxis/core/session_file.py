"""
Fabrication session file I/O (.faf)

The session format is a zip container with a JSON manifest holding the
inspectable planning state (parameters, directions, labels, regions and
restoration diagnostics). Meshes are not embedded; `mesh_path` records the
source file when known.
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any, Optional
import zipfile

import numpy as np

from .errors import FourAxisError

SESSION_FORMAT = "fouraxis_session"
SESSION_VERSION = 1
MANIFEST_NAME = "session.json"


class SessionFormatError(FourAxisError):
    pass


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _as_list(value: Optional[np.ndarray]) -> Optional[list]:
    if value is None:
        return None
    return np.asarray(value).tolist()


def session_state(data) -> dict[str, Any]:
    """JSON-serializable view of a `FabricationData`."""
    extremes = data.extremes
    return {
        "mesh_path": str(data.mesh.filepath) if data.mesh.filepath else None,
        "n_vertices": int(data.mesh.n_vertices),
        "n_faces": int(data.mesh.n_faces),
        "parameters": data.parameters.to_dict(),
        "transform": _as_list(data.transform),
        "extremes": None if extremes is None else {
            "min": _as_list(extremes.min_extremes),
            "max": _as_list(extremes.max_extremes),
        },
        "min_index": data.min_index,
        "max_index": data.max_index,
        "directions": _as_list(data.directions),
        "angles": _as_list(data.angles),
        "non_visible_faces": _as_list(data.non_visible_faces),
        "target_directions": _as_list(data.target_directions),
        "association": _as_list(data.association),
        "regions": [
            {"label": int(r.label), "direction": _as_list(r.direction), "faces": _as_list(r.faces)}
            for r in data.regions
        ],
        "invalid_after_restore": _as_list(data.invalid_after_restore),
        "regression_count": data.regression_count,
        "completed_stages": list(data.completed_stages),
    }


def save_session(path: str | Path, data, *, meta: dict[str, Any] | None = None) -> str:
    """
    Save a session file.

    Args:
        path: destination path (usually ends with .faf)
        data: FabricationData
        meta: optional metadata (e.g., tool version)
    """
    out_path = Path(path)
    doc: dict[str, Any] = {
        "format": SESSION_FORMAT,
        "version": SESSION_VERSION,
        "saved_at": _utc_now_iso(),
        "meta": dict(meta or {}),
        "state": session_state(data),
    }

    text = json.dumps(doc, ensure_ascii=False)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(MANIFEST_NAME, text.encode("utf-8"))
    return str(out_path)


def load_session(path: str | Path) -> dict[str, Any]:
    """
    Load a session file.

    Returns:
        Parsed document (keys: format/version/saved_at/meta/state)
    """
    in_path = Path(path)
    if not in_path.exists():
        raise FileNotFoundError(str(in_path))
    if not zipfile.is_zipfile(in_path):
        raise SessionFormatError(f"Not a session container: {in_path}")

    with zipfile.ZipFile(in_path, "r") as zf:
        try:
            raw_bytes = zf.read(MANIFEST_NAME)
        except KeyError as e:
            raise SessionFormatError(f"Missing {MANIFEST_NAME} in session file") from e

    try:
        doc = json.loads(raw_bytes.decode("utf-8", errors="replace"))
    except json.JSONDecodeError as e:
        raise SessionFormatError(f"Invalid JSON: {e}") from e

    if not isinstance(doc, dict):
        raise SessionFormatError("Invalid session document (expected JSON object)")

    fmt = str(doc.get("format", "")).strip()
    ver = doc.get("version", None)
    if fmt != SESSION_FORMAT:
        raise SessionFormatError(f"Unsupported session format: {fmt!r}")
    if ver != SESSION_VERSION:
        raise SessionFormatError(f"Unsupported session version: {ver!r}")

    state = doc.get("state", None)
    if not isinstance(state, dict):
        raise SessionFormatError("Invalid session document: missing 'state' object")

    meta = doc.get("meta", {})
    if meta is None:
        doc["meta"] = {}
    elif not isinstance(meta, dict):
        doc["meta"] = {"_raw": meta}

    return doc
