"""
Local filesystem storage for attachment bytes.

Keys look like ``projects/<project_id>/<scope>/<attachment_id>-<safe name>``
and are stored on the attachment record; the bytes live under ``root``.
"""

import re
from pathlib import Path, PurePosixPath

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_DASH_RUNS = re.compile(r"-+")


def sanitize_filename(name: str) -> str:
    safe = _UNSAFE_CHARS.sub("-", name)
    safe = _DASH_RUNS.sub("-", safe)
    return safe.strip("-")


def build_storage_key(
    project_id: str,
    attachment_id: str,
    original_name: str,
    scope_type: str = "project",
    scope_id: str | None = None,
) -> str:
    safe_name = sanitize_filename(original_name) or "file"
    scope_part = "project" if scope_type == "project" else f"{scope_type}/{scope_id}"
    return str(PurePosixPath("projects", project_id, scope_part, f"{attachment_id}-{safe_name}"))


class LocalFileStore:
    def __init__(self, root: str = "storage"):
        self.root = Path(root)

    def _absolute_path(self, storage_key: str) -> Path:
        path = (self.root / storage_key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Storage key escapes storage root: {storage_key}")
        return path

    def save_bytes(self, storage_key: str, data: bytes) -> None:
        path = self._absolute_path(storage_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def read_bytes(self, storage_key: str) -> bytes:
        return self._absolute_path(storage_key).read_bytes()

    def delete_bytes(self, storage_key: str) -> None:
        self._absolute_path(storage_key).unlink(missing_ok=True)
