"""
JSON-file project repository.

Layout under ``data_dir``:

    projects-index.json   {"default_project_id": "...", "projects": [{"id": "...", "file": "..."}]}
    <project_id>.json     one document per project

Documents are rewritten whole on every mutation (temp file + atomic replace).
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

from ...models.project import Project
from .project_repository_base import ProjectRepositoryBase

INDEX_FILE = "projects-index.json"


class JsonProjectRepository(ProjectRepositoryBase):
    """
    File-backed repository with persistent storage.

    Features:
    - Human-readable project documents (diffable, easy to back up)
    - Keys other parts of the app store on a project are preserved on rewrite
    - Per-project write serialization (inherited from ProjectRepositoryBase)
    """

    def __init__(self, data_dir: str = "data/reno"):
        """
        Initialize repository with its data directory.

        Args:
            data_dir: Directory holding the index and project documents
        """
        super().__init__()
        self.data_dir = Path(data_dir)
        self.index_path = self.data_dir / INDEX_FILE
        self._index_lock = threading.Lock()
        self._init_storage()

    def _init_storage(self):
        """Create data directory and an empty index if they don't exist"""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if not self.index_path.exists():
            self._write_json(self.index_path, {"default_project_id": None, "projects": []})

    @staticmethod
    def _write_json(path: Path, data: dict) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json.dumps(data, indent=2) + "\n")
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _load_index(self) -> dict:
        index = json.loads(self.index_path.read_text(encoding="utf-8"))
        if not isinstance(index, dict) or not isinstance(index.get("projects"), list):
            raise ValueError("Invalid projects index format.")
        return index

    def _resolve_project_path(self, project_id: str) -> Optional[Path]:
        index = self._load_index()
        entry = next((p for p in index["projects"] if p.get("id") == project_id), None)
        if entry is None:
            return None
        return self.data_dir / entry["file"]

    def _read_project(self, project_id: str) -> Optional[Project]:
        path = self._resolve_project_path(project_id)
        if path is None or not path.exists():
            return None
        return Project.model_validate(json.loads(path.read_text(encoding="utf-8")))

    def _write_project(self, project: Project) -> None:
        path = self._resolve_project_path(project.id)
        if path is None:
            raise ValueError(f"Project not found: {project.id}")
        self._write_json(path, project.model_dump(mode="json"))

    def _register_project(self, project: Project) -> None:
        with self._index_lock:
            index = self._load_index()
            file_name = f"{project.id}.json"
            self._write_json(self.data_dir / file_name, project.model_dump(mode="json"))
            index["projects"].append({"id": project.id, "file": file_name})
            if not index.get("default_project_id"):
                index["default_project_id"] = project.id
            self._write_json(self.index_path, index)
        logger.info("Project registered", project_id=project.id, data_dir=str(self.data_dir))

    def list_project_ids(self) -> list[str]:
        return [entry["id"] for entry in self._load_index()["projects"]]

    def get_default_project_id(self) -> Optional[str]:
        return self._load_index().get("default_project_id")
