"""
In-memory project repository (for tests and demos).
In production, use JsonProjectRepository.
"""
import copy
from typing import Dict, Optional

from ...models.project import Project
from .project_repository_base import ProjectRepositoryBase


class InMemoryProjectRepository(ProjectRepositoryBase):
    def __init__(self):
        super().__init__()
        self._projects: Dict[str, dict] = {}

    def _read_project(self, project_id: str) -> Optional[Project]:
        data = self._projects.get(project_id)
        if data is None:
            return None
        return Project.model_validate(copy.deepcopy(data))

    def _write_project(self, project: Project) -> None:
        self._projects[project.id] = project.model_dump(mode="json")

    def _register_project(self, project: Project) -> None:
        self._projects[project.id] = project.model_dump(mode="json")

    def list_project_ids(self) -> list:
        return list(self._projects.keys())

    def clear(self) -> None:
        """Drop all projects (test helper)"""
        self._projects.clear()
